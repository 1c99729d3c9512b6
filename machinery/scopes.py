"""Scope names, validation and selection.

Scopes are the independently inspectable facets of a system. Internally
they are lowercase identifiers with underscores (``changed_config_files``);
on the command line they are written with hyphens
(``changed-config-files``). Whatever the operator asks for, the result of
scope selection is deduplicated and sorted so every consumer sees the same
order.

Example:
-------
    >>> from machinery.scopes import ScopeRegistry
    >>>
    >>> registry = ScopeRegistry()
    >>> registry.process_scope_option("packages,users,os", None)
    ['os', 'packages', 'users']
    >>> registry.parse("changed-config-files")
    'changed_config_files'

"""

from __future__ import annotations

import logging
import re
from typing import Callable, Iterable

from machinery.errors import InvalidCommandLine, UnknownScope

logger = logging.getLogger(__name__)

ALL_SCOPES: tuple[str, ...] = (
    "changed_config_files",
    "changed_managed_files",
    "groups",
    "os",
    "packages",
    "patterns",
    "repositories",
    "services",
    "unmanaged_files",
    "users",
)

# Old command line name -> current command line name
LEGACY_ALIASES: dict[str, str] = {
    "config-files": "changed-config-files",
}

VALID_TOKEN = re.compile(r"^[A-Za-z0-9_-]+$")


def cli_name(scope: str) -> str:
    """Return the command line spelling of an internal scope id."""
    return scope.replace("_", "-")


class ScopeRegistry:
    """Validates and normalizes scope requests for one invocation.

    Attributes:
        warn: Callable receiving deprecation messages. Each deprecation is
            reported at most once per registry.

    """

    def __init__(self, warn: Callable[[str], None] | None = None):
        self.warn = warn or logger.warning
        self._deprecations_shown: set[str] = set()

    @staticmethod
    def all_scopes() -> list[str]:
        return sorted(ALL_SCOPES)

    def parse(self, name: str) -> str:
        """Translate one command line token to its internal scope id."""
        return self.parse_scopes(name)[0]

    def parse_scopes(self, text: str | Iterable[str]) -> list[str]:
        """Parse a comma separated scope list, keeping the given order.

        Raises:
            UnknownScope: If tokens are malformed ("not valid") or unknown
                ("not supported"). Malformed tokens are reported first.

        """
        if isinstance(text, str):
            tokens = [t.strip() for t in text.split(",")]
        else:
            tokens = [t.strip() for t in text]
        tokens = [t for t in tokens if t]

        invalid = [t for t in tokens if not VALID_TOKEN.match(t)]
        if invalid:
            raise UnknownScope(invalid, UnknownScope.NOT_VALID)

        scopes = []
        unsupported = []
        for token in tokens:
            token = self._resolve_alias(token)
            scope = token.replace("-", "_")
            if scope in ALL_SCOPES:
                scopes.append(scope)
            else:
                unsupported.append(token)
        if unsupported:
            raise UnknownScope(unsupported, UnknownScope.NOT_SUPPORTED)

        return scopes

    def process_scope_option(self, included: str | None, excluded: str | None) -> list[str]:
        """Resolve ``--scope`` / ``--ignore-scope`` into the sorted scope list."""
        if included and excluded:
            raise InvalidCommandLine("You cannot provide the --scope and --ignore-scope option at the same time.")

        if included:
            return sorted(set(self.parse_scopes(included)))
        if excluded:
            ignored = set(self.parse_scopes(excluded))
            return [s for s in self.all_scopes() if s not in ignored]
        return self.all_scopes()

    def _resolve_alias(self, token: str) -> str:
        replacement = LEGACY_ALIASES.get(token)
        if replacement is None:
            return token
        if token not in self._deprecations_shown:
            self._deprecations_shown.add(token)
            self.warn(f"The scope name `{token}` is deprecated. The new name is `{replacement}`.")
        return replacement
