"""Path based filters for inspected elements.

A filter is a flat list of ``<path>=<value>`` criteria. The path names an
attribute of an element inside a scope (``/unmanaged_files/files/name``),
the value is compared literally against that attribute. Elements matching
any criterion are left out of the description.

Criteria are kept exactly as they were typed so they can be stored in the
description and shown again by ``show --verbose``.

Example:
-------
    >>> from machinery.filter import Filter
    >>>
    >>> f = Filter(["/unmanaged_files/files/name=/tmp", "/packages/packages/name=vim"])
    >>> f.matches("/unmanaged_files/files/name", "/tmp")
    True
    >>> f.matches("/unmanaged_files/files/name", "/tmp/foo")
    False
    >>> f.criteria()
    ['/unmanaged_files/files/name=/tmp', '/packages/packages/name=vim']

"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from importlib import resources
from typing import Iterable

import yaml

from machinery.errors import InvalidFilter


class Operator(str, Enum):
    """Comparison operators supported by criteria."""

    EQUALS = "="


@dataclass(frozen=True)
class Criterion:
    """One parsed ``path=value`` rule."""

    path: str
    operator: Operator
    value: str

    @classmethod
    def parse(cls, text: str) -> Criterion:
        """Parse ``<path>=<value>``, splitting on the first ``=``."""
        path, sep, value = text.partition(Operator.EQUALS.value)
        if not sep:
            raise InvalidFilter(
                f"The filter criterion '{text}' is invalid. Expected the format '<path>=<value>'.",
                criterion=text,
            )
        return cls(path=path, operator=Operator.EQUALS, value=value)

    def __str__(self) -> str:
        return f"{self.path}{self.operator.value}{self.value}"


@dataclass
class ElementFilter:
    """All matchers registered for a single element path.

    Attributes:
        path: The element path the matchers apply to.
        matchers: Operator -> list of values, in the order they were added.

    """

    path: str
    matchers: dict[Operator, list[str]] = field(default_factory=dict)

    def matches(self, value: str) -> bool:
        """Return True if any equality matcher equals ``value``."""
        return value in self.matchers.get(Operator.EQUALS, [])

    def __bool__(self) -> bool:
        return any(self.matchers.values())


# ── Filter ─────────────────────────────────────────────────────────────────


class Filter:
    """Ordered collection of criteria answering membership queries."""

    def __init__(self, criteria: str | Iterable[str] | None = None):
        self._raw: list[str] = []
        self._parsed: list[Criterion] = []

        if criteria is None:
            return
        if isinstance(criteria, str):
            criteria = [criteria]
        for text in criteria:
            self.add_criterion(text)

    def add_criterion(self, text: str) -> None:
        """Parse and append a criterion. Existing criteria are left alone."""
        criterion = Criterion.parse(text)
        self._raw.append(text)
        self._parsed.append(criterion)

    def criteria(self) -> list[str]:
        """Return the criteria as originally added."""
        return list(self._raw)

    def element_filter_for(self, path: str) -> ElementFilter:
        """Return the matchers registered for exactly ``path``."""
        element_filter = ElementFilter(path=path)
        for criterion in self._parsed:
            if criterion.path == path:
                element_filter.matchers.setdefault(criterion.operator, []).append(criterion.value)
        return element_filter

    def matches(self, path: str, value: str) -> bool:
        """Return True if ``value`` is excluded at ``path``."""
        return any(
            c.path == path and c.operator is Operator.EQUALS and c.value == value for c in self._parsed
        )

    def criteria_for_scopes(self, scopes: Iterable[str]) -> list[str]:
        """Return the criteria whose path lies inside one of ``scopes``."""
        prefixes = [f"/{scope}" for scope in scopes]
        selected = []
        for raw, criterion in zip(self._raw, self._parsed):
            if any(criterion.path == p or criterion.path.startswith(p + "/") for p in prefixes):
                selected.append(raw)
        return selected

    def copy(self) -> Filter:
        return Filter(self._raw)

    def is_empty(self) -> bool:
        return not self._raw

    def __iter__(self):
        return iter(self._parsed)

    def __len__(self) -> int:
        return len(self._raw)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Filter):
            return NotImplemented
        return self._raw == other._raw

    def __repr__(self) -> str:
        return f"Filter({self._raw!r})"

    @classmethod
    def from_default_definition(cls, phase: str) -> Filter:
        """Build a filter from the bundled default criteria for ``phase``."""
        return cls(load_default_filters().get(phase, []))


# ── Defaults and command line helpers ─────────────────────────────────────


def load_default_filters() -> dict[str, list[str]]:
    """Load ``data/default_filters.yml`` shipped with the package."""
    text = resources.files("machinery").joinpath("data", "default_filters.yml").read_text()
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        return {}
    return {phase: [str(c) for c in (criteria or [])] for phase, criteria in data.items()}


_UNESCAPED_COMMA = re.compile(r"(?<!\\),")


def split_criteria(text: str | None) -> list[str]:
    """Split a comma separated ``--exclude`` value; ``\\,`` is a literal comma."""
    if not text:
        return []
    return [part.replace("\\,", ",") for part in _UNESCAPED_COMMA.split(text) if part]


def skip_files_criteria(text: str | None) -> list[str]:
    """Turn a ``--skip-files`` value into unmanaged files criteria.

    Entries are comma separated; ``@path`` reads one entry per line from a
    local file.
    """
    if not text:
        return []

    entries: list[str] = []
    for part in split_criteria(text):
        part = part.strip()
        if part.startswith("@"):
            with open(part[1:], encoding="utf-8") as fh:
                entries.extend(line.strip() for line in fh if line.strip())
        elif part:
            entries.append(part)
    return [f"/unmanaged_files/files/name={entry}" for entry in entries]
