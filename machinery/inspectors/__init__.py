"""Per-scope inspectors.

Every scope has one inspector function with the signature::

    inspect(system, user, filter, options, *, files_dir) -> dict

It runs commands on the connected target, drops elements excluded by the
filter and returns the JSON compatible payload stored under the scope's key.
``files_dir`` is the staging directory for extracted file contents, or
None when nothing is extracted.

Inspector Modules:
    - _os: os
    - _packages: packages, patterns, repositories
    - _accounts: users, groups
    - _services: services
    - _files: changed_config_files, changed_managed_files, unmanaged_files

Example:
-------
    >>> from machinery.inspectors import INSPECTORS
    >>> payload = INSPECTORS["packages"].function(system, user, Filter(), ExtractionOptions(), files_dir=None)
    >>> payload["package_system"]
    'rpm'

"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from machinery.inspectors._accounts import inspect_groups, inspect_users
from machinery.inspectors._files import (
    inspect_changed_config_files,
    inspect_changed_managed_files,
    inspect_unmanaged_files,
)
from machinery.inspectors._os import inspect_os
from machinery.inspectors._packages import inspect_packages, inspect_patterns, inspect_repositories
from machinery.inspectors._services import inspect_services


@dataclass(frozen=True)
class Inspector:
    """Registry entry for one scope.

    Attributes:
        scope: Internal scope id.
        function: The inspector callable.
        extraction_flag: Name of the ``ExtractionOptions`` field that makes
            this inspector retrieve file contents, or None.

    """

    scope: str
    function: Callable[..., dict]
    extraction_flag: str | None = None


# ── Inspector registry ────────────────────────────────────────────────────

INSPECTORS: dict[str, Inspector] = {
    "changed_config_files": Inspector(
        "changed_config_files", inspect_changed_config_files, "extract_changed_changed_config_files"
    ),
    "changed_managed_files": Inspector(
        "changed_managed_files", inspect_changed_managed_files, "extract_changed_managed_files"
    ),
    "groups": Inspector("groups", inspect_groups),
    "os": Inspector("os", inspect_os),
    "packages": Inspector("packages", inspect_packages),
    "patterns": Inspector("patterns", inspect_patterns),
    "repositories": Inspector("repositories", inspect_repositories),
    "services": Inspector("services", inspect_services),
    "unmanaged_files": Inspector("unmanaged_files", inspect_unmanaged_files, "extract_unmanaged_files"),
    "users": Inspector("users", inspect_users),
}
