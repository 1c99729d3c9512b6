"""System descriptions and their manifest format.

A description is the snapshot produced by one inspection run. On disk it
is a directory below the store's base path holding ``manifest.json`` and,
for scopes whose file contents were extracted, one sub directory per
scope with the retrieved files.

Manifest layout (format version 2)::

    {
      "packages": {"package_system": "rpm", "packages": [...]},
      ...
      "filters": {"inspect": ["/unmanaged_files/files/name=/tmp"], "show": []},
      "meta": {
        "format_version": 2,
        "packages": {"modified": "...", "hostname": "...", ...}
      }
    }

Format version 1 stored the changed configuration files under the key
``config_files`` and the filter definitions under ``meta.filters``.
``upgrade_manifest`` converts it.

Example:
-------
    >>> from machinery.description import SystemDescription
    >>>
    >>> description = SystemDescription("web01")
    >>> description.set_filter_definitions("inspect", ["/packages/packages/name=vim"])
    >>> description.to_dict()["filters"]
    {'inspect': ['/packages/packages/name=vim'], 'show': []}

"""

from __future__ import annotations

import copy
import re
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationError

from machinery.errors import InvalidCommandLine
from machinery.scopes import ALL_SCOPES

FORMAT_VERSION = 2
FILTER_PHASES = ("inspect", "show")

# Scopes whose files can be extracted into the description directory
FILE_SCOPES = ("changed_config_files", "changed_managed_files", "unmanaged_files")

VALID_NAME = re.compile(r"^[a-zA-Z0-9_:.\-]+$")
VALID_NAME_CHARS = "a-zA-Z0-9_:.-"


class ScopeMeta(BaseModel):
    """Provenance recorded for every inspected scope."""

    model_config = ConfigDict(extra="allow")

    modified: datetime
    hostname: str
    remote_user: str | None = None
    inspected_by: str | None = None


# ── Scope payload models ──────────────────────────────────────────────────


class _Payload(BaseModel):
    model_config = ConfigDict(extra="allow")


class OsPayload(_Payload):
    name: str
    version: str | None = None
    architecture: str | None = None


class Package(_Payload):
    name: str
    version: str
    release: str | None = None
    arch: str | None = None
    vendor: str | None = None
    checksum: str | None = None


class PackagesPayload(_Payload):
    package_system: Literal["rpm", "dpkg"]
    packages: list[Package]


class Pattern(_Payload):
    name: str
    version: str | None = None
    release: str | None = None


class PatternsPayload(_Payload):
    patterns_system: Literal["zypper", "tasksel"] | None = None
    patterns: list[Pattern]


class Repository(_Payload):
    alias: str
    name: str | None = None
    url: str | None = None
    enabled: bool = True
    gpgcheck: bool | None = None
    priority: int | None = None
    type: str | None = None


class RepositoriesPayload(_Payload):
    repository_system: Literal["zypp", "yum", "apt"]
    repositories: list[Repository]


class User(_Payload):
    name: str
    uid: int | None = None
    gid: int | None = None
    comment: str | None = None
    home: str | None = None
    shell: str | None = None
    encrypted_password: str | None = None


class UsersPayload(_Payload):
    users: list[User]


class Group(_Payload):
    name: str
    gid: int | None = None
    users: list[str] = []


class GroupsPayload(_Payload):
    groups: list[Group]


class Service(_Payload):
    name: str
    state: str


class ServicesPayload(_Payload):
    init_system: Literal["systemd", "sysvinit"]
    services: list[Service]


class FileEntry(_Payload):
    name: str
    type: Literal["file", "dir", "link"] = "file"
    package_name: str | None = None
    package_version: str | None = None
    status: str | None = None
    changes: list[str] = []


class FilesPayload(_Payload):
    extracted: bool = False
    files: list[FileEntry]


SCOPE_MODELS: dict[str, type[BaseModel]] = {
    "os": OsPayload,
    "packages": PackagesPayload,
    "patterns": PatternsPayload,
    "repositories": RepositoriesPayload,
    "users": UsersPayload,
    "groups": GroupsPayload,
    "services": ServicesPayload,
    "changed_config_files": FilesPayload,
    "changed_managed_files": FilesPayload,
    "unmanaged_files": FilesPayload,
}


# ── Description ───────────────────────────────────────────────────────────


class SystemDescription:
    """In-memory system description.

    Attributes:
        name: Description name, also the directory name in the store.
        format_version: Manifest format version.
        scopes: Scope id -> JSON compatible payload.
        meta: Scope id -> provenance dict.
        filters: Phase -> literal criterion strings.

    """

    def __init__(
        self,
        name: str,
        *,
        scopes: dict[str, Any] | None = None,
        meta: dict[str, dict[str, Any]] | None = None,
        filters: dict[str, list[str]] | None = None,
        format_version: int = FORMAT_VERSION,
    ):
        self.name = name
        self.format_version = format_version
        self.scopes: dict[str, Any] = dict(scopes or {})
        self.meta: dict[str, dict[str, Any]] = dict(meta or {})
        self.filters: dict[str, list[str]] = {phase: [] for phase in FILTER_PHASES}
        for phase, criteria in (filters or {}).items():
            self.filters[phase] = list(criteria)

    @staticmethod
    def validate_name(name: str) -> None:
        """Raise ``InvalidCommandLine`` unless ``name`` is usable as a directory name."""
        if not name or not VALID_NAME.match(name) or name.startswith("."):
            raise InvalidCommandLine(
                f"System description name '{name}' is invalid. Only '{VALID_NAME_CHARS}' are valid characters"
                " and the name must not start with a dot."
            )

    def set_scope(self, scope: str, payload: Any, meta: dict[str, Any] | None = None) -> None:
        self.scopes[scope] = payload
        if meta is not None:
            self.meta[scope] = dict(meta)

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes

    def scope_names(self) -> list[str]:
        return sorted(self.scopes)

    def set_filter_definitions(self, phase: str, criteria: list[str]) -> None:
        if phase not in FILTER_PHASES:
            raise ValueError(f"Unknown filter phase: {phase}")
        self.filters[phase] = list(criteria)

    def filter_definitions(self, phase: str) -> list[str]:
        return list(self.filters.get(phase, []))

    def extracted_scopes(self) -> list[str]:
        return [s for s in FILE_SCOPES if isinstance(self.scopes.get(s), dict) and self.scopes[s].get("extracted")]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {scope: copy.deepcopy(self.scopes[scope]) for scope in self.scope_names()}
        data["filters"] = {phase: list(criteria) for phase, criteria in self.filters.items()}
        meta: dict[str, Any] = {"format_version": self.format_version}
        meta.update({scope: dict(m) for scope, m in sorted(self.meta.items())})
        data["meta"] = meta
        return data

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> SystemDescription:
        data = dict(data)
        meta = dict(data.pop("meta", {}) or {})
        format_version = meta.pop("format_version", 1)
        filters = data.pop("filters", None) or {}
        return cls(
            name,
            scopes=data,
            meta={k: v for k, v in meta.items() if isinstance(v, dict)},
            filters=filters,
            format_version=format_version,
        )

    def __repr__(self) -> str:
        return f"SystemDescription(name={self.name!r}, scopes={self.scope_names()!r})"


# ── Manifest validation and migration ─────────────────────────────────────


def manifest_format_version(data: dict[str, Any]) -> int:
    """Return the format version of a raw manifest; unversioned ones are 1."""
    meta = data.get("meta") if isinstance(data, dict) else None
    if isinstance(meta, dict) and isinstance(meta.get("format_version"), int):
        return meta["format_version"]
    return 1


def validate_manifest(data: dict[str, Any]) -> list[str]:
    """Check a raw manifest against the scope models.

    Returns:
        A list of human readable problems, empty when the manifest is valid.

    """
    problems: list[str] = []
    if not isinstance(data, dict):
        return ["The manifest is not a JSON object."]

    for key, value in data.items():
        if key in ("meta", "filters"):
            continue
        if key not in ALL_SCOPES:
            problems.append(f"Unknown scope '{key}'.")
            continue
        problems.extend(_model_problems(key, SCOPE_MODELS[key], value))

    meta = data.get("meta", {})
    if not isinstance(meta, dict):
        problems.append("The 'meta' section is not a JSON object.")
    else:
        for scope, value in meta.items():
            if scope == "format_version":
                continue
            if scope not in data:
                problems.append(f"Metadata for scope '{scope}' which is not part of the description.")
                continue
            problems.extend(_model_problems(f"meta/{scope}", ScopeMeta, value))

    filters = data.get("filters", {})
    if not isinstance(filters, dict) or any(
        phase not in FILTER_PHASES or not isinstance(c, list) for phase, c in filters.items()
    ):
        problems.append("The 'filters' section must map 'inspect' and 'show' to lists of criteria.")
    return problems


def _model_problems(prefix: str, model: type[BaseModel], value: Any) -> list[str]:
    try:
        model.model_validate(value)
    except ValidationError as exc:
        return [f"{prefix}/{'/'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
    return []


def upgrade_manifest(data: dict[str, Any]) -> tuple[dict[str, Any], bool]:
    """Migrate a raw manifest to the current format.

    Returns:
        The migrated manifest and whether anything changed.

    """
    version = manifest_format_version(data)
    if version >= FORMAT_VERSION:
        return data, False

    data = copy.deepcopy(data)
    meta = dict(data.get("meta") or {})

    # 1 -> 2
    if "config_files" in data:
        data["changed_config_files"] = data.pop("config_files")
    if "config_files" in meta:
        meta["changed_config_files"] = meta.pop("config_files")
    filters = meta.pop("filters", None) or {}
    data["filters"] = {phase: list(filters.get(phase, [])) for phase in FILTER_PHASES}

    meta["format_version"] = FORMAT_VERSION
    data["meta"] = meta
    return data, True
