"""User and group inspectors.

Both read the flat files in /etc. Shadow data is merged in when the remote
user is allowed to read it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from machinery.errors import MissingRequirement
from machinery.inspectors._common import apply_filter

if TYPE_CHECKING:
    from pathlib import Path

    from machinery._types import CurrentUser, ExtractionOptions
    from machinery.filter import Filter
    from machinery.system import TargetSystem

SHADOW_FIELDS = ("last_changed_date", "min_days", "max_days", "warn_days", "disable_days", "disabled_date")


def _int_or_none(value: str) -> int | None:
    return int(value) if value.strip().lstrip("-").isdigit() else None


def _read_required(system: TargetSystem, path: str) -> str:
    content = system.read_file(path)
    if content is None:
        raise MissingRequirement(f"Could not read {path} on '{system.identifier}'.")
    return content


def parse_passwd(passwd: str, shadow: str | None = None) -> list[dict]:
    """Parse /etc/passwd lines, merging /etc/shadow entries by name."""
    shadow_entries: dict[str, list[str]] = {}
    for line in (shadow or "").splitlines():
        fields = line.split(":")
        if len(fields) >= 2 and fields[0]:
            shadow_entries[fields[0]] = fields[1:]

    users = []
    for line in passwd.splitlines():
        fields = line.split(":")
        if len(fields) < 7 or not fields[0] or fields[0].startswith(("+", "-", "#")):
            continue
        name, password, uid, gid, comment, home, shell = fields[:7]
        user = {
            "name": name,
            "password": password,
            "uid": _int_or_none(uid),
            "gid": _int_or_none(gid),
            "comment": comment,
            "home": home,
            "shell": shell,
        }
        entry = shadow_entries.get(name)
        if entry:
            user["encrypted_password"] = entry[0]
            for key, value in zip(SHADOW_FIELDS, entry[1:]):
                user[key] = _int_or_none(value)
        users.append(user)
    return users


def parse_group(content: str) -> list[dict]:
    groups = []
    for line in content.splitlines():
        fields = line.split(":")
        if len(fields) < 4 or not fields[0] or fields[0].startswith(("+", "-", "#")):
            continue
        name, password, gid, members = fields[:4]
        groups.append(
            {
                "name": name,
                "password": password,
                "gid": _int_or_none(gid),
                "users": [m for m in members.split(",") if m],
            }
        )
    return groups


def inspect_users(
    system: TargetSystem,
    user: CurrentUser,
    filter: Filter,
    options: ExtractionOptions,
    *,
    files_dir: Path | None = None,
) -> dict:
    """List local user accounts sorted by name."""
    users = parse_passwd(_read_required(system, "/etc/passwd"), system.read_file("/etc/shadow"))
    users = apply_filter(users, filter, "/users/users/name")
    users.sort(key=lambda u: u["name"])
    return {"users": users}


def inspect_groups(
    system: TargetSystem,
    user: CurrentUser,
    filter: Filter,
    options: ExtractionOptions,
    *,
    files_dir: Path | None = None,
) -> dict:
    """List local groups sorted by name."""
    groups = parse_group(_read_required(system, "/etc/group"))
    groups = apply_filter(groups, filter, "/groups/groups/name")
    groups.sort(key=lambda g: g["name"])
    return {"groups": groups}
