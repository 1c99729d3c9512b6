"""File inspectors.

Changed files are the files the package manager reports as modified
(``rpm -Va`` / ``dpkg --verify``), split into configuration files and other
managed files. Unmanaged files are the files on the root file system that
no package owns.

All three can optionally retrieve the file contents into the description.
"""

from __future__ import annotations

import logging
import posixpath
import re
import shlex
from typing import TYPE_CHECKING, Iterable

from machinery.errors import ExternalCommandFailed
from machinery.filter import Operator
from machinery.inspectors._common import apply_filter, extract_files, package_system

if TYPE_CHECKING:
    from pathlib import Path

    from machinery._types import CurrentUser, ExtractionOptions
    from machinery.filter import Filter
    from machinery.system import Result, TargetSystem

logger = logging.getLogger(__name__)

BATCH_SIZE = 200

VERIFY_LINE = re.compile(r"^(?P<flags>[.?SM5DLUGTP]{8,9}|missing)\s+(?:(?P<attr>[cdglr])\s+)?(?P<path>/.*)$")

CHANGE_NAMES = {
    "S": "size",
    "M": "mode",
    "5": "md5",
    "D": "device_number",
    "L": "link_path",
    "U": "user",
    "G": "group",
    "T": "time",
    "P": "capabilities",
}

STAT_TYPES = {"regular file": "file", "regular empty file": "file", "directory": "dir", "symbolic link": "link"}

RPM_VERIFY = "rpm -Va --nodeps --nodigest --nosignature --nomtime --nolinkto --noscripts"
DPKG_VERIFY = "dpkg --verify"

RPM_OWNER = (
    'pkg=$(rpm -qf --queryformat "%{NAME}\\t%{VERSION}\\n" "$f" 2>/dev/null | head -n1); '
    'printf "%s\\t%s\\n" "$f" "$pkg"'
)
DPKG_OWNER = (
    'pkg=$(dpkg-query -S "$f" 2>/dev/null | head -n1 | cut -d: -f1 | cut -d, -f1); '
    'ver=$(dpkg-query -W -f \'${Version}\' "$pkg" 2>/dev/null); '
    'printf "%s\\t%s\\t%s\\n" "$f" "$pkg" "$ver"'
)


def _batches(items: list[str]) -> Iterable[list[str]]:
    for start in range(0, len(items), BATCH_SIZE):
        yield items[start : start + BATCH_SIZE]


def _tolerant(result: Result, cmd: str) -> str:
    """Return stdout of a command that exits non-zero when it finds something."""
    if not result.ok and not result.stdout.strip():
        raise ExternalCommandFailed(cmd, result.exit_code, result.stdout, result.stderr)
    return result.stdout


# ── Changed files ─────────────────────────────────────────────────────────


def parse_verify_output(text: str) -> list[dict]:
    """Parse ``rpm -Va`` / ``dpkg --verify`` lines.

    Returns:
        Dicts with ``name``, ``config`` (bool), ``deleted`` (bool) and
        ``changes`` (list of attribute names).

    """
    entries = []
    for line in text.splitlines():
        match = VERIFY_LINE.match(line.rstrip())
        if not match:
            continue
        flags = match.group("flags")
        deleted = flags == "missing"
        changes = ["deleted"] if deleted else [CHANGE_NAMES[c] for c in flags if c in CHANGE_NAMES]
        entries.append(
            {
                "name": match.group("path"),
                "config": match.group("attr") == "c",
                "deleted": deleted,
                "changes": changes,
            }
        )
    return entries


def _owning_packages(system: TargetSystem, pkg_system: str, paths: list[str]) -> dict[str, tuple[str, str]]:
    template = RPM_OWNER if pkg_system == "rpm" else DPKG_OWNER
    owners: dict[str, tuple[str, str]] = {}
    for batch in _batches(paths):
        script = "for f in " + " ".join(shlex.quote(p) for p in batch) + "; do " + template + "; done"
        for line in system.run_checked(script).stdout.splitlines():
            fields = (line.split("\t") + ["", ""])[:3]
            if fields[0]:
                owners[fields[0]] = (fields[1], fields[2])
    return owners


def _stat(system: TargetSystem, paths: list[str]) -> dict[str, dict]:
    stats: dict[str, dict] = {}
    for batch in _batches(paths):
        cmd = "stat --printf '%n\\t%a\\t%U\\t%G\\t%F\\n' " + " ".join(shlex.quote(p) for p in batch)
        for line in system.run(cmd).stdout.splitlines():
            fields = line.split("\t")
            if len(fields) == 5:
                name, mode, owner, group, kind = fields
                stats[name] = {"mode": mode, "user": owner, "group": group, "type": STAT_TYPES.get(kind, "file")}
    return stats


def _inspect_changed_files(
    scope: str,
    config: bool,
    flag: str,
    system: TargetSystem,
    filter: Filter,
    options: ExtractionOptions,
    files_dir: Path | None,
) -> dict:
    pkg_system = package_system(system)
    cmd = RPM_VERIFY if pkg_system == "rpm" else DPKG_VERIFY
    entries = [e for e in parse_verify_output(_tolerant(system.run(cmd), cmd)) if e["config"] == config]
    entries = apply_filter(entries, filter, f"/{scope}/files/name")

    paths = [e["name"] for e in entries]
    owners = _owning_packages(system, pkg_system, paths) if paths else {}
    stats = _stat(system, [e["name"] for e in entries if not e["deleted"]]) if paths else {}

    files = []
    for entry in entries:
        name = entry["name"]
        package_name, package_version = owners.get(name, ("", ""))
        record = {
            "name": name,
            "package_name": package_name or None,
            "package_version": package_version or None,
            "status": "deleted" if entry["deleted"] else "changed",
            "changes": entry["changes"],
            "type": "file",
        }
        record.update(stats.get(name, {}))
        files.append(record)
    files.sort(key=lambda f: f["name"])

    extracted = False
    if options.enabled(flag):
        retrievable = [f["name"] for f in files if f["status"] != "deleted" and f["type"] != "dir"]
        extracted = extract_files(system, retrievable, files_dir, scope)
    return {"extracted": extracted, "files": files}


def inspect_changed_config_files(
    system: TargetSystem,
    user: CurrentUser,
    filter: Filter,
    options: ExtractionOptions,
    *,
    files_dir: Path | None = None,
) -> dict:
    """List configuration files modified since package installation."""
    return _inspect_changed_files(
        "changed_config_files", True, "extract_changed_changed_config_files", system, filter, options, files_dir
    )


def inspect_changed_managed_files(
    system: TargetSystem,
    user: CurrentUser,
    filter: Filter,
    options: ExtractionOptions,
    *,
    files_dir: Path | None = None,
) -> dict:
    """List non-configuration package files modified since installation."""
    return _inspect_changed_files(
        "changed_managed_files", False, "extract_changed_managed_files", system, filter, options, files_dir
    )


# ── Unmanaged files ───────────────────────────────────────────────────────


def _managed_paths(system: TargetSystem, pkg_system: str) -> set[str]:
    if pkg_system == "rpm":
        cmd = "rpm -qa --queryformat '[%{FILENAMES}\\n]'"
        output = system.run_checked(cmd).stdout
    else:
        cmd = "cat /var/lib/dpkg/info/*.list"
        output = _tolerant(system.run(cmd), cmd)
    return {line.rstrip("/") or "/" for line in output.splitlines() if line.startswith("/")}


def _ancestors(path: str) -> Iterable[str]:
    parent = posixpath.dirname(path)
    while parent and parent != path:
        yield parent
        if parent == "/":
            return
        path, parent = parent, posixpath.dirname(parent)


def find_command(pruned: Iterable[str]) -> str:
    """Build the ``find`` walk of the root file system skipping ``pruned``."""
    pruned = sorted({p.rstrip("/") for p in pruned if p.rstrip("/")})
    cmd = "find / -xdev"
    if pruned:
        alternatives = " -o ".join(f"-path {shlex.quote(p)}" for p in pruned)
        cmd += f" \\( {alternatives} \\) -prune -o"
    return cmd + " -printf '%y\\t%p\\n' 2>/dev/null"


def unmanaged_entries(walk: Iterable[tuple[str, str]], managed: set[str]) -> list[dict]:
    """Compute unmanaged files from ``(type, path)`` pairs of a file system walk.

    A directory that neither belongs to a package nor contains packaged
    files is reported once with a trailing slash; its content is not listed.
    """
    managed_dirs: set[str] = set()
    for path in managed:
        managed_dirs.update(_ancestors(path))

    unmanaged_dirs: set[str] = set()
    files = []
    for kind, path in sorted(walk, key=lambda e: e[1].split("/")):
        if path == "/" or path in managed or path in managed_dirs:
            continue
        if any(a in unmanaged_dirs for a in _ancestors(path)):
            continue
        if kind == "d":
            unmanaged_dirs.add(path)
            files.append({"name": path + "/", "type": "dir"})
        else:
            files.append({"name": path, "type": "link" if kind == "l" else "file"})
    return files


def inspect_unmanaged_files(
    system: TargetSystem,
    user: CurrentUser,
    filter: Filter,
    options: ExtractionOptions,
    *,
    files_dir: Path | None = None,
) -> dict:
    """List files and directories on the root file system owned by no package."""
    pkg_system = package_system(system)
    managed = _managed_paths(system, pkg_system)

    element_filter = filter.element_filter_for("/unmanaged_files/files/name")
    pruned = element_filter.matchers.get(Operator.EQUALS, [])
    cmd = find_command(pruned)
    walk = []
    for line in _tolerant(system.run(cmd), cmd).splitlines():
        kind, sep, path = line.partition("\t")
        if sep:
            walk.append((kind, path))

    files = [
        f
        for f in unmanaged_entries(walk, managed)
        if not (element_filter.matches(f["name"]) or element_filter.matches(f["name"].rstrip("/")))
    ]
    logger.info("[%s] found %d unmanaged files", system.identifier, len(files))

    extracted = False
    if options.enabled("extract_unmanaged_files"):
        extracted = extract_files(system, [f["name"].rstrip("/") for f in files], files_dir, "unmanaged_files")
    return {"extracted": extracted, "files": files}
