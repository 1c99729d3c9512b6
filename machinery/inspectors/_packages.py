"""Package manager inspectors.

Installed packages come from rpm or dpkg, patterns from zypper (SUSE) or
tasksel (Debian), repositories from the zypp, yum or apt configuration.
"""

from __future__ import annotations

import configparser
import logging
import shlex
from typing import TYPE_CHECKING

from lxml import etree

from machinery.inspectors._common import apply_filter, package_system

if TYPE_CHECKING:
    from pathlib import Path

    from machinery._types import CurrentUser, ExtractionOptions
    from machinery.filter import Filter
    from machinery.system import TargetSystem

logger = logging.getLogger(__name__)

RPM_QUERYFORMAT = r"%{NAME}\t%{VERSION}\t%{RELEASE}\t%{ARCH}\t%{VENDOR}\t%{SIGMD5}\n"
DPKG_SHOWFORMAT = r"${Package}\t${Version}\t${Architecture}\t${Maintainer}\t${db:Status-Abbrev}\n"

ZYPP_REPOS_DIR = "/etc/zypp/repos.d"
YUM_REPOS_DIR = "/etc/yum.repos.d"
APT_SOURCES = "/etc/apt/sources.list"
APT_SOURCES_DIR = "/etc/apt/sources.list.d"


# ── Packages ──────────────────────────────────────────────────────────────


def inspect_packages(
    system: TargetSystem,
    user: CurrentUser,
    filter: Filter,
    options: ExtractionOptions,
    *,
    files_dir: Path | None = None,
) -> dict:
    """List installed packages sorted by name and version."""
    pkg_system = package_system(system)
    if pkg_system == "rpm":
        result = system.run_checked(f"rpm -qa --queryformat {shlex.quote(RPM_QUERYFORMAT)}")
        packages = [_parse_rpm_line(line) for line in result.stdout.splitlines() if line.strip()]
    else:
        result = system.run_checked(f"dpkg-query --show --showformat={shlex.quote(DPKG_SHOWFORMAT)}")
        packages = [p for p in (_parse_dpkg_line(line) for line in result.stdout.splitlines()) if p]

    packages = apply_filter(packages, filter, "/packages/packages/name")
    packages.sort(key=lambda p: (p["name"], p["version"], p.get("release") or ""))
    return {"package_system": pkg_system, "packages": packages}


def _parse_rpm_line(line: str) -> dict:
    fields = (line.split("\t") + [""] * 6)[:6]
    name, version, release, arch, vendor, checksum = fields
    return {
        "name": name,
        "version": version,
        "release": release,
        "arch": arch,
        "vendor": None if vendor == "(none)" else vendor,
        "checksum": None if checksum == "(none)" else checksum,
    }


def _parse_dpkg_line(line: str) -> dict | None:
    fields = (line.split("\t") + [""] * 5)[:5]
    name, version, arch, maintainer, status = fields
    # Only fully installed packages ("ii")
    if not name or not status.startswith("ii"):
        return None
    return {"name": name, "version": version, "release": None, "arch": arch, "vendor": maintainer or None}


# ── Patterns ──────────────────────────────────────────────────────────────


def inspect_patterns(
    system: TargetSystem,
    user: CurrentUser,
    filter: Filter,
    options: ExtractionOptions,
    *,
    files_dir: Path | None = None,
) -> dict:
    """List installed patterns (zypper) or tasks (tasksel)."""
    if system.has_command("zypper"):
        result = system.run_checked("zypper --xmlout --non-interactive patterns --installed-only")
        patterns_system = "zypper"
        patterns = parse_zypper_patterns(result.stdout)
    elif system.has_command("tasksel"):
        result = system.run_checked("tasksel --list-tasks")
        patterns_system = "tasksel"
        patterns = parse_tasksel_tasks(result.stdout)
    else:
        logger.info("[%s] neither zypper nor tasksel available, no patterns", system.identifier)
        return {"patterns_system": None, "patterns": []}

    patterns = apply_filter(patterns, filter, "/patterns/patterns/name")
    patterns.sort(key=lambda p: p["name"])
    return {"patterns_system": patterns_system, "patterns": patterns}


def parse_zypper_patterns(xml: str) -> list[dict]:
    """Parse ``zypper --xmlout patterns`` output, keeping installed entries."""
    if not xml.strip():
        return []
    root = etree.fromstring(xml.encode("utf-8"), parser=etree.XMLParser(recover=True))
    if root is None:
        return []
    patterns = {}
    for node in root.iter("pattern"):
        installed = node.get("installed") == "true" or node.get("status") == "installed"
        if not installed or not node.get("name"):
            continue
        patterns[node.get("name")] = {
            "name": node.get("name"),
            "version": node.get("version"),
            "release": node.get("release"),
        }
    return list(patterns.values())


def parse_tasksel_tasks(text: str) -> list[dict]:
    """Parse ``tasksel --list-tasks``; installed tasks start with ``i``."""
    tasks = []
    for line in text.splitlines():
        parts = line.split(None, 2)
        if len(parts) >= 2 and parts[0] == "i":
            tasks.append({"name": parts[1]})
    return tasks


# ── Repositories ──────────────────────────────────────────────────────────


def inspect_repositories(
    system: TargetSystem,
    user: CurrentUser,
    filter: Filter,
    options: ExtractionOptions,
    *,
    files_dir: Path | None = None,
) -> dict:
    """Read the configured software repositories."""
    if package_system(system) == "dpkg":
        repository_system = "apt"
        repositories = _apt_repositories(system)
    else:
        repository_system = "zypp" if system.has_command("zypper") else "yum"
        repos_dir = ZYPP_REPOS_DIR if repository_system == "zypp" else YUM_REPOS_DIR
        repositories = []
        for path in _list_files(system, repos_dir, "*.repo"):
            content = system.read_file(path)
            if content:
                repositories.extend(parse_repo_file(content))

    repositories = apply_filter(repositories, filter, "/repositories/repositories/alias", key="alias")
    repositories.sort(key=lambda r: r["alias"])
    return {"repository_system": repository_system, "repositories": repositories}


def parse_repo_file(content: str) -> list[dict]:
    """Parse a zypp or yum ``.repo`` INI file."""
    parser = configparser.ConfigParser(interpolation=None, strict=False)
    parser.read_string(content)
    repositories = []
    for alias in parser.sections():
        section = parser[alias]
        priority = section.get("priority")
        repositories.append(
            {
                "alias": alias,
                "name": section.get("name", alias),
                "url": section.get("baseurl") or section.get("mirrorlist") or section.get("metalink"),
                "type": section.get("type"),
                "enabled": _ini_bool(section.get("enabled"), default=True),
                "gpgcheck": _ini_bool(section.get("gpgcheck"), default=True),
                "autorefresh": _ini_bool(section.get("autorefresh"), default=False),
                "priority": int(priority) if priority and priority.strip().isdigit() else None,
            }
        )
    return repositories


def _ini_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "yes", "true", "on")


def _apt_repositories(system: TargetSystem) -> list[dict]:
    paths = [APT_SOURCES] + _list_files(system, APT_SOURCES_DIR, "*.list")
    repositories = []
    for path in paths:
        content = system.read_file(path)
        if content:
            repositories.extend(parse_apt_sources(content))
    return repositories


def parse_apt_sources(content: str) -> list[dict]:
    """Parse one-line-style apt sources.

    ``deb [arch=amd64] http://deb.debian.org/debian bookworm main``
    """
    repositories = []
    for line in content.splitlines():
        line = line.split("#", 1)[0].strip()
        if not line:
            continue
        parts = line.split()
        if parts[0] not in ("deb", "deb-src"):
            continue
        rest = parts[1:]
        if rest and rest[0].startswith("["):
            while rest and not rest[0].endswith("]"):
                rest = rest[1:]
            rest = rest[1:]
        if len(rest) < 2:
            continue
        url, distribution, components = rest[0], rest[1], rest[2:]
        repositories.append(
            {
                "alias": f"{url} {distribution}",
                "name": f"{url} {distribution} {' '.join(components)}".strip(),
                "url": url,
                "type": parts[0],
                "distribution": distribution,
                "components": components,
                "enabled": True,
            }
        )
    return repositories


def _list_files(system: TargetSystem, directory: str, pattern: str) -> list[str]:
    result = system.run(
        f"find {shlex.quote(directory)} -maxdepth 1 -type f -name {shlex.quote(pattern)} 2>/dev/null"
    )
    return sorted(line for line in result.stdout.splitlines() if line.strip())
