"""Operating system detection.

Platform info is detected from /etc/os-release with fallbacks to
/etc/SuSE-release, /etc/redhat-release and /etc/debian_version. Distribution
ids are normalized into families:

- SUSE Linux Enterprise (sles, sled, sles_sap, sle_hpc) -> "sle"
- openSUSE variants -> "opensuse"
- RHEL derivatives (rhel, centos, rocky, almalinux, ol) -> "rhel"

The same detection serves two purposes: the ``os`` inspector describes the
target, and the error classifier decides which support banner to print
based on the local machine.

Example:
-------
    >>> from machinery.system import LocalSystem
    >>> from machinery.detect import detect_platform, is_commercially_supported
    >>>
    >>> platform = detect_platform(LocalSystem())
    >>> print(f"Detected: {platform.family} {platform.version_id}")
    >>> is_commercially_supported(platform)
    False

"""

from __future__ import annotations

import re
from collections import namedtuple
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from machinery.system import TargetSystem


PlatformInfo = namedtuple("PlatformInfo", ["id", "family", "name", "version_id", "version", "pretty_name"])
"""Platform information.

Attributes:
    id (str): Distribution id from os-release (e.g., "sles", "ubuntu").
    family (str): Normalized family (e.g., "sle", "opensuse", "rhel").
    name (str): Distribution name (e.g., "SUSE Linux Enterprise Server").
    version_id (str): Machine readable version (e.g., "15.5").
    version (str): Human readable version (e.g., "15-SP5").
    pretty_name (str): Full display name.
"""

SLE_FAMILY = {"sles", "sled", "sles_sap", "sle_hpc", "sle-micro"}
RHEL_FAMILY = {"rhel", "centos", "rocky", "almalinux", "ol"}

# Families for which a paid support channel exists
COMMERCIAL_FAMILIES = {"sle"}


def normalize_family(os_id: str) -> str:
    os_id = os_id.lower()
    if os_id in SLE_FAMILY:
        return "sle"
    if os_id.startswith("opensuse"):
        return "opensuse"
    if os_id in RHEL_FAMILY:
        return "rhel"
    return os_id


def parse_os_release(text: str) -> dict[str, str]:
    """Parse os-release ``KEY="value"`` lines into a dict."""
    fields: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        k, _, v = line.partition("=")
        fields[k.strip()] = v.strip().strip('"').strip("'")
    return fields


def detect_platform(system: TargetSystem) -> PlatformInfo | None:
    """Detect the operating system of ``system``.

    Args:
        system: Connected system to probe.

    Returns:
        PlatformInfo on success, None if no release file could be read.

    """
    # Try /etc/os-release first (covers most modern distros)
    content = system.read_file("/etc/os-release")
    if content and content.strip():
        fields = parse_os_release(content)
        os_id = fields.get("ID", "").lower()
        name = fields.get("NAME", os_id)
        return PlatformInfo(
            id=os_id,
            family=normalize_family(os_id),
            name=name,
            version_id=fields.get("VERSION_ID", ""),
            version=fields.get("VERSION", fields.get("VERSION_ID", "")),
            pretty_name=fields.get("PRETTY_NAME", name),
        )

    # Fallback: /etc/SuSE-release on old SUSE systems
    content = system.read_file("/etc/SuSE-release")
    if content and content.strip():
        first_line = content.strip().splitlines()[0]
        release = parse_os_release(content)
        version = release.get("VERSION", "")
        if release.get("PATCHLEVEL", "0") not in ("", "0"):
            version = f"{version} SP{release['PATCHLEVEL']}"
        os_id = "sles" if "enterprise" in first_line.lower() else "opensuse"
        return PlatformInfo(os_id, normalize_family(os_id), first_line, version, version, first_line)

    # Fallback: /etc/redhat-release for older RHEL/CentOS
    content = system.read_file("/etc/redhat-release")
    if content and content.strip():
        line = content.strip().splitlines()[0]
        match = re.search(r"(\d+(?:\.\d+)*)", line)
        version = match.group(1) if match else ""
        name = line.split(" release")[0]
        return PlatformInfo("rhel", "rhel", name, version, version, line)

    # Fallback: /etc/debian_version for Debian-based
    content = system.read_file("/etc/debian_version")
    if content and content.strip():
        version = content.strip()
        return PlatformInfo("debian", "debian", "Debian GNU/Linux", version, version, f"Debian GNU/Linux {version}")

    return None


def is_commercially_supported(platform: PlatformInfo | None) -> bool:
    """Return True if ``platform`` belongs to a family with paid support."""
    return platform is not None and platform.family in COMMERCIAL_FAMILIES
