"""Service inspector for systemd and SysV init."""

from __future__ import annotations

from typing import TYPE_CHECKING

from machinery.errors import MissingRequirement
from machinery.inspectors._common import apply_filter

if TYPE_CHECKING:
    from pathlib import Path

    from machinery._types import CurrentUser, ExtractionOptions
    from machinery.filter import Filter
    from machinery.system import TargetSystem


def parse_unit_files(text: str) -> list[dict]:
    """Parse ``systemctl list-unit-files`` without legend."""
    services = []
    for line in text.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[0].endswith((".service", ".socket")):
            services.append({"name": parts[0], "state": parts[1]})
    return services


def parse_chkconfig(text: str) -> list[dict]:
    """Parse ``chkconfig --list``; a service is on if runlevel 3 or 5 is on."""
    services = []
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 2 or ":" in parts[0]:
            continue
        levels = dict(p.split(":", 1) for p in parts[1:] if p[:1].isdigit() and ":" in p)
        if not levels:
            continue
        state = "on" if levels.get("3") == "on" or levels.get("5") == "on" else "off"
        services.append({"name": parts[0], "state": state})
    return services


def inspect_services(
    system: TargetSystem,
    user: CurrentUser,
    filter: Filter,
    options: ExtractionOptions,
    *,
    files_dir: Path | None = None,
) -> dict:
    """List services and their enablement state."""
    if system.has_command("systemctl"):
        init_system = "systemd"
        result = system.run_checked(
            "systemctl list-unit-files --type=service,socket --no-legend --no-pager --plain"
        )
        services = parse_unit_files(result.stdout)
    elif system.has_command("chkconfig"):
        init_system = "sysvinit"
        result = system.run_checked("chkconfig --list")
        services = parse_chkconfig(result.stdout)
    else:
        raise MissingRequirement(
            f"Services can only be inspected on systems using systemd or SysV init, '{system.identifier}' has neither."
        )

    services = apply_filter(services, filter, "/services/services/name")
    services.sort(key=lambda s: s["name"])
    return {"init_system": init_system, "services": services}
