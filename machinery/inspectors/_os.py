"""Operating system inspector."""

from __future__ import annotations

from typing import TYPE_CHECKING

from machinery.detect import detect_platform

if TYPE_CHECKING:
    from pathlib import Path

    from machinery._types import CurrentUser, ExtractionOptions
    from machinery.filter import Filter
    from machinery.system import TargetSystem


def inspect_os(
    system: TargetSystem,
    user: CurrentUser,
    filter: Filter,
    options: ExtractionOptions,
    *,
    files_dir: Path | None = None,
) -> dict:
    """Describe the distribution and the machine architecture.

    Returns:
        Dict with ``name``, ``version`` and ``architecture`` plus the
        normalized ``id`` and ``family`` used by the exporters.

    """
    platform = detect_platform(system)
    arch = system.run("uname -m")
    architecture = arch.stdout.strip() if arch.ok else None

    if platform is None:
        return {"name": "Unknown", "version": None, "architecture": architecture, "id": None, "family": None}

    return {
        "name": platform.name,
        "version": platform.version,
        "architecture": architecture,
        "id": platform.id,
        "family": platform.family,
    }
