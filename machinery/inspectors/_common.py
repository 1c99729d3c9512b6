"""Helpers shared by the inspectors."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

from machinery.errors import MissingRequirement

if TYPE_CHECKING:
    from machinery.filter import Filter
    from machinery.system import TargetSystem

logger = logging.getLogger(__name__)


def package_system(system: TargetSystem) -> str:
    """Return "rpm" or "dpkg" depending on the target's package manager."""
    if system.has_command("rpm"):
        return "rpm"
    if system.has_command("dpkg"):
        return "dpkg"
    raise MissingRequirement(
        f"Need either 'rpm' or 'dpkg' on the inspected system '{system.identifier}' to inspect packages."
    )


def apply_filter(elements: Iterable[dict], filter: Filter, path: str, key: str = "name") -> list[dict]:
    """Drop the elements whose ``key`` attribute is excluded at ``path``."""
    element_filter = filter.element_filter_for(path)
    if not element_filter:
        return list(elements)
    kept = []
    for element in elements:
        if element_filter.matches(str(element.get(key, ""))):
            logger.debug("Filtered %s=%s", path, element.get(key))
            continue
        kept.append(element)
    return kept


def extract_files(system: TargetSystem, paths: list[str], files_dir: Path | None, scope: str) -> bool:
    """Retrieve ``paths`` into ``files_dir/<scope>``.

    Returns:
        True if files were extracted.

    """
    if files_dir is None:
        return False
    destination = files_dir / scope
    destination.mkdir(parents=True, exist_ok=True)
    if paths:
        system.retrieve_files(paths, destination)
    return True
