"""Description validation and format upgrades."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Iterable

from machinery.description import (
    FORMAT_VERSION,
    SCOPE_MODELS,
    manifest_format_version,
    upgrade_manifest,
    validate_manifest,
)
from machinery.errors import DescriptionFormatTooNew, DescriptionValidationError, InvalidCommandLine
from machinery.store import check_format

if TYPE_CHECKING:
    from machinery.store import SystemDescriptionStore
    from machinery.ui import Ui

logger = logging.getLogger(__name__)

# Directory names of extracted files that were renamed between formats
LEGACY_FILE_DIRS = {"config_files": "changed_config_files"}


def file_problems(store: SystemDescriptionStore, name: str, data: dict) -> list[str]:
    """Check that every extracted file listed in the manifest exists on disk."""
    description_dir = store.description_path(name)
    if not description_dir.is_dir():
        return []

    problems = []
    for scope, payload in data.items():
        if scope not in SCOPE_MODELS or not isinstance(payload, dict) or not payload.get("extracted"):
            continue
        scope_dir = description_dir / scope
        if not scope_dir.is_dir():
            problems.append(f"Scope '{scope}' is marked as extracted but the directory {scope_dir} is missing.")
            continue
        for entry in payload.get("files", []):
            if entry.get("status") == "deleted":
                continue
            path = scope_dir / entry["name"].strip("/")
            if entry.get("type") == "dir":
                exists = path.is_dir()
            else:
                exists = path.exists() or path.is_symlink()
            if not exists:
                problems.append(f"File '{entry['name']}' of scope '{scope}' is missing from the description.")
    return problems


def validate_description(ui: Ui, store: SystemDescriptionStore, name: str) -> None:
    """Validate manifest and extracted files.

    Raises:
        DescriptionValidationError: If any problem was found.

    """
    data = store.load_raw(name)
    check_format(name, data)
    problems = validate_manifest(data) + file_problems(store, name, data)
    if problems:
        raise DescriptionValidationError(name, problems)
    ui.success(f"Validation of system description '{name}' succeeded.")


def upgrade_format(
    ui: Ui,
    store: SystemDescriptionStore,
    names: Iterable[str] = (),
    *,
    upgrade_all: bool = False,
    force: bool = False,
) -> None:
    """Migrate descriptions to the current manifest format.

    With ``force`` an upgraded manifest is written even if it does not
    validate.
    """
    names = list(names)
    if upgrade_all:
        names = store.list()
    elif not names:
        raise InvalidCommandLine("You need to specify a system description name or use --all.")

    for name in names:
        data = store.load_raw(name)
        version = manifest_format_version(data)
        if version > FORMAT_VERSION:
            raise DescriptionFormatTooNew(name, version)

        migrated, changed = upgrade_manifest(data)
        if not changed:
            ui.puts(f"The system description '{name}' is up to date.")
            continue

        problems = validate_manifest(migrated)
        if problems and not force:
            raise DescriptionValidationError(name, problems)
        for problem in problems:
            ui.warn(f"{name}: {problem}")

        store.write_manifest(name, migrated)
        _rename_file_dirs(store, name)
        logger.info("Upgraded '%s' from format %s to %s", name, version, FORMAT_VERSION)
        ui.puts(f"Upgraded system description '{name}' to format version {FORMAT_VERSION}.")


def _rename_file_dirs(store: SystemDescriptionStore, name: str) -> None:
    description_dir = store.description_path(name)
    for old, new in LEGACY_FILE_DIRS.items():
        if (description_dir / old).is_dir() and not (description_dir / new).exists():
            os.rename(description_dir / old, description_dir / new)
