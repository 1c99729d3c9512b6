"""Exports of system descriptions to provisioning formats.

Exporters:
    - kiwi: KIWI NG image description (config.xml, config.sh, root overlay)
    - autoyast: AutoYaST profile (autoinst.xml plus extracted files)

Example:
-------
    >>> from machinery.export import ExportTask
    >>> from machinery.export.kiwi import KiwiConfig
    >>>
    >>> task = ExportTask(ui, KiwiConfig(description, description_dir))
    >>> task.export(Path("/tmp/export"), force=False)

"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

from machinery.errors import ExportFailed
from machinery.scopes import cli_name

if TYPE_CHECKING:
    from machinery.description import SystemDescription
    from machinery.ui import Ui

logger = logging.getLogger(__name__)


def require_scopes(description: SystemDescription, scopes: Iterable[str]) -> None:
    """Raise ``ExportFailed`` if ``description`` lacks any of ``scopes``."""
    missing = [cli_name(s) for s in scopes if not description.has_scope(s)]
    if missing:
        raise ExportFailed(
            "The system description is missing the following scopes which are required for this operation: "
            + ", ".join(missing)
            + "."
        )


class Exporter:
    """Interface of an export format."""

    #: Suffix of the created directory, ``<name>-<suffix>``
    suffix = ""

    def __init__(self, description: SystemDescription, description_dir: Path | None = None):
        self.description = description
        self.description_dir = description_dir

    @property
    def directory_name(self) -> str:
        return f"{self.description.name}-{self.suffix}"

    def write(self, output_dir: Path) -> None:
        raise NotImplementedError

    def extracted_dir(self, scope: str) -> Path | None:
        if self.description_dir is None or scope not in self.description.extracted_scopes():
            return None
        path = self.description_dir / scope
        return path if path.is_dir() else None


class ExportTask:
    """Writes one export into ``<output dir>/<name>-<format>``."""

    def __init__(self, ui: Ui, exporter: Exporter):
        self.ui = ui
        self.exporter = exporter

    def export(self, output_dir: Path, *, force: bool = False) -> Path:
        target = Path(output_dir) / self.exporter.directory_name
        if target.exists():
            if not force:
                raise ExportFailed(
                    f"The output directory '{target}' already exists."
                    " You can force overwriting it with the '--force' option."
                )
            shutil.rmtree(target)

        target.mkdir(parents=True)
        self.exporter.write(target)
        logger.info("Exported '%s' to %s", self.exporter.description.name, target)
        self.ui.puts(f"Exported to '{target}'.")
        return target
