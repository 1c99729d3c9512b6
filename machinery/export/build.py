"""Image building through kiwi-ng on the local machine."""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from machinery._types import CurrentUser
from machinery.errors import MissingRequirement
from machinery.export.kiwi import KiwiConfig
from machinery.system import LocalSystem

if TYPE_CHECKING:
    from machinery.description import SystemDescription
    from machinery.ui import Ui

logger = logging.getLogger(__name__)

KIWI = "kiwi-ng"


class BuildTask:
    """Exports a description to KIWI format in a temporary directory and builds it."""

    def __init__(self, ui: Ui, local: LocalSystem | None = None, user: CurrentUser | None = None):
        self.ui = ui
        self.local = local or LocalSystem()
        self.user = user or CurrentUser.capture()

    def build(
        self,
        description: SystemDescription,
        image_dir: Path,
        *,
        description_dir: Path | None = None,
        enable_dhcp: bool = False,
        enable_ssh: bool = False,
    ) -> None:
        if not self.user.is_root:
            raise MissingRequirement("Building images requires root privileges.")
        if not self.local.has_command(KIWI):
            raise MissingRequirement(f"Building images requires '{KIWI}' to be installed.")

        config = KiwiConfig(description, description_dir, enable_dhcp=enable_dhcp, enable_ssh=enable_ssh)
        image_dir = Path(image_dir)
        image_dir.mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory(prefix="machinery-kiwi-") as tmp:
            kiwi_dir = Path(tmp) / config.directory_name
            kiwi_dir.mkdir()
            config.write(kiwi_dir)
            self.ui.puts(f"Building image for '{description.name}' in {image_dir}...")
            self.local.run_argv(
                [KIWI, "system", "build", "--description", str(kiwi_dir), "--target-dir", str(image_dir)],
                check=True,
            )
        logger.info("Built image for '%s' into %s", description.name, image_dir)
        self.ui.success(f"The image was built in {image_dir}.")
