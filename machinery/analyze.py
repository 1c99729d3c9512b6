"""Analysis operations on stored descriptions.

The only operation, ``changed-config-files-diffs``, compares every
extracted changed configuration file with the version shipped in its
package and stores a unified diff per file in
``<description>/analyze/changed_config_files_diffs/``. ``show --show-diffs``
prints them.
"""

from __future__ import annotations

import difflib
import logging
import shlex
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from machinery.errors import DescriptionError, InvalidCommandLine, MissingRequirement
from machinery.show import DIFFS_DIR
from machinery.system import LocalSystem

if TYPE_CHECKING:
    from machinery.description import SystemDescription
    from machinery.store import SystemDescriptionStore
    from machinery.ui import Ui

logger = logging.getLogger(__name__)


def _find_package(package_dir: Path, name: str, version: str | None) -> Path | None:
    patterns = [f"{name}-{version}-*.rpm", f"{name}_{version}_*.deb"] if version else []
    patterns += [f"{name}-[0-9]*.rpm", f"{name}_*.deb"]
    for pattern in patterns:
        matches = sorted(package_dir.glob(pattern))
        if matches:
            return matches[0]
    return None


def _original_content(local: LocalSystem, package: Path, path: str) -> str | None:
    member = shlex.quote("." + path)
    if package.suffix == ".rpm":
        cmd = f"rpm2cpio {shlex.quote(str(package))} | cpio --quiet -i --to-stdout {member}"
    else:
        cmd = f"dpkg-deb --fsys-tarfile {shlex.quote(str(package))} | tar -xO {member}"
    result = local.run(cmd)
    return result.stdout + "\n" if result.ok else None


def changed_config_files_diffs(
    ui: Ui,
    store: SystemDescriptionStore,
    description: SystemDescription,
    *,
    package_dir: Path | None = None,
    local: LocalSystem | None = None,
) -> int:
    """Write diffs of changed configuration files against their packages.

    Returns:
        Number of diffs written.

    """
    local = local or LocalSystem()
    if package_dir is None:
        raise InvalidCommandLine("The operation 'changed-config-files-diffs' needs the --package-dir option.")
    package_dir = Path(package_dir)
    if not package_dir.is_dir():
        raise InvalidCommandLine(f"The package directory '{package_dir}' does not exist.")

    if "changed_config_files" not in description.extracted_scopes():
        raise DescriptionError(
            f"The changed configuration files of '{description.name}' were not extracted. Inspect the system"
            " with '--extract-changed-config-files' first."
        )
    tools = []
    if any(package_dir.glob("*.rpm")):
        tools += ["rpm2cpio", "cpio"]
    if any(package_dir.glob("*.deb")):
        tools.append("dpkg-deb")
    for tool in tools:
        if not local.has_command(tool):
            raise MissingRequirement(f"Analyzing packages requires '{tool}' to be installed.")

    description_dir = store.description_path(description.name)
    files_dir = description_dir / "changed_config_files"
    diffs_dir = description_dir / DIFFS_DIR

    written = 0
    for entry in description.scopes["changed_config_files"].get("files", []):
        if entry.get("status") == "deleted" or entry.get("type", "file") != "file":
            continue
        name = entry["name"]
        package = _find_package(package_dir, entry.get("package_name") or "", entry.get("package_version"))
        if package is None:
            ui.warn(f"Could not find the package '{entry.get('package_name')}' for {name} in {package_dir}.")
            continue
        original = _original_content(local, package, name)
        current_file = files_dir / name.lstrip("/")
        if original is None or not current_file.is_file():
            ui.warn(f"Could not compare {name}.")
            continue

        diff = "".join(
            difflib.unified_diff(
                original.splitlines(keepends=True),
                current_file.read_text(encoding="utf-8", errors="replace").splitlines(keepends=True),
                fromfile=f"{package.name}:{name}",
                tofile=name,
            )
        )
        target = diffs_dir / (name.lstrip("/") + ".diff")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(diff, encoding="utf-8")
        written += 1

    logger.info("Wrote %d diffs for '%s'", written, description.name)
    ui.puts(f"Generated {written} diffs for '{description.name}'.")
    return written


OPERATIONS: dict[str, Callable[..., int]] = {
    "changed-config-files-diffs": changed_config_files_diffs,
}


def analyze(ui: Ui, store: SystemDescriptionStore, name: str, operation: str, **kwargs) -> int:
    if operation not in OPERATIONS:
        raise InvalidCommandLine(
            f"The operation '{operation}' is not supported. Valid operations are: {', '.join(OPERATIONS)}."
        )
    description = store.load(name)
    return OPERATIONS[operation](ui, store, description, **kwargs)
