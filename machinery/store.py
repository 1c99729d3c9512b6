"""Description persistence.

Descriptions are directories below the store's base path::

    ~/.machinery/
        web01/
            manifest.json
            unmanaged_files/...
        machinery.log
        machinery_config.yml

The base path is ``$MACHINERY_DIR`` when set, ``~/.machinery`` otherwise.
Saving never leaves a half written description visible: the new directory
is assembled next to the old one under a hidden name and swapped in with
renames.

Example:
-------
    >>> from machinery.store import SystemDescriptionStore
    >>>
    >>> store = SystemDescriptionStore()
    >>> store.list()
    ['db01', 'web01']
    >>> description = store.load("web01")

"""

from __future__ import annotations

import copy
import json
import logging
import os
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Any

from machinery._config import Settings
from machinery.description import FORMAT_VERSION, SystemDescription, manifest_format_version
from machinery.errors import (
    DescriptionAlreadyExists,
    DescriptionError,
    DescriptionFormatTooNew,
    DescriptionFormatTooOld,
    DescriptionNotFound,
)

logger = logging.getLogger(__name__)

MANIFEST = "manifest.json"


class SystemDescriptionStore:
    """Directory backed description store.

    Attributes:
        base_path: Directory holding one sub directory per description.

    """

    def __init__(self, base_path: Path | str | None = None):
        self._base_path = Path(base_path) if base_path else None

    @staticmethod
    def default_path() -> Path:
        """Return the base path from the environment, read on every call."""
        return Settings().dir

    @property
    def base_path(self) -> Path:
        return self._base_path or self.default_path()

    def description_path(self, name: str) -> Path:
        return self.base_path / name

    def manifest_path(self, name: str) -> Path:
        return self.description_path(name) / MANIFEST

    # ── Queries ──

    def list(self) -> list[str]:
        if not self.base_path.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.base_path.iterdir()
            if entry.is_dir() and not entry.name.startswith(".") and (entry / MANIFEST).is_file()
        )

    def exists(self, name: str) -> bool:
        return self.manifest_path(name).is_file()

    def load_raw(self, name: str) -> dict[str, Any]:
        """Return the parsed manifest without any format checks."""
        path = self.manifest_path(name)
        if not path.is_file():
            raise DescriptionNotFound(name)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise DescriptionError(
                f"The system description '{name}' contains invalid JSON in {path}: {exc.msg} "
                f"(line {exc.lineno}, column {exc.colno})."
            ) from exc
        if not isinstance(data, dict):
            raise DescriptionError(f"The manifest of system description '{name}' is not a JSON object.")
        return data

    def load(self, name: str) -> SystemDescription:
        SystemDescription.validate_name(name)
        data = self.load_raw(name)
        check_format(name, data)
        return SystemDescription.from_dict(name, data)

    # ── Mutations ──

    def save(self, description: SystemDescription, staging: Path | None = None) -> Path:
        """Persist ``description``, replacing any previous one of the same name.

        Args:
            description: The description to write.
            staging: Directory with extracted files, created by
                ``create_staging_area``. It becomes the description directory.

        Returns:
            The description directory.

        """
        name = description.name
        SystemDescription.validate_name(name)
        self.base_path.mkdir(parents=True, exist_ok=True)

        token = uuid.uuid4().hex[:8]
        new_dir = self.base_path / f".{name}.tmp-{token}"
        target = self.description_path(name)
        old_dir = self.base_path / f".{name}.old-{token}"

        if staging is not None:
            os.rename(staging, new_dir)
        else:
            new_dir.mkdir()

        try:
            (new_dir / MANIFEST).write_text(
                json.dumps(description.to_dict(), indent=2, sort_keys=False) + "\n",
                encoding="utf-8",
            )
            if target.exists():
                os.rename(target, old_dir)
            os.rename(new_dir, target)
        except Exception:
            if old_dir.exists() and not target.exists():
                os.rename(old_dir, target)
            if new_dir.exists():
                shutil.rmtree(new_dir)
            raise

        if old_dir.exists():
            shutil.rmtree(old_dir)
        logger.info("Saved system description '%s' to %s", name, target)
        return target

    def write_manifest(self, name: str, data: dict[str, Any]) -> None:
        """Replace the manifest of an existing description atomically."""
        path = self.manifest_path(name)
        tmp = path.with_name(f".{MANIFEST}.tmp-{uuid.uuid4().hex[:8]}")
        tmp.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
        os.replace(tmp, path)

    def delete(self, name: str) -> None:
        SystemDescription.validate_name(name)
        if not self.exists(name):
            raise DescriptionNotFound(name)
        shutil.rmtree(self.description_path(name))
        logger.info("Removed system description '%s'", name)

    def copy(self, src: str, dst: str) -> None:
        self._check_transfer(src, dst)
        shutil.copytree(self.description_path(src), self.description_path(dst), symlinks=True)
        logger.info("Copied system description '%s' to '%s'", src, dst)

    def move(self, src: str, dst: str) -> None:
        self._check_transfer(src, dst)
        os.rename(self.description_path(src), self.description_path(dst))
        logger.info("Moved system description '%s' to '%s'", src, dst)

    def _check_transfer(self, src: str, dst: str) -> None:
        SystemDescription.validate_name(src)
        SystemDescription.validate_name(dst)
        if not self.exists(src):
            raise DescriptionNotFound(src)
        if self.description_path(dst).exists():
            raise DescriptionAlreadyExists(dst)

    # ── Staging ──

    def create_staging_area(self, name: str) -> Path:
        """Create a hidden directory for files extracted during inspection."""
        self.base_path.mkdir(parents=True, exist_ok=True)
        path = self.base_path / f".{name}.staging-{uuid.uuid4().hex[:8]}"
        path.mkdir()
        return path

    def discard_staging_area(self, path: Path | None) -> None:
        if path is not None and path.exists():
            shutil.rmtree(path)


class SystemDescriptionMemoryStore(SystemDescriptionStore):
    """Store keeping descriptions in a dict. Extracted files are dropped."""

    def __init__(self):
        super().__init__(None)
        self._manifests: dict[str, dict[str, Any]] = {}

    @property
    def base_path(self) -> Path:
        return Path(tempfile.gettempdir())

    def list(self) -> list[str]:
        return sorted(self._manifests)

    def exists(self, name: str) -> bool:
        return name in self._manifests

    def load_raw(self, name: str) -> dict[str, Any]:
        if name not in self._manifests:
            raise DescriptionNotFound(name)
        return copy.deepcopy(self._manifests[name])

    def save(self, description: SystemDescription, staging: Path | None = None) -> Path:
        SystemDescription.validate_name(description.name)
        self._manifests[description.name] = description.to_dict()
        self.discard_staging_area(staging)
        return self.description_path(description.name)

    def write_manifest(self, name: str, data: dict[str, Any]) -> None:
        self._manifests[name] = copy.deepcopy(data)

    def delete(self, name: str) -> None:
        SystemDescription.validate_name(name)
        if name not in self._manifests:
            raise DescriptionNotFound(name)
        del self._manifests[name]

    def copy(self, src: str, dst: str) -> None:
        self._check_transfer(src, dst)
        self._manifests[dst] = copy.deepcopy(self._manifests[src])

    def move(self, src: str, dst: str) -> None:
        self._check_transfer(src, dst)
        self._manifests[dst] = self._manifests.pop(src)

    def _check_transfer(self, src: str, dst: str) -> None:
        SystemDescription.validate_name(src)
        SystemDescription.validate_name(dst)
        if src not in self._manifests:
            raise DescriptionNotFound(src)
        if dst in self._manifests:
            raise DescriptionAlreadyExists(dst)

    def create_staging_area(self, name: str) -> Path:
        return Path(tempfile.mkdtemp(prefix=f"machinery-{name}-"))


def check_format(name: str, data: dict[str, Any]) -> None:
    """Raise if ``data`` is not in the current manifest format."""
    version = manifest_format_version(data)
    if version < FORMAT_VERSION:
        raise DescriptionFormatTooOld(name, version)
    if version > FORMAT_VERSION:
        raise DescriptionFormatTooNew(name, version)
