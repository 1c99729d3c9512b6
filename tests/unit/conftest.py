"""
Unit test fixtures and helpers.

Provides a scriptable in-memory target system, stores rooted in tmp_path
and sample descriptions. Nothing here opens network connections or starts
containers.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import pytest

from machinery.description import SystemDescription
from machinery.store import SystemDescriptionMemoryStore, SystemDescriptionStore
from machinery.system import Result, TargetSystem
from machinery.ui import Ui

SLES_OS_RELEASE = """NAME="SLES"
VERSION="15-SP5"
VERSION_ID="15.5"
PRETTY_NAME="SUSE Linux Enterprise Server 15 SP5"
ID="sles"
"""

LEAP_OS_RELEASE = """NAME="openSUSE Leap"
VERSION="15.5"
ID="opensuse-leap"
VERSION_ID="15.5"
PRETTY_NAME="openSUSE Leap 15.5"
"""


class FakeSystem(TargetSystem):
    """
    Target system answering commands from canned responses.

    Attributes:
        commands: Names reported as installed by ``has_command``
        files: Path -> content served by ``read_file``
        responses: Command prefix -> stdout string or ``Result``; the first
            matching prefix wins
        executed: Every command run, in order
    """

    kind = "host"

    def __init__(
        self,
        identifier: str = "web01",
        *,
        kind: str = "host",
        commands: tuple = (),
        files: Optional[Dict[str, str]] = None,
        responses: Optional[Dict[str, Union[str, Result]]] = None,
        connect_error: Optional[Exception] = None,
    ) -> None:
        self._identifier = identifier
        self.kind = kind
        self.commands = set(commands)
        self.files = dict(files or {})
        self.responses = dict(responses or {})
        self.connect_error = connect_error
        self.executed: List[str] = []
        self.connect_calls = 0
        self.disconnect_calls = 0

    @property
    def identifier(self) -> str:
        return self._identifier

    @property
    def remote_user(self) -> str:
        return "root"

    def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_error is not None:
            raise self.connect_error

    def disconnect(self) -> None:
        self.disconnect_calls += 1

    def _execute(self, cmd: str) -> Result:
        self.executed.append(cmd)
        if cmd.startswith("command -v "):
            name = cmd.split()[2]
            return Result(0 if name in self.commands else 1, "", "")
        if cmd.startswith("cat ") and cmd.endswith(" 2>/dev/null") and cmd[4:-12] in self.files:
            return Result(0, self.files[cmd[4:-12]], "")
        for prefix, response in self.responses.items():
            if cmd.startswith(prefix):
                if isinstance(response, Result):
                    return response
                return Result(0, response, "")
        return Result(1, "", f"sh: {cmd.split()[0]}: not found")


def make_description(name: str = "web01", scopes: Optional[dict] = None, **kwargs) -> SystemDescription:
    """
    Build a description with provenance metadata for every scope.

    Args:
        name: Description name
        scopes: Scope id -> payload; defaults to an os scope

    Returns:
        SystemDescription ready to be saved
    """
    if scopes is None:
        scopes = {
            "os": {
                "name": "SUSE Linux Enterprise Server",
                "version": "15 SP5",
                "architecture": "x86_64",
                "id": "sles",
                "family": "sle",
            }
        }
    meta = {
        scope: {
            "modified": "2026-10-19T08:30:00+00:00",
            "hostname": name,
            "remote_user": "root",
            "inspected_by": "tester",
            "type": "host",
        }
        for scope in scopes
    }
    return SystemDescription(name, scopes=scopes, meta=meta, **kwargs)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def ui() -> Ui:
    """Provide a Ui writing to the captured stdout/stderr without paging."""
    return Ui(use_pager=False)


@pytest.fixture
def store(tmp_path: Path) -> SystemDescriptionStore:
    """Provide a directory backed store below tmp_path."""
    return SystemDescriptionStore(tmp_path / "descriptions")


@pytest.fixture
def memory_store() -> SystemDescriptionMemoryStore:
    """Provide an in-memory store."""
    return SystemDescriptionMemoryStore()


@pytest.fixture
def machinery_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point MACHINERY_DIR at an empty directory for CLI tests."""
    path = tmp_path / "machinery"
    path.mkdir()
    monkeypatch.setenv("MACHINERY_DIR", str(path))
    return path


@pytest.fixture(autouse=True)
def reset_machinery_logger():
    """Drop handlers configure_logging attached during a test."""
    yield
    logger = logging.getLogger("machinery")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
