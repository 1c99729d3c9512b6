"""Target system contract and the local system.

Machinery inspects a ``TargetSystem``: anything that can be acquired,
released and asked to run shell commands. The concrete transports are
``machinery.ssh.RemoteSystem`` (persistent host over SSH) and
``machinery.docker.DockerSystem`` (ephemeral container). ``LocalSystem``
runs commands on the machine Machinery itself runs on.

Example:
-------
    >>> from machinery.ssh import RemoteSystem
    >>>
    >>> with RemoteSystem("192.168.1.100", remote_user="root") as system:
    ...     result = system.run("uname -m")
    ...     print(result.stdout)
    x86_64

"""

from __future__ import annotations

import base64
import io
import logging
import shlex
import subprocess
import tarfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from machinery._types import CurrentUser
from machinery.errors import ExternalCommandFailed

logger = logging.getLogger(__name__)

# Paths per tar invocation when retrieving files
RETRIEVE_BATCH_SIZE = 200

# Archive to a temp file first so a tar failure decides the exit status
ARCHIVE_COMMAND = (
    'archive=$(mktemp) || exit 1; '
    'tar --create --gzip --file "$archive" --directory / {paths}; status=$?; '
    'if [ $status -eq 0 ]; then base64 -w0 "$archive"; status=$?; fi; '
    'rm -f "$archive"; exit $status'
)


@dataclass
class Result:
    """Result of a command execution."""

    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        """Return True if command succeeded (exit code 0)."""
        return self.exit_code == 0


class TargetSystem(ABC):
    """Capability contract every inspected system satisfies.

    Subclasses implement ``connect``, ``disconnect`` and ``_execute``.
    ``disconnect`` must be safe to call more than once.
    """

    #: Human readable kind used in messages and metadata
    kind = "system"

    @property
    @abstractmethod
    def identifier(self) -> str:
        """Host name or image name; the default description name."""

    @property
    @abstractmethod
    def remote_user(self) -> str:
        """User the commands run as on the target."""

    @abstractmethod
    def connect(self) -> None:
        """Acquire the target."""

    @abstractmethod
    def disconnect(self) -> None:
        """Release the target. Idempotent."""

    @abstractmethod
    def _execute(self, cmd: str) -> Result:
        """Run ``cmd`` through a shell on the target."""

    def run(self, cmd: str) -> Result:
        """Execute a command and return the result, whatever the exit code."""
        logger.debug("[%s] running: %s", self.identifier, cmd)
        result = self._execute(cmd)
        if not result.ok:
            logger.debug("[%s] exit=%s stderr=%r", self.identifier, result.exit_code, result.stderr)
        return result

    def run_checked(self, cmd: str) -> Result:
        """Execute a command and raise ``ExternalCommandFailed`` on failure."""
        result = self.run(cmd)
        if not result.ok:
            raise ExternalCommandFailed(cmd, result.exit_code, result.stdout, result.stderr)
        return result

    def has_command(self, name: str) -> bool:
        return self.run(f"command -v {shlex.quote(name)} >/dev/null 2>&1").ok

    def read_file(self, path: str) -> str | None:
        """Return the content of a text file, or None if it cannot be read."""
        result = self.run(f"cat {shlex.quote(path)} 2>/dev/null")
        return result.stdout if result.ok else None

    def retrieve_files(self, paths: Iterable[str], destination: Path) -> list[str]:
        """Copy ``paths`` from the target into ``destination``.

        Files travel as a base64 encoded gzip tarball over the command
        channel and are unpacked locally below ``destination``, keeping
        their absolute paths as relative ones.

        Returns:
            The member names that were extracted.

        """
        paths = list(paths)
        destination.mkdir(parents=True, exist_ok=True)
        extracted: list[str] = []
        for start in range(0, len(paths), RETRIEVE_BATCH_SIZE):
            batch = paths[start : start + RETRIEVE_BATCH_SIZE]
            quoted = " ".join(shlex.quote(p.lstrip("/") or ".") for p in batch)
            cmd = ARCHIVE_COMMAND.format(paths=quoted)
            result = self.run_checked(cmd)
            payload = base64.b64decode(result.stdout.strip())
            with tarfile.open(fileobj=io.BytesIO(payload), mode="r:gz") as archive:
                names = archive.getnames()
                present = {name.rstrip("/") for name in names}
                missing = [p for p in batch if p.strip("/") and p.strip("/") not in present]
                if missing:
                    raise ExternalCommandFailed(
                        cmd, result.exit_code, stderr="Missing from archive: " + ", ".join(missing)
                    )
                extracted.extend(names)
                archive.extractall(destination, filter="data")
        logger.info("[%s] retrieved %d files into %s", self.identifier, len(extracted), destination)
        return extracted

    def __enter__(self) -> TargetSystem:
        self.connect()
        return self

    def __exit__(self, *exc) -> None:
        self.disconnect()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.identifier!r})"


# ── Local system ───────────────────────────────────────────────────────────


class LocalSystem(TargetSystem):
    """The machine Machinery runs on."""

    kind = "local"

    def __init__(self, *, timeout: int | None = None):
        self.timeout = timeout

    @property
    def identifier(self) -> str:
        return "localhost"

    @property
    def remote_user(self) -> str:
        return CurrentUser.capture().name

    def connect(self) -> None:
        pass

    def disconnect(self) -> None:
        pass

    def _execute(self, cmd: str) -> Result:
        return self.run_argv(["/bin/sh", "-c", cmd])

    def run_argv(self, argv: Sequence[str], *, check: bool = False) -> Result:
        """Run a command without a shell."""
        logger.debug("[localhost] running: %s", shlex.join(argv))
        try:
            completed = subprocess.run(
                list(argv),
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            result = Result(exit_code=127, stdout="", stderr=str(exc))
        else:
            result = Result(
                exit_code=completed.returncode,
                stdout=completed.stdout.rstrip("\n"),
                stderr=completed.stderr.rstrip("\n"),
            )
        if check and not result.ok:
            raise ExternalCommandFailed(shlex.join(argv), result.exit_code, result.stdout, result.stderr)
        return result
