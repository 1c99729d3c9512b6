"""Remote host transport built on paramiko."""

from __future__ import annotations

import logging
import shlex

import paramiko

from machinery.system import Result, TargetSystem

logger = logging.getLogger(__name__)


class RemoteSystem(TargetSystem):
    """Single reusable SSH connection to a remote host.

    Commands run as ``remote_user``. When that user is not root they are
    wrapped in ``sudo -n`` so that inspection can read system files.
    """

    kind = "host"

    def __init__(
        self,
        hostname: str,
        *,
        remote_user: str = "root",
        port: int = 22,
        key_path: str | None = None,
        timeout: int = 30,
    ):
        self.hostname = hostname
        self.port = port
        self._remote_user = remote_user
        self.key_path = key_path
        self.timeout = timeout
        self._client: paramiko.SSHClient | None = None

    @property
    def identifier(self) -> str:
        return self.hostname

    @property
    def remote_user(self) -> str:
        return self._remote_user

    @property
    def sudo(self) -> bool:
        return self._remote_user != "root"

    def connect(self) -> None:
        """Establish the SSH connection."""
        if self._client is not None:
            return
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        connect_kwargs: dict = {
            "hostname": self.hostname,
            "port": self.port,
            "username": self._remote_user,
            "timeout": self.timeout,
        }
        # When an identity is given, don't fall back to other keys.
        # Otherwise let paramiko try ~/.ssh keys and the agent.
        if self.key_path:
            connect_kwargs["key_filename"] = self.key_path
            connect_kwargs["look_for_keys"] = False

        logger.info("Connecting to %s@%s:%s", self._remote_user, self.hostname, self.port)
        client.connect(**connect_kwargs)
        self._client = client

    def _execute(self, cmd: str) -> Result:
        if self._client is None:
            raise RuntimeError("Not connected, call connect() first")

        if self.sudo:
            cmd = f"sudo -n sh -c {shlex.quote(cmd)}"

        _, stdout_ch, stderr_ch = self._client.exec_command(cmd, timeout=self.timeout)

        stdout = stdout_ch.read().decode("utf-8", errors="replace")
        stderr = stderr_ch.read().decode("utf-8", errors="replace")
        exit_code = stdout_ch.channel.recv_exit_status()

        return Result(exit_code=exit_code, stdout=stdout.rstrip("\n"), stderr=stderr.rstrip("\n"))

    def disconnect(self) -> None:
        """Close the SSH connection."""
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("Disconnected from %s", self.hostname)
