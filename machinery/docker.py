"""Ephemeral container transport driven by the local docker CLI."""

from __future__ import annotations

import logging

from machinery.errors import MissingRequirement
from machinery.system import LocalSystem, Result, TargetSystem

logger = logging.getLogger(__name__)


class DockerSystem(TargetSystem):
    """A throwaway container started from an image for inspection.

    ``start`` launches a detached shell container, ``stop`` removes it.
    ``connect`` and ``disconnect`` are aliases so the container can be used
    wherever a target system is expected.
    """

    kind = "container"

    def __init__(self, image: str, *, docker: str = "docker", local: LocalSystem | None = None):
        self.image = image
        self.docker = docker
        self.local = local or LocalSystem()
        self.container_id: str | None = None

    @property
    def identifier(self) -> str:
        return self.image

    @property
    def remote_user(self) -> str:
        return "root"

    def start(self) -> None:
        if self.container_id is not None:
            return
        if not self.local.has_command(self.docker):
            raise MissingRequirement(f"Inspecting containers requires '{self.docker}' to be installed.")
        result = self.local.run_argv(
            [self.docker, "run", "--rm", "--detach", "--interactive", "--entrypoint", "/bin/sh", self.image],
            check=True,
        )
        self.container_id = result.stdout.strip().splitlines()[-1]
        logger.info("Started container %s from image %s", self.container_id[:12], self.image)

    def stop(self) -> None:
        if self.container_id is None:
            return
        container_id, self.container_id = self.container_id, None
        self.local.run_argv([self.docker, "rm", "--force", container_id], check=True)
        logger.info("Removed container %s", container_id[:12])

    def connect(self) -> None:
        self.start()

    def disconnect(self) -> None:
        self.stop()

    def _execute(self, cmd: str) -> Result:
        if self.container_id is None:
            raise RuntimeError("Container not running, call start() first")
        return self.local.run_argv([self.docker, "exec", self.container_id, "/bin/sh", "-c", cmd])
