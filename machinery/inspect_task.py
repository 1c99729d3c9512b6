"""Inspection lifecycle.

One inspection run binds a target system, the operator identity, a scope
list, a filter and the extraction options into a single operation:

    Idle -> NameResolved -> Connected -> ScopesRunning -> Assembled -> Persisted

Any failure moves the coordinator to ``Failed``. The name is checked before
the target is touched, the target is released exactly once whatever
happens, and nothing reaches the store unless every scope succeeded.

Example:
-------
    >>> from machinery.inspect_task import InspectionCoordinator
    >>> from machinery.ui import Ui
    >>>
    >>> coordinator = InspectionCoordinator(Ui())
    >>> description = coordinator.inspect_system(request)
    >>> coordinator.state
    <State.PERSISTED: 'persisted'>

"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Callable

from machinery.description import SystemDescription, VALID_NAME_CHARS
from machinery.errors import InvalidCommandLine
from machinery.inspectors import INSPECTORS, Inspector
from machinery.scopes import cli_name

if TYPE_CHECKING:
    from pathlib import Path

    from machinery._types import InspectionRequest
    from machinery.system import TargetSystem
    from machinery.ui import Ui

logger = logging.getLogger(__name__)

FILTER_NOTE = "There are filters being applied during inspection. (Use `--verbose` option to show the filters)"


class State(str, Enum):
    IDLE = "idle"
    NAME_RESOLVED = "name_resolved"
    CONNECTED = "connected"
    SCOPES_RUNNING = "scopes_running"
    ASSEMBLED = "assembled"
    PERSISTED = "persisted"
    FAILED = "failed"


def resolve_description_name(
    target: TargetSystem,
    explicit_name: str | None = None,
    container: bool | None = None,
) -> str:
    """Return the name the description will be stored under.

    An explicit name is used verbatim. Otherwise the target identifier is
    used; for containers that is the image name, which must not contain a
    slash.

    Raises:
        InvalidCommandLine: If the resulting name cannot be used.

    """
    if explicit_name:
        SystemDescription.validate_name(explicit_name)
        return explicit_name

    if container is None:
        container = target.kind == "container"
    name = target.identifier
    if container and "/" in name:
        raise InvalidCommandLine(
            f"System description name '{name}' is invalid. By default Machinery uses the image name as"
            " description name if the parameter `--name` is not provided.\n"
            "If the image name contains a slash the `--name=NAME` parameter is mandatory."
            f" Valid characters are '{VALID_NAME_CHARS}'."
        )
    SystemDescription.validate_name(name)
    return name


def _summary(payload: dict) -> str | None:
    for key, value in payload.items():
        if isinstance(value, list):
            return f"Found {len(value)} {key.replace('_', ' ')}."
    return None


class InspectionCoordinator:
    """Runs inspections and tracks the lifecycle state of the current run.

    Attributes:
        ui: Console output.
        verbose: Whether the filters were already listed to the operator.
        inspectors: Scope id -> ``Inspector``.
        state: Lifecycle state of the last run.

    """

    def __init__(
        self,
        ui: Ui,
        *,
        verbose: bool = False,
        inspectors: dict[str, Inspector] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.ui = ui
        self.verbose = verbose
        self.inspectors = INSPECTORS if inspectors is None else inspectors
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.state = State.IDLE

    def inspect_system(self, request: InspectionRequest) -> SystemDescription:
        """Inspect ``request.target`` and persist the resulting description.

        Returns:
            The saved description.

        """
        self.state = State.IDLE
        try:
            name = resolve_description_name(request.target, request.description_name)
            self.state = State.NAME_RESOLVED
            logger.info("Inspecting %s as '%s' (scopes: %s)", request.target, name, ", ".join(request.scopes))

            staging: Path | None = None
            try:
                if request.options.any():
                    staging = request.store.create_staging_area(name)
                description = self._inspect(request, name, staging)
                request.store.save(description, staging)
            except BaseException:
                request.store.discard_staging_area(staging)
                raise
        except BaseException as exc:
            self.state = State.FAILED
            logger.error("Inspection of %s failed: %s", request.target, exc)
            raise

        self.state = State.PERSISTED
        return description

    def _inspect(self, request: InspectionRequest, name: str, staging: Path | None) -> SystemDescription:
        target = request.target
        try:
            target.connect()
            self.state = State.CONNECTED
            description = SystemDescription(name)

            self.state = State.SCOPES_RUNNING
            for scope in sorted(request.scopes):
                inspector = self.inspectors[scope]
                files_dir = None
                if inspector.extraction_flag and request.options.enabled(inspector.extraction_flag):
                    files_dir = staging

                self.ui.puts(f"Inspecting {cli_name(scope)}...")
                payload = inspector.function(target, request.user, request.filter, request.options, files_dir=files_dir)
                description.set_scope(scope, payload, self._scope_meta(request))
                summary = _summary(payload)
                if summary:
                    self.ui.puts(f" -> {summary}")

            criteria = request.filter.criteria_for_scopes(request.scopes)
            description.set_filter_definitions("inspect", criteria)
            self.state = State.ASSEMBLED
        except BaseException:
            # The original failure wins over a failed release
            try:
                target.disconnect()
            except Exception as exc:
                logger.warning("Releasing %s failed: %s", target, exc)
            raise
        target.disconnect()

        if criteria and not self.verbose:
            self.ui.note(FILTER_NOTE)
        return description

    def _scope_meta(self, request: InspectionRequest) -> dict:
        return {
            "modified": self.clock().isoformat(timespec="seconds"),
            "hostname": request.target.identifier,
            "remote_user": request.target.remote_user,
            "inspected_by": request.user.name,
            "type": request.target.kind,
        }
