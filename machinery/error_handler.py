"""Failure classification and presentation.

Every exception escaping a command ends up in ``ErrorClassifier.handle``,
which sorts it into one of three categories:

- USAGE: the operator can fix the command line. Message plus help hint.
- EXTERNAL_COMMAND: a command on the target failed. Support banner plus
  the command's captured output.
- UNEXPECTED: anything else. Support banner plus the backtrace.

The support banner depends on the machine Machinery runs on: SUSE Linux
Enterprise users are pointed to their support channel, everybody else to
the issue tracker.

Example:
-------
    >>> from machinery.error_handler import ErrorClassifier
    >>>
    >>> classifier = ErrorClassifier(ui, debug=False)
    >>> try:
    ...     run_command()
    ... except Exception as exc:
    ...     exit_code = classifier.handle(exc)

"""

from __future__ import annotations

import logging
import traceback
from enum import Enum
from typing import TYPE_CHECKING

import click

from machinery.detect import detect_platform, is_commercially_supported
from machinery.errors import ExternalCommandFailed, MachineryError
from machinery.system import LocalSystem

if TYPE_CHECKING:
    from machinery.system import TargetSystem
    from machinery.ui import Ui

logger = logging.getLogger(__name__)

SUPPORT_BANNER = (
    "Machinery experienced an unexpected error.\n"
    "If this impacts your business please file a service request at https://www.suse.com/mysupport\n"
    "so that we can assist you on this issue. An active support contract is required."
)
COMMUNITY_BANNER = (
    "Machinery experienced an unexpected error. Please file a bug report at: "
    "https://github.com/SUSE/machinery/issues/new"
)
HELP_HINT = "Run 'machinery --help' for more information."


class ErrorCategory(str, Enum):
    USAGE = "usage"
    EXTERNAL_COMMAND = "external_command"
    UNEXPECTED = "unexpected"


class ErrorClassifier:
    """Turns exceptions into operator output and an exit status.

    Attributes:
        ui: Console output.
        debug: Print backtraces for external command failures too.
        local_system: Used to detect the local distribution for the banner.

    """

    def __init__(self, ui: Ui, *, debug: bool = False, local_system: TargetSystem | None = None):
        self.ui = ui
        self.debug = debug
        self.local_system = local_system or LocalSystem()

    @staticmethod
    def classify(exc: BaseException) -> ErrorCategory:
        if isinstance(exc, ExternalCommandFailed):
            return ErrorCategory.EXTERNAL_COMMAND
        if isinstance(exc, (MachineryError, click.ClickException, click.Abort)):
            return ErrorCategory.USAGE
        return ErrorCategory.UNEXPECTED

    def banner(self) -> str:
        try:
            platform = detect_platform(self.local_system)
        except Exception as exc:
            logger.debug("Local platform detection failed: %s", exc)
            platform = None
        return SUPPORT_BANNER if is_commercially_supported(platform) else COMMUNITY_BANNER

    def handle(self, exc: BaseException) -> int:
        """Print ``exc`` according to its category and return the exit status."""
        category = self.classify(exc)

        if category is ErrorCategory.USAGE:
            logger.error("%s", exc)
            self._usage(exc)
        elif category is ErrorCategory.EXTERNAL_COMMAND:
            logger.error("%r", exc)
            self.ui.error(self.banner())
            self.ui.error("")
            self.ui.error(str(exc))
            self.ui.error("Error output:")
            self.ui.error(exc.stderr)
            self.ui.error("Standard output:")
            self.ui.error(exc.stdout)
            if self.debug:
                self.ui.error(self._backtrace(exc))
        else:
            logger.error("Unexpected error", exc_info=(type(exc), exc, exc.__traceback__))
            self.ui.error(self.banner())
            self.ui.error("")
            self.ui.error(self._backtrace(exc))
        return 1

    def _usage(self, exc: BaseException) -> None:
        if isinstance(exc, click.Abort):
            self.ui.error("Aborted!")
            return
        if isinstance(exc, click.ClickException):
            message = exc.format_message()
            hint = isinstance(exc, click.UsageError)
        else:
            message = str(exc)
            hint = getattr(exc, "show_help_hint", False)
        self.ui.error(f"Error: {message}")
        if hint:
            self.ui.error(HELP_HINT)

    @staticmethod
    def _backtrace(exc: BaseException) -> str:
        return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).rstrip("\n")
