"""
Machinery Exceptions

Exception classes raised by the inspection engine, the description store
and the command-line layer. Every failure that reaches the operator goes
through ``machinery.error_handler.ErrorClassifier``, which decides how it
is presented based on the classes defined here.

This module defines:
- MachineryError: Base class for all domain errors
- InvalidCommandLine, UnknownScope, ServerPortError, InvalidFilter:
  Errors the operator can correct by changing the command line
- ExternalCommandFailed: A command run against the target exited non-zero
- Description*: Errors related to stored system descriptions
- MissingRequirement, ExportFailed, UnknownConfigKey, InvalidConfigValue

Usage:
    from machinery.errors import InvalidCommandLine

    if included and excluded:
        raise InvalidCommandLine("You cannot provide the --scope and --ignore-scope option at the same time.")
"""

from __future__ import annotations

from typing import Optional, Sequence


class MachineryError(Exception):
    """
    Base class for errors Machinery knows how to explain.

    Attributes:
        message: Human-readable error description
        show_help_hint: Whether the operator should be pointed to ``--help``
    """

    show_help_hint = False

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# =============================================================================
# Command line errors
# =============================================================================


class InvalidCommandLine(MachineryError):
    """Bad or contradictory command line flags and names."""

    show_help_hint = True


class InvalidFilter(InvalidCommandLine):
    """A filter criterion could not be parsed."""

    def __init__(self, message: str, criterion: Optional[str] = None) -> None:
        self.criterion = criterion
        super().__init__(message)


class UnknownScope(InvalidCommandLine):
    """
    One or more requested scopes are malformed or not known.

    Attributes:
        scopes: The offending tokens as given on the command line
        kind: "not valid" for malformed tokens, "not supported" for
            well-formed tokens missing from the registry
    """

    NOT_VALID = "not valid"
    NOT_SUPPORTED = "not supported"

    def __init__(self, scopes: Sequence[str], kind: str) -> None:
        self.scopes = list(scopes)
        self.kind = kind
        noun = "scope is" if len(self.scopes) == 1 else "scopes are"
        if kind == self.NOT_VALID:
            listing = ", ".join(f"'{s}'" for s in self.scopes)
        else:
            listing = ", ".join(self.scopes)
        super().__init__(f"The following {noun} {kind}: {listing}.")

    def __repr__(self) -> str:
        return f"UnknownScope(scopes={self.scopes!r}, kind={self.kind!r})"


class ServerPortError(InvalidCommandLine):
    """Port outside 2-65535 or reserved for privileged users."""

    def __init__(self, message: str, port: Optional[int] = None) -> None:
        self.port = port
        super().__init__(message)


# =============================================================================
# Execution errors
# =============================================================================


class ExternalCommandFailed(MachineryError):
    """
    A command executed on the target (or locally on its behalf) failed.

    Attributes:
        command: The command line that was run
        exit_code: Exit status reported by the transport
        stdout: Captured standard output
        stderr: Captured standard error
    """

    def __init__(
        self,
        command: str,
        exit_code: int,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"Command '{command}' failed with exit status {exit_code}")

    def __repr__(self) -> str:
        return (
            f"ExternalCommandFailed(command={self.command!r}, "
            f"exit_code={self.exit_code!r}, stdout={self.stdout!r}, stderr={self.stderr!r})"
        )


class MissingRequirement(MachineryError):
    """A tool Machinery needs is not available on the target or locally."""


# =============================================================================
# Description errors
# =============================================================================


class DescriptionError(MachineryError):
    """A stored description could not be read or written."""


class DescriptionNotFound(DescriptionError):
    """No description with the given name exists in the store."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Couldn't find a system description with the name '{name}'.")


class DescriptionAlreadyExists(DescriptionError):
    """The target name of a copy or move is already taken."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"A system description with the name '{name}' already exists.")


class DescriptionFormatTooOld(DescriptionError):
    """The description was written by an older Machinery and must be upgraded."""

    def __init__(self, name: str, format_version: int) -> None:
        self.name = name
        self.format_version = format_version
        super().__init__(
            f"The system description '{name}' has an incompatible data format (version {format_version})."
            f"\nTry upgrading it by running `machinery upgrade-format {name}`."
        )


class DescriptionFormatTooNew(DescriptionError):
    """The description was written by a newer Machinery."""

    def __init__(self, name: str, format_version: int) -> None:
        self.name = name
        self.format_version = format_version
        super().__init__(
            f"The system description '{name}' has a data format (version {format_version}) "
            "that is newer than this version of Machinery supports."
        )


class DescriptionValidationError(DescriptionError):
    """A description failed schema or file validation."""

    def __init__(self, name: str, problems: Sequence[str]) -> None:
        self.name = name
        self.problems = list(problems)
        details = "\n".join(f"  * {p}" for p in self.problems)
        super().__init__(f"Validation of system description '{name}' failed:\n{details}")


# =============================================================================
# Task errors
# =============================================================================


class ExportFailed(MachineryError):
    """An export or build could not be produced."""


class UnknownConfigKey(MachineryError):
    """The configuration key does not exist."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Unknown configuration key: {key}")


class InvalidConfigValue(MachineryError):
    """The configuration value cannot be converted to the key's type."""

    def __init__(self, key: str, value: str, expected: str) -> None:
        self.key = key
        self.value = value
        self.expected = expected
        super().__init__(f"The value '{value}' is not valid for '{key}' (expected {expected}).")
