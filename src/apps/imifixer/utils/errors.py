"""Errors the imifixer commands report to the operator, with their exit codes."""

from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Process exit status of the ``imifixer`` commands.

    ``IO`` also covers ``fix`` runs where a schedule file failed after retries.
    """

    SUCCESS = 0
    VALIDATION = 1
    IO = 2
    CONFIG = 3
    RUNTIME = 5


class ImiFixerError(Exception):
    """A failure that stops an imifixer command before or while it runs."""

    exit_code: ExitCode = ExitCode.RUNTIME
    label = "imifixer failed"

    def __init__(
        self, message: str, *, exit_code: ExitCode | int | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        if exit_code is None:
            exit_code = type(self).exit_code
        self.exit_code = ExitCode(exit_code)

    def __str__(self) -> str:
        return self.message

    @property
    def heading(self) -> str:
        return type(self).label


class ImiFixerValidationError(ImiFixerError):
    """Schedule files named on the command line do not exist."""

    exit_code = ExitCode.VALIDATION
    label = "Invalid schedule files"


class ImiFixerIOError(ImiFixerError):
    """The published ``*_TVA.xml`` corpus is missing, unreadable or malformed."""

    exit_code = ExitCode.IO
    label = "Reference corpus error"


class ImiFixerConfigError(ImiFixerError):
    """Profiles, environment or options do not describe usable folders."""

    exit_code = ExitCode.CONFIG
    label = "Configuration error"


class ImiFixerRuntimeError(ImiFixerError):
    """The watch folder could not be observed."""

    exit_code = ExitCode.RUNTIME
    label = "Watcher error"
