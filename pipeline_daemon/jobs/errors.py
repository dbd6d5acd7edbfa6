"""Error types raised across the phase handlers and dispatcher."""

from typing import Optional


class PipelineError(Exception):
    """Base class for daemon errors."""


class HandledError(PipelineError):
    """The project was already moved to Error and the cause logged.

    The dispatcher marks the job failed without reporting again.
    """

    def __init__(self, message: str, step: Optional[str] = None):
        super().__init__(message)
        self.step = step


class UnexpectedError(PipelineError):
    """A crash converted into a project Error by the dispatcher."""

    def __init__(self, cause: BaseException):
        super().__init__(f"{type(cause).__name__}: {cause}")
        self.cause = cause


class GenerationError(PipelineError):
    """An external generation command failed."""

    def __init__(
        self,
        message: str,
        log_path: Optional[str] = None,
        command: Optional[str] = None,
    ):
        super().__init__(message)
        self.log_path = log_path
        self.command = command


def describe_error(exc: BaseException) -> str:
    text = str(exc).strip()
    return text or type(exc).__name__
