"""Install pipeline errors."""

from __future__ import annotations


class PipelineError(Exception):
    """Raised when an install pipeline stage fails.

    Attributes:
        stage: Name of the stage the pipeline halted in
        title: Title of the game being installed
    """

    def __init__(self, message: str, *, stage: str | None = None, title: str | None = None):
        self.stage = stage
        self.title = title
        super().__init__(message)


class TransferError(PipelineError):
    """The archive or a patch could not be downloaded."""


class ExtractionError(PipelineError):
    """The archive or a patch could not be extracted."""


class ConfigurationError(PipelineError):
    """No runnable entry point could be found."""


class LaunchError(PipelineError):
    """The executable could not be started."""
