from __future__ import annotations


class RunnerError(Exception):
    """Base class for failures raised by the execution core."""


class ValidationError(RunnerError, ValueError):
    """Request rejected before any workspace or sandbox was created."""


class EmptySourceError(ValidationError):
    def __init__(self) -> None:
        super().__init__("Source code must not be empty")


class UnsupportedLanguageError(ValidationError):
    def __init__(self, language_id: str) -> None:
        super().__init__(f"Unsupported language: {language_id!r}")
        self.language_id = language_id


class StorageFailure(RunnerError):
    """The workspace for one request could not be written."""


class LaunchFailure(RunnerError):
    """The external sandbox runtime could not be started."""


class CapacityError(RunnerError):
    """No sandbox slot became free within the admission timeout."""
