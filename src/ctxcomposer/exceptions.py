"""Custom exceptions for ctxcomposer."""


class ComposerError(Exception):
    """Base exception for all ctxcomposer errors."""


class ConfigError(ComposerError):
    """Invalid budget configuration, scoring weights or config file."""


class ConsistencyError(ComposerError):
    """A selected artifact could not be resolved against its candidate snapshot."""


class SourceError(ComposerError):
    """A candidate source failed while gathering candidates."""

    def __init__(self, source: str, cause: BaseException):
        super().__init__(f"Candidate source '{source}' failed: {cause}")
        self.source = source
        self.cause = cause
