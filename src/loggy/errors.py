"""Error taxonomy shared across the assistant core."""

from __future__ import annotations


class LoggyError(Exception):
    """Base class for errors raised by this package."""


class InvalidRequestError(LoggyError):
    """A malformed request, rejected before any side effect."""


class ProviderError(LoggyError):
    """The completion backend is unavailable or answered with a failure."""


class EmbeddingProviderError(ProviderError):
    """The embedding backend is misconfigured or answered with a failure."""


class ToolCallParseError(LoggyError):
    """Tool-call arguments or classifier output could not be parsed."""


class CommandExecutionError(LoggyError):
    """A command handler failed while executing one tool call."""


class DimensionMismatchError(ValueError):
    """Two vectors of different dimensionality were compared."""


class NoteNotFoundError(LookupError):
    """The note does not exist for this owner."""


class SurfaceNotFoundError(LookupError):
    """No assistant surface is open under this id."""
