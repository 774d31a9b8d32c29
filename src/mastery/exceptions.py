"""Errors raised by the mastery engine and its stores."""

from __future__ import annotations


class MasteryError(Exception):
    """Base class for mastery engine errors."""


class StorageError(MasteryError):
    """
    A read or write against an external store failed.

    Recoverable: callers may retry without recomputing suggestions.
    """

    def __init__(self, operation: str, key: object = None, cause: Exception | None = None):
        self.operation = operation
        self.key = key
        self.cause = cause
        detail = f"{operation} failed"
        if key is not None:
            detail += f" for {key}"
        if cause is not None:
            detail += f": {cause}"
        super().__init__(detail)


class InvalidThresholdConfigError(MasteryError):
    """Threshold config is malformed or violates above > on > approaching >= 0."""


class InterventionNotEditableError(MasteryError):
    """Intervention edits are only allowed while a standard is below or approaching."""


class UnknownStandardError(MasteryError):
    """Standard code is not present in the curriculum reference."""
