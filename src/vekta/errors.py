"""Exception hierarchy and error kinds surfaced in the output stream."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    INPUT_PARSE = "InputParseError"
    RESOURCE_UNREADABLE = "ResourceUnreadable"
    BACKEND = "BackendError"


class VektaError(Exception):
    """Base exception for all vekta errors."""

    kind: ErrorKind | None = None

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class InputParseError(VektaError):
    """An input line could not be turned into a record."""

    kind = ErrorKind.INPUT_PARSE


class ResourceUnreadable(VektaError):
    """A file referenced by a record is missing or cannot be decoded."""

    kind = ErrorKind.RESOURCE_UNREADABLE


class BackendError(VektaError):
    """Inference backend failed.

    The whole call failed. Backends that can fail per item return normally
    and report those failures in their response instead. ``item_errors`` maps
    batch positions to errors of their own; those records keep that error
    instead of this one.
    """

    kind = ErrorKind.BACKEND

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        item_errors: dict[int, VektaError] | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.item_errors = dict(item_errors or {})


class ResourceSizingFailure(VektaError):
    """Host introspection failed; callers fall back to a static budget."""


class ReorderBufferOverflow(VektaError):
    """More results were held for reordering than the budget allows (bug)."""


def error_kind_of(exc: BaseException) -> ErrorKind:
    kind = getattr(exc, "kind", None)
    return kind if isinstance(kind, ErrorKind) else ErrorKind.BACKEND
