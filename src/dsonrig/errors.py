"""Custom exception hierarchy for dsonrig."""

from __future__ import annotations


class DsonError(Exception):
    """Base exception for all dsonrig errors."""


class ParseError(DsonError):
    """Raised when JSON decoding or schema deserialization fails."""


class UnknownEnumError(ParseError):
    """Raised when an enumerated field holds a value outside its closed set."""

    def __init__(self, field: str, value: object, message: str | None = None) -> None:
        self.field = field
        self.value = value
        super().__init__(message or f"Unknown value {value!r} for field {field!r}")


class ValidationError(DsonError):
    """Raised when loaded data is inconsistent (bad refs, counts, cycles)."""


class TransformError(DsonError):
    """Raised when a rigid-transform invariant is violated."""


class ExportError(DsonError):
    """Raised when glTF/GLB export fails."""
