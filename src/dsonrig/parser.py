"""JSON loading and version checking for DSON documents."""

from __future__ import annotations

import gzip
import json
import zlib
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from dsonrig.errors import ParseError, UnknownEnumError
from dsonrig.models import DsonDocument

GZIP_MAGIC = b"\x1f\x8b"
SUPPORTED_MAJOR_VERSIONS: frozenset[int] = frozenset({0})


def _read_source_bytes(source: str | bytes | Path) -> bytes:
    """Read raw document bytes from a path, bytes, or JSON text."""
    if isinstance(source, Path):
        try:
            return source.read_bytes()
        except OSError as e:
            raise ParseError(f"Cannot read file: {e}") from e
    if isinstance(source, str):
        return source.encode("utf-8")
    return bytes(source)


def _decompress(raw: bytes) -> bytes:
    """Inflate gzip-compressed documents; shipped .dsf/.duf files usually are."""
    if not raw.startswith(GZIP_MAGIC):
        return raw
    try:
        return gzip.decompress(raw)
    except (OSError, EOFError, zlib.error) as e:
        raise ParseError(f"Invalid gzip stream: {e}") from e


def load_json_data(source: str | bytes | Path) -> dict:
    """Load JSON and run top-level shape/version checks, before schema validation."""
    raw = _decompress(_read_source_bytes(source))
    try:
        data = json.loads(raw.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise ParseError(f"Document is not valid UTF-8: {e}") from e
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ParseError("Top-level JSON value must be an object")

    version = data.get("file_version")
    if version is None:
        raise ParseError("Missing required field: file_version")
    _check_version(str(version))
    return data


def parse_dson(source: str | bytes | Path) -> DsonDocument:
    """Parse a DSON document from a path, raw bytes, or JSON text.

    Args:
        source: Path to a .dsf/.duf file (plain or gzip-compressed), its raw
            bytes, or a JSON string.

    Returns:
        Parsed and schema-validated DsonDocument.

    Raises:
        UnknownEnumError: When an enumerated field holds an unknown literal.
        ParseError: On JSON syntax errors, schema violations, or version mismatches.
    """
    data = load_json_data(source)

    try:
        return DsonDocument(**data)
    except PydanticValidationError as e:
        _raise_unknown_enum(e)
        raise ParseError(f"Schema validation failed:\n{e}") from e


def _raise_unknown_enum(error: PydanticValidationError) -> None:
    """Re-raise the first out-of-set literal as an UnknownEnumError."""
    for detail in error.errors():
        if detail["type"] != "literal_error":
            continue
        field = ".".join(str(part) for part in detail["loc"])
        raise UnknownEnumError(
            field,
            detail.get("input"),
            f"Unknown value {detail.get('input')!r} for field {field!r}:\n{error}",
        ) from error


def _check_version(version: str) -> None:
    """Validate ``major.minor.revision`` file_version compatibility.

    DAZ Studio writes a fourth build component (``0.6.0.0``); it is accepted.
    """
    parts = version.split(".")
    if len(parts) not in (3, 4):
        raise ParseError(f"Invalid file_version format: {version!r}")

    try:
        major, *_ = (int(part) for part in parts)
    except ValueError:
        raise ParseError(f"Invalid file_version format: {version!r}")

    if major not in SUPPORTED_MAJOR_VERSIONS:
        raise ParseError(f"Unsupported file_version: {version!r}")
