"""DSON asset URI helpers.

References inside DSON files look like ``#hip`` (same file) or
``/data/DAZ%203D/Genesis%209/Base/Genesis9.dsf#hip`` (another file). Paths
are percent-encoded and relative to a content library root.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import unquote


@dataclass(frozen=True)
class AssetUri:
    scheme: str | None
    path: str
    fragment: str | None

    @property
    def is_local(self) -> bool:
        """True when the URI addresses an asset in the referencing file."""
        return not self.path


def parse_uri(uri: str) -> AssetUri:
    """Split a DSON URI into scheme, decoded path, and decoded fragment."""
    scheme: str | None = None
    rest = uri
    head, sep, tail = uri.partition(":")
    # "name://..." style schemes; a bare "C:" drive letter is not a scheme
    if sep and tail.startswith("//") and "/" not in head and "#" not in head:
        scheme = head
        rest = tail[2:]

    path, hash_sep, fragment = rest.partition("#")
    return AssetUri(
        scheme=scheme,
        path=unquote(path),
        fragment=unquote(fragment) if hash_sep else None,
    )


def fragment_id(uri: str) -> str:
    """Return the id an URI refers to.

    ``#hip`` and ``/path/file.dsf#hip`` both yield ``hip``; a URI without a
    fragment is treated as a bare id.
    """
    parsed = parse_uri(uri)
    if parsed.fragment is not None:
        return parsed.fragment
    return parsed.path
