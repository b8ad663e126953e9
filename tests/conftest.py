"""Shared fixtures: small hand-written DSON documents."""

from __future__ import annotations

import copy
import json

import pytest

from dson_builders import SAMPLE_DOCUMENT, node


@pytest.fixture
def sample_document() -> dict:
    """A figure with three bones and one skinned two-quad geometry."""
    return copy.deepcopy(SAMPLE_DOCUMENT)


@pytest.fixture
def sample_json(sample_document) -> str:
    return json.dumps(sample_document)


@pytest.fixture
def sample_dsf(sample_json, tmp_path):
    path = tmp_path / "figure.dsf"
    path.write_text(sample_json)
    return path


@pytest.fixture
def minimal_document() -> dict:
    return {"file_version": "0.6.0.0", "node_library": [node("root", type="node")]}
