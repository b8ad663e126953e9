"""Pose files and posed world-state for a resolved hierarchy.

A pose is a YAML mapping of node ids to channel overrides::

    id: wave
    nodes:
      r_forearm:
        rotation: [0, 0, -45]   # Euler degrees, in the node's rotation order
      hip:
        translation: [0, 2, 0]  # same units as the DSON file
    hidden: [body]
"""

from __future__ import annotations

from collections.abc import Hashable
from pathlib import Path

import numpy as np
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from dsonrig.dual_quat import DualQuat
from dsonrig.errors import ParseError, ValidationError
from dsonrig.hierarchy import ChannelState, ResolvedHierarchy, local_transform

Vec3 = tuple[float, float, float]


class PoseNodeTransform(BaseModel):
    model_config = ConfigDict(extra="forbid")

    rotation: Vec3 | None = None
    translation: Vec3 | None = None
    scale: Vec3 | None = None
    general_scale: float | None = None


class Pose(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    nodes: dict[str, PoseNodeTransform] = {}
    hidden: list[str] = []


def _make_yaml() -> YAML:
    yml = YAML(typ="safe")
    yml.allow_duplicate_keys = False
    return yml


def load_pose(source: str | Path) -> Pose:
    """Load a pose from a YAML file path or YAML text."""
    if isinstance(source, Path):
        try:
            text = source.read_text(encoding="utf-8")
        except OSError as e:
            raise ParseError(f"Cannot read file: {e}") from e
    else:
        text = source

    try:
        data = _make_yaml().load(text)
    except YAMLError as e:
        raise ParseError(f"Invalid YAML: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ParseError("Top-level YAML value must be a mapping")

    try:
        return Pose(**data)
    except PydanticValidationError as e:
        raise ParseError(f"Schema validation failed:\n{e}") from e


def _posed_state(rest: ChannelState, override: PoseNodeTransform | None) -> ChannelState:
    if override is None:
        return rest
    return ChannelState(
        rotation=override.rotation if override.rotation is not None else rest.rotation,
        translation=(
            override.translation if override.translation is not None else rest.translation
        ),
        scale=override.scale if override.scale is not None else rest.scale,
        general_scale=(
            override.general_scale
            if override.general_scale is not None
            else rest.general_scale
        ),
    )


class PosedSkeleton:
    """World transforms of a hierarchy under a pose.

    Implements the packer's world-state provider protocol: handles are node
    ids for joints and mesh/instance ids for visibility.
    """

    def __init__(self, hierarchy: ResolvedHierarchy, pose: Pose | None = None) -> None:
        self.hierarchy = hierarchy
        self.pose = pose or Pose()

        unknown = sorted(set(self.pose.nodes) - set(hierarchy.index))
        if unknown:
            raise ValidationError(f"Pose references unknown node(s): {', '.join(unknown)}")

        self.hidden = frozenset(self.pose.hidden)
        self.states: dict[str, ChannelState] = {}
        self.world: dict[str, np.ndarray] = {}
        self._propagate()

    def _propagate(self) -> None:
        # Arena order puts parents before children.
        for node in self.hierarchy.nodes:
            state = _posed_state(ChannelState.rest(node.record), self.pose.nodes.get(node.id))
            self.states[node.id] = state

            parent = self.hierarchy.parent_of(node)
            if parent is None:
                self.world[node.id] = local_transform(
                    node.record, state, unit_scale=self.hierarchy.unit_scale
                )
                continue
            local = local_transform(
                node.record,
                state,
                parent.record,
                self.states[parent.id],
                unit_scale=self.hierarchy.unit_scale,
            )
            self.world[node.id] = self.world[parent.id] @ local

    def transform_of(self, handle: Hashable) -> np.ndarray | None:
        return self.world.get(handle)

    def is_visible(self, handle: Hashable) -> bool:
        return handle not in self.hidden

    def joint_transform(self, node_id: str) -> DualQuat:
        return DualQuat.from_matrix(self.world[node_id])
