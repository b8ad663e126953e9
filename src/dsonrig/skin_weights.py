"""Sparse per-joint skin weights to fixed four-slot per-vertex influences."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Literal

import numpy as np

from dsonrig.errors import ValidationError

MAX_INFLUENCES = 4
MAX_JOINT_INDEX = int(np.iinfo(np.uint16).max)
WEIGHT_EPSILON = float(np.finfo(np.float32).eps)


@dataclass(frozen=True)
class InfluenceEvent:
    """One decision taken while assigning a weight claim to a vertex."""

    vertex: int
    joint: int
    weight: float
    action: Literal["occupy", "evict", "discard"]
    slot: int | None
    evicted: tuple[int, float] | None = None


@dataclass
class VertexInfluences:
    """Skinning attributes ready for upload (glTF JOINTS_0/WEIGHTS_0 layout)."""

    joints: np.ndarray  # (N, 4) uint16
    weights: np.ndarray  # (N, 4) float32
    excess: dict[int, int] = field(default_factory=dict)  # vertex -> claims beyond four

    @property
    def vertex_count(self) -> int:
        return len(self.joints)

    @property
    def discarded_claims(self) -> int:
        return sum(self.excess.values())

    def skinned_mask(self) -> np.ndarray:
        """Boolean mask of vertices with a nonzero weight total."""
        return np.abs(self.weights.sum(axis=1)) > WEIGHT_EPSILON


def assign_influences(
    vertex_count: int,
    joint_weights: Iterable[tuple[int, Iterable[tuple[int, float]]]],
    *,
    trace: list[InfluenceEvent] | None = None,
) -> VertexInfluences:
    """Cap sparse joint weights at four influences per vertex.

    Claims are processed in joint order, then in the order of each joint's
    weight list. A claim takes the first empty slot of its vertex. When all
    four slots are taken it replaces the smallest current weight (first one
    in slot order) if it is larger, otherwise it is discarded. Zero weights
    are ignored. Afterwards each vertex's weights are normalized to sum to 1,
    or left all-zero when they sum to (nearly) zero.

    Args:
        vertex_count: Number of vertices in the bound geometry.
        joint_weights: ``(joint_index, [(vertex_index, weight), ...])`` pairs.
        trace: Optional list that receives an ``InfluenceEvent`` per claim.

    Raises:
        ValidationError: On a vertex index outside the geometry or a joint
            index that does not fit in uint16.
    """
    joints = np.zeros((vertex_count, MAX_INFLUENCES), dtype=np.uint16)
    weights = np.zeros((vertex_count, MAX_INFLUENCES), dtype=np.float64)
    filled = np.zeros(vertex_count, dtype=np.int64)
    excess: dict[int, int] = {}

    for joint_idx, pairs in joint_weights:
        if not 0 <= joint_idx <= MAX_JOINT_INDEX:
            raise ValidationError(f"Joint index {joint_idx} does not fit in a uint16")
        for vert_idx, weight in pairs:
            if not 0 <= vert_idx < vertex_count:
                raise ValidationError(
                    f"Vertex index {vert_idx} out of bounds (vertex count: {vertex_count})"
                )
            weight = float(weight)
            if weight == 0.0:
                continue

            slot = int(filled[vert_idx])
            if slot < MAX_INFLUENCES:
                joints[vert_idx, slot] = joint_idx
                weights[vert_idx, slot] = weight
                filled[vert_idx] = slot + 1
                if trace is not None:
                    trace.append(InfluenceEvent(vert_idx, joint_idx, weight, "occupy", slot))
                continue

            excess[vert_idx] = excess.get(vert_idx, 0) + 1
            lowest = int(np.argmin(weights[vert_idx]))
            if weights[vert_idx, lowest] < weight:
                evicted = (int(joints[vert_idx, lowest]), float(weights[vert_idx, lowest]))
                joints[vert_idx, lowest] = joint_idx
                weights[vert_idx, lowest] = weight
                if trace is not None:
                    trace.append(
                        InfluenceEvent(vert_idx, joint_idx, weight, "evict", lowest, evicted)
                    )
            elif trace is not None:
                trace.append(InfluenceEvent(vert_idx, joint_idx, weight, "discard", None))

    totals = weights.sum(axis=1, keepdims=True)
    unskinned = np.abs(totals[:, 0]) <= WEIGHT_EPSILON
    safe = np.where(unskinned[:, None], 1.0, totals)
    normalized = np.where(unskinned[:, None], 0.0, weights / safe)

    return VertexInfluences(
        joints=joints,
        weights=normalized.astype(np.float32),
        excess=excess,
    )
