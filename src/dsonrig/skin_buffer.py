"""Per-frame packing of dual-quaternion joint transforms into one shared buffer.

The shader declares the skin binding as a fixed-size ``array<mat2x4<f32>, N>``
with ``N = max_joints`` and reads it at a dynamic offset per mesh instance.
Instead of writing ``N`` records for every instance, only the instance's real
joints are written, padded up to the next dynamic-offset alignment, and the
buffer tail is padded so that the last offset still has ``N`` records after
it. Reading past an instance's joint count in the shader returns padding or
the next instance's data, never memory outside the allocation.
"""

from __future__ import annotations

import math
from collections.abc import Hashable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Protocol

import numpy as np

from dsonrig.dual_quat import RECORD_FLOATS, RECORD_SIZE, DualQuat
from dsonrig.errors import ValidationError


@dataclass(frozen=True)
class BackendLimits:
    """Limits of the GPU backend the buffer is laid out for."""

    max_joints: int = 256
    min_uniform_buffer_offset_alignment: int = 256  # bytes

    def __post_init__(self) -> None:
        if self.max_joints <= 0:
            raise ValueError(f"max_joints must be positive, got {self.max_joints}")
        if self.min_uniform_buffer_offset_alignment <= 0:
            raise ValueError(
                "min_uniform_buffer_offset_alignment must be positive, "
                f"got {self.min_uniform_buffer_offset_alignment}"
            )

    @property
    def records_per_alignment(self) -> int:
        """Instance offsets are multiples of this many records."""
        stride = math.lcm(self.min_uniform_buffer_offset_alignment, RECORD_SIZE)
        return stride // RECORD_SIZE


class WorldStateProvider(Protocol):
    """Host queries the packer needs, keyed by joint / instance handle."""

    def transform_of(self, handle: Hashable) -> np.ndarray | DualQuat | None: ...

    def is_visible(self, handle: Hashable) -> bool: ...


@dataclass
class StaticWorldState:
    """World-state provider backed by fixed transforms."""

    transforms: Mapping[Hashable, np.ndarray | DualQuat]
    hidden: frozenset[Hashable] = frozenset()

    def transform_of(self, handle: Hashable) -> np.ndarray | DualQuat | None:
        return self.transforms.get(handle)

    def is_visible(self, handle: Hashable) -> bool:
        return handle not in self.hidden


@dataclass
class SkinnedInstance:
    """A visible mesh instance bound to an ordered list of joint handles."""

    handle: Hashable
    joints: list[Hashable]
    inverse_bind_poses: list[DualQuat]


@dataclass(frozen=True)
class SkinIndex:
    offset: int  # in records
    joint_count: int

    @property
    def byte_offset(self) -> int:
        return self.offset * RECORD_SIZE


@dataclass
class PackedSkinBuffer:
    data: np.ndarray  # (N, 8) float32
    indices: dict[Hashable, SkinIndex] = field(default_factory=dict)
    skipped: list[Hashable] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.data)

    def to_bytes(self) -> bytes:
        return np.ascontiguousarray(self.data, dtype=np.float32).tobytes()

    def span(self, handle: Hashable) -> list[DualQuat]:
        """The records written for an instance, as dual quaternions."""
        index = self.indices[handle]
        rows = self.data[index.offset : index.offset + index.joint_count]
        return [DualQuat.from_array(row) for row in rows]

    def window(self, handle: Hashable, max_joints: int) -> np.ndarray:
        """The fixed-size slice a shader binding sees at an instance's offset."""
        offset = self.indices[handle].offset
        window = self.data[offset : offset + max_joints]
        if len(window) != max_joints:
            raise IndexError(
                f"Buffer of {len(self.data)} records cannot hold {max_joints} records at {offset}"
            )
        return window


def inverse_bind_pose(bind_world: np.ndarray) -> DualQuat:
    """Rigid inverse of a joint's rest world transform (scale discarded)."""
    return DualQuat.from_matrix(bind_world).inverse()


def as_dual_quat(transform: np.ndarray | DualQuat) -> DualQuat:
    if isinstance(transform, DualQuat):
        return transform
    return DualQuat.from_matrix(np.asarray(transform, dtype=np.float64))


def joint_transforms(
    instance: SkinnedInstance, world: WorldStateProvider, max_joints: int | None = None
) -> list[DualQuat]:
    """``world_transform * inverse_bind_pose`` for each of an instance's joints.

    At most ``max_joints`` joints are used. Raises ``ValidationError`` when
    the instance has too few inverse bind poses or a joint has no world
    transform.
    """
    joints = instance.joints if max_joints is None else instance.joints[:max_joints]
    if len(instance.inverse_bind_poses) < len(joints):
        raise ValidationError(
            f"Instance {instance.handle!r} has {len(instance.inverse_bind_poses)} inverse "
            f"bind poses for {len(joints)} joints"
        )

    result: list[DualQuat] = []
    for joint, ibp in zip(joints, instance.inverse_bind_poses):
        transform = world.transform_of(joint)
        if transform is None:
            raise ValidationError(f"No world transform for joint {joint!r}")
        result.append(as_dual_quat(transform) * ibp)
    return result


class SkinBufferPacker:
    """Owns the shared joint buffer and rebuilds it once per frame."""

    def __init__(self, limits: BackendLimits | None = None) -> None:
        self.limits = limits or BackendLimits()
        self.buffer = PackedSkinBuffer(data=np.zeros((0, RECORD_FLOATS), dtype=np.float32))

    def pack(
        self, instances: Iterable[SkinnedInstance], world: WorldStateProvider
    ) -> PackedSkinBuffer:
        """Clear the buffer and append every visible instance's joints.

        Each joint record is ``world_transform * inverse_bind_pose``. An
        instance with a missing joint transform (or too few inverse bind
        poses) is skipped for this frame and listed in ``skipped``.
        """
        max_joints = self.limits.max_joints
        stride = self.limits.records_per_alignment
        zero = DualQuat.zero().to_array()

        records: list[np.ndarray] = []
        indices: dict[Hashable, SkinIndex] = {}
        skipped: list[Hashable] = []
        last_start = 0

        for instance in instances:
            if not world.is_visible(instance.handle):
                continue

            try:
                transforms = joint_transforms(instance, world, max_joints)
            except ValidationError:
                skipped.append(instance.handle)
                continue

            start = len(records)
            count = len(transforms)
            records.extend(dq.to_array() for dq in transforms)
            last_start = max(last_start, start)
            while len(records) % stride != 0:
                records.append(zero)

            indices[instance.handle] = SkinIndex(offset=start, joint_count=count)

        while len(records) - last_start < max_joints:
            records.append(zero)

        self.buffer = PackedSkinBuffer(
            data=np.stack(records).astype(np.float32),
            indices=indices,
            skipped=skipped,
        )
        return self.buffer
