"""CPU reference for dual quaternion skinning (DQS).

Mirrors what the vertex shader does with a packed skin buffer, so results
can be checked or baked without a GPU.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from dsonrig.dual_quat import DualQuat
from dsonrig.errors import ValidationError
from dsonrig.skin_buffer import SkinnedInstance, WorldStateProvider, joint_transforms
from dsonrig.skin_weights import VertexInfluences


def skin_transforms(instance: SkinnedInstance, world: WorldStateProvider) -> list[DualQuat]:
    """``world * inverse_bind`` per joint, the same records the packer writes."""
    return joint_transforms(instance, world)


def skin_vertices(
    positions: np.ndarray,
    normals: np.ndarray,
    influences: VertexInfluences,
    transforms: Sequence[DualQuat],
) -> tuple[np.ndarray, np.ndarray]:
    """Deform vertices by the blended dual quaternion of their influences.

    Vertices without any weight are passed through unchanged.

    Returns:
        Deformed (positions, normals) as float32 arrays.
    """
    if len(positions) != influences.vertex_count:
        raise ValidationError(
            f"{len(positions)} positions but influences for {influences.vertex_count} vertices"
        )

    out_pos = np.asarray(positions, dtype=np.float64).copy()
    out_norm = np.asarray(normals, dtype=np.float64).copy()

    joints = influences.joints
    weights = influences.weights

    for v in range(len(out_pos)):
        # Gather nonzero influences
        dqs: list[DualQuat] = []
        ws: list[float] = []
        for k in range(joints.shape[1]):
            w = float(weights[v, k])
            if w <= 0.0:
                continue
            j_idx = int(joints[v, k])
            if j_idx >= len(transforms):
                raise ValidationError(
                    f"Vertex {v} references joint {j_idx} but only {len(transforms)} "
                    f"transforms were given"
                )
            dqs.append(transforms[j_idx])
            ws.append(w)

        if not dqs:
            continue

        blended = DualQuat.blend(dqs, ws)
        out_pos[v] = blended.transform_point(out_pos[v])
        out_norm[v] = blended.transform_vector(out_norm[v])

    return out_pos.astype(np.float32), out_norm.astype(np.float32)
