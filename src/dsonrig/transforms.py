"""Quaternion and 4x4 affine helpers.

Quaternions are numpy arrays in ``[w, x, y, z]`` order (Hamilton product).
Matrices are row-major 4x4 float64 arrays acting on column vectors.
"""

from __future__ import annotations

import math

import numpy as np

_AXES = {"X": 0, "Y": 1, "Z": 2}


# ---------------------------------------------------------------------------
# Quaternion helpers
# ---------------------------------------------------------------------------


def quat_identity() -> np.ndarray:
    return np.array([1.0, 0.0, 0.0, 0.0], dtype=np.float64)


def quat_mul(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Hamilton product of two quaternions [w, x, y, z]."""
    aw, ax, ay, az = a
    bw, bx, by, bz = b
    return np.array(
        [
            aw * bw - ax * bx - ay * by - az * bz,
            aw * bx + ax * bw + ay * bz - az * by,
            aw * by - ax * bz + ay * bw + az * bx,
            aw * bz + ax * by - ay * bx + az * bw,
        ],
        dtype=np.float64,
    )


def quat_conj(q: np.ndarray) -> np.ndarray:
    """Conjugate of quaternion [w, x, y, z]."""
    return np.array([q[0], -q[1], -q[2], -q[3]], dtype=np.float64)


def quat_rotate(q: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Rotate vector v by unit quaternion q. Returns 3-vector."""
    v_quat = np.array([0.0, v[0], v[1], v[2]], dtype=np.float64)
    result = quat_mul(quat_mul(q, v_quat), quat_conj(q))
    return result[1:4]


def quat_normalize(q: np.ndarray) -> np.ndarray:
    return np.asarray(q, dtype=np.float64) / np.linalg.norm(q)


def quat_from_axis_angle(axis: np.ndarray | tuple[float, float, float], radians: float) -> np.ndarray:
    axis = np.asarray(axis, dtype=np.float64)
    axis = axis / np.linalg.norm(axis)
    half = 0.5 * radians
    s = math.sin(half)
    return np.array([math.cos(half), axis[0] * s, axis[1] * s, axis[2] * s], dtype=np.float64)


def quat_from_euler_degrees(angles: tuple[float, float, float], order: str = "XYZ") -> np.ndarray:
    """Quaternion for (x, y, z) Euler angles in degrees.

    ``order`` lists the axes in the order the rotations are applied, so
    ``"XYZ"`` rotates about X first and Z last (q = qZ * qY * qX).
    """
    q = quat_identity()
    for axis_name in order:
        axis = np.zeros(3, dtype=np.float64)
        idx = _AXES[axis_name]
        axis[idx] = 1.0
        q = quat_mul(quat_from_axis_angle(axis, math.radians(angles[idx])), q)
    return q


def quat_to_matrix3(q: np.ndarray) -> np.ndarray:
    """Rotation matrix (3x3) from a unit quaternion [w, x, y, z]."""
    w, x, y, z = q
    return np.array(
        [
            [1.0 - 2.0 * (y * y + z * z), 2.0 * (x * y - w * z), 2.0 * (x * z + w * y)],
            [2.0 * (x * y + w * z), 1.0 - 2.0 * (x * x + z * z), 2.0 * (y * z - w * x)],
            [2.0 * (x * z - w * y), 2.0 * (y * z + w * x), 1.0 - 2.0 * (x * x + y * y)],
        ],
        dtype=np.float64,
    )


def matrix3_to_quat(m: np.ndarray) -> np.ndarray:
    """Unit quaternion [w, x, y, z] from a pure rotation matrix (3x3)."""
    m = np.asarray(m, dtype=np.float64)
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > 0.0:
        s = 2.0 * math.sqrt(trace + 1.0)
        q = [0.25 * s, (m[2, 1] - m[1, 2]) / s, (m[0, 2] - m[2, 0]) / s, (m[1, 0] - m[0, 1]) / s]
    elif m[0, 0] > m[1, 1] and m[0, 0] > m[2, 2]:
        s = 2.0 * math.sqrt(1.0 + m[0, 0] - m[1, 1] - m[2, 2])
        q = [(m[2, 1] - m[1, 2]) / s, 0.25 * s, (m[0, 1] + m[1, 0]) / s, (m[0, 2] + m[2, 0]) / s]
    elif m[1, 1] > m[2, 2]:
        s = 2.0 * math.sqrt(1.0 + m[1, 1] - m[0, 0] - m[2, 2])
        q = [(m[0, 2] - m[2, 0]) / s, (m[0, 1] + m[1, 0]) / s, 0.25 * s, (m[1, 2] + m[2, 1]) / s]
    else:
        s = 2.0 * math.sqrt(1.0 + m[2, 2] - m[0, 0] - m[1, 1])
        q = [(m[1, 0] - m[0, 1]) / s, (m[0, 2] + m[2, 0]) / s, (m[1, 2] + m[2, 1]) / s, 0.25 * s]
    return quat_normalize(np.array(q, dtype=np.float64))


# ---------------------------------------------------------------------------
# 4x4 affine builders
# ---------------------------------------------------------------------------


def translation_matrix(t: np.ndarray | tuple[float, float, float]) -> np.ndarray:
    mat = np.eye(4, dtype=np.float64)
    mat[0, 3] = t[0]
    mat[1, 3] = t[1]
    mat[2, 3] = t[2]
    return mat


def rotation_matrix(q: np.ndarray) -> np.ndarray:
    mat = np.eye(4, dtype=np.float64)
    mat[:3, :3] = quat_to_matrix3(q)
    return mat


def scale_matrix(s: np.ndarray | tuple[float, float, float]) -> np.ndarray:
    return np.diag([s[0], s[1], s[2], 1.0]).astype(np.float64)


def rotation_translation_matrix(q: np.ndarray, t: np.ndarray | tuple[float, float, float]) -> np.ndarray:
    mat = rotation_matrix(q)
    mat[:3, 3] = t
    return mat


def decompose(mat: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Split an affine matrix into (scale, rotation quaternion, translation).

    Shear is not representable and is folded into the rotation estimate.
    """
    mat = np.asarray(mat, dtype=np.float64)
    translation = mat[:3, 3].copy()
    basis = mat[:3, :3]
    scale = np.linalg.norm(basis, axis=0)
    if np.linalg.det(basis) < 0.0:
        scale[0] = -scale[0]
    safe = np.where(np.abs(scale) > 1e-12, scale, 1.0)
    rotation = matrix3_to_quat(basis / safe)
    return scale, rotation, translation
