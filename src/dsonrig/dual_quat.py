"""Dual-quaternion rigid transforms.

A ``DualQuat`` is a (real, dual) pair of ``[w, x, y, z]`` quaternions. The
real part encodes rotation; ``dual = 0.5 * (0, t) * real`` couples the
translation ``t`` to it. Composition ``a * b`` applies ``b`` first, then
``a``, matching 4x4 matrix products.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from dsonrig.errors import TransformError
from dsonrig.transforms import (
    decompose,
    quat_conj,
    quat_mul,
    quat_normalize,
    quat_rotate,
    rotation_translation_matrix,
)

FLOAT32_EPSILON = float(np.finfo(np.float32).eps)
UNIT_TOLERANCE = 1e-5

# GPU record: real.xyzw followed by dual.xyzw, as float32
RECORD_FLOATS = 8
RECORD_SIZE = RECORD_FLOATS * 4


@dataclass(frozen=True, eq=False)
class DualQuat:
    real: np.ndarray
    dual: np.ndarray

    def __post_init__(self) -> None:
        real = np.asarray(self.real, dtype=np.float64).reshape(4)
        dual = np.asarray(self.dual, dtype=np.float64).reshape(4)
        object.__setattr__(self, "real", real)
        object.__setattr__(self, "dual", dual)

    # -- construction -------------------------------------------------------

    @classmethod
    def identity(cls) -> DualQuat:
        return cls(np.array([1.0, 0.0, 0.0, 0.0]), np.zeros(4))

    @classmethod
    def zero(cls) -> DualQuat:
        """All-zero record used for buffer padding. Not a valid transform."""
        return cls(np.zeros(4), np.zeros(4))

    @classmethod
    def from_rotation_translation(
        cls, rotation: np.ndarray | Sequence[float], translation: np.ndarray | Sequence[float]
    ) -> DualQuat:
        """Build from a rotation quaternion and a translation.

        The rotation is used as given, so a non-unit quaternion yields a
        non-unit dual quaternion.
        """
        real = np.asarray(rotation, dtype=np.float64)
        t = np.asarray(translation, dtype=np.float64)
        t_quat = np.array([0.0, t[0], t[1], t[2]], dtype=np.float64)
        return cls(real, 0.5 * quat_mul(t_quat, real))

    @classmethod
    def from_matrix(cls, mat: np.ndarray) -> DualQuat:
        """Build from a 4x4 affine transform. Scale is discarded."""
        _scale, rotation, translation = decompose(mat)
        return cls.from_rotation_translation(rotation, translation)

    @classmethod
    def from_array(cls, record: np.ndarray | Sequence[float]) -> DualQuat:
        """Inverse of ``to_array``."""
        r = np.asarray(record, dtype=np.float64).reshape(RECORD_FLOATS)
        return cls(np.array([r[3], r[0], r[1], r[2]]), np.array([r[7], r[4], r[5], r[6]]))

    @classmethod
    def blend(cls, dqs: Sequence[DualQuat], weights: Sequence[float]) -> DualQuat:
        """Weighted dual-quaternion blend, normalized.

        Each input is flipped into the hemisphere of the first one before
        summing, so antipodal encodings of the same rotation do not cancel.
        Raises ``TransformError`` when the weighted sum is (near) zero.
        """
        if len(dqs) != len(weights):
            raise ValueError(f"blend got {len(dqs)} transforms but {len(weights)} weights")

        real_sum = np.zeros(4, dtype=np.float64)
        dual_sum = np.zeros(4, dtype=np.float64)
        reference: DualQuat | None = None
        for dq, w in zip(dqs, weights):
            if w == 0.0:
                continue
            sign = 1.0
            if reference is None:
                reference = dq
            elif dq.dot(reference) < 0.0:
                sign = -1.0
            real_sum += sign * w * dq.real
            dual_sum += sign * w * dq.dual
        return cls(real_sum, dual_sum).normalize()

    # -- properties ---------------------------------------------------------

    def dot(self, other: DualQuat) -> float:
        return float(np.dot(self.real, other.real))

    def magnitude_squared(self) -> float:
        return float(np.dot(self.real, self.real))

    def magnitude(self) -> float:
        return float(np.sqrt(self.magnitude_squared()))

    def is_unit(self, tolerance: float = UNIT_TOLERANCE) -> bool:
        return abs(self.magnitude() - 1.0) <= tolerance

    def rotation(self) -> np.ndarray:
        return quat_normalize(self.real)

    def translation(self) -> np.ndarray:
        """Translation encoded by this transform: ``2 * dual * conj(real) / |real|^2``."""
        t = 2.0 * quat_mul(self.dual, quat_conj(self.real)) / self.magnitude_squared()
        return t[1:4]

    # -- algebra ------------------------------------------------------------

    def normalize(self) -> DualQuat:
        mag = self.magnitude()
        if not mag > FLOAT32_EPSILON * 2.0:
            raise TransformError(f"Attempted to normalize a DualQuat with magnitude {mag}; {self}")
        return DualQuat(self.real / mag, self.dual / mag)

    def conjugate(self) -> DualQuat:
        return DualQuat(quat_conj(self.real), quat_conj(self.dual))

    def inverse(self) -> DualQuat:
        """Inverse of a unit dual quaternion (its quaternion conjugate)."""
        self._require_unit("invert")
        return self.conjugate()

    def __mul__(self, other: DualQuat | float) -> DualQuat:
        if isinstance(other, DualQuat):
            return DualQuat(
                quat_mul(self.real, other.real),
                quat_mul(self.real, other.dual) + quat_mul(self.dual, other.real),
            )
        if isinstance(other, (int, float, np.floating)):
            return DualQuat(self.real * other, self.dual * other)
        return NotImplemented

    def __rmul__(self, other: float) -> DualQuat:
        if isinstance(other, (int, float, np.floating)):
            return DualQuat(self.real * other, self.dual * other)
        return NotImplemented

    def __add__(self, other: DualQuat) -> DualQuat:
        if not isinstance(other, DualQuat):
            return NotImplemented
        return DualQuat(self.real + other.real, self.dual + other.dual)

    def __neg__(self) -> DualQuat:
        return DualQuat(-self.real, -self.dual)

    # -- application --------------------------------------------------------

    def _require_unit(self, action: str) -> None:
        if not self.is_unit():
            raise TransformError(
                f"DualQuat must be normalized before being used as a transform! "
                f"Attempted to {action} with a DualQuat with magnitude {self.magnitude()}"
            )

    def transform_point(self, point: np.ndarray | Sequence[float]) -> np.ndarray:
        """Apply rotation and translation to a point."""
        self._require_unit("transform point")
        p = np.asarray(point, dtype=np.float64)
        rw, rv = self.real[0], self.real[1:4]
        dw, dv = self.dual[0], self.dual[1:4]
        translated = 2.0 * (dv * rw - rv * dw + np.cross(rv, dv))
        return quat_rotate(self.real, p) + translated

    def transform_vector(self, vector: np.ndarray | Sequence[float]) -> np.ndarray:
        """Apply rotation only."""
        self._require_unit("rotate vector")
        return quat_rotate(self.real, np.asarray(vector, dtype=np.float64))

    # -- conversion ---------------------------------------------------------

    def to_matrix(self) -> np.ndarray:
        return rotation_translation_matrix(self.rotation(), self.translation())

    def to_array(self) -> np.ndarray:
        """8-float GPU record: real.xyzw then dual.xyzw."""
        r, d = self.real, self.dual
        return np.array([r[1], r[2], r[3], r[0], d[1], d[2], d[3], d[0]], dtype=np.float32)

    def allclose(self, other: DualQuat, atol: float = 1e-6) -> bool:
        return bool(
            np.allclose(self.real, other.real, atol=atol)
            and np.allclose(self.dual, other.dual, atol=atol)
        )

    def __repr__(self) -> str:
        r, d = self.real, self.dual
        return (
            f"DualQuat(({r[0]:.3f} [{r[1]:.3f} {r[2]:.3f} {r[3]:.3f}]), "
            f"({d[0]:.3f} [{d[1]:.3f} {d[2]:.3f} {d[3]:.3f}]))"
        )
