"""Unit quaternion value type used for every sensor orientation.

Components are stored scalar-first ``(w, x, y, z)``, matching the wire
format. Euler extraction is delegated to
:class:`scipy.spatial.transform.Rotation` using the intrinsic ``XYZ``
sequence (rotation matrix ``Rx @ Ry @ Rz``).
"""

import math
import warnings
from dataclasses import dataclass
from typing import Iterable, Tuple

import numpy as np
from scipy.spatial.transform import Rotation

# Below this squared sine of the half angle, slerp degenerates to a
# normalised linear blend.
_SLERP_EPS = 1e-12


@dataclass(frozen=True)
class Quaternion:
    """Orientation quaternion ``w + xi + yj + zk``."""

    w: float = 1.0
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    @classmethod
    def identity(cls) -> "Quaternion":
        return cls(1.0, 0.0, 0.0, 0.0)

    @classmethod
    def from_array(cls, values: Iterable[float]) -> "Quaternion":
        w, x, y, z = (float(v) for v in values)
        return cls(w, x, y, z)

    @classmethod
    def from_axis_angle(cls, axis, angle_rad: float) -> "Quaternion":
        """Rotation of *angle_rad* about *axis* (normalised internally)."""
        axis = np.asarray(axis, dtype=float)
        n = np.linalg.norm(axis)
        if n == 0:
            raise ValueError("Rotation axis must be non-zero")
        axis = axis / n
        half = angle_rad / 2.0
        s = math.sin(half)
        return cls(math.cos(half), axis[0] * s, axis[1] * s, axis[2] * s)

    @classmethod
    def from_euler_xyz(cls, angles_rad) -> "Quaternion":
        """Build from intrinsic X-Y-Z Euler angles in radians."""
        x, y, z, w = Rotation.from_euler("XYZ", angles_rad).as_quat()
        return cls(float(w), float(x), float(y), float(z))

    def as_array(self) -> np.ndarray:
        return np.array([self.w, self.x, self.y, self.z], dtype=float)

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.w, self.x, self.y, self.z)

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.w * self.w + self.x * self.x
                         + self.y * self.y + self.z * self.z)

    def normalized(self) -> "Quaternion":
        m = self.magnitude
        if m == 0:
            return Quaternion.identity()
        return Quaternion(self.w / m, self.x / m, self.y / m, self.z / m)

    def conjugate(self) -> "Quaternion":
        return Quaternion(self.w, -self.x, -self.y, -self.z)

    def inverse(self) -> "Quaternion":
        """Multiplicative inverse; equals the conjugate for unit quaternions."""
        n2 = self.w * self.w + self.x * self.x + self.y * self.y + self.z * self.z
        if n2 == 0:
            raise ValueError("Zero quaternion has no inverse")
        c = self.conjugate()
        return Quaternion(c.w / n2, c.x / n2, c.y / n2, c.z / n2)

    def dot(self, other: "Quaternion") -> float:
        return (self.w * other.w + self.x * other.x
                + self.y * other.y + self.z * other.z)

    def __neg__(self) -> "Quaternion":
        return Quaternion(-self.w, -self.x, -self.y, -self.z)

    def __mul__(self, other: "Quaternion") -> "Quaternion":
        """Hamilton product ``self ⊗ other`` (apply *other* first)."""
        if not isinstance(other, Quaternion):
            return NotImplemented
        aw, ax, ay, az = self.as_tuple()
        bw, bx, by, bz = other.as_tuple()
        return Quaternion(
            aw * bw - ax * bx - ay * by - az * bz,
            aw * bx + ax * bw + ay * bz - az * by,
            aw * by - ax * bz + ay * bw + az * bx,
            aw * bz + ax * by - ay * bx + az * bw,
        )

    def slerp(self, other: "Quaternion", t: float) -> "Quaternion":
        """Spherical interpolation from ``self`` (t=0) to *other* (t=1).

        Takes the shortest arc: if the two quaternions lie in opposite
        hemispheres, *other* is negated first.
        """
        if t == 0:
            return self
        if t == 1:
            return other

        cos_half = self.dot(other)
        if cos_half < 0:
            other = -other
            cos_half = -cos_half
        if cos_half >= 1.0:
            return self

        a = self.as_array()
        b = other.as_array()
        sqr_sin_half = 1.0 - cos_half * cos_half
        if sqr_sin_half <= _SLERP_EPS:
            return Quaternion.from_array((1.0 - t) * a + t * b).normalized()

        sin_half = math.sqrt(sqr_sin_half)
        half_theta = math.atan2(sin_half, cos_half)
        ratio_a = math.sin((1.0 - t) * half_theta) / sin_half
        ratio_b = math.sin(t * half_theta) / sin_half
        return Quaternion.from_array(ratio_a * a + ratio_b * b)

    def to_rotation(self) -> Rotation:
        """scipy Rotation (normalises; raises ``ValueError`` on a zero quaternion)."""
        return Rotation.from_quat([self.x, self.y, self.z, self.w])

    def euler_xyz(self) -> np.ndarray:
        """Intrinsic X-Y-Z Euler angles in radians.

        X and Z lie in [-pi, pi], Y in [-pi/2, pi/2]. At gimbal lock the
        Z angle is reported as zero.
        """
        with warnings.catch_warnings():
            warnings.filterwarnings("ignore", message="Gimbal lock detected")
            return self.to_rotation().as_euler("XYZ")
