"""Joint angles from parent/child segment orientations.

The knee angle is taken as the largest absolute intrinsic X-Y-Z Euler
component of the shin orientation relative to the thigh. Sensor
mounting does not guarantee that any particular axis lines up with
flexion, so whichever axis rotates most is reported. This is an
approximation, not a single-axis biomechanical joint model: abduction
or axial rotation larger than the flexion itself will be reported as
the knee angle.

Functions
---------
joint_angle
    Scalar joint angle (deg) between two segment orientations.
knee_angles
    Right and left knee angles for a packet.
pelvis_pitch
    Pelvis Euler-X angle (rad), used for step detection.
"""

from typing import Tuple

import numpy as np

from .constants import KNEE_PAIRS, SensorId
from .quaternion import Quaternion
from .schema import SensorPacket


def euler_xyz(q: Quaternion) -> np.ndarray:
    """Intrinsic X-Y-Z Euler angles of *q* in radians."""
    return q.euler_xyz()


def joint_angle(parent: Quaternion, child: Quaternion) -> float:
    """Joint angle in degrees between *parent* and *child* segments.

    Computes ``relative = parent⁻¹ ⊗ child`` and returns
    ``max(|X|, |Y|, |Z|)`` of its intrinsic X-Y-Z Euler angles.
    """
    relative = parent.inverse() * child
    return float(np.max(np.abs(np.degrees(relative.euler_xyz()))))


def knee_angle(packet: SensorPacket, side: str) -> float:
    """Knee angle (deg) for ``side`` in ``{"right", "left"}``."""
    try:
        thigh, shin = KNEE_PAIRS[side]
    except KeyError:
        raise ValueError(f"side must be 'right' or 'left', got {side!r}")
    return joint_angle(packet[thigh], packet[shin])


def knee_angles(packet: SensorPacket) -> Tuple[float, float]:
    """``(right, left)`` knee angles in degrees."""
    return knee_angle(packet, "right"), knee_angle(packet, "left")


def pelvis_pitch(packet: SensorPacket) -> float:
    """Pelvis Euler-X angle in radians."""
    return float(packet[SensorId.PELVIS].euler_xyz()[0])
