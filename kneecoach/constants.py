"""Sensor identities, wire-format constants and the exercise catalog."""

import struct
from enum import IntEnum


class SensorId(IntEnum):
    """The five body-worn orientation sensors, in wire order."""

    PELVIS = 0
    RIGHT_THIGH = 1
    RIGHT_SHIN = 2
    LEFT_THIGH = 3
    LEFT_SHIN = 4

    @property
    def key(self) -> str:
        """Lower-case name used in JSON and DataFrame columns."""
        return self.name.lower()


N_SENSORS = len(SensorId)

# Thigh/shin pairs forming each knee joint.
KNEE_PAIRS = {
    "right": (SensorId.RIGHT_THIGH, SensorId.RIGHT_SHIN),
    "left": (SensorId.LEFT_THIGH, SensorId.LEFT_SHIN),
}

# ── Wire format ──────────────────────────────────────────────────────
# uint32 timestamp, 5 x (w, x, y, z) float32, 2 x float32 heel load,
# uint8 battery, uint8 status. Little-endian, no padding.
BINARY_PACKET_FORMAT = "<I20f2fBB"
BINARY_PACKET_SIZE = struct.calcsize(BINARY_PACKET_FORMAT)  # 94

# Legacy JSON keys, sens1 = pelvis ... sens5 = left shin.
LEGACY_SENSOR_KEYS = ("sens1", "sens2", "sens3", "sens4", "sens5")

# ── BLE peripheral ───────────────────────────────────────────────────
DEVICE_NAME = "RehabSensor_001"
SERVICE_UUID = "4fafc201-1fb5-459e-8fcc-c5c9c331914b"
CHARACTERISTIC_UUID = "beb5483e-36e1-4688-b7f5-ea07361b26a8"

# ── Exercise catalog ─────────────────────────────────────────────────
# target_angle is the knee angle (deg) the movement aims for; 0 means
# "no flexion target" and falls back to DEFAULT_TARGET_ANGLE for rep
# counting.
DEFAULT_TARGET_ANGLE = 90.0

EXERCISES = {
    "1": {"name": "Heel Slides", "sets": 3, "reps": 15, "target_angle": 90.0},
    "2": {"name": "Quad Sets", "sets": 3, "reps": 20, "target_angle": 0.0},
    "3": {"name": "Straight Leg Raises", "sets": 3, "reps": 12, "target_angle": 45.0},
    "4": {"name": "Ankle Pumps", "sets": 3, "reps": 25, "target_angle": 20.0},
    "5": {"name": "Short Arc Quads", "sets": 3, "reps": 15, "target_angle": 60.0},
    "6": {"name": "Hamstring Curls", "sets": 3, "reps": 12, "target_angle": 90.0},
}


def exercise_target_angle(exercise_id: str) -> float:
    """Rep-counting target angle for a catalog exercise."""
    entry = EXERCISES.get(str(exercise_id))
    if entry is None:
        raise ValueError(f"Unknown exercise id: {exercise_id!r}. "
                         f"Available: {sorted(EXERCISES)}")
    return entry["target_angle"] or DEFAULT_TARGET_ANGLE
