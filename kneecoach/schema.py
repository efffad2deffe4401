"""Sensor packet data model and JSON conversion helpers.

A :class:`SensorPacket` is created once per transport notification and
is immutable afterwards; every processing stage returns a new packet.

Functions
---------
packet_to_dict
    Convert a packet to the legacy-compatible JSON mapping.
to_serializable
    Recursively convert dataclasses, enums and numpy types to builtins.
save_json
    Write any result structure to a JSON file.
"""

import dataclasses
import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Sequence, Tuple, Union

import numpy as np

from .constants import N_SENSORS, SensorId
from .quaternion import Quaternion


class PacketStatus(Enum):
    """Device-reported health flag."""

    OK = "ok"
    WARNING = "warning"
    ERROR = "error"

    @classmethod
    def from_code(cls, code: int) -> "PacketStatus":
        """Wire status byte: 0 = ok, 1 = warning, anything else = error."""
        if code == 0:
            return cls.OK
        if code == 1:
            return cls.WARNING
        return cls.ERROR

    @property
    def code(self) -> int:
        return {PacketStatus.OK: 0, PacketStatus.WARNING: 1, PacketStatus.ERROR: 2}[self]


@dataclass(frozen=True)
class SensorPacket:
    """One decoded notification from the sensor array.

    Attributes
    ----------
    timestamp : int
        Device timestamp (ms).
    orientations : tuple of Quaternion
        Five orientations indexed by :class:`SensorId`.
    left_load, right_load : float
        Heel-load readings (0-100).
    battery : int
        Battery level (0-100).
    status : PacketStatus
        Device status flag.
    """

    timestamp: int
    orientations: Tuple[Quaternion, ...]
    left_load: float = 0.0
    right_load: float = 0.0
    battery: int = 100
    status: PacketStatus = PacketStatus.OK

    def __post_init__(self):
        if len(self.orientations) != N_SENSORS:
            raise ValueError(
                f"Expected {N_SENSORS} orientations, got {len(self.orientations)}"
            )
        object.__setattr__(self, "orientations", tuple(self.orientations))

    def __getitem__(self, sensor: SensorId) -> Quaternion:
        return self.orientations[sensor]

    def with_orientations(self, orientations: Sequence[Quaternion]) -> "SensorPacket":
        """Copy of this packet carrying new orientations."""
        return dataclasses.replace(self, orientations=tuple(orientations))


def packet_to_dict(packet: SensorPacket) -> dict:
    """Legacy JSON mapping (``sens1`` .. ``sens5`` as quaternion objects)."""
    out = {"timestamp": packet.timestamp}
    for sensor in SensorId:
        q = packet[sensor]
        out[f"sens{sensor.value + 1}"] = {"qw": q.w, "qx": q.x, "qy": q.y, "qz": q.z}
    out["left_wt"] = packet.left_load
    out["right_wt"] = packet.right_load
    out["battery"] = packet.battery
    out["status"] = packet.status.value
    return out


def to_serializable(obj: Any) -> Any:
    """Recursively convert results to JSON-compatible Python types."""
    if isinstance(obj, SensorPacket):
        return packet_to_dict(obj)
    if isinstance(obj, Quaternion):
        return list(obj.as_tuple())
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_serializable(getattr(obj, f.name))
                for f in dataclasses.fields(obj)}
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, dict):
        return {k: to_serializable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_serializable(v) for v in obj]
    return obj


def save_json(data: Any, path: Union[str, Path], indent: int = 2) -> str:
    """Save a result structure to a JSON file.

    Parameters
    ----------
    data : object
        Dataclass, dict or list; converted with :func:`to_serializable`.
    path : str or Path
        Output file path. Parent directories are created if needed.
    indent : int, optional
        JSON indentation level (default 2).

    Returns
    -------
    str
        Path to the written file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(to_serializable(data), f, indent=indent, ensure_ascii=False)
    return str(path)
