"""Wire codec for sensor-array notifications.

Two payload formats share the notification characteristic:

- **Binary** (exactly 94 bytes, little-endian)::

    offset  size  field
    0       4     timestamp (uint32, ms)
    4       16    pelvis quaternion (w, x, y, z float32)
    20      16    right thigh
    36      16    right shin
    52      16    left thigh
    68      16    left shin
    84      4     left heel load (float32, 0-100)
    88      4     right heel load (float32, 0-100)
    92      1     battery (uint8, 0-100)
    93      1     status (0 = ok, 1 = warning, 2 = error)

- **Legacy JSON** (any other length): UTF-8 object with ``timestamp``,
  ``sens1`` .. ``sens5`` (pelvis .. left shin) given either as
  ``{"qw", "qx", "qy", "qz"}`` objects or ``"w,x,y,z"`` strings,
  optional ``left_wt`` / ``right_wt``, ``battery`` and ``status``.

The format is chosen by payload length alone, so a future JSON payload
of exactly 94 bytes would be misread as binary. The firmware does not
send a version byte, and wire compatibility is kept as is.

Functions
---------
decode_packet
    Decode a notification payload (format sniffed by length).
decode_binary_packet
    Decode the 94-byte binary layout.
decode_json_packet
    Decode a legacy JSON payload.
encode_packet
    Encode a packet to the 94-byte binary layout.
parse_quaternion
    Lenient quaternion parsing for the legacy JSON format.
"""

import json
import logging
import math
import struct
import time
from typing import Any, Union

from .constants import (
    BINARY_PACKET_FORMAT,
    BINARY_PACKET_SIZE,
    LEGACY_SENSOR_KEYS,
    SensorId,
)
from .exceptions import ProtocolError
from .quaternion import Quaternion
from .schema import PacketStatus, SensorPacket

logger = logging.getLogger(__name__)

_BINARY = struct.Struct(BINARY_PACKET_FORMAT)

_IDENTITY = (1.0, 0.0, 0.0, 0.0)

BytesLike = Union[bytes, bytearray, memoryview]


def decode_packet(data: BytesLike) -> SensorPacket:
    """Decode one notification payload.

    Parameters
    ----------
    data : bytes-like
        Raw characteristic value.

    Returns
    -------
    SensorPacket
        Fully populated packet.

    Raises
    ------
    ProtocolError
        If the payload is neither a valid binary frame nor valid
        legacy JSON.
    """
    data = bytes(data)
    if len(data) == BINARY_PACKET_SIZE:
        return decode_binary_packet(data)
    return decode_json_packet(data)


def decode_binary_packet(data: BytesLike) -> SensorPacket:
    """Decode the 94-byte little-endian layout."""
    data = bytes(data)
    if len(data) != BINARY_PACKET_SIZE:
        raise ProtocolError(
            f"Binary packet must be {BINARY_PACKET_SIZE} bytes, got {len(data)}"
        )
    fields = _BINARY.unpack(data)
    timestamp = fields[0]
    quats = fields[1:21]
    orientations = tuple(
        Quaternion(*quats[i * 4:(i + 1) * 4]) for i in range(len(SensorId))
    )
    left_load, right_load, battery, status_code = fields[21:25]
    if not (math.isfinite(left_load) and math.isfinite(right_load)):
        raise ProtocolError(f"Non-finite heel load ({left_load}, {right_load})")
    return SensorPacket(
        timestamp=timestamp,
        orientations=orientations,
        left_load=left_load,
        right_load=right_load,
        battery=battery,
        status=PacketStatus.from_code(status_code),
    )


def encode_packet(packet: SensorPacket) -> bytes:
    """Encode *packet* to the 94-byte binary layout.

    Floats are narrowed to float32; a packet that was itself decoded
    from the binary layout round-trips bit-for-bit.

    Raises
    ------
    ProtocolError
        If a field does not fit its wire type (e.g. battery > 255).
    """
    values = [int(packet.timestamp)]
    for q in packet.orientations:
        values.extend(q.as_tuple())
    values.extend([packet.left_load, packet.right_load,
                   int(packet.battery), packet.status.code])
    try:
        return _BINARY.pack(*values)
    except struct.error as exc:
        raise ProtocolError(f"Cannot encode packet: {exc}") from exc


def _parse_component(value: Any, default: float) -> float:
    try:
        f = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(f):
        return default
    return f


def parse_quaternion(value: Any) -> Quaternion:
    """Parse a legacy quaternion field.

    Accepts ``{"qw", "qx", "qy", "qz"}`` mappings and ``"w,x,y,z"``
    strings. Missing or non-numeric components fall back to the
    identity quaternion's component; anything else yields identity.
    """
    if isinstance(value, str):
        parts = value.split(",")
        comps = [
            _parse_component(parts[i].strip(), d) if i < len(parts) else d
            for i, d in enumerate(_IDENTITY)
        ]
        return Quaternion(*comps)
    if isinstance(value, dict):
        comps = [
            _parse_component(value.get(key), d)
            for key, d in zip(("qw", "qx", "qy", "qz"), _IDENTITY)
        ]
        return Quaternion(*comps)
    return Quaternion.identity()


def _parse_status(value: Any) -> PacketStatus:
    if value is None:
        return PacketStatus.OK
    if isinstance(value, str):
        try:
            return PacketStatus(value.strip().lower())
        except ValueError:
            return PacketStatus.ERROR
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return PacketStatus.from_code(int(value))
    return PacketStatus.ERROR


def decode_json_packet(data: BytesLike) -> SensorPacket:
    """Decode a legacy UTF-8 JSON payload.

    Missing ``timestamp`` defaults to the current epoch time in ms,
    missing heel loads to 0 and missing ``battery`` to 100.
    """
    try:
        raw = json.loads(bytes(data).decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise ProtocolError(f"Payload is not UTF-8: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"Payload is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise ProtocolError("JSON packet root must be an object")

    timestamp = raw.get("timestamp")
    if timestamp is None:
        timestamp = int(time.time() * 1000)
    battery = raw.get("battery")
    try:
        return SensorPacket(
            timestamp=int(timestamp),
            orientations=tuple(parse_quaternion(raw.get(k)) for k in LEGACY_SENSOR_KEYS),
            left_load=_parse_component(raw.get("left_wt"), 0.0),
            right_load=_parse_component(raw.get("right_wt"), 0.0),
            battery=100 if battery is None else int(battery),
            status=_parse_status(raw.get("status")),
        )
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"Malformed JSON packet: {exc}") from exc
