"""Tests for kneecoach.protocol -- binary and legacy JSON packet decoding."""

import json
import math
import struct

import pytest

from conftest import make_packet, rot_x, rot_y

from kneecoach.constants import BINARY_PACKET_FORMAT, BINARY_PACKET_SIZE, SensorId
from kneecoach.exceptions import KneeCoachError, ProtocolError
from kneecoach.protocol import (
    decode_binary_packet,
    decode_json_packet,
    decode_packet,
    encode_packet,
    parse_quaternion,
)
from kneecoach.quaternion import Quaternion
from kneecoach.schema import PacketStatus, packet_to_dict


def _exact_packet():
    """Packet whose floats are all exactly representable as float32."""
    quats = [
        Quaternion(1.0, 0.0, 0.0, 0.0),
        Quaternion(0.5, 0.5, 0.5, 0.5),
        Quaternion(0.0, 1.0, 0.0, 0.0),
        Quaternion(0.5, -0.5, 0.5, -0.5),
        Quaternion(0.0, 0.0, 0.0, 1.0),
    ]
    return make_packet(quats, timestamp=123456, left_load=40.25, right_load=59.75,
                       battery=87, status=PacketStatus.WARNING)


# ── Binary ───────────────────────────────────────────────────────────

class TestBinary:

    def test_encoded_size(self):
        assert len(encode_packet(_exact_packet())) == BINARY_PACKET_SIZE == 94

    def test_round_trip_exact_values(self):
        packet = _exact_packet()
        assert decode_packet(encode_packet(packet)) == packet

    def test_round_trip_is_bit_identical_after_first_pass(self):
        packet = make_packet([rot_x(33.3), rot_y(12.1), rot_x(-7.7), rot_y(1.234), rot_x(89.9)],
                             timestamp=42, left_load=12.345, right_load=67.891)
        once = decode_packet(encode_packet(packet))
        assert encode_packet(once) == encode_packet(packet)
        assert decode_packet(encode_packet(once)) == once

    def test_field_layout(self):
        raw = encode_packet(_exact_packet())
        timestamp, = struct.unpack_from("<I", raw, 0)
        right_thigh = struct.unpack_from("<4f", raw, 20)
        loads = struct.unpack_from("<2f", raw, 84)
        assert timestamp == 123456
        assert right_thigh == (0.5, 0.5, 0.5, 0.5)
        assert loads == (40.25, 59.75)
        assert raw[92] == 87
        assert raw[93] == 1

    @pytest.mark.parametrize("code, status", [
        (0, PacketStatus.OK),
        (1, PacketStatus.WARNING),
        (2, PacketStatus.ERROR),
        (7, PacketStatus.ERROR),
    ])
    def test_status_byte(self, code, status):
        raw = bytearray(encode_packet(_exact_packet()))
        raw[93] = code
        assert decode_packet(raw).status is status

    def test_wrong_length_rejected(self):
        with pytest.raises(ProtocolError):
            decode_binary_packet(b"\x00" * 93)

    def test_unencodable_battery(self):
        packet = make_packet(battery=300)
        with pytest.raises(ProtocolError):
            encode_packet(packet)

    def test_accepts_memoryview(self):
        packet = _exact_packet()
        assert decode_packet(memoryview(encode_packet(packet))) == packet

    def test_size_matches_struct_format(self):
        assert BINARY_PACKET_SIZE == struct.calcsize(BINARY_PACKET_FORMAT)

    @pytest.mark.parametrize("value", [float("nan"), float("inf")])
    @pytest.mark.parametrize("offset", [84, 88])
    def test_non_finite_heel_load_rejected(self, value, offset):
        raw = bytearray(encode_packet(_exact_packet()))
        struct.pack_into("<f", raw, offset, value)
        with pytest.raises(ProtocolError):
            decode_packet(raw)

    def test_non_finite_quaternion_decodes(self):
        raw = bytearray(encode_packet(_exact_packet()))
        struct.pack_into("<f", raw, 20, float("nan"))
        packet = decode_packet(raw)
        assert math.isnan(packet.orientations[SensorId.RIGHT_THIGH].w)


# ── Legacy JSON ──────────────────────────────────────────────────────

def _json(obj):
    return json.dumps(obj).encode("utf-8")


class TestJson:

    def test_object_quaternions(self):
        payload = {
            "timestamp": 1000,
            "sens1": {"qw": 1, "qx": 0, "qy": 0, "qz": 0},
            "sens2": {"qw": 0.5, "qx": 0.5, "qy": 0.5, "qz": 0.5},
            "sens3": {"qw": 0, "qx": 1, "qy": 0, "qz": 0},
            "sens4": {"qw": 0, "qx": 0, "qy": 1, "qz": 0},
            "sens5": {"qw": 0, "qx": 0, "qy": 0, "qz": 1},
            "left_wt": 30.5,
            "right_wt": 69.5,
            "battery": 77,
            "status": "warning",
        }
        packet = decode_packet(_json(payload))
        assert packet.timestamp == 1000
        assert packet[SensorId.RIGHT_THIGH] == Quaternion(0.5, 0.5, 0.5, 0.5)
        assert packet[SensorId.LEFT_SHIN] == Quaternion(0, 0, 0, 1)
        assert packet.left_load == 30.5
        assert packet.right_load == 69.5
        assert packet.battery == 77
        assert packet.status is PacketStatus.WARNING

    def test_string_quaternions(self):
        payload = {"timestamp": 5, "sens2": "0.5, 0.5, 0.5, 0.5"}
        packet = decode_packet(_json(payload))
        assert packet[SensorId.RIGHT_THIGH] == Quaternion(0.5, 0.5, 0.5, 0.5)

    def test_missing_fields_default(self):
        packet = decode_packet(_json({"timestamp": 9}))
        assert all(q == Quaternion.identity() for q in packet.orientations)
        assert packet.left_load == 0.0
        assert packet.right_load == 0.0
        assert packet.battery == 100
        assert packet.status is PacketStatus.OK

    def test_missing_timestamp_uses_clock(self, monkeypatch):
        monkeypatch.setattr("kneecoach.protocol.time.time", lambda: 1700000000.5)
        packet = decode_packet(_json({}))
        assert packet.timestamp == 1700000000500

    def test_numeric_status(self):
        assert decode_packet(_json({"timestamp": 1, "status": 2})).status is PacketStatus.ERROR

    def test_unknown_status_string_is_error(self):
        assert decode_packet(_json({"timestamp": 1, "status": "bad"})).status is PacketStatus.ERROR

    def test_round_trip_through_legacy_mapping(self):
        packet = _exact_packet()
        assert decode_json_packet(_json(packet_to_dict(packet))) == packet

    @pytest.mark.parametrize("payload", [
        b"\xff\xfe\xfd",
        b"not json",
        b"[1, 2, 3]",
        b'"text"',
        b'{"timestamp": "soon"}',
    ])
    def test_malformed_payload_raises(self, payload):
        with pytest.raises(ProtocolError):
            decode_packet(payload)

    def test_protocol_error_hierarchy(self):
        assert issubclass(ProtocolError, KneeCoachError)
        assert issubclass(ProtocolError, ValueError)


# ── Quaternion parsing ───────────────────────────────────────────────

@pytest.mark.parametrize("value, expected", [
    ("1,0,0,0", (1.0, 0.0, 0.0, 0.0)),
    (" 0.7 , 0.1 , 0.2 , 0.3 ", (0.7, 0.1, 0.2, 0.3)),
    ("abc,0.1,x,0.2", (1.0, 0.1, 0.0, 0.2)),
    ("0.5,0.5", (0.5, 0.5, 0.0, 0.0)),
    ("nan,inf,0,0", (1.0, 0.0, 0.0, 0.0)),
    ({"qw": 0.9, "qx": "0.1"}, (0.9, 0.1, 0.0, 0.0)),
    ({"qw": None, "qy": "oops", "qz": 0.4}, (1.0, 0.0, 0.0, 0.4)),
    (None, (1.0, 0.0, 0.0, 0.0)),
    (42, (1.0, 0.0, 0.0, 0.0)),
])
def test_parse_quaternion_is_lenient(value, expected):
    assert parse_quaternion(value).as_tuple() == pytest.approx(expected)
