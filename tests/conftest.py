"""Shared test fixtures for the kneecoach test suite.

Provides packet builders and fake BLE objects (scanner, client,
device) used across the test modules.
"""

import asyncio

import numpy as np
import pytest
from bleak.exc import BleakError

from kneecoach.quaternion import Quaternion
from kneecoach.schema import PacketStatus, SensorPacket
from kneecoach.simulate import synthetic_walk


def rot_x(deg):
    return Quaternion.from_axis_angle([1, 0, 0], np.radians(deg))


def rot_y(deg):
    return Quaternion.from_axis_angle([0, 1, 0], np.radians(deg))


def rot_z(deg):
    return Quaternion.from_axis_angle([0, 0, 1], np.radians(deg))


def assert_same_rotation(a, b, tol=1e-6):
    """Quaternions describe the same rotation (q and -q are equivalent)."""
    assert abs(abs(a.dot(b)) - 1.0) < tol, f"{a} != {b}"


def make_packet(orientations=None, timestamp=0, left_load=50.0, right_load=50.0,
                battery=90, status=PacketStatus.OK):
    """Packet with identity orientations unless given."""
    if orientations is None:
        orientations = [Quaternion.identity()] * 5
    return SensorPacket(
        timestamp=timestamp,
        orientations=tuple(orientations),
        left_load=left_load,
        right_load=right_load,
        battery=battery,
        status=status,
    )


def make_knee_packet(right_knee=0.0, left_knee=0.0, pitch_rad=0.0, timestamp=0,
                     left_load=50.0, right_load=50.0, thigh=None):
    """Packet whose knee angles equal *right_knee* / *left_knee* (deg)."""
    thigh = thigh or Quaternion.identity()
    pelvis = Quaternion.from_euler_xyz([pitch_rad, 0.0, 0.0])
    return make_packet(
        [pelvis, thigh, thigh * rot_x(right_knee), thigh, thigh * rot_x(left_knee)],
        timestamp=timestamp, left_load=left_load, right_load=right_load,
    )


def make_walking_packets(**kwargs):
    """Default synthetic walk: 10 s at 20 Hz, 10 pelvis steps, 60 deg ROM."""
    return synthetic_walk(**kwargs)


def count_rising_edges(values, threshold=0.15):
    return sum(1 for a, b in zip(values, values[1:]) if b - a > threshold)


# ── BLE fakes ────────────────────────────────────────────────────────

class FakeDevice:
    def __init__(self, name="RehabSensor_001", address="AA:BB:CC:DD:EE:FF"):
        self.name = name
        self.address = address


class FakeAdvertisement:
    def __init__(self, service_uuids=()):
        self.service_uuids = list(service_uuids)


class FakeScanner:
    """Stands in for ``BleakScanner``'s class-level discovery API."""

    def __init__(self, devices=(), error=None):
        self.devices = list(devices)
        self.error = error
        self.filter_calls = 0

    async def find_device_by_filter(self, filterfunc, timeout=10.0):
        self.filter_calls += 1
        if self.error is not None:
            raise self.error
        for device, adv in self.devices:
            if filterfunc(device, adv):
                return device
        return None

    async def discover(self, timeout=5.0, return_adv=False):
        return {d.address: (d, adv) for d, adv in self.devices}


class FakeClient:
    """Minimal ``BleakClient``: records calls, can fail and drop the link."""

    def __init__(self, device, disconnected_callback=None, fail=False, hang=False):
        self.device = device
        self.disconnected_callback = disconnected_callback
        self.fail = fail
        self.hang = hang
        self.disconnect_error = None
        self.disconnect_calls = 0
        self.is_connected = False
        self.notify_callback = None
        self.stopped = False

    async def connect(self):
        if self.hang:
            await asyncio.Event().wait()
        if self.fail:
            raise BleakError("connection refused")
        self.is_connected = True

    async def start_notify(self, uuid, callback):
        self.notify_callback = callback

    async def stop_notify(self, uuid):
        self.stopped = True

    async def disconnect(self):
        self.disconnect_calls += 1
        if self.disconnect_error is not None:
            raise self.disconnect_error
        was_connected = self.is_connected
        self.is_connected = False
        if was_connected and self.disconnected_callback is not None:
            self.disconnected_callback(self)

    # test helpers
    def notify(self, data):
        self.notify_callback(None, bytearray(data))

    def drop(self):
        self.is_connected = False
        self.disconnected_callback(self)


class FakeClientFactory:
    """Creates FakeClients; the next ``fail_next`` connects fail and the
    next ``hang_next`` never complete, then all succeed."""

    def __init__(self, fail_next=0):
        self.fail_next = fail_next
        self.hang_next = 0
        self.clients = []

    def __call__(self, device, disconnected_callback=None):
        fail = self.fail_next > 0
        if fail:
            self.fail_next -= 1
        hang = self.hang_next > 0
        if hang:
            self.hang_next -= 1
        client = FakeClient(device, disconnected_callback, fail=fail, hang=hang)
        self.clients.append(client)
        return client

    @property
    def last(self):
        return self.clients[-1]


class RecordingSleep:
    """Fake ``asyncio.sleep`` that returns at once and records delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


async def drain(loops=50):
    """Let scheduled tasks run."""
    for _ in range(loops):
        await asyncio.sleep(0)


@pytest.fixture
def walking_packets():
    return make_walking_packets()
