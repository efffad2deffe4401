"""Synthetic sensor sessions.

Used by the test suite, the ``kneecoach simulate`` command and for
trying the analysis without hardware. Orientations are built so that
the knee angle computed by :func:`kneecoach.kinematics.joint_angle`
equals the requested flexion curve exactly: each shin is its thigh
rotated about X by the knee angle.
"""

from typing import List, Optional

import numpy as np

from .quaternion import Quaternion
from .schema import PacketStatus, SensorPacket


def _flexion(t: np.ndarray, freq: float, base: float, amplitude: float,
             phase: float = 0.0) -> np.ndarray:
    """Raised-cosine curve between *base* and *base + amplitude*."""
    return base + amplitude * 0.5 * (1.0 - np.cos(2 * np.pi * freq * t + phase))


def _make_packet(timestamp: int, pelvis_pitch: float,
                 right_thigh, right_knee_deg: float,
                 left_thigh, left_knee_deg: float,
                 left_load: float, right_load: float,
                 battery: int = 100) -> SensorPacket:
    pelvis = Quaternion.from_euler_xyz([pelvis_pitch, 0.0, 0.0])
    rt = Quaternion.from_euler_xyz(right_thigh)
    lt = Quaternion.from_euler_xyz(left_thigh)
    rs = rt * Quaternion.from_axis_angle([1, 0, 0], np.radians(right_knee_deg))
    ls = lt * Quaternion.from_axis_angle([1, 0, 0], np.radians(left_knee_deg))
    return SensorPacket(
        timestamp=int(timestamp),
        orientations=(pelvis, rt, rs, lt, ls),
        left_load=float(left_load),
        right_load=float(right_load),
        battery=battery,
        status=PacketStatus.OK,
    )


def synthetic_walk(
    duration_s: float = 10.0,
    fs: float = 20.0,
    step_hz: float = 1.0,
    pitch_amplitude: float = 0.3,
    pitch_waveform: str = "square",
    right_rom: float = 60.0,
    left_rom: float = 60.0,
    knee_base: float = 5.0,
    lateral_sd: float = 0.0,
    left_load: float = 50.0,
    right_load: float = 50.0,
    seed: Optional[int] = 0,
) -> List[SensorPacket]:
    """Simulate a walking test.

    Parameters
    ----------
    duration_s, fs : float
        Session length (s) and sample rate (Hz).
    step_hz : float
        Pelvis pitch oscillation frequency.
    pitch_amplitude : float
        Pelvis pitch swings between 0 and this value (rad).
    pitch_waveform : {"square", "sine"}
        ``"square"`` jumps between the two levels (one detectable
        rising edge per cycle); ``"sine"`` is a smooth raised cosine.
    right_rom, left_rom : float
        Knee flexion range per leg (deg) above *knee_base*.
    lateral_sd : float
        Std-dev (rad) of random thigh Y/Z rotation, to simulate an
        unstable knee.
    left_load, right_load : float
        Mean heel loads (0-100).
    seed : int, optional
        Random seed for the lateral noise.

    Returns
    -------
    list of SensorPacket
    """
    if pitch_waveform not in ("square", "sine"):
        raise ValueError(f"Unknown pitch_waveform: {pitch_waveform!r}")
    rng = np.random.default_rng(seed)
    n = int(round(duration_s * fs))
    t = np.arange(n) / fs

    if pitch_waveform == "square":
        pitch = np.where((t * step_hz) % 1.0 >= 0.5, pitch_amplitude, 0.0)
    else:
        pitch = _flexion(t, step_hz, 0.0, pitch_amplitude)

    right_knee = _flexion(t, step_hz, knee_base, right_rom)
    left_knee = _flexion(t, step_hz, knee_base, left_rom, phase=np.pi)
    lateral = rng.normal(0.0, lateral_sd, size=(n, 4)) if lateral_sd > 0 else np.zeros((n, 4))

    packets = []
    for i in range(n):
        packets.append(_make_packet(
            timestamp=t[i] * 1000,
            pelvis_pitch=pitch[i],
            right_thigh=[0.0, lateral[i, 0], lateral[i, 1]],
            right_knee_deg=right_knee[i],
            left_thigh=[0.0, lateral[i, 2], lateral[i, 3]],
            left_knee_deg=left_knee[i],
            left_load=left_load,
            right_load=right_load,
        ))
    return packets


def synthetic_exercise(
    reps: int = 5,
    peak_angle: float = 100.0,
    rest_angle: float = 5.0,
    side: str = "right",
    rep_duration_s: float = 2.0,
    fs: float = 20.0,
) -> List[SensorPacket]:
    """Simulate a knee-flexion exercise on one leg.

    The exercised knee goes ``rest -> peak -> rest`` once per rep; the
    other leg stays at *rest_angle*.
    """
    if side not in ("right", "left"):
        raise ValueError(f"side must be 'right' or 'left', got {side!r}")
    n = int(round(reps * rep_duration_s * fs))
    t = np.arange(n) / fs
    moving = _flexion(t, 1.0 / rep_duration_s, rest_angle, peak_angle - rest_angle)
    still = np.full(n, rest_angle)
    right, left = (moving, still) if side == "right" else (still, moving)

    return [
        _make_packet(
            timestamp=t[i] * 1000,
            pelvis_pitch=0.0,
            right_thigh=[0.0, 0.0, 0.0],
            right_knee_deg=right[i],
            left_thigh=[0.0, 0.0, 0.0],
            left_knee_deg=left[i],
            left_load=50.0,
            right_load=50.0,
        )
        for i in range(n)
    ]
