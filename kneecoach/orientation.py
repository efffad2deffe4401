"""Per-sensor calibration and orientation smoothing.

The :class:`OrientationProcessor` owns two pieces of per-sensor state,
both indexed by :class:`~kneecoach.constants.SensorId`:

- the calibration offsets, captured in one shot from a single packet
  and replaced wholesale on every calibration;
- a bounded FIFO of recent orientations used for smoothing.

Smoothing is an incrementally weighted quaternion mean: starting from
the oldest sample, each later sample ``i`` (0-based) is blended in by
spherical interpolation with weight ``1 / (i + 1)``, after flipping its
sign onto the running result's hemisphere.
"""

import logging
import math
from collections import deque
from typing import Deque, List, Optional, Sequence

from .constants import N_SENSORS, SensorId
from .exceptions import CalibrationError
from .quaternion import Quaternion
from .schema import SensorPacket

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = 5
DEFAULT_MAGNITUDE_TOLERANCE = 0.1


def blend_window(window: Sequence[Quaternion]) -> Quaternion:
    """Incrementally weighted shortest-path mean of *window*.

    Returns identity for an empty window.
    """
    if not window:
        return Quaternion.identity()
    result = window[0]
    for i in range(1, len(window)):
        qi = window[i]
        if result.dot(qi) < 0:
            qi = -qi
        result = result.slerp(qi, 1.0 / (i + 1))
    return result


class OrientationProcessor:
    """Calibrate and smooth raw sensor orientations.

    Parameters
    ----------
    window : int
        Smoothing FIFO capacity per sensor (default 5).
    magnitude_tolerance : float
        Maximum allowed ``| |q| - 1 |`` for a packet to be valid
        (default 0.1).
    """

    def __init__(self, window: int = DEFAULT_WINDOW,
                 magnitude_tolerance: float = DEFAULT_MAGNITUDE_TOLERANCE):
        if window < 1:
            raise ValueError("window must be >= 1")
        self.window = int(window)
        self.magnitude_tolerance = float(magnitude_tolerance)
        self._offsets: Optional[List[Quaternion]] = None
        self._windows: List[Deque[Quaternion]] = self._new_windows()

    @classmethod
    def from_config(cls, config: dict) -> "OrientationProcessor":
        section = config.get("orientation", {})
        return cls(
            window=section.get("smoothing_window", DEFAULT_WINDOW),
            magnitude_tolerance=section.get("magnitude_tolerance",
                                            DEFAULT_MAGNITUDE_TOLERANCE),
        )

    def _new_windows(self) -> List[Deque[Quaternion]]:
        return [deque(maxlen=self.window) for _ in range(N_SENSORS)]

    # ── Validation ───────────────────────────────────────────────────

    def is_valid_packet(self, packet: SensorPacket) -> bool:
        """True if all five orientations are unit length within tolerance."""
        for sensor in SensorId:
            mag = packet[sensor].magnitude
            if not math.isfinite(mag) or abs(mag - 1.0) > self.magnitude_tolerance:
                logger.warning(f"Invalid quaternion magnitude {mag:.3f} "
                               f"for {sensor.key}; packet dropped")
                return False
        return True

    # ── Calibration ──────────────────────────────────────────────────

    @property
    def is_calibrated(self) -> bool:
        return self._offsets is not None

    def calibrate(self, packet: SensorPacket) -> None:
        """Capture *packet*'s orientations as the new calibration pose.

        Raises
        ------
        CalibrationError
            If the packet fails the magnitude check; the previous
            calibration is kept.
        """
        if not self.is_valid_packet(packet):
            raise CalibrationError("Calibration pose contains invalid orientations")
        self._offsets = list(packet.orientations)
        logger.info(f"Calibration captured at t={packet.timestamp}")

    def clear_calibration(self) -> None:
        """Forget calibration offsets and smoothing history."""
        self._offsets = None
        self._windows = self._new_windows()

    reset = clear_calibration

    def apply_calibration(self, reading: Quaternion, sensor: SensorId) -> Quaternion:
        """Return ``offset⁻¹ ⊗ reading``, or *reading* if uncalibrated."""
        if self._offsets is None:
            return reading
        return self._offsets[sensor].inverse() * reading

    # ── Smoothing ────────────────────────────────────────────────────

    def smooth(self, reading: Quaternion, sensor: SensorId) -> Quaternion:
        """Push *reading* into the sensor's window and return the blend."""
        window = self._windows[sensor]
        window.append(reading)
        return blend_window(window)

    # ── Packet processing ────────────────────────────────────────────

    def process(self, packet: SensorPacket, smoothing: bool = True) -> SensorPacket:
        """Calibrate (and optionally smooth) all orientations.

        Returns a new packet; *packet* is left untouched.
        """
        out = []
        for sensor in SensorId:
            q = self.apply_calibration(packet[sensor], sensor)
            if smoothing:
                q = self.smooth(q, sensor)
            out.append(q)
        return packet.with_orientations(out)
