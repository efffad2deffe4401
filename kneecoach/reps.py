"""Live repetition counting for knee exercises.

:class:`RepetitionDetector` is a two-threshold (hysteresis) state
machine over the knee angle::

    flexed_threshold   = target * 0.3
    extended_threshold = min(target + 30, target * 1.5)

Starting ``EXTENDED``, the detector moves to ``FLEXED`` once the angle
rises above ``extended_threshold``; dropping back below
``flexed_threshold`` returns it to ``EXTENDED`` and completes one rep.
Noise around either single threshold cannot double-count.

:class:`ExerciseTracker` wires an :class:`OrientationProcessor` and the
knee-angle calculation in front of a detector for one leg.
"""

import logging
from enum import Enum
from typing import Optional

from .constants import DEFAULT_TARGET_ANGLE, exercise_target_angle
from .kinematics import knee_angle
from .orientation import OrientationProcessor
from .schema import SensorPacket

logger = logging.getLogger(__name__)


class RepState(Enum):
    EXTENDED = "extended"
    FLEXED = "flexed"


class RepetitionDetector:
    """Count repetitions for one exercise set.

    Parameters
    ----------
    target_angle : float
        Exercise target knee angle in degrees.
    flexed_ratio : float
        ``flexed_threshold = target * flexed_ratio`` (default 0.3).
    extended_margin : float
        Additive cap on the extended threshold (default 30 deg).
    extended_ratio : float
        Multiplicative cap on the extended threshold (default 1.5).
    """

    def __init__(self, target_angle: float = DEFAULT_TARGET_ANGLE,
                 flexed_ratio: float = 0.3,
                 extended_margin: float = 30.0,
                 extended_ratio: float = 1.5):
        self.target_angle = float(target_angle)
        self.flexed_threshold = self.target_angle * flexed_ratio
        self.extended_threshold = min(self.target_angle + extended_margin,
                                      self.target_angle * extended_ratio)
        self.state = RepState.EXTENDED
        self.rep_count = 0

    @classmethod
    def from_config(cls, config: dict, target_angle: Optional[float] = None):
        section = config.get("reps", {})
        if target_angle is None:
            target_angle = section.get("default_target_deg", DEFAULT_TARGET_ANGLE)
        return cls(
            target_angle=target_angle,
            flexed_ratio=section.get("flexed_ratio", 0.3),
            extended_margin=section.get("extended_margin_deg", 30.0),
            extended_ratio=section.get("extended_ratio", 1.5),
        )

    def feed(self, angle: float) -> bool:
        """Advance with a new knee angle; True when a rep completes."""
        if self.state is RepState.EXTENDED and angle > self.extended_threshold:
            self.state = RepState.FLEXED
        elif self.state is RepState.FLEXED and angle < self.flexed_threshold:
            self.state = RepState.EXTENDED
            self.rep_count += 1
            return True
        return False

    def reset(self) -> None:
        """Back to ``EXTENDED`` for a new set; the rep count is kept."""
        self.state = RepState.EXTENDED


class ExerciseTracker:
    """Turn sensor packets into rep events for one exercised leg.

    Parameters
    ----------
    detector : RepetitionDetector
        Detector configured for the exercise.
    side : {"right", "left"}
        Leg carrying the exercise.
    processor : OrientationProcessor, optional
        Shared calibration/smoothing stage; a default one is created.
    smoothing : bool
        Smooth orientations before computing the knee angle.
    """

    def __init__(self, detector: RepetitionDetector, side: str = "right",
                 processor: Optional[OrientationProcessor] = None,
                 smoothing: bool = True):
        if side not in ("right", "left"):
            raise ValueError(f"side must be 'right' or 'left', got {side!r}")
        self.detector = detector
        self.side = side
        self.processor = processor or OrientationProcessor()
        self.smoothing = smoothing
        self.last_angle: Optional[float] = None

    @classmethod
    def for_exercise(cls, exercise_id: str, side: str = "right",
                     processor: Optional[OrientationProcessor] = None,
                     config: Optional[dict] = None) -> "ExerciseTracker":
        """Tracker for a catalog exercise (see ``constants.EXERCISES``)."""
        target = exercise_target_angle(exercise_id)
        detector = RepetitionDetector.from_config(config or {}, target_angle=target)
        smoothing = (config or {}).get("orientation", {}).get("smoothing", True)
        return cls(detector, side=side, processor=processor, smoothing=smoothing)

    @property
    def rep_count(self) -> int:
        return self.detector.rep_count

    def feed(self, packet: SensorPacket) -> bool:
        """Process one raw packet; True when it completes a rep.

        Invalid packets are dropped and never complete a rep.
        """
        if not self.processor.is_valid_packet(packet):
            return False
        processed = self.processor.process(packet, self.smoothing)
        self.last_angle = knee_angle(processed, self.side)
        completed = self.detector.feed(self.last_angle)
        if completed:
            logger.info(f"Rep {self.detector.rep_count} completed "
                        f"({self.side} knee, {self.last_angle:.1f}°)")
        return completed

    def start_set(self) -> None:
        self.detector.reset()
