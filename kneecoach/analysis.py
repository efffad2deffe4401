"""Gait test analysis: steps, knee ROM, symmetry, stability and loading.

A :class:`GaitAnalyzer` accumulates processed packets for one walking
test, then derives metrics, threshold-based diagnoses and a prioritised
exercise plan.

Metrics
-------
Knee ROM
    ``max - min`` of the knee angle over the session, per leg.
Asymmetry
    ``|ROM_right - ROM_left|``. ROM differences are insensitive to a
    constant calibration offset, unlike differences of raw angles.
Lateral stability
    Population standard deviation of ``sqrt(Y**2 + Z**2)`` of both thigh
    orientations (intrinsic X-Y-Z Euler, rad), pooled over both legs.
Weight distribution
    Heel loads smoothed by a trailing moving average, then
    ``|left% - right%|`` of the session means.

Diagnosis thresholds
--------------------
================  =========  ===============================================
Finding           Trigger    Severity
================  =========  ===============================================
Limited ROM       < 50 deg   severe < 40, moderate < 45, else mild
Asymmetric gait   > 10 deg   moderate > 15, else mild
Unstable knee     > 0.25     moderate > 0.375 (1.5 x), else mild
Weight imbalance  > 15 %     moderate > 25, else mild
================  =========  ===============================================

When nothing triggers, a single ``NORMAL`` diagnosis is emitted.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

import numpy as np
import pandas as pd

from .constants import EXERCISES, SensorId
from .kinematics import knee_angles, pelvis_pitch
from .orientation import OrientationProcessor
from .schema import SensorPacket

logger = logging.getLogger(__name__)


class Severity(Enum):
    NORMAL = "normal"
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"


class DiagnosisType(Enum):
    LIMITED_ROM = "limited_rom"
    ASYMMETRIC_GAIT = "asymmetric_gait"
    UNSTABLE_KNEE = "unstable_knee"
    WEIGHT_IMBALANCE = "weight_imbalance"
    NORMAL = "normal"


class Priority(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {Priority.HIGH: 3, Priority.MEDIUM: 2, Priority.LOW: 1}[self]


class OverallStatus(Enum):
    GOOD = "good"
    FAIR = "fair"
    NEEDS_ATTENTION = "needs_attention"


@dataclass(frozen=True)
class GaitDiagnosis:
    """One finding. ``side`` is ``"right"``, ``"left"``, ``"both"`` or None."""

    type: DiagnosisType
    severity: Severity
    description: str
    side: Optional[str] = None


@dataclass(frozen=True)
class RecommendedExercise:
    exercise_id: str
    exercise_name: str
    reason: str
    priority: Priority


@dataclass
class GaitMetrics:
    right_knee_rom: float = 0.0
    left_knee_rom: float = 0.0
    asymmetry_score: float = 0.0
    lateral_stability_score: float = 0.0
    weight_distribution_score: float = 0.0
    step_count: int = 0
    test_duration: float = 0.0
    average_right_knee: float = 0.0
    average_left_knee: float = 0.0
    average_right_weight: float = 0.0
    average_left_weight: float = 0.0


@dataclass
class GaitAnalysisResult:
    metrics: GaitMetrics
    diagnoses: List[GaitDiagnosis]
    recommendations: List[RecommendedExercise]
    overall_status: OverallStatus
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class GaitThresholds:
    """Clinical limits used by :func:`generate_diagnosis`."""

    step_threshold_rad: float = 0.15
    rom_min_deg: float = 50.0
    rom_target_deg: float = 65.0
    rom_moderate_deg: float = 45.0
    rom_severe_deg: float = 40.0
    asymmetry_mild_deg: float = 10.0
    asymmetry_moderate_deg: float = 15.0
    lateral_stability_rad: float = 0.25
    lateral_stability_moderate_factor: float = 1.5
    weight_mild_pct: float = 15.0
    weight_moderate_pct: float = 25.0
    weight_smoothing_window: int = 5

    @classmethod
    def from_config(cls, config: dict) -> "GaitThresholds":
        section = config.get("gait", {})
        known = {k: v for k, v in section.items() if k in cls.__dataclass_fields__}
        return cls(**known)


# Candidate exercises per finding: (exercise id, reason, priority).
EXERCISE_RULES: Dict[DiagnosisType, List[tuple]] = {
    DiagnosisType.LIMITED_ROM: [
        ("1", "Improves knee flexion range of motion through controlled movement",
         Priority.HIGH),
        ("5", "Strengthens quadriceps while working through limited ROM",
         Priority.HIGH),
    ],
    DiagnosisType.ASYMMETRIC_GAIT: [
        ("3", "Builds unilateral strength to correct muscle imbalances",
         Priority.MEDIUM),
        ("2", "Improves muscle activation symmetry", Priority.MEDIUM),
    ],
    DiagnosisType.UNSTABLE_KNEE: [
        ("6", "Strengthens hamstrings for better knee stability and control",
         Priority.HIGH),
        ("2", "Improves muscle control and joint stability", Priority.MEDIUM),
    ],
    DiagnosisType.WEIGHT_IMBALANCE: [
        ("3", "Improves single-leg strength to correct weight distribution imbalance",
         Priority.HIGH),
        ("1", "Helps restore balanced movement patterns", Priority.MEDIUM),
    ],
}


def _rom(values) -> float:
    """Range of motion (max - min), 0 for an empty series."""
    if len(values) == 0:
        return 0.0
    return float(np.ptp(values))


def _trailing_mean(values, window: int) -> np.ndarray:
    """Trailing moving average; the first samples use a shorter window."""
    return pd.Series(values, dtype=float).rolling(window, min_periods=1).mean().to_numpy()


def _limited_rom_severity(rom: float, th: GaitThresholds) -> Severity:
    if rom < th.rom_severe_deg:
        return Severity.SEVERE
    if rom < th.rom_moderate_deg:
        return Severity.MODERATE
    return Severity.MILD


def generate_diagnosis(metrics: GaitMetrics,
                       thresholds: Optional[GaitThresholds] = None) -> List[GaitDiagnosis]:
    """Map metrics to findings using the fixed threshold table.

    Parameters
    ----------
    metrics : GaitMetrics
        Session metrics.
    thresholds : GaitThresholds, optional
        Override the default clinical limits.

    Returns
    -------
    list of GaitDiagnosis
        Findings in table order, or a single ``NORMAL`` entry.
    """
    th = thresholds or GaitThresholds()
    diagnoses = []

    for side, rom in (("right", metrics.right_knee_rom), ("left", metrics.left_knee_rom)):
        if rom < th.rom_min_deg:
            diagnoses.append(GaitDiagnosis(
                type=DiagnosisType.LIMITED_ROM,
                severity=_limited_rom_severity(rom, th),
                description=(f"{side.capitalize()} knee shows limited range of motion "
                             f"({rom:.1f}° vs {th.rom_target_deg:.0f}° target)"),
                side=side,
            ))

    if metrics.asymmetry_score > th.asymmetry_mild_deg:
        severity = (Severity.MODERATE if metrics.asymmetry_score > th.asymmetry_moderate_deg
                    else Severity.MILD)
        diagnoses.append(GaitDiagnosis(
            type=DiagnosisType.ASYMMETRIC_GAIT,
            severity=severity,
            description=(f"Asymmetric gait pattern detected "
                         f"({metrics.asymmetry_score:.1f}° difference between legs)"),
            side="both",
        ))

    if metrics.lateral_stability_score > th.lateral_stability_rad:
        moderate = th.lateral_stability_rad * th.lateral_stability_moderate_factor
        severity = (Severity.MODERATE if metrics.lateral_stability_score > moderate
                    else Severity.MILD)
        diagnoses.append(GaitDiagnosis(
            type=DiagnosisType.UNSTABLE_KNEE,
            severity=severity,
            description="Excessive lateral knee movement detected, indicating instability",
            side="both",
        ))

    if metrics.weight_distribution_score > th.weight_mild_pct:
        severity = (Severity.MODERATE if metrics.weight_distribution_score > th.weight_moderate_pct
                    else Severity.MILD)
        heavier = ("right" if metrics.average_right_weight > metrics.average_left_weight
                   else "left")
        diagnoses.append(GaitDiagnosis(
            type=DiagnosisType.WEIGHT_IMBALANCE,
            severity=severity,
            description=(f"Uneven weight distribution detected "
                         f"({metrics.weight_distribution_score:.1f}% imbalance, "
                         f"favoring {heavier} side)"),
            side=heavier,
        ))

    if not diagnoses:
        diagnoses.append(GaitDiagnosis(
            type=DiagnosisType.NORMAL,
            severity=Severity.NORMAL,
            description="Gait pattern within normal parameters",
        ))
    return diagnoses


def recommend_exercises(diagnoses: List[GaitDiagnosis]) -> List[RecommendedExercise]:
    """Build the exercise plan for a set of findings.

    Candidates are merged by exercise id; when two findings recommend
    the same exercise, the later finding's entry (reason and priority)
    replaces the earlier one while keeping its position. The plan is
    then sorted by priority, high first, ties in merge order.
    """
    merged: Dict[str, RecommendedExercise] = {}
    for diagnosis in diagnoses:
        for exercise_id, reason, priority in EXERCISE_RULES.get(diagnosis.type, []):
            merged[exercise_id] = RecommendedExercise(
                exercise_id=exercise_id,
                exercise_name=EXERCISES[exercise_id]["name"],
                reason=reason,
                priority=priority,
            )
    return sorted(merged.values(), key=lambda r: r.priority.rank, reverse=True)


def overall_status(diagnoses: List[GaitDiagnosis]) -> OverallStatus:
    """needs_attention if any severe finding, fair if any moderate, else good."""
    severities = {d.severity for d in diagnoses}
    if Severity.SEVERE in severities:
        return OverallStatus.NEEDS_ATTENTION
    if Severity.MODERATE in severities:
        return OverallStatus.FAIR
    return OverallStatus.GOOD


class GaitAnalyzer:
    """Collect one gait test and analyse it.

    Parameters
    ----------
    processor : OrientationProcessor, optional
        Used for packet validation only; a default one is created.
    thresholds : GaitThresholds, optional
        Step-detection and diagnosis limits.
    clock : callable, optional
        Monotonic clock (seconds) used for the test duration.
    """

    def __init__(self, processor: Optional[OrientationProcessor] = None,
                 thresholds: Optional[GaitThresholds] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.processor = processor or OrientationProcessor()
        self.thresholds = thresholds or GaitThresholds()
        self._clock = clock
        self.reset()

    @classmethod
    def from_config(cls, config: dict, processor: Optional[OrientationProcessor] = None):
        return cls(processor=processor or OrientationProcessor.from_config(config),
                   thresholds=GaitThresholds.from_config(config))

    def reset(self) -> None:
        """Start a new session."""
        self._history: List[SensorPacket] = []
        self._right_angles: List[float] = []
        self._left_angles: List[float] = []
        self._pitches: List[float] = []
        self._left_weights: List[float] = []
        self._right_weights: List[float] = []
        self._step_count = 0
        self._last_pitch = 0.0
        self._start_time = self._clock()

    # ── Collection ───────────────────────────────────────────────────

    def collect_gait_data(self, packet: SensorPacket) -> int:
        """Add a processed packet; returns the running step count.

        Invalid packets are ignored. A step is counted on a rising pelvis
        pitch change larger than ``step_threshold_rad`` between
        consecutive samples.
        """
        if not self.processor.is_valid_packet(packet):
            return self._step_count

        self._history.append(packet)
        self._left_weights.append(packet.left_load)
        self._right_weights.append(packet.right_load)
        right, left = knee_angles(packet)
        self._right_angles.append(right)
        self._left_angles.append(left)

        pitch = pelvis_pitch(packet)
        self._pitches.append(pitch)
        if len(self._history) > 1:
            delta = pitch - self._last_pitch
            if abs(delta) > self.thresholds.step_threshold_rad and delta > 0:
                self._step_count += 1
                logger.debug(f"Step {self._step_count} at t={packet.timestamp}")
        self._last_pitch = pitch
        return self._step_count

    def get_data_count(self) -> int:
        return len(self._history)

    @property
    def step_count(self) -> int:
        return self._step_count

    # ── Metrics ──────────────────────────────────────────────────────

    def analyze_range_of_motion(self) -> Dict[str, float]:
        """Per-leg knee ROM in degrees: ``{"right": ..., "left": ...}``."""
        return {"right": _rom(self._right_angles), "left": _rom(self._left_angles)}

    def analyze_asymmetry(self) -> Dict[str, float]:
        """ROM difference between legs plus per-leg mean knee angle."""
        rom = self.analyze_range_of_motion()
        return {
            "score": abs(rom["right"] - rom["left"]),
            "avg_right": float(np.mean(self._right_angles)) if self._right_angles else 0.0,
            "avg_left": float(np.mean(self._left_angles)) if self._left_angles else 0.0,
        }

    def analyze_lateral_stability(self) -> float:
        """Std-dev (rad) of off-sagittal thigh rotation, both legs pooled."""
        lateral = []
        for packet in self._history:
            for sensor in (SensorId.RIGHT_THIGH, SensorId.LEFT_THIGH):
                _, ey, ez = packet[sensor].euler_xyz()
                lateral.append(np.hypot(ey, ez))
        if not lateral:
            return 0.0
        return float(np.std(lateral))

    def analyze_weight_distribution(self) -> Dict[str, float]:
        """Heel-load imbalance score (%) and smoothed per-side means."""
        if not self._left_weights or not self._right_weights:
            return {"score": 0.0, "avg_right": 0.0, "avg_left": 0.0}
        window = self.thresholds.weight_smoothing_window
        avg_left = float(np.mean(_trailing_mean(self._left_weights, window)))
        avg_right = float(np.mean(_trailing_mean(self._right_weights, window)))
        total = avg_left + avg_right
        if total == 0:
            return {"score": 0.0, "avg_right": avg_right, "avg_left": avg_left}
        score = abs(avg_left / total * 100 - avg_right / total * 100)
        return {"score": score, "avg_right": avg_right, "avg_left": avg_left}

    def generate_diagnosis(self, metrics: GaitMetrics) -> List[GaitDiagnosis]:
        return generate_diagnosis(metrics, self.thresholds)

    def recommend_exercises(self, diagnoses: List[GaitDiagnosis]) -> List[RecommendedExercise]:
        return recommend_exercises(diagnoses)

    def analyze(self) -> GaitAnalysisResult:
        """Compute metrics, diagnoses, recommendations and overall status.

        Raises
        ------
        ValueError
            If no valid packet has been collected.
        """
        if not self._history:
            raise ValueError("No gait data collected; call collect_gait_data() first")

        rom = self.analyze_range_of_motion()
        asymmetry = self.analyze_asymmetry()
        weight = self.analyze_weight_distribution()
        metrics = GaitMetrics(
            right_knee_rom=rom["right"],
            left_knee_rom=rom["left"],
            asymmetry_score=asymmetry["score"],
            lateral_stability_score=self.analyze_lateral_stability(),
            weight_distribution_score=weight["score"],
            step_count=self._step_count,
            test_duration=self._clock() - self._start_time,
            average_right_knee=asymmetry["avg_right"],
            average_left_knee=asymmetry["avg_left"],
            average_right_weight=weight["avg_right"],
            average_left_weight=weight["avg_left"],
        )
        diagnoses = self.generate_diagnosis(metrics)
        recommendations = self.recommend_exercises(diagnoses)
        status = overall_status(diagnoses)
        logger.info(f"Gait analysis: {len(self._history)} samples, "
                    f"{self._step_count} steps, status={status.value}")
        return GaitAnalysisResult(
            metrics=metrics,
            diagnoses=diagnoses,
            recommendations=recommendations,
            overall_status=status,
        )

    def to_dataframe(self) -> pd.DataFrame:
        """Session samples as a DataFrame, one row per collected packet."""
        return pd.DataFrame({
            "timestamp": [p.timestamp for p in self._history],
            "right_knee": self._right_angles,
            "left_knee": self._left_angles,
            "pelvis_pitch": self._pitches,
            "left_load": self._left_weights,
            "right_load": self._right_weights,
        })
