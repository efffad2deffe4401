"""Tests for kneecoach.analysis -- gait metrics, diagnoses and exercise plans."""

import struct

import numpy as np
import pandas as pd
import pytest

from conftest import (
    count_rising_edges,
    make_knee_packet,
    make_packet,
    make_walking_packets,
    rot_y,
)

from kneecoach.analysis import (
    DiagnosisType,
    GaitAnalyzer,
    GaitDiagnosis,
    GaitMetrics,
    GaitThresholds,
    OverallStatus,
    Priority,
    Severity,
    _trailing_mean,
    generate_diagnosis,
    overall_status,
    recommend_exercises,
)
from kneecoach.kinematics import pelvis_pitch
from kneecoach.protocol import decode_packet, encode_packet
from kneecoach.quaternion import Quaternion


def _collect(packets, **kwargs):
    analyzer = GaitAnalyzer(**kwargs)
    for p in packets:
        analyzer.collect_gait_data(p)
    return analyzer


def _healthy_metrics(**overrides):
    values = dict(right_knee_rom=60.0, left_knee_rom=60.0, asymmetry_score=0.0,
                  lateral_stability_score=0.1, weight_distribution_score=5.0,
                  average_right_weight=50.0, average_left_weight=50.0)
    values.update(overrides)
    return GaitMetrics(**values)


def _types(diagnoses):
    return [d.type for d in diagnoses]


# ── Step detection ───────────────────────────────────────────────────

class TestSteps:

    def test_rising_pitch_jumps_count(self):
        pitches = [0.0, 0.2, 0.25, 0.05, 0.3]
        analyzer = _collect([make_knee_packet(pitch_rad=p) for p in pitches])
        assert analyzer.step_count == 2

    def test_first_sample_never_counts(self):
        analyzer = _collect([make_knee_packet(pitch_rad=0.3)])
        assert analyzer.step_count == 0
        assert analyzer.get_data_count() == 1

    def test_falling_pitch_does_not_count(self):
        analyzer = _collect([make_knee_packet(pitch_rad=p) for p in (0.4, 0.0, 0.4, 0.0)])
        assert analyzer.step_count == 1

    def test_synthetic_walk_step_count(self, walking_packets):
        expected = count_rising_edges([pelvis_pitch(p) for p in walking_packets])
        analyzer = _collect(walking_packets)
        assert expected == 10
        assert analyzer.step_count == expected

    def test_smooth_pitch_has_no_steps(self):
        packets = make_walking_packets(pitch_waveform="sine")
        expected = count_rising_edges([pelvis_pitch(p) for p in packets])
        assert _collect(packets).step_count == expected == 0

    def test_invalid_packet_ignored(self):
        analyzer = _collect([make_knee_packet()])
        analyzer.collect_gait_data(make_packet([Quaternion(0.0, 0.0, 0.0, 0.0)] * 5))
        assert analyzer.get_data_count() == 1

    def test_nan_frame_from_the_wire_ignored(self, walking_packets):
        raw = bytearray(encode_packet(make_knee_packet(right_knee=20.0, timestamp=999)))
        struct.pack_into("<f", raw, 20, float("nan"))
        analyzer = _collect(walking_packets)
        analyzer.collect_gait_data(decode_packet(raw))
        assert analyzer.get_data_count() == len(walking_packets)
        metrics = analyzer.analyze().metrics
        assert np.isfinite(metrics.right_knee_rom)
        assert np.isfinite(metrics.asymmetry_score)

    def test_reset(self, walking_packets):
        analyzer = _collect(walking_packets)
        analyzer.reset()
        assert analyzer.get_data_count() == 0
        assert analyzer.step_count == 0


# ── Metrics ──────────────────────────────────────────────────────────

class TestMetrics:

    def test_range_of_motion(self):
        analyzer = _collect(make_walking_packets(right_rom=39.0, left_rom=70.0))
        rom = analyzer.analyze_range_of_motion()
        assert rom["right"] == pytest.approx(39.0, abs=1e-6)
        assert rom["left"] == pytest.approx(70.0, abs=1e-6)

    def test_asymmetry_uses_rom_difference(self):
        # constant offset between legs but identical ROM
        packets = [make_knee_packet(right_knee=10 + a, left_knee=30 + a) for a in (0, 20, 40)]
        asym = _collect(packets).analyze_asymmetry()
        assert asym["score"] == pytest.approx(0.0, abs=1e-6)
        assert asym["avg_right"] == pytest.approx(30.0)
        assert asym["avg_left"] == pytest.approx(50.0)

    def test_lateral_stability_quiet(self, walking_packets):
        assert _collect(walking_packets).analyze_lateral_stability() == pytest.approx(0.0, abs=1e-9)

    def test_lateral_stability_wobble(self):
        wobble = Quaternion.from_euler_xyz([0.0, 0.6, 0.0])
        packets = [make_knee_packet(thigh=wobble if i % 2 else Quaternion.identity())
                   for i in range(20)]
        assert _collect(packets).analyze_lateral_stability() == pytest.approx(0.3)

    def test_lateral_stability_noise_increases_score(self):
        quiet = _collect(make_walking_packets()).analyze_lateral_stability()
        noisy = _collect(make_walking_packets(lateral_sd=0.3)).analyze_lateral_stability()
        assert noisy > quiet

    def test_weight_distribution(self):
        packets = [make_knee_packet(left_load=30.0, right_load=70.0) for _ in range(10)]
        weight = _collect(packets).analyze_weight_distribution()
        assert weight["score"] == pytest.approx(40.0)
        assert weight["avg_left"] == pytest.approx(30.0)
        assert weight["avg_right"] == pytest.approx(70.0)

    def test_weight_distribution_no_load(self):
        packets = [make_knee_packet(left_load=0.0, right_load=0.0) for _ in range(5)]
        assert _collect(packets).analyze_weight_distribution()["score"] == 0.0

    def test_trailing_mean(self):
        np.testing.assert_allclose(_trailing_mean([0, 10, 20, 30, 40, 50], 5),
                                   [0, 5, 10, 15, 20, 30])

    def test_analyze_empty_raises(self):
        with pytest.raises(ValueError):
            GaitAnalyzer().analyze()

    def test_duration_from_clock(self, walking_packets):
        ticks = iter([100.0, 112.5])
        analyzer = _collect(walking_packets, clock=lambda: next(ticks))
        assert analyzer.analyze().metrics.test_duration == pytest.approx(12.5)

    def test_to_dataframe(self, walking_packets):
        df = _collect(walking_packets).to_dataframe()
        assert isinstance(df, pd.DataFrame)
        assert len(df) == len(walking_packets)
        assert list(df.columns) == ["timestamp", "right_knee", "left_knee",
                                    "pelvis_pitch", "left_load", "right_load"]


# ── Diagnosis ────────────────────────────────────────────────────────

class TestDiagnosis:

    @pytest.mark.parametrize("rom, severity", [
        (39.0, Severity.SEVERE),
        (44.0, Severity.MODERATE),
        (49.0, Severity.MILD),
    ])
    def test_limited_rom_severity(self, rom, severity):
        diagnoses = generate_diagnosis(_healthy_metrics(right_knee_rom=rom))
        assert _types(diagnoses) == [DiagnosisType.LIMITED_ROM]
        assert diagnoses[0].severity is severity
        assert diagnoses[0].side == "right"

    def test_rom_at_limit_is_normal(self):
        assert _types(generate_diagnosis(_healthy_metrics(left_knee_rom=50.0))) == \
            [DiagnosisType.NORMAL]

    @pytest.mark.parametrize("score, severity", [
        (12.0, Severity.MILD),
        (16.0, Severity.MODERATE),
    ])
    def test_asymmetry(self, score, severity):
        diagnoses = generate_diagnosis(_healthy_metrics(asymmetry_score=score))
        assert _types(diagnoses) == [DiagnosisType.ASYMMETRIC_GAIT]
        assert diagnoses[0].severity is severity

    @pytest.mark.parametrize("score, severity", [
        (0.3, Severity.MILD),
        (0.4, Severity.MODERATE),
    ])
    def test_unstable_knee(self, score, severity):
        diagnoses = generate_diagnosis(_healthy_metrics(lateral_stability_score=score))
        assert _types(diagnoses) == [DiagnosisType.UNSTABLE_KNEE]
        assert diagnoses[0].severity is severity

    def test_weight_imbalance_names_heavier_side(self):
        diagnoses = generate_diagnosis(_healthy_metrics(
            weight_distribution_score=30.0, average_right_weight=65.0, average_left_weight=35.0))
        assert _types(diagnoses) == [DiagnosisType.WEIGHT_IMBALANCE]
        assert diagnoses[0].severity is Severity.MODERATE
        assert diagnoses[0].side == "right"
        assert "favoring right" in diagnoses[0].description

    def test_normal_only_when_nothing_triggers(self):
        diagnoses = generate_diagnosis(_healthy_metrics())
        assert len(diagnoses) == 1
        assert diagnoses[0].type is DiagnosisType.NORMAL
        assert diagnoses[0].severity is Severity.NORMAL

    def test_custom_thresholds(self):
        th = GaitThresholds(rom_min_deg=70.0)
        assert _types(generate_diagnosis(_healthy_metrics(), th)) == \
            [DiagnosisType.LIMITED_ROM, DiagnosisType.LIMITED_ROM]

    def test_thresholds_from_config_ignore_unknown_keys(self):
        th = GaitThresholds.from_config({"gait": {"rom_min_deg": 55.0, "target_steps": 10}})
        assert th.rom_min_deg == 55.0

    def test_end_to_end(self):
        result = _collect(make_walking_packets(right_rom=39.0, left_rom=70.0)).analyze()
        assert result.metrics.step_count == 10
        assert result.metrics.asymmetry_score == pytest.approx(31.0, abs=1e-6)
        assert _types(result.diagnoses) == [DiagnosisType.LIMITED_ROM,
                                            DiagnosisType.ASYMMETRIC_GAIT]
        assert result.diagnoses[0].severity is Severity.SEVERE
        assert result.overall_status is OverallStatus.NEEDS_ATTENTION

    def test_end_to_end_healthy(self, walking_packets):
        result = _collect(walking_packets).analyze()
        assert _types(result.diagnoses) == [DiagnosisType.NORMAL]
        assert result.recommendations == []
        assert result.overall_status is OverallStatus.GOOD


# ── Recommendations ──────────────────────────────────────────────────

def _diag(dtype, severity=Severity.MILD):
    return GaitDiagnosis(type=dtype, severity=severity, description="")


class TestRecommendations:

    def test_later_finding_overrides_and_sorts(self):
        recs = recommend_exercises([_diag(DiagnosisType.LIMITED_ROM),
                                    _diag(DiagnosisType.WEIGHT_IMBALANCE)])
        assert [r.exercise_id for r in recs] == ["5", "3", "1"]
        heel_slides = recs[-1]
        assert heel_slides.priority is Priority.MEDIUM
        assert heel_slides.reason == "Helps restore balanced movement patterns"

    def test_shared_exercise_deduplicated(self):
        recs = recommend_exercises([_diag(DiagnosisType.ASYMMETRIC_GAIT),
                                    _diag(DiagnosisType.UNSTABLE_KNEE)])
        assert [r.exercise_id for r in recs] == ["6", "3", "2"]
        assert recs[-1].reason == "Improves muscle control and joint stability"
        assert recs[0].exercise_name == "Hamstring Curls"

    def test_normal_has_no_plan(self):
        assert recommend_exercises([_diag(DiagnosisType.NORMAL, Severity.NORMAL)]) == []


@pytest.mark.parametrize("severities, status", [
    ([Severity.NORMAL], OverallStatus.GOOD),
    ([Severity.MILD, Severity.MILD], OverallStatus.GOOD),
    ([Severity.MILD, Severity.MODERATE], OverallStatus.FAIR),
    ([Severity.MODERATE, Severity.SEVERE], OverallStatus.NEEDS_ATTENTION),
])
def test_overall_status(severities, status):
    diagnoses = [_diag(DiagnosisType.LIMITED_ROM, s) for s in severities]
    assert overall_status(diagnoses) is status


def test_lateral_wobble_triggers_unstable_knee():
    wobble = rot_y(np.degrees(0.6))
    packets = [make_knee_packet(thigh=wobble if i % 2 else Quaternion.identity(),
                                right_knee=5 + 60 * (i % 2), left_knee=5 + 60 * (i % 2))
               for i in range(20)]
    result = _collect(packets).analyze()
    assert DiagnosisType.UNSTABLE_KNEE in _types(result.diagnoses)
