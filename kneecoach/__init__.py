"""kneecoach -- Knee rehabilitation coaching from a wearable IMU array.

Five orientation sensors (pelvis, both thighs, both shins) and two heel
load cells stream packets over BLE. kneecoach decodes them, calibrates
and smooths the orientations, computes knee angles, and turns a walking
test into diagnoses and an exercise plan, or counts exercise reps live.

Live gait test::

    import asyncio
    from kneecoach import SensorTransport, SensorPipeline

    async def main():
        transport = SensorTransport()
        pipeline = SensorPipeline(transport)
        await transport.request_device()
        await asyncio.sleep(3)
        pipeline.calibrate()
        analyzer = pipeline.start_gait_test()
        await pipeline.wait_gait_complete(timeout=10)
        print(analyzer.analyze().overall_status)
        await transport.disconnect()

    asyncio.run(main())

Offline analysis::

    from kneecoach import load_packets, OrientationProcessor, GaitAnalyzer
    packets = load_packets("walk.bin")
    processor = OrientationProcessor()
    processor.calibrate(packets[0])
    analyzer = GaitAnalyzer(processor=processor)
    for p in packets:
        analyzer.collect_gait_data(processor.process(p))
    result = analyzer.analyze()

Rep counting::

    from kneecoach import RepetitionDetector
    detector = RepetitionDetector(target_angle=60)
    completed = [detector.feed(a) for a in (10, 95, 15)]   # [False, False, True]
"""

__version__ = "0.2.0"

from .constants import SensorId, EXERCISES, exercise_target_angle
from .exceptions import (
    KneeCoachError,
    TransportError,
    DeviceNotSelectedError,
    PermissionDeniedError,
    SensorConnectionError,
    ProtocolError,
    CalibrationError,
)
from .quaternion import Quaternion
from .schema import PacketStatus, SensorPacket, packet_to_dict, save_json
from .protocol import decode_packet, encode_packet, parse_quaternion
from .orientation import OrientationProcessor
from .kinematics import joint_angle, knee_angles, pelvis_pitch
from .analysis import (
    GaitAnalyzer,
    GaitAnalysisResult,
    GaitDiagnosis,
    GaitMetrics,
    GaitThresholds,
    RecommendedExercise,
    DiagnosisType,
    Severity,
    Priority,
    OverallStatus,
    generate_diagnosis,
    recommend_exercises,
)
from .reps import RepetitionDetector, RepState, ExerciseTracker
from .transport import (
    SensorTransport,
    ConnectionState,
    ConnectionStatus,
    ReconnectPolicy,
)
from .pipeline import SensorPipeline
from .recording import load_packets, save_packets
from .simulate import synthetic_walk, synthetic_exercise
from .config import load_config, save_config, DEFAULT_CONFIG

__all__ = [
    # Data model
    "SensorId",
    "Quaternion",
    "SensorPacket",
    "PacketStatus",
    "packet_to_dict",
    "save_json",
    # Codec
    "decode_packet",
    "encode_packet",
    "parse_quaternion",
    # Transport
    "SensorTransport",
    "ConnectionState",
    "ConnectionStatus",
    "ReconnectPolicy",
    # Processing
    "OrientationProcessor",
    "joint_angle",
    "knee_angles",
    "pelvis_pitch",
    "SensorPipeline",
    # Gait analysis
    "GaitAnalyzer",
    "GaitAnalysisResult",
    "GaitDiagnosis",
    "GaitMetrics",
    "GaitThresholds",
    "RecommendedExercise",
    "DiagnosisType",
    "Severity",
    "Priority",
    "OverallStatus",
    "generate_diagnosis",
    "recommend_exercises",
    # Exercises
    "EXERCISES",
    "exercise_target_angle",
    "RepetitionDetector",
    "RepState",
    "ExerciseTracker",
    # Recordings
    "load_packets",
    "save_packets",
    "synthetic_walk",
    "synthetic_exercise",
    # Errors
    "KneeCoachError",
    "TransportError",
    "DeviceNotSelectedError",
    "PermissionDeniedError",
    "SensorConnectionError",
    "ProtocolError",
    "CalibrationError",
    # Config
    "load_config",
    "save_config",
    "DEFAULT_CONFIG",
    # Meta
    "__version__",
]
