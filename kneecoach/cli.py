"""Command-line interface for kneecoach.

Provides subcommands for sensor-based knee rehabilitation:

    kneecoach scan
    kneecoach gait --duration 10 --output result.json --record walk.bin
    kneecoach exercise 1 --side left --reps 15
    kneecoach analyze walk.bin --output result.json
    kneecoach simulate walk.jsonl --duration 10 --right-rom 38
    kneecoach info walk.bin
"""

import argparse
import asyncio
import logging
import sys
from importlib.metadata import version as pkg_version, PackageNotFoundError

from .exceptions import CalibrationError, TransportError


def _get_version() -> str:
    try:
        return pkg_version("kneecoach")
    except PackageNotFoundError:
        return "0.0.0+local"


def _setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _load_config(args) -> dict:
    import copy
    from .config import DEFAULT_CONFIG, load_config

    if getattr(args, "config", None):
        return load_config(args.config)
    return copy.deepcopy(DEFAULT_CONFIG)


def _print_result(result):
    m = result.metrics
    print(f"Steps: {m.step_count}   Duration: {m.test_duration:.1f}s")
    print(f"Knee ROM: right={m.right_knee_rom:.1f}°  left={m.left_knee_rom:.1f}°")
    print(f"Asymmetry: {m.asymmetry_score:.1f}°   "
          f"Lateral stability: {m.lateral_stability_score:.3f} rad   "
          f"Weight imbalance: {m.weight_distribution_score:.1f}%")
    print(f"Overall status: {result.overall_status.value}")
    print("Findings:")
    for d in result.diagnoses:
        print(f"  [{d.severity.value}] {d.description}")
    if result.recommendations:
        print("Recommended exercises:")
        for r in result.recommendations:
            print(f"  ({r.priority.value}) {r.exercise_name}: {r.reason}")


def _finish(result, args):
    from .schema import save_json

    _print_result(result)
    if getattr(args, "output", None):
        path = save_json(result, args.output)
        print(f"Saved to {path}")


# ── Offline commands ─────────────────────────────────────────────────

def cmd_analyze(args):
    """Run the gait analysis on a recording."""
    from .analysis import GaitAnalyzer
    from .orientation import OrientationProcessor
    from .recording import load_packets

    config = _load_config(args)
    packets = load_packets(args.recording)
    processor = OrientationProcessor.from_config(config)
    valid = [p for p in packets if processor.is_valid_packet(p)]
    if not valid:
        raise ValueError(f"No valid packets in {args.recording}")

    if not args.no_calibration:
        processor.calibrate(valid[0])
    smoothing = config["gait"].get("smoothing", False)
    analyzer = GaitAnalyzer.from_config(config, processor=processor)
    for packet in valid:
        analyzer.collect_gait_data(processor.process(packet, smoothing))

    result = analyzer.analyze()
    # wall-clock duration is meaningless offline; use the device timestamps
    result.metrics.test_duration = (valid[-1].timestamp - valid[0].timestamp) / 1000.0
    _finish(result, args)
    return result


def cmd_simulate(args):
    """Write a synthetic walking recording."""
    from .recording import save_packets
    from .simulate import synthetic_walk

    packets = synthetic_walk(
        duration_s=args.duration,
        fs=args.fs,
        right_rom=args.right_rom,
        left_rom=args.left_rom,
        lateral_sd=args.lateral_sd,
        left_load=args.left_load,
        right_load=args.right_load,
        seed=args.seed,
    )
    path = save_packets(packets, args.output)
    print(f"Wrote {len(packets)} packets to {path}")


def cmd_info(args):
    """Summarise a recording."""
    from collections import Counter
    from .orientation import OrientationProcessor
    from .recording import load_packets

    packets = load_packets(args.recording)
    if not packets:
        print("No packets")
        return
    processor = OrientationProcessor()
    valid = sum(1 for p in packets if processor.is_valid_packet(p))
    duration = (packets[-1].timestamp - packets[0].timestamp) / 1000.0
    statuses = Counter(p.status.value for p in packets)
    batteries = [p.battery for p in packets]
    print(f"Packets: {len(packets)} ({valid} valid)")
    print(f"Duration: {duration:.2f}s")
    print(f"Battery: {min(batteries)}-{max(batteries)}%")
    print("Status: " + ", ".join(f"{k}={v}" for k, v in sorted(statuses.items())))


# ── Live commands ────────────────────────────────────────────────────

def _print_state(state):
    line = f"[{state.status.value}]"
    if state.device_name:
        line += f" {state.device_name}"
    if state.error:
        line += f" {state.error}"
    print(line)


async def _scan(args, config):
    from .transport import SensorTransport

    transport = SensorTransport.from_config(config)
    devices = await transport.discover(timeout=args.timeout)
    if not devices:
        print("No sensor arrays found")
    for device in devices:
        print(f"{device.name or '?'}  {device.address}")


async def _connect(config):
    from .pipeline import SensorPipeline
    from .transport import SensorTransport

    transport = SensorTransport.from_config(config)
    transport.on_state_change(_print_state)
    pipeline = SensorPipeline.from_config(transport, config)
    await transport.request_device()
    return transport, pipeline


async def _calibrate(pipeline, settle_s: float):
    print(f"Stand still for calibration ({settle_s:.0f}s)...")
    await asyncio.sleep(settle_s)
    pipeline.calibrate()
    print("Calibration complete")


async def _gait(args, config):
    transport, pipeline = await _connect(config)
    recorded = []
    if args.record:
        transport.on_data_received(recorded.append)
    try:
        await _calibrate(pipeline, args.settle)
        analyzer = pipeline.start_gait_test()
        print(f"Walk at a comfortable pace ({args.duration:.0f}s)...")
        await pipeline.wait_gait_complete(timeout=args.duration)
        result = analyzer.analyze()
    finally:
        pipeline.close()
        await transport.disconnect()
    if args.record:
        from .recording import save_packets
        print(f"Recorded {len(recorded)} packets to {save_packets(recorded, args.record)}")
    _finish(result, args)


async def _exercise(args, config):
    from .reps import ExerciseTracker

    transport, pipeline = await _connect(config)
    try:
        await _calibrate(pipeline, args.settle)
        tracker = ExerciseTracker.for_exercise(args.exercise_id, side=args.side, config=config)
        pipeline.start_exercise(tracker)
        print(f"Go! Target {args.reps} reps")
        while tracker.rep_count < args.reps:
            await asyncio.sleep(0.1)
            if transport.get_connection_state().reconnect_failed:
                break
        print(f"Completed {tracker.rep_count} reps")
    finally:
        pipeline.close()
        await transport.disconnect()


def cmd_scan(args):
    """List nearby sensor arrays."""
    asyncio.run(_scan(args, _load_config(args)))


def cmd_gait(args):
    """Run a live gait test."""
    config = _load_config(args)
    if args.duration is None:
        args.duration = config["gait"].get("duration_s", 10.0)
    asyncio.run(_gait(args, config))


def cmd_exercise(args):
    """Count reps of a catalog exercise live."""
    asyncio.run(_exercise(args, _load_config(args)))


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="kneecoach",
        description="Knee rehabilitation coaching from a wearable IMU array",
    )
    parser.add_argument("--version", action="version", version=f"kneecoach {_get_version()}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    parser.add_argument("--config", help="Config file (JSON/YAML)")

    sub = parser.add_subparsers(dest="command", help="Available commands")

    # scan
    p_scan = sub.add_parser("scan", help="List nearby sensor arrays")
    p_scan.add_argument("--timeout", type=float, default=5.0, help="Scan time in s (default: 5)")
    p_scan.set_defaults(func=cmd_scan)

    # gait
    p_gait = sub.add_parser("gait", help="Run a live gait test")
    p_gait.add_argument("--duration", type=float, help="Walking time in s (default: from config)")
    p_gait.add_argument("--settle", type=float, default=3.0, help="Calibration countdown in s")
    p_gait.add_argument("-o", "--output", help="Save the result as JSON")
    p_gait.add_argument("--record", help="Save raw packets (.bin or .jsonl)")
    p_gait.set_defaults(func=cmd_gait)

    # exercise
    p_ex = sub.add_parser("exercise", help="Count reps of an exercise live")
    p_ex.add_argument("exercise_id", help="Catalog exercise id (1-6)")
    p_ex.add_argument("--side", choices=["right", "left"], default="right", help="Exercised leg")
    p_ex.add_argument("--reps", type=int, default=10, help="Stop after this many reps")
    p_ex.add_argument("--settle", type=float, default=3.0, help="Calibration countdown in s")
    p_ex.set_defaults(func=cmd_exercise)

    # analyze
    p_an = sub.add_parser("analyze", help="Analyze a recording (.bin or .jsonl)")
    p_an.add_argument("recording", help="Recording file")
    p_an.add_argument("-o", "--output", help="Save the result as JSON")
    p_an.add_argument("--no-calibration", action="store_true",
                      help="Do not use the first packet as calibration pose")
    p_an.set_defaults(func=cmd_analyze)

    # simulate
    p_sim = sub.add_parser("simulate", help="Write a synthetic walking recording")
    p_sim.add_argument("output", help="Output file (.bin or .jsonl)")
    p_sim.add_argument("--duration", type=float, default=10.0, help="Length in s (default: 10)")
    p_sim.add_argument("--fs", type=float, default=20.0, help="Sample rate in Hz (default: 20)")
    p_sim.add_argument("--right-rom", type=float, default=60.0, help="Right knee ROM in deg")
    p_sim.add_argument("--left-rom", type=float, default=60.0, help="Left knee ROM in deg")
    p_sim.add_argument("--lateral-sd", type=float, default=0.0, help="Thigh wobble std-dev in rad")
    p_sim.add_argument("--left-load", type=float, default=50.0, help="Mean left heel load")
    p_sim.add_argument("--right-load", type=float, default=50.0, help="Mean right heel load")
    p_sim.add_argument("--seed", type=int, default=0, help="Random seed")
    p_sim.set_defaults(func=cmd_simulate)

    # info
    p_info = sub.add_parser("info", help="Summarise a recording")
    p_info.add_argument("recording", help="Recording file")
    p_info.set_defaults(func=cmd_info)

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except (TransportError, CalibrationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    main()
