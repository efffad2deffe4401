"""Route live sensor packets into a gait test or an exercise set.

::

    transport -> OrientationProcessor -> GaitAnalyzer      (gait test)
                                      -> ExerciseTracker   (exercise)

Only one consumer is attached at a time. The raw packet most recently
received is kept so the standing pose can be captured as calibration.
"""

import asyncio
import logging
from typing import Callable, Optional

from .analysis import GaitAnalyzer
from .exceptions import CalibrationError
from .orientation import OrientationProcessor
from .reps import ExerciseTracker
from .schema import SensorPacket

logger = logging.getLogger(__name__)


class SensorPipeline:
    """Subscribe to a transport and dispatch processed packets.

    Parameters
    ----------
    transport : SensorTransport
        Source of decoded packets (anything with ``on_data_received``).
    processor : OrientationProcessor, optional
        Calibration/smoothing stage shared by all consumers.
    gait_smoothing : bool
        Smooth orientations before gait collection (default False: the
        smoothing window spreads a pelvis pitch jump over several samples,
        which hides it from the per-sample step detector).
    target_steps, max_samples : int
        A gait test is complete once either is reached (10 steps or
        400 samples by default).
    """

    def __init__(self, transport, processor: Optional[OrientationProcessor] = None,
                 gait_smoothing: bool = False, target_steps: int = 10, max_samples: int = 400):
        self.transport = transport
        self.processor = processor or OrientationProcessor()
        self.gait_smoothing = gait_smoothing
        self.target_steps = target_steps
        self.max_samples = max_samples
        self.latest_packet: Optional[SensorPacket] = None
        self._analyzer: Optional[GaitAnalyzer] = None
        self._tracker: Optional[ExerciseTracker] = None
        self._complete = asyncio.Event()
        self._unsubscribe: Optional[Callable[[], None]] = transport.on_data_received(
            self._on_packet)

    @classmethod
    def from_config(cls, transport, config: dict) -> "SensorPipeline":
        gait = config.get("gait", {})
        return cls(
            transport,
            processor=OrientationProcessor.from_config(config),
            gait_smoothing=gait.get("smoothing", False),
            target_steps=gait.get("target_steps", 10),
            max_samples=gait.get("max_samples", 400),
        )

    def close(self) -> None:
        """Detach from the transport."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.stop()

    # ── Calibration ──────────────────────────────────────────────────

    def calibrate(self) -> None:
        """Capture the latest raw packet as the calibration pose.

        Raises
        ------
        CalibrationError
            If no packet has arrived yet or the packet is invalid.
        """
        if self.latest_packet is None:
            raise CalibrationError("No sensor data received yet")
        self.processor.calibrate(self.latest_packet)

    # ── Consumers ────────────────────────────────────────────────────

    def start_gait_test(self, analyzer: Optional[GaitAnalyzer] = None) -> GaitAnalyzer:
        """Reset and attach a gait analyzer; returns it."""
        self.stop()
        self._analyzer = analyzer or GaitAnalyzer(processor=self.processor)
        self._analyzer.reset()
        logger.info("Gait test started")
        return self._analyzer

    def start_exercise(self, tracker: ExerciseTracker) -> ExerciseTracker:
        """Attach an exercise tracker, sharing this pipeline's processor."""
        self.stop()
        tracker.processor = self.processor
        tracker.start_set()
        self._tracker = tracker
        logger.info(f"Exercise started ({tracker.side} leg, "
                    f"target {tracker.detector.target_angle:.0f}°)")
        return tracker

    def stop(self) -> None:
        self._analyzer = None
        self._tracker = None
        self._complete.clear()

    @property
    def gait_test_complete(self) -> bool:
        a = self._analyzer
        if a is None:
            return False
        return a.step_count >= self.target_steps or a.get_data_count() > self.max_samples

    async def wait_gait_complete(self, timeout: Optional[float] = None) -> bool:
        """Wait until the gait test completes; False on timeout."""
        try:
            await asyncio.wait_for(self._complete.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def _on_packet(self, packet: SensorPacket) -> None:
        self.latest_packet = packet
        if self._analyzer is not None:
            if not self.processor.is_valid_packet(packet):
                return
            processed = self.processor.process(packet, self.gait_smoothing)
            self._analyzer.collect_gait_data(processed)
            if self.gait_test_complete:
                self._complete.set()
        elif self._tracker is not None:
            self._tracker.feed(packet)
