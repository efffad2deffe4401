"""BLE transport and connection management for the sensor array.

:class:`SensorTransport` discovers the sensor peripheral with
:mod:`bleak`, subscribes to its notification characteristic, decodes
every notification with :func:`kneecoach.protocol.decode_packet` and
fans packets and connection-state changes out to subscribers.

State machine::

    DISCONNECTED -> CONNECTING -> CONNECTED
    CONNECTED -> DISCONNECTED  (disconnect() or link drop)

After an unsolicited link drop the transport reconnects on its own,
waiting ``min(base * 2**attempt, max)`` ms before each try
(1000, 2000, 4000, 8000, 10000 by default). A failed try schedules the
next one; a successful one resets the counter. After
``max_attempts`` failures the state carries ``reconnect_failed=True``
and nothing else is scheduled until the user reconnects.
:meth:`SensorTransport.disconnect` cancels any pending reconnect.

All callbacks run synchronously on the event loop, in registration
order, in the order events arrive.
"""

import asyncio
import contextlib
import dataclasses
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, List, Optional, TypeVar

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from .constants import CHARACTERISTIC_UUID, DEVICE_NAME, SERVICE_UUID
from .exceptions import (
    DeviceNotSelectedError,
    PermissionDeniedError,
    ProtocolError,
    SensorConnectionError,
)
from .protocol import decode_packet
from .schema import SensorPacket

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConnectionStatus(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class ConnectionState:
    """Snapshot of the link, handed to state subscribers."""

    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    device_name: Optional[str] = None
    error: Optional[str] = None
    reconnect_attempts: int = 0
    reconnect_failed: bool = False

    @property
    def is_connected(self) -> bool:
        return self.status is ConnectionStatus.CONNECTED

    @property
    def is_connecting(self) -> bool:
        return self.status is ConnectionStatus.CONNECTING


class Signal(Generic[T]):
    """Ordered list of callbacks with unsubscribe handles."""

    def __init__(self):
        self._callbacks: List[Callable[[T], Any]] = []

    def connect(self, callback: Callable[[T], Any]) -> Callable[[], None]:
        self._callbacks.append(callback)

        def unsubscribe():
            with contextlib.suppress(ValueError):
                self._callbacks.remove(callback)

        return unsubscribe

    def emit(self, value: T) -> None:
        for callback in list(self._callbacks):
            callback(value)

    def __len__(self) -> int:
        return len(self._callbacks)


class ReconnectPolicy:
    """Capped exponential backoff: ``min(base_ms * 2**attempt, max_ms)``.

    Parameters
    ----------
    base_ms : int
        Delay before the first retry (default 1000).
    max_ms : int
        Upper bound on any delay (default 10000).
    max_attempts : int
        Number of retries before giving up (default 5).
    """

    def __init__(self, base_ms: int = 1000, max_ms: int = 10000, max_attempts: int = 5):
        self.base_ms = base_ms
        self.max_ms = max_ms
        self.max_attempts = max_attempts
        self.attempts = 0

    def next_delay(self) -> Optional[int]:
        """Delay (ms) for the next retry, or None once exhausted."""
        if self.attempts >= self.max_attempts:
            return None
        delay = min(self.base_ms * 2 ** self.attempts, self.max_ms)
        self.attempts += 1
        return delay

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def reset(self) -> None:
        self.attempts = 0


class SensorTransport:
    """Connection manager for one sensor-array peripheral.

    Parameters
    ----------
    device_name : str
        Advertised name to look for.
    service_uuid, characteristic_uuid : str
        GATT service advertised by the peripheral and the notifying
        characteristic carrying packets.
    scan_timeout : float
        Seconds to scan during :meth:`request_device`.
    policy : ReconnectPolicy, optional
        Backoff schedule for automatic reconnection.
    scanner : type, optional
        Scanner class (``BleakScanner`` API); injectable for tests.
    client_factory : callable, optional
        ``BleakClient``-compatible constructor; injectable for tests.
    sleep : callable, optional
        Coroutine used to wait out backoff delays (seconds).
    """

    def __init__(
        self,
        device_name: str = DEVICE_NAME,
        service_uuid: str = SERVICE_UUID,
        characteristic_uuid: str = CHARACTERISTIC_UUID,
        scan_timeout: float = 10.0,
        policy: Optional[ReconnectPolicy] = None,
        scanner: Any = BleakScanner,
        client_factory: Callable[..., Any] = BleakClient,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.device_name = device_name
        self.service_uuid = service_uuid.lower()
        self.characteristic_uuid = characteristic_uuid
        self.scan_timeout = scan_timeout
        self.policy = policy or ReconnectPolicy()
        self._scanner = scanner
        self._client_factory = client_factory
        self._sleep = sleep

        self._device = None
        self._client = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._state = ConnectionState()
        self._data_signal: Signal[SensorPacket] = Signal()
        self._state_signal: Signal[ConnectionState] = Signal()

    @classmethod
    def from_config(cls, config: dict, **kwargs) -> "SensorTransport":
        section = config.get("transport", {})
        policy = ReconnectPolicy(
            base_ms=section.get("reconnect_base_ms", 1000),
            max_ms=section.get("reconnect_max_ms", 10000),
            max_attempts=section.get("max_reconnect_attempts", 5),
        )
        return cls(
            device_name=section.get("device_name", DEVICE_NAME),
            service_uuid=section.get("service_uuid", SERVICE_UUID),
            characteristic_uuid=section.get("characteristic_uuid", CHARACTERISTIC_UUID),
            scan_timeout=section.get("scan_timeout", 10.0),
            policy=policy,
            **kwargs,
        )

    async def __aenter__(self) -> "SensorTransport":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect()

    # ── Subscriptions ────────────────────────────────────────────────

    def on_data_received(self, callback: Callable[[SensorPacket], Any]) -> Callable[[], None]:
        """Subscribe to decoded packets; returns an unsubscribe handle."""
        return self._data_signal.connect(callback)

    def on_state_change(self, callback: Callable[[ConnectionState], Any]) -> Callable[[], None]:
        """Subscribe to state changes; *callback* first receives the current state."""
        unsubscribe = self._state_signal.connect(callback)
        callback(self._state)
        return unsubscribe

    def get_connection_state(self) -> ConnectionState:
        return self._state

    def _update_state(self, **changes) -> None:
        self._state = dataclasses.replace(self._state, **changes)
        self._state_signal.emit(self._state)

    # ── Discovery ────────────────────────────────────────────────────

    def _matches(self, device, advertisement) -> bool:
        if device.name == self.device_name:
            return True
        uuids = getattr(advertisement, "service_uuids", None) or []
        return self.service_uuid in (u.lower() for u in uuids)

    async def discover(self, timeout: Optional[float] = None) -> list:
        """List nearby peripherals that look like the sensor array."""
        found = await self._scanner.discover(timeout=timeout or self.scan_timeout,
                                             return_adv=True)
        return [device for device, adv in found.values() if self._matches(device, adv)]

    async def request_device(self, connect: bool = True) -> None:
        """Scan for the sensor array and select it.

        Parameters
        ----------
        connect : bool
            Connect to the selected device straight away (default True).

        Raises
        ------
        DeviceNotSelectedError
            If no matching device was found or scanning failed.
        PermissionDeniedError
            If the OS refused Bluetooth access.
        SensorConnectionError
            If *connect* is True and connecting failed.
        """
        self._update_state(status=ConnectionStatus.CONNECTING, error=None)
        try:
            device = await self._scanner.find_device_by_filter(
                self._matches, timeout=self.scan_timeout)
        except PermissionError as exc:
            message = f"Bluetooth permission denied: {exc}"
            self._update_state(status=ConnectionStatus.DISCONNECTED, error=message)
            raise PermissionDeniedError(message) from exc
        except BleakError as exc:
            message = f"Failed to request device: {exc}"
            self._update_state(status=ConnectionStatus.DISCONNECTED, error=message)
            raise DeviceNotSelectedError(message) from exc

        if device is None:
            message = f"No device named {self.device_name!r} found"
            self._update_state(status=ConnectionStatus.DISCONNECTED, error=message)
            raise DeviceNotSelectedError(message)

        logger.info(f"Selected device {device.name} ({device.address})")
        self._device = device
        if connect:
            await self.connect()
        else:
            self._update_state(status=ConnectionStatus.DISCONNECTED)

    # ── Connection lifecycle ─────────────────────────────────────────

    async def connect(self) -> None:
        """Connect to the selected device and start notifications.

        Raises
        ------
        DeviceNotSelectedError
            If :meth:`request_device` has not selected a device.
        SensorConnectionError
            If the GATT connection or subscription fails.
        """
        if self._device is None:
            raise DeviceNotSelectedError("No device selected. Call request_device() first.")

        self._update_state(status=ConnectionStatus.CONNECTING)
        client = self._client_factory(self._device,
                                      disconnected_callback=self._on_disconnected)
        try:
            logger.info("Connecting to GATT server...")
            await client.connect()
            await client.start_notify(self.characteristic_uuid, self._handle_notification)
        except (BleakError, asyncio.TimeoutError, OSError) as exc:
            message = f"Connection failed: {exc}"
            logger.error(message)
            with contextlib.suppress(BleakError, OSError):
                await client.disconnect()
            self._update_state(status=ConnectionStatus.DISCONNECTED, error=message)
            raise SensorConnectionError(message) from exc
        except asyncio.CancelledError:
            logger.info("Connect cancelled")
            with contextlib.suppress(BleakError, OSError):
                await client.disconnect()
            self._update_state(status=ConnectionStatus.DISCONNECTED)
            raise

        self._client = client
        self.policy.reset()
        self._update_state(
            status=ConnectionStatus.CONNECTED,
            device_name=self._device.name,
            error=None,
            reconnect_attempts=0,
            reconnect_failed=False,
        )
        logger.info(f"Connected to {self._device.name}")

    async def disconnect(self) -> None:
        """Close the link and cancel any pending reconnect. Idempotent.

        BLE teardown errors are logged, not raised; the state always ends
        up ``DISCONNECTED``.
        """
        self._cancel_reconnect()
        client, self._client = self._client, None
        try:
            if client is not None:
                try:
                    await client.stop_notify(self.characteristic_uuid)
                except (BleakError, OSError) as exc:
                    logger.warning(f"Error stopping notifications: {exc}")
                if client.is_connected:
                    try:
                        await client.disconnect()
                    except (BleakError, OSError) as exc:
                        logger.warning(f"Error closing the link: {exc}")
                logger.info("Disconnected")
        finally:
            self.policy.reset()
            self._update_state(
                status=ConnectionStatus.DISCONNECTED,
                device_name=None,
                error=None,
                reconnect_attempts=0,
                reconnect_failed=False,
            )

    def _on_disconnected(self, client) -> None:
        if client is not self._client:
            # explicit disconnect or a client we already gave up on
            return
        self._client = None
        logger.warning("Device disconnected")
        self._update_state(status=ConnectionStatus.DISCONNECTED, error="Device disconnected")
        self._schedule_reconnect()

    # ── Reconnection ─────────────────────────────────────────────────

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def _schedule_reconnect(self) -> None:
        delay_ms = self.policy.next_delay()
        if delay_ms is None:
            message = "Reconnection failed. Please reconnect manually."
            logger.error(message)
            self._update_state(status=ConnectionStatus.DISCONNECTED, error=message,
                               reconnect_failed=True)
            return
        logger.warning(f"Reconnecting in {delay_ms} ms "
                       f"(attempt {self.policy.attempts}/{self.policy.max_attempts})")
        self._update_state(reconnect_attempts=self.policy.attempts)
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_after(delay_ms))

    async def _reconnect_after(self, delay_ms: int) -> None:
        await self._sleep(delay_ms / 1000.0)
        try:
            await self.connect()
        except SensorConnectionError as exc:
            logger.warning(f"Reconnection attempt failed: {exc.message}")
            self._reconnect_task = None
            self._schedule_reconnect()
        else:
            self._reconnect_task = None

    def _cancel_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None

    # ── Notifications ────────────────────────────────────────────────

    def _handle_notification(self, sender, data: bytearray) -> None:
        try:
            packet = decode_packet(data)
        except ProtocolError as exc:
            logger.warning(f"Dropping malformed packet ({len(data)} bytes): {exc}")
            return
        self._data_signal.emit(packet)
