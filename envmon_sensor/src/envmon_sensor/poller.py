"""Active polling of devices that are read over a connection.

One cycle is: connect, discover services, read the battery level, wait for a
single temperature/humidity notification, disconnect. The radio can only hold
one connection at a time for the whole process, so every cycle of every
device runs under :data:`RADIO_LOCK`. Cycles never overlap, which also means
a device with a long timeout delays every other active device: the sum of
the timeouts of all active devices is a lower bound on how often any one of
them can actually be polled.
"""

import logging
import threading
import time
from typing import Callable, Optional, Protocol

from envmon_core.domain.models import CompositeRecord, Device, FieldSet
from envmon_core.domain.ports import Sink

from envmon_sensor.errors import NotificationParseError, PollError, PollTimeoutError

logger = logging.getLogger(__name__)

RADIO_LOCK = threading.Lock()

NOTIFICATION_KEYS = {"T": "temperature", "H": "humidity"}


class GattSession(Protocol):
    def discover(self) -> None: ...

    def read_battery(self) -> int: ...

    def wait_for_notification(self, timeout: float) -> bytes: ...

    def disconnect(self) -> None: ...


class Connector(Protocol):
    def connect(self, address: str, timeout: float) -> GattSession: ...


def parse_notification(payload: bytes) -> FieldSet:
    """Parse a ``T=23.7 H=55.2`` notification into named float fields.

    Raises:
        NotificationParseError: if the payload is empty, not ASCII, or any
            token is not ``KEY=<number>``. No partial result is returned.
    """
    try:
        text = payload.decode("ascii").strip("\x00 \r\n\t")
    except UnicodeDecodeError as e:
        raise NotificationParseError(f"non-ascii notification {payload!r}") from e

    if not text:
        raise NotificationParseError("empty notification")

    fields: FieldSet = {}
    for token in text.split():
        key, sep, value = token.partition("=")
        if not sep or not key:
            raise NotificationParseError(f"malformed token {token!r} in {text!r}")
        try:
            number = float(value)
        except ValueError:
            raise NotificationParseError(f"non-numeric value {value!r} for {key}") from None
        fields[NOTIFICATION_KEYS.get(key, key.lower())] = number
    return fields


class ActivePoller(threading.Thread):
    daemon = True

    def __init__(
        self,
        device: Device,
        connector: Connector,
        sink: Optional[Sink],
        dry_run: bool = False,
        radio_lock: threading.Lock = RADIO_LOCK,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(name=f"poll-{device.name}")
        self.device = device
        self.connector = connector
        self.sink = sink
        self.dry_run = dry_run
        self.radio_lock = radio_lock
        self.clock = clock
        self.s_stop = threading.Event()

        self.cycles = 0
        self.failures = 0
        self.last_error: Optional[str] = None
        self.last_success: Optional[float] = None

    def stop(self):
        self.s_stop.set()

    def poll_once(self) -> CompositeRecord:
        """Run one serialized poll cycle and return its record."""
        device = self.device
        wait_started = time.monotonic()
        with self.radio_lock:
            waited = time.monotonic() - wait_started
            if waited > device.interval_s:
                logger.warning(
                    "%s waited %.1fs for the radio, longer than its %.0fs interval",
                    device.name,
                    waited,
                    device.interval_s,
                )

            started_at = self.clock()
            started = time.monotonic()
            try:
                session = self.connector.connect(device.address, device.timeout_s)
            except Exception as e:
                raise PollError(f"{device.name}: connect to {device.address} failed: {e}") from e

            try:
                session.discover()
                battery = session.read_battery()
                try:
                    payload = session.wait_for_notification(device.timeout_s)
                except TimeoutError as e:
                    raise PollTimeoutError(
                        f"{device.name}: no notification within {device.timeout_s}s"
                    ) from e
                fields = parse_notification(payload)
            except PollError:
                raise
            except Exception as e:
                raise PollError(f"{device.name}: {e}") from e
            finally:
                try:
                    session.disconnect()
                except Exception as e:
                    logger.warning("%s: disconnect failed: %s", device.name, e)

            elapsed_ms = (time.monotonic() - started) * 1000.0

        fields["battery_pct"] = battery
        return CompositeRecord(
            device_name=device.name,
            fields=fields,
            ts=started_at,
            poll_duration_ms=elapsed_ms,
        )

    def cycle(self) -> Optional[CompositeRecord]:
        self.cycles += 1
        try:
            record = self.poll_once()
        except PollError as e:
            self.failures += 1
            self.last_error = str(e)
            logger.error("Skipping poll cycle for %s: %s", self.device.name, e)
            return None

        self.last_success = record.ts
        self.last_error = None
        logger.info(
            "%s %s (%.0fms)", record.device_name, dict(record.fields), record.poll_duration_ms
        )

        if self.dry_run or self.sink is None:
            return record
        try:
            ok = self.sink.write(record)
        except Exception as e:
            logger.error("Write error for %s: %s", record.device_name, e)
            ok = False
        if not ok:
            logger.warning("Dropped record for %s: sink write failed", record.device_name)
        return record

    def run(self):
        next_tick = time.time()
        while not self.s_stop.is_set():
            now = time.time()
            if now >= next_tick:
                self.cycle()
                while next_tick <= time.time():
                    next_tick += self.device.interval_s
            else:
                self.s_stop.wait(next_tick - now)
