import threading
import time
from typing import List, Optional, Tuple

from envmon_core.domain.models import CompositeRecord

from envmon_sensor.errors import TransportError


class RecordingSink:
    """Sink that keeps every record it is given."""

    def __init__(self, fails: int = 0, raises: Optional[Exception] = None):
        self.records: List[CompositeRecord] = []
        self._fails = fails
        self._raises = raises
        self._lock = threading.Lock()
        self.closed = False

    def write(self, record: CompositeRecord) -> bool:
        if self._raises is not None:
            raise self._raises
        with self._lock:
            self.records.append(record)
            if self._fails > 0:
                self._fails -= 1
                return False
        return True

    def close(self) -> None:
        self.closed = True


class RadioLog:
    """Shared event log that also tracks how many connections are open at once."""

    def __init__(self):
        self.events: List[Tuple[str, str]] = []
        self.open_connections = 0
        self.max_open_connections = 0
        self._lock = threading.Lock()

    def record(self, event: str, address: str) -> None:
        with self._lock:
            self.events.append((event, address))
            if event == "connect":
                self.open_connections += 1
                self.max_open_connections = max(self.max_open_connections, self.open_connections)
            elif event == "disconnect":
                self.open_connections -= 1


class FakeSession:
    def __init__(
        self,
        address: str,
        log: RadioLog,
        battery: int = 77,
        payload: Optional[bytes] = b"T=23.7 H=55.2\x00",
        hold: float = 0.0,
    ):
        self.address = address
        self.log = log
        self.battery = battery
        self.payload = payload
        self.hold = hold

    def discover(self) -> None:
        self.log.record("discover", self.address)

    def read_battery(self) -> int:
        self.log.record("battery", self.address)
        return self.battery

    def wait_for_notification(self, timeout: float) -> bytes:
        self.log.record("notify", self.address)
        if self.hold:
            time.sleep(self.hold)
        if self.payload is None:
            raise TimeoutError()
        return self.payload

    def disconnect(self) -> None:
        self.log.record("disconnect", self.address)


class FakeConnector:
    """Connector handing out :class:`FakeSession` objects."""

    def __init__(self, fail: bool = False, **session_kwargs):
        self.log = RadioLog()
        self.fail = fail
        self.session_kwargs = session_kwargs
        self.timeouts: List[float] = []

    def connect(self, address: str, timeout: float) -> FakeSession:
        self.timeouts.append(timeout)
        if self.fail:
            raise TransportError(f"connect to {address} failed: unreachable")
        self.log.record("connect", address)
        return FakeSession(address, self.log, **self.session_kwargs)


class FakeTransport(FakeConnector):
    """Stands in for the bleak transport in station wiring tests."""

    def __init__(self, scan_fails: bool = False, **kwargs):
        super().__init__(**kwargs)
        self.scan_fails = scan_fails
        self.started = False
        self.scan_callback = None
        self.closed = False

    def start(self) -> None:
        self.started = True

    def start_scan(self, callback) -> None:
        if self.scan_fails:
            raise TransportError("cannot start scanning: no adapter")
        self.scan_callback = callback

    def stop_scan(self) -> None:
        self.scan_callback = None

    def close(self) -> None:
        self.closed = True
