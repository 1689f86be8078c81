"""Radio transport backed by bleak.

bleak is asyncio based while the rest of the service runs on plain threads,
so the transport owns a private event loop running in a daemon thread and
exposes blocking calls that submit coroutines to it. The passive scan
callback runs on that loop thread.

Requirements:
- bleak: Cross-platform BLE library for scanning and GATT connections
"""

import asyncio
import logging
import threading
from typing import Callable, Optional

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from envmon_sensor.errors import TransportError

logger = logging.getLogger(__name__)

# MJ_HT_V1 (LYWSDCGQ) GATT layout
CLIMATE_SERVICE = "226c0000-6476-4566-7562-66734470666d"
CLIMATE_CHAR = "226caa55-6476-4566-7562-66734470666d"  # Notify "T=23.7 H=55.2"
BATTERY_CHAR = "00002a19-0000-1000-8000-00805f9b34fb"  # Read, one byte percentage

# Extra time allowed for a coroutine on top of its own timeout before the
# calling thread gives up on the loop.
LOOP_GRACE_S = 5.0


class BleakGattSession:
    """One live connection; every call blocks the calling thread."""

    def __init__(
        self,
        transport: "BleakTransport",
        client: BleakClient,
        timeout: float,
        battery_char: str = BATTERY_CHAR,
        climate_char: str = CLIMATE_CHAR,
    ):
        self._transport = transport
        self._client = client
        self._timeout = timeout
        self.battery_char = battery_char
        self.climate_char = climate_char

    def discover(self) -> None:
        services = self._client.services
        if services.get_service(CLIMATE_SERVICE) is None:
            raise TransportError(f"{self._client.address} has no climate service")
        for uuid in (self.battery_char, self.climate_char):
            if services.get_characteristic(uuid) is None:
                raise TransportError(f"{self._client.address} has no characteristic {uuid}")

    def read_battery(self) -> int:
        data = self._transport.call(
            self._client.read_gatt_char(self.battery_char), self._timeout
        )
        if not data:
            raise TransportError(f"{self._client.address} returned an empty battery level")
        return data[0]

    def wait_for_notification(self, timeout: float) -> bytes:
        return self._transport.call(self._first_notification(timeout), timeout)

    async def _first_notification(self, timeout: float) -> bytes:
        received = asyncio.get_running_loop().create_future()

        def handler(_characteristic, data: bytearray) -> None:
            if not received.done():
                received.set_result(bytes(data))

        await self._client.start_notify(self.climate_char, handler)
        try:
            return await asyncio.wait_for(received, timeout)
        finally:
            try:
                await self._client.stop_notify(self.climate_char)
            except BleakError as e:
                logger.debug("stop_notify on %s failed: %s", self._client.address, e)

    def disconnect(self) -> None:
        try:
            self._transport.call(self._client.disconnect(), self._timeout)
        finally:
            self._transport.resume_scan()


class BleakTransport:
    """Owns the radio: one passive scan subscription plus on-demand connections.

    Args:
        adapter: Host adapter name (e.g. ``"hci0"``), None for the default.
        exclusive_radio: Set when the adapter cannot scan while connected.
            Connecting then pauses the scan and disconnecting resumes it.
            Callers connect while holding the process radio lock, so scan
            start/stop is guarded by the same lock.
    """

    def __init__(self, adapter: Optional[str] = None, exclusive_radio: bool = False):
        self.adapter = adapter
        self.exclusive_radio = exclusive_radio
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._loop.run_forever, name="ble-loop", daemon=True
        )
        self._scanner: Optional[BleakScanner] = None
        self._scan_callback: Optional[Callable] = None
        self._scan_paused = False

    def start(self) -> None:
        self._thread.start()

    def call(self, coro, timeout: Optional[float] = None):
        """Run ``coro`` on the transport loop and wait for its result."""
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        wait_for = None if timeout is None else timeout + LOOP_GRACE_S
        return future.result(wait_for)

    def _scanner_kwargs(self) -> dict:
        if self.adapter:
            return {"adapter": self.adapter}
        return {}

    async def _open_scanner(self, callback: Callable) -> BleakScanner:
        scanner = BleakScanner(detection_callback=callback, **self._scanner_kwargs())
        await scanner.start()
        return scanner

    def start_scan(self, callback: Callable) -> None:
        """Subscribe ``callback(device, advertisement_data)`` to every advertisement."""
        self._scan_callback = callback
        try:
            self._scanner = self.call(self._open_scanner(callback), LOOP_GRACE_S)
        except (BleakError, OSError, TimeoutError) as e:
            raise TransportError(f"cannot start scanning: {e}") from e
        logger.info("starting scan")

    def stop_scan(self) -> None:
        if self._scanner is None:
            return
        try:
            self.call(self._scanner.stop(), LOOP_GRACE_S)
        except (BleakError, OSError, TimeoutError) as e:
            logger.warning("Failed to stop scanning: %s", e)
        self._scanner = None
        logger.info("scan stopped")

    def resume_scan(self) -> None:
        if not self._scan_paused or self._scan_callback is None:
            return
        self._scan_paused = False
        try:
            self.start_scan(self._scan_callback)
        except TransportError as e:
            logger.error("Failed to resume scanning: %s", e)

    async def _open_client(self, address: str, timeout: float) -> BleakClient:
        client = BleakClient(address, timeout=timeout, **self._scanner_kwargs())
        await client.connect()
        return client

    def connect(self, address: str, timeout: float) -> BleakGattSession:
        if self.exclusive_radio and self._scanner is not None:
            self.stop_scan()
            self._scan_paused = True

        try:
            client = self.call(self._open_client(address, timeout), timeout)
        except (BleakError, OSError, TimeoutError) as e:
            self.resume_scan()
            raise TransportError(f"connect to {address} failed: {e}") from e
        return BleakGattSession(self, client, timeout)

    def close(self) -> None:
        self.stop_scan()
        if self._thread.is_alive():
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=LOOP_GRACE_S)
