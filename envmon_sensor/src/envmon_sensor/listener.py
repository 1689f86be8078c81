"""Passive advertisement listener.

Routes advertisements from known addresses to the owning sensor, which
decodes every service-data block and merges the fields into its accumulator.
Nothing is queued: each event is handled inline on the transport's callback
and then dropped.
"""

import logging
import threading
from typing import Iterable, Mapping, Optional

from envmon_core.domain.models import Device, normalize_address

from envmon_sensor.accumulator import DeviceAccumulator
from envmon_sensor.decoders import Decoder, get_decoder

logger = logging.getLogger(__name__)


def format_hex(data: bytes) -> str:
    """Space separated hex dump, e.g. ``b"\\x01\\xab"`` -> ``"01 ab"``."""
    return " ".join(f"{b:02x}" for b in data)


class PassiveSensor:
    """A passively listened device together with its decoder and accumulator."""

    def __init__(
        self,
        device: Device,
        decoder: Optional[Decoder] = None,
        accumulator: Optional[DeviceAccumulator] = None,
    ):
        self.device = device
        self.decoder = decoder or get_decoder(device.model)
        self.accumulator = accumulator or DeviceAccumulator()
        self._count_lock = threading.Lock()
        self.adverts_seen = 0

    @property
    def name(self) -> str:
        return self.device.name

    def process_adv(self, raw: bytes) -> None:
        self.accumulator.merge(self.decoder(raw))

    def count_advert(self) -> None:
        with self._count_lock:
            self.adverts_seen += 1


class AdvertisementListener:
    def __init__(self, sensors: Iterable[PassiveSensor], verbose: bool = False):
        self.sensors: Mapping[str, PassiveSensor] = {
            normalize_address(s.device.address): s for s in sensors
        }
        self.verbose = verbose

    def accepts(self, address: str) -> bool:
        return normalize_address(address) in self.sensors

    def handle(self, address: str, service_data: Mapping[str, bytes]) -> None:
        """Decode and merge every service-data block of one advertisement.

        Blocks are applied in iteration order, so if two blocks of the same
        event carry the same field the last one processed wins.
        """
        sensor = self.sensors.get(normalize_address(address))
        if sensor is None:
            return

        sensor.count_advert()
        for uuid, data in service_data.items():
            if self.verbose:
                logger.info(
                    "adv: %s, UUID: %s, data (len %d): %s",
                    sensor.name,
                    uuid,
                    len(data),
                    format_hex(data),
                )
            sensor.process_adv(bytes(data))

    def detection_callback(self, device, advertisement_data) -> None:
        """Callback with the signature ``BleakScanner`` expects."""
        try:
            if not self.accepts(device.address):
                return
            self.handle(device.address, advertisement_data.service_data or {})
        except Exception:
            logger.exception("Failed to process advertisement from %s", device.address)
