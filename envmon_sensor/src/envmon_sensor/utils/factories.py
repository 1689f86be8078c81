import struct
import time

import factory

from envmon_core.domain.models import AcquisitionMode, CompositeRecord, Device


class DeviceFactory(factory.Factory):
    class Meta:
        model = Device

    address = factory.Sequence(lambda n: f"aa:bb:cc:dd:{n // 256:02x}:{n % 256:02x}")
    name = factory.Sequence(lambda n: f"sensor-{n}")
    model = "LYWSD03MMC"
    mode = AcquisitionMode.PASSIVE
    timeout_s = 1.0
    interval_s = 0.1


class ActiveDeviceFactory(DeviceFactory):
    model = "LYWSDCGQ/01ZM"
    mode = AcquisitionMode.ACTIVE


class CompositeRecordFactory(factory.Factory):
    class Meta:
        model = CompositeRecord

    device_name = factory.Sequence(lambda n: f"sensor-{n}")
    fields = factory.LazyFunction(lambda: {"temperature": 21.3, "humidity": 45.6})
    ts = factory.LazyFunction(time.time)


def atc_payload(
    temperature: float,
    humidity: float,
    battery_pct: int,
    *,
    battery_mv: int = 2950,
    counter: int = 1,
    flags: int = 0,
    mac: bytes = b"\xff\xee\xdd\xcc\xbb\xaa",
) -> bytes:
    """15 byte custom firmware advertisement (LYWSD03MMC)."""
    return struct.pack(
        "<6shHHBBB",
        mac,
        round(temperature * 100),
        round(humidity * 100),
        battery_mv,
        battery_pct,
        counter,
        flags,
    )


MIBEACON_HEADER = bytes([0x50, 0x20, 0xAA, 0x01, 0x07]) + b"\xff\xee\xdd\xcc\xbb\xaa"


def mibeacon_battery(battery_pct: int) -> bytes:
    return MIBEACON_HEADER + bytes([0x0A, 0x10, 0x01, battery_pct])


def mibeacon_climate(temperature: float, humidity: float) -> bytes:
    return MIBEACON_HEADER + bytes([0x0D, 0x10, 0x04]) + struct.pack(
        "<hH", round(temperature * 10), round(humidity * 10)
    )
