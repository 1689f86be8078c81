"""Advertisement payload decoders.

Each decoder maps the raw service-data bytes of one advertisement to a field
set. Decoders are total: any byte string is accepted and anything that does
not match the expected layout decodes to an empty field set. Noisy radio
environments produce malformed broadcasts all the time, so that is ordinary
traffic and not an error.

Decoders are looked up by the model tag configured for a device. Supporting a
new sensor model means writing a function with the same contract and
registering it with :func:`register_decoder`.
"""

import struct
from dataclasses import dataclass
from typing import Callable, Dict, List

from envmon_core.config.station import ConfigError
from envmon_core.domain.models import FieldSet

Decoder = Callable[[bytes], FieldSet]

_REGISTRY: Dict[str, Decoder] = {}


class UnknownModelError(ConfigError):
    """Raised when a device declares a model tag with no registered decoder."""


def register_decoder(model: str) -> Callable[[Decoder], Decoder]:
    def decorator(func: Decoder) -> Decoder:
        if model in _REGISTRY:
            raise ValueError(f"decoder for {model} already registered")
        _REGISTRY[model] = func
        return func

    return decorator


def get_decoder(model: str) -> Decoder:
    try:
        return _REGISTRY[model]
    except KeyError:
        raise UnknownModelError(f"unknown sensor type {model}") from None


def known_models() -> List[str]:
    return sorted(_REGISTRY)


def decode(model: str, raw: bytes) -> FieldSet:
    """Decode ``raw`` with the decoder registered for ``model``."""
    return get_decoder(model)(raw)


@dataclass(frozen=True)
class AtcLayout:
    """Byte layout of the pvvx custom firmware advertisement (LYWSD03MMC).

    Attributes:
        length: Exact payload length; anything else is not this format.
        temperature_offset: Signed int16 LE, hundredths of a degree Celsius.
        humidity_offset: Unsigned int16 LE, hundredths of a percent.
        battery_offset: Unsigned int8, battery percentage.
    """

    length: int = 15
    temperature_offset: int = 6
    humidity_offset: int = 8
    battery_offset: int = 12
    scale: float = 100.0


@dataclass(frozen=True)
class MiBeaconLayout:
    """Byte layout of the vendor service data sub-messages (LYWSDCGQ/01ZM).

    Attributes:
        type_offset: Sub-message discriminator.
        value_offset: Start of the sub-message body.
        battery_type: Body is one unsigned byte, battery percentage.
        climate_type: Body is int16 LE temperature then uint16 LE humidity, in tenths.
    """

    type_offset: int = 13
    value_offset: int = 14
    battery_type: int = 0x01
    climate_type: int = 0x04
    scale: float = 10.0


ATC = AtcLayout()
MIBEACON = MiBeaconLayout()


@register_decoder("LYWSD03MMC")
def decode_lywsd03mmc(raw: bytes) -> FieldSet:
    if len(raw) != ATC.length:
        return {}
    temperature, humidity = struct.unpack_from("<hH", raw, ATC.temperature_offset)
    return {
        "temperature": temperature / ATC.scale,
        "humidity": humidity / ATC.scale,
        "battery_pct": raw[ATC.battery_offset],
    }


@register_decoder("LYWSDCGQ/01ZM")
def decode_lywsdcgq(raw: bytes) -> FieldSet:
    if len(raw) <= MIBEACON.type_offset:
        return {}

    kind = raw[MIBEACON.type_offset]
    body = raw[MIBEACON.value_offset :]

    if kind == MIBEACON.battery_type:
        if len(body) < 1:
            return {}
        return {"battery_pct": body[0]}

    if kind == MIBEACON.climate_type:
        if len(body) < 4:
            return {}
        temperature, humidity = struct.unpack_from("<hH", body)
        return {
            "temperature": temperature / MIBEACON.scale,
            "humidity": humidity / MIBEACON.scale,
        }

    return {}
