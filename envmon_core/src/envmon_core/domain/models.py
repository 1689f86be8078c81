import json
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Union

Number = Union[float, int]
FieldSet = Dict[str, Number]

MEASUREMENT = "environment"


class AcquisitionMode(str, Enum):
    PASSIVE = "passive"
    ACTIVE = "active"


def normalize_address(address: str) -> str:
    """Return the lower-case, colon separated form of a radio address."""
    return address.strip().replace("-", ":").lower()


@dataclass(frozen=True)
class Device:
    address: str
    name: str
    model: str
    mode: AcquisitionMode = AcquisitionMode.PASSIVE
    timeout_s: float = 30.0
    interval_s: float = 300.0


@dataclass(frozen=True)
class CompositeRecord:
    device_name: str
    fields: Mapping[str, Number]
    ts: float
    poll_duration_ms: Optional[float] = None
    measurement: str = field(default=MEASUREMENT)

    def __post_init__(self):
        if not self.fields:
            raise ValueError(f"record for {self.device_name} has no fields")
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    @property
    def tags(self) -> Dict[str, str]:
        return {"name": self.device_name}

    def point_fields(self) -> FieldSet:
        out = dict(self.fields)
        if self.poll_duration_ms is not None:
            out["poll_duration_ms"] = self.poll_duration_ms
        return out

    def to_string(self) -> str:
        return json.dumps(
            {
                "measurement": self.measurement,
                "tags": self.tags,
                "fields": self.point_fields(),
                "ts": self.ts,
            }
        )
