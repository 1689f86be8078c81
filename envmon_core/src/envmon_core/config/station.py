"""Station document: sink connection, scheduling defaults and the sensor list.

The document is a TOML file read once at startup. Everything in it is
validated before any radio or sink resource is created, so a bad file stops
the process instead of leaving it half configured.
"""

from __future__ import annotations

import pathlib
import tomllib
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from envmon_core.domain.models import AcquisitionMode, Device, normalize_address


class ConfigError(RuntimeError):
    """Raised when configuration loading fails."""


class SinkKind(str, Enum):
    INFLUXDB = "influxdb"
    MQTT = "mqtt"


class DatabaseConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    kind: SinkKind = SinkKind.INFLUXDB
    host: str = "localhost"
    port: int = 8086
    user: str = ""
    password: str = Field("", alias="pass")
    name: str = Field(..., description="Database (InfluxDB) or topic prefix (MQTT)")
    timeout_ms: int = 10_000


class DefaultsConfig(BaseModel):
    timeout: float = Field(30.0, gt=0, description="Active poll timeout in seconds")
    interval: float = Field(300.0, gt=0, description="Active poll interval in seconds")
    flush_interval: float = Field(60.0, gt=0, description="Passive flush interval in seconds")


class SensorConfig(BaseModel):
    mac: str
    name: str
    type: str
    mode: AcquisitionMode = AcquisitionMode.PASSIVE
    timeout: Optional[float] = Field(None, gt=0)
    interval: Optional[float] = Field(None, gt=0)

    @field_validator("mac")
    @classmethod
    def _normalize_mac(cls, value: str) -> str:
        mac = normalize_address(value)
        parts = mac.split(":")
        if len(parts) != 6 or any(len(p) != 2 for p in parts):
            raise ValueError(f"not a radio address: {value!r}")
        try:
            [int(p, 16) for p in parts]
        except ValueError:
            raise ValueError(f"not a radio address: {value!r}") from None
        return mac


class StationConfig(BaseModel):
    database: DatabaseConfig
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    sensors: List[SensorConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_addresses(self) -> "StationConfig":
        seen = set()
        for sensor in self.sensors:
            if sensor.mac in seen:
                raise ValueError(f"duplicate sensor address {sensor.mac}")
            seen.add(sensor.mac)
        return self

    def with_fallbacks(self, **fallbacks: float) -> "StationConfig":
        """Fill [defaults] keys the document leaves out, e.g. from process settings."""
        missing = {
            key: value
            for key, value in fallbacks.items()
            if key not in self.defaults.model_fields_set
        }
        if not missing:
            return self
        defaults = self.defaults.model_copy(update=missing)
        return self.model_copy(update={"defaults": defaults})

    def devices(self) -> List[Device]:
        """Build immutable devices, applying [defaults] where a sensor has no override."""
        return [
            Device(
                address=s.mac,
                name=s.name,
                model=s.type,
                mode=s.mode,
                timeout_s=s.timeout if s.timeout is not None else self.defaults.timeout,
                interval_s=s.interval if s.interval is not None else self.defaults.interval,
            )
            for s in self.sensors
        ]


def load_config(path: str | pathlib.Path) -> StationConfig:
    """Load and validate a station TOML document."""
    path_obj = pathlib.Path(path)
    if not path_obj.exists():
        raise ConfigError(f"Config path does not exist: {path_obj}")

    try:
        with path_obj.open("rb") as handle:
            raw = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Malformed config {path_obj}: {exc}") from exc

    try:
        return StationConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config {path_obj}: {exc}") from exc
