"""Read-only HTTP status endpoint for a running station."""

import logging
import threading
from typing import List, Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Request
from pydantic import BaseModel

from envmon_sensor.listener import PassiveSensor
from envmon_sensor.poller import ActivePoller
from envmon_sensor.station import Station

log = logging.getLogger(__name__)

router = APIRouter()


class DeviceStatusOut(BaseModel):
    name: str
    address: str
    model: str
    mode: str
    # passive
    pending_fields: Optional[int] = None
    adverts_seen: Optional[int] = None
    last_advert_ts: Optional[float] = None
    # active
    cycles: Optional[int] = None
    failures: Optional[int] = None
    last_error: Optional[str] = None
    last_success_ts: Optional[float] = None

    @classmethod
    def from_passive(cls, sensor: PassiveSensor) -> "DeviceStatusOut":
        device = sensor.device
        return cls(
            name=device.name,
            address=device.address,
            model=device.model,
            mode=device.mode.value,
            pending_fields=sensor.accumulator.pending(),
            adverts_seen=sensor.adverts_seen,
            last_advert_ts=sensor.accumulator.last_update,
        )

    @classmethod
    def from_poller(cls, poller: ActivePoller) -> "DeviceStatusOut":
        device = poller.device
        return cls(
            name=device.name,
            address=device.address,
            model=device.model,
            mode=device.mode.value,
            cycles=poller.cycles,
            failures=poller.failures,
            last_error=poller.last_error,
            last_success_ts=poller.last_success,
        )


class StationStatusOut(BaseModel):
    dry_run: bool
    last_flush_ts: Optional[float]
    devices: List[DeviceStatusOut]


def get_station(request: Request) -> Station:
    return request.app.state.station


@router.get("/ping")
def ping():
    return {"status": "ok"}


@router.get("/devices", response_model=StationStatusOut)
def devices(station: Station = Depends(get_station)):
    out = [DeviceStatusOut.from_passive(s) for s in station.passive]
    out += [DeviceStatusOut.from_poller(p) for p in station.pollers]
    scheduler = station.scheduler
    return StationStatusOut(
        dry_run=station.sink is None,
        last_flush_ts=scheduler.last_flush if scheduler is not None else None,
        devices=out,
    )


def create_app(station: Station) -> FastAPI:
    app = FastAPI(title="envmon status")
    app.state.station = station
    app.include_router(router)
    return app


class StatusServer(threading.Thread):
    """Serves the status app with uvicorn on a daemon thread."""

    daemon = True

    def __init__(self, station: Station, host: str, port: int, log_level: str = "warning"):
        super().__init__(name="status-api")
        config = uvicorn.Config(create_app(station), host=host, port=port, log_level=log_level)
        self.server = uvicorn.Server(config)

    def run(self):
        log.info("Status API listening on %s:%s", self.server.config.host, self.server.config.port)
        self.server.run()

    def stop(self):
        self.server.should_exit = True
