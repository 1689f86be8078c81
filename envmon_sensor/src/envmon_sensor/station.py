import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from envmon_core.config.settings import Settings
from envmon_core.config.station import DatabaseConfig, SinkKind, StationConfig
from envmon_core.domain.models import AcquisitionMode, Device
from envmon_core.domain.ports import Sink

from envmon_sensor.ble_transport import BleakTransport
from envmon_sensor.decoders import get_decoder
from envmon_sensor.flush import FlushScheduler
from envmon_sensor.listener import AdvertisementListener, PassiveSensor
from envmon_sensor.poller import RADIO_LOCK, ActivePoller

log = logging.getLogger(__name__)

# Extra time given to an in-flight poll cycle on shutdown, on top of its timeout.
SHUTDOWN_GRACE_S = 5.0


def make_sink(database: DatabaseConfig, client_id: str = "envmon") -> Sink:
    """Create the sink selected by the [database] section."""
    if database.kind is SinkKind.MQTT:
        from envmon_sensor.mqtt_sink import MqttSink

        return MqttSink(
            host=database.host,
            port=database.port,
            topic_prefix=database.name,
            client_id=client_id,
            username=database.user or None,
            password=database.password or None,
        )

    from envmon_sensor.influx_sink import InfluxSink

    return InfluxSink(
        host=database.host,
        port=database.port,
        user=database.user,
        password=database.password,
        database=database.name,
        timeout_ms=database.timeout_ms,
    )


@dataclass
class Station:
    """All running parts of the ingestion service, wired together."""

    devices: List[Device]
    transport: BleakTransport
    sink: Optional[Sink]
    passive: List[PassiveSensor]
    listener: Optional[AdvertisementListener]
    scheduler: Optional[FlushScheduler]
    pollers: List[ActivePoller] = field(default_factory=list)
    radio_lock: threading.Lock = RADIO_LOCK
    started: bool = False

    def start(self) -> None:
        self.transport.start()
        if self.listener is not None:
            self.transport.start_scan(self.listener.detection_callback)
        if self.scheduler is not None:
            self.scheduler.start()
        for poller in self.pollers:
            poller.start()
        self.started = True
        log.info(
            "Station started: %d passive, %d active devices", len(self.passive), len(self.pollers)
        )

    def stop(self) -> None:
        """Stop the scan, then let the current flush tick and poll cycles finish."""
        log.info("Stopping station...")
        # an exclusive-radio poll resumes the scan on disconnect, so wait it out
        with self.radio_lock:
            self.transport.stop_scan()

        for poller in self.pollers:
            poller.stop()
        if self.scheduler is not None:
            self.scheduler.stop()

        if self.started:
            for poller in self.pollers:
                poller.join(timeout=2 * poller.device.timeout_s + SHUTDOWN_GRACE_S)
            if self.scheduler is not None:
                self.scheduler.join()

        if self.sink is not None:
            self.sink.close()
        self.transport.close()
        log.info("Station stopped")


def build_station(
    config: StationConfig,
    settings: Settings,
    transport_factory: Callable[[], BleakTransport] = BleakTransport,
    sink_factory: Callable[[DatabaseConfig], Sink] = make_sink,
    radio_lock: threading.Lock = RADIO_LOCK,
) -> Station:
    """Wire devices, decoders, sink and transport.

    Raises:
        UnknownModelError: if a device names a model with no decoder. Nothing
            has been created at that point.
    """
    devices = config.devices()
    decoders = {device.address: get_decoder(device.model) for device in devices}

    sink = None if settings.DRY_RUN else sink_factory(config.database)
    transport = transport_factory()

    passive = [
        PassiveSensor(device, decoders[device.address])
        for device in devices
        if device.mode is AcquisitionMode.PASSIVE
    ]
    listener = None
    scheduler = None
    if passive:
        listener = AdvertisementListener(passive, verbose=settings.VERBOSE)
        scheduler = FlushScheduler(
            passive,
            sink,
            interval_s=config.defaults.flush_interval,
            dry_run=settings.DRY_RUN,
        )

    pollers = [
        ActivePoller(device, transport, sink, dry_run=settings.DRY_RUN, radio_lock=radio_lock)
        for device in devices
        if device.mode is AcquisitionMode.ACTIVE
    ]

    return Station(
        devices=devices,
        transport=transport,
        sink=sink,
        passive=passive,
        listener=listener,
        scheduler=scheduler,
        pollers=pollers,
        radio_lock=radio_lock,
    )
