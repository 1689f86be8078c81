"""
Canonical entry point for envmon_sensor package.

Usage:
    envmon -c config.toml
    envmon -c config.toml --dry-run --verbose
    envmon -c config.toml --check-config
    envmon --environment production --status-port 6060
"""

import argparse
import logging
import os
import signal
import sys
import threading
from typing import List, Optional

from envmon_core.config.environments import get_settings
from envmon_core.config.station import ConfigError, load_config

from envmon_sensor.ble_transport import BleakTransport
from envmon_sensor.decoders import get_decoder, known_models
from envmon_sensor.errors import TransportError
from envmon_sensor.station import build_station

EXIT_OK = 0
EXIT_STARTUP_FAILURE = 1
EXIT_CONFIG_ERROR = 2


def setup_logging(config) -> None:
    """Set up logging configuration."""
    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(message)s")

    # dry-run records and verbose payload dumps are logged at INFO
    if (config.DRY_RUN or config.VERBOSE) and level > logging.INFO:
        logging.getLogger("envmon_sensor").setLevel(logging.INFO)
    return None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Environment sensor ingestion")
    parser.add_argument(
        "--environment",
        choices=["production", "development", "testing"],
        default=os.getenv("ENVMON_ENV", "development"),
        help="Environment to run in",
    )
    parser.add_argument("-c", "--config", help="Station config file path (overrides settings)")
    parser.add_argument(
        "-n", "--dry-run", action="store_true", help="Log records instead of writing them"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Log every advertisement payload as hex"
    )
    parser.add_argument("--status-port", type=int, help="Serve the status API on this port")
    parser.add_argument("--adapter", help="Bluetooth adapter, e.g. hci0")
    parser.add_argument(
        "--exclusive-radio",
        action="store_true",
        help="Pause scanning while an active poll holds a connection",
    )
    parser.add_argument(
        "--check-config", action="store_true", help="Validate the config, list devices and exit"
    )
    return parser


def check_config(station_config) -> None:
    print(f"Known sensor types: {', '.join(known_models())}")
    db = station_config.database
    print(f"Sink: {db.kind.value} {db.host}:{db.port}/{db.name}")
    print(f"Flush interval: {station_config.defaults.flush_interval}s")
    for device in station_config.devices():
        get_decoder(device.model)
        print(
            f"  {device.address}  {device.name:<20} {device.model:<15} {device.mode.value:<8}"
            f" timeout={device.timeout_s}s interval={device.interval_s}s"
        )


def run(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    # Set environment variable for config
    os.environ["ENVMON_ENV"] = args.environment

    settings = get_settings()
    overrides = {}
    if args.config:
        overrides["CONFIG_FILE"] = args.config
    if args.dry_run:
        overrides["DRY_RUN"] = True
    if args.verbose:
        overrides["VERBOSE"] = True
    if args.status_port is not None:
        overrides["STATUS_PORT"] = args.status_port
    settings = settings.model_copy(update=overrides)

    setup_logging(settings)
    log = logging.getLogger(__name__)

    log.info("Starting envmon...")
    log.info(f"Environment: {args.environment}")
    log.info(f"Config file: {settings.CONFIG_FILE}")
    log.info(f"Dry run: {settings.DRY_RUN}")

    try:
        station_config = load_config(settings.CONFIG_FILE).with_fallbacks(
            timeout=settings.POLL_TIMEOUT_SEC,
            interval=settings.POLL_INTERVAL_SEC,
            flush_interval=settings.FLUSH_INTERVAL_SEC,
        )
        if args.check_config:
            check_config(station_config)
            return EXIT_OK
        station = build_station(
            station_config,
            settings,
            transport_factory=lambda: BleakTransport(
                adapter=args.adapter, exclusive_radio=args.exclusive_radio
            ),
        )
    except ConfigError as e:
        log.error("Configuration error: %s", e)
        return EXIT_CONFIG_ERROR
    except Exception as e:
        log.error("Startup failed: %s", e)
        return EXIT_STARTUP_FAILURE

    stop_event = threading.Event()

    def sigterm_handler(signum, frame):
        log.info("Received shutdown signal, stopping...")
        stop_event.set()

    signal.signal(signal.SIGTERM, sigterm_handler)
    signal.signal(signal.SIGINT, sigterm_handler)

    try:
        station.start()
    except TransportError as e:
        log.error("Cannot initialize radio transport: %s", e)
        station.stop()
        return EXIT_STARTUP_FAILURE

    status = None
    if settings.STATUS_PORT:
        from envmon_sensor.status_api import StatusServer

        status = StatusServer(station, settings.STATUS_HOST, settings.STATUS_PORT)
        status.start()

    while not stop_event.wait(1.0):
        pass

    if status is not None:
        status.stop()
    station.stop()
    return EXIT_OK


def main() -> None:
    """Main entry point for envmon."""
    sys.exit(run())


if __name__ == "__main__":
    main()
