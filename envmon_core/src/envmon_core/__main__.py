"""
Canonical entry point for envmon_core package.

This package contains domain models, the sink port and configuration.
It does not include radio or sink adapters.
"""

import sys

from envmon_core.config.environments import get_settings
from envmon_core.config.station import ConfigError, load_config


def main() -> None:
    """Main entry point for envmon_core package."""
    print("envmon_core - Domain and configuration package")
    print("This package is not intended to be run directly.")
    print("Use the envmon_sensor package (envmon) to ingest readings.")

    config = get_settings()
    print("\nCurrent configuration:")
    print(f"Environment: {config.ENVIRONMENT.value}")
    print(f"Config file: {config.CONFIG_FILE}")
    print(f"Flush interval: {config.FLUSH_INTERVAL_SEC}s")
    print(f"Dry run: {config.DRY_RUN}")

    try:
        station = load_config(config.CONFIG_FILE)
    except ConfigError as e:
        print(f"Could not load station config: {e}")
        sys.exit(2)

    db = station.database
    print(f"Sink: {db.kind.value} {db.host}:{db.port}/{db.name}")
    for device in station.devices():
        print(f"  {device.address}  {device.name:<20} {device.model:<15} {device.mode.value}")

    sys.exit(0)


if __name__ == "__main__":
    main()
