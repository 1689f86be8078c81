import logging
import signal
import threading
import time
from types import SimpleNamespace
from unittest.mock import Mock

import pytest

from envmon_sensor import __main__ as cli
from envmon_sensor.utils.factories import atc_payload
from envmon_sensor.utils.fakes import FakeTransport

CONFIG = """
[database]
host = "localhost"
port = 8086
user = "writer"
pass = "secret"
name = "sensors"

[defaults]
timeout = 1
interval = 5

[[sensors]]
mac = "AA:BB:CC:DD:EE:FF"
name = "bedroom"
type = "LYWSD03MMC"
"""


@pytest.fixture(autouse=True)
def testing_env(monkeypatch):
    monkeypatch.setenv("ENVMON_ENV", "testing")


def write_config(tmp_path, text=CONFIG):
    path = tmp_path / "config.toml"
    path.write_text(text)
    return str(path)


def test_check_config_lists_devices(tmp_path, capsys):
    code = cli.run(["--environment", "testing", "-c", write_config(tmp_path), "--check-config"])

    assert code == cli.EXIT_OK
    out = capsys.readouterr().out
    assert "aa:bb:cc:dd:ee:ff" in out
    assert "bedroom" in out
    assert "LYWSD03MMC" in out


def test_missing_config_is_a_config_error(tmp_path):
    code = cli.run(["--environment", "testing", "-c", str(tmp_path / "nope.toml")])
    assert code == cli.EXIT_CONFIG_ERROR


def test_malformed_config_is_a_config_error(tmp_path):
    path = write_config(tmp_path, "[database\nname=")
    assert cli.run(["--environment", "testing", "-c", path]) == cli.EXIT_CONFIG_ERROR


def test_unknown_sensor_type_is_a_config_error(tmp_path, monkeypatch):
    transport = Mock()
    monkeypatch.setattr(cli, "BleakTransport", transport)
    path = write_config(tmp_path, CONFIG.replace("LYWSD03MMC", "NOT-A-SENSOR"))

    assert cli.run(["--environment", "testing", "-c", path]) == cli.EXIT_CONFIG_ERROR
    transport.assert_not_called()


def test_scan_failure_is_a_startup_failure(tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "BleakTransport", lambda **kw: FakeTransport(scan_fails=True))
    monkeypatch.setattr(signal, "signal", Mock())

    assert cli.run(["--environment", "testing", "-c", write_config(tmp_path)]) == (
        cli.EXIT_STARTUP_FAILURE
    )


def test_shutdown_signal_stops_cleanly(tmp_path, monkeypatch):
    transport = FakeTransport()
    handlers = {}
    monkeypatch.setattr(cli, "BleakTransport", lambda **kw: transport)
    monkeypatch.setattr(signal, "signal", lambda sig, handler: handlers.setdefault(sig, handler))

    def send_sigterm():
        while signal.SIGTERM not in handlers:
            time.sleep(0.01)
        handlers[signal.SIGTERM](signal.SIGTERM, None)

    timer = threading.Timer(0.2, send_sigterm)
    timer.start()
    code = cli.run(["--environment", "testing", "-c", write_config(tmp_path), "--dry-run"])
    timer.join()

    assert code == cli.EXIT_OK
    assert transport.started
    assert transport.closed
    assert transport.scan_callback is None


@pytest.fixture
def reset_package_logger():
    yield
    logging.getLogger("envmon_sensor").setLevel(logging.NOTSET)


def test_dry_run_and_verbose_output_survive_production_log_level(
    tmp_path, monkeypatch, caplog, reset_package_logger
):
    transport = FakeTransport()
    handlers = {}
    monkeypatch.setattr(cli, "BleakTransport", lambda **kw: transport)
    monkeypatch.setattr(signal, "signal", lambda sig, handler: handlers.setdefault(sig, handler))
    path = write_config(tmp_path, CONFIG.replace("interval = 5", "interval = 5\nflush_interval = 0.1"))

    def advertise_then_stop():
        while transport.scan_callback is None or signal.SIGTERM not in handlers:
            time.sleep(0.01)
        transport.scan_callback(
            SimpleNamespace(address="AA:BB:CC:DD:EE:FF"),
            SimpleNamespace(service_data={"u": atc_payload(21.3, 45.6, 88)}),
        )
        time.sleep(0.4)
        handlers[signal.SIGTERM](signal.SIGTERM, None)

    feeder = threading.Thread(target=advertise_then_stop)
    feeder.start()
    code = cli.run(["--environment", "production", "-c", path, "-n", "-v"])
    feeder.join()

    assert code == cli.EXIT_OK
    assert "adv: bedroom, UUID: u, data (len 15): ff ee dd" in caplog.text
    assert "bedroom {'temperature': 21.3, 'humidity': 45.6, 'battery_pct': 88}" in caplog.text
