import threading
import time
from unittest.mock import Mock

from envmon_sensor.flush import FlushScheduler
from envmon_sensor.listener import AdvertisementListener, PassiveSensor
from envmon_sensor.utils.factories import DeviceFactory, atc_payload
from envmon_sensor.utils.fakes import RecordingSink


def make_sensors(count: int = 2):
    return [PassiveSensor(DeviceFactory(name=f"room-{i}")) for i in range(count)]


def test_tick_emits_one_record_per_non_empty_sensor():
    sensors = make_sensors(3)
    sensors[0].accumulator.merge({"temperature": 20.0})
    sensors[2].accumulator.merge({"humidity": 50.0, "battery_pct": 90})
    sink = RecordingSink()

    records = FlushScheduler(sensors, sink).tick(now=1000.0)

    assert [r.device_name for r in records] == ["room-0", "room-2"]
    assert sorted(r.device_name for r in sink.records) == ["room-0", "room-2"]
    assert all(r.ts == 1000.0 for r in sink.records)
    assert all(r.poll_duration_ms is None for r in sink.records)


def test_tick_drains_accumulators():
    sensors = make_sensors(1)
    sensors[0].accumulator.merge({"temperature": 20.0})
    scheduler = FlushScheduler(sensors, RecordingSink())

    scheduler.tick(now=1.0)

    assert sensors[0].accumulator.drain() == {}


def test_empty_sensors_never_reach_the_sink():
    sink = Mock()
    FlushScheduler(make_sensors(2), sink).tick(now=1.0)
    sink.write.assert_not_called()


def test_dry_run_skips_sink_but_returns_records():
    sensors = make_sensors(1)
    sensors[0].accumulator.merge({"temperature": 20.0})
    sink = Mock()

    records = FlushScheduler(sensors, sink, dry_run=True).tick(now=1.0)

    assert len(records) == 1
    sink.write.assert_not_called()


def test_failed_write_is_dropped_and_others_still_written(caplog):
    sensors = make_sensors(2)
    for s in sensors:
        s.accumulator.merge({"temperature": 20.0})
    sink = RecordingSink(fails=1)
    scheduler = FlushScheduler(sensors, sink, max_writers=1)

    scheduler.tick(now=1.0)
    assert len(sink.records) == 2
    assert "Dropped record" in caplog.text

    # nothing is re-queued
    scheduler.tick(now=2.0)
    assert len(sink.records) == 2


def test_sink_exception_does_not_abort_tick(caplog):
    sensors = make_sensors(2)
    for s in sensors:
        s.accumulator.merge({"temperature": 20.0})
    sink = RecordingSink(raises=ConnectionError("refused"))

    records = FlushScheduler(sensors, sink).tick(now=1.0)

    assert len(records) == 2
    assert caplog.text.count("Write error") == 2


def test_slow_write_does_not_delay_other_devices():
    sensors = make_sensors(2)
    for s in sensors:
        s.accumulator.merge({"temperature": 20.0})
    written_at = {}
    release = threading.Event()

    class SlowFirstSink:
        def write(self, record):
            if record.device_name == "room-0":
                release.wait(2.0)
            written_at[record.device_name] = time.monotonic()
            if record.device_name == "room-1":
                release.set()
            return True

        def close(self):
            pass

    started = time.monotonic()
    FlushScheduler(sensors, SlowFirstSink()).tick(now=1.0)

    assert written_at["room-1"] - started < 1.0
    assert written_at["room-0"] >= written_at["room-1"]


def test_end_to_end_single_advertisement():
    device = DeviceFactory(address="aa:bb:cc:dd:ee:ff", name="living room")
    sensor = PassiveSensor(device)
    listener = AdvertisementListener([sensor])
    sink = RecordingSink()
    scheduler = FlushScheduler([sensor], sink)

    listener.handle("AA:BB:CC:DD:EE:FF", {"uuid": atc_payload(21.30, 45.60, 88)})
    scheduler.tick(now=1700000000.0)

    assert len(sink.records) == 1
    record = sink.records[0]
    assert record.fields == {"temperature": 21.3, "humidity": 45.6, "battery_pct": 88}
    assert record.tags == {"name": "living room"}
    assert record.measurement == "environment"

    scheduler.tick(now=1700000060.0)
    assert len(sink.records) == 1


def test_run_ticks_periodically_and_stops():
    sensors = make_sensors(1)
    sink = RecordingSink()
    scheduler = FlushScheduler(sensors, sink, interval_s=0.05)

    scheduler.start()
    sensors[0].accumulator.merge({"temperature": 20.0})
    time.sleep(0.2)
    scheduler.stop()
    scheduler.join(timeout=1.0)

    assert not scheduler.is_alive()
    assert len(sink.records) == 1
    assert scheduler.last_flush is not None


def test_stop_before_first_tick():
    scheduler = FlushScheduler(make_sensors(1), RecordingSink(), interval_s=10.0)
    scheduler.start()
    scheduler.stop()
    scheduler.join(timeout=1.0)
    assert not scheduler.is_alive()
    assert scheduler.last_flush is None
