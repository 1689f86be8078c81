import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, List, Optional, Sequence

from envmon_core.domain.models import CompositeRecord
from envmon_core.domain.ports import Sink

from envmon_sensor.listener import PassiveSensor

logger = logging.getLogger(__name__)


class FlushScheduler(threading.Thread):
    """Periodically drains every passive sensor and writes one record per device.

    Delivery is best effort and at most once: a record whose write fails is
    logged and dropped, and the next tick carries on independently.
    """

    daemon = True

    def __init__(
        self,
        sensors: Sequence[PassiveSensor],
        sink: Optional[Sink],
        interval_s: float = 60.0,
        dry_run: bool = False,
        clock: Callable[[], float] = time.time,
        max_writers: int = 4,
    ):
        super().__init__(name="flush-scheduler")
        self.sensors = list(sensors)
        self.sink = sink
        self.interval_s = interval_s
        self.dry_run = dry_run
        self.clock = clock
        self.s_stop = threading.Event()
        self.last_flush: Optional[float] = None
        self._writers = ThreadPoolExecutor(
            max_workers=max(1, min(max_writers, len(self.sensors))),
            thread_name_prefix="flush-write",
        )

    def stop(self):
        self.s_stop.set()

    def tick(self, now: Optional[float] = None) -> List[CompositeRecord]:
        """Drain all sensors and hand non-empty snapshots to the sink."""
        now = self.clock() if now is None else now
        records = []
        for sensor in self.sensors:
            fields = sensor.accumulator.drain()
            logger.info("%s %s", sensor.name, fields)
            if fields:
                records.append(CompositeRecord(device_name=sensor.name, fields=fields, ts=now))

        self.last_flush = now
        if self.dry_run or self.sink is None or not records:
            return records

        futures = [self._writers.submit(self._write, record) for record in records]
        wait(futures)
        return records

    def _write(self, record: CompositeRecord) -> bool:
        try:
            ok = self.sink.write(record)
        except Exception as e:
            logger.error("Write error for %s: %s", record.device_name, e)
            return False
        if not ok:
            logger.warning("Dropped record for %s: sink write failed", record.device_name)
        return ok

    def run(self):
        next_tick = time.time() + self.interval_s
        try:
            while not self.s_stop.is_set():
                now = time.time()
                if now >= next_tick:
                    try:
                        self.tick()
                    except Exception:
                        logger.exception("Flush tick failed")
                    # skip ticks missed while a slow tick was running
                    while next_tick <= time.time():
                        next_tick += self.interval_s
                else:
                    self.s_stop.wait(next_tick - now)
        finally:
            self._writers.shutdown(wait=True)
