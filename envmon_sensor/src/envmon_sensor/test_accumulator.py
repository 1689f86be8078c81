import threading

from envmon_sensor.accumulator import DeviceAccumulator


def test_merge_then_drain_returns_merged_fields():
    acc = DeviceAccumulator()
    acc.merge({"temperature": 21.3, "humidity": 45.6})

    assert acc.drain() == {"temperature": 21.3, "humidity": 45.6}
    assert acc.drain() == {}


def test_drain_without_merge_is_empty():
    assert DeviceAccumulator().drain() == {}


def test_merge_overwrites_not_aggregates():
    acc = DeviceAccumulator()
    acc.merge({"temperature": 20.0, "battery_pct": 90})
    acc.merge({"temperature": 22.0})

    assert acc.drain() == {"temperature": 22.0, "battery_pct": 90}


def test_empty_merge_is_ignored():
    acc = DeviceAccumulator(clock=lambda: 5.0)
    acc.merge({})
    assert acc.last_update is None
    assert acc.pending() == 0


def test_last_update_and_pending():
    ticks = iter([10.0, 20.0])
    acc = DeviceAccumulator(clock=lambda: next(ticks))
    acc.merge({"temperature": 20.0})
    acc.merge({"humidity": 50.0})

    assert acc.last_update == 20.0
    assert acc.pending() == 2
    acc.drain()
    assert acc.pending() == 0
    assert acc.last_update == 20.0


def test_concurrent_disjoint_merges_are_not_lost():
    acc = DeviceAccumulator()
    workers = 16
    per_worker = 200
    start = threading.Barrier(workers)

    def merge(worker: int):
        start.wait()
        for i in range(per_worker):
            acc.merge({f"w{worker}_f{i}": i})

    threads = [threading.Thread(target=merge, args=(w,)) for w in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    drained = acc.drain()
    assert len(drained) == workers * per_worker
    assert drained["w3_f17"] == 17


def test_concurrent_drains_never_lose_or_duplicate_merges():
    acc = DeviceAccumulator()
    total = 5000
    collected = {}
    done = threading.Event()

    def writer():
        for i in range(total):
            acc.merge({f"f{i}": i})
        done.set()

    def drainer():
        while not done.is_set():
            for name, value in acc.drain().items():
                assert name not in collected
                collected[name] = value
        collected.update(acc.drain())

    w = threading.Thread(target=writer)
    d = threading.Thread(target=drainer)
    d.start()
    w.start()
    w.join()
    d.join()

    assert len(collected) == total


def test_drain_snapshot_is_consistent_with_paired_merges():
    """Fields merged together are always drained together."""
    acc = DeviceAccumulator()
    done = threading.Event()
    snapshots = []

    def writer():
        for i in range(3000):
            acc.merge({"temperature": float(i), "humidity": float(i)})
        done.set()

    def drainer():
        while not done.is_set():
            snapshots.append(acc.drain())
        snapshots.append(acc.drain())

    threads = [threading.Thread(target=writer), threading.Thread(target=drainer)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    for snap in snapshots:
        if snap:
            assert set(snap) == {"temperature", "humidity"}
            assert snap["temperature"] == snap["humidity"]
