from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from disk_search.indexer.file_index import ContentIndexer
from disk_search.indexer.models import CycleReport, IndexingState
from disk_search.indexer.pipeline import IndexingPipeline
from disk_search.indexer.scheduler import IndexingScheduler
from disk_search.indexer.store import IndexStore


def _wait_for(predicate, timeout: float = 10.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class RecordingPipeline:
    """Pipeline stand-in that can hold a cycle open until it is cancelled."""

    def __init__(self, block_first: bool = False):
        self.block_first = block_first
        self.calls: list[tuple[str, str]] = []
        self.started = threading.Event()
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def on_state(self, callback):
        self.state_callback = callback

    def run(self, root, trigger="manual", cancel=None):
        with self._lock:
            self.calls.append((root, trigger))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            first = len(self.calls) == 1
        try:
            self.started.set()
            if cancel is not None and cancel.is_set():
                return CycleReport(root=root, trigger=trigger, state=IndexingState.IDLE, cancelled=True)
            if first and self.block_first:
                cancelled = cancel.wait(10) if cancel is not None else False
                return CycleReport(root=root, trigger=trigger, state=IndexingState.IDLE, cancelled=cancelled)
            time.sleep(0.01)
            return CycleReport(root=root, trigger=trigger, state=IndexingState.IDLE, generation="1")
        finally:
            with self._lock:
                self.active -= 1


def test_requests_are_processed_in_background(tmp_path: Path) -> None:
    root = tmp_path / "docs"
    root.mkdir()
    (root / "a.txt").write_text("alpha", encoding="utf-8")
    pipeline = IndexingPipeline(IndexStore(tmp_path / "index"))
    scheduler = IndexingScheduler(pipeline, volume_provider=list, interval=3600)
    done = threading.Event()
    scheduler.add_listener(lambda report: done.set())

    scheduler.start()
    try:
        scheduler.submit(str(root))
        assert done.wait(10)
    finally:
        scheduler.stop()

    (report,) = scheduler.reports()
    assert report.ok
    assert report.trigger == "request"
    assert scheduler.status(str(root)) is IndexingState.IDLE
    assert not scheduler.running


def test_new_request_supersedes_in_flight_request() -> None:
    pipeline = RecordingPipeline(block_first=True)
    scheduler = IndexingScheduler(pipeline, volume_provider=list, interval=3600)

    scheduler.start()
    try:
        scheduler.submit("/data/old")
        assert pipeline.started.wait(5)
        scheduler.submit("/data/new")
        assert _wait_for(lambda: len(scheduler.reports()) == 2)
    finally:
        scheduler.stop()

    old, new = scheduler.reports()
    assert old.root.endswith("old") and old.cancelled
    assert new.root.endswith("new") and new.ok
    assert pipeline.max_active == 1


def test_requests_run_one_at_a_time() -> None:
    pipeline = RecordingPipeline()
    scheduler = IndexingScheduler(pipeline, volume_provider=list, interval=3600)

    scheduler.start()
    try:
        for name in ("a", "b", "c"):
            scheduler.submit(f"/data/{name}")
        assert _wait_for(lambda: len(scheduler.reports()) == 3)
    finally:
        scheduler.stop()

    assert pipeline.max_active == 1
    assert [trigger for _, trigger in pipeline.calls] == ["request"] * 3


def test_timer_sweeps_every_volume_sequentially(tmp_path: Path) -> None:
    volumes = []
    for name in ("vol1", "vol2"):
        volume = tmp_path / name
        volume.mkdir()
        (volume / f"{name}.txt").write_text(name, encoding="utf-8")
        volumes.append(str(volume))
    pipeline = IndexingPipeline(IndexStore(tmp_path / "index"))
    scheduler = IndexingScheduler(pipeline, volume_provider=lambda: volumes, interval=0.05)

    scheduler.start()
    try:
        assert _wait_for(lambda: len(scheduler.reports()) >= 2)
    finally:
        scheduler.stop()

    first, second = scheduler.reports()[:2]
    assert [first.root, second.root] == volumes
    assert all(report.trigger == "timer" and report.ok for report in (first, second))


def test_failed_cycle_is_reported_and_worker_keeps_running(tmp_path: Path) -> None:
    good = tmp_path / "good"
    good.mkdir()
    pipeline = IndexingPipeline(IndexStore(tmp_path / "index"))
    scheduler = IndexingScheduler(pipeline, volume_provider=list, interval=3600)

    scheduler.start()
    try:
        scheduler.submit(str(tmp_path / "missing"))
        assert _wait_for(lambda: len(scheduler.reports()) == 1)
        scheduler.submit(str(good))
        assert _wait_for(lambda: len(scheduler.reports()) == 2)
    finally:
        scheduler.stop()

    failed, ok = scheduler.reports()
    assert failed.state is IndexingState.FAILED
    assert ok.ok


def test_volume_provider_errors_do_not_stop_sweeps() -> None:
    def broken_provider():
        raise OSError("no partitions")

    scheduler = IndexingScheduler(RecordingPipeline(), volume_provider=broken_provider, interval=3600)

    assert scheduler.sweep() == []


def test_set_interval_respects_minimum_and_notifies() -> None:
    changes = []
    scheduler = IndexingScheduler(
        RecordingPipeline(),
        volume_provider=list,
        interval=600,
        min_interval=30,
        on_interval_changed=changes.append,
    )

    assert scheduler.set_interval(5) == 30
    assert scheduler.set_interval(120) == 120
    assert scheduler.interval == 120
    assert changes == [30.0, 120.0]


def test_trigger_sweep_runs_before_interval_elapses() -> None:
    pipeline = RecordingPipeline()
    scheduler = IndexingScheduler(pipeline, volume_provider=lambda: ["/vol"], interval=3600)

    scheduler.start()
    try:
        scheduler.trigger_sweep()
        assert _wait_for(lambda: len(scheduler.reports()) == 1)
    finally:
        scheduler.stop()

    assert pipeline.calls == [("/vol", "timer")]


def test_request_and_timer_cycles_on_same_root_do_not_overlap(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    root = tmp_path / "docs"
    root.mkdir()
    (root / "a.txt").write_text("alpha", encoding="utf-8")
    pipeline = IndexingPipeline(IndexStore(tmp_path / "index"))
    scheduler = IndexingScheduler(pipeline, volume_provider=lambda: [str(root)], interval=3600)
    states = []
    pipeline.on_state(lambda r, state: states.append((threading.current_thread().name, state)))

    entered = threading.Event()
    release = threading.Event()
    active = []
    overlaps = []
    real_build = ContentIndexer.build

    def blocking_build(self, *args, **kwargs):
        if active:
            overlaps.append(threading.current_thread().name)
        active.append(True)
        try:
            if not entered.is_set():
                entered.set()
                release.wait(10)
            return real_build(self, *args, **kwargs)
        finally:
            active.pop()

    monkeypatch.setattr(ContentIndexer, "build", blocking_build)

    scheduler.start()
    try:
        scheduler.submit(str(root))
        assert entered.wait(5)
        sweeper = threading.Thread(target=scheduler.sweep, name="sweeper")
        sweeper.start()
        time.sleep(0.2)
        assert ("sweeper", IndexingState.SCANNING) not in states
        release.set()
        sweeper.join(10)
        assert _wait_for(lambda: len(scheduler.reports()) == 2)
    finally:
        release.set()
        scheduler.stop()

    assert overlaps == []
    by_trigger = {report.trigger: report for report in scheduler.reports()}
    request, timer = by_trigger["request"], by_trigger["timer"]
    assert request.ok and timer.ok
    assert timer.generation > request.generation
    assert pipeline.store.generations(str(root)) == [timer.generation]
