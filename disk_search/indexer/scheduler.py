import os
import queue
import threading
from collections import deque
from typing import Callable, Dict, List, Optional

from disk_search.indexer.models import CycleReport, IndexingState
from disk_search.utils.logger import get_logger

logger = get_logger("Scheduler")

DEFAULT_INTERVAL = 600
_STOP = object()


class IndexingScheduler:
    """Decides when, and for which roots, the indexing pipeline runs.

    Two daemon workers feed the same pipeline:

    * the request worker blocks on a queue of root directories and runs one
      cycle per request, strictly one after another. A new request cancels an
      in-flight request cycle, and a request with a newer one already queued
      behind it is reported as cancelled without scanning.
    * the timer worker waits ``interval`` seconds, then runs one cycle per
      storage volume reported by ``volume_provider``.
    """

    def __init__(
        self,
        pipeline,
        volume_provider: Callable[[], List[str]],
        interval: float = DEFAULT_INTERVAL,
        min_interval: float = 0,
        history: int = 50,
        on_interval_changed: Optional[Callable[[float], None]] = None,
    ):
        self.pipeline = pipeline
        self.volume_provider = volume_provider
        self.min_interval = min_interval
        self._interval = max(float(interval), float(min_interval))
        self._on_interval_changed = on_interval_changed

        self._requests = queue.Queue()
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._sweep_now = False
        self._cancel_lock = threading.Lock()
        self._active_cancel: Optional[threading.Event] = None

        self._states: Dict[str, IndexingState] = {}
        self._states_lock = threading.Lock()
        self._reports = deque(maxlen=history)
        self._listeners: List[Callable[[CycleReport], None]] = []
        self._threads: List[threading.Thread] = []

        pipeline.on_state(self._record_state)

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self):
        """Start the request and timer workers."""
        if self.running:
            logger.warning("Indexing scheduler already running")
            return
        self._stop_event.clear()
        self._threads = [
            threading.Thread(target=self._request_loop, name="disk-search-requests", daemon=True),
            threading.Thread(target=self._timer_loop, name="disk-search-timer", daemon=True),
        ]
        for thread in self._threads:
            thread.start()
        logger.info(f"Started indexing scheduler with {self._interval:.0f}s sweep interval")

    def stop(self, timeout: Optional[float] = 5.0):
        """Stop both workers; an in-flight request cycle is cancelled."""
        self._stop_event.set()
        self._wake_event.set()
        self._cancel_active()
        self._requests.put(_STOP)
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        logger.info("Indexing scheduler stopped")

    def submit(self, root: str):
        """Queue a root directory for indexing, superseding an in-flight request."""
        root = os.path.abspath(root)
        self._cancel_active()
        self._requests.put(root)
        logger.info(f"Queued indexing request for {root}")

    def pending(self) -> int:
        return self._requests.qsize()

    def set_interval(self, seconds: float) -> float:
        """Change the sweep interval; takes effect after the current wait."""
        seconds = max(float(seconds), float(self.min_interval))
        self._interval = seconds
        self._wake_event.set()
        logger.info(f"Sweep interval set to {seconds:.0f}s")
        if self._on_interval_changed is not None:
            self._on_interval_changed(seconds)
        return seconds

    def trigger_sweep(self):
        """Run the full-volume sweep now instead of at the end of the interval."""
        self._sweep_now = True
        self._wake_event.set()

    def status(self, root: str) -> IndexingState:
        with self._states_lock:
            return self._states.get(os.path.abspath(root), IndexingState.IDLE)

    def reports(self) -> List[CycleReport]:
        return list(self._reports)

    def add_listener(self, callback: Callable[[CycleReport], None]):
        self._listeners.append(callback)

    def _record_state(self, root: str, state: IndexingState):
        with self._states_lock:
            self._states[root] = state

    def _cancel_active(self):
        with self._cancel_lock:
            if self._active_cancel is not None:
                self._active_cancel.set()

    def _publish(self, report: CycleReport):
        self._reports.append(report)
        for callback in self._listeners:
            try:
                callback(report)
            except Exception as e:
                logger.error(f"Error in cycle listener: {e}")

    def run_cycle(self, root: str, trigger: str, cancel: Optional[threading.Event] = None) -> CycleReport:
        try:
            report = self.pipeline.run(root, trigger=trigger, cancel=cancel)
        except Exception as e:
            # The pipeline reports its own failures; this guards the worker loops
            logger.exception(f"Indexing cycle for {root} crashed: {e}")
            report = CycleReport(root=root, trigger=trigger, state=IndexingState.FAILED, error=str(e))
            self._record_state(root, IndexingState.IDLE)
        self._publish(report)
        return report

    def _request_loop(self):
        """Background thread consuming root directory requests."""
        while not self._stop_event.is_set():
            root = self._requests.get()
            if root is _STOP or self._stop_event.is_set():
                break

            cancel = threading.Event()
            with self._cancel_lock:
                self._active_cancel = cancel
            # A request queued while this one was waiting supersedes it
            if not self._requests.empty():
                cancel.set()
            try:
                self.run_cycle(root, "request", cancel)
            finally:
                with self._cancel_lock:
                    self._active_cancel = None

    def _timer_loop(self):
        """Background thread sweeping every storage volume each interval."""
        while not self._stop_event.is_set():
            woken = self._sweep_now or self._wake_event.wait(self._interval)
            self._wake_event.clear()
            if self._stop_event.is_set():
                break
            # Woken early by set_interval: wait again with the new interval
            if woken and not self._sweep_now:
                continue
            self._sweep_now = False
            self.sweep()

    def sweep(self) -> List[CycleReport]:
        """Index every available volume, one after another."""
        try:
            volumes = list(self.volume_provider())
        except Exception as e:
            logger.error(f"Error listing storage volumes: {e}")
            return []

        logger.info(f"Starting full sweep of {len(volumes)} volumes")
        reports = []
        for volume in volumes:
            if self._stop_event.is_set():
                break
            reports.append(self.run_cycle(volume, "timer"))
        return reports
