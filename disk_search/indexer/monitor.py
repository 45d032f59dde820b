import os
import time
import threading
from typing import Callable, Dict, Iterable, Optional

from disk_search.utils.file_utils import is_within
from disk_search.utils.logger import get_logger

# Third-party imports
try:
    from watchdog.events import FileSystemEventHandler
    from watchdog.observers import Observer
except ImportError:
    raise ImportError("watchdog module not found. Please install it with: pip install watchdog")

logger = get_logger("Monitor")


class ChangeMonitor(FileSystemEventHandler):
    """Watch roots for file changes and queue a re-index once they settle.

    Events only mark their root dirty. A background thread submits one request
    per dirty root after ``quiet_period`` seconds without further events.
    """

    def __init__(
        self,
        submit: Callable[[str], None],
        quiet_period: float = 5.0,
        ignore_dirs: Iterable[str] = (),
        observer_factory: Callable[[], object] = Observer,
    ):
        super().__init__()
        self.submit = submit
        self.quiet_period = quiet_period
        self.ignore_dirs = tuple(os.path.abspath(d) for d in ignore_dirs)
        self._observer_factory = observer_factory
        self.observer = None
        self._watches: Dict[str, object] = {}
        self._dirty: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start_monitoring(self, directories: Iterable[str] = ()):
        """Start the observer and the debounce thread."""
        if self.observer is None:
            self.observer = self._observer_factory()
            try:
                self.observer.start()
            except Exception as e:
                logger.error(f"Error starting file system monitor: {e}")
                self.observer = None
                return
        if self._thread is None or not self._thread.is_alive():
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._process_events, name="disk-search-monitor", daemon=True)
            self._thread.start()
        for directory in directories:
            self.watch(directory)

    def stop_monitoring(self):
        """Stop the file system monitor."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
        if self.observer is not None:
            try:
                self.observer.stop()
                self.observer.join()
                logger.info("File system monitor stopped")
            except RuntimeError as e:
                logger.error(f"Error stopping file system monitor: {e}")
            self.observer = None
        self._watches.clear()

    def watch(self, directory: str) -> bool:
        """Start watching ``directory`` recursively."""
        directory = os.path.abspath(directory)
        if directory in self._watches:
            return True
        if self.observer is None or not os.path.isdir(directory):
            return False
        try:
            self._watches[directory] = self.observer.schedule(self, directory, recursive=True)
            logger.info(f"Monitoring directory: {directory}")
            return True
        except OSError as e:
            logger.error(f"Error monitoring directory {directory}: {e}")
            return False

    def unwatch(self, directory: str):
        directory = os.path.abspath(directory)
        watch = self._watches.pop(directory, None)
        if watch is not None and self.observer is not None:
            self.observer.unschedule(watch)
        with self._lock:
            self._dirty.pop(directory, None)

    def watched(self):
        return sorted(self._watches)

    def on_any_event(self, event):
        """Mark the owning root dirty for file events outside ignored directories."""
        if event.is_directory or event.event_type in ("opened", "closed", "closed_no_write"):
            return
        paths = [event.src_path, getattr(event, "dest_path", "")]
        for path in filter(None, paths):
            path = os.fsdecode(path)
            if any(is_within(path, ignored) for ignored in self.ignore_dirs):
                continue
            root = self._root_for(path)
            if root is not None:
                with self._lock:
                    self._dirty[root] = time.monotonic()

    def _root_for(self, path: str) -> Optional[str]:
        matches = [root for root in self._watches if is_within(path, root)]
        return max(matches, key=len) if matches else None

    def flush(self, now: Optional[float] = None):
        """Submit every root that has been quiet for ``quiet_period`` seconds."""
        now = time.monotonic() if now is None else now
        with self._lock:
            ready = [root for root, seen in self._dirty.items() if now - seen >= self.quiet_period]
            for root in ready:
                del self._dirty[root]
        for root in ready:
            logger.info(f"Changes detected under {root}, requesting re-index")
            self.submit(root)
        return ready

    def _process_events(self):
        """Background thread turning settled changes into index requests."""
        while not self._stop_event.wait(min(1.0, max(self.quiet_period / 2, 0.05))):
            try:
                self.flush()
            except Exception as e:
                logger.error(f"Error in event processor: {e}")
