"""Explicit construction and start-up of the indexing engine."""

import os
from typing import Callable, List, Optional

from disk_search import config as config_module
from disk_search.config import CONFIG
from disk_search.indexer.models import CycleReport, FileDescriptor, IndexingState
from disk_search.indexer.monitor import ChangeMonitor
from disk_search.indexer.pipeline import IndexingPipeline
from disk_search.indexer.query import QueryEngine
from disk_search.indexer.scheduler import IndexingScheduler
from disk_search.indexer.store import IndexStore
from disk_search.utils.logger import logger
from disk_search.utils.system_utils import list_storage_volumes


class DiskSearchEngine:
    """Owns the store, pipeline, query engine, scheduler and change monitor.

    Nothing runs in the background until ``start_background_workers`` is called.
    """

    def __init__(
        self,
        config: Optional[dict] = None,
        volume_provider: Optional[Callable[[], List[str]]] = None,
        persist_interval: bool = False,
    ):
        self.config = config if config is not None else CONFIG
        self.store = IndexStore(self.config["index_dir"])
        self.pipeline = IndexingPipeline.from_config(self.store, self.config)
        self.query = QueryEngine(self.store)
        self.pipeline.on_saved(self.query.install)
        self._persist_interval = persist_interval
        self.scheduler = IndexingScheduler(
            self.pipeline,
            volume_provider or list_storage_volumes,
            interval=self.config["update_interval"],
            min_interval=self.config.get("min_update_interval", 0),
            history=self.config.get("report_history", 50),
            on_interval_changed=self._interval_changed,
        )
        self.monitor = None

        default_root = self.config.get("default_root")
        if default_root:
            self.query.select_root(default_root)

    def start_background_workers(self):
        """Start the request/timer workers and, if enabled, the change monitor."""
        self.scheduler.start()
        if self.query.root and not self.query.has_index():
            self.scheduler.submit(self.query.root)
        if self.config.get("watch_changes"):
            self.monitor = ChangeMonitor(
                self.scheduler.submit,
                quiet_period=self.config.get("watch_quiet_period", 5.0),
                ignore_dirs=[self.store.index_dir, self.config.get("log_dir", "logs")],
            )
            roots = [self.query.root] if self.query.root else []
            self.monitor.start_monitoring(roots)
        logger.info("Background workers started")

    def stop(self):
        if self.monitor is not None:
            self.monitor.stop_monitoring()
            self.monitor = None
        self.scheduler.stop()

    def set_root(self, root: str) -> str:
        """Select ``root`` for searching and queue it for (re)indexing."""
        root = os.path.abspath(root)
        previous = self.query.root
        self.query.select_root(root)
        self.scheduler.submit(root)
        if self.monitor is not None:
            if previous and previous != root:
                self.monitor.unwatch(previous)
            self.monitor.watch(root)
        return root

    def index_now(self, root: Optional[str] = None) -> CycleReport:
        """Run one indexing cycle synchronously on the calling thread."""
        root = os.path.abspath(root or self.query.root or self.config["default_root"])
        return self.scheduler.run_cycle(root, "manual")

    def search(self, term: str, mode: Optional[str] = None) -> List[FileDescriptor]:
        return self.query.search(term, mode)

    def has_index(self) -> bool:
        return self.query.has_index()

    def status(self) -> IndexingState:
        return self.scheduler.status(self.query.root) if self.query.root else IndexingState.IDLE

    def set_interval(self, seconds: float) -> float:
        return self.scheduler.set_interval(seconds)

    def _interval_changed(self, seconds: float):
        self.config["update_interval"] = seconds
        if self._persist_interval and self.config is CONFIG:
            config_module.save_config()
