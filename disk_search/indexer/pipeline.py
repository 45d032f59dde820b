import os
import time
from typing import Callable, Iterable, List, Optional

from disk_search.indexer.errors import IndexingCancelled, IndexStoreError
from disk_search.indexer.file_index import ContentIndexer
from disk_search.indexer.models import CycleReport, Index, IndexingState
from disk_search.indexer.scanner import DirectoryScanner
from disk_search.utils.logger import get_logger

logger = get_logger("Pipeline")


class IndexingPipeline:
    """Runs Scan -> Index -> Save -> ClearStale for one root at a time.

    Cycles for the same root hold that root's store lock from scan start to
    the end of stale cleanup, so two cycles on one root never interleave.
    """

    def __init__(
        self,
        store,
        ignore_patterns: Iterable[str] = (),
        max_file_size: int = 50 * 1024 * 1024,
        max_content_chars: int = 100000,
        max_token_length: int = 64,
    ):
        self.store = store
        self.ignore_patterns = tuple(ignore_patterns)
        self.max_file_size = max_file_size
        self.max_content_chars = max_content_chars
        self.max_token_length = max_token_length
        self._saved_callbacks: List[Callable[[Index], None]] = []
        self._state_callbacks: List[Callable[[str, IndexingState], None]] = []

    @classmethod
    def from_config(cls, store, config):
        return cls(
            store,
            ignore_patterns=config["ignore_patterns"],
            max_file_size=config["max_file_size"],
            max_content_chars=config["max_content_chars"],
            max_token_length=config["max_token_length"],
        )

    def on_saved(self, callback: Callable[[Index], None]):
        """Register a callback receiving each newly saved generation."""
        self._saved_callbacks.append(callback)

    def on_state(self, callback: Callable[[str, IndexingState], None]):
        self._state_callbacks.append(callback)

    def _set_state(self, root: str, state: IndexingState):
        for callback in self._state_callbacks:
            callback(root, state)

    def run(self, root: str, trigger: str = "manual", cancel=None) -> CycleReport:
        """Index ``root`` once. Never raises; the outcome is in the report."""
        root = os.path.abspath(root)
        started = time.time()
        scanner = DirectoryScanner(
            root,
            ignore_patterns=self.ignore_patterns,
            exclude_dirs=(self.store.index_dir,),
            cancel=cancel,
        )
        indexer = ContentIndexer(self.max_file_size, self.max_content_chars, self.max_token_length)

        def report(state, **kwargs):
            return CycleReport(
                root=root,
                trigger=trigger,
                state=state,
                files_indexed=indexer.indexed,
                content_indexed=indexer.content_indexed,
                skipped=scanner.skipped + indexer.omitted,
                duration=time.time() - started,
                **kwargs,
            )

        if not os.path.isdir(root):
            logger.error(f"Directory not found: {root}")
            self._set_state(root, IndexingState.FAILED)
            self._set_state(root, IndexingState.IDLE)
            return report(IndexingState.FAILED, error=f"Directory not found: {root}")

        with self.store.lock_for(root):
            try:
                self._set_state(root, IndexingState.SCANNING)
                logger.info(f"Indexing {root} ({trigger})")
                index = indexer.build(root, scanner, started_at=started, cancel=cancel)

                self._set_state(root, IndexingState.SAVING)
                generation = self.store.save(index)
                index = index.with_generation(generation)
                stale_removed = self.store.clear_stale(root, keep=generation)
            except IndexingCancelled as e:
                logger.info(f"{e}; keeping the previous generation")
                self._set_state(root, IndexingState.IDLE)
                return report(IndexingState.IDLE, cancelled=True)
            except IndexStoreError as e:
                logger.error(f"Indexing cycle for {root} failed: {e}")
                self._set_state(root, IndexingState.FAILED)
                self._set_state(root, IndexingState.IDLE)
                return report(IndexingState.FAILED, error=str(e))
            except Exception as e:
                logger.exception(f"Unexpected error indexing {root}: {e}")
                self._set_state(root, IndexingState.FAILED)
                self._set_state(root, IndexingState.IDLE)
                return report(IndexingState.FAILED, error=f"{type(e).__name__}: {e}")

        for callback in self._saved_callbacks:
            try:
                callback(index)
            except Exception as e:
                logger.error(f"Error delivering generation {generation} for {root}: {e}")

        self._set_state(root, IndexingState.IDLE)
        result = report(IndexingState.IDLE, generation=generation, stale_removed=stale_removed)
        logger.info(
            f"Indexing complete for {root}: generation {generation}, "
            f"{result.files_indexed} files, {result.skipped} skipped in {result.duration:.1f}s"
        )
        return result


def run_cycle(store, root: str, config, trigger: str = "manual") -> Optional[Index]:
    """One-shot helper: index ``root`` and return the saved generation, or None."""
    pipeline = IndexingPipeline.from_config(store, config)
    saved = []
    pipeline.on_saved(saved.append)
    pipeline.run(root, trigger=trigger)
    return saved[0] if saved else None
