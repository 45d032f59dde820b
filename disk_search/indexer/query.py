import os
import threading
from typing import Dict, List, Optional

from disk_search.indexer.errors import CorruptIndexError, IndexNotFoundError
from disk_search.indexer.models import FileDescriptor, Index
from disk_search.indexer.store import canonical_root
from disk_search.utils.logger import get_logger

logger = get_logger("Query")

MATCH_MODES = ("contains", "prefix", "exact")
PREFIX_MARKER = "?"


def normalize_term(term: str) -> str:
    """Normalize a query term the same way tokens are normalized: case folded."""
    return (term or "").strip().lower()


def parse_query(term: str, mode: Optional[str] = None):
    """Split a raw query into ``(normalized term, match mode)``.

    A trailing ``?`` asks for prefix matching unless a mode is given explicitly.
    """
    text = (term or "").strip()
    if mode is None:
        mode = "contains"
        if text.endswith(PREFIX_MARKER) and len(text) > 1:
            text = text[:-1]
            mode = "prefix"
    if mode not in MATCH_MODES:
        raise ValueError(f"Unknown match mode: {mode}")
    return normalize_term(text), mode


def match_index(index: Index, term: str, mode: str = "contains") -> List[FileDescriptor]:
    """Files associated with at least one token matching ``term``.

    ``term`` must already be normalized. Results are unique and sorted by path.
    """
    if not term:
        return []

    if mode == "exact":
        return list(index.entries.get(term, ()))

    if mode == "prefix":
        matches = (token for token in index.entries if token.startswith(term))
    else:
        matches = (token for token in index.entries if term in token)

    found: Dict[str, FileDescriptor] = {}
    for token in matches:
        for descriptor in index.entries[token]:
            found.setdefault(descriptor.path, descriptor)
    return [found[path] for path in sorted(found)]


class QueryEngine:
    """Answers search terms against the current index of one root.

    The cached index is replaced by a single reference swap, either when the
    pipeline installs a freshly saved generation or when the store holds a
    newer generation than the cached one.
    """

    def __init__(self, store, root: Optional[str] = None):
        self.store = store
        self._root = os.path.abspath(root) if root else None
        self._current: Optional[Index] = None
        self._unusable: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def root(self) -> Optional[str]:
        return self._root

    @property
    def current(self) -> Optional[Index]:
        return self._current

    def select_root(self, root: str) -> bool:
        """Switch the searched root and load its newest index if one exists."""
        with self._lock:
            self._root = os.path.abspath(root)
            self._current = None
            self._unusable = None
        return self.refresh()

    def install(self, index: Index):
        """Swap in a newly saved generation if it belongs to the selected root."""
        with self._lock:
            if self._root is None or canonical_root(index.root) != canonical_root(self._root):
                return
            current = self._current
            if current is not None and (current.generation or "") >= (index.generation or ""):
                return
            self._current = index
        logger.debug(f"Installed generation {index.generation} for {index.root}")

    def has_index(self) -> bool:
        """False while no generation is available for the selected root."""
        return self._snapshot() is not None

    def refresh(self) -> bool:
        """Reload from the store when it holds a newer generation than the cache."""
        root = self._root
        if root is None:
            return False

        latest = self.store.latest_generation(root)
        current = self._current
        if latest is None:
            return current is not None
        if current is not None and current.generation is not None and current.generation >= latest:
            return True
        if latest == self._unusable:
            return current is not None

        try:
            index = self.store.load(root)
        except IndexNotFoundError:
            return current is not None
        except CorruptIndexError as e:
            logger.warning(f"Ignoring unusable index: {e}")
            self._unusable = latest
            return current is not None

        self.install(index)
        return True

    def _snapshot(self) -> Optional[Index]:
        self.refresh()
        return self._current

    def search(self, term: str, mode: Optional[str] = None) -> List[FileDescriptor]:
        """Return every indexed file matching ``term``.

        An empty term, a root with no saved index or an unreadable index all
        give an empty result.
        """
        normalized, mode = parse_query(term, mode)
        if not normalized:
            return []

        index = self._snapshot()
        if index is None:
            return []

        results = match_index(index, normalized, mode)
        logger.debug(f"Search {term!r} ({mode}) matched {len(results)} files in {index.root}")
        return results
