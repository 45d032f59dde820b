"""Persistent, generation-based index storage.

Each saved Index is one SQLite database file named after its generation id::

    <index_dir>/<root key>/gen-<generation>.db

A generation is written to ``gen-<generation>.db.tmp`` first and renamed into
place with ``os.replace``, so readers see either the whole file or nothing.
"""

import hashlib
import os
import pathlib
import re
import sqlite3
import threading
import time
from typing import Dict, List, Optional

from disk_search.indexer.errors import CorruptIndexError, IndexNotFoundError, IndexWriteError
from disk_search.indexer.models import FileDescriptor, Index
from disk_search.utils.logger import get_logger

logger = get_logger("Store")

SCHEMA_VERSION = 1
GENERATION_PREFIX = "gen-"
GENERATION_SUFFIX = ".db"
TEMP_SUFFIX = ".tmp"
_GENERATION_RE = re.compile(r"^gen-(\d{20})\.db$")
_TEMP_RE = re.compile(r"^gen-(\d{20})\.db\.tmp$")
_LOAD_ATTEMPTS = 10

_SCHEMA = """
CREATE TABLE meta (key TEXT PRIMARY KEY, value TEXT NOT NULL);
CREATE TABLE files (
    id INTEGER PRIMARY KEY,
    path TEXT UNIQUE NOT NULL,
    size INTEGER NOT NULL,
    modified REAL NOT NULL
);
CREATE TABLE entries (
    token TEXT NOT NULL,
    file_id INTEGER NOT NULL REFERENCES files (id)
);
"""


def canonical_root(root: str) -> str:
    return os.path.normcase(os.path.realpath(os.path.abspath(root)))


def root_key(root: str) -> str:
    """Directory name for a root: readable slug plus a short hash of the canonical path."""
    canonical = canonical_root(root)
    digest = hashlib.sha1(canonical.encode("utf-8")).hexdigest()[:16]
    slug = re.sub(r"[^A-Za-z0-9]+", "_", canonical).strip("_")[-48:] or "root"
    return f"{slug}-{digest}"


class IndexStore:
    """Saves, loads and rotates index generations under ``index_dir``."""

    def __init__(self, index_dir):
        self.index_dir = os.path.abspath(index_dir)
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._last_generation = 0
        self._generation_guard = threading.Lock()

    def lock_for(self, root: str) -> threading.RLock:
        """Re-entrant lock guarding the persisted artifacts of one root."""
        key = root_key(root)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    def root_dir(self, root: str) -> str:
        return os.path.join(self.index_dir, root_key(root))

    def generations(self, root: str) -> List[str]:
        """Saved generation ids for ``root``, oldest first."""
        try:
            names = os.listdir(self.root_dir(root))
        except FileNotFoundError:
            return []
        return sorted(m.group(1) for m in map(_GENERATION_RE.match, names) if m)

    def latest_generation(self, root: str) -> Optional[str]:
        generations = self.generations(root)
        return generations[-1] if generations else None

    def roots(self) -> List[str]:
        """Roots with at least one saved generation."""
        found = []
        try:
            keys = sorted(os.listdir(self.index_dir))
        except FileNotFoundError:
            return found
        for key in keys:
            directory = os.path.join(self.index_dir, key)
            generations = sorted(
                m.group(1) for m in map(_GENERATION_RE.match, os.listdir(directory)) if m
            ) if os.path.isdir(directory) else []
            if not generations:
                continue
            try:
                meta = self._read_meta(os.path.join(directory, self._file_name(generations[-1])))
                found.append(meta["root"])
            except (sqlite3.Error, KeyError, OSError) as e:
                logger.debug(f"Ignoring unreadable generation in {directory}: {e}")
        return found

    def save(self, index: Index) -> str:
        """Durably write ``index`` as a new generation and return its id.

        Raises:
            IndexWriteError: if the destination cannot be written
        """
        with self.lock_for(index.root):
            generation = self._next_generation(index.root)
            directory = self.root_dir(index.root)
            final_path = os.path.join(directory, self._file_name(generation))
            temp_path = final_path + TEMP_SUFFIX

            try:
                os.makedirs(directory, exist_ok=True)
                self._write(temp_path, index, generation)
                os.replace(temp_path, final_path)
                self._fsync_dir(directory)
            except (OSError, sqlite3.Error) as e:
                self._discard(temp_path)
                raise IndexWriteError(index.root, f"Cannot save generation {generation}: {e}") from e

            logger.info(
                f"Saved generation {generation} for {index.root} "
                f"({len(index.files)} files, {index.entry_count} entries)"
            )
            return generation

    def load(self, root: str) -> Index:
        """Read the newest generation saved for ``root``.

        Raises:
            IndexNotFoundError: when nothing has been saved for the root
            CorruptIndexError: when the newest generation fails to parse or verify
        """
        for _ in range(_LOAD_ATTEMPTS):
            generation = self.latest_generation(root)
            if generation is None:
                raise IndexNotFoundError(root)
            path = os.path.join(self.root_dir(root), self._file_name(generation))
            try:
                return self._read(root, path, generation)
            except FileNotFoundError:
                # Removed by a concurrent clear between listing and opening
                logger.debug(f"Generation {generation} vanished while loading {root}, retrying")
                continue
        raise IndexNotFoundError(root)

    def clear_stale(self, root: str, keep: str) -> int:
        """Delete generations of ``root`` older than ``keep``.

        Generations newer than ``keep`` and ``keep`` itself are never touched.
        Returns the number of artifacts removed.
        """
        removed = 0
        with self.lock_for(root):
            directory = self.root_dir(root)
            try:
                names = sorted(os.listdir(directory))
            except FileNotFoundError:
                return 0
            for name in names:
                match = _GENERATION_RE.match(name) or _TEMP_RE.match(name)
                if not match or match.group(1) >= keep:
                    continue
                try:
                    os.remove(os.path.join(directory, name))
                    removed += 1
                except FileNotFoundError:
                    continue
                except OSError as e:
                    # Still open by a reader on some platforms; retried on the next clear
                    logger.warning(f"Could not remove stale index {name} for {root}: {e}")
        if removed:
            logger.info(f"Removed {removed} stale index artifacts for {root}")
        return removed

    def _next_generation(self, root: str) -> str:
        latest = self.latest_generation(root)
        with self._generation_guard:
            candidate = max(time.time_ns(), self._last_generation + 1)
            if latest is not None:
                candidate = max(candidate, int(latest) + 1)
            self._last_generation = candidate
        return f"{candidate:020d}"

    @staticmethod
    def _file_name(generation: str) -> str:
        return f"{GENERATION_PREFIX}{generation}{GENERATION_SUFFIX}"

    def _write(self, path: str, index: Index, generation: str):
        self._discard(path)
        conn = sqlite3.connect(path)
        try:
            conn.execute("PRAGMA journal_mode = DELETE")
            conn.execute("PRAGMA synchronous = FULL")
            conn.executescript(_SCHEMA)

            file_ids = {}
            rows = []
            for file_id, descriptor in enumerate(index.files, start=1):
                file_ids[descriptor.path] = file_id
                rows.append((file_id, descriptor.path, descriptor.size, descriptor.modified))
            conn.executemany("INSERT INTO files (id, path, size, modified) VALUES (?, ?, ?, ?)", rows)
            conn.executemany(
                "INSERT INTO entries (token, file_id) VALUES (?, ?)",
                ((token, file_ids[descriptor.path]) for token, descriptor in index.iter_entries()),
            )

            meta = {
                "schema_version": str(SCHEMA_VERSION),
                "root": index.root,
                "generation": generation,
                "started_at": repr(index.started_at),
                "saved_at": repr(time.time()),
                "file_count": str(len(index.files)),
                "entry_count": str(index.entry_count),
                "digest": index.digest(),
            }
            conn.executemany("INSERT INTO meta (key, value) VALUES (?, ?)", meta.items())
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _connect_readonly(path: str) -> sqlite3.Connection:
        if not os.path.exists(path):
            raise FileNotFoundError(path)
        uri = pathlib.Path(path).as_uri() + "?mode=ro"
        return sqlite3.connect(uri, uri=True)

    def _read_meta(self, path: str) -> Dict[str, str]:
        conn = self._connect_readonly(path)
        try:
            return dict(conn.execute("SELECT key, value FROM meta"))
        finally:
            conn.close()

    def _read(self, root: str, path: str, generation: str) -> Index:
        try:
            conn = self._connect_readonly(path)
        except sqlite3.Error as e:
            if not os.path.exists(path):
                raise FileNotFoundError(path) from e
            raise CorruptIndexError(root, path, str(e)) from e

        try:
            meta = dict(conn.execute("SELECT key, value FROM meta"))
            files = {
                file_id: FileDescriptor(path=file_path, size=size, modified=modified)
                for file_id, file_path, size, modified in conn.execute(
                    "SELECT id, path, size, modified FROM files ORDER BY id"
                )
            }
            pairs = [(token, files[file_id]) for token, file_id in conn.execute("SELECT token, file_id FROM entries")]
        except sqlite3.DatabaseError as e:
            if not os.path.exists(path):
                raise FileNotFoundError(path) from e
            raise CorruptIndexError(root, path, str(e)) from e
        except KeyError as e:
            raise CorruptIndexError(root, path, f"entry references unknown file {e}") from e
        finally:
            conn.close()

        try:
            version = int(meta["schema_version"])
            index = Index.from_associations(
                meta["root"],
                float(meta["started_at"]),
                files.values(),
                pairs,
                generation=generation,
            )
            expected_files = int(meta["file_count"])
            expected_entries = int(meta["entry_count"])
            expected_digest = meta["digest"]
        except (KeyError, ValueError) as e:
            raise CorruptIndexError(root, path, f"bad metadata: {e}") from e

        if version != SCHEMA_VERSION:
            raise CorruptIndexError(root, path, f"unsupported schema version {version}")
        if canonical_root(index.root) != canonical_root(root):
            raise CorruptIndexError(root, path, f"generation belongs to {index.root}")
        if len(index.files) != expected_files or index.entry_count != expected_entries:
            raise CorruptIndexError(root, path, "file or entry count mismatch")
        if index.digest() != expected_digest:
            raise CorruptIndexError(root, path, "digest mismatch")

        logger.debug(f"Loaded generation {generation} for {root}")
        return index

    @staticmethod
    def _discard(path: str):
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove temporary index {path}: {e}")

    @staticmethod
    def _fsync_dir(directory: str):
        if os.name != "posix":
            return
        fd = os.open(directory, os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
