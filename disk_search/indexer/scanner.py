"""Deterministic recursive directory traversal."""

import os
import stat
from typing import Iterable, Iterator

from disk_search.indexer.errors import IndexingCancelled
from disk_search.indexer.models import FileDescriptor
from disk_search.utils.file_utils import is_within, should_ignore_name
from disk_search.utils.logger import get_logger

logger = get_logger("Scanner")


class DirectoryScanner:
    """Walks a root directory tree and yields a FileDescriptor per regular file.

    Every ``iter()`` starts a new depth-first traversal with entries visited in
    name order, so two walks over an unchanged tree yield the same sequence.
    Directory symlinks are followed, but each directory is entered at most once
    per walk (keyed by its real path). Entries that cannot be read are skipped
    and counted in ``skipped``.
    """

    def __init__(
        self,
        root: str,
        ignore_patterns: Iterable[str] = (),
        exclude_dirs: Iterable[str] = (),
        cancel=None,
    ):
        self.root = os.path.abspath(root)
        self.ignore_patterns = tuple(ignore_patterns)
        self.exclude_dirs = tuple(os.path.realpath(d) for d in exclude_dirs)
        self.cancel = cancel
        self.visited_dirs = 0
        self.yielded = 0
        self.skipped = 0

    def __iter__(self) -> Iterator[FileDescriptor]:
        return self._walk()

    def _walk(self) -> Iterator[FileDescriptor]:
        self.visited_dirs = 0
        self.yielded = 0
        self.skipped = 0
        seen = set()
        stack = [self.root]

        while stack:
            self._check_cancelled()
            current = stack.pop()

            real = os.path.realpath(current)
            if real in seen:
                logger.debug(f"Already visited {real}, skipping {current}")
                continue
            seen.add(real)
            if any(is_within(real, excluded) for excluded in self.exclude_dirs):
                continue

            try:
                with os.scandir(current) as it:
                    entries = sorted(it, key=lambda e: e.name)
            except OSError as e:
                logger.debug(f"Cannot read directory {current}: {e}")
                self.skipped += 1
                continue
            self.visited_dirs += 1

            subdirs = []
            for entry in entries:
                if self.ignore_patterns and should_ignore_name(entry.name, self.ignore_patterns):
                    continue
                try:
                    entry.name.encode("utf-8")
                    st = entry.stat()  # follows symlinks
                except (OSError, UnicodeEncodeError) as e:
                    # Broken link, permission denied, race-deleted or undecodable name
                    logger.debug(f"Skipping unreadable entry {entry.path}: {e}")
                    self.skipped += 1
                    continue

                if stat.S_ISDIR(st.st_mode):
                    subdirs.append(entry.path)
                elif stat.S_ISREG(st.st_mode):
                    self.yielded += 1
                    yield FileDescriptor(
                        path=os.path.abspath(entry.path),
                        size=st.st_size,
                        modified=st.st_mtime,
                    )
                    self._check_cancelled()

            # Reverse so the stack pops subdirectories in name order
            stack.extend(reversed(subdirs))

        logger.debug(
            f"Scan of {self.root} finished: {self.yielded} files, "
            f"{self.visited_dirs} directories, {self.skipped} skipped"
        )

    def _check_cancelled(self):
        if self.cancel is not None and self.cancel.is_set():
            raise IndexingCancelled(f"Scan of {self.root} cancelled")
