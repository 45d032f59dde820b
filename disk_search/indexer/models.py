"""Value types shared by the scanner, indexer, store and query engine."""

import dataclasses
import enum
import hashlib
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Tuple


@dataclass(frozen=True)
class FileDescriptor:
    """Snapshot of one regular file taken at scan time."""

    path: str
    size: int
    modified: float


class IndexingState(enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    SAVING = "saving"
    FAILED = "failed"


@dataclass(frozen=True)
class Index:
    """Token to file associations produced by one scan of one root.

    ``entries`` maps each token to the files it was extracted from, sorted by
    path. ``generation`` stays ``None`` until the store assigns one on save.
    """

    root: str
    started_at: float
    files: Tuple[FileDescriptor, ...] = ()
    entries: Mapping[str, Tuple[FileDescriptor, ...]] = field(default_factory=dict, hash=False)
    generation: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.entries, MappingProxyType):
            object.__setattr__(self, "entries", MappingProxyType(dict(self.entries)))

    @classmethod
    def from_associations(cls, root, started_at, files, pairs, generation=None):
        """Build an index from ``(token, FileDescriptor)`` pairs."""
        grouped: Dict[str, Dict[str, FileDescriptor]] = {}
        for token, descriptor in pairs:
            grouped.setdefault(token, {})[descriptor.path] = descriptor
        entries = {
            token: tuple(by_path[path] for path in sorted(by_path))
            for token, by_path in sorted(grouped.items())
        }
        ordered_files = tuple(sorted(set(files), key=lambda d: d.path))
        return cls(
            root=root,
            started_at=started_at,
            files=ordered_files,
            entries=entries,
            generation=generation,
        )

    def with_generation(self, generation: str) -> "Index":
        return dataclasses.replace(self, generation=generation)

    def associations(self) -> FrozenSet[Tuple[str, str]]:
        """All ``(token, path)`` pairs, independent of timestamps."""
        return frozenset(
            (token, descriptor.path)
            for token, descriptors in self.entries.items()
            for descriptor in descriptors
        )

    def iter_entries(self) -> Iterable[Tuple[str, FileDescriptor]]:
        for token, descriptors in self.entries.items():
            for descriptor in descriptors:
                yield token, descriptor

    @property
    def entry_count(self) -> int:
        return sum(len(descriptors) for descriptors in self.entries.values())

    @property
    def is_empty(self) -> bool:
        return not self.entries

    def digest(self) -> str:
        """Stable SHA-256 over files and associations, used to detect corruption."""
        h = hashlib.sha256()
        for descriptor in self.files:
            h.update(f"F\0{descriptor.path}\0{descriptor.size}\0{descriptor.modified!r}\n".encode("utf-8"))
        for token, path in sorted(self.associations()):
            h.update(f"E\0{token}\0{path}\n".encode("utf-8"))
        return h.hexdigest()


@dataclass(frozen=True)
class CycleReport:
    """Outcome of one Scan -> Index -> Save -> ClearStale cycle."""

    root: str
    trigger: str
    state: IndexingState
    generation: Optional[str] = None
    files_indexed: int = 0
    content_indexed: int = 0
    skipped: int = 0
    stale_removed: int = 0
    cancelled: bool = False
    error: Optional[str] = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.state is IndexingState.IDLE and not self.cancelled and self.error is None
