"""
Indexer module for Disk Search.
Handles directory scanning, content indexing, index storage, search and scheduling.
"""

from .errors import CorruptIndexError, IndexingCancelled, IndexNotFoundError, IndexStoreError, IndexWriteError
from .file_index import ContentIndexer
from .models import CycleReport, FileDescriptor, Index, IndexingState
from .pipeline import IndexingPipeline
from .query import QueryEngine
from .scanner import DirectoryScanner
from .scheduler import IndexingScheduler
from .store import IndexStore

__all__ = [
    "ContentIndexer",
    "CorruptIndexError",
    "CycleReport",
    "DirectoryScanner",
    "FileDescriptor",
    "Index",
    "IndexNotFoundError",
    "IndexStore",
    "IndexStoreError",
    "IndexWriteError",
    "IndexingCancelled",
    "IndexingPipeline",
    "IndexingScheduler",
    "IndexingState",
    "QueryEngine",
]
