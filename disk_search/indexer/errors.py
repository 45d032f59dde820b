"""Exceptions raised by the indexing engine."""


class DiskSearchError(Exception):
    """Base class for engine errors."""


class IndexStoreError(DiskSearchError):
    """Base class for index persistence failures."""

    def __init__(self, root, message):
        super().__init__(f"{message} (root: {root})")
        self.root = root


class IndexWriteError(IndexStoreError):
    """A generation could not be written; earlier generations are untouched."""


class IndexNotFoundError(IndexStoreError):
    """No generation has been saved for the root."""

    def __init__(self, root):
        super().__init__(root, "No saved index")


class CorruptIndexError(IndexStoreError):
    """A persisted generation could not be parsed or failed verification."""

    def __init__(self, root, path, reason):
        super().__init__(root, f"Corrupt index {path}: {reason}")
        self.path = path
        self.reason = reason


class IndexingCancelled(DiskSearchError):
    """An in-flight cycle was superseded by a newer request."""
