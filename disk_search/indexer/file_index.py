import os
import time
from typing import Iterable, List, Optional, Set, Tuple

from disk_search.indexer.errors import IndexingCancelled
from disk_search.indexer.models import FileDescriptor, Index
from disk_search.utils.file_utils import read_text_content
from disk_search.utils.logger import get_logger

# Third-party imports
try:
    from whoosh.analysis import LowercaseFilter, RegexTokenizer
except ImportError:
    raise ImportError("whoosh module not found. Please install it with: pip install whoosh-reloaded")

logger = get_logger("Indexer")

# Word tokens, lower-cased. QueryEngine matches query terms as substrings of these.
ANALYZER = RegexTokenizer(expression=r"\w+") | LowercaseFilter()


def tokenize(text: str, max_token_length: int = 64) -> Set[str]:
    """Split text into the set of normalized word tokens."""
    if not text:
        return set()
    return {
        token.text
        for token in ANALYZER(text)
        if len(token.text) <= max_token_length
    }


def name_tokens(name: str, max_token_length: int = 64) -> Set[str]:
    """Tokens for a file name: its words plus the whole lower-cased name."""
    tokens = tokenize(name, max_token_length)
    whole = name.lower()
    if whole and len(whole) <= max_token_length:
        tokens.add(whole)
    return tokens


class ContentIndexer:
    """Builds an Index from a sequence of FileDescriptor values."""

    def __init__(self, max_file_size=50 * 1024 * 1024, max_content_chars=100000, max_token_length=64):
        self.max_file_size = max_file_size
        self.max_content_chars = max_content_chars
        self.max_token_length = max_token_length
        self.indexed = 0
        self.content_indexed = 0
        self.omitted = 0

    def build(
        self,
        root: str,
        descriptors: Iterable[FileDescriptor],
        started_at: Optional[float] = None,
        cancel=None,
    ) -> Index:
        """Read and tokenize every file, returning one new Index."""
        started_at = time.time() if started_at is None else started_at
        self.indexed = 0
        self.content_indexed = 0
        self.omitted = 0

        files: List[FileDescriptor] = []
        pairs: List[Tuple[str, FileDescriptor]] = []

        for descriptor in descriptors:
            if cancel is not None and cancel.is_set():
                raise IndexingCancelled(f"Indexing of {root} cancelled")

            tokens = self.tokens_for(descriptor)
            if tokens is None:
                self.omitted += 1
                continue

            files.append(descriptor)
            pairs.extend((token, descriptor) for token in tokens)
            self.indexed += 1

            # Periodically log progress
            if self.indexed % 1000 == 0:
                logger.info(f"Progress: Indexed {self.indexed} files so far in {root}...")

        index = Index.from_associations(root, started_at, files, pairs)
        logger.info(
            f"Indexed {self.indexed} files ({self.content_indexed} by content, "
            f"{self.omitted} omitted) with {len(index.entries)} tokens in {root}"
        )
        return index

    def tokens_for(self, descriptor: FileDescriptor) -> Optional[Set[str]]:
        """Token set for one file, or None when the file is no longer readable."""
        tokens = name_tokens(os.path.basename(descriptor.path), self.max_token_length)

        if descriptor.size > self.max_file_size:
            logger.debug(f"Indexing large file by name only: {descriptor.path} ({descriptor.size} bytes)")
            return tokens

        try:
            content, is_text = read_text_content(descriptor.path, self.max_content_chars)
        except OSError as e:
            # Deleted or locked since the scan
            logger.debug(f"File access error for {descriptor.path}: {e}")
            return None

        if is_text:
            tokens |= tokenize(content, self.max_token_length)
            self.content_indexed += 1
        return tokens
