import os
import fnmatch
from typing import Iterable, Optional, Tuple

from disk_search.utils.logger import get_logger

logger = get_logger("FileUtils")

BINARY_SNIFF_BYTES = 4096


def format_file_size(size_bytes: int) -> str:
    """
    Convert bytes to human readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Human readable size string
    """
    if size_bytes == 0:
        return "0 B"

    size_names = ["B", "KB", "MB", "GB", "TB", "PB"]
    i = 0
    size = float(size_bytes)
    while size >= 1024 and i < len(size_names) - 1:
        size /= 1024.0
        i += 1

    return f"{size:.1f} {size_names[i]}"


def should_ignore_name(name: str, ignore_patterns: Iterable[str]) -> bool:
    """
    Check if a directory entry should be ignored based on ignore patterns.

    Patterns are shell globs matched case-insensitively against the entry
    name only, so ``.git`` prunes the directory and ``*.tmp`` drops files.

    Args:
        name: File or directory name (no separators)
        ignore_patterns: Glob patterns

    Returns:
        True if the entry should be ignored
    """
    lowered = name.lower()
    return any(fnmatch.fnmatchcase(lowered, pattern.lower()) for pattern in ignore_patterns)


def is_within(path: str, directory: str) -> bool:
    """Return True when ``path`` is ``directory`` or lies below it."""
    try:
        return os.path.commonpath([os.path.normcase(path), os.path.normcase(directory)]) == os.path.normcase(directory)
    except ValueError:
        # Different drives on Windows
        return False


def looks_binary(sample: bytes) -> bool:
    """Sniff a leading sample of file content for binary data."""
    if b"\x00" in sample:
        return True
    try:
        sample.decode("utf-8")
    except UnicodeDecodeError as e:
        # A multi-byte character cut at the end of the sample is still text
        if e.start >= len(sample) - 3 and e.reason == "unexpected end of data":
            return False
        return True
    return False


def read_text_content(file_path: str, max_chars: int) -> Tuple[Optional[str], bool]:
    """
    Read a file as UTF-8 text, best effort.

    Args:
        file_path: Path to the file
        max_chars: Maximum number of characters returned

    Returns:
        ``(text, True)`` for text files, ``(None, False)`` for files that look
        binary or fail to decode.

    Raises:
        OSError: if the file cannot be opened or read
    """
    with open(file_path, "rb") as f:
        sample = f.read(BINARY_SNIFF_BYTES)
        if looks_binary(sample):
            return None, False
        rest = f.read(max(0, max_chars * 4 - len(sample)))

    data = sample + rest
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        if e.reason != "unexpected end of data":
            logger.debug(f"Not valid UTF-8, indexing by name only: {file_path}")
            return None, False
        # Truncated in the middle of a character by the size cap
        text = data[: e.start].decode("utf-8")

    if len(text) > max_chars:
        text = text[:max_chars]
    return text, True
