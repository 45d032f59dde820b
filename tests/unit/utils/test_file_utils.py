from __future__ import annotations

from pathlib import Path

import pytest

from disk_search.utils.file_utils import (
    format_file_size,
    is_within,
    looks_binary,
    read_text_content,
    should_ignore_name,
)


def test_format_file_size() -> None:
    assert format_file_size(0) == "0 B"
    assert format_file_size(512) == "512.0 B"
    assert format_file_size(1536) == "1.5 KB"
    assert format_file_size(5 * 1024 * 1024) == "5.0 MB"


def test_should_ignore_name_is_case_insensitive_glob() -> None:
    patterns = [".git", "*.tmp", "node_modules"]

    assert should_ignore_name(".git", patterns)
    assert should_ignore_name("BUILD.TMP", patterns)
    assert not should_ignore_name("notes.txt", patterns)
    assert not should_ignore_name("git", patterns)


def test_is_within() -> None:
    assert is_within("/data/docs/a.txt", "/data/docs")
    assert is_within("/data/docs", "/data/docs")
    assert not is_within("/data/docs2/a.txt", "/data/docs")
    assert not is_within("/other", "/data")


def test_looks_binary() -> None:
    assert looks_binary(b"abc\x00def")
    assert looks_binary(b"\xff\xfe\xfa plain")
    assert not looks_binary("héllo".encode("utf-8"))
    # a multi-byte character cut at the end of the sample
    assert not looks_binary("abc é".encode("utf-8")[:-1])


def test_read_text_content_caps_characters(tmp_path: Path) -> None:
    path = tmp_path / "long.txt"
    path.write_text("ü" * 50, encoding="utf-8")

    text, is_text = read_text_content(str(path), max_chars=10)

    assert is_text
    assert text == "ü" * 10


def test_read_text_content_rejects_binary(tmp_path: Path) -> None:
    path = tmp_path / "blob.bin"
    path.write_bytes(b"\x00\x01\x02" * 100)

    assert read_text_content(str(path), max_chars=100) == (None, False)


def test_read_text_content_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        read_text_content(str(tmp_path / "gone.txt"), max_chars=100)
