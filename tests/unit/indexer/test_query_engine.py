from __future__ import annotations

import os
import threading
from pathlib import Path

import pytest

from disk_search.indexer import query
from disk_search.indexer.models import FileDescriptor, Index
from disk_search.indexer.query import QueryEngine, match_index, parse_query
from disk_search.indexer.store import IndexStore


def _index(root: str, words: dict[str, list[str]]) -> Index:
    pairs = []
    files = []
    for name, tokens in words.items():
        descriptor = FileDescriptor(path=os.path.join(root, name), size=1, modified=1.0)
        files.append(descriptor)
        pairs.extend((token, descriptor) for token in tokens)
    return Index.from_associations(root, 1.0, files, pairs)


@pytest.fixture
def saved(tmp_path: Path):
    root = str(tmp_path / "docs")
    store = IndexStore(tmp_path / "index")
    store.save(
        _index(
            root,
            {
                "a.txt": ["alpha", "shared", "a.txt"],
                "b.txt": ["alphabet", "shared", "b.txt"],
                "c.md": ["gamma", "c.md"],
            },
        )
    )
    return store, root


def _names(results) -> list[str]:
    return [os.path.basename(d.path) for d in results]


def test_parse_query_trailing_question_mark_selects_prefix() -> None:
    assert parse_query("  Rep? ") == ("rep", "prefix")
    assert parse_query("Rep") == ("rep", "contains")
    assert parse_query("?") == ("?", "contains")
    assert parse_query("rep?", mode="exact") == ("rep?", "exact")


def test_parse_query_rejects_unknown_mode() -> None:
    with pytest.raises(ValueError):
        parse_query("x", mode="fuzzy")


def test_search_matches_tokens_containing_the_term(saved) -> None:
    store, root = saved
    engine = QueryEngine(store, root)

    assert _names(engine.search("alpha")) == ["a.txt", "b.txt"]
    assert _names(engine.search("PHAB")) == ["b.txt"]
    assert engine.search("beta") == []


def test_search_deduplicates_files_matching_several_tokens(saved) -> None:
    store, root = saved
    engine = QueryEngine(store, root)

    assert _names(engine.search("a")) == ["a.txt", "b.txt", "c.md"]


def test_prefix_and_exact_modes(saved) -> None:
    store, root = saved
    engine = QueryEngine(store, root)

    assert _names(engine.search("alp?")) == ["a.txt", "b.txt"]
    assert _names(engine.search("pha?")) == []
    assert _names(engine.search("alpha", mode="exact")) == ["a.txt"]


def test_empty_term_returns_no_results(saved) -> None:
    store, root = saved
    engine = QueryEngine(store, root)

    assert engine.search("") == []
    assert engine.search("   ") == []


def test_results_are_stable_across_repeated_queries(saved) -> None:
    store, root = saved
    engine = QueryEngine(store, root)

    assert engine.search("shared") == engine.search("shared")


def test_root_without_index_returns_empty_result(tmp_path: Path) -> None:
    engine = QueryEngine(IndexStore(tmp_path / "index"), str(tmp_path / "missing"))

    assert engine.search("alpha") == []
    assert not engine.has_index()


def test_no_root_selected_returns_empty_result(tmp_path: Path) -> None:
    engine = QueryEngine(IndexStore(tmp_path / "index"))

    assert engine.search("alpha") == []


def test_corrupt_index_returns_empty_result(tmp_path: Path) -> None:
    root = str(tmp_path / "docs")
    store = IndexStore(tmp_path / "index")
    directory = Path(store.root_dir(root))
    directory.mkdir(parents=True)
    (directory / "gen-00000000000000000007.db").write_bytes(b"\x00garbage" * 64)
    engine = QueryEngine(store, root)

    assert engine.search("alpha") == []
    assert not engine.has_index()


def test_newer_generation_on_disk_replaces_cached_index(saved) -> None:
    store, root = saved
    engine = QueryEngine(store, root)
    assert engine.search("delta") == []

    store.save(_index(root, {"d.txt": ["delta"]}))

    assert _names(engine.search("delta")) == ["d.txt"]
    assert engine.search("gamma") == []


def test_install_ignores_other_roots_and_older_generations(saved, tmp_path: Path) -> None:
    store, root = saved
    engine = QueryEngine(store, root)
    assert engine.has_index()
    current = engine.current

    engine.install(_index(str(tmp_path / "elsewhere"), {"x.txt": ["zeta"]}).with_generation("99999999999999999999"))
    engine.install(_index(root, {"old.txt": ["zeta"]}).with_generation("00000000000000000001"))

    assert engine.current is current
    assert engine.search("zeta") == []


def test_select_root_switches_searched_index(tmp_path: Path) -> None:
    store = IndexStore(tmp_path / "index")
    first = str(tmp_path / "first")
    second = str(tmp_path / "second")
    store.save(_index(first, {"one.txt": ["uno"]}))
    store.save(_index(second, {"two.txt": ["dos"]}))
    engine = QueryEngine(store, first)

    assert _names(engine.search("uno")) == ["one.txt"]
    assert engine.select_root(second) is True
    assert engine.search("uno") == []
    assert _names(engine.search("dos")) == ["two.txt"]


def test_match_index_contains_rule() -> None:
    index = _index("/r", {"x.txt": ["hello", "world"]})

    assert _names(match_index(index, "orl")) == ["x.txt"]
    assert match_index(index, "") == []


def test_root_switch_during_install_does_not_keep_old_root_index(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = IndexStore(tmp_path / "index")
    first = str(tmp_path / "first")
    second = str(tmp_path / "second")
    engine = QueryEngine(store, first)
    calls = []
    switchers = []
    real_canonical_root = query.canonical_root

    def switching_canonical_root(root):
        calls.append(root)
        # second call compares against the selected root, already read
        if len(calls) == 2:
            switcher = threading.Thread(target=engine.select_root, args=(second,))
            switchers.append(switcher)
            switcher.start()
            switcher.join(timeout=0.2)
        return real_canonical_root(root)

    monkeypatch.setattr(query, "canonical_root", switching_canonical_root)
    engine.install(_index(first, {"one.txt": ["uno"]}).with_generation("00000000000000000001"))
    switchers[0].join(timeout=5)

    assert engine.root == os.path.abspath(second)
    assert engine.current is None
    assert engine.search("uno") == []
    assert not engine.has_index()
