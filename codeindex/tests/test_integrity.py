from __future__ import annotations

"""Integrity tree tests."""

from codeindex.rag.integrity import (
    build_integrity_tree,
    changed_files,
    content_hash,
    flatten_integrity_tree,
    verify_integrity,
)
from codeindex.rag.types import CodeChunk, IntegrityBranch, IntegrityLeaf, Language


def make_chunk(hash_value: str, file_path: str = "a.swift", content: str = "") -> CodeChunk:
    return CodeChunk(
        file_id="file-1",
        codebase_id="cb",
        file_path=file_path,
        content=content or hash_value,
        content_hash=hash_value,
        start_line=1,
        end_line=1,
        chunk_type="block",
        language=Language.SWIFT,
    )


def test_empty_tree() -> None:
    tree = build_integrity_tree([])

    assert tree.root_hash == ""
    assert tree.root_node is None
    assert tree.total_leaves == 0


def test_single_chunk_root_is_its_hash() -> None:
    tree = build_integrity_tree([make_chunk("h1")])

    assert tree.root_hash == "h1"
    assert isinstance(tree.root_node, IntegrityLeaf)


def test_odd_node_is_promoted_not_duplicated() -> None:
    tree = build_integrity_tree([make_chunk("h1"), make_chunk("h2"), make_chunk("h3")])

    pair = content_hash("h1" + "h2")
    assert tree.root_hash == content_hash(pair + "h3")
    assert tree.total_leaves == 3
    assert isinstance(tree.root_node, IntegrityBranch)
    assert tree.root_node.left.hash == pair
    assert isinstance(tree.root_node.right, IntegrityLeaf)
    assert tree.root_node.right.hash == "h3"


def test_flatten_is_pre_order_with_positions() -> None:
    tree = build_integrity_tree([make_chunk("h1"), make_chunk("h2"), make_chunk("h3")])

    flat = flatten_integrity_tree(tree.root_node)

    assert [(node.level, node.position) for node in flat] == [(0, 0), (1, 0), (2, 0), (2, 1), (1, 1)]
    assert [node.node.hash for node in flat if node.is_leaf] == ["h1", "h2", "h3"]
    record = flat[0].to_record()
    assert record["kind"] == "branch"
    assert record["left_id"] == flat[1].node.id
    assert flat[2].to_record()["file_path"] == "a.swift"


def test_node_count_for_power_of_two() -> None:
    tree = build_integrity_tree([make_chunk(f"h{index}") for index in range(4)])

    assert len(flatten_integrity_tree(tree.root_node)) == 7


def test_changing_one_chunk_changes_root() -> None:
    chunks = [make_chunk(content_hash(text)) for text in ("alpha", "beta", "gamma")]
    original = build_integrity_tree(chunks)
    modified = chunks[:2] + [make_chunk(content_hash("gamma!"))]

    assert build_integrity_tree(modified).root_hash != original.root_hash
    assert verify_integrity(chunks, original.root_hash)
    assert not verify_integrity(modified, original.root_hash)


def test_changed_files_compares_leaf_hashes() -> None:
    before = [make_chunk("h1", "a.swift"), make_chunk("h2", "b.swift")]
    after = [make_chunk("h1", "a.swift"), make_chunk("h9", "b.swift"), make_chunk("h3", "c.swift")]

    previous = flatten_integrity_tree(build_integrity_tree(before).root_node)
    current = flatten_integrity_tree(build_integrity_tree(after).root_node)

    assert changed_files(previous, current) == ["b.swift", "c.swift"]
    assert changed_files(previous, previous) == []
