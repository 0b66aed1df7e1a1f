from __future__ import annotations

"""Merkle-style integrity trees over chunk content hashes."""

import hashlib
import uuid
from collections import defaultdict
from typing import Iterable, Sequence

from codeindex.rag.types import (
    CodeChunk,
    FlatIntegrityNode,
    IntegrityBranch,
    IntegrityLeaf,
    IntegrityNode,
    IntegrityTree,
)


def content_hash(text: str) -> str:
    """Return the lowercase SHA-256 hex digest of text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def build_integrity_tree(chunks: Sequence[CodeChunk]) -> IntegrityTree:
    """Pair nodes left to right until one root remains.

    An odd trailing node is promoted to the next level unchanged.
    """
    if not chunks:
        return IntegrityTree(root_hash="", root_node=None, total_leaves=0)

    nodes: list[IntegrityNode] = [
        IntegrityLeaf(id=str(uuid.uuid4()), hash=chunk.content_hash, file_path=chunk.file_path)
        for chunk in chunks
    ]
    while len(nodes) > 1:
        next_level: list[IntegrityNode] = []
        for index in range(0, len(nodes), 2):
            if index + 1 >= len(nodes):
                next_level.append(nodes[index])
                continue
            left, right = nodes[index], nodes[index + 1]
            next_level.append(
                IntegrityBranch(
                    id=str(uuid.uuid4()),
                    hash=content_hash(left.hash + right.hash),
                    left=left,
                    right=right,
                )
            )
        nodes = next_level

    root = nodes[0]
    return IntegrityTree(root_hash=root.hash, root_node=root, total_leaves=len(chunks))


def flatten_integrity_tree(
    root: IntegrityNode,
    level: int = 0,
    position: int = 0,
) -> list[FlatIntegrityNode]:
    """Return nodes in pre-order; children sit at positions 2p and 2p+1."""
    flattened: list[FlatIntegrityNode] = []
    stack: list[tuple[IntegrityNode, int, int]] = [(root, level, position)]
    while stack:
        node, node_level, node_position = stack.pop()
        flattened.append(FlatIntegrityNode(node=node, level=node_level, position=node_position))
        if isinstance(node, IntegrityBranch):
            stack.append((node.right, node_level + 1, node_position * 2 + 1))
            stack.append((node.left, node_level + 1, node_position * 2))
    return flattened


def verify_integrity(chunks: Sequence[CodeChunk], expected_root_hash: str) -> bool:
    """Recompute the root hash for chunks and compare it with a stored one."""
    return build_integrity_tree(chunks).root_hash == expected_root_hash


def _leaf_hashes_by_file(nodes: Iterable[FlatIntegrityNode]) -> dict[str, list[str]]:
    grouped: dict[str, list[str]] = defaultdict(list)
    for flat in nodes:
        if isinstance(flat.node, IntegrityLeaf):
            grouped[flat.node.file_path].append(flat.node.hash)
    return grouped


def changed_files(
    previous: Iterable[FlatIntegrityNode],
    current: Iterable[FlatIntegrityNode],
) -> list[str]:
    """Return file paths whose chunk hashes differ between two flattened trees.

    Files present in only one of the trees count as changed.
    """
    before = _leaf_hashes_by_file(previous)
    after = _leaf_hashes_by_file(current)
    return sorted(
        path for path in set(before) | set(after) if before.get(path) != after.get(path)
    )
