"""Merkle trees over resource tags.

Two trees use this module:

- the *action tree*, built fresh for every action over its ordered tags
  (consumed nullifier, created commitment, repeated per resource pair), and
- commitment trees held by the ledger/indexer, whose paths are fetched over HTTP
  and checked here.

Both are fixed-depth binary trees, padded to capacity with a canonical empty leaf.

Hashing:
- SHA-256
- Leaves are the 32-byte tags themselves (they are already digests)
- node = SHA256(0x01 || left || right)
- padding leaf = SHA256("EmptyLeaf")

Path convention:
- A path lists `PathNode(sibling, is_left)` from the leaf level upwards.
- `is_left` is True when the *sibling* is the left child, i.e. the running hash
  is on the right: parent = node(sibling, current).
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from resource_tx.errors import InvalidRequestError, TreeMembershipError
from resource_tx.resource import DIGEST_SIZE, require_bytes


ACTION_TREE_DEPTH = 4

PADDING_LEAF = hashlib.sha256(b"EmptyLeaf").digest()


def node_hash(left: bytes, right: bytes) -> bytes:
    return hashlib.sha256(b"\x01" + left + right).digest()


@dataclass(frozen=True)
class PathNode:
    sibling: bytes
    is_left: bool

    def __post_init__(self):
        require_bytes(self.sibling, DIGEST_SIZE, "sibling")


@dataclass(frozen=True)
class MerklePath:
    """Inclusion path from a leaf to the root."""
    nodes: Tuple[PathNode, ...] = ()

    @classmethod
    def empty(cls) -> "MerklePath":
        return cls(())

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[bytes, bool]]) -> "MerklePath":
        return cls(tuple(PathNode(sibling, bool(is_left)) for sibling, is_left in pairs))

    def __len__(self) -> int:
        return len(self.nodes)

    def is_empty(self) -> bool:
        return not self.nodes

    def root(self, leaf: bytes) -> bytes:
        """Recompute the root reached from `leaf` along this path."""
        current = require_bytes(leaf, DIGEST_SIZE, "leaf")
        for node in self.nodes:
            if node.is_left:
                current = node_hash(node.sibling, current)
            else:
                current = node_hash(current, node.sibling)
        return current

    def to_list(self) -> List[Dict[str, Any]]:
        return [{"sibling": n.sibling.hex(), "is_left": n.is_left} for n in self.nodes]

    @classmethod
    def from_list(cls, items: Sequence[Dict[str, Any]]) -> "MerklePath":
        return cls.from_pairs((bytes.fromhex(i["sibling"]), i["is_left"]) for i in items)


class MerkleTree:
    """
    Fixed-depth Merkle tree.

    Leaves keep their construction order; unused positions hold PADDING_LEAF.
    The tree is read-only after construction.
    """

    def __init__(self, leaves: Sequence[bytes], depth: int):
        if depth < 1:
            raise InvalidRequestError(f"tree depth must be positive, got {depth}")
        capacity = 1 << depth
        if len(leaves) > capacity:
            raise InvalidRequestError(
                f"{len(leaves)} leaves exceed tree capacity {capacity}",
                depth=depth,
            )
        self.depth = depth
        self.leaves: Tuple[bytes, ...] = tuple(
            require_bytes(leaf, DIGEST_SIZE, "leaf") for leaf in leaves
        )
        self._levels = self._build(list(self.leaves) + [PADDING_LEAF] * (capacity - len(self.leaves)))

    @staticmethod
    def _build(level: List[bytes]) -> List[List[bytes]]:
        levels = [level]
        while len(level) > 1:
            level = [node_hash(level[i], level[i + 1]) for i in range(0, len(level), 2)]
            levels.append(level)
        return levels

    @property
    def capacity(self) -> int:
        return 1 << self.depth

    def root(self) -> bytes:
        return self._levels[-1][0]

    def __len__(self) -> int:
        return len(self.leaves)

    def __contains__(self, leaf: bytes) -> bool:
        return leaf in self.leaves

    def index_of(self, leaf: bytes) -> int:
        try:
            return self.leaves.index(leaf)
        except ValueError:
            raise TreeMembershipError(leaf) from None

    def path_at(self, position: int) -> MerklePath:
        if not 0 <= position < self.capacity:
            raise InvalidRequestError(f"leaf position {position} out of range")
        nodes = []
        pos = position
        for level in self._levels[:-1]:
            if pos % 2 == 0:
                nodes.append(PathNode(level[pos + 1], False))
            else:
                nodes.append(PathNode(level[pos - 1], True))
            pos //= 2
        return MerklePath(tuple(nodes))

    def generate_path(self, leaf: bytes) -> MerklePath:
        """Path for one of the original leaves; TreeMembershipError otherwise."""
        return self.path_at(self.index_of(leaf))


class ActionTree(MerkleTree):
    """Per-action tree over interleaved (nullifier, commitment) tags."""

    def __init__(self, tags: Sequence[bytes], depth: int = ACTION_TREE_DEPTH):
        if len(set(tags)) != len(tags):
            raise InvalidRequestError("duplicate tag in action")
        super().__init__(tags, depth)

    @property
    def tags(self) -> Tuple[bytes, ...]:
        return self.leaves


def verify_path(leaf: bytes, path: MerklePath, root: bytes) -> bool:
    return path.root(leaf) == root
