"""
Persistent, content-addressed hexary trie.

Every node is addressed by the keccak256 hash of its encoding, so two tries
with the same key/value content always have the same root hash. Tries are
immutable: put() and delete() return a new root that shares unchanged
subtrees with the old one.

Node layout:
- path: shared nibble segment consumed by this node
- children: 16 slots, each empty or a NodeReference (held in memory or
  loaded lazily by hash from the node's TrieStore)
- value: optional terminal value. Values longer than 32 bytes are kept out
  of the node and stored by their own hash (see TrieStore.retrieve_value).

Encoding: rlp([hp(path), [16 child hashes or b""], value, value_hash, value_length])
where value is used for short values and value_hash/value_length for long ones.

Two hash conventions are provided:
- hash: covers the full trie
- get_legacy_hash(): nodes whose key path reaches ACCOUNT_KEY_SIZE bytes are
  hashed with their children pruned, so only the account-length-bounded
  sub-trie contributes
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterator, Optional

import rlp
from rlp.exceptions import DecodingError

from statemigrate.common.crypto import keccak256
from statemigrate.common.errors import MalformedInputError, MissingDataError

if TYPE_CHECKING:
    from statemigrate.storage.trie_store import TrieStore


ACCOUNT_KEY_SIZE = 32
ACCOUNT_KEY_NIBBLES = ACCOUNT_KEY_SIZE * 2
MAX_EMBEDDED_VALUE_SIZE = 32
ARITY = 16


# ---------------------------------------------------------------------------
# Hex-prefix (HP) encoding for trie paths
# ---------------------------------------------------------------------------

def nibbles_from_bytes(data: bytes) -> tuple[int, ...]:
    """Convert bytes to a tuple of nibbles (half-bytes)."""
    nibbles = []
    for byte in data:
        nibbles.append(byte >> 4)
        nibbles.append(byte & 0x0F)
    return tuple(nibbles)


def bytes_from_nibbles(nibbles: tuple[int, ...]) -> bytes:
    """Convert nibbles back to bytes. Must have even length."""
    if len(nibbles) % 2 != 0:
        raise ValueError(f"Odd nibble count {len(nibbles)} cannot form bytes")
    result = bytearray()
    for i in range(0, len(nibbles), 2):
        result.append((nibbles[i] << 4) | nibbles[i + 1])
    return bytes(result)


def hex_prefix_encode(nibbles: tuple[int, ...], terminal: bool) -> bytes:
    """Encode nibbles with hex-prefix encoding.

    The first nibble of the result encodes:
    - bit 1 (0x20): terminal flag (node carries a value)
    - bit 0 (0x10): odd length flag (padding nibble present)
    """
    flag = 2 if terminal else 0
    if len(nibbles) % 2 == 1:
        return bytes_from_nibbles((flag + 1,) + tuple(nibbles))
    return bytes_from_nibbles((flag, 0) + tuple(nibbles))


def hex_prefix_decode(data: bytes) -> tuple[tuple[int, ...], bool]:
    """Decode hex-prefix encoded data. Returns (nibbles, terminal)."""
    if not data:
        raise MalformedInputError("Empty hex-prefix path")
    nibbles = nibbles_from_bytes(data)
    flag = nibbles[0]
    if flag > 3:
        raise MalformedInputError(f"Invalid hex-prefix flag {flag}")
    if flag % 2 == 1:
        return nibbles[1:], flag >= 2
    return nibbles[2:], flag >= 2


def _common_prefix_length(a: tuple[int, ...], b: tuple[int, ...]) -> int:
    max_len = min(len(a), len(b))
    for i in range(max_len):
        if a[i] != b[i]:
            return i
    return max_len


# ---------------------------------------------------------------------------
# Node references
# ---------------------------------------------------------------------------

class NodeReference:
    """Link to a child node, either held in memory or loaded by hash."""

    __slots__ = ("_store", "_node", "_hash")

    def __init__(
        self,
        store: Optional[TrieStore],
        node: Optional[Trie] = None,
        node_hash: Optional[bytes] = None,
    ) -> None:
        self._store = store
        self._node = node
        self._hash = node_hash

    def get_node(self) -> Trie:
        if self._node is None:
            if self._store is None:
                raise MissingDataError("trie node", self._hash)
            node = self._store.retrieve(self._hash)
            if node is None:
                raise MissingDataError("trie node", self._hash)
            self._node = node
        return self._node

    def get_hash(self) -> bytes:
        if self._hash is None:
            self._hash = self._node.hash
        return self._hash

    def is_loaded(self) -> bool:
        return self._node is not None


# ---------------------------------------------------------------------------
# Traversal elements
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class IterationElement:
    """A node together with its full key path (in nibbles) from the root."""

    node_key: tuple[int, ...]
    node: Trie

    def key_length(self) -> int:
        """Length of the key path in nibbles."""
        return len(self.node_key)

    def is_account_boundary(self) -> bool:
        return len(self.node_key) == ACCOUNT_KEY_NIBBLES

    def encode_key(self) -> bytes:
        return bytes_from_nibbles(self.node_key)


# ---------------------------------------------------------------------------
# Trie
# ---------------------------------------------------------------------------

class Trie:
    """Immutable trie node; the root node stands for the whole trie."""

    __slots__ = (
        "_store",
        "_path",
        "_children",
        "_value",
        "_value_hash",
        "_value_length",
        "_hash",
        "_encoded",
        "saved",
    )

    def __init__(
        self,
        store: Optional[TrieStore] = None,
        path: tuple[int, ...] = (),
        children: Optional[tuple[Optional[NodeReference], ...]] = None,
        value: Optional[bytes] = None,
        value_hash: Optional[bytes] = None,
        value_length: int = 0,
    ) -> None:
        self._store = store
        self._path = tuple(path)
        self._children = children if children is not None else (None,) * ARITY
        if value:
            self._value = bytes(value)
            self._value_length = len(value)
            self._value_hash = keccak256(value) if len(value) > MAX_EMBEDDED_VALUE_SIZE else None
        else:
            # Either no value, or a long value still sitting in the store
            self._value = None
            self._value_length = value_length
            self._value_hash = value_hash
        self._hash: Optional[bytes] = None
        self._encoded: Optional[bytes] = None
        self.saved = False

    # -----------------------------------------------------------------
    # Accessors
    # -----------------------------------------------------------------

    @property
    def store(self) -> Optional[TrieStore]:
        return self._store

    @property
    def path(self) -> tuple[int, ...]:
        return self._path

    @property
    def children(self) -> tuple[Optional[NodeReference], ...]:
        return self._children

    def has_value(self) -> bool:
        return self._value_length > 0

    def has_long_value(self) -> bool:
        return self._value_length > MAX_EMBEDDED_VALUE_SIZE

    def is_empty(self) -> bool:
        return not self.has_value() and all(c is None for c in self._children)

    def get_value(self) -> Optional[bytes]:
        """Terminal value of this node, loading a long value if needed."""
        if not self.has_value():
            return None
        if self._value is None:
            if self._store is None:
                raise MissingDataError("trie value", self._value_hash)
            value = self._store.retrieve_value(self._value_hash)
            if value is None:
                raise MissingDataError("trie value", self._value_hash)
            self._value = value
        return self._value

    def get_value_hash(self) -> Optional[bytes]:
        if not self.has_value():
            return None
        if self._value_hash is None:
            self._value_hash = keccak256(self._value)
        return self._value_hash

    # -----------------------------------------------------------------
    # Encoding and hashing
    # -----------------------------------------------------------------

    def encode(self) -> bytes:
        if self._encoded is None:
            self._encoded = self._encode_with_children(
                [c.get_hash() if c is not None else b"" for c in self._children]
            )
        return self._encoded

    def _encode_with_children(self, child_hashes: list[bytes]) -> bytes:
        if self.has_long_value():
            value, value_hash, value_length = b"", self.get_value_hash(), self._value_length
        else:
            value, value_hash, value_length = self._value or b"", b"", 0
        return rlp.encode([
            hex_prefix_encode(self._path, self.has_value()),
            child_hashes,
            value,
            value_hash,
            value_length,
        ])

    @property
    def hash(self) -> bytes:
        """Current-convention hash covering the full subtree."""
        if self._hash is None:
            self._hash = keccak256(self.encode())
        return self._hash

    def get_legacy_hash(self) -> bytes:
        """Hash restricted to key paths of at most ACCOUNT_KEY_SIZE bytes."""
        return self._legacy_hash(0)

    def _legacy_hash(self, depth: int) -> bytes:
        end = depth + len(self._path)
        if all(ref is None for ref in self._children):
            return self.hash
        if end >= ACCOUNT_KEY_NIBBLES:
            return keccak256(self._encode_with_children([b""] * ARITY))
        child_hashes = []
        for ref in self._children:
            if ref is None:
                child_hashes.append(b"")
            else:
                child_hashes.append(ref.get_node()._legacy_hash(end + 1))
        return keccak256(self._encode_with_children(child_hashes))

    @classmethod
    def from_encoded(cls, data: bytes, store: Optional[TrieStore]) -> Trie:
        """Decode a stored node, binding lazy children to ``store``."""
        try:
            items = rlp.decode(data)
        except DecodingError as exc:
            raise MalformedInputError(f"Invalid trie node encoding: {exc}") from exc
        if not isinstance(items, list) or len(items) != 5:
            raise MalformedInputError("Trie node must be a 5-item list")
        path_data, child_hashes, value, value_hash, raw_length = items
        if not all(isinstance(f, bytes) for f in (path_data, value, value_hash, raw_length)):
            raise MalformedInputError("Trie node fields must be byte strings")
        if not isinstance(child_hashes, list) or len(child_hashes) != ARITY:
            raise MalformedInputError(f"Trie node must have {ARITY} child slots")
        path, terminal = hex_prefix_decode(path_data)

        children = []
        for child_hash in child_hashes:
            if child_hash == b"":
                children.append(None)
            elif isinstance(child_hash, bytes) and len(child_hash) == 32:
                children.append(NodeReference(store, node_hash=child_hash))
            else:
                raise MalformedInputError("Child reference must be a 32-byte hash")

        value_length = int.from_bytes(raw_length, "big")
        if value_hash:
            if len(value_hash) != 32 or value_length <= MAX_EMBEDDED_VALUE_SIZE:
                raise MalformedInputError("Invalid long value reference")
            node = cls(store, path, tuple(children), value_hash=value_hash, value_length=value_length)
        else:
            node = cls(store, path, tuple(children), value=value)
        if node.has_value() != terminal:
            raise MalformedInputError("Terminal flag does not match node value")
        node._encoded = bytes(data)
        node.saved = True
        return node

    # -----------------------------------------------------------------
    # Lookup
    # -----------------------------------------------------------------

    def find(self, key: bytes) -> Optional[Trie]:
        """Return the node whose full key path is exactly ``key``."""
        return self._find(nibbles_from_bytes(key))

    def _find(self, path: tuple[int, ...]) -> Optional[Trie]:
        node = self
        while True:
            n = len(node._path)
            if path[:n] != node._path:
                return None
            path = path[n:]
            if not path:
                return node
            ref = node._children[path[0]]
            if ref is None:
                return None
            node = ref.get_node()
            path = path[1:]

    def find_below(self, key: bytes) -> Optional[Trie]:
        """Like find(), with ``key`` relative to the end of this node's path."""
        return self._find(self._path + nibbles_from_bytes(key))

    def get(self, key: bytes) -> Optional[bytes]:
        """Get value for key, or None if not found."""
        node = self.find(key)
        if node is None:
            return None
        return node.get_value()

    def get_snapshot_to(self, root_hash: bytes) -> Trie:
        """Pin a read-only view of this trie's store at ``root_hash``."""
        if root_hash == self.hash:
            return self
        if self._store is None:
            raise MissingDataError("trie root", root_hash)
        node = self._store.retrieve(root_hash)
        if node is None:
            raise MissingDataError("trie root", root_hash)
        return node

    # -----------------------------------------------------------------
    # Persistent updates
    # -----------------------------------------------------------------

    def put(self, key: bytes, value: bytes) -> Trie:
        """Return a trie with ``key`` set. An empty value deletes the key."""
        if not value:
            return self.delete(key)
        return self._put(nibbles_from_bytes(key), bytes(value))

    def delete(self, key: bytes) -> Trie:
        result = self._delete(nibbles_from_bytes(key))
        if result is None:
            return Trie(self._store)
        return result

    def _put(self, path: tuple[int, ...], value: bytes) -> Trie:
        if self.is_empty():
            return Trie(self._store, path, value=value)

        common = _common_prefix_length(self._path, path)
        if common < len(self._path):
            # Split this node at the divergence point
            moved = self._with_path(self._path[common + 1:])
            children = [None] * ARITY
            children[self._path[common]] = NodeReference(self._store, moved)
            parent = Trie(self._store, self._path[:common], tuple(children))
            return parent._put(path, value)

        rest = path[common:]
        if not rest:
            return self._with_value(value)
        ref = self._children[rest[0]]
        if ref is None:
            child = Trie(self._store, rest[1:], value=value)
        else:
            child = ref.get_node()._put(rest[1:], value)
        return self._with_child(rest[0], child)

    def _delete(self, path: tuple[int, ...]) -> Optional[Trie]:
        """Return the new subtree, ``self`` if unchanged, None if emptied."""
        n = len(self._path)
        if path[:n] != self._path:
            return self
        rest = path[n:]
        if not rest:
            if not self.has_value():
                return self
            updated = self._with_value(None)
        else:
            ref = self._children[rest[0]]
            if ref is None:
                return self
            child = ref.get_node()
            new_child = child._delete(rest[1:])
            if new_child is child:
                return self
            updated = self._with_child(rest[0], new_child)
        return updated._compress()

    def _compress(self) -> Optional[Trie]:
        live = [i for i, ref in enumerate(self._children) if ref is not None]
        if self.has_value() or len(live) > 1:
            return self
        if not live:
            return None
        index = live[0]
        child = self._children[index].get_node()
        return child._with_path(self._path + (index,) + child._path)

    def _with_path(self, path: tuple[int, ...]) -> Trie:
        return Trie(
            self._store, path, self._children,
            value=self._value, value_hash=self._value_hash, value_length=self._value_length,
        )

    def _with_value(self, value: Optional[bytes]) -> Trie:
        return Trie(self._store, self._path, self._children, value=value)

    def _with_child(self, index: int, child: Optional[Trie]) -> Trie:
        children = list(self._children)
        children[index] = NodeReference(self._store, child) if child is not None else None
        return Trie(
            self._store, self._path, tuple(children),
            value=self._value, value_hash=self._value_hash, value_length=self._value_length,
        )

    # -----------------------------------------------------------------
    # Traversal
    # -----------------------------------------------------------------

    def iter_pre_order(self) -> Iterator[IterationElement]:
        """Yield every node, parent before children, children in slot order."""
        stack: list[tuple[tuple[int, ...], object]] = [((), self)]
        while stack:
            prefix, ref = stack.pop()
            node = ref if isinstance(ref, Trie) else ref.get_node()
            key = prefix + node._path
            yield IterationElement(key, node)
            for i in range(ARITY - 1, -1, -1):
                child = node._children[i]
                if child is not None:
                    stack.append((key + (i,), child))

    def iter_in_order(self) -> Iterator[IterationElement]:
        """Yield every node: children 0-7, then the node, then children 8-15."""
        half = ARITY // 2
        stack: list[tuple[bool, tuple[int, ...], object]] = [(False, (), self)]
        while stack:
            emit, prefix, ref = stack.pop()
            node = ref if isinstance(ref, Trie) else ref.get_node()
            key = prefix + node._path
            if emit:
                yield IterationElement(key, node)
                continue
            for i in range(ARITY - 1, half - 1, -1):
                child = node._children[i]
                if child is not None:
                    stack.append((False, key + (i,), child))
            stack.append((True, prefix, node))
            for i in range(half - 1, -1, -1):
                child = node._children[i]
                if child is not None:
                    stack.append((False, key + (i,), child))

    def __repr__(self) -> str:
        return f"Trie(0x{self.hash.hex()})"


EMPTY_TRIE_ROOT = Trie().hash


def count_values(trie: Trie) -> int:
    """Number of value-bearing nodes in the trie, via an in-order walk."""
    return sum(1 for element in trie.iter_in_order() if element.node.has_value())
