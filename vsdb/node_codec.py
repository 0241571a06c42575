"""Node codec for a radix-16 trie without extension nodes.

Nodes carry a compact header (node kind plus nibble count), the packed
partial key, an optional two-byte child bitmap and the value, which is
either stored inline or referenced by its hash.
"""

from __future__ import annotations

import enum
import hashlib
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from typing import ClassVar, NoReturn, Optional, Union

from vsdb.common import VsdbError

HashFn = Callable[[bytes], bytes]

FIRST_PREFIX = 0b00 << 6
LEAF_PREFIX_MASK = 0b01 << 6
BRANCH_WITHOUT_MASK = 0b10 << 6
BRANCH_WITH_MASK = 0b11 << 6
EMPTY_TRIE = FIRST_PREFIX | (0b00 << 4)
ALT_HASHING_LEAF_PREFIX_MASK = FIRST_PREFIX | (0b1 << 5)
ALT_HASHING_BRANCH_WITH_MASK = FIRST_PREFIX | (0b01 << 4)
ESCAPE_COMPACT_HEADER = EMPTY_TRIE | 0b00_01

TRIE_VALUE_NODE_THRESHOLD = 33
NIBBLE_PER_BYTE = 2
NIBBLE_LENGTH = 16
BITMAP_LENGTH = 2

_U32_MAX = (1 << 32) - 1


def _blake2_256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


class CodecError(VsdbError):
    """Raised when trie node data cannot be encoded or decoded."""


def _reject_extension(message: str, detail: str) -> NoReturn:
    raise CodecError(f"{message} ({detail})")


class NodeKind(enum.Enum):
    """The kind of a non-empty node, with its header prefix and prefix width."""

    LEAF = (LEAF_PREFIX_MASK, 2)
    BRANCH_NO_VALUE = (BRANCH_WITHOUT_MASK, 2)
    BRANCH_WITH_VALUE = (BRANCH_WITH_MASK, 2)
    HASHED_VALUE_LEAF = (ALT_HASHING_LEAF_PREFIX_MASK, 3)
    HASHED_VALUE_BRANCH = (ALT_HASHING_BRANCH_WITH_MASK, 4)

    @property
    def prefix(self) -> int:
        return self.value[0]

    @property
    def prefix_mask(self) -> int:
        return self.value[1]


class ByteReader:
    """Reads a byte string front to back, tracking the absolute position."""

    def __init__(self, data: bytes) -> None:
        self.data = bytes(data)
        self.offset = 0

    def take(self, count: int) -> bytes:
        """Consume and return the next ``count`` bytes."""
        if count < 0 or self.offset + count > len(self.data):
            raise CodecError("out of data")
        chunk = self.data[self.offset : self.offset + count]
        self.offset += count
        return chunk

    def read_byte(self) -> int:
        if self.offset + 1 > len(self.data):
            raise CodecError("out of data")
        byte = self.data[self.offset]
        self.offset += 1
        return byte

    def remaining(self) -> int:
        return max(0, len(self.data) - self.offset)


@dataclass(frozen=True)
class InlineValue:
    """A value stored inside the node."""

    data: bytes


@dataclass(frozen=True)
class HashedValue:
    """A value stored elsewhere and referenced by its hash."""

    hash: bytes


@dataclass(frozen=True)
class ChildHash:
    """A child node referenced by its hash."""

    hash: bytes


@dataclass(frozen=True)
class ChildInline:
    """A child node small enough to be embedded in its parent."""

    data: bytes


Value = Union[InlineValue, HashedValue]
ChildReference = Union[ChildHash, ChildInline]


@dataclass(frozen=True)
class NibbleSlicePlan:
    """A packed partial key; ``offset`` leading nibbles are padding."""

    data: bytes
    offset: int

    def nibbles(self) -> tuple[int, ...]:
        unpacked = tuple(n for b in self.data for n in (b >> 4, b & 0x0F))
        return unpacked[self.offset :]

    def __len__(self) -> int:
        return len(self.data) * NIBBLE_PER_BYTE - self.offset


@dataclass(frozen=True)
class LeafPlan:
    partial: NibbleSlicePlan
    value: Value


@dataclass(frozen=True)
class BranchPlan:
    partial: NibbleSlicePlan
    value: Optional[Value]
    children: tuple[Optional[ChildReference], ...]


def compact_encode(value: int) -> bytes:
    """Encode an unsigned 32-bit integer in the compact variable-length form."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected an int, got {type(value).__name__}")
    if not 0 <= value <= _U32_MAX:
        raise ValueError(f"value out of the u32 range: {value}")
    if value <= 0x3F:
        return bytes([value << 2])
    if value <= 0x3FFF:
        return ((value << 2) | 0b01).to_bytes(2, "little")
    if value <= 0x3FFF_FFFF:
        return ((value << 2) | 0b10).to_bytes(4, "little")
    return bytes([0b11]) + value.to_bytes(4, "little")


def compact_decode(reader: ByteReader) -> int:
    """Decode a compact unsigned 32-bit integer, rejecting non-canonical forms."""
    prefix = reader.read_byte()
    mode = prefix & 0b11
    if mode == 0:
        return prefix >> 2
    if mode == 1:
        value = int.from_bytes(bytes([prefix]) + reader.take(1), "little") >> 2
        if 0x3F < value <= 0x3FFF:
            return value
        raise CodecError("out of range decoding Compact<u32>")
    if mode == 2:
        value = int.from_bytes(bytes([prefix]) + reader.take(3), "little") >> 2
        if 0x3FFF < value <= _U32_MAX >> 2:
            return value
        raise CodecError("out of range decoding Compact<u32>")
    if prefix >> 2 != 0:
        raise CodecError("unexpected prefix decoding Compact<u32>")
    value = int.from_bytes(reader.take(4), "little")
    if value > _U32_MAX >> 2:
        return value
    raise CodecError("out of range decoding Compact<u32>")


def _encode_bytes(data: bytes) -> bytes:
    raw = bytes(data)
    return compact_encode(len(raw)) + raw


def size_and_prefix_iterator(size: int, prefix: int, prefix_mask: int) -> Iterator[int]:
    """Yield the header bytes encoding a node prefix and a nibble count."""
    if size < 0:
        raise ValueError(f"negative size: {size}")
    max_value = 255 >> prefix_mask
    l1 = min(max(max_value - 1, 0), size)
    if size == l1:
        yield (prefix + l1) & 0xFF
        return
    yield (prefix + max_value) & 0xFF
    rem = size - l1
    while rem > 0:
        if rem < 256:
            yield rem - 1
            rem = 0
        else:
            rem -= 255
            yield 255


def decode_size(first: int, reader: ByteReader, prefix_mask: int) -> int:
    """Decode a nibble count from the header's first byte and what follows."""
    max_value = 255 >> prefix_mask
    result = first & max_value
    if result < max_value:
        return result
    result -= 1
    while True:
        n = reader.read_byte()
        if n < 255:
            return result + n + 1
        result += 255


def branch_node_bit_mask(has_children: Iterable[bool]) -> tuple[int, int]:
    """Pack child presence flags into the low and high bitmap bytes."""
    bitmap = 0
    cursor = 1
    for present in has_children:
        if present:
            bitmap |= cursor
        cursor = (cursor << 1) & 0xFFFF
    return bitmap % 256, bitmap // 256


def fuse_nibbles_node(nibbles: Iterable[int], kind: NodeKind) -> bytes:
    """Encode a node header followed by the left-padded packed nibbles."""
    nib = list(nibbles)
    if any(not 0 <= n <= 0x0F for n in nib):
        raise ValueError("nibbles must lie in the range 0..15")
    out = bytearray(size_and_prefix_iterator(len(nib), kind.prefix, kind.prefix_mask))
    odd = len(nib) % NIBBLE_PER_BYTE
    if odd:
        out.append(nib[0])
    rest = nib[odd:]
    out.extend((hi << 4) | lo for hi, lo in zip(rest[::2], rest[1::2]))
    return bytes(out)


@dataclass(frozen=True)
class NodeHeader:
    """A node's kind and nibble count; a kind of None is the empty node."""

    kind: Optional[NodeKind]
    nibble_count: int = 0

    def contains_hash_of_value(self) -> bool:
        return self.kind in (NodeKind.HASHED_VALUE_LEAF, NodeKind.HASHED_VALUE_BRANCH)

    def encode(self) -> bytes:
        if self.kind is None:
            return bytes([EMPTY_TRIE])
        return bytes(
            size_and_prefix_iterator(
                self.nibble_count, self.kind.prefix, self.kind.prefix_mask
            )
        )

    @classmethod
    def decode(cls, reader: ByteReader) -> NodeHeader:
        i = reader.read_byte()
        if i == EMPTY_TRIE:
            return cls(None)
        top = i & (0b11 << 6)
        if top == LEAF_PREFIX_MASK:
            return cls(NodeKind.LEAF, decode_size(i, reader, 2))
        if top == BRANCH_WITH_MASK:
            return cls(NodeKind.BRANCH_WITH_VALUE, decode_size(i, reader, 2))
        if top == BRANCH_WITHOUT_MASK:
            return cls(NodeKind.BRANCH_NO_VALUE, decode_size(i, reader, 2))
        if i & (0b111 << 5) == ALT_HASHING_LEAF_PREFIX_MASK:
            return cls(NodeKind.HASHED_VALUE_LEAF, decode_size(i, reader, 3))
        if i & (0b1111 << 4) == ALT_HASHING_BRANCH_WITH_MASK:
            return cls(NodeKind.HASHED_VALUE_BRANCH, decode_size(i, reader, 4))
        raise CodecError("Unallowed encoding")


@dataclass(frozen=True)
class Bitmap:
    """Presence flags of the sixteen children of a branch."""

    value: int

    @classmethod
    def decode(cls, data: bytes) -> Bitmap:
        raw = bytes(data)
        if len(raw) < BITMAP_LENGTH:
            raise CodecError("not enough data to fill buffer")
        value = int.from_bytes(raw[:BITMAP_LENGTH], "little")
        if value == 0:
            raise CodecError("Bitmap without a child.")
        return cls(value)

    def value_at(self, i: int) -> bool:
        return bool(self.value & (1 << i))

    @staticmethod
    def encode(has_children: Iterable[bool]) -> bytes:
        return bytes(branch_node_bit_mask(has_children))


def _value_kind_bytes(value: Value) -> bytes:
    if isinstance(value, InlineValue):
        return _encode_bytes(value.data)
    if isinstance(value, HashedValue):
        return bytes(value.hash)
    raise TypeError(f"unsupported value type: {type(value).__name__}")


class TrieStream:
    """Builds the encoding of a trie node by node, for root calculation."""

    def __init__(self, hash_fn: HashFn = _blake2_256) -> None:
        self._hash_fn = hash_fn
        self._buffer = bytearray()

    def append_empty_data(self) -> None:
        self._buffer.append(EMPTY_TRIE)

    def append_leaf(self, key: Iterable[int], value: Value) -> None:
        kind = NodeKind.LEAF if isinstance(value, InlineValue) else NodeKind.HASHED_VALUE_LEAF
        encoded_value = _value_kind_bytes(value)
        self._buffer += fuse_nibbles_node(key, kind)
        self._buffer += encoded_value

    def begin_branch(
        self,
        maybe_partial: Optional[Iterable[int]],
        maybe_value: Optional[Value],
        has_children: Iterable[bool],
    ) -> None:
        if maybe_partial is None:
            raise CodecError("trie stream codec only for no extension trie")
        if maybe_value is None:
            kind = NodeKind.BRANCH_NO_VALUE
            encoded_value = b""
        else:
            kind = (
                NodeKind.BRANCH_WITH_VALUE
                if isinstance(maybe_value, InlineValue)
                else NodeKind.HASHED_VALUE_BRANCH
            )
            encoded_value = _value_kind_bytes(maybe_value)
        self._buffer += fuse_nibbles_node(maybe_partial, kind)
        self._buffer += Bitmap.encode(has_children)
        self._buffer += encoded_value

    def append_extension(self, key: Iterable[int]) -> None:
        """Reject an extension node; this stream only builds tries without them."""
        nibble_count = len(list(key))
        _reject_extension(
            "trie stream codec only for no extension trie",
            f"extension of {nibble_count} nibbles",
        )

    def append_substream(self, other: TrieStream) -> None:
        """Embed a child stream, by hash once it reaches 32 bytes."""
        data = other.out()
        if len(data) <= 31:
            self._buffer += _encode_bytes(data)
        else:
            self._buffer += _encode_bytes(self._hash_fn(data))

    def out(self) -> bytes:
        return bytes(self._buffer)


class NodeCodec:
    """Encodes and decodes trie nodes for a given hash function."""

    ESCAPE_HEADER: ClassVar[int] = ESCAPE_COMPACT_HEADER

    def __init__(self, hash_fn: HashFn = _blake2_256, hash_length: int = 32) -> None:
        self.hash_fn = hash_fn
        self.hash_length = hash_length

    def hashed_null_node(self) -> bytes:
        return self.hash_fn(self.empty_node())

    def _read_partial(self, reader: ByteReader, nibble_count: int) -> NibbleSlicePlan:
        padding = nibble_count % NIBBLE_PER_BYTE != 0
        if padding and reader.remaining() and reader.data[reader.offset] & 0xF0:
            raise CodecError("bad format")
        raw = reader.take((nibble_count + NIBBLE_PER_BYTE - 1) // NIBBLE_PER_BYTE)
        return NibbleSlicePlan(raw, nibble_count % NIBBLE_PER_BYTE)

    def _read_value(self, reader: ByteReader, contains_hash: bool) -> Value:
        if contains_hash:
            return HashedValue(reader.take(self.hash_length))
        return InlineValue(reader.take(compact_decode(reader)))

    def _read_child(self, reader: ByteReader) -> ChildReference:
        count = compact_decode(reader)
        data = reader.take(count)
        return ChildHash(data) if count == self.hash_length else ChildInline(data)

    def decode_plan(self, data: bytes) -> Optional[Union[LeafPlan, BranchPlan]]:
        """Decode a node; the empty node gives None."""
        reader = ByteReader(data)
        header = NodeHeader.decode(reader)
        if header.kind is None:
            return None
        partial = self._read_partial(reader, header.nibble_count)
        contains_hash = header.contains_hash_of_value()
        if header.kind in (NodeKind.LEAF, NodeKind.HASHED_VALUE_LEAF):
            return LeafPlan(partial, self._read_value(reader, contains_hash))
        bitmap = Bitmap.decode(reader.take(BITMAP_LENGTH))
        value = (
            None
            if header.kind is NodeKind.BRANCH_NO_VALUE
            else self._read_value(reader, contains_hash)
        )
        children = tuple(
            self._read_child(reader) if bitmap.value_at(i) else None
            for i in range(NIBBLE_LENGTH)
        )
        return BranchPlan(partial, value, children)

    def is_empty_node(self, data: bytes) -> bool:
        return bytes(data) == self.empty_node()

    def empty_node(self) -> bytes:
        return bytes([EMPTY_TRIE])

    def _value_bytes(self, value: Value) -> bytes:
        if isinstance(value, HashedValue) and len(value.hash) != self.hash_length:
            raise ValueError(
                f"hashed value must be {self.hash_length} bytes, got {len(value.hash)}"
            )
        return _value_kind_bytes(value)

    def leaf_node(self, partial: Iterable[int], number_nibble: int, value: Value) -> bytes:
        kind = NodeKind.HASHED_VALUE_LEAF if isinstance(value, HashedValue) else NodeKind.LEAF
        encoded_value = self._value_bytes(value)
        return NodeHeader(kind, number_nibble).encode() + bytes(partial) + encoded_value

    def extension_node(
        self, partial: Iterable[int], number_nibble: int, child: ChildReference
    ) -> bytes:
        """Reject an extension node; this layout has none."""
        _reject_extension(
            "No extension codec.",
            f"extension of {number_nibble} nibbles to {type(child).__name__}",
        )

    def branch_node(
        self, children: Iterable[Optional[ChildReference]], value: Optional[Value]
    ) -> bytes:
        """Reject a branch without a partial key; only nibbled branches exist here."""
        child_count = sum(child is not None for child in children)
        _reject_extension(
            "No extension codec.",
            f"plain branch with {child_count} children",
        )

    def branch_node_nibbled(
        self,
        partial: Iterable[int],
        number_nibble: int,
        children: Iterable[Optional[ChildReference]],
        value: Optional[Value],
    ) -> bytes:
        if value is None:
            kind = NodeKind.BRANCH_NO_VALUE
        elif isinstance(value, HashedValue):
            kind = NodeKind.HASHED_VALUE_BRANCH
        else:
            kind = NodeKind.BRANCH_WITH_VALUE
        output = bytearray(NodeHeader(kind, number_nibble).encode() + bytes(partial))
        bitmap_index = len(output)
        output += bytes(BITMAP_LENGTH)
        if value is not None:
            output += self._value_bytes(value)
        present = []
        for child in children:
            if child is None:
                present.append(False)
            elif isinstance(child, ChildHash):
                output += _encode_bytes(child.hash)
                present.append(True)
            elif isinstance(child, ChildInline):
                output += _encode_bytes(child.data)
                present.append(True)
            else:
                raise TypeError(f"unsupported child type: {type(child).__name__}")
        output[bitmap_index : bitmap_index + BITMAP_LENGTH] = Bitmap.encode(present)
        return bytes(output)


def encode_index(value: int) -> bytes:
    """Encode a trie key index in the compact form."""
    return compact_encode(value)