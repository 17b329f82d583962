"""Per-file manifests and the network metadata key.

A :class:`FileManifest` describes a file stored in a network: its coding
parameters, where every fragment of every chunk lives, and its filename
encrypted with the network's :class:`NetworkMetaKey`.

The metadata cipher is a BLAKE3 keystream in counter mode with a keyed
BLAKE3 MAC; the on-wire format is ``nonce(16) || mac(32) || ciphertext``.
"""

from __future__ import annotations

import hmac
import json
import logging
import os
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

logger = logging.getLogger(__name__)

KEY_LEN = 32
_NONCE_LEN = 16
_MAC_LEN = 32


class CodingError(ValueError):
    """Metadata could not be decoded, authenticated or decrypted."""


class ConfigError(ValueError):
    """A locally stored network key is malformed."""


# ── BLAKE3 ────────────────────────────────────────────────────────────────────

_MASK = 0xFFFFFFFF
_IV = (
    0x6A09E667, 0xBB67AE85, 0x3C6EF372, 0xA54FF53A,
    0x510E527F, 0x9B05688C, 0x1F83D9AB, 0x5BE0CD19,
)
_MSG_PERMUTATION = (2, 6, 3, 10, 7, 0, 4, 13, 1, 11, 12, 5, 9, 14, 15, 8)
_CHUNK_START = 1
_CHUNK_END = 2
_PARENT = 4
_ROOT = 8
_KEYED_HASH = 16
_BLOCK_LEN = 64
_CHUNK_LEN = 1024


def _rotr(x: int, n: int) -> int:
    return ((x >> n) | (x << (32 - n))) & _MASK


def _g(s: list[int], a: int, b: int, c: int, d: int, mx: int, my: int) -> None:
    s[a] = (s[a] + s[b] + mx) & _MASK
    s[d] = _rotr(s[d] ^ s[a], 16)
    s[c] = (s[c] + s[d]) & _MASK
    s[b] = _rotr(s[b] ^ s[c], 12)
    s[a] = (s[a] + s[b] + my) & _MASK
    s[d] = _rotr(s[d] ^ s[a], 8)
    s[c] = (s[c] + s[d]) & _MASK
    s[b] = _rotr(s[b] ^ s[c], 7)


def _round(s: list[int], m: list[int]) -> None:
    _g(s, 0, 4, 8, 12, m[0], m[1])
    _g(s, 1, 5, 9, 13, m[2], m[3])
    _g(s, 2, 6, 10, 14, m[4], m[5])
    _g(s, 3, 7, 11, 15, m[6], m[7])
    _g(s, 0, 5, 10, 15, m[8], m[9])
    _g(s, 1, 6, 11, 12, m[10], m[11])
    _g(s, 2, 7, 8, 13, m[12], m[13])
    _g(s, 3, 4, 9, 14, m[14], m[15])


def _compress(
    cv: tuple[int, ...], words: tuple[int, ...], counter: int, block_len: int, flags: int
) -> list[int]:
    state = [
        *cv,
        *_IV[:4],
        counter & _MASK,
        (counter >> 32) & _MASK,
        block_len,
        flags,
    ]
    block = list(words)
    for round_no in range(7):
        _round(state, block)
        if round_no < 6:
            block = [block[i] for i in _MSG_PERMUTATION]
    for i in range(8):
        state[i] ^= state[i + 8]
        state[i + 8] ^= cv[i]
    return state


def _words(block: bytes) -> tuple[int, ...]:
    return struct.unpack("<16I", block.ljust(_BLOCK_LEN, b"\0"))


@dataclass(frozen=True)
class _Output:
    cv: tuple[int, ...]
    words: tuple[int, ...]
    counter: int
    block_len: int
    flags: int

    def chaining_value(self) -> tuple[int, ...]:
        return tuple(_compress(self.cv, self.words, self.counter, self.block_len, self.flags)[:8])

    def root_bytes(self, length: int) -> bytes:
        out = bytearray()
        block_counter = 0
        while len(out) < length:
            state = _compress(
                self.cv, self.words, block_counter, self.block_len, self.flags | _ROOT
            )
            out += struct.pack("<16I", *state)
            block_counter += 1
        return bytes(out[:length])


def _chunk_output(key_words: tuple[int, ...], chunk: bytes, counter: int, flags: int) -> _Output:
    blocks = [chunk[i : i + _BLOCK_LEN] for i in range(0, len(chunk), _BLOCK_LEN)] or [b""]
    cv = key_words
    for position, block in enumerate(blocks[:-1]):
        start = _CHUNK_START if position == 0 else 0
        cv = tuple(_compress(cv, _words(block), counter, _BLOCK_LEN, flags | start)[:8])
    last = blocks[-1]
    start = _CHUNK_START if len(blocks) == 1 else 0
    return _Output(cv, _words(last), counter, len(last), flags | start | _CHUNK_END)


def _parent_output(
    left: tuple[int, ...], right: tuple[int, ...], key_words: tuple[int, ...], flags: int
) -> _Output:
    return _Output(key_words, left + right, 0, _BLOCK_LEN, flags | _PARENT)


def _blake3(data: bytes, key: bytes | None = None) -> bytes:
    """32-byte BLAKE3 digest of ``data``, keyed when ``key`` is given."""
    if key is None:
        key_words, flags = _IV, 0
    else:
        if len(key) != KEY_LEN:
            raise ValueError("BLAKE3 key must be 32 bytes")
        key_words, flags = struct.unpack("<8I", key), _KEYED_HASH
    chunks = [data[i : i + _CHUNK_LEN] for i in range(0, len(data), _CHUNK_LEN)] or [b""]
    stack: list[tuple[int, ...]] = []
    for counter, chunk in enumerate(chunks[:-1]):
        cv = _chunk_output(key_words, chunk, counter, flags).chaining_value()
        total = counter + 1
        while total & 1 == 0:
            cv = _parent_output(stack.pop(), cv, key_words, flags).chaining_value()
            total >>= 1
        stack.append(cv)
    output = _chunk_output(key_words, chunks[-1], len(chunks) - 1, flags)
    while stack:
        output = _parent_output(stack.pop(), output.chaining_value(), key_words, flags)
    return output.root_bytes(32)


# ── Network metadata key ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class NetworkMetaKey:
    """32-byte secret shared by all members of a network; encrypts metadata."""

    key: bytes = field(repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.key, (bytes, bytearray)) or len(self.key) != KEY_LEN:
            raise ValueError("NetworkMetaKey must be exactly 32 bytes")
        object.__setattr__(self, "key", bytes(self.key))

    @classmethod
    def generate(cls) -> NetworkMetaKey:
        """A fresh random key, for creating a network."""
        return cls(os.urandom(KEY_LEN))

    @staticmethod
    def _read_map(keys_path: Path) -> dict[str, str]:
        data = json.loads(keys_path.read_text(encoding="utf-8"))
        if not isinstance(data, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in data.items()
        ):
            raise ConfigError(f"Network keys file {keys_path} is malformed")
        return data

    @classmethod
    def load(cls, keys_path: str | Path, network_id: str) -> NetworkMetaKey | None:
        """The stored key for ``network_id``, or ``None`` if none is stored."""
        path = Path(keys_path)
        if not path.exists():
            return None
        hex_key = cls._read_map(path).get(network_id)
        if hex_key is None:
            return None
        try:
            raw = bytes.fromhex(hex_key)
        except ValueError as exc:
            raise ConfigError(f"Invalid network key for '{network_id}': {exc}") from exc
        if len(raw) != KEY_LEN:
            raise ConfigError(
                f"Network key for '{network_id}' has wrong length: {len(raw)}"
            )
        return cls(raw)

    def save(self, keys_path: str | Path, network_id: str) -> None:
        """Store this key for ``network_id``, replacing any existing entry."""
        path = Path(keys_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        keys = self._read_map(path) if path.exists() else {}
        keys[network_id] = self.key.hex()
        path.write_text(json.dumps(keys, indent=2), encoding="utf-8")

    @classmethod
    def load_or_create(cls, keys_path: str | Path, network_id: str) -> NetworkMetaKey:
        """Load the key for ``network_id``, generating and storing one if absent."""
        existing = cls.load(keys_path, network_id)
        if existing is not None:
            return existing
        key = cls.generate()
        key.save(keys_path, network_id)
        logger.info("Generated new NetworkMetaKey for network %s", network_id)
        return key

    @classmethod
    def for_network(cls, network_id: str) -> NetworkMetaKey:
        """Deterministic key from the network name; insecure, for tests only."""
        return cls(_blake3(b"billpouch/meta/v1" + network_id.encode("utf-8")))

    def encrypt(self, plaintext: bytes) -> bytes:
        """Encrypt and authenticate: ``nonce(16) || mac(32) || ciphertext``."""
        nonce = os.urandom(_NONCE_LEN)
        ciphertext = self._xor_keystream(nonce, bytes(plaintext))
        return nonce + self._mac(nonce, ciphertext) + ciphertext

    def decrypt(self, blob: bytes) -> bytes:
        """Authenticate and decrypt a blob from :meth:`encrypt`."""
        if len(blob) < _NONCE_LEN + _MAC_LEN:
            raise CodingError("Encrypted metadata blob is too short")
        nonce = bytes(blob[:_NONCE_LEN])
        stored_mac = bytes(blob[_NONCE_LEN : _NONCE_LEN + _MAC_LEN])
        ciphertext = bytes(blob[_NONCE_LEN + _MAC_LEN :])
        if not hmac.compare_digest(self._mac(nonce, ciphertext), stored_mac):
            raise CodingError("Metadata MAC verification failed")
        return self._xor_keystream(nonce, ciphertext)

    def _keystream(self, nonce: bytes, length: int) -> bytes:
        blocks = []
        counter = 0
        produced = 0
        while produced < length:
            block = _blake3(b"ks" + nonce + counter.to_bytes(8, "little"), self.key)
            blocks.append(block)
            produced += len(block)
            counter += 1
        return b"".join(blocks)[:length]

    def _xor_keystream(self, nonce: bytes, data: bytes) -> bytes:
        stream = self._keystream(nonce, len(data))
        return bytes(a ^ b for a, b in zip(data, stream))

    def _mac(self, nonce: bytes, ciphertext: bytes) -> bytes:
        return _blake3(b"mac" + nonce + ciphertext, self.key)


# ── JSON field helpers ────────────────────────────────────────────────────────


def _field(data: Mapping[str, Any], key: str, kind: type) -> Any:
    try:
        value = data[key]
    except (KeyError, TypeError) as exc:
        raise ValueError(f"missing field {key!r}") from exc
    if kind is int:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError(f"field {key!r} must be an unsigned integer, got {value!r}")
        return value
    if kind is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"field {key!r} must be a number, got {value!r}")
        return float(value)
    if kind is bytes:
        if not isinstance(value, list):
            raise ValueError(f"field {key!r} must be a byte array, got {value!r}")
        try:
            return bytes(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"field {key!r} is not a valid byte array") from exc
    if kind is list:
        if not isinstance(value, list):
            raise ValueError(f"field {key!r} must be an array, got {value!r}")
        return value
    if not isinstance(value, kind):
        raise ValueError(f"field {key!r} must be {kind.__name__}, got {value!r}")
    return value


# ── Fragment and chunk locations ──────────────────────────────────────────────


@dataclass
class FragmentLocation:
    """Where one coded fragment lives, with its coding vector."""

    fragment_id: str
    pouch_peer_id: str
    coding_vector: bytes = b""

    def _to_dict(self) -> dict[str, Any]:
        return {
            "fragment_id": self.fragment_id,
            "pouch_peer_id": self.pouch_peer_id,
            "coding_vector": list(self.coding_vector),
        }

    @classmethod
    def _from_dict(cls, data: Mapping[str, Any]) -> FragmentLocation:
        return cls(
            fragment_id=_field(data, "fragment_id", str),
            pouch_peer_id=_field(data, "pouch_peer_id", str),
            coding_vector=_field(data, "coding_vector", bytes),
        )


@dataclass
class ChunkManifest:
    """Manifest entry for a single chunk of a file."""

    chunk_id: str
    chunk_index: int
    original_size: int
    fragment_locations: list[FragmentLocation] = field(default_factory=list)

    def fragments_on_peer(self, peer_id: str) -> list[FragmentLocation]:
        """Fragment locations held by ``peer_id``."""
        return [loc for loc in self.fragment_locations if loc.pouch_peer_id == peer_id]

    def holder_peers(self) -> list[str]:
        """Peer ids holding each fragment, in fragment order."""
        return [loc.pouch_peer_id for loc in self.fragment_locations]

    def _to_dict(self) -> dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "chunk_index": self.chunk_index,
            "original_size": self.original_size,
            "fragment_locations": [loc._to_dict() for loc in self.fragment_locations],
        }

    @classmethod
    def _from_dict(cls, data: Mapping[str, Any]) -> ChunkManifest:
        return cls(
            chunk_id=_field(data, "chunk_id", str),
            chunk_index=_field(data, "chunk_index", int),
            original_size=_field(data, "original_size", int),
            fragment_locations=[
                FragmentLocation._from_dict(loc)
                for loc in _field(data, "fragment_locations", list)
            ],
        )


# ── File manifest ─────────────────────────────────────────────────────────────


@dataclass
class FileManifest:
    """Complete metadata descriptor for a file stored in a network."""

    file_id: str
    owner_fingerprint: str
    network_id: str
    encrypted_name: bytes
    size_bytes: int
    chunk_size: int
    num_chunks: int
    k: int
    n: int
    q: float
    ph: float
    pe: float
    chunks: list[ChunkManifest] = field(default_factory=list)
    created_at: int = 0

    def decrypt_name(self, key: NetworkMetaKey) -> str:
        """The original filename; raises :class:`CodingError` on a bad key or blob."""
        raw = key.decrypt(self.encrypted_name)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CodingError(f"Filename is not valid UTF-8: {exc}") from exc

    def set_name(self, filename: str, key: NetworkMetaKey) -> None:
        """Encrypt ``filename`` with ``key`` and store it."""
        self.encrypted_name = key.encrypt(filename.encode("utf-8"))

    def conservation_ratio(self) -> float:
        """Fraction of the ``n * num_chunks`` fragment locations still recorded."""
        total = self.n * self.num_chunks
        if total == 0:
            return 0.0
        present = sum(len(c.fragment_locations) for c in self.chunks)
        return present / total

    def is_recoverable(self) -> bool:
        """Whether every chunk has at least ``k`` recorded fragment locations."""
        return all(len(c.fragment_locations) >= self.k for c in self.chunks)

    def to_json_bytes(self) -> bytes:
        """Compact JSON encoding."""
        document = {
            "file_id": self.file_id,
            "owner_fingerprint": self.owner_fingerprint,
            "network_id": self.network_id,
            "encrypted_name": list(self.encrypted_name),
            "size_bytes": self.size_bytes,
            "chunk_size": self.chunk_size,
            "num_chunks": self.num_chunks,
            "k": self.k,
            "n": self.n,
            "q": float(self.q),
            "ph": float(self.ph),
            "pe": float(self.pe),
            "chunks": [c._to_dict() for c in self.chunks],
            "created_at": self.created_at,
        }
        return json.dumps(document, separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_json_bytes(cls, data: bytes) -> FileManifest:
        """Decode from :meth:`to_json_bytes` output; raises ``ValueError``."""
        try:
            doc = json.loads(data)
        except UnicodeDecodeError as exc:
            raise ValueError(f"manifest is not valid UTF-8: {exc}") from exc
        if not isinstance(doc, dict):
            raise ValueError("manifest must be a JSON object")
        return cls(
            file_id=_field(doc, "file_id", str),
            owner_fingerprint=_field(doc, "owner_fingerprint", str),
            network_id=_field(doc, "network_id", str),
            encrypted_name=_field(doc, "encrypted_name", bytes),
            size_bytes=_field(doc, "size_bytes", int),
            chunk_size=_field(doc, "chunk_size", int),
            num_chunks=_field(doc, "num_chunks", int),
            k=_field(doc, "k", int),
            n=_field(doc, "n", int),
            q=_field(doc, "q", float),
            ph=_field(doc, "ph", float),
            pe=_field(doc, "pe", float),
            chunks=[ChunkManifest._from_dict(c) for c in _field(doc, "chunks", list)],
            created_at=_field(doc, "created_at", int),
        )