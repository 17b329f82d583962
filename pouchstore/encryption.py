"""Per-chunk encryption at rest.

Each chunk is encrypted with ChaCha20-Poly1305 before it is coded and spread
across storage nodes, so nodes holding fragments never see plaintext. The
content key for a user's chunk is a keyed BLAKE3 hash of the user's secret
material over ``"billpouch/cek/v1" || BLAKE3(plaintext_chunk)``.

Blob format: ``nonce(12) || ciphertext || tag(16)``, 28 bytes of overhead.
"""

from __future__ import annotations

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

from pouchstore.manifest import KEY_LEN, NetworkMetaKey, _blake3

NONCE_LEN = 12
TAG_LEN = 16


class StorageError(Exception):
    """A chunk could not be encrypted or decrypted."""


def _key_bytes(value: bytes, what: str) -> bytes:
    if not isinstance(value, (bytes, bytearray)) or len(value) != KEY_LEN:
        raise ValueError(f"{what} must be exactly {KEY_LEN} bytes")
    return bytes(value)


class ChunkCipher:
    """ChaCha20-Poly1305 cipher for chunk data."""

    def __init__(self, key: bytes) -> None:
        self._cipher = ChaCha20Poly1305(_key_bytes(key, "chunk key"))

    @classmethod
    def for_user(cls, secret_material: bytes, plaintext_hash: bytes) -> ChunkCipher:
        """Cipher keyed with the content key for one user's chunk."""
        material_bytes = _key_bytes(secret_material, "user key material")
        digest = _key_bytes(plaintext_hash, "plaintext hash")
        return cls(_blake3(b"billpouch/cek/v1" + digest, material_bytes))

    @classmethod
    def from_raw_key(cls, key: bytes) -> ChunkCipher:
        """Cipher from a raw 32-byte key."""
        return cls(key)

    @classmethod
    def for_network(cls, network_id: str) -> ChunkCipher:
        """Cipher from the deterministic network key; insecure, for tests only."""
        return cls.from_meta_key(NetworkMetaKey.for_network(network_id))

    @classmethod
    def from_meta_key(cls, meta_key: NetworkMetaKey) -> ChunkCipher:
        """Cipher derived from a network metadata key."""
        return cls(_blake3(b"billpouch/chunk-enc/v1", meta_key.key))

    def encrypt(self, plaintext: bytes) -> bytes:
        """Encrypt with a fresh random nonce; returns ``nonce || ciphertext+tag``."""
        nonce = os.urandom(NONCE_LEN)
        return nonce + self._cipher.encrypt(nonce, bytes(plaintext), None)

    def decrypt(self, blob: bytes) -> bytes:
        """Decrypt a blob from :meth:`encrypt`; raises :class:`StorageError`."""
        if len(blob) < NONCE_LEN + TAG_LEN:
            raise StorageError("Encrypted chunk blob is too short (corrupted?)")
        nonce = bytes(blob[:NONCE_LEN])
        try:
            return self._cipher.decrypt(nonce, bytes(blob[NONCE_LEN:]), None)
        except InvalidTag as exc:
            raise StorageError(
                "Chunk decryption failed — wrong network key or corrupted data"
            ) from exc