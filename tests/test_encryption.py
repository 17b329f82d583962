import hashlib

import pytest

from pouchstore.encryption import NONCE_LEN, ChunkCipher, StorageError
from pouchstore.manifest import NetworkMetaKey


def cipher(label: str) -> ChunkCipher:
    key = hashlib.sha256(b"bp-test-cipher" + label.encode()).digest()
    return ChunkCipher.from_raw_key(key)


def test_encrypt_decrypt_roundtrip():
    c = cipher("amici")
    data = b"Hello, BillPouch! This is a test chunk payload."
    blob = c.encrypt(data)
    assert c.decrypt(blob) == data


def test_blob_overhead_is_28_bytes():
    c = cipher("amici")
    data = b"x" * 100
    assert len(c.encrypt(data)) == len(data) + 28


def test_different_nonces_per_call():
    c = cipher("amici")
    data = b"same plaintext"
    blob1 = c.encrypt(data)
    blob2 = c.encrypt(data)
    assert blob1 != blob2
    assert c.decrypt(blob1) == data
    assert c.decrypt(blob2) == data


def test_wrong_key_decryption_fails():
    c1 = cipher("amici")
    c2 = cipher("lavoro")
    blob = c1.encrypt(b"secret data")
    with pytest.raises(StorageError):
        c2.decrypt(blob)


def test_tampered_ciphertext_fails():
    c = cipher("amici")
    blob = bytearray(c.encrypt(b"original data"))
    blob[NONCE_LEN + 3] ^= 0xAA
    with pytest.raises(StorageError):
        c.decrypt(bytes(blob))


@pytest.mark.parametrize("blob", [bytes(20), b"", bytes(27)])
def test_too_short_blob_fails(blob):
    c = cipher("amici")
    with pytest.raises(StorageError, match="too short"):
        c.decrypt(blob)


def test_different_keys_are_isolated():
    c1 = cipher("amici")
    c2 = cipher("lavoro")
    plain = b"cross-key probe"
    blob1 = c1.encrypt(plain)
    blob2 = c2.encrypt(plain)
    with pytest.raises(StorageError):
        c2.decrypt(blob1)
    with pytest.raises(StorageError):
        c1.decrypt(blob2)


def test_for_user_produces_distinct_ceks():
    sm1 = bytes([0x11]) * 32
    sm2 = bytes([0x22]) * 32
    ph = hashlib.sha256(b"my chunk").digest()
    c1 = ChunkCipher.for_user(sm1, ph)
    c2 = ChunkCipher.for_user(sm2, ph)
    blob = c1.encrypt(b"secret")
    with pytest.raises(StorageError):
        c2.decrypt(blob)


def test_for_user_same_input_same_cek():
    sm = bytes([0xAA]) * 32
    ph = hashlib.sha256(b"chunk content").digest()
    c1 = ChunkCipher.for_user(sm, ph)
    c2 = ChunkCipher.for_user(sm, ph)
    blob = c1.encrypt(b"data")
    assert c2.decrypt(blob) == b"data"


def test_for_user_different_plaintext_hash_isolated():
    sm = bytes([0xAA]) * 32
    c1 = ChunkCipher.for_user(sm, hashlib.sha256(b"one").digest())
    c2 = ChunkCipher.for_user(sm, hashlib.sha256(b"two").digest())
    with pytest.raises(StorageError):
        c2.decrypt(c1.encrypt(b"data"))


def test_for_network_deterministic_and_isolated():
    blob = ChunkCipher.for_network("amici").encrypt(b"payload")
    assert ChunkCipher.for_network("amici").decrypt(blob) == b"payload"
    with pytest.raises(StorageError):
        ChunkCipher.for_network("lavoro").decrypt(blob)


def test_from_meta_key_matches_for_network():
    blob = ChunkCipher.for_network("amici").encrypt(b"payload")
    meta_key = NetworkMetaKey.for_network("amici")
    assert ChunkCipher.from_meta_key(meta_key).decrypt(blob) == b"payload"


def test_chunk_key_differs_from_raw_meta_key():
    meta_key = NetworkMetaKey.for_network("amici")
    blob = ChunkCipher.from_meta_key(meta_key).encrypt(b"payload")
    with pytest.raises(StorageError):
        ChunkCipher.from_raw_key(meta_key.key).decrypt(blob)


@pytest.mark.parametrize("key", [b"", bytes(16), bytes(33)])
def test_raw_key_wrong_length_rejected(key):
    with pytest.raises(ValueError):
        ChunkCipher.from_raw_key(key)


def test_for_user_wrong_length_rejected():
    with pytest.raises(ValueError):
        ChunkCipher.for_user(bytes(31), bytes(32))
    with pytest.raises(ValueError):
        ChunkCipher.for_user(bytes(32), bytes(8))


def test_empty_plaintext_roundtrip():
    c = cipher("amici")
    blob = c.encrypt(b"")
    assert len(blob) == 28
    assert c.decrypt(blob) == b""