# pouchstore

Building blocks for the local side of a peer-to-peer "social storage"
network. Users lend disk space (a *Pouch*) to a named network. Other users
store encrypted, erasure-coded fragments of their files there.

The package has five modules:

- `pouchstore.agreement` holds the storage marketplace.
  `StorageOffer`, `StorageAgreement`, `AgreementAcceptance` and
  `AgreementStatus` describe offers and the agreements made from them.
  `AgreementStore` keeps both in memory and persists them as JSON.
- `pouchstore.meta` holds `PouchMeta`. It records the bytes bid and the
  bytes used for one Pouch, and is stored as JSON (`meta.json`).
- `pouchstore.manifest` covers file manifests and metadata encryption.
  `FileManifest`, `ChunkManifest` and `FragmentLocation` describe how a file
  was chunked and coded, and where each fragment lives. `NetworkMetaKey` is a
  32-byte network secret. It encrypts file names with a BLAKE3 keystream and
  checks them with a keyed BLAKE3 MAC. The errors are `CodingError` and
  `ConfigError`, both subclasses of `ValueError`.
- `pouchstore.fragment` holds `FragmentIndex` and `FragmentMeta`. They index
  the fragments a Pouch holds, grouped by chunk id.
- `pouchstore.encryption` holds `ChunkCipher`, which encrypts chunk data with
  ChaCha20-Poly1305, and the error it raises, `StorageError`.

## Installation

```
pip install pouchstore
```

To run the test suite:

```
pip install "pouchstore[test]"
pytest
```

## Usage

### Offers and agreements

```python
from pathlib import Path
from pouchstore.agreement import AgreementStore, StorageOffer

print(StorageOffer.topic_name("amici"))   # billpouch/v1/amici/offers

store = AgreementStore.load(Path("agreements.json"))  # empty if missing or corrupt
store.upsert_offer(StorageOffer(
    id="o1", offerer_fingerprint="abc12345", offerer_alias="alice",
    network_id="amici", bytes_offered=1_073_741_824, duration_secs=86_400,
    price_tokens=0, announced_at=1_710_000_000,
))
for offer in store.offers_for_network("amici"):
    print(offer.offerer_alias, offer.bytes_offered)

store.activate("some-agreement-id")   # unknown ids are ignored
store.cancel("some-agreement-id")     # sets CANCELLED and stamps completed_at
store.save(Path("agreements.json"))
```

`upsert_offer` replaces an offer that has the same id. `add_agreement`
ignores an agreement whose id is already recorded. `agreements_for_network`
and `offers_for_network` return lists filtered by network.

Every record type has a `to_dict()` method and a `from_dict()` method for its
JSON form. `from_dict` raises `KeyError` or `ValueError` on bad input. An
`AgreementStatus` is serialised as `"pending"`, `"active"`, `"completed"` or
`"cancelled"`. `AgreementAcceptance.kind` defaults to `"acceptance"`.

### Encrypting file names with the network key

```python
from pathlib import Path
from pouchstore.manifest import CodingError, NetworkMetaKey

keys_path = Path("network_keys.json")
key = NetworkMetaKey.load_or_create(keys_path, "amici")

blob = key.encrypt(b"holiday_photos.tar")   # nonce(16) | mac(32) | ciphertext
assert key.decrypt(blob) == b"holiday_photos.tar"

try:
    NetworkMetaKey.generate().decrypt(blob)
except CodingError:
    print("wrong key or tampered data")
```

The keys file is a JSON object that maps each network id to a hex-encoded
key. `NetworkMetaKey.save(keys_path, network_id)` creates the parent
directory if needed and replaces any existing entry for that network.
`NetworkMetaKey.load(keys_path, network_id)` returns `None` when the file or
the entry is missing. It raises `ConfigError` when an entry is not 32 bytes of
valid hex, or when the file is not a map of strings to strings.

`NetworkMetaKey.for_network(network_id)` derives a key from the network name
alone. Anyone who knows the name can compute it, so it is meant only for
tests.

### File manifests

```python
from pouchstore.manifest import (
    ChunkManifest, FileManifest, FragmentLocation, NetworkMetaKey,
)

key = NetworkMetaKey.generate()
manifest = FileManifest(
    file_id="file-1", owner_fingerprint="a3f19c2b", network_id="amici",
    encrypted_name=b"", size_bytes=512, chunk_size=1_048_576, num_chunks=1,
    k=1, n=2, q=1.0, ph=0.999, pe=0.999,
    chunks=[ChunkManifest(
        chunk_id="aaa", chunk_index=0, original_size=512,
        fragment_locations=[FragmentLocation("f1", "p1", bytes([1]))],
    )],
)
manifest.set_name("document.pdf", key)
print(manifest.decrypt_name(key))          # document.pdf
print(manifest.conservation_ratio())       # 0.5
print(manifest.is_recoverable())           # True

copy = FileManifest.from_json_bytes(manifest.to_json_bytes())
```

`conservation_ratio()` is the share of the `n * num_chunks` fragment slots
that have a recorded location, and `0.0` when that product is zero.
`is_recoverable()` is true when every chunk has at least `k` locations.
`ChunkManifest.fragments_on_peer(peer_id)` and
`ChunkManifest.holder_peers()` support routing by peer. In the JSON form,
byte fields such as `encrypted_name` and `coding_vector` are arrays of
integers. `from_json_bytes` raises `ValueError` on malformed input.

### Encrypting chunks

```python
from pouchstore.encryption import ChunkCipher, StorageError

secret_material = bytes(32)        # identity secret material, 32 bytes
plaintext_hash = bytes(32)         # 32-byte hash of the plaintext chunk
cipher = ChunkCipher.for_user(secret_material, plaintext_hash)

blob = cipher.encrypt(b"chunk payload")   # nonce(12) | ciphertext | tag(16)
assert cipher.decrypt(blob) == b"chunk payload"
```

`for_user` derives the content key as the keyed BLAKE3 hash of
`"billpouch/cek/v1" || plaintext_hash` under the secret material.
`ChunkCipher.from_raw_key(key)` takes a 32-byte key directly.
`ChunkCipher.from_meta_key(meta_key)` derives a key from a `NetworkMetaKey`.
`ChunkCipher.for_network(network_id)` uses the test-only name-derived key.
Every call to `encrypt` uses a fresh random nonce. `decrypt` raises
`StorageError` when the blob is shorter than 28 bytes, the key is wrong or
the data has been changed.

### Tracking stored fragments

```python
from pouchstore.fragment import FragmentIndex, FragmentMeta

index = FragmentIndex()
index.insert(FragmentMeta(fragment_id="frag-a", chunk_id="chunk1", k=4, size_bytes=1024))
index.insert(FragmentMeta(fragment_id="frag-b", chunk_id="chunk1", k=4, size_bytes=1024))

print(index.fragment_count(), index.total_bytes())    # 2 2048
removed = index.remove("chunk1", "frag-a")            # the record, or None
print(index.contains_chunk("chunk1"))                 # True
print(list(index.chunk_ids()))                        # ['chunk1']
```

When the last fragment of a chunk is removed, the chunk id is dropped from
the index.

### Pouch quota

```python
from pouchstore.meta import PouchMeta

meta = PouchMeta(network_id="amici", service_id="svc-1", storage_bytes_bid=1000)
meta.storage_bytes_used = 400
print(meta.available_bytes())     # 600
print(meta.has_capacity(601))     # False
meta.save("meta.json")
loaded = PouchMeta.load("meta.json")
```

A new `PouchMeta` starts with `storage_bytes_used = 0` and `joined_at` set to
the current Unix time. `load` raises `OSError` or `ValueError`.

## What this package does not do

This package keeps records and encrypts data. It does not:

- write fragments to disk or manage a Pouch's directory tree;
- erasure-code chunks or recode fragments;
- take part in a network, publish on gossip topics or fetch fragments from
  peers;
- manage user identities.

`StorageOffer.topic_name` only builds the topic name. `FragmentIndex` only
indexes the fragment records that it is given.