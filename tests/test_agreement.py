import json

import pytest

from pouchstore.agreement import (
    AgreementAcceptance,
    AgreementStatus,
    AgreementStore,
    StorageAgreement,
    StorageOffer,
)


def sample_offer(offer_id, network_id):
    return StorageOffer(
        id=offer_id,
        offerer_fingerprint="abc12345",
        offerer_alias="alice",
        network_id=network_id,
        bytes_offered=1_073_741_824,
        duration_secs=86_400,
        price_tokens=0,
        announced_at=1_710_000_000,
    )


def sample_agreement(agreement_id, offer_id, network_id):
    return StorageAgreement(
        id=agreement_id,
        offer_id=offer_id,
        offerer_fingerprint="abc12345",
        requester_fingerprint="def67890",
        network_id=network_id,
        bytes_agreed=1_073_741_824,
        duration_secs=86_400,
        price_tokens=0,
        status=AgreementStatus.PENDING,
        created_at=1_710_000_100,
        completed_at=None,
    )


def test_offer_topic_name():
    assert StorageOffer.topic_name("amici") == "billpouch/v1/amici/offers"


def test_upsert_offer_dedup():
    store = AgreementStore()
    store.upsert_offer(sample_offer("o1", "public"))
    store.upsert_offer(sample_offer("o1", "public"))
    assert len(store.received_offers) == 1


def test_upsert_offer_replaces_existing():
    store = AgreementStore()
    store.upsert_offer(sample_offer("o1", "public"))
    updated = sample_offer("o1", "public")
    updated.price_tokens = 42
    store.upsert_offer(updated)
    assert store.received_offers[0].price_tokens == 42


def test_add_agreement_dedup():
    store = AgreementStore()
    store.add_agreement(sample_agreement("a1", "o1", "public"))
    store.add_agreement(sample_agreement("a1", "o1", "public"))
    assert len(store.agreements) == 1


def test_filter_by_network():
    store = AgreementStore()
    store.upsert_offer(sample_offer("o1", "amici"))
    store.upsert_offer(sample_offer("o2", "lavoro"))
    assert len(store.offers_for_network("amici")) == 1
    assert len(store.offers_for_network("lavoro")) == 1
    assert len(store.offers_for_network("public")) == 0


def test_agreements_for_network():
    store = AgreementStore()
    store.add_agreement(sample_agreement("a1", "o1", "amici"))
    store.add_agreement(sample_agreement("a2", "o2", "lavoro"))
    assert [a.id for a in store.agreements_for_network("amici")] == ["a1"]
    assert store.agreements_for_network("public") == []


def test_activate_and_cancel():
    store = AgreementStore()
    store.add_agreement(sample_agreement("a1", "o1", "public"))
    store.activate("a1")
    assert store.agreements[0].status is AgreementStatus.ACTIVE
    store.cancel("a1")
    assert store.agreements[0].status is AgreementStatus.CANCELLED
    assert store.agreements[0].completed_at is not None
    assert store.agreements[0].completed_at > 1_700_000_000


def test_activate_unknown_id_is_ignored():
    store = AgreementStore()
    store.add_agreement(sample_agreement("a1", "o1", "public"))
    store.activate("nope")
    store.cancel("nope")
    assert store.agreements[0].status is AgreementStatus.PENDING


def test_roundtrip_json(tmp_path):
    store = AgreementStore()
    store.upsert_offer(sample_offer("o1", "amici"))
    store.add_agreement(sample_agreement("a1", "o1", "amici"))
    path = tmp_path / "agreements.json"
    store.save(path)

    loaded = AgreementStore.load(path)
    assert len(loaded.agreements) == 1
    assert len(loaded.received_offers) == 1
    assert loaded == store


def test_saved_status_is_snake_case(tmp_path):
    store = AgreementStore()
    store.add_agreement(sample_agreement("a1", "o1", "amici"))
    path = tmp_path / "agreements.json"
    store.save(path)
    data = json.loads(path.read_text())
    assert data["agreements"][0]["status"] == "pending"
    assert data["agreements"][0]["completed_at"] is None


def test_load_missing_file_gives_empty_store(tmp_path):
    loaded = AgreementStore.load(tmp_path / "absent.json")
    assert loaded.agreements == []
    assert loaded.received_offers == []


@pytest.mark.parametrize(
    "content",
    ["{{not json", '{"agreements": []}', '{"agreements": [{"id": 1}], "received_offers": []}'],
)
def test_load_corrupt_file_gives_empty_store(tmp_path, content):
    path = tmp_path / "agreements.json"
    path.write_text(content)
    loaded = AgreementStore.load(path)
    assert loaded == AgreementStore()


def test_offer_from_dict_rejects_negative():
    data = sample_offer("o1", "amici").to_dict()
    data["bytes_offered"] = -1
    with pytest.raises(ValueError):
        StorageOffer.from_dict(data)


def test_agreement_missing_completed_at_is_none():
    data = sample_agreement("a1", "o1", "amici").to_dict()
    del data["completed_at"]
    assert StorageAgreement.from_dict(data).completed_at is None


def test_acceptance_roundtrip():
    acc = AgreementAcceptance(
        agreement_id="a1",
        offer_id="o1",
        requester_fingerprint="def67890",
        network_id="amici",
        accepted_at=1_710_000_200,
    )
    data = acc.to_dict()
    assert data["kind"] == "acceptance"
    assert AgreementAcceptance.from_dict(data) == acc