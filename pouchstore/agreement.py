"""Storage marketplace: offers and agreements between users.

A storage owner broadcasts a :class:`StorageOffer` on the network's offers
topic. Peers keep received offers in an :class:`AgreementStore`. A requester
accepting an offer creates a :class:`StorageAgreement` and broadcasts an
:class:`AgreementAcceptance` on the same topic.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

_U64_MAX = 2**64 - 1


def _u64(data: Mapping[str, Any], key: str) -> int:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"field {key!r} must be an unsigned integer, got {value!r}")
    if not 0 <= value <= _U64_MAX:
        raise ValueError(f"field {key!r} out of range: {value}")
    return value


def _str(data: Mapping[str, Any], key: str) -> str:
    value = data[key]
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string, got {value!r}")
    return value


def _now() -> int:
    return int(time.time())


@dataclass
class StorageOffer:
    """A storage offer broadcast by a storage-providing node."""

    id: str
    offerer_fingerprint: str
    offerer_alias: str
    network_id: str
    bytes_offered: int
    duration_secs: int
    price_tokens: int
    announced_at: int

    @staticmethod
    def topic_name(network_id: str) -> str:
        """Gossip topic for storage offers in ``network_id``."""
        return f"billpouch/v1/{network_id}/offers"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "offerer_fingerprint": self.offerer_fingerprint,
            "offerer_alias": self.offerer_alias,
            "network_id": self.network_id,
            "bytes_offered": self.bytes_offered,
            "duration_secs": self.duration_secs,
            "price_tokens": self.price_tokens,
            "announced_at": self.announced_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StorageOffer:
        """Build an offer from its JSON form; raises ``KeyError``/``ValueError``."""
        return cls(
            id=_str(data, "id"),
            offerer_fingerprint=_str(data, "offerer_fingerprint"),
            offerer_alias=_str(data, "offerer_alias"),
            network_id=_str(data, "network_id"),
            bytes_offered=_u64(data, "bytes_offered"),
            duration_secs=_u64(data, "duration_secs"),
            price_tokens=_u64(data, "price_tokens"),
            announced_at=_u64(data, "announced_at"),
        )


class AgreementStatus(str, Enum):
    """Lifecycle status of a storage agreement."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class StorageAgreement:
    """A bilateral storage agreement between an offerer and a requester."""

    id: str
    offer_id: str
    offerer_fingerprint: str
    requester_fingerprint: str
    network_id: str
    bytes_agreed: int
    duration_secs: int
    price_tokens: int
    status: AgreementStatus
    created_at: int
    completed_at: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "offer_id": self.offer_id,
            "offerer_fingerprint": self.offerer_fingerprint,
            "requester_fingerprint": self.requester_fingerprint,
            "network_id": self.network_id,
            "bytes_agreed": self.bytes_agreed,
            "duration_secs": self.duration_secs,
            "price_tokens": self.price_tokens,
            "status": self.status.value,
            "created_at": self.created_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StorageAgreement:
        """Build an agreement from its JSON form; raises ``KeyError``/``ValueError``."""
        completed_at = data.get("completed_at")
        return cls(
            id=_str(data, "id"),
            offer_id=_str(data, "offer_id"),
            offerer_fingerprint=_str(data, "offerer_fingerprint"),
            requester_fingerprint=_str(data, "requester_fingerprint"),
            network_id=_str(data, "network_id"),
            bytes_agreed=_u64(data, "bytes_agreed"),
            duration_secs=_u64(data, "duration_secs"),
            price_tokens=_u64(data, "price_tokens"),
            status=AgreementStatus(data["status"]),
            created_at=_u64(data, "created_at"),
            completed_at=None if completed_at is None else _u64(data, "completed_at"),
        )


@dataclass
class AgreementAcceptance:
    """Broadcast by a requester to accept a :class:`StorageOffer`."""

    agreement_id: str
    offer_id: str
    requester_fingerprint: str
    network_id: str
    accepted_at: int
    kind: str = "acceptance"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "agreement_id": self.agreement_id,
            "offer_id": self.offer_id,
            "requester_fingerprint": self.requester_fingerprint,
            "network_id": self.network_id,
            "accepted_at": self.accepted_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AgreementAcceptance:
        """Build an acceptance from its JSON form; raises ``KeyError``/``ValueError``."""
        return cls(
            kind=_str(data, "kind"),
            agreement_id=_str(data, "agreement_id"),
            offer_id=_str(data, "offer_id"),
            requester_fingerprint=_str(data, "requester_fingerprint"),
            network_id=_str(data, "network_id"),
            accepted_at=_u64(data, "accepted_at"),
        )


@dataclass
class AgreementStore:
    """Local agreements and offers received from remote peers."""

    agreements: list[StorageAgreement] = field(default_factory=list)
    received_offers: list[StorageOffer] = field(default_factory=list)

    @classmethod
    def load(cls, path: str | Path) -> AgreementStore:
        """Load from disk; an empty store if the file is missing or corrupt."""
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
            return cls(
                agreements=[StorageAgreement.from_dict(a) for a in data["agreements"]],
                received_offers=[StorageOffer.from_dict(o) for o in data["received_offers"]],
            )
        except (OSError, ValueError, KeyError, TypeError):
            return cls()

    def save(self, path: str | Path) -> None:
        """Persist to disk as pretty JSON."""
        document = {
            "agreements": [a.to_dict() for a in self.agreements],
            "received_offers": [o.to_dict() for o in self.received_offers],
        }
        Path(path).write_text(json.dumps(document, indent=2), encoding="utf-8")

    def add_agreement(self, agreement: StorageAgreement) -> None:
        """Record a new agreement unless one with the same id exists."""
        if not any(a.id == agreement.id for a in self.agreements):
            self.agreements.append(agreement)

    def upsert_offer(self, offer: StorageOffer) -> None:
        """Insert a received offer, replacing any with the same id."""
        for pos, existing in enumerate(self.received_offers):
            if existing.id == offer.id:
                self.received_offers[pos] = offer
                return
        self.received_offers.append(offer)

    def agreements_for_network(self, network_id: str) -> list[StorageAgreement]:
        return [a for a in self.agreements if a.network_id == network_id]

    def offers_for_network(self, network_id: str) -> list[StorageOffer]:
        return [o for o in self.received_offers if o.network_id == network_id]

    def _find(self, agreement_id: str) -> StorageAgreement | None:
        return next((a for a in self.agreements if a.id == agreement_id), None)

    def activate(self, agreement_id: str) -> None:
        """Mark an agreement as active; unknown ids are ignored."""
        agreement = self._find(agreement_id)
        if agreement is not None:
            agreement.status = AgreementStatus.ACTIVE

    def cancel(self, agreement_id: str) -> None:
        """Mark an agreement as cancelled and stamp its completion time."""
        now = _now()
        agreement = self._find(agreement_id)
        if agreement is not None:
            agreement.status = AgreementStatus.CANCELLED
            agreement.completed_at = now