"""On-disk metadata for a storage bid (``meta.json``)."""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any


def _now() -> int:
    return int(time.time())


def _uint(data: dict[str, Any], key: str) -> int:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"field {key!r} must be an unsigned integer, got {value!r}")
    return value


@dataclass
class PouchMeta:
    """Quota and usage of a storage bid; new records start with nothing used."""

    network_id: str
    service_id: str
    storage_bytes_bid: int
    storage_bytes_used: int = 0
    joined_at: int = field(default_factory=_now)

    def available_bytes(self) -> int:
        """Bytes still available for new fragments (never negative)."""
        return max(0, self.storage_bytes_bid - self.storage_bytes_used)

    def has_capacity(self, nbytes: int) -> bool:
        """Whether ``nbytes`` more bytes fit in the quota."""
        return self.available_bytes() >= nbytes

    @classmethod
    def load(cls, path: str | Path) -> PouchMeta:
        """Read a ``meta.json`` file; raises ``OSError`` or ``ValueError``."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        try:
            network_id = data["network_id"]
            service_id = data["service_id"]
            if not isinstance(network_id, str) or not isinstance(service_id, str):
                raise ValueError("network_id and service_id must be strings")
            return cls(
                network_id=network_id,
                service_id=service_id,
                storage_bytes_bid=_uint(data, "storage_bytes_bid"),
                storage_bytes_used=_uint(data, "storage_bytes_used"),
                joined_at=_uint(data, "joined_at"),
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"invalid meta file {path}: {exc}") from exc

    def save(self, path: str | Path) -> None:
        """Write as pretty JSON, creating or overwriting the file."""
        Path(path).write_text(json.dumps(asdict(self), indent=2), encoding="utf-8")