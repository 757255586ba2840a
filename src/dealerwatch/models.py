from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# clefs JSON des compteurs selon la liste
ACTIVE = "active_users"
EXPIRED = "expired_users"

COUNT_KEYS = {ACTIVE: "activeUsers", EXPIRED: "expiredUsers"}


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ValueError(f"{name} must be an integer, got {value!r}")


def _as_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise ValueError(f"missing or invalid field {key!r}")
    return value


@dataclass(frozen=True)
class DealerRecord:
    """Une ligne du tableau : compteurs d'utilisateurs d'un dealer pour un service/zone."""

    dealer: str
    service: str
    zone: str
    active_users: int = 0
    expired_users: int = 0

    @property
    def key(self) -> tuple[str, str, str]:
        """Clef d'identité (dealer, service, zone)."""
        return (self.dealer, self.service, self.zone)

    def count(self, field_name: str) -> int:
        if field_name not in COUNT_KEYS:
            raise ValueError(f"unknown count field {field_name!r}")
        return getattr(self, field_name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dealer": self.dealer,
            "service": self.service,
            "zone": self.zone,
            "activeUsers": self.active_users,
            "expiredUsers": self.expired_users,
        }

    @classmethod
    def from_dict(cls, data: Any) -> DealerRecord:
        if not isinstance(data, dict):
            raise ValueError(f"dealer record must be a JSON object, got {type(data).__name__}")
        return cls(
            dealer=_as_str(data, "dealer"),
            service=_as_str(data, "service"),
            zone=_as_str(data, "zone"),
            active_users=_as_int(data.get("activeUsers", 0), "activeUsers"),
            expired_users=_as_int(data.get("expiredUsers", 0), "expiredUsers"),
        )


def _records(data: dict[str, Any], key: str) -> tuple[DealerRecord, ...]:
    items = data.get(key)
    if not isinstance(items, list):
        raise ValueError(f"{key!r} must be a list")
    return tuple(DealerRecord.from_dict(item) for item in items)


@dataclass(frozen=True)
class Snapshot:
    filename: str
    timestamp: str
    date: str
    month_year: str
    active_records: tuple[DealerRecord, ...] = field(default_factory=tuple)
    expired_records: tuple[DealerRecord, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "timestamp": self.timestamp,
            "date": self.date,
            "monthYear": self.month_year,
            "activeUsers": [r.to_dict() for r in self.active_records],
            "expiredUsers": [r.to_dict() for r in self.expired_records],
        }

    @classmethod
    def from_dict(cls, data: Any) -> Snapshot:
        """
        Valide un payload JSON de snapshot.

        Lève ValueError si la structure ne correspond pas (clefs manquantes,
        compteurs non entiers, listes absentes).
        """
        if not isinstance(data, dict):
            raise ValueError("snapshot payload is not a JSON object")
        return cls(
            filename=_as_str(data, "filename"),
            timestamp=_as_str(data, "timestamp"),
            date=_as_str(data, "date"),
            month_year=_as_str(data, "monthYear"),
            active_records=_records(data, "activeUsers"),
            expired_records=_records(data, "expiredUsers"),
        )


@dataclass(frozen=True)
class SnapshotMetadata:
    """Entrée d'index : permet de lister sans désérialiser les payloads."""

    filename: str
    timestamp: str
    date: str
    month_year: str
    size: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "timestamp": self.timestamp,
            "date": self.date,
            "monthYear": self.month_year,
            "size": self.size,
        }

    @classmethod
    def from_dict(cls, data: Any) -> SnapshotMetadata:
        if not isinstance(data, dict):
            raise ValueError("metadata entry is not a JSON object")
        return cls(
            filename=_as_str(data, "filename"),
            timestamp=_as_str(data, "timestamp"),
            date=_as_str(data, "date"),
            month_year=_as_str(data, "monthYear"),
            size=_as_int(data.get("size", 0), "size"),
        )
