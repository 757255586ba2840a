from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .models import EXPIRED, DealerRecord, Snapshot


@dataclass
class ZoneSummary:
    zone: str
    service: str
    total_active: int = 0
    total_expired: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "zone": self.zone,
            "service": self.service,
            "totalActive": self.total_active,
            "totalExpired": self.total_expired,
        }


@dataclass(frozen=True)
class ZoneTrend:
    zone: str
    previous: int
    current: int
    difference: int
    trend: str  # "up" / "down" / "same"


def snapshot_totals(snapshot: Snapshot) -> dict[str, int]:
    dealers = {r.dealer for r in snapshot.active_records} | {r.dealer for r in snapshot.expired_records}
    return {
        "totalActive": sum(r.active_users for r in snapshot.active_records),
        "totalExpired": sum(r.expired_users for r in snapshot.expired_records),
        "dealerCount": len(dealers),
    }


def zone_summaries(
    active: Iterable[DealerRecord] = (),
    expired: Iterable[DealerRecord] = (),
) -> list[ZoneSummary]:
    """Agrège les compteurs par (zone, service), dans l'ordre d'apparition."""
    summaries: dict[tuple[str, str], ZoneSummary] = {}

    def _get(rec: DealerRecord) -> ZoneSummary:
        key = (rec.zone, rec.service)
        if key not in summaries:
            summaries[key] = ZoneSummary(zone=rec.zone, service=rec.service)
        return summaries[key]

    for rec in active:
        _get(rec).total_active += rec.active_users
    for rec in expired:
        _get(rec).total_expired += rec.expired_users
    return list(summaries.values())


def _zone_totals(records: Iterable[DealerRecord], service: str, count_field: str) -> dict[str, int]:
    totals: dict[str, int] = {}
    for rec in records:
        if service.lower() not in rec.service.lower():
            continue
        totals[rec.zone] = totals.get(rec.zone, 0) + rec.count(count_field)
    return totals


def compare_zone_totals(
    current: Iterable[DealerRecord],
    previous: Iterable[DealerRecord],
    service: str,
    count_field: str = EXPIRED,
) -> list[ZoneTrend]:
    """
    Compare les totaux par zone pour un service (ex: "tes", "mcsol").
    Une zone absente de `previous` compte pour 0.
    """
    cur = _zone_totals(current, service, count_field)
    prev = _zone_totals(previous, service, count_field)

    out: list[ZoneTrend] = []
    for zone, value in cur.items():
        before = prev.get(zone, 0)
        difference = value - before
        trend = "up" if difference > 0 else "down" if difference < 0 else "same"
        out.append(ZoneTrend(zone=zone, previous=before, current=value, difference=difference, trend=trend))
    return out
