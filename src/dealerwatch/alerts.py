# src/dealerwatch/alerts.py

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from .core import SnapshotStore
from .diffs import Comparison, compare_snapshots
from .models import DealerRecord, Snapshot
from .utils import iso_timestamp

logger = logging.getLogger("dealerwatch.alerts")

DEFAULT_ACTIVE_DROP_THRESHOLD = 10
DEFAULT_EXPIRED_HIGH_THRESHOLD = 30
EXPIRED_MEDIUM_THRESHOLD = 15


@dataclass
class Alert:
    rule: str
    severity: str        # "medium", "high"
    record: DealerRecord
    text: str            # message affiché à l'utilisateur
    previous_count: int | None = None
    difference: int | None = None

    def to_dict(self) -> dict[str, Any]:
        out = self.record.to_dict()
        out.update({"rule": self.rule, "severity": self.severity, "text": self.text})
        if self.difference is not None:
            out["previousCount"] = self.previous_count
            out["difference"] = self.difference
        return out


@dataclass
class AlertContext:
    active: Sequence[DealerRecord]
    expired: Sequence[DealerRecord]
    vs_first_day: Comparison | None = None
    active_drop_threshold: int = DEFAULT_ACTIVE_DROP_THRESHOLD
    expired_high_threshold: int = DEFAULT_EXPIRED_HIGH_THRESHOLD


@dataclass
class AlertRule:
    id: str
    build: Callable[[AlertContext], list[Alert]]


ALERT_RULES: list[AlertRule] = []


def _register_rule(id: str, build: Callable[[AlertContext], list[Alert]]) -> None:
    ALERT_RULES.append(AlertRule(id=id, build=build))


def expired_risk_level(expired_users: int, high: int = DEFAULT_EXPIRED_HIGH_THRESHOLD) -> str:
    if expired_users >= high:
        return "High"
    if expired_users >= EXPIRED_MEDIUM_THRESHOLD:
        return "Medium"
    return "Low"


def high_expired_dealers(
    records: Sequence[DealerRecord], threshold: int = DEFAULT_EXPIRED_HIGH_THRESHOLD
) -> list[DealerRecord]:
    return [r for r in records if r.expired_users >= threshold]


# =======================
# RULES
# =======================


def _active_drop(ctx: AlertContext) -> list[Alert]:
    if ctx.vs_first_day is None:
        return []
    out: list[Alert] = []
    for c in ctx.vs_first_day.active_users.decreased:
        severity = "high" if abs(c.difference) >= ctx.active_drop_threshold else "medium"
        out.append(
            Alert(
                rule="active_drop",
                severity=severity,
                record=c.record,
                text=(
                    f"{c.record.dealer} ({c.record.service}, zone {c.record.zone}) : "
                    f"{c.previous_count} -> {c.record.active_users} utilisateurs actifs"
                ),
                previous_count=c.previous_count,
                difference=c.difference,
            )
        )
    return out


def _expired_high(ctx: AlertContext) -> list[Alert]:
    return [
        Alert(
            rule="expired_high",
            severity="high",
            record=r,
            text=f"{r.dealer} ({r.service}, zone {r.zone}) : {r.expired_users} utilisateurs expirés",
        )
        for r in high_expired_dealers(ctx.expired, ctx.expired_high_threshold)
    ]


_register_rule("active_drop", _active_drop)
_register_rule("expired_high", _expired_high)


def evaluate_alerts(ctx: AlertContext) -> list[Alert]:
    """Applique toutes les règles dans l'ordre d'enregistrement."""
    alerts: list[Alert] = []
    for rule in ALERT_RULES:
        try:
            alerts.extend(rule.build(ctx))
        except Exception:
            # une règle ne doit jamais casser le rapport
            logger.exception("Alert rule %s failed", rule.id)
    return alerts


# =======================
# RAPPORT
# =======================


@dataclass
class AlertReport:
    current: Snapshot
    vs_first_day: Comparison | None = None
    vs_last_month: Comparison | None = None
    first_day_date: str | None = None
    last_month_date: str | None = None
    alerts: list[Alert] = field(default_factory=list)


def build_alert_report(
    store: SnapshotStore,
    active: Sequence[DealerRecord],
    expired: Sequence[DealerRecord],
    active_drop_threshold: int = DEFAULT_ACTIVE_DROP_THRESHOLD,
    expired_high_threshold: int = DEFAULT_EXPIRED_HIGH_THRESHOLD,
) -> AlertReport:
    """
    Compare les données courantes au snapshot du 1er du mois et au dernier
    snapshot du mois précédent (aujourd'hui - 30 jours), puis applique les règles.
    """
    now = store.now()
    timestamp = iso_timestamp(now)
    current = Snapshot(
        filename="",
        timestamp=timestamp,
        date=timestamp[:10],
        month_year=timestamp[:7],
        active_records=tuple(active),
        expired_records=tuple(expired),
    )

    first_day = store.get_first_of_month_snapshot()
    last_month = store.get_latest_for_month((now - timedelta(days=30)).strftime("%Y-%m"))

    report = AlertReport(
        current=current,
        vs_first_day=compare_snapshots(current, first_day) if first_day else None,
        vs_last_month=compare_snapshots(current, last_month) if last_month else None,
        first_day_date=first_day.date if first_day else None,
        last_month_date=last_month.date if last_month else None,
    )
    report.alerts = evaluate_alerts(
        AlertContext(
            active=current.active_records,
            expired=current.expired_records,
            vs_first_day=report.vs_first_day,
            active_drop_threshold=active_drop_threshold,
            expired_high_threshold=expired_high_threshold,
        )
    )
    return report
