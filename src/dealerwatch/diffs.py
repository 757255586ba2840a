from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from .models import ACTIVE, EXPIRED, COUNT_KEYS, DealerRecord, Snapshot

logger = logging.getLogger("dealerwatch.diffs")

CATEGORIES = ("increased", "decreased", "unchanged", "new", "removed")


@dataclass(frozen=True)
class ChangedRecord:
    """Enregistrement courant + compteur précédent et écart (courant - précédent)."""

    record: DealerRecord
    previous_count: int
    difference: int

    def to_dict(self) -> dict[str, Any]:
        out = self.record.to_dict()
        out["previousCount"] = self.previous_count
        out["difference"] = self.difference
        return out


@dataclass
class RecordDiff:
    count_field: str
    increased: list[ChangedRecord] = field(default_factory=list)
    decreased: list[ChangedRecord] = field(default_factory=list)
    unchanged: list[ChangedRecord] = field(default_factory=list)
    new: list[DealerRecord] = field(default_factory=list)
    removed: list[DealerRecord] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.increased or self.decreased or self.new or self.removed)

    def counts(self) -> dict[str, int]:
        return {name: len(getattr(self, name)) for name in CATEGORIES}

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        return {name: [item.to_dict() for item in getattr(self, name)] for name in CATEGORIES}


@dataclass
class Comparison:
    meta: dict[str, str]
    active_users: RecordDiff
    expired_users: RecordDiff

    @property
    def has_changes(self) -> bool:
        return self.active_users.has_changes or self.expired_users.has_changes

    def to_dict(self) -> dict[str, Any]:
        return {
            "meta": dict(self.meta),
            COUNT_KEYS[ACTIVE]: self.active_users.to_dict(),
            COUNT_KEYS[EXPIRED]: self.expired_users.to_dict(),
        }


def _index_by_key(records: Iterable[DealerRecord]) -> dict[tuple[str, str, str], DealerRecord]:
    """
    Construit {clef -> record}. En cas de doublon on garde la première
    occurrence (une clef doit être unique dans une liste).
    """
    out: dict[tuple[str, str, str], DealerRecord] = {}
    for rec in records:
        if rec.key in out:
            logger.warning("Duplicate dealer key %s, keeping first occurrence", "|".join(rec.key))
            continue
        out[rec.key] = rec
    return out


def compare_records(
    current: Sequence[DealerRecord],
    previous: Sequence[DealerRecord],
    count_field: str,
) -> RecordDiff:
    """
    Compare deux listes d'enregistrements sur `count_field`
    ("active_users" ou "expired_users").

    L'ordre dans chaque catégorie suit l'ordre des listes d'entrée.
    """
    if count_field not in COUNT_KEYS:
        raise ValueError(f"unknown count field {count_field!r}")

    diff = RecordDiff(count_field=count_field)
    previous_map = _index_by_key(previous)
    current_map = _index_by_key(current)

    for rec in current_map.values():
        before = previous_map.get(rec.key)
        if before is None:
            diff.new.append(rec)
            continue
        previous_count = before.count(count_field)
        difference = rec.count(count_field) - previous_count
        changed = ChangedRecord(rec, previous_count, difference)
        if difference > 0:
            diff.increased.append(changed)
        elif difference < 0:
            diff.decreased.append(changed)
        else:
            diff.unchanged.append(changed)

    for rec in previous_map.values():
        if rec.key not in current_map:
            diff.removed.append(rec)

    return diff


def compare_snapshots(current: Snapshot, previous: Snapshot) -> Comparison:
    """
    Calcule les différences entre deux snapshots, listes actives et expirées
    comparées indépendamment.
    """
    meta = {
        "from": previous.timestamp or "",
        "to": current.timestamp or "",
    }
    return Comparison(
        meta=meta,
        active_users=compare_records(current.active_records, previous.active_records, ACTIVE),
        expired_users=compare_records(current.expired_records, previous.expired_records, EXPIRED),
    )


def filter_diff(
    diff: RecordDiff,
    search: str | None = None,
    service: str | None = None,
    zone: str | None = None,
) -> RecordDiff:
    """
    Filtre un diff : recherche sur le nom du dealer (insensible à la casse),
    service (sous-chaîne) et zone (égalité exacte).
    """

    def keep(rec: DealerRecord) -> bool:
        if search and search.lower() not in rec.dealer.lower():
            return False
        if service and service.lower() not in rec.service.lower():
            return False
        if zone and rec.zone != zone:
            return False
        return True

    return RecordDiff(
        count_field=diff.count_field,
        increased=[c for c in diff.increased if keep(c.record)],
        decreased=[c for c in diff.decreased if keep(c.record)],
        unchanged=[c for c in diff.unchanged if keep(c.record)],
        new=[r for r in diff.new if keep(r)],
        removed=[r for r in diff.removed if keep(r)],
    )


# ---------------------------------------------------------------------------
# HTML EXPORT
# ---------------------------------------------------------------------------


def _html_escape(s: str) -> str:
    return (
        s.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&#39;")
    )


_REPORT_CSS = """
body { font-family: sans-serif; margin: 2rem; color: #1f2933; }
main { max-width: 960px; }
.meta { color: #52606d; }
table { border-collapse: collapse; width: 100%; }
th, td { border-bottom: 1px solid #cbd2d9; padding: 4px 8px; text-align: left; }
.up { color: #137333; }
.down { color: #b3261e; }
.muted { color: #7b8794; }
"""

_SECTION_TITLES = {
    "increased": "En hausse",
    "decreased": "En baisse",
    "new": "Nouveaux dealers",
    "removed": "Dealers disparus",
}


def _diff_section_html(label: str, diff: RecordDiff) -> list[str]:
    parts: list[str] = ["<section>", f"<h2>{_html_escape(label)}</h2>"]
    if not diff.has_changes:
        parts.append("<p class='muted'>Aucun changement détecté.</p>")
        parts.append("</section>")
        return parts

    parts.append("<table>")
    parts.append(
        "<tr><th>Type</th><th>Dealer</th><th>Service</th><th>Zone</th>"
        "<th>Avant</th><th>Après</th><th>Écart</th></tr>"
    )
    for category in ("increased", "decreased"):
        badge = "up" if category == "increased" else "down"
        for c in getattr(diff, category):
            rec = c.record
            parts.append(
                "<tr>"
                f"<td><span class='{badge}'>{_SECTION_TITLES[category]}</span></td>"
                f"<td>{_html_escape(rec.dealer)}</td>"
                f"<td>{_html_escape(rec.service)}</td>"
                f"<td>{_html_escape(rec.zone)}</td>"
                f"<td>{c.previous_count}</td>"
                f"<td>{rec.count(diff.count_field)}</td>"
                f"<td>{c.difference:+d}</td>"
                "</tr>"
            )
    for category in ("new", "removed"):
        badge = "up" if category == "new" else "down"
        for rec in getattr(diff, category):
            count = rec.count(diff.count_field)
            before, after = ("-", count) if category == "new" else (count, "-")
            parts.append(
                "<tr>"
                f"<td><span class='{badge}'>{_SECTION_TITLES[category]}</span></td>"
                f"<td>{_html_escape(rec.dealer)}</td>"
                f"<td>{_html_escape(rec.service)}</td>"
                f"<td>{_html_escape(rec.zone)}</td>"
                f"<td>{before}</td>"
                f"<td>{after}</td>"
                "<td></td>"
                "</tr>"
            )
    parts.append("</table>")
    parts.append("</section>")
    return parts


def comparison_to_html(comparison: Comparison, title: str = "dealerwatch comparison") -> str:
    """
    Génère un rapport HTML autonome (un seul fichier) à partir d'une comparaison.
    """
    meta = comparison.meta
    esc_title = _html_escape(title)
    html_parts: list[str] = [
        "<!DOCTYPE html>",
        "<html lang='fr'><head><meta charset='utf-8'>",
        f"<title>{esc_title}</title>",
        f"<style>{_REPORT_CSS}</style>",
        "</head><body><main>",
        f"<h1>{esc_title}</h1>",
        f"<p class='meta'>Du <strong>{_html_escape(meta.get('from', ''))}</strong> "
        f"au <strong>{_html_escape(meta.get('to', ''))}</strong></p>",
    ]
    html_parts.extend(_diff_section_html("Active Users", comparison.active_users))
    html_parts.extend(_diff_section_html("Expired Users", comparison.expired_users))
    html_parts.append("</main></body></html>")
    return "".join(html_parts)
