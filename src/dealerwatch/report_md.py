from __future__ import annotations

from collections.abc import Sequence

from .alerts import AlertReport
from .diffs import Comparison, RecordDiff
from .models import SnapshotMetadata


def _fmt_signed(n: int) -> str:
    return f"{n:+d}"


def _diff_lines(label: str, diff: RecordDiff) -> list[str]:
    lines: list[str] = [f"## {label}", ""]
    counts = diff.counts()
    lines.append(
        f"_hausse_ **{counts['increased']}** · _baisse_ **{counts['decreased']}** · "
        f"_nouveaux_ **{counts['new']}** · _disparus_ **{counts['removed']}** · "
        f"_inchangés_ **{counts['unchanged']}**"
    )
    lines.append("")

    changed = diff.increased + diff.decreased
    if changed:
        lines.append("| Dealer | Service | Zone | Avant | Après | Écart |")
        lines.append("|--------|---------|------|-------|-------|-------|")
        for c in changed:
            rec = c.record
            lines.append(
                f"| {rec.dealer} | {rec.service} | {rec.zone} | {c.previous_count} | "
                f"{rec.count(diff.count_field)} | {_fmt_signed(c.difference)} |"
            )
        lines.append("")

    if diff.new:
        lines.append("**Nouveaux dealers :**")
        for rec in diff.new:
            lines.append(f"- `{rec.dealer}` ({rec.service}, zone {rec.zone}) = {rec.count(diff.count_field)}")
        lines.append("")

    if diff.removed:
        lines.append("**Dealers disparus :**")
        for rec in diff.removed:
            lines.append(
                f"- `{rec.dealer}` ({rec.service}, zone {rec.zone}), "
                f"anciennement {rec.count(diff.count_field)}"
            )
        lines.append("")

    if not diff.has_changes:
        lines.append("_Aucun changement détecté._")
        lines.append("")
    return lines


def render_comparison_md(comparison: Comparison, title: str = "Comparaison dealerwatch") -> str:
    meta = comparison.meta
    lines: list[str] = [f"# {title}", ""]
    lines.append(f"_De_ **{meta.get('from', '?')}** _à_ **{meta.get('to', '?')}**")
    lines.append("")
    lines.extend(_diff_lines("Active Users", comparison.active_users))
    lines.extend(_diff_lines("Expired Users", comparison.expired_users))
    return "\n".join(lines)


def render_history_md(rows: Sequence[SnapshotMetadata]) -> str:
    lines = [
        "# Historique des snapshots",
        "",
        "| fichier | timestamp | date | mois | taille |",
        "|---------|-----------|------|------|--------|",
    ]
    for m in rows:
        lines.append(f"| {m.filename} | {m.timestamp} | {m.date} | {m.month_year} | {m.size} |")
    return "\n".join(lines)


def render_alerts_md(report: AlertReport) -> str:
    lines: list[str] = ["# Alertes dealerwatch", ""]
    if report.first_day_date:
        lines.append(f"Comparé au **{report.first_day_date}** (1er du mois)")
    else:
        lines.append("_Pas de snapshot du 1er du mois._")
    if report.last_month_date:
        lines.append(f"Mois précédent : **{report.last_month_date}**")
    lines.append("")

    if not report.alerts:
        lines.append("_Aucune alerte. Tout est normal._")
        return "\n".join(lines)

    lines.append("| Sévérité | Règle | Détail |")
    lines.append("|----------|-------|--------|")
    for a in report.alerts:
        lines.append(f"| {a.severity} | {a.rule} | {a.text} |")
    return "\n".join(lines)
