# --- CLI / logging
import json
import logging
from dataclasses import replace

import click
import colorama

from .alerts import build_alert_report, expired_risk_level
from .config import load_settings
from .core import SnapshotStore
from .diffs import RecordDiff, compare_snapshots, comparison_to_html, filter_diff
from .exporter import export_snapshot
from .report_md import render_alerts_md, render_comparison_md, render_history_md
from .scheduler import AutoSnapshotScheduler
from .sources.sheets import CsvFileSource, SheetsSource, SourceError
from .storage import BACKENDS, make_storage
from .summary import compare_zone_totals, snapshot_totals, zone_summaries

colorama.just_fix_windows_console()


# --- Helpers pour le rendu CLI (couleurs / titres) ---


def title(text: str) -> str:
    """Titre de section en bleu clair et gras."""
    return click.style(text, fg="bright_blue", bold=True)


def ok(text: str) -> str:
    return click.style(text, fg="green")


def warn(text: str) -> str:
    return click.style(text, fg="yellow")


def bad(text: str) -> str:
    return click.style(text, fg="red")


def _write_text(path: str, text: str, label: str) -> None:
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
        click.echo(f"[+] {label} écrit dans {path}")
    except OSError as e:
        click.echo(bad(f"[!] Impossible d'écrire {path} : {e}"))


def _source(obj: dict, csv_path: str | None):
    if csv_path:
        return CsvFileSource(csv_path)
    if "source" in obj:
        return obj["source"]
    settings = obj["settings"]
    return SheetsSource(settings.sheet_url, timeout=settings.timeout)


def _fetch(obj: dict, csv_path: str | None):
    try:
        return _source(obj, csv_path).fetch_all()
    except SourceError as e:
        raise click.ClickException(str(e)) from e


def _echo_diff(label: str, diff: RecordDiff) -> None:
    click.echo(title(f"\n[{label}]"))
    if not diff.has_changes:
        click.echo("  Aucun changement détecté.")
        return
    for c in diff.increased:
        rec = c.record
        click.echo(ok(f"  ↑ {rec.dealer} ({rec.service}, {rec.zone}) {c.previous_count} -> "
                      f"{rec.count(diff.count_field)} ({c.difference:+d})"))
    for c in diff.decreased:
        rec = c.record
        click.echo(bad(f"  ↓ {rec.dealer} ({rec.service}, {rec.zone}) {c.previous_count} -> "
                       f"{rec.count(diff.count_field)} ({c.difference:+d})"))
    for rec in diff.new:
        click.echo(ok(f"  + {rec.dealer} ({rec.service}, {rec.zone}) = {rec.count(diff.count_field)}"))
    for rec in diff.removed:
        click.echo(warn(f"  - {rec.dealer} ({rec.service}, {rec.zone}) était {rec.count(diff.count_field)}"))


@click.version_option("0.1.0", prog_name="dealerwatch")
@click.group()
@click.option("--config", "config_path", default=None, help="Fichier YAML de configuration")
@click.option("--data-dir", default=None, help="Dossier de stockage (défaut: ./data)")
@click.option("--backend", type=click.Choice(BACKENDS), default=None, help="Backend de stockage")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Logs détaillés")
@click.pass_context
def main(ctx, config_path, data_dir, backend, verbose):
    """
    dealerwatch – snapshots des compteurs dealers + comparaisons
    """
    if verbose:
        logging.getLogger("dealerwatch").setLevel(logging.DEBUG)

    ctx.ensure_object(dict)
    if "settings" not in ctx.obj:
        settings = load_settings(config_path)
        if data_dir:
            settings = replace(settings, data_dir=data_dir)
        if backend:
            settings = replace(settings, backend=backend)
        ctx.obj["settings"] = settings

    if "store" not in ctx.obj:
        settings = ctx.obj["settings"]
        try:
            storage = make_storage(settings.backend, settings.data_dir)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="backend") from e
        ctx.obj["store"] = SnapshotStore(storage)


# ---------- SNAPSHOT ----------
@main.command()
@click.option("--csv", "csv_path", default=None, type=click.Path(exists=True, dir_okay=False),
              help="Lit un export CSV local au lieu du Google Sheet")
@click.pass_obj
def snapshot(obj, csv_path):
    """Récupère les données courantes et enregistre un snapshot."""
    click.echo("[ SNAPSHOT ] collecte en cours...")
    active, expired = _fetch(obj, csv_path)
    filename = obj["store"].save(active, expired)
    click.echo(ok(f"[+] Snapshot écrit : {filename}"))
    click.echo(f"  actifs={len(active)}  expirés={len(expired)}")


# ---------- HISTORY ----------
@main.command()
@click.option("--month", default=None, help="Filtre sur un mois (YYYY-MM)")
@click.option("--limit", default=20, type=int, help="Nombre de snapshots à lister")
@click.option("--md", "as_md", is_flag=True, default=False, help="Affiche l'historique en Markdown")
@click.option("--out", "out_md", default=None, help="Chemin d'un fichier .md pour écrire le résultat")
@click.option("--totals", is_flag=True, default=False, help="Avec --month : totaux de chaque snapshot du mois")
@click.pass_obj
def history(obj, month, limit, as_md, out_md, totals):
    """Liste les snapshots enregistrés (plus récents d'abord)."""
    if totals:
        if not month:
            raise click.UsageError("--totals nécessite --month.")
        snaps = obj["store"].get_snapshots_by_month(month)[:limit]
        if not snaps:
            click.echo("Aucun snapshot trouvé.")
            return
        for snap in snaps:
            t = snapshot_totals(snap)
            click.echo(f" {snap.filename}  actifs={t['totalActive']}  expirés={t['totalExpired']}  "
                       f"dealers={t['dealerCount']}")
        return

    rows = obj["store"].get_metadata()
    if month:
        rows = [m for m in rows if m.month_year == month]
    rows = rows[:limit]
    if not rows:
        click.echo("Aucun snapshot trouvé.")
        return

    if not as_md:
        click.echo("Snapshots (plus récents d'abord) :")
        for m in rows:
            click.echo(f" {m.filename}  ts={m.timestamp}  size={m.size}")
        return

    md_text = render_history_md(rows)
    if out_md:
        _write_text(out_md, md_text, "Historique Markdown")
    else:
        click.echo(md_text)


@main.command()
@click.pass_obj
def months(obj):
    """Liste les mois disponibles."""
    available = obj["store"].get_available_months()
    if not available:
        click.echo("Aucun snapshot.")
        return
    for m in available:
        click.echo(m)


@main.command()
@click.argument("filename")
@click.option("--zones", is_flag=True, default=False, help="Détail des totaux par zone et service")
@click.pass_obj
def show(obj, filename, zones):
    """Résumé d'un snapshot (totaux, nombre de dealers)."""
    snap = obj["store"].get_by_filename(filename)
    if snap is None:
        click.echo("Snapshot introuvable.")
        return
    totals = snapshot_totals(snap)
    click.echo(title(f"[ {snap.filename} ]"))
    click.echo(f"  Timestamp : {snap.timestamp}")
    click.echo(f"  Actifs    : {totals['totalActive']} ({len(snap.active_records)} lignes)")
    click.echo(f"  Expirés   : {totals['totalExpired']} ({len(snap.expired_records)} lignes)")
    click.echo(f"  Dealers   : {totals['dealerCount']}")

    if zones:
        click.echo(title("\n[ Zones ]"))
        for z in zone_summaries(snap.active_records, snap.expired_records):
            click.echo(f"  {z.zone} / {z.service} : actifs={z.total_active}  expirés={z.total_expired}")


# ---------- DIFF ----------
@main.command()
@click.option("--from", "from_name", default=None, help="Snapshot source (ancien). Par défaut: avant-dernier")
@click.option("--to", "to_name", default=None, help="Snapshot cible (récent). Par défaut: dernier")
@click.option("--md", is_flag=True, default=False, help="Sortie Markdown")
@click.option("--json", "as_json", is_flag=True, default=False, help="Sortie JSON")
@click.option("--html", "html_path", default=None, help="Écrit aussi un rapport HTML complet dans ce fichier")
@click.pass_obj
def diff(obj, from_name, to_name, md, as_json, html_path):
    """Affiche les différences entre deux snapshots."""
    store = obj["store"]
    if not from_name or not to_name:
        meta = store.get_metadata()
        if len(meta) < 2:
            click.echo("Pas assez de snapshots. Utilise `dealerwatch snapshot` deux fois.")
            return
        to_name = to_name or meta[0].filename
        from_name = from_name or meta[1].filename

    old = store.get_by_filename(from_name)
    new = store.get_by_filename(to_name)
    if old is None or new is None:
        click.echo("Snapshots introuvables. Vérifie les noms.")
        return

    d = compare_snapshots(new, old)

    if as_json:
        click.echo(json.dumps(d.to_dict(), ensure_ascii=False, indent=2))
    elif md:
        click.echo(render_comparison_md(d))
    else:
        click.echo(f"Diff {d.meta['from']}  →  {d.meta['to']}")
        _echo_diff("Active Users", d.active_users)
        _echo_diff("Expired Users", d.expired_users)

    if html_path:
        _write_text(html_path, comparison_to_html(d), "Rapport HTML")


@main.command("compare-months")
@click.argument("month1")
@click.argument("month2")
@click.option("--search", default=None, help="Filtre sur le nom du dealer")
@click.option("--service", default=None, help="Filtre sur le service (ex: tes, mcsol)")
@click.option("--zone", default=None, help="Filtre sur la zone")
@click.option("--md", is_flag=True, default=False, help="Sortie Markdown")
@click.option("--zones", "zones_service", default=None,
              help="Tendance des expirés par zone pour un service (ex: tes, mcsol)")
@click.pass_obj
def compare_months(obj, month1, month2, search, service, zone, md, zones_service):
    """Compare le dernier snapshot de MONTH1 à celui de MONTH2 (YYYY-MM)."""
    store = obj["store"]
    snap1 = store.get_latest_for_month(month1)
    snap2 = store.get_latest_for_month(month2)
    if snap1 is None or snap2 is None:
        click.echo("Pas de snapshot pour l'un des mois demandés.")
        return

    d = compare_snapshots(snap1, snap2)
    d.active_users = filter_diff(d.active_users, search=search, service=service, zone=zone)
    d.expired_users = filter_diff(d.expired_users, search=search, service=service, zone=zone)

    if md:
        click.echo(render_comparison_md(d, title=f"{month1} vs {month2}"))
    else:
        click.echo(f"{month1} ({snap1.date}) vs {month2} ({snap2.date})")
        _echo_diff("Active Users", d.active_users)
        _echo_diff("Expired Users", d.expired_users)

    if zones_service:
        click.echo(title(f"\n[Expirés par zone : {zones_service}]"))
        trends = compare_zone_totals(snap1.expired_records, snap2.expired_records, zones_service)
        if not trends:
            click.echo("  Aucune zone pour ce service.")
        arrows = {"up": "↑", "down": "↓", "same": "="}
        for t in trends:
            click.echo(f"  {arrows[t.trend]} {t.zone} : {t.previous} -> {t.current} ({t.difference:+d})")


# ---------- ALERTS ----------
@main.command()
@click.option("--csv", "csv_path", default=None, type=click.Path(exists=True, dir_okay=False),
              help="Lit un export CSV local au lieu du Google Sheet")
@click.option("--md", is_flag=True, default=False, help="Sortie Markdown")
@click.pass_obj
def alerts(obj, csv_path, md):
    """Compare les données courantes au 1er du mois et au mois précédent."""
    settings = obj["settings"]
    active, expired = _fetch(obj, csv_path)
    report = build_alert_report(
        obj["store"],
        active,
        expired,
        active_drop_threshold=settings.active_alert_threshold,
        expired_high_threshold=settings.expired_high_threshold,
    )

    if md:
        click.echo(render_alerts_md(report))
        return

    click.echo(title("[ ALERTS ]"))
    if report.first_day_date:
        click.echo(f"  Comparé au : {report.first_day_date} (1er du mois)")
    else:
        click.echo(warn("  Pas de snapshot du 1er du mois."))
    if report.last_month_date:
        click.echo(f"  Mois précédent : {report.last_month_date}")
    if report.vs_last_month is not None:
        counts = report.vs_last_month.active_users.counts()
        click.echo(f"  vs mois précédent : ↑{counts['increased']} ↓{counts['decreased']} "
                   f"+{counts['new']} -{counts['removed']}")

    if not report.alerts:
        click.echo(ok("  Aucune alerte. Tout est normal."))
        return
    for a in report.alerts:
        colour = bad if a.severity == "high" else warn
        risk = ""
        if a.rule == "expired_high":
            risk = f" [{expired_risk_level(a.record.expired_users, settings.expired_high_threshold)}]"
        click.echo(colour(f"  [{a.severity}]{risk} {a.text}"))


# ---------- CLEANUP / EXPORT ----------
@main.command()
@click.option("--days", default=None, type=click.IntRange(min=0), help="Jours à conserver (défaut: config, 90)")
@click.pass_obj
def cleanup(obj, days):
    """Supprime les snapshots plus anciens que la rétention."""
    if days is None:
        days = obj["settings"].retention_days
    removed = obj["store"].cleanup(days)
    click.echo(f"[+] {removed} snapshot(s) supprimé(s) (rétention {days} jours)")


@main.command()
@click.argument("filename")
@click.option("--out", "outpath", default=None, help="Chemin de sortie (défaut: nom du snapshot)")
@click.pass_obj
def export(obj, filename, outpath):
    """Exporte le JSON d'un snapshot tel qu'il est stocké."""
    try:
        path = export_snapshot(obj["store"], filename, outpath)
    except OSError as e:
        raise click.ClickException(f"Impossible d'écrire le fichier : {e}") from e
    if path is None:
        click.echo("Snapshot introuvable.")
        return
    click.echo(f"[+] Snapshot exporté : {path}")


# ---------- SCHEDULE ----------
@main.command()
@click.option("--interval", default=None, type=click.IntRange(min=1), help="Secondes entre deux vérifications")
@click.option("--once", is_flag=True, default=False, help="Une seule vérification puis sortie")
@click.option("--csv", "csv_path", default=None, type=click.Path(exists=True, dir_okay=False),
              help="Lit un export CSV local au lieu du Google Sheet")
@click.pass_obj
def schedule(obj, interval, once, csv_path):
    """Auto-snapshot quotidien (au plus un par jour)."""
    settings = obj["settings"]
    scheduler = AutoSnapshotScheduler(
        obj["store"],
        _source(obj, csv_path),
        interval=interval or settings.check_interval,
    )

    if once:
        if not scheduler.should_run():
            click.echo(f"Rien à faire (dernier passage : {scheduler.last_run_date()}).")
            return
        filename = scheduler.run_if_due()
        if filename is None:
            raise click.ClickException("Auto-snapshot échoué, voir les logs.")
        click.echo(ok(f"[+] Auto-snapshot créé : {filename}"))
        return

    click.echo(f"[ SCHEDULE ] vérification toutes les {scheduler.interval} secondes (Ctrl-C pour arrêter)")
    try:
        scheduler.run_forever()
    except KeyboardInterrupt:
        click.echo("Arrêt demandé.")
