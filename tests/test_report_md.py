from conftest import active, expired

from dealerwatch.alerts import build_alert_report
from dealerwatch.report_md import render_alerts_md, render_comparison_md, render_history_md


def test_comparison_markdown(store, clock):
    first = store.save([active("X", 10), active("Gone", 2)], [expired("X", 1)])
    clock.advance(days=1)
    second = store.save([active("X", 4), active("Fresh", 3)], [expired("X", 1)])

    from dealerwatch.diffs import compare_snapshots

    md = render_comparison_md(
        compare_snapshots(store.get_by_filename(second), store.get_by_filename(first)), title="Test"
    )

    assert md.startswith("# Test")
    assert "| X | TES | Z1 | 10 | 4 | -6 |" in md
    assert "- `Fresh` (TES, zone Z1) = 3" in md
    assert "`Gone`" in md
    assert "## Expired Users" in md
    assert "_Aucun changement détecté._" in md


def test_history_markdown(store):
    store.save([active("X", 1)], [])
    md = render_history_md(store.get_metadata())
    assert "| 2024-05-14_09-30.json | 2024-05-14T09:30:15.000Z | 2024-05-14 | 2024-05 |" in md


def test_alerts_markdown(store):
    empty = render_alerts_md(build_alert_report(store, [active("X", 1)], []))
    assert "_Pas de snapshot du 1er du mois._" in empty
    assert "_Aucune alerte. Tout est normal._" in empty

    report = render_alerts_md(build_alert_report(store, [], [expired("Y", 40)]))
    assert "| high | expired_high | Y (TES, zone Z1) : 40 utilisateurs expirés |" in report
