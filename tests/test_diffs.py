import logging

import pytest
from conftest import active, expired

from dealerwatch.diffs import compare_records, compare_snapshots, comparison_to_html, filter_diff
from dealerwatch.models import ACTIVE, EXPIRED, DealerRecord, Snapshot


def make_snapshot(active_records=(), expired_records=(), timestamp="2024-05-01T08:00:00.000Z"):
    return Snapshot(
        filename=f"{timestamp[:10]}_08-00.json",
        timestamp=timestamp,
        date=timestamp[:10],
        month_year=timestamp[:7],
        active_records=tuple(active_records),
        expired_records=tuple(expired_records),
    )


def test_increase_scenario():
    a = make_snapshot([active("X", 10)])
    b = make_snapshot([active("X", 15)], timestamp="2024-05-02T08:00:00.000Z")

    result = compare_snapshots(b, a)

    assert [c.to_dict() for c in result.active_users.increased] == [
        {
            "dealer": "X",
            "service": "TES",
            "zone": "Z1",
            "activeUsers": 15,
            "expiredUsers": 0,
            "previousCount": 10,
            "difference": 5,
        }
    ]
    assert result.active_users.decreased == []
    assert result.meta == {"from": a.timestamp, "to": b.timestamp}


def test_new_and_removed_dealers():
    a = make_snapshot([active("X", 10), active("Y", 4)])
    b = make_snapshot([active("X", 10)])

    assert compare_snapshots(b, a).active_users.removed == [active("Y", 4)]
    assert compare_snapshots(a, b).active_users.new == [active("Y", 4)]


def test_compare_with_itself_only_unchanged():
    a = make_snapshot([active("X", 10), active("Y", 0)], [expired("X", 3)])

    result = compare_snapshots(a, a)

    for diff in (result.active_users, result.expired_users):
        assert diff.increased == []
        assert diff.decreased == []
        assert diff.new == []
        assert diff.removed == []
        assert not diff.has_changes
    assert [c.record for c in result.active_users.unchanged] == list(a.active_records)
    assert all(c.difference == 0 for c in result.active_users.unchanged)


def test_increased_and_decreased_are_disjoint_with_exact_difference():
    previous = [active("A", 5), active("B", 20), active("C", 7)]
    current = [active("A", 9), active("B", 2), active("C", 7)]

    diff = compare_records(current, previous, ACTIVE)

    inc_keys = {c.record.key for c in diff.increased}
    dec_keys = {c.record.key for c in diff.decreased}
    assert inc_keys.isdisjoint(dec_keys)
    assert [(c.record.dealer, c.difference, c.previous_count) for c in diff.increased] == [("A", 4, 5)]
    assert [(c.record.dealer, c.difference, c.previous_count) for c in diff.decreased] == [("B", -18, 20)]
    assert [c.record.dealer for c in diff.unchanged] == ["C"]


def test_expired_list_uses_expired_count():
    a = make_snapshot([active("X", 10)], [expired("X", 30)])
    b = make_snapshot([active("X", 10)], [expired("X", 12)])

    result = compare_snapshots(b, a)

    assert result.active_users.increased == []
    assert result.active_users.decreased == []
    assert [(c.previous_count, c.difference) for c in result.expired_users.decreased] == [(30, -18)]


def test_zone_is_part_of_identity():
    previous = [active("X", 10, zone="North")]
    current = [active("X", 10, zone="South")]

    diff = compare_records(current, previous, ACTIVE)

    assert diff.new == current
    assert diff.removed == previous
    assert diff.unchanged == []


def test_categories_keep_input_order():
    previous = [active(name, 1) for name in ("D", "C", "B", "A")]
    current = [active(name, 5) for name in ("B", "D", "A")] + [active("Z", 1), active("E", 1)]

    diff = compare_records(current, previous, ACTIVE)

    assert [c.record.dealer for c in diff.increased] == ["B", "D", "A"]
    assert [r.dealer for r in diff.new] == ["Z", "E"]
    assert [r.dealer for r in diff.removed] == ["C"]


def test_duplicate_previous_key_keeps_first_occurrence():
    previous = [active("X", 10), active("X", 99)]
    diff = compare_records([active("X", 12)], previous, ACTIVE)

    assert [(c.previous_count, c.difference) for c in diff.increased] == [(10, 2)]


def test_duplicate_current_key_categorized_once(caplog):
    with caplog.at_level(logging.WARNING, logger="dealerwatch"):
        diff = compare_records([active("X", 15), active("X", 5)], [active("X", 10)], ACTIVE)

    assert [(c.record.active_users, c.difference) for c in diff.increased] == [(15, 5)]
    assert diff.decreased == []
    assert "Duplicate dealer key X|TES|Z1" in caplog.text


def test_duplicate_removed_key_reported_once():
    diff = compare_records([], [active("X", 10), active("X", 3)], ACTIVE)
    assert diff.removed == [active("X", 10)]


def test_unknown_count_field_rejected():
    with pytest.raises(ValueError):
        compare_records([], [], "users")


def test_to_dict_shape():
    a = make_snapshot([active("X", 10)], [expired("Y", 1)])
    b = make_snapshot([active("X", 8)], [])

    data = compare_snapshots(b, a).to_dict()

    assert set(data) == {"meta", "activeUsers", "expiredUsers"}
    assert set(data["activeUsers"]) == {"increased", "decreased", "unchanged", "new", "removed"}
    assert data["activeUsers"]["decreased"][0]["difference"] == -2
    assert data["expiredUsers"]["removed"] == [expired("Y", 1).to_dict()]


def test_filter_diff():
    previous = [
        active("Alpha Telecom", 1, service="TES", zone="North"),
        active("Beta", 1, service="McSOL", zone="South"),
        active("alphabet", 1, service="McSOL", zone="North"),
    ]
    current = [DealerRecord(r.dealer, r.service, r.zone, active_users=3) for r in previous]
    diff = compare_records(current, previous, ACTIVE)

    assert [c.record.dealer for c in filter_diff(diff, search="ALPHA").increased] == ["Alpha Telecom", "alphabet"]
    assert [c.record.dealer for c in filter_diff(diff, service="mcsol").increased] == ["Beta", "alphabet"]
    assert [c.record.dealer for c in filter_diff(diff, search="alpha", zone="North", service="tes").increased] == [
        "Alpha Telecom"
    ]
    assert filter_diff(diff, zone="north").increased == []


def test_html_report_escapes_dealer_names():
    a = make_snapshot([active("<b>X</b>", 10)])
    b = make_snapshot([active("<b>X</b>", 4), active("New & Co", 1)])

    html = comparison_to_html(compare_snapshots(b, a))

    assert "&lt;b&gt;X&lt;/b&gt;" in html
    assert "<b>X</b>" not in html
    assert "New &amp; Co" in html
    assert "-6" in html


def test_html_report_without_changes():
    a = make_snapshot([active("X", 10)])
    html = comparison_to_html(compare_snapshots(a, a))
    assert html.count("Aucun changement détecté.") == 2


def test_expired_constant_matches_record_field():
    assert expired("X", 3).count(EXPIRED) == 3


def test_html_report_marks_direction_and_period():
    a = make_snapshot([active("X", 10), active("Gone", 1)])
    b = make_snapshot([active("X", 12)], timestamp="2024-05-02T08:00:00.000Z")

    html = comparison_to_html(compare_snapshots(b, a), title="Mai <test>")

    assert "<title>Mai &lt;test&gt;</title>" in html
    assert "Du <strong>2024-05-01T08:00:00.000Z</strong> au <strong>2024-05-02T08:00:00.000Z</strong>" in html
    assert "<span class='up'>En hausse</span>" in html
    assert "<span class='down'>Dealers disparus</span>" in html
    assert html.count("<section>") == 2
