from unittest.mock import patch

import pytest
import requests

from dealerwatch.models import DealerRecord
from dealerwatch.sources import sheets
from dealerwatch.sources.sheets import (
    ACTIVE_COLUMNS,
    EXPIRED_COLUMNS,
    CsvFileSource,
    SheetsSource,
    SourceError,
    _RowSource,
    extract_records,
    find_column_indices,
    parse_count,
    parse_csv,
)

SAMPLE_CSV = (
    "A-Dealers,A-Service,Active Users,A-Zone,E-Dealers,E-Service,Expired Users,E-Zone\n"
    "Alpha,TES,12,North,Alpha,TES,31,North\n"
    "Beta,McSOL Prime,7 users,South,Gamma,Zong TES,4,East\n"
    "Delta,Other,5,West,Beta,mcsol,n/a,South\n"
    ",,,,,,,\n"
    '"Epsilon, Ltd", TES ,3, North ,,,,\n'
)


class DummyResp:
    def __init__(self, text="", status_code=200):
        self.text = text
        self.status_code = status_code


@pytest.fixture(autouse=True)
def clear_cache():
    sheets.ROWS_CACHE.clear()
    yield
    sheets.ROWS_CACHE.clear()


def test_parse_csv_skips_empty_rows_and_strips():
    rows = parse_csv("a, b ,c\n,,\n\n x ,y,z\n")
    assert rows == [["a", "b", "c"], ["x", "y", "z"]]


@pytest.mark.parametrize(
    "value,expected",
    [("12", 12), (" 7 users", 7), ("12.5", 12), ("n/a", 0), ("", 0), ("-3", -3)],
)
def test_parse_count(value, expected):
    assert parse_count(value) == expected


def test_find_column_indices_case_insensitive():
    headers = ["x", "a-DEALERS", "A-Zone", "active users (total)", "A-Service"]
    assert find_column_indices(headers, ACTIVE_COLUMNS) == {"dealer": 1, "service": 4, "count": 3, "zone": 2}
    assert find_column_indices(headers, EXPIRED_COLUMNS)["dealer"] == -1


def test_extract_active_records_filters_services():
    records = extract_records(parse_csv(SAMPLE_CSV), ACTIVE_COLUMNS, "active_users")

    assert records == [
        DealerRecord("Alpha", "TES", "North", active_users=12),
        DealerRecord("Beta", "McSOL Prime", "South", active_users=7),
        DealerRecord("Epsilon, Ltd", "TES", "North", active_users=3),
    ]


def test_extract_expired_records_excludes_zong():
    records = extract_records(parse_csv(SAMPLE_CSV), EXPIRED_COLUMNS, "expired_users")

    assert records == [
        DealerRecord("Alpha", "TES", "North", expired_users=31),
        DealerRecord("Beta", "mcsol", "South", expired_users=0),
    ]


def test_extract_needs_header_and_data():
    assert extract_records([], ACTIVE_COLUMNS, "active_users") == []
    assert extract_records([["A-Dealers", "A-Service"]], ACTIVE_COLUMNS, "active_users") == []


@patch("dealerwatch.sources.sheets.requests.get", return_value=DummyResp(SAMPLE_CSV))
def test_sheets_source_fetch_all_uses_single_request(mock_get):
    active, expired = SheetsSource("https://example.test/sheet.csv", timeout=5).fetch_all()

    assert [r.dealer for r in active] == ["Alpha", "Beta", "Epsilon, Ltd"]
    assert [r.dealer for r in expired] == ["Alpha", "Beta"]
    assert mock_get.call_count == 1
    args, kwargs = mock_get.call_args
    assert args == ("https://example.test/sheet.csv",)
    assert kwargs["params"]["_"].isdigit()
    assert kwargs["timeout"] == 5


@patch("dealerwatch.sources.sheets.requests.get", return_value=DummyResp(SAMPLE_CSV))
def test_sheets_source_without_cache_refetches(mock_get):
    SheetsSource("https://example.test/sheet.csv", use_cache=False).fetch_all()
    assert mock_get.call_count == 2


@patch("dealerwatch.sources.sheets.requests.get", return_value=DummyResp("oops", status_code=500))
def test_http_error_raises_source_error(mock_get):
    with pytest.raises(SourceError, match="Failed to fetch active users data from Google Sheets"):
        SheetsSource("https://example.test/x.csv").fetch_active_records()


@patch(
    "dealerwatch.sources.sheets.requests.get",
    side_effect=requests.exceptions.ConnectionError("down"),
)
def test_network_error_raises_source_error(mock_get):
    with pytest.raises(SourceError, match="expired users"):
        SheetsSource("https://example.test/x.csv").fetch_expired_records()


def test_csv_file_source(tmp_path):
    path = tmp_path / "sheet.csv"
    path.write_text(SAMPLE_CSV, encoding="utf-8")

    active, expired = CsvFileSource(path).fetch_all()

    assert len(active) == 3
    assert expired[0].expired_users == 31


def test_csv_file_source_missing_file(tmp_path):
    with pytest.raises(SourceError):
        CsvFileSource(tmp_path / "missing.csv").fetch_all()


def test_row_source_requires_fetch_rows():
    with pytest.raises(TypeError):
        _RowSource()

    class StaticSource(_RowSource):
        def fetch_rows(self):
            return parse_csv(SAMPLE_CSV)

    assert len(StaticSource().fetch_active_records()) == 3
