# src/dealerwatch/sources/sheets.py

import csv
import io
import logging
import re
import time
from abc import ABC, abstractmethod

import requests
from cachetools import TTLCache

from ..models import DealerRecord

logger = logging.getLogger("dealerwatch.sheets")

USER_AGENT = "dealerwatch/0.1"

SHEET_ID = "1FHdyd5Qac9OrAgZTmoR0RtFNdqm1FoC8hXDhfoFDAGU"
DEFAULT_CSV_URL = f"https://docs.google.com/spreadsheets/d/{SHEET_ID}/export?format=csv"
DEFAULT_TIMEOUT = 15.0

# --- Cache des lignes par URL (une exécution lit actifs + expirés, un seul appel réseau)
ROWS_CACHE = TTLCache(maxsize=32, ttl=30)

# nom logique -> fragment d'en-tête recherché (insensible à la casse)
ACTIVE_COLUMNS = {
    "dealer": "a-dealers",
    "service": "a-service",
    "count": "active users",
    "zone": "a-zone",
}
EXPIRED_COLUMNS = {
    "dealer": "e-dealers",
    "service": "e-service",
    "count": "expired users",
    "zone": "e-zone",
}

ACCEPTED_SERVICES = ("tes", "mcsol")
EXCLUDED_SERVICES = ("zong",)

_LEADING_INT = re.compile(r"^\s*([-+]?\d+)")


class SourceError(RuntimeError):
    """Échec de récupération des données (réseau, HTTP, fichier)."""


# ------------------ Utils ------------------


def parse_csv(text: str) -> list[list[str]]:
    rows = []
    for row in csv.reader(io.StringIO(text)):
        cells = [c.strip() for c in row]
        if any(cells):
            rows.append(cells)
    return rows


def parse_count(value: str) -> int:
    """Entier en tête de chaîne ("12", "12.5", "12 users"), sinon 0."""
    m = _LEADING_INT.match(value or "")
    return int(m.group(1)) if m else 0


def find_column_indices(headers: list[str], columns: dict[str, str]) -> dict[str, int]:
    indices = {name: -1 for name in columns}
    for i, header in enumerate(headers):
        h = header.lower().strip()
        for name, fragment in columns.items():
            if fragment in h:
                indices[name] = i
                break
    return indices


def _cell(row: list[str], index: int) -> str:
    if index < 0 or index >= len(row):
        return ""
    return row[index]


def _service_accepted(service: str) -> bool:
    s = service.lower()
    if any(x in s for x in EXCLUDED_SERVICES):
        return False
    return any(x in s for x in ACCEPTED_SERVICES)


def extract_records(rows: list[list[str]], columns: dict[str, str], count_field: str) -> list[DealerRecord]:
    """
    Transforme les lignes CSV en DealerRecord pour un groupe de colonnes
    (actifs ou expirés). Ne garde que les services TES / McSOL (hors Zong).
    """
    if len(rows) < 2:
        return []

    indices = find_column_indices(rows[0], columns)
    widest = max(indices.values())
    out: list[DealerRecord] = []
    for row in rows[1:]:
        if len(row) < widest:
            continue
        dealer = _cell(row, indices["dealer"]).strip()
        service = _cell(row, indices["service"]).strip()
        zone = _cell(row, indices["zone"]).strip()
        if not dealer or not service or not _service_accepted(service):
            continue
        out.append(
            DealerRecord(
                dealer=dealer,
                service=service,
                zone=zone,
                **{count_field: parse_count(_cell(row, indices["count"]))},
            )
        )
    return out


# ------------------ Sources ------------------


class _RowSource(ABC):
    @abstractmethod
    def fetch_rows(self) -> list[list[str]]:
        """Lignes CSV non vides, en-tête compris."""

    def fetch_active_records(self) -> list[DealerRecord]:
        try:
            rows = self.fetch_rows()
        except SourceError as e:
            raise SourceError("Failed to fetch active users data from Google Sheets") from e
        return extract_records(rows, ACTIVE_COLUMNS, "active_users")

    def fetch_expired_records(self) -> list[DealerRecord]:
        try:
            rows = self.fetch_rows()
        except SourceError as e:
            raise SourceError("Failed to fetch expired users data from Google Sheets") from e
        return extract_records(rows, EXPIRED_COLUMNS, "expired_users")

    def fetch_all(self) -> tuple[list[DealerRecord], list[DealerRecord]]:
        return self.fetch_active_records(), self.fetch_expired_records()


class SheetsSource(_RowSource):
    """
    Export CSV publié d'un Google Sheet.

    - Ajoute un paramètre anti-cache `_=<epoch ms>` à chaque requête
    - Pas de retry : l'appelant affiche l'erreur et l'utilisateur relance
    """

    def __init__(self, url: str = DEFAULT_CSV_URL, timeout: float = DEFAULT_TIMEOUT, use_cache: bool = True):
        self.url = url
        self.timeout = timeout
        self.use_cache = use_cache

    def fetch_rows(self) -> list[list[str]]:
        if self.use_cache and self.url in ROWS_CACHE:
            return ROWS_CACHE[self.url]

        params = {"_": str(int(time.time() * 1000))}
        headers = {"User-Agent": USER_AGENT}
        try:
            resp = requests.get(self.url, params=params, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.warning("Sheet fetch network error for %s: %s", self.url, e)
            raise SourceError("Failed to fetch data from Google Sheets") from e

        if resp.status_code != 200:
            logger.warning("Sheet fetch HTTP %s for %s", resp.status_code, self.url)
            raise SourceError(f"Failed to fetch data from Google Sheets (HTTP {resp.status_code})")

        rows = parse_csv(resp.text)
        logger.debug("[sheets] %d rows from %s", len(rows), self.url)
        if self.use_cache:
            ROWS_CACHE[self.url] = rows
        return rows


class CsvFileSource(_RowSource):
    """Même extraction depuis un fichier CSV local (mode hors ligne)."""

    def __init__(self, path):
        self.path = path

    def fetch_rows(self) -> list[list[str]]:
        try:
            with open(self.path, encoding="utf-8", newline="") as f:
                return parse_csv(f.read())
        except OSError as e:
            logger.warning("CSV read error for %s: %s", self.path, e)
            raise SourceError(f"Failed to read {self.path}") from e


__all__ = [
    "SourceError",
    "SheetsSource",
    "CsvFileSource",
    "parse_csv",
    "parse_count",
    "find_column_indices",
    "extract_records",
]
