from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from .models import DealerRecord, Snapshot, SnapshotMetadata
from .storage import KeyValueStorage
from .utils import SNAPSHOT_FILENAME_FORMAT, iso_timestamp, make_snapshot_filename, to_json, utcnow

# Logging basic
logger = logging.getLogger("dealerwatch")
if not logger.handlers:
    h = logging.StreamHandler()
    formatter = logging.Formatter("[%(levelname)s] %(message)s")
    h.setFormatter(formatter)
    logger.addHandler(h)
logger.setLevel(logging.INFO)

# Layout des clefs dans le backend (partagé par save manuel, scheduler, cleanup)
SNAPSHOT_KEY_PREFIX = "snapshot_"
METADATA_KEY = "snapshot_metadata"

DEFAULT_RETENTION_DAYS = 90

_READ_ERRORS = (OSError, ValueError, sqlite3.Error)


def snapshot_key(filename: str) -> str:
    return f"{SNAPSHOT_KEY_PREFIX}{filename}"


def _coerce_record(item: DealerRecord | dict[str, Any]) -> DealerRecord:
    if isinstance(item, DealerRecord):
        return item
    return DealerRecord.from_dict(item)


class SnapshotStore:
    """
    Stockage des snapshots + index de métadonnées au-dessus d'un backend clef/valeur.

    Les erreurs de lecture (JSON corrompu, payload invalide, I/O) sont loggées
    et dégradées en "pas de données" : liste vide ou None.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.storage = storage
        self._clock = clock or utcnow

    def now(self) -> datetime:
        return self._clock().astimezone(timezone.utc)

    # ---------- INDEX ----------

    def _read_index(self) -> list[SnapshotMetadata]:
        try:
            raw = self.storage.get(METADATA_KEY)
            if raw is None:
                return []
            data = json.loads(raw)
            if not isinstance(data, list):
                raise ValueError("metadata index is not a JSON array")
        except _READ_ERRORS as e:
            logger.error("Error loading snapshot metadata: %s", e)
            return []

        out: list[SnapshotMetadata] = []
        for entry in data:
            try:
                out.append(SnapshotMetadata.from_dict(entry))
            except ValueError as e:
                logger.warning("Skipping invalid metadata entry %r: %s", entry, e)
        return out

    def _write_index(self, index: list[SnapshotMetadata]) -> None:
        self.storage.set(METADATA_KEY, json.dumps([m.to_dict() for m in index], ensure_ascii=False))

    # ---------- SAVE ----------

    def save(
        self,
        active_records: Iterable[DealerRecord | dict[str, Any]],
        expired_records: Iterable[DealerRecord | dict[str, Any]],
    ) -> str:
        """
        Enregistre un snapshot et retourne son nom de fichier (YYYY-MM-DD_HH-MM.json).

        Deux appels dans la même minute donnent le même nom : le second écrase
        le premier (payload + entrée d'index).
        """
        now = self.now()
        timestamp = iso_timestamp(now)
        date = timestamp[:10]
        filename = make_snapshot_filename(now)

        snapshot = Snapshot(
            filename=filename,
            timestamp=timestamp,
            date=date,
            month_year=date[:7],
            active_records=tuple(_coerce_record(r) for r in active_records),
            expired_records=tuple(_coerce_record(r) for r in expired_records),
        )
        payload = to_json(snapshot.to_dict())
        self.storage.set(snapshot_key(filename), payload)

        index = self._read_index()
        if any(m.filename == filename for m in index):
            logger.warning("Snapshot %s already exists, overwriting it", filename)
            index = [m for m in index if m.filename != filename]
        index.insert(
            0,
            SnapshotMetadata(
                filename=filename,
                timestamp=timestamp,
                date=date,
                month_year=snapshot.month_year,
                size=len(payload.encode("utf-8")),
            ),
        )
        self._write_index(index)

        logger.info("Snapshot saved: %s", filename)
        return filename

    # ---------- LECTURE ----------

    def get_metadata(self) -> list[SnapshotMetadata]:
        """Toutes les entrées d'index, plus récentes d'abord."""
        return sorted(self._read_index(), key=lambda m: m.timestamp, reverse=True)

    def get_raw(self, filename: str) -> str | None:
        """Texte JSON tel que stocké (utilisé pour l'export octet par octet)."""
        try:
            return self.storage.get(snapshot_key(filename))
        except _READ_ERRORS as e:
            logger.error("Error loading snapshot %s: %s", filename, e)
            return None

    def get_by_filename(self, filename: str) -> Snapshot | None:
        raw = self.get_raw(filename)
        if raw is None:
            return None
        try:
            return Snapshot.from_dict(json.loads(raw))
        except ValueError as e:
            logger.error("Error loading snapshot %s: %s", filename, e)
            return None

    def get_latest_for_month(self, month_year: str) -> Snapshot | None:
        candidates = [m for m in self._read_index() if m.month_year == month_year]
        if not candidates:
            return None
        latest = max(candidates, key=lambda m: m.timestamp)
        return self.get_by_filename(latest.filename)

    def get_first_of_month_snapshot(self) -> Snapshot | None:
        """Snapshot pris le 1er du mois courant (le plus récent s'il y en a plusieurs)."""
        first_day = self.now().strftime("%Y-%m-01")
        for meta in self.get_metadata():
            if meta.date == first_day:
                return self.get_by_filename(meta.filename)
        return None

    def get_snapshots_by_month(self, month_year: str) -> list[Snapshot]:
        out: list[Snapshot] = []
        for meta in self.get_metadata():
            if meta.month_year != month_year:
                continue
            snap = self.get_by_filename(meta.filename)
            if snap is not None:
                out.append(snap)
        return out

    def get_available_months(self) -> list[str]:
        return sorted({m.month_year for m in self._read_index()}, reverse=True)

    def get_latest(self, count: int = 1) -> list[Snapshot]:
        out: list[Snapshot] = []
        for meta in self.get_metadata():
            if len(out) >= count:
                break
            snap = self.get_by_filename(meta.filename)
            if snap is not None:
                out.append(snap)
        return out

    # ---------- RETENTION ----------

    def _orphan_filenames(self, index: list[SnapshotMetadata]) -> list[str]:
        """Payloads `snapshot_*` présents dans le backend mais absents de l'index."""
        indexed = {m.filename for m in index}
        out: list[str] = []
        for key in self.storage.keys():
            if key == METADATA_KEY or not key.startswith(SNAPSHOT_KEY_PREFIX):
                continue
            filename = key[len(SNAPSHOT_KEY_PREFIX):]
            if filename not in indexed:
                out.append(filename)
        return out

    def _metadata_for(self, filename: str) -> SnapshotMetadata | None:
        raw = self.get_raw(filename)
        snap = self.get_by_filename(filename)
        if raw is None or snap is None:
            return None
        return SnapshotMetadata(
            filename=filename,
            timestamp=snap.timestamp,
            date=snap.date,
            month_year=snap.month_year,
            size=len(raw.encode("utf-8")),
        )

    def cleanup(self, retention_days: int = DEFAULT_RETENTION_DAYS) -> int:
        """
        Supprime les snapshots dont la date est strictement antérieure à
        aujourd'hui - retention_days. Irréversible. Retourne le nombre supprimé.

        Les payloads absents de l'index (index corrompu puis réécrit) sont
        datés par leur nom de fichier : supprimés s'ils sont trop vieux,
        réindexés sinon.
        """
        if retention_days < 0:
            raise ValueError("retention_days must be >= 0")
        cutoff = (self.now() - timedelta(days=retention_days)).date().isoformat()

        index = self._read_index()
        to_keep = [m for m in index if m.date >= cutoff]
        to_delete = [m.filename for m in index if m.date < cutoff]

        reindexed = 0
        orphans = self._orphan_filenames(index)
        if orphans:
            logger.warning("Found %d snapshot(s) missing from the metadata index", len(orphans))
        for filename in orphans:
            try:
                date = datetime.strptime(filename, SNAPSHOT_FILENAME_FORMAT).date().isoformat()
            except ValueError:
                logger.warning("Ignoring unexpected snapshot key %s", snapshot_key(filename))
                continue
            if date < cutoff:
                to_delete.append(filename)
                continue
            meta = self._metadata_for(filename)
            if meta is not None:
                to_keep.append(meta)
                reindexed += 1

        for filename in to_delete:
            self.storage.delete(snapshot_key(filename))
        if to_delete or reindexed:
            self._write_index(sorted(to_keep, key=lambda m: m.timestamp, reverse=True))

        logger.info("Cleanup complete: removed %d old snapshots", len(to_delete))
        return len(to_delete)
