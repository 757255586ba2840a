"""
Auto-snapshot quotidien.

Le job se réveille à intervalle fixe (1h par défaut) et ne crée un snapshot
que si la date du dernier passage, stockée dans le même backend que les
snapshots, diffère d'aujourd'hui. Au plus un snapshot par jour calendaire,
quel que soit le rythme des réveils.
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol

from .core import SnapshotStore
from .models import DealerRecord
from .sources.sheets import SourceError

logger = logging.getLogger("dealerwatch.scheduler")

LAST_RUN_KEY = "last_auto_snapshot_date"
ENABLED_KEY = "auto_snapshot_enabled"

DEFAULT_INTERVAL = 60 * 60


class RecordSource(Protocol):
    def fetch_all(self) -> tuple[list[DealerRecord], list[DealerRecord]]: ...


class AutoSnapshotScheduler:
    def __init__(self, store: SnapshotStore, source: RecordSource, interval: float = DEFAULT_INTERVAL):
        self.store = store
        self.storage = store.storage
        self.source = source
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def enabled(self) -> bool:
        return self.storage.get(ENABLED_KEY) == "true"

    def _set_enabled(self, value: bool) -> None:
        self.storage.set(ENABLED_KEY, "true" if value else "false")

    def last_run_date(self) -> str | None:
        return self.storage.get(LAST_RUN_KEY)

    def today(self) -> str:
        return self.store.now().date().isoformat()

    def should_run(self) -> bool:
        return self.last_run_date() != self.today()

    def run_if_due(self) -> str | None:
        """Crée le snapshot du jour s'il n'existe pas encore. Retourne son nom, sinon None."""
        today = self.today()
        if self.last_run_date() == today:
            logger.debug("Auto-snapshot already done for %s", today)
            return None

        try:
            active, expired = self.source.fetch_all()
        except SourceError as e:
            # marqueur inchangé : le prochain réveil réessaie
            logger.error("Auto-snapshot failed: %s", e)
            return None

        filename = self.store.save(active, expired)
        self.storage.set(LAST_RUN_KEY, today)
        logger.info("Auto-snapshot created: %s", filename)
        return filename

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_if_due()
            except Exception as e:
                logger.error("Error during auto-snapshot: %s", e)
            if self._stop.wait(self.interval):
                break

    def start(self) -> threading.Thread:
        """Lance le job dans un thread daemon (vérifie tout de suite, puis à chaque intervalle)."""
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._stop.clear()
        self._set_enabled(True)
        self._thread = threading.Thread(target=self._loop, name="dealerwatch-scheduler", daemon=True)
        self._thread.start()
        logger.info("Auto-snapshot enabled, checking every %s seconds", self.interval)
        return self._thread

    def stop(self, timeout: float | None = None) -> None:
        self._set_enabled(False)
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Auto-snapshot disabled")

    def run_forever(self) -> None:
        """Variante premier plan (CLI) : bloque jusqu'à stop() ou Ctrl-C."""
        self._stop.clear()
        self._set_enabled(True)
        try:
            self._loop()
        finally:
            self._set_enabled(False)
