from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

logger = logging.getLogger("dealerwatch.storage")

BASE = Path("data")

BACKENDS = ("file", "sqlite", "memory")


class KeyValueStorage(Protocol):
    """Contrat minimal partagé par les backends (mémoire, fichiers, SQLite)."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


class MemoryStorage:
    """Backend en mémoire (tests, mode --backend memory)."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class FileStorage:
    """
    Un fichier UTF-8 par clef dans un dossier.

    data/
      snapshot_metadata
      snapshot_2024-05-01_08-30.json
    """

    def __init__(self, directory: str | Path = BASE) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key in (".", ".."):
            raise ValueError(f"invalid storage key {key!r}")
        return self.directory / key

    def get(self, key: str) -> str | None:
        path = self._path(key)
        if not path.is_file():
            return None
        with path.open("r", encoding="utf-8", newline="") as f:
            return f.read()

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        with path.open("w", encoding="utf-8", newline="") as f:
            f.write(value)

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()
            logger.debug("Removed %s", path)

    def keys(self) -> list[str]:
        return sorted(p.name for p in self.directory.iterdir() if p.is_file())


def make_storage(backend: str = "file", location: str | Path = BASE) -> KeyValueStorage:
    """
    Construit un backend depuis la config.

    - file   : `location` est un dossier
    - sqlite : `location` est un dossier, la base est `<location>/dealerwatch.sqlite`
    - memory : `location` ignoré
    """
    if backend == "memory":
        return MemoryStorage()
    if backend == "file":
        return FileStorage(location)
    if backend == "sqlite":
        from .db import SQLiteStorage

        return SQLiteStorage(Path(location) / "dealerwatch.sqlite")
    raise ValueError(f"unknown storage backend {backend!r} (expected one of {', '.join(BACKENDS)})")
