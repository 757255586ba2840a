from pathlib import Path

from .core import SnapshotStore


def export_snapshot(store: SnapshotStore, filename: str, outpath=None) -> Path | None:
    """
    Écrit le JSON du snapshot tel qu'il est stocké (octet pour octet).
    Retourne le chemin écrit, ou None si le snapshot est introuvable.
    """
    raw = store.get_raw(filename)
    if raw is None:
        return None
    path = Path(outpath) if outpath else Path(filename)
    with path.open("w", encoding="utf-8", newline="") as f:
        f.write(raw)
    return path
