import os
import sqlite3
from pathlib import Path

SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);
"""


def init_db(db_path: str):
    os.makedirs(os.path.dirname(db_path), exist_ok=True) if os.path.dirname(db_path) else None
    con = sqlite3.connect(db_path)
    try:
        con.executescript(SCHEMA)
        con.commit()
    finally:
        con.close()


class SQLiteStorage:
    """Backend clef/valeur SQLite : une ligne par clef dans la table `kv`."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        init_db(self.db_path)

    def get(self, key: str) -> str | None:
        con = sqlite3.connect(self.db_path)
        try:
            cur = con.cursor()
            cur.execute("SELECT value FROM kv WHERE key = ?", (key,))
            row = cur.fetchone()
            if not row:
                return None
            return row[0]
        finally:
            con.close()

    def set(self, key: str, value: str) -> None:
        con = sqlite3.connect(self.db_path)
        try:
            con.execute(
                "INSERT INTO kv(key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )
            con.commit()
        finally:
            con.close()

    def delete(self, key: str) -> None:
        con = sqlite3.connect(self.db_path)
        try:
            con.execute("DELETE FROM kv WHERE key = ?", (key,))
            con.commit()
        finally:
            con.close()

    def keys(self) -> list[str]:
        con = sqlite3.connect(self.db_path)
        try:
            cur = con.cursor()
            cur.execute("SELECT key FROM kv ORDER BY key")
            return [r[0] for r in cur.fetchall()]
        finally:
            con.close()
