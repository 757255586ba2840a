import json
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso_timestamp(now: datetime) -> str:
    """Format ISO-8601 UTC en millisecondes, suffixe Z (ex: 2024-05-01T08:30:00.000Z)."""
    now = now.astimezone(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


SNAPSHOT_FILENAME_FORMAT = "%Y-%m-%d_%H-%M.json"


def make_snapshot_filename(now: datetime) -> str:
    # résolution à la minute : deux snapshots dans la même minute ont le même nom
    now = now.astimezone(timezone.utc)
    return now.strftime(SNAPSHOT_FILENAME_FORMAT)


def to_json(obj) -> str:
    return json.dumps(obj, ensure_ascii=False, indent=2)
