from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from .sources.sheets import DEFAULT_CSV_URL

logger = logging.getLogger("dealerwatch.config")

DEFAULT_CONFIG_FILE = "dealerwatch.yaml"

# variable d'env -> champ de Settings
ENV_OVERRIDES = {
    "DEALERWATCH_SHEET_URL": "sheet_url",
    "DEALERWATCH_DATA_DIR": "data_dir",
    "DEALERWATCH_BACKEND": "backend",
}


@dataclass(frozen=True)
class Settings:
    sheet_url: str = DEFAULT_CSV_URL
    data_dir: str = "data"
    backend: str = "file"            # file / sqlite / memory
    retention_days: int = 90
    check_interval: int = 3600       # secondes entre deux vérifications du scheduler
    timeout: float = 15.0
    active_alert_threshold: int = 10
    expired_high_threshold: int = 30


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        logger.warning("config file not found at %s", path)
        return {}
    except (OSError, yaml.YAMLError) as e:
        logger.error("Failed to load config %s: %s", path, e)
        return {}
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.error("Config %s is not a mapping, ignoring it", path)
        return {}
    return data


def _coerce(name: str, value: Any, default: Any) -> Any:
    try:
        return type(default)(value)
    except (TypeError, ValueError):
        logger.warning("Invalid value for %s: %r, keeping %r", name, value, default)
        return default


def load_settings(path: str | os.PathLike | None = None) -> Settings:
    """
    Charge la configuration :
    1. fichier YAML (`path`, sinon $DEALERWATCH_CONFIG, sinon ./dealerwatch.yaml s'il existe)
    2. surcharges par variables d'environnement
    """
    settings = Settings()
    known = {f.name: getattr(settings, f.name) for f in fields(Settings)}

    cfg_path = path or os.getenv("DEALERWATCH_CONFIG")
    if cfg_path is None and Path(DEFAULT_CONFIG_FILE).is_file():
        cfg_path = DEFAULT_CONFIG_FILE

    values: dict[str, Any] = {}
    if cfg_path:
        for key, value in _read_yaml(Path(cfg_path)).items():
            if key not in known:
                logger.warning("Unknown config key %r ignored", key)
                continue
            values[key] = _coerce(key, value, known[key])

    for env_name, key in ENV_OVERRIDES.items():
        env_value = os.getenv(env_name)
        if env_value:
            values[key] = env_value

    return replace(settings, **values)
