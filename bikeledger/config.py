"""
bikeledger.config — YAML Configuration Loader
==============================================

Reads ``config.yaml`` for soft settings (display unit, paging and
transaction retry tuning).  Secrets and connection strings stay in the
environment (``DATABASE_URL``, ``JWT_SECRET``), loaded from ``.env``.

Usage::

    from bikeledger.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.default_unit)      # Unit.KM
    print(cfg.tx_max_attempts)   # 5
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from bikeledger.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from bikeledger.engine.units import Unit, parse_unit
from bikeledger.errors import InvalidEnum


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class BikeLedgerConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Presentation
    default_unit: Unit = Unit.KM

    # API
    api_port: int = 8000
    default_page_size: int = DEFAULT_PAGE_SIZE
    max_page_size: int = MAX_PAGE_SIZE

    # Transaction retry on serialization conflicts
    tx_max_attempts: int = 5
    tx_backoff_seconds: float = 0.05
    tx_max_backoff_seconds: float = 1.0


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> BikeLedgerConfig:
    """Read *path* and return a :class:`BikeLedgerConfig` instance.

    Keys missing from the file fall back to the dataclass defaults.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If a value is out of range or of the wrong type.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    defaults = BikeLedgerConfig()
    try:
        cfg = BikeLedgerConfig(
            default_unit=parse_unit(raw.get("default_unit"), defaults.default_unit),
            api_port=int(raw.get("api_port", defaults.api_port)),
            default_page_size=int(raw.get("default_page_size", defaults.default_page_size)),
            max_page_size=int(raw.get("max_page_size", defaults.max_page_size)),
            tx_max_attempts=int(raw.get("tx_max_attempts", defaults.tx_max_attempts)),
            tx_backoff_seconds=float(
                raw.get("tx_backoff_seconds", defaults.tx_backoff_seconds)
            ),
            tx_max_backoff_seconds=float(
                raw.get("tx_max_backoff_seconds", defaults.tx_max_backoff_seconds)
            ),
        )
    except (TypeError, ValueError, InvalidEnum) as exc:
        raise ValueError(f"Invalid value in {config_path}: {exc}") from exc

    if cfg.tx_max_attempts < 1:
        raise ValueError("tx_max_attempts must be at least 1")
    if not 1 <= cfg.default_page_size <= cfg.max_page_size:
        raise ValueError("default_page_size must be between 1 and max_page_size")
    if cfg.tx_backoff_seconds < 0 or cfg.tx_max_backoff_seconds < 0:
        raise ValueError("backoff values must not be negative")
    return cfg
