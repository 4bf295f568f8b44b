"""
Central configuration for the inventory engine.

All paths, feature flags, and defaults are defined here.
Override via environment variables or by passing a Config instance directly.

Settings priority (highest wins):
  1. Environment variables
  2. config/engine_settings.json  (admin-editable, persisted)
  3. Hardcoded defaults in this file
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

# Project root (directory containing this file)
PROJECT_ROOT = Path(__file__).parent

# Default data locations (relative to project root)
DEFAULT_DATA_DIR      = PROJECT_ROOT / "data"
DEFAULT_STOCK_DB_PATH = DEFAULT_DATA_DIR / "stock.db"

# Env var name for each runtime-tunable setting
_ENV_NAMES = {
    "default_currency":      "DEFAULT_CURRENCY",
    "expiring_soon_days":    "EXPIRING_SOON_DAYS",
    "batch_tracking":        "BATCH_TRACKING",
    "cost_averaging":        "COST_AVERAGING",
    "per_shop_queues":       "PER_SHOP_QUEUES",
    "po_list_limit":         "PO_LIST_LIMIT",
}


def _env_flag(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() != "false"


@dataclass
class Config:
    # --- Storage ---
    # Per-shop JSON documents live under data_dir/<shop>/
    data_dir: Path = field(
        default_factory=lambda: Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    )
    stock_db_path: Path = field(
        default_factory=lambda: Path(os.getenv("STOCK_DB_PATH", str(DEFAULT_STOCK_DB_PATH)))
    )
    pretty_json: bool = True        # Indent persisted documents for human inspection

    # --- Purchase orders ---
    default_currency: str = field(
        default_factory=lambda: os.getenv("DEFAULT_CURRENCY", "EUR")
    )
    po_list_limit: int = field(
        default_factory=lambda: int(os.getenv("PO_LIST_LIMIT", "100"))
    )

    # --- Lots ---
    expiring_soon_days: int = field(
        default_factory=lambda: int(os.getenv("EXPIRING_SOON_DAYS", "30"))
    )

    # --- Capability flags (decided once when the engine is built) ---
    # batch_tracking=False  → receipts update stock/CMP only, no lots are written
    # cost_averaging=False  → receipts never move the average cost
    batch_tracking: bool = field(default_factory=lambda: _env_flag("BATCH_TRACKING"))
    cost_averaging: bool = field(default_factory=lambda: _env_flag("COST_AVERAGING"))

    # --- Concurrency ---
    # True  → one serial queue per shop
    # False → a single global queue for every shop
    per_shop_queues: bool = field(default_factory=lambda: _env_flag("PER_SHOP_QUEUES"))

    def __post_init__(self) -> None:
        """Overlay runtime-tunable settings from engine_settings.json if present."""
        config_dir = Path(os.getenv("CONFIG_DIR", str(PROJECT_ROOT / "config")))
        settings_file = config_dir / "engine_settings.json"
        if not settings_file.exists():
            return
        _type_map: dict[str, type] = {
            "default_currency":    str,
            "expiring_soon_days":  int,
            "batch_tracking":      bool,
            "cost_averaging":      bool,
            "per_shop_queues":     bool,
            "po_list_limit":       int,
        }
        try:
            with open(settings_file, encoding="utf-8") as f:
                overrides = {k: v for k, v in json.load(f).items() if not k.startswith("_")}
            for key, val in overrides.items():
                # Environment variables still win over the JSON file
                if key in _type_map and os.getenv(_ENV_NAMES[key]) is None:
                    setattr(self, key, _type_map[key](val))
        except (OSError, ValueError) as exc:
            logger.warning("Failed to load engine_settings.json: %s", exc)

    def ensure_data_dir(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.stock_db_path.parent.mkdir(parents=True, exist_ok=True)
