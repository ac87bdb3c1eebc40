# Planner: configuration
# Override paths and server settings via planner.yaml or environment variables.

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

logger = logging.getLogger(__name__)

CONFIG_PATH = Path.cwd() / "planner.yaml"


@dataclass
class Config:
    """Runtime configuration for the planner API."""

    # Storage
    db_path: str = "~/.local/share/planner/planner.db"

    # Server
    host: str = "127.0.0.1"
    port: int = 3000

    # Calendar: IANA zone name ("" = system local) and first day of week (0 = Monday)
    timezone: str = ""
    week_start: int = 0

    # Views
    upcoming_limit: int = 5

    log_level: str = "INFO"

    def resolve(self):
        """Expand ~, apply environment overrides and drop invalid values."""
        env_db = os.environ.get("PLANNER_DB")
        if env_db:
            self.db_path = env_db
        self.db_path = str(Path(self.db_path).expanduser())

        if self.timezone:
            try:
                ZoneInfo(self.timezone)
            except (ZoneInfoNotFoundError, ValueError):
                logger.warning(f"Unknown timezone {self.timezone!r}, using system local time")
                self.timezone = ""

        try:
            self.week_start = int(self.week_start)
        except (TypeError, ValueError):
            self.week_start = -1
        if not 0 <= self.week_start <= 6:
            logger.warning(f"week_start must be 0..6, got {self.week_start}; using Monday")
            self.week_start = 0
        return self

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML file, falling back to defaults."""
        cfg_path = Path(path or os.environ.get("PLANNER_CONFIG") or CONFIG_PATH)
        known = {f.name for f in fields(cls)}
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                cfg = cls(**{k: v for k, v in data.items() if k in known})
            except (yaml.YAMLError, OSError, TypeError, AttributeError) as e:
                logger.warning(f"Could not read {cfg_path}: {e}; using defaults")
                cfg = cls()
        else:
            cfg = cls()
        return cfg.resolve()
