from __future__ import annotations

import errno
import logging
import os
import threading
from pathlib import Path
from typing import Any, Mapping

import yaml

from cadence.models import AppConfig, default_app_config

logger = logging.getLogger(__name__)

# Environment variable -> (section, key) it overrides in the loaded config.
ENV_OVERRIDES = {
    "CADENCE_DB_PATH": ("storage", "db_path"),
    "CADENCE_MAX_OCCURRENCES": ("scheduling", "max_occurrences"),
    "CADENCE_LOG_LEVEL": ("logging", "level"),
    "CADENCE_HOST": ("server", "host"),
    "CADENCE_PORT": ("server", "port"),
}


def _dump(config_dict: dict[str, Any], handle: Any) -> None:
    yaml.safe_dump(
        config_dict,
        handle,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )


def apply_env_overrides(config: AppConfig, environ: Mapping[str, str] | None = None) -> AppConfig:
    """Return a copy of ``config`` with non-empty ``CADENCE_*`` variables applied."""
    environ = os.environ if environ is None else environ
    data = config.to_dict()
    applied = []
    for name, (section, key) in ENV_OVERRIDES.items():
        value = str(environ.get(name) or "").strip()
        if value:
            data[section][key] = value
            applied.append(name)
    if applied:
        logger.debug("Config overridden from environment: %s", ", ".join(applied))
    return AppConfig.from_dict(data)


class ConfigManager:
    """YAML-backed application config, written with defaults on first use."""

    def __init__(self, config_path: str | os.PathLike[str]) -> None:
        self.config_path = Path(config_path)
        self._lock = threading.RLock()
        self._ensure_exists()

    def _ensure_exists(self) -> None:
        if self.config_path.exists():
            return
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        self.save(default_app_config())
        logger.info("Wrote default config to %s", self.config_path)

    def load(self) -> AppConfig:
        with self._lock:
            with self.config_path.open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
            if not isinstance(data, dict):
                raise ValueError(f"Config root must be a mapping: {self.config_path}")
            return AppConfig.from_dict(data)

    def load_effective(self, environ: Mapping[str, str] | None = None) -> AppConfig:
        """File config with environment overrides on top; never written back."""
        return apply_env_overrides(self.load(), environ)

    def save(self, config: AppConfig) -> None:
        with self._lock:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            config_dict = config.to_dict()
            tmp_path = self.config_path.with_suffix(self.config_path.suffix + ".tmp")
            with tmp_path.open("w", encoding="utf-8") as handle:
                _dump(config_dict, handle)
            try:
                tmp_path.replace(self.config_path)
            except OSError as exc:
                # Bind-mounted single files in containers cannot be atomically replaced.
                if exc.errno != errno.EBUSY:
                    raise
                with self.config_path.open("w", encoding="utf-8") as handle:
                    _dump(config_dict, handle)
                if tmp_path.exists():
                    tmp_path.unlink()
