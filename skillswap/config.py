"""Configuration management for the SkillSwap service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

import yaml

from .database import resolve_database_path

DEFAULT_TOKEN_TTL_SECONDS = 7 * 24 * 60 * 60
DEFAULT_PAGE_SIZE = 6
MAX_PAGE_SIZE = 50

_ENV_PREFIX = "SKILLSWAP_"


def _env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _split_origins(value: object) -> Tuple[str, ...]:
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = list(value or [])
    return tuple(str(item).strip() for item in items if str(item).strip())


@dataclass(frozen=True)
class Settings:
    """Runtime settings, resolved from defaults, a YAML file and the environment."""

    database_path: Path = field(default_factory=lambda: resolve_database_path(None))
    token_secret: Optional[str] = None
    token_ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS
    cors_origins: Tuple[str, ...] = ("http://localhost:3000",)
    default_page_size: int = DEFAULT_PAGE_SIZE
    log_level: str = "INFO"
    debug: bool = False

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "Settings":
        """Create :class:`Settings` from raw mapping data, e.g. a parsed YAML file."""

        known = {item.name for item in fields(Settings)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        values: Dict[str, object] = {}
        if data.get("database_path"):
            raw_path = Path(str(data["database_path"])).expanduser()
            if not raw_path.is_absolute() and base_path is not None:
                raw_path = base_path / raw_path
            values["database_path"] = raw_path.resolve(strict=False)
        if data.get("token_secret") is not None:
            values["token_secret"] = str(data["token_secret"])
        if data.get("token_ttl_seconds") is not None:
            values["token_ttl_seconds"] = int(data["token_ttl_seconds"])  # type: ignore[arg-type]
        if data.get("cors_origins") is not None:
            values["cors_origins"] = _split_origins(data["cors_origins"])
        if data.get("default_page_size") is not None:
            values["default_page_size"] = int(data["default_page_size"])  # type: ignore[arg-type]
        if data.get("log_level") is not None:
            values["log_level"] = str(data["log_level"]).upper()
        if data.get("debug") is not None:
            values["debug"] = bool(data["debug"])

        settings = Settings(**values)  # type: ignore[arg-type]
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.token_ttl_seconds <= 0:
            raise ValueError("token_ttl_seconds must be positive")
        if not 1 <= self.default_page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"default_page_size must be between 1 and {MAX_PAGE_SIZE}")


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the optional YAML configuration file."""
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (Path(__file__).resolve().parent.parent / "config" / "settings.yaml").resolve(strict=False)
    return candidate


def load_settings(
    config_path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Load settings from YAML (if present) and apply ``SKILLSWAP_*`` overrides."""

    env = os.environ if environ is None else environ
    path = config_path or resolve_config_path(env.get(f"{_ENV_PREFIX}CONFIG"))

    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
        if not isinstance(raw, dict):
            raise ValueError("Configuration file must contain a mapping at the top level")
        settings = Settings.from_dict(raw, base_path=path.parent)
    else:
        settings = Settings()

    overrides: Dict[str, object] = {}
    if env.get(f"{_ENV_PREFIX}DB_PATH"):
        overrides["database_path"] = resolve_database_path(env[f"{_ENV_PREFIX}DB_PATH"])
    if env.get(f"{_ENV_PREFIX}TOKEN_SECRET"):
        overrides["token_secret"] = env[f"{_ENV_PREFIX}TOKEN_SECRET"]
    if env.get(f"{_ENV_PREFIX}TOKEN_TTL_SECONDS"):
        overrides["token_ttl_seconds"] = int(env[f"{_ENV_PREFIX}TOKEN_TTL_SECONDS"])
    if env.get(f"{_ENV_PREFIX}CORS_ORIGINS") is not None:
        overrides["cors_origins"] = _split_origins(env[f"{_ENV_PREFIX}CORS_ORIGINS"])
    if env.get(f"{_ENV_PREFIX}PAGE_SIZE"):
        overrides["default_page_size"] = int(env[f"{_ENV_PREFIX}PAGE_SIZE"])
    if env.get(f"{_ENV_PREFIX}LOG_LEVEL"):
        overrides["log_level"] = env[f"{_ENV_PREFIX}LOG_LEVEL"].upper()
    if env.get(f"{_ENV_PREFIX}DEBUG") is not None:
        overrides["debug"] = _env_flag(env.get(f"{_ENV_PREFIX}DEBUG"))

    if overrides:
        settings = replace(settings, **overrides)
        settings.validate()
    return settings


__all__ = ["Settings", "load_settings", "resolve_config_path"]
