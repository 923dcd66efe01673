"""
Typed configuration for the EOD job, ingestion and the read API.

``load_config()`` layers, later wins:

  config/default.toml   committed defaults
  config/local.toml     optional, untracked overrides
  .env                 loaded into the environment (never overrides it)
  environment          ``TOOTOO_*``, ``DATA_PROVIDER_BASE_URL``, ``KR_MARKET_HOLIDAYS``

The EOD job, the ingestion stages and the read API all receive an
``AppConfig`` instance. API keys are NOT part of the config; clients read
``OPENAI_API_KEY`` / ``ANTHROPIC_API_KEY`` / ``DATA_PROVIDER_API_KEY`` from
the environment when they are constructed.
"""

from __future__ import annotations

import os
import re
import tomllib
from datetime import date
from pathlib import Path
from typing import Any, Callable, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

# ── Sub-config models ─────────────────────────────────────────────────────────

UNIVERSE_SIZE_MIN = 200
UNIVERSE_SIZE_MAX = 500

VALID_LLM_PROVIDERS = frozenset({"openai", "anthropic", "stub"})
DEFAULT_LLM_MODELS = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-sonnet-4-5",
    "stub": "stub",
}
VALID_NON_TRADING_DAY_POLICIES = frozenset({"calendar", "previous"})

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class DatabaseConfig(BaseModel):
    """Snapshot store location and SQLite tuning."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/tootoo.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    # Directory holding the per-date EOD lock files. Empty → "<db dir>/locks".
    lock_dir: str = ""

    def resolved_lock_dir(self) -> str:
        """Return the directory used for as-of-date lock files."""
        if self.lock_dir:
            return self.lock_dir
        if self.db_path == ":memory:":
            return str(Path("data") / "locks")
        return str(Path(self.db_path).parent / "locks")


class MarketConfig(BaseModel):
    """Exchange calendar used to resolve the as-of date."""

    model_config = ConfigDict(frozen=True)

    utc_offset_hours: int = 9           # KST, no DST
    close_cutoff: str = "16:00"         # local time; before this → previous day
    non_trading_day_policy: str = "calendar"
    holidays: list[date] = []

    @field_validator("close_cutoff")
    @classmethod
    def validate_close_cutoff(cls, v: str) -> str:
        if not _HHMM_RE.match(v):
            raise ValueError(f"close_cutoff must be HH:MM (24h), got '{v}'.")
        return v

    @field_validator("non_trading_day_policy")
    @classmethod
    def validate_policy(cls, v: str) -> str:
        if v not in VALID_NON_TRADING_DAY_POLICIES:
            raise ValueError(
                f"non_trading_day_policy must be one of "
                f"{sorted(VALID_NON_TRADING_DAY_POLICIES)}, got '{v}'."
            )
        return v

    @field_validator("utc_offset_hours")
    @classmethod
    def validate_offset(cls, v: int) -> int:
        if not -12 <= v <= 14:
            raise ValueError(f"utc_offset_hours must be in [-12, 14], got {v}.")
        return v


class UniverseConfig(BaseModel):
    """Candidate universe construction parameters."""

    model_config = ConfigDict(frozen=True)

    max_candidates: int = 200
    min_candidates: int = UNIVERSE_SIZE_MIN
    min_trading_value: Optional[float] = None
    use_stub: bool = False

    @field_validator("max_candidates")
    @classmethod
    def validate_max_candidates(cls, v: int) -> int:
        if not UNIVERSE_SIZE_MIN <= v <= UNIVERSE_SIZE_MAX:
            raise ValueError(
                f"max_candidates must be in [{UNIVERSE_SIZE_MIN}, {UNIVERSE_SIZE_MAX}], got {v}."
            )
        return v

    @model_validator(mode="after")
    def validate_bounds(self) -> "UniverseConfig":
        if self.min_candidates < 1:
            raise ValueError("min_candidates must be >= 1.")
        if self.min_candidates > self.max_candidates:
            raise ValueError(
                f"min_candidates ({self.min_candidates}) must be <= "
                f"max_candidates ({self.max_candidates})."
            )
        return self


class LlmConfig(BaseModel):
    """Generative backend selection and request limits."""

    model_config = ConfigDict(frozen=True)

    provider: str = "openai"
    model: str = ""                     # empty → provider default
    base_url: str = ""                  # empty → backend default
    timeout_seconds: float = 120.0
    max_tokens: int = 8192
    temperature: float = 0.0
    item_count: Optional[int] = 20
    require_candidate_tickers: bool = True
    anthropic_version: str = "2023-06-01"

    @model_validator(mode="before")
    @classmethod
    def default_model_for_provider(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("model"):
            provider = str(data.get("provider", "openai")).lower()
            data = {**data, "model": DEFAULT_LLM_MODELS.get(provider, "")}
        return data

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        v = v.lower()
        if v not in VALID_LLM_PROVIDERS:
            raise ValueError(
                f"Unknown LLM provider '{v}'. Must be one of {sorted(VALID_LLM_PROVIDERS)}."
            )
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"timeout_seconds must be > 0, got {v}.")
        return v

    @field_validator("item_count")
    @classmethod
    def validate_item_count(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and not 1 <= v <= 20:
            raise ValueError(f"item_count must be in [1, 20], got {v}.")
        return v


class IngestConfig(BaseModel):
    """External feature provider (ingestion collaborator) settings."""

    model_config = ConfigDict(frozen=True)

    base_url: str = ""
    features_path: str = "/v1/stock_features_daily"
    timeout_seconds: float = 30.0
    retries: int = 3
    upsert_batch_size: int = 200
    stub_size: int = 500

    @field_validator("retries", "upsert_batch_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"value must be >= 1, got {v}.")
        return v


class ApiConfig(BaseModel):
    """Read API bind settings."""

    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = 3000


class LoggingConfig(BaseModel):
    """Where log records go and in which format."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/tootoo.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"logging.level must be one of {sorted(_LOG_LEVELS)}, got '{v}'.")
        return level


class AppConfig(BaseModel):
    """Merged application configuration.

    Constructed by ``load_config()`` which merges TOML + .env + environment.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    market: MarketConfig = MarketConfig()
    universe: UniverseConfig = UniverseConfig()
    llm: LlmConfig = LlmConfig()
    ingest: IngestConfig = IngestConfig()
    api: ApiConfig = ApiConfig()
    logging: LoggingConfig = LoggingConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

def _truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _holiday_list(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


# env var → (section, key, parser). ``section=None`` targets the top level.
_ENV_OVERRIDES: dict[str, tuple[Optional[str], str, Callable[[str], Any]]] = {
    "TOOTOO_DB_PATH":           ("database", "db_path", str),
    "TOOTOO_LOG_LEVEL":         ("logging", "level", str),
    "TOOTOO_DEBUG":             (None, "debug", _truthy),
    "TOOTOO_LLM_PROVIDER":      ("llm", "provider", str),
    "TOOTOO_LLM_MODEL":         ("llm", "model", str),
    "TOOTOO_USE_STUB_UNIVERSE": ("universe", "use_stub", _truthy),
    "TOOTOO_UNIVERSE_SIZE":     ("universe", "max_candidates", int),
    "TOOTOO_MIN_TRADING_VALUE": ("universe", "min_trading_value", float),
    "DATA_PROVIDER_BASE_URL":   ("ingest", "base_url", str),
}


def _project_root() -> Path:
    """Nearest ancestor of this package that holds ``pyproject.toml``."""
    here = Path(__file__).resolve().parent
    for parent in (here, *here.parents):
        if (parent / "pyproject.toml").is_file():
            return parent
    return here.parent


def _read_toml(path: Path) -> dict[str, Any]:
    with path.open("rb") as fh:
        return tomllib.load(fh)


def _merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Overlay ``TOOTOO_*``, ``DATA_PROVIDER_BASE_URL`` and ``KR_MARKET_HOLIDAYS``.

    Holidays from the environment are appended to the configured list
    rather than replacing it.
    """
    for var, (section, key, parse) in _ENV_OVERRIDES.items():
        value = os.environ.get(var)
        if not value:
            continue
        target = raw if section is None else raw.setdefault(section, {})
        target[key] = parse(value)

    if holidays := os.environ.get("KR_MARKET_HOLIDAYS"):
        market = raw.setdefault("market", {})
        market["holidays"] = [*market.get("holidays", []), *_holiday_list(holidays)]
    return raw


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Build the ``AppConfig`` for this process.

    Args:
        config_path: TOML file to start from. Defaults to
            ``config/default.toml`` under the project root. A ``local.toml``
            next to it is merged on top when present.

    Raises:
        FileNotFoundError: ``config_path`` does not exist.
        pydantic.ValidationError: The merged values are invalid.
    """
    root = _project_root()
    load_dotenv(dotenv_path=root / ".env", override=False)

    path = Path(config_path) if config_path is not None else root / "config" / "default.toml"
    if not path.is_file():
        raise FileNotFoundError(
            f"Config file not found: {path} (create config/default.toml or pass --config)"
        )

    raw = _read_toml(path)
    local = path.with_name("local.toml")
    if local.is_file():
        raw = _merge(raw, _read_toml(local))

    raw = _apply_env_overrides(raw)

    # ``[project] debug`` is the file spelling; ``TOOTOO_DEBUG`` sets it top-level.
    project = raw.pop("project", {})
    raw.setdefault("debug", project.get("debug", False))
    return AppConfig.model_validate(raw)
