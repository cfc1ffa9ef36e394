"""
Settings for ledger_watch.

Pydantic models describe every section (RPC endpoint, polling, holdings
display, identity, logging) with their bounds. `load_settings` reads an
optional YAML file, layers `LEDGER_WATCH_*` environment variables on top
(`__` separates nesting levels, e.g. `LEDGER_WATCH_RPC__URL`) and validates
the result. Every failure surfaces as `ConfigError`.
"""

import os
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from ledger_watch.core.mathutils import CHART_COLORS, RECENT_BLOCK_WINDOW

ENV_PREFIX = "LEDGER_WATCH"

# --- Custom Exceptions ---

class ConfigError(Exception):
    """Custom exception for configuration-related errors."""
    pass

# --- Pydantic Models for Configuration Sections ---

class RpcSettings(BaseModel):
    """JSON-RPC endpoint of the chain node."""
    url: str = "https://mainnet.opnet.org"
    timeout_sec: float = Field(10.0, gt=0)

    @field_validator('url')
    def url_must_be_http(cls, v):
        if not v.startswith(('http://', 'https://')):
            raise ValueError(f"RPC url must start with http:// or https://, got '{v}'")
        return v

class PulseSettings(BaseModel):
    """Chain head polling."""
    poll_interval_ms: int = Field(10_000, gt=0)
    pulse_duration_ms: int = Field(1_000, gt=0)
    recent_blocks: int = Field(RECENT_BLOCK_WINDOW, ge=1, le=RECENT_BLOCK_WINDOW)

class HoldingsSettings(BaseModel):
    """Portfolio tracking and display."""
    tracked: List[str] = Field(default_factory=list)
    palette: List[str] = Field(default_factory=lambda: list(CHART_COLORS), min_length=1)
    portfolio_fraction_digits: int = Field(4, ge=0)
    explorer_fraction_digits: int = Field(6, ge=0)

class IdentitySettings(BaseModel):
    """Address used for balance queries; None means no wallet is connected."""
    address: Optional[str] = None

class LoggingSettings(BaseModel):
    """Settings for logging configuration."""
    level: str = Field("INFO", description="The logging level, e.g., DEBUG, INFO, WARNING.")
    file: Optional[str] = None

class Settings(BaseModel):
    """The root Pydantic model for the entire configuration."""
    rpc: RpcSettings = RpcSettings()
    pulse: PulseSettings = PulseSettings()
    holdings: HoldingsSettings = HoldingsSettings()
    identity: IdentitySettings = IdentitySettings()
    logging: LoggingSettings = LoggingSettings()

# Keys whose env values are taken verbatim (a numeric-looking address must stay a string)
_VERBATIM_KEYS = ('address', 'url')


def _load_config_from_yaml(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        raise ConfigError(f"Configuration file not found at '{path}'")
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML file '{path}': {e}") from e


def _coerce_env_value(raw: str) -> Any:
    """JSON-decode lists, objects, booleans, null and numbers; keep anything else as text."""
    looks_structured = raw[:1] in ('[', '{') or raw.lower() in ('true', 'false', 'null')
    looks_numeric = raw.replace('.', '', 1).isdigit()
    if not (looks_structured or looks_numeric):
        return raw
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _get_env_overrides(prefix: str = ENV_PREFIX) -> Dict[str, Any]:
    """Nested overrides from the environment.

    ``LEDGER_WATCH_PULSE__POLL_INTERVAL_MS=5000`` -> ``{'pulse': {'poll_interval_ms': 5000}}``
    """
    overrides: Dict[str, Any] = {}
    marker = prefix + "_"
    for key, raw in os.environ.items():
        if not key.startswith(marker):
            continue
        path = key[len(marker):].lower().split("__")
        value = raw if path[-1] in _VERBATIM_KEYS else _coerce_env_value(raw)
        node = overrides
        for section in path[:-1]:
            node = node.setdefault(section, {})
        node[path[-1]] = value
    return overrides


def _merge_configs(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Deep-merge ``overrides`` into ``base``; non-mapping values replace wholesale."""
    for key, value in overrides.items():
        current = base.get(key)
        base[key] = _merge_configs(current, value) if isinstance(value, dict) and isinstance(current, dict) else value
    return base


def _describe_validation_error(err: ValidationError) -> str:
    lines = [f"Configuration validation failed with {err.error_count()} error(s):"]
    for item in err.errors():
        where = ".".join(str(p) for p in item['loc']) or "<root>"
        lines.append(f"  - {where}: {item['msg']}")
    return "\n".join(lines)


def load_settings(path: Optional[str] = "settings.yaml") -> Settings:
    """
    Load settings from ``path`` (YAML), apply ``LEDGER_WATCH_*`` environment
    overrides and validate the result.

    Args:
        path: YAML file to read, or None to use defaults plus environment only.

    Returns:
        A validated `Settings` object.

    Raises:
        ConfigError: missing or unparsable file, non-mapping YAML, or a value
            rejected by the models.
    """
    if path is None:
        raw_config: Dict[str, Any] = {}
    else:
        logger.info("Loading settings from '{}'", path)
        raw_config = _load_config_from_yaml(Path(path))
        if not isinstance(raw_config, dict):
            raise ConfigError(f"YAML file '{path}' must contain a mapping.")

    merged = _merge_configs(raw_config, _get_env_overrides())
    try:
        settings = Settings.model_validate(merged)
    except ValidationError as e:
        logger.error(_describe_validation_error(e))
        raise ConfigError("Failed to validate settings.") from e
    logger.debug("Settings validated (rpc={}, poll={}ms)", settings.rpc.url, settings.pulse.poll_interval_ms)
    return settings
