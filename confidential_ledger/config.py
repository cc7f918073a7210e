"""Configuration loader: reads an optional YAML file, interpolates env vars, applies overrides."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import find_dotenv, load_dotenv

from .core import DEFAULT_ESCROW_MIN_BALANCE, U64_MAX

logger = logging.getLogger(__name__)

ENV_PREFIX = "CONFLEDGER_"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# ---------------------------------------------------------------------------
# Frozen config dataclass
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LendingConfig:
    native_asset: str = "LAMPORTS"
    native_decimals: int = 9
    # Retained by the pool escrow when a liquidation sweeps it
    escrow_min_balance: int = DEFAULT_ESCROW_MIN_BALANCE
    position_storage_deposit: int = 0
    allow_unsigned_borrow_proofs: bool = True
    proof_binding_key: Optional[bytes] = None
    log_level: str = "INFO"

    def __post_init__(self):
        _validate(self)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------


def _to_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def _to_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    try:
        return int(str(value).replace("_", "")) if isinstance(value, str) else int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


def _to_key(value: Any) -> Optional[bytes]:
    if value is None or value == "":
        return None
    if isinstance(value, bytes):
        return value
    try:
        return bytes.fromhex(str(value))
    except ValueError:
        raise ValueError("proof_binding_key must be a hex string") from None


_COERCE = {
    "native_asset": lambda name, v: str(v),
    "native_decimals": _to_int,
    "escrow_min_balance": _to_int,
    "position_storage_deposit": _to_int,
    "allow_unsigned_borrow_proofs": _to_bool,
    "proof_binding_key": lambda name, v: _to_key(v),
    "log_level": lambda name, v: str(v).upper(),
}


def _build(raw: Dict[str, Any]) -> Dict[str, Any]:
    known = {f.name for f in fields(LendingConfig)}
    values: Dict[str, Any] = {}
    for key, value in raw.items():
        if key not in known:
            logger.warning("Ignoring unknown config key %r", key)
            continue
        if value is None:
            continue
        values[key] = _COERCE[key](key, value)
    return values


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for f in fields(LendingConfig):
        env_name = ENV_PREFIX + f.name.upper()
        if env_name in os.environ:
            overrides[f.name] = os.environ[env_name]
    return overrides


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: Union[str, Path, None] = None) -> LendingConfig:
    """Load lending configuration from YAML + .env.

    Precedence (lowest to highest): dataclass defaults, the YAML file
    (``${VAR}`` references interpolated), then ``CONFLEDGER_<FIELD>``
    environment variables.

    Args:
        config_path: Path to a YAML file. When None only defaults and the
            environment are used.

    Raises:
        FileNotFoundError: If config_path is given but does not exist
        ValueError: If any value is invalid
    """
    load_dotenv(find_dotenv(usecwd=True))

    raw: Dict[str, Any] = {}
    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        with open(config_path) as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")
        raw = _interpolate_env(loaded)

    values = _build(raw)
    values.update(_build(_env_overrides()))
    cfg = LendingConfig(**values)

    if config_path is not None:
        logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: LendingConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.native_asset:
        raise ValueError("native_asset cannot be empty")
    if not 0 <= cfg.native_decimals <= 18:
        raise ValueError(f"native_decimals must be in 0..18, got {cfg.native_decimals}")
    if not 0 <= cfg.escrow_min_balance <= U64_MAX:
        raise ValueError(f"escrow_min_balance must fit in u64, got {cfg.escrow_min_balance}")
    if not 0 <= cfg.position_storage_deposit <= U64_MAX:
        raise ValueError(f"position_storage_deposit must fit in u64, got {cfg.position_storage_deposit}")
    if cfg.log_level not in _LOG_LEVELS:
        raise ValueError(f"log_level must be one of {_LOG_LEVELS}, got {cfg.log_level!r}")
