from __future__ import annotations

import json
import math
import os
import warnings
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from .decay import DecayConfig, DecayFunction
from .errors import ConfigError
from .fusion import DEFAULT_RRF_K
from .limits import (
    DEFAULT_CANDIDATE_MULTIPLIER,
    DEFAULT_CANDIDATE_POOL_MIN,
    MAX_CANDIDATE_POOL,
)
from .semantic import DEFAULT_EMBEDDING_MODEL

DEFAULT_CONFIG_PATH = Path("~/.config/memlayer/config.json").expanduser()

CONFIG_ENV_OVERRIDES = {
    "database_path": "MEMLAYER_DATABASE_PATH",
    "embedding_model": "MEMLAYER_EMBEDDING_MODEL",
    "model_cache": "MEMLAYER_MODEL_CACHE",
    "similarity_threshold": "MEMLAYER_SIMILARITY_THRESHOLD",
    "recency_weight": "MEMLAYER_RECENCY_WEIGHT",
    "rrf_k": "MEMLAYER_RRF_K",
}

_FLOAT_KEYS = {"similarity_threshold", "recency_weight", "rrf_k", "decay_rate", "decay_offset_days"}
_INT_KEYS = {"candidate_multiplier", "candidate_pool_min"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("MEMLAYER_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ConfigError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class MemlayerConfig:
    database_path: str = "~/.memlayer/memories.db"
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    model_cache: str | None = None
    similarity_threshold: float = 0.85
    recency_weight: float = 0.3
    rrf_k: float = DEFAULT_RRF_K
    candidate_multiplier: int = DEFAULT_CANDIDATE_MULTIPLIER
    candidate_pool_min: int = DEFAULT_CANDIDATE_POOL_MIN
    decay_function: str = DecayFunction.EXPONENTIAL.value
    decay_rate: float = 1e-6
    decay_offset_days: float = 0.0

    def decay_config(self) -> DecayConfig:
        return DecayConfig(
            function=DecayFunction(self.decay_function),
            rate=self.decay_rate,
            offset_days=self.decay_offset_days,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    if isinstance(value, bool):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def load_config(path: Path | None = None) -> MemlayerConfig:
    cfg = MemlayerConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError:
            warnings.warn(
                f"Ignoring invalid config json at {config_path}", RuntimeWarning, stacklevel=2
            )
            data = {}
        if isinstance(data, dict):
            cfg = _apply_dict(cfg, data)
    cfg = _apply_dict(cfg, get_env_overrides())
    return cfg


def _apply_dict(cfg: MemlayerConfig, data: dict[str, Any]) -> MemlayerConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        if key in _FLOAT_KEYS:
            setattr(cfg, key, _parse_float(value, getattr(cfg, key), key=key))
            continue
        if key in _INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key == "model_cache" and value is not None and not str(value).strip():
            setattr(cfg, key, None)
            continue
        if value is not None:
            setattr(cfg, key, str(value))
    return cfg


def _check_unit_interval(value: float, *, key: str) -> None:
    if not math.isfinite(value) or not 0.0 <= value <= 1.0:
        raise ConfigError(f"Invalid {key}: {value} (must be between 0.0 and 1.0)")


def validate_config(cfg: MemlayerConfig) -> MemlayerConfig:
    if not cfg.database_path.strip():
        raise ConfigError("database_path cannot be empty")
    if not cfg.embedding_model.strip():
        raise ConfigError("embedding_model cannot be empty")
    _check_unit_interval(cfg.similarity_threshold, key="similarity_threshold")
    _check_unit_interval(cfg.recency_weight, key="recency_weight")
    if not math.isfinite(cfg.rrf_k) or cfg.rrf_k < 0.0:
        raise ConfigError(f"Invalid rrf_k: {cfg.rrf_k} (must be finite and >= 0)")
    if cfg.candidate_multiplier <= 0:
        raise ConfigError("candidate_multiplier must be greater than 0")
    if not 0 < cfg.candidate_pool_min <= MAX_CANDIDATE_POOL:
        raise ConfigError(
            f"candidate_pool_min must be between 1 and {MAX_CANDIDATE_POOL}"
        )
    try:
        cfg.decay_config()
    except ValueError as exc:
        raise ConfigError(f"Invalid decay settings: {exc}") from exc
    return cfg
