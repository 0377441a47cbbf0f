"""Settings and runtime-adjustable configuration for the API layer."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Set

from pydantic_settings import BaseSettings

from .. import config as _engine_cfg

logger = logging.getLogger(__name__)

# Keys that may be patched at runtime via the /api/config endpoint.
_ADJUSTABLE_KEYS: Set[str] = {
    "AUTO_DISCOVERY_ENABLED",
    "AUTO_DISCOVERY_IDLE_MINUTES",
    "AUTO_DISCOVERY_INTERVAL_HOURS",
    "AUTO_DISCOVERY_PAGES",
    "AUTO_DISCOVERY_MAX_JOBS",
    "FETCH_MAX_CONCURRENCY",
    "JOB_RETENTION_DAYS",
}

# Semantic validators: key -> (validator_fn, human-readable description).
# Validator returns True if the value is acceptable.
CONFIG_VALIDATORS: Dict[str, tuple[Callable[[Any], bool], str]] = {
    "AUTO_DISCOVERY_IDLE_MINUTES": (
        lambda v: 0 <= v <= 24 * 60,
        "Must be between 0 and 1440",
    ),
    "AUTO_DISCOVERY_INTERVAL_HOURS": (
        lambda v: 1 <= v <= 24 * 30,
        "Must be between 1 and 720",
    ),
    "AUTO_DISCOVERY_PAGES": (
        lambda v: 1 <= v <= 50,
        "Must be between 1 and 50",
    ),
    "AUTO_DISCOVERY_MAX_JOBS": (
        lambda v: 0 <= v <= 1000,
        "Must be between 0 (unlimited) and 1000",
    ),
    "FETCH_MAX_CONCURRENCY": (
        lambda v: 1 <= v <= 32,
        "Must be between 1 and 32",
    ),
    "JOB_RETENTION_DAYS": (
        lambda v: 1 <= v <= 365,
        "Must be between 1 and 365",
    ),
}


class ApiSettings(BaseSettings):
    """Immutable settings loaded from environment / .env file."""

    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: str = "http://localhost:5173,http://localhost:8000"
    db_path: str = "bookrelay.db"
    log_level: str = "INFO"
    auth_enabled: bool = True
    api_token: str = ""
    # Background loops; tests switch these off to drive the services directly.
    background_tasks: bool = True

    model_config = {"env_prefix": "BOOKRELAY_API_"}


class RuntimeConfig:
    """Thin wrapper around engine ``config.py`` module-level variables.

    Provides get/patch semantics restricted to the adjustable whitelist.
    """

    def __init__(self) -> None:
        self._cfg = _engine_cfg

    def get_adjustable(self) -> Dict[str, Any]:
        """Return the current value of every adjustable key."""
        out: Dict[str, Any] = {}
        for key in sorted(_ADJUSTABLE_KEYS):
            out[key] = getattr(self._cfg, key, None)
        return out

    def patch(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Apply validated updates and return the new state.

        Raises ``KeyError`` for unknown keys and ``ValueError`` for values
        that cannot be coerced or fail validation.  Nothing is applied
        unless every update is valid.
        """
        bad = set(updates) - _ADJUSTABLE_KEYS
        if bad:
            raise KeyError(f"Keys not adjustable: {sorted(bad)}")
        staged: Dict[str, Any] = {}
        for key, value in updates.items():
            current = getattr(self._cfg, key)
            target_type = type(current)
            try:
                if target_type is bool:
                    if isinstance(value, str):
                        coerced = value.lower() in ("true", "1", "yes")
                    else:
                        coerced = bool(value)
                else:
                    coerced = target_type(value)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Cannot coerce {key}={value!r} to {target_type.__name__}") from exc
            validator = CONFIG_VALIDATORS.get(key)
            if validator is not None:
                check_fn, description = validator
                if not check_fn(coerced):
                    raise ValueError(
                        f"Invalid value for {key}: {coerced!r}. {description}"
                    )
            staged[key] = coerced
        for key, coerced in staged.items():
            setattr(self._cfg, key, coerced)
            logger.info("RuntimeConfig patched %s = %r", key, coerced)
        return self.get_adjustable()
