"""
Run configuration for the points rebuild.

All parameters are resolved once from environment-style input into an
immutable JobConfiguration. Numeric options are floored and clamped to a
minimum; anything unparseable falls back to the default.
"""

import math
import os
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional

from .env import first_env


class RebuildError(Exception):
    """Base class for all errors that abort a rebuild run."""
    pass


class ConfigError(RebuildError):
    """Raised when required configuration is missing or invalid."""
    pass


BASE_URL_KEYS = ("POINTS_API_BASE", "VITE_API_BASE", "NEXT_PUBLIC_API_BASE")
TOKEN_KEYS = ("POINTS_INGEST_TOKEN", "CRON_SECRET")
SEASON_KEYS = ("POINTS_SEASON_ID", "VITE_POINTS_SEASON_ID")

TRUTHY = {"1", "true"}


def _parse_int(raw: Any, default: Optional[int], minimum: int) -> Optional[int]:
    """Floor a numeric env value and clamp it to `minimum`."""
    if raw is None or str(raw).strip() == "":
        return default
    try:
        value = float(str(raw).strip())
    except ValueError:
        return default
    if not math.isfinite(value):
        return default
    return max(minimum, int(math.floor(value)))


def _parse_flag(raw: Any) -> bool:
    return str(raw or "").strip().lower() in TRUTHY


def normalize_base(value: str) -> str:
    return str(value or "").rstrip("/")


@dataclass(frozen=True)
class JobConfiguration:
    """Resolved parameters for a single rebuild run."""

    base_url: str
    token: str
    season_id: str = ""
    recalc_limit: int = 500
    max_ingest_rounds: int = 240
    max_call_retries: int = 8
    ingest_window_seconds: Optional[int] = None
    call_timeout_ms: int = 45000
    retry_base_delay_ms: int = 3000
    ingest_round_delay_ms: int = 1200
    skip_reset: bool = False
    skip_ingest: bool = False
    recalc_fast: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "JobConfiguration":
        """
        Build a configuration from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)

        Raises:
            ConfigError: If the base URL or bearer token is missing
        """
        env = os.environ if environ is None else environ

        base_url = normalize_base(first_env(env, *BASE_URL_KEYS))
        token = first_env(env, *TOKEN_KEYS)
        if not base_url:
            raise ConfigError(
                "Missing POINTS_API_BASE (example: https://your-app.vercel.app)."
            )
        if not token:
            raise ConfigError("Missing POINTS_INGEST_TOKEN (or CRON_SECRET).")

        return cls(
            base_url=base_url,
            token=token,
            season_id=first_env(env, *SEASON_KEYS),
            recalc_limit=_parse_int(env.get("POINTS_RECALC_LIMIT"), 500, 1),
            max_ingest_rounds=_parse_int(env.get("POINTS_MAX_INGEST_ROUNDS"), 240, 1),
            max_call_retries=_parse_int(env.get("POINTS_CALL_MAX_RETRIES"), 8, 0),
            ingest_window_seconds=_parse_int(env.get("POINTS_INGEST_WINDOW_SECONDS"), None, 60),
            call_timeout_ms=_parse_int(env.get("POINTS_CALL_TIMEOUT_MS"), 45000, 1000),
            retry_base_delay_ms=_parse_int(env.get("POINTS_CALL_RETRY_BASE_MS"), 3000, 100),
            ingest_round_delay_ms=_parse_int(env.get("POINTS_INGEST_ROUND_DELAY_MS"), 1200, 0),
            skip_reset=_parse_flag(env.get("POINTS_SKIP_RESET")),
            skip_ingest=_parse_flag(env.get("POINTS_SKIP_INGEST")),
            recalc_fast=_parse_flag(env.get("POINTS_RECALC_FAST")),
        )

    def with_overrides(self, **changes: Any) -> "JobConfiguration":
        """Return a copy with the non-None `changes` applied."""
        changes = {k: v for k, v in changes.items() if v is not None}
        if not changes:
            return self
        return replace(self, **changes)

    @property
    def call_timeout(self) -> float:
        return self.call_timeout_ms / 1000.0

    @property
    def retry_base_delay(self) -> float:
        return self.retry_base_delay_ms / 1000.0

    @property
    def ingest_round_delay(self) -> float:
        return self.ingest_round_delay_ms / 1000.0

    def describe(self) -> Dict[str, Any]:
        """Loggable view of the configuration with the token masked."""
        masked = self.token[:4] + "***" if len(self.token) > 8 else "***"
        return {
            "base_url": self.base_url,
            "token": masked,
            "season_id": self.season_id or None,
            "recalc_limit": self.recalc_limit,
            "max_ingest_rounds": self.max_ingest_rounds,
            "max_call_retries": self.max_call_retries,
            "ingest_window_seconds": self.ingest_window_seconds,
            "call_timeout_ms": self.call_timeout_ms,
            "retry_base_delay_ms": self.retry_base_delay_ms,
            "ingest_round_delay_ms": self.ingest_round_delay_ms,
            "skip_reset": self.skip_reset,
            "skip_ingest": self.skip_ingest,
            "recalc_fast": self.recalc_fast,
        }
