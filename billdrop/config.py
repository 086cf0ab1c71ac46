"""Runtime configuration for scans, read from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-haiku-4-5-20251001"
DEFAULT_RETRY_DELAYS: tuple[float, ...] = (3.0, 5.0, 8.0)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not an integer, using %d", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring %s=%r: must be positive, using %d", name, raw, default)
        return default
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not a number, using %s", name, raw, default)
        return default
    if value < 0:
        logger.warning("Ignoring %s=%r: must not be negative, using %s", name, raw, default)
        return default
    return value


def _env_delays(name: str, default: tuple[float, ...]) -> tuple[float, ...]:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        delays = tuple(float(part) for part in raw.split(",") if part.strip())
    except ValueError:
        logger.warning("Ignoring %s=%r: expected comma-separated seconds", name, raw)
        return default
    if any(d < 0 for d in delays):
        logger.warning("Ignoring %s=%r: delays must not be negative", name, raw)
        return default
    return delays


@dataclass
class ScanConfig:
    """Limits and collaborators for a scan run.

    The numeric defaults keep a full run inside roughly a minute of wall-clock
    time against a real mailbox and model.
    """

    api_key: str = ""
    model: str = DEFAULT_MODEL
    lookback_days: int = 30
    max_fetch: int = 50
    max_process: int = 25
    sub_batch_size: int = 5
    max_selected_per_request: int = 10
    min_request_interval: float = 0.5
    retry_delays: tuple[float, ...] = DEFAULT_RETRY_DELAYS
    time_budget_seconds: float = 55.0
    patterns_file: Path | None = None
    use_sample_mailbox: bool = False
    db_path: Path = field(default_factory=lambda: Path("data/billdrop.db"))
    user_email: str = ""

    @classmethod
    def from_env(cls) -> ScanConfig:
        """Build ScanConfig from environment variables; bad numbers fall back to defaults."""
        defaults = cls()
        patterns_file = os.environ.get("BILLDROP_PATTERNS_FILE", "").strip()
        return cls(
            api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
            model=os.environ.get("BILLDROP_MODEL", "").strip() or DEFAULT_MODEL,
            lookback_days=_env_int("BILLDROP_LOOKBACK_DAYS", defaults.lookback_days),
            max_fetch=_env_int("BILLDROP_MAX_FETCH", defaults.max_fetch),
            max_process=_env_int("BILLDROP_MAX_PROCESS", defaults.max_process),
            sub_batch_size=_env_int("BILLDROP_SUB_BATCH_SIZE", defaults.sub_batch_size),
            max_selected_per_request=_env_int("BILLDROP_MAX_SELECTED", defaults.max_selected_per_request),
            min_request_interval=_env_float("BILLDROP_MIN_REQUEST_INTERVAL", defaults.min_request_interval),
            retry_delays=_env_delays("BILLDROP_RETRY_DELAYS", defaults.retry_delays),
            time_budget_seconds=_env_float("BILLDROP_TIME_BUDGET", defaults.time_budget_seconds),
            patterns_file=Path(patterns_file) if patterns_file else None,
            use_sample_mailbox=os.environ.get("BILLDROP_USE_SAMPLE_MAILBOX", "false").lower() == "true",
            db_path=Path(os.environ.get("BILLDROP_DB_PATH", "").strip() or defaults.db_path),
            user_email=os.environ.get("USER_GOOGLE_EMAIL", ""),
        )
