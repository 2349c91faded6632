"""Runtime settings for the runner, loaded from ``RUNNER_*`` environment variables."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from .models import MAX_CONCURRENCY


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer, got {raw!r}") from exc


@dataclass
# pylint: disable=too-many-instance-attributes
class RunnerSettings:
    """Runtime knobs for browser execution."""

    headless: bool = True
    interaction_timeout_ms: int = 5_000
    assertion_timeout_ms: int = 2_000
    navigation_timeout_ms: int = 60_000
    navigation_retry_timeout_ms: int = 30_000
    ready_state_timeout_ms: int = 10_000
    click_settle_ms: int = 200
    viewport: Tuple[int, int] = (1280, 720)
    max_concurrency: int = MAX_CONCURRENCY
    output_root: Path = Path("results")
    base_url: Optional[str] = None
    retain_terminal_runs: int = 100

    @classmethod
    def from_env(cls) -> "RunnerSettings":
        """Build settings from the process environment; call ``load_dotenv()`` first."""
        defaults = cls()
        viewport = (
            _env_int("RUNNER_VIEWPORT_WIDTH", defaults.viewport[0]),
            _env_int("RUNNER_VIEWPORT_HEIGHT", defaults.viewport[1]),
        )
        return cls(
            headless=_env_bool("RUNNER_HEADLESS", defaults.headless),
            interaction_timeout_ms=_env_int("RUNNER_INTERACTION_TIMEOUT_MS", defaults.interaction_timeout_ms),
            assertion_timeout_ms=_env_int("RUNNER_ASSERTION_TIMEOUT_MS", defaults.assertion_timeout_ms),
            navigation_timeout_ms=_env_int("RUNNER_NAVIGATION_TIMEOUT_MS", defaults.navigation_timeout_ms),
            navigation_retry_timeout_ms=_env_int(
                "RUNNER_NAVIGATION_RETRY_TIMEOUT_MS", defaults.navigation_retry_timeout_ms
            ),
            ready_state_timeout_ms=_env_int("RUNNER_READY_STATE_TIMEOUT_MS", defaults.ready_state_timeout_ms),
            click_settle_ms=_env_int("RUNNER_CLICK_SETTLE_MS", defaults.click_settle_ms),
            viewport=viewport,
            max_concurrency=min(_env_int("RUNNER_MAX_CONCURRENCY", defaults.max_concurrency), MAX_CONCURRENCY),
            output_root=Path(os.getenv("RUNNER_OUTPUT_ROOT") or defaults.output_root),
            base_url=os.getenv("RUNNER_BASE_URL") or None,
            retain_terminal_runs=max(_env_int("RUNNER_RETAIN_TERMINAL_RUNS", defaults.retain_terminal_runs), 0),
        )
