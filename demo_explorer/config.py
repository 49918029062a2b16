from __future__ import annotations

"""Option groups for the explorer, pacing, recovery and orchestrator layers."""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

ENV_PREFIX = "DEMO_EXPLORER_"


@dataclass
class StrategyOptions:
    strategy: str = "priority"  # breadth-first | depth-first | priority | ai-guided
    max_depth: int = 3
    max_nodes_per_level: int = 5
    max_total_nodes: int = 20
    focus: str = "features"  # features | pricing | technical | overview


@dataclass
class PacingOptions:
    target_duration_ms: int = 60_000
    min_action_duration_ms: int = 500
    max_action_duration_ms: int = 10_000
    buffer_time_ms: int = 2_000
    speed_up_threshold: float = 1.1
    slow_down_threshold: float = 0.9
    history_size: int = 100


@dataclass
class RecoveryOptions:
    max_retries: int = 3
    max_total_errors: int = 10
    # a fault type escalates to fallback after factor * max_retries occurrences
    type_escalation_factor: int = 2


@dataclass
class OrchestratorOptions:
    duration_s: int = 60
    max_pages: int = 5
    max_steps: int = 40
    style: str = "professional"
    focus: str = "features"
    headless: bool = True
    width: int = 1920
    height: int = 1080
    output: str = "demo.webm"
    artifacts_dir: str = "run_artifacts"
    narrative_mode: str = "intro"  # intro | silent
    transition_ms: int = 1_500
    strategy: StrategyOptions = field(default_factory=StrategyOptions)
    recovery: RecoveryOptions = field(default_factory=RecoveryOptions)
    pacing: Optional[PacingOptions] = None

    @property
    def duration_ms(self) -> int:
        return int(self.duration_s * 1000)

    def pacing_options(self) -> PacingOptions:
        """Pacing options with the target duration taken from ``duration_s``."""
        base = self.pacing or PacingOptions()
        return PacingOptions(
            target_duration_ms=self.duration_ms,
            min_action_duration_ms=base.min_action_duration_ms,
            max_action_duration_ms=base.max_action_duration_ms,
            buffer_time_ms=base.buffer_time_ms,
            speed_up_threshold=base.speed_up_threshold,
            slow_down_threshold=base.slow_down_threshold,
            history_size=base.history_size,
        )

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "OrchestratorOptions":
        """Build options from ``DEMO_EXPLORER_*`` variables (and a ``.env`` file)."""
        if dotenv:
            load_dotenv()
        opts = cls()
        opts.duration_s = _env_int("DURATION", opts.duration_s)
        opts.max_pages = _env_int("MAX_PAGES", opts.max_pages)
        opts.max_steps = _env_int("MAX_STEPS", opts.max_steps)
        opts.style = _env_str("STYLE", opts.style)
        opts.focus = _env_str("FOCUS", opts.focus)
        opts.headless = _env_bool("HEADLESS", opts.headless)
        opts.width = _env_int("WIDTH", opts.width)
        opts.height = _env_int("HEIGHT", opts.height)
        opts.output = _env_str("OUTPUT", opts.output)
        opts.artifacts_dir = _env_str("ARTIFACTS_DIR", opts.artifacts_dir)
        opts.narrative_mode = _env_str("NARRATIVE_MODE", opts.narrative_mode)
        opts.strategy.strategy = _env_str("STRATEGY", opts.strategy.strategy)
        opts.strategy.max_depth = _env_int("MAX_DEPTH", opts.strategy.max_depth)
        opts.strategy.max_total_nodes = _env_int("MAX_TOTAL_NODES", opts.strategy.max_total_nodes)
        opts.strategy.focus = opts.focus
        opts.recovery.max_retries = _env_int("MAX_RETRIES", opts.recovery.max_retries)
        opts.recovery.max_total_errors = _env_int("MAX_TOTAL_ERRORS", opts.recovery.max_total_errors)
        return opts


# ---- env helpers ----

def _env_str(name: str, default: str) -> str:
    value = os.getenv(ENV_PREFIX + name)
    return value if value else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(ENV_PREFIX + name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {value!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(ENV_PREFIX + name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")
