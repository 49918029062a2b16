from __future__ import annotations

"""Closed-loop timing controller for demo execution.

The controller compares how far through the action list we are with how much of
the target duration has elapsed and derives a speed factor from the ratio
(> 1 means behind schedule, < 1 means ahead). Planned action durations are
divided by that factor, so a run that falls behind speeds up and a run that
races ahead slows down, converging on the target length.

All times are milliseconds. The clock is injectable so tests can drive it.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, List, Optional

from .config import PacingOptions

logger = logging.getLogger(__name__)

MIN_SPEED_FACTOR = 0.5
MAX_SPEED_FACTOR = 2.0
DEFAULT_ACTION_DURATION = 1000
DEFAULT_ACTION_PRIORITY = 50
NEVER_SKIP_PRIORITY = 80
LOW_PRIORITY = 30
SKIP_SPEED_FACTOR = 1.5


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass
class ActionTiming:
    planned_duration: float
    actual_duration: float
    started_at: float
    priority: int
    skippable: bool


@dataclass
class PacingStatus:
    progress: float
    elapsed_time: float
    remaining_time: float
    estimated_completion: float
    status: str  # behind | on-track | ahead
    speed_factor: float
    completed_actions: int
    total_actions: int
    skipped_actions: int

    def to_dict(self) -> dict:
        return {
            "progress": self.progress,
            "elapsedTime": self.elapsed_time,
            "remainingTime": self.remaining_time,
            "estimatedCompletion": self.estimated_completion,
            "status": self.status,
            "speedFactor": self.speed_factor,
            "completedActions": self.completed_actions,
            "totalActions": self.total_actions,
            "skippedActions": self.skipped_actions,
        }


def _duration_of(action: Any) -> float:
    return getattr(action, "duration", None) or DEFAULT_ACTION_DURATION


def _priority_of(action: Any) -> int:
    priority = getattr(action, "priority", None)
    return DEFAULT_ACTION_PRIORITY if priority is None else priority


def _skippable(action: Any) -> bool:
    return getattr(action, "skippable", True) is not False


class PacingController:
    """Keeps a sequence of variable-length actions converging on ``target_duration``."""

    def __init__(
        self,
        total_actions: int,
        options: Optional[PacingOptions] = None,
        clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        opts = options or PacingOptions()
        self.target_duration: float = opts.target_duration_ms
        self.min_action_duration: float = opts.min_action_duration_ms
        self.max_action_duration: float = opts.max_action_duration_ms
        self.buffer_time: float = opts.buffer_time_ms
        self.speed_up_threshold = opts.speed_up_threshold
        self.slow_down_threshold = opts.slow_down_threshold

        self._clock = clock
        self._start_time: Optional[float] = None
        self.total_actions = max(0, int(total_actions))
        self.completed_actions = 0
        self.skipped_actions = 0
        self.speed_factor = 1.0
        self.history: Deque[ActionTiming] = deque(maxlen=opts.history_size)

    @classmethod
    def for_plan(cls, plan: Any, options: Optional[PacingOptions] = None,
                 clock: Callable[[], float] = monotonic_ms) -> "PacingController":
        """Controller sized to every timeline action of a DemoPlan."""
        return cls(plan.action_count, options=options, clock=clock)

    # ------------------------------------------------------------------
    def start(self) -> None:
        self._start_time = self._clock()
        self.speed_factor = 1.0

    @property
    def started(self) -> bool:
        return self._start_time is not None

    def update(self, action: Any, actual_duration: Optional[float] = None) -> None:
        """Record one completed action and re-derive the speed factor."""
        self.completed_actions += 1
        if action is not None and actual_duration is not None:
            elapsed = self.get_elapsed_time()
            self.history.append(
                ActionTiming(
                    planned_duration=_duration_of(action),
                    actual_duration=actual_duration,
                    started_at=elapsed - actual_duration,
                    priority=_priority_of(action),
                    skippable=_skippable(action),
                )
            )
        self._recalculate_speed_factor()

    def record_skip(self, action: Any = None) -> None:
        self.skipped_actions += 1
        self.completed_actions += 1
        self._recalculate_speed_factor()

    def _recalculate_speed_factor(self) -> None:
        if self.total_actions == 0:
            self.speed_factor = 1.0
            return
        progress = self.get_progress()
        elapsed = self.get_elapsed_time()
        if progress <= 0 or elapsed <= 0 or self.target_duration <= 0:
            self.speed_factor = 1.0
            return
        ratio = (elapsed / self.target_duration) / progress
        self.speed_factor = min(MAX_SPEED_FACTOR, max(MIN_SPEED_FACTOR, ratio))
        logger.debug("Pacing: progress=%.2f elapsed=%.0fms speed=%.2f", progress, elapsed, self.speed_factor)

    # ------------------------------------------------------------------
    def should_speed_up(self) -> bool:
        return self.speed_factor > self.speed_up_threshold

    def should_slow_down(self) -> bool:
        return self.speed_factor < self.slow_down_threshold

    def get_adjusted_duration(self, action: Any) -> int:
        adjusted = _duration_of(action) / self.speed_factor
        adjusted *= 0.5 + _priority_of(action) / 100
        adjusted = max(self.min_action_duration, min(self.max_action_duration, adjusted))
        return int(round(adjusted))

    def should_skip_action(self, action: Any) -> bool:
        priority = _priority_of(action)
        if priority >= NEVER_SKIP_PRIORITY or not _skippable(action):
            return False
        if self.speed_factor > SKIP_SPEED_FACTOR and priority < LOW_PRIORITY:
            return True
        # feasibility: the rest cannot fit even at minimum duration
        remaining_actions = max(0, self.total_actions - self.completed_actions)
        if self.started and self.get_remaining_time() < remaining_actions * self.min_action_duration:
            return True
        return False

    # ------------------------------------------------------------------
    def get_progress(self) -> float:
        if self.total_actions == 0:
            return 1.0
        return min(1.0, self.completed_actions / self.total_actions)

    def get_elapsed_time(self) -> float:
        if self._start_time is None:
            return 0.0
        return max(0.0, self._clock() - self._start_time)

    def get_remaining_time(self) -> float:
        return max(0.0, self.target_duration - self.get_elapsed_time())

    def get_estimated_completion(self) -> float:
        progress = self.get_progress()
        if progress <= 0:
            return self.target_duration
        return round(self.get_elapsed_time() / progress)

    def get_status(self) -> PacingStatus:
        if self.speed_factor > self.speed_up_threshold:
            label = "behind"
        elif self.speed_factor < self.slow_down_threshold:
            label = "ahead"
        else:
            label = "on-track"
        return PacingStatus(
            progress=self.get_progress(),
            elapsed_time=self.get_elapsed_time(),
            remaining_time=self.get_remaining_time(),
            estimated_completion=self.get_estimated_completion(),
            status=label,
            speed_factor=self.speed_factor,
            completed_actions=self.completed_actions,
            total_actions=self.total_actions,
            skipped_actions=self.skipped_actions,
        )

    def allocate_remaining_time(self, num_sections: int) -> List[int]:
        if num_sections <= 0:
            return []
        remaining = self.get_remaining_time() - self.buffer_time
        per_section = max(self.min_action_duration, remaining / num_sections)
        return [int(round(per_section))] * num_sections

    def has_time_for(self, duration: float) -> bool:
        return self.get_remaining_time() > duration + self.buffer_time
