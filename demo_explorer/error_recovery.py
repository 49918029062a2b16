from __future__ import annotations

"""Fault classification, bounded retry and a global circuit breaker.

``recover`` maps a raw exception to an ``ErrorType``, runs that type's strategy
and returns a verdict: ``retry`` and ``skip`` are absorbed by the caller,
``fallback`` means the current plan cannot be saved.
"""

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar, Union

from .collaborators import (
    ElementAlternativeFinder,
    HeuristicStateDetector,
    NoAlternativeFinder,
    PageAutomation,
    Sleep,
    StateDetector,
)
from .config import RecoveryOptions
from .errors import FallbackRequired

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorType(str, Enum):
    NAVIGATION_FAILED = "navigation-failed"
    ELEMENT_NOT_FOUND = "element-not-found"
    MODAL_BLOCKED = "modal-blocked"
    TIMEOUT = "timeout"
    SCREENSHOT_FAILED = "screenshot-failed"
    UNKNOWN = "unknown"


class Resolution(str, Enum):
    RETRY = "retry"
    SKIP = "skip"
    ABORT = "abort"
    FALLBACK = "fallback"


# First match wins, in this order.
CLASSIFICATION_RULES = (
    (ErrorType.NAVIGATION_FAILED, ("navigation", "net::", "failed to load", "page.goto")),
    (ErrorType.ELEMENT_NOT_FOUND, ("selector", "element", "not found", "no element", "waiting for", "locator")),
    (ErrorType.MODAL_BLOCKED, ("modal", "dialog", "popup", "overlay", "blocked")),
    (ErrorType.TIMEOUT, ("timeout", "exceeded")),
    (ErrorType.SCREENSHOT_FAILED, ("screenshot", "capture")),
)


@dataclass
class RecoveryContext:
    """What the failing call was doing, plus the collaborators recovery may use."""

    automation: Optional[PageAutomation] = None
    action: Optional[str] = None
    selector: Optional[str] = None
    state_detector: Optional[StateDetector] = None
    alternative_finder: Optional[ElementAlternativeFinder] = None
    # set by element-not-found recovery when a substitute target was found
    current_target: Optional[str] = None

    def snapshot(self) -> Dict[str, Any]:
        url = "unknown"
        if self.automation is not None:
            try:
                url = self.automation.url or "unknown"
            except Exception:
                url = "unknown"
        return {"url": url, "action": self.action or "unknown", "selector": self.selector}


@dataclass
class FaultRecord:
    kind: ErrorType
    message: str
    error_name: str
    context: Dict[str, Any]
    resolution: Resolution
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "error": {"name": self.error_name, "message": self.message},
            "context": self.context,
            "resolution": self.resolution.value,
            "time": self.timestamp,
        }


@dataclass
class RecoveryResult:
    action: Resolution
    message: str
    error_type: ErrorType = ErrorType.UNKNOWN

    @property
    def absorbed(self) -> bool:
        return self.action in (Resolution.RETRY, Resolution.SKIP)


@dataclass
class GuardedOutcome(Generic[T]):
    ok: bool
    value: Optional[T] = None
    recovery: Optional[RecoveryResult] = None


Handler = Callable[[BaseException, RecoveryContext], Awaitable[Optional[Resolution]]]


class ErrorRecovery:
    """Shared by every phase of one orchestrator run; counters persist until ``reset``."""

    def __init__(self, options: Optional[RecoveryOptions] = None, sleep: Sleep = asyncio.sleep) -> None:
        opts = options or RecoveryOptions()
        self.max_retries = opts.max_retries
        self.max_total_errors = opts.max_total_errors
        self.type_escalation_threshold = opts.max_retries * opts.type_escalation_factor
        self._sleep = sleep

        self.total_errors = 0
        self.error_counts: Counter = Counter()
        self.fault_log: List[FaultRecord] = []

        self._handlers: Dict[ErrorType, Handler] = {
            ErrorType.NAVIGATION_FAILED: self._recover_navigation,
            ErrorType.ELEMENT_NOT_FOUND: self._recover_element,
            ErrorType.MODAL_BLOCKED: self._recover_modal,
            ErrorType.TIMEOUT: self._recover_timeout,
            ErrorType.SCREENSHOT_FAILED: self._recover_screenshot,
            ErrorType.UNKNOWN: self._recover_unknown,
        }

    # ------------------------------------------------------------------
    @staticmethod
    def classify_error(error: Union[BaseException, str]) -> ErrorType:
        message = str(error).lower()
        name = "" if isinstance(error, str) else type(error).__name__.lower()
        for kind, keywords in CLASSIFICATION_RULES:
            if any(k in message for k in keywords):
                return kind
            if kind is ErrorType.TIMEOUT and "timeout" in name:
                return kind
        return ErrorType.UNKNOWN

    async def recover(self, error: BaseException, context: Optional[RecoveryContext] = None) -> RecoveryResult:
        ctx = context or RecoveryContext()
        self.total_errors += 1
        kind = self.classify_error(error)

        if self.total_errors >= self.max_total_errors:
            self._log(error, kind, ctx, Resolution.FALLBACK)
            return RecoveryResult(Resolution.FALLBACK, "Too many errors encountered, falling back to simple demo", kind)

        self.error_counts[kind] += 1
        if self.error_counts[kind] >= self.type_escalation_threshold:
            self._log(error, kind, ctx, Resolution.FALLBACK)
            return RecoveryResult(Resolution.FALLBACK, f"Repeated {kind.value} errors, falling back", kind)

        handler = self._handlers[kind]
        for attempt in range(self.max_retries):
            try:
                outcome = await handler(error, ctx)
            except Exception as exc:
                logger.warning("Recovery attempt %d for %s failed: %s", attempt + 1, kind.value, exc)
                continue

            if outcome is Resolution.RETRY:
                self._log(error, kind, ctx, Resolution.RETRY)
                return RecoveryResult(Resolution.RETRY, f"Recovered from {kind.value}", kind)
            if outcome is Resolution.SKIP:
                self._log(error, kind, ctx, Resolution.SKIP)
                return RecoveryResult(Resolution.SKIP, f"Skipping due to {kind.value}", kind)
            if outcome in (Resolution.ABORT, Resolution.FALLBACK):
                self._log(error, kind, ctx, Resolution.FALLBACK)
                return RecoveryResult(Resolution.FALLBACK, f"Cannot recover from {kind.value}", kind)

        self._log(error, kind, ctx, Resolution.FALLBACK)
        return RecoveryResult(Resolution.FALLBACK, "Recovery attempts exhausted", kind)

    async def run_guarded(
        self,
        operation: Callable[[], Awaitable[T]],
        context: Optional[RecoveryContext] = None,
        *,
        reattempts: int = 1,
    ) -> GuardedOutcome[T]:
        """Run ``operation`` and hand any fault to ``recover``.

        A ``retry`` verdict re-runs the operation (at most ``reattempts`` more
        times), ``skip`` gives up and returns ``ok=False``, ``fallback`` raises
        FallbackRequired.
        """
        last: Optional[RecoveryResult] = None
        for _ in range(reattempts + 1):
            try:
                return GuardedOutcome(ok=True, value=await operation())
            except FallbackRequired:
                raise
            except Exception as exc:
                last = await self.recover(exc, context)
                if last.action is Resolution.FALLBACK:
                    raise FallbackRequired(last.message, recovery=last, cause=exc) from exc
                if last.action is not Resolution.RETRY:
                    break
        return GuardedOutcome(ok=False, recovery=last)

    def should_abort(self) -> bool:
        return self.total_errors >= self.max_total_errors

    def get_stats(self) -> Dict[str, Any]:
        absorbed = sum(1 for r in self.fault_log if r.resolution in (Resolution.RETRY, Resolution.SKIP))
        return {
            "totalErrors": self.total_errors,
            "errorsByType": {kind.value: count for kind, count in self.error_counts.items()},
            "errorLog": [r.to_dict() for r in self.fault_log],
            "successRate": absorbed / self.total_errors if self.total_errors else 1.0,
        }

    def reset(self) -> None:
        self.total_errors = 0
        self.error_counts.clear()
        self.fault_log = []

    def _log(self, error: BaseException, kind: ErrorType, ctx: RecoveryContext, resolution: Resolution) -> None:
        self.fault_log.append(
            FaultRecord(
                kind=kind,
                message=str(error),
                error_name=type(error).__name__,
                context=ctx.snapshot(),
                resolution=resolution,
            )
        )
        level = logging.ERROR if resolution is Resolution.FALLBACK else logging.WARNING
        logger.log(level, "%s fault (%s) -> %s", kind.value, error, resolution.value)

    # ------------------------------------------------------------------
    # per-type strategies ----------------------------------------------

    def _detector(self, ctx: RecoveryContext) -> StateDetector:
        return ctx.state_detector or HeuristicStateDetector(ctx.automation, sleep=self._sleep)

    async def _recover_navigation(self, error: BaseException, ctx: RecoveryContext) -> Optional[Resolution]:
        if ctx.automation is None:
            return Resolution.SKIP
        try:
            await self._sleep(1.0)
            await ctx.automation.reload(wait_until="domcontentloaded", timeout_ms=15_000)
            await self._detector(ctx).wait_for_content_ready()
        except Exception as exc:
            logger.warning("Reload after navigation failure did not succeed: %s", exc)
            return Resolution.SKIP
        return Resolution.RETRY

    async def _recover_element(self, error: BaseException, ctx: RecoveryContext) -> Optional[Resolution]:
        finder = ctx.alternative_finder or NoAlternativeFinder()
        if not ctx.selector:
            return Resolution.SKIP
        try:
            alternatives = await finder.find_alternatives(ctx.selector)
        except Exception as exc:
            logger.warning("Alternative lookup for %s failed: %s", ctx.selector, exc)
            return Resolution.SKIP
        if alternatives:
            ctx.current_target = alternatives[0]
            return Resolution.RETRY
        return Resolution.SKIP

    async def _recover_modal(self, error: BaseException, ctx: RecoveryContext) -> Optional[Resolution]:
        try:
            await self._detector(ctx).dismiss_blocking_elements()
            await self._sleep(0.5)
        except Exception as exc:
            logger.warning("Could not dismiss blocking element: %s", exc)
            return Resolution.SKIP
        return Resolution.RETRY

    async def _recover_timeout(self, error: BaseException, ctx: RecoveryContext) -> Optional[Resolution]:
        return Resolution.SKIP

    async def _recover_screenshot(self, error: BaseException, ctx: RecoveryContext) -> Optional[Resolution]:
        await self._sleep(0.5)
        return Resolution.RETRY

    async def _recover_unknown(self, error: BaseException, ctx: RecoveryContext) -> Optional[Resolution]:
        logger.warning("Unknown error during demo: %s", error)
        return Resolution.SKIP
