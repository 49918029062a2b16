from __future__ import annotations

"""Phased demo generation: Explore -> Plan -> Execute -> Finalize, with Fallback and Cleanup.

Every phase runs through ``_run_phase`` so that anything escaping it is handed to
the run's single ErrorRecovery. A ``fallback`` verdict (or a FallbackRequired
raised from inside a phase) switches to a reduced single-page recording. The
capture session is released on every exit path.
"""

import asyncio
import functools
import logging
import shutil
import tempfile
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from .browser import PlaywrightCaptureSession
from .collaborators import (
    CaptureSession,
    ElementAlternativeFinder,
    Finalizer,
    HeuristicStateDetector,
    NoAlternativeFinder,
    PassthroughFinalizer,
    Sleep,
    StateDetector,
)
from .config import OrchestratorOptions
from .decision_oracle import DecisionOracle
from .demo_plan import DemoPlan, PageEntry, PlannedAction, TransitionMethod
from .error_recovery import ErrorRecovery, RecoveryContext, Resolution
from .errors import DemoExplorerError, FallbackRequired, PhaseError
from .exploration_strategy import create_demo_strategy
from .navigation_graph import NavigationGraph, create_node_id
from .pacing_controller import PacingController, monotonic_ms
from .site_explorer import SiteExplorer

logger = logging.getLogger(__name__)

SessionFactory = Callable[[OrchestratorOptions, Optional[str]], CaptureSession]

_RAISE = object()


class Phase(str, Enum):
    INIT = "init"
    EXPLORE = "explore"
    PLAN = "plan"
    EXECUTE = "execute"
    FINALIZE = "finalize"
    DONE = "done"
    FALLBACK = "fallback"
    CLEANUP = "cleanup"


@dataclass
class DemoResult:
    success: bool
    video_path: Optional[str] = None
    narration_path: Optional[str] = None
    duration_ms: Optional[float] = None
    plan: Optional[Dict[str, Any]] = None
    fallback: bool = False
    message: Optional[str] = None
    graph_summary: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success, "fallback": self.fallback}
        if self.video_path:
            data["videoPath"] = self.video_path
        if self.narration_path:
            data["narrationPath"] = self.narration_path
        if self.duration_ms is not None:
            data["duration"] = self.duration_ms
        if self.plan is not None:
            data["plan"] = self.plan
        if self.graph_summary is not None:
            data["graph"] = self.graph_summary
        if self.message:
            data["error"] = {"message": self.message}
        return data


def playwright_session(options: OrchestratorOptions, video_dir: Optional[str]) -> CaptureSession:
    return PlaywrightCaptureSession(
        headless=options.headless,
        width=options.width,
        height=options.height,
        video_dir=video_dir,
    )


class DemoOrchestrator:
    """One orchestrator per run; ErrorRecovery is shared by every phase of that run."""

    def __init__(
        self,
        options: Optional[OrchestratorOptions] = None,
        session_factory: SessionFactory = playwright_session,
        finalizer: Optional[Finalizer] = None,
        state_detector: Optional[StateDetector] = None,
        alternative_finder: Optional[ElementAlternativeFinder] = None,
        oracle: Optional[DecisionOracle] = None,
        clock: Callable[[], float] = monotonic_ms,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.options = options or OrchestratorOptions()
        self._session_factory = session_factory
        self.finalizer: Finalizer = finalizer or PassthroughFinalizer()
        self._state_detector = state_detector
        self._default_detector: Optional[StateDetector] = None
        self.alternative_finder: ElementAlternativeFinder = alternative_finder or NoAlternativeFinder()
        self.oracle = oracle
        self._clock = clock
        self._sleep = sleep

        self.recovery = ErrorRecovery(self.options.recovery, sleep=sleep)
        self.phase = Phase.INIT
        self.phase_history: List[Phase] = []

        self.session: Optional[CaptureSession] = None
        self.graph: Optional[NavigationGraph] = None
        self.plan: Optional[DemoPlan] = None
        self.pacing: Optional[PacingController] = None
        self.recording_ms: Optional[float] = None
        self._video_dirs: List[str] = []

    # ------------------------------------------------------------------
    # main entry point --------------------------------------------------

    async def run(self, url: str) -> DemoResult:
        logger.info("Generating demo for %s (%ss, style=%s)", url, self.options.duration_s, self.options.style)
        try:
            await self._run_phase(Phase.INIT, self._open_session)
            await self._run_phase(Phase.EXPLORE, functools.partial(self.explore, url), skip_value=None)
            await self._run_phase(Phase.PLAN, functools.partial(self.create_plan, url))
            raw_video = await self._run_phase(Phase.EXECUTE, functools.partial(self.execute, url), skip_value=None)
            video, narration = await self._run_phase(Phase.FINALIZE, functools.partial(self.finalize, raw_video))
            self._enter(Phase.DONE)
            logger.info("Demo complete: %s", video)
            return DemoResult(
                success=True,
                video_path=video,
                narration_path=narration,
                duration_ms=self.recording_ms,
                plan=self.plan.to_dict() if self.plan else None,
                graph_summary=self.graph.summary() if self.graph else None,
            )
        except Exception as exc:
            logger.error("Demo generation failed (%s), attempting fallback recording", exc)
            return await self.fallback(url, exc)
        finally:
            await self.cleanup()

    async def _run_phase(self, phase: Phase, fn: Callable[[], Awaitable[Any]], skip_value: Any = _RAISE) -> Any:
        """Run one phase; escaping faults go through ErrorRecovery.

        ``retry`` re-runs the phase once, ``skip`` returns ``skip_value`` (or fails
        the phase when the phase cannot be skipped), ``fallback`` raises.
        """
        self._enter(phase)
        for attempt in range(2):
            try:
                return await fn()
            except FallbackRequired:
                raise
            except Exception as exc:
                verdict = await self.recovery.recover(exc, self._context(phase.value))
                if verdict.action is Resolution.FALLBACK:
                    raise FallbackRequired(verdict.message, recovery=verdict, cause=exc) from exc
                if verdict.action is Resolution.RETRY and attempt == 0:
                    logger.warning("%s phase failed (%s), retrying", phase.value, exc)
                    continue
                if skip_value is _RAISE:
                    raise PhaseError(phase.value, exc) from exc
                logger.warning("%s phase failed (%s), continuing", phase.value, exc)
                return skip_value
        return None

    def _enter(self, phase: Phase) -> None:
        self.phase = phase
        self.phase_history.append(phase)
        logger.info("Phase: %s", phase.value)

    def _context(self, action: str, selector: Optional[str] = None) -> RecoveryContext:
        return RecoveryContext(
            automation=self.session,
            action=action,
            selector=selector,
            state_detector=self.state_detector,
            alternative_finder=self.alternative_finder,
        )

    @property
    def state_detector(self) -> Optional[StateDetector]:
        if self._state_detector is not None:
            return self._state_detector
        if self._default_detector is None and self.session is not None:
            self._default_detector = HeuristicStateDetector(self.session, sleep=self._sleep)
        return self._default_detector

    async def _open_session(self) -> None:
        video_dir = tempfile.mkdtemp(prefix="demo-explorer-")
        self._video_dirs.append(video_dir)
        self.session = self._session_factory(self.options, video_dir)
        await self.session.open()

    # ------------------------------------------------------------------
    # phases ------------------------------------------------------------

    async def explore(self, url: str) -> NavigationGraph:
        opts = self.options.strategy
        self.graph = NavigationGraph()
        strategy = create_demo_strategy(
            self.graph,
            max_depth=opts.max_depth,
            max_nodes_per_level=opts.max_nodes_per_level,
            max_total_nodes=opts.max_total_nodes,
            focus=opts.focus,
            strategy=opts.strategy,
            base_domain=urlparse(url).hostname,
            oracle=self.oracle,
        )
        explorer = SiteExplorer(
            self.session,
            strategy,
            self.recovery,
            state_detector=self.state_detector,
            max_steps=self.options.max_steps,
            artifacts_dir=self.options.artifacts_dir,
        )
        return await explorer.explore(url)

    async def create_plan(self, url: str) -> DemoPlan:
        graph = self.graph if self.graph is not None and self.graph.size > 0 else None
        self.plan = DemoPlan.create(
            graph,
            start_url=url,
            duration_s=self.options.duration_s,
            max_pages=self.options.max_pages,
            style=self.options.style,
            focus=self.options.focus,
            include_narrative=self.options.narrative_mode != "silent",
            transition_time=self.options.transition_ms,
        )
        return self.plan

    async def execute(self, url: str) -> Optional[str]:
        """Record the plan under pacing control. Returns the raw capture path."""
        self.pacing = PacingController.for_plan(self.plan, self.options.pacing_options(), clock=self._clock)
        self.pacing.start()
        started = self._clock()

        await self._guarded(lambda: self.session.navigate(url), "navigate")
        await self._dismiss_blocking()

        previous: Optional[PageEntry] = None
        for page in self.plan.pages:
            if self.recovery.should_abort():
                logger.warning("Too many errors, stopping early")
                break
            if not await self._transition(previous, page, url):
                for action in page.timeline:
                    self.pacing.record_skip(action)
                continue
            await self._execute_timeline(page)
            previous = page

        self.recording_ms = self._clock() - started
        logger.info("Recording finished: %s", self.pacing.get_status().to_dict())
        return await self._close_session()

    async def _execute_timeline(self, page: PageEntry) -> None:
        for action in page.timeline:
            if self.recovery.should_abort():
                break
            if self.pacing.should_skip_action(action):
                logger.debug("Pacing skips %s on %s", action.type, page.id)
                self.pacing.record_skip(action)
                continue
            duration = self.pacing.get_adjusted_duration(action)
            ctx = self._context(action.type, action.target)
            started = self._clock()
            outcome = await self.recovery.run_guarded(functools.partial(self._perform, action, duration, ctx), ctx)
            if outcome.ok:
                self.pacing.update(action, self._clock() - started)
            else:
                self.pacing.record_skip(action)

    async def _transition(self, previous: Optional[PageEntry], page: PageEntry, start_url: str) -> bool:
        current_id = create_node_id(self.session.url) if self.session.url else None
        if current_id == page.id or (previous is None and page.url in ("", start_url)):
            return True

        if page.transition_method is TransitionMethod.CLICK and previous is not None:
            selector = self._selector_between(previous.id, page.id)
            if selector:
                ok = await self._guarded(lambda: self.session.click(selector), "transition", selector)
            else:
                ok = await self._guarded(lambda: self.session.navigate(page.url), "transition")
        elif page.transition_method is TransitionMethod.BACK:
            ok = await self._guarded(lambda: self.session.go_back(), "transition")
        else:
            ok = await self._guarded(lambda: self.session.navigate(page.url), "transition")

        if ok:
            await self._dismiss_blocking()
        return ok

    def _selector_between(self, from_id: str, to_id: str) -> Optional[str]:
        if self.graph is None:
            return None
        for edge in self.graph.get_edges_from(from_id):
            if edge.to_id == to_id and edge.via is not None and edge.via.selector:
                return edge.via.selector
        return None

    async def _perform(self, action: PlannedAction, duration: float, ctx: RecoveryContext) -> None:
        session = self.session
        params = action.params
        target = ctx.current_target or action.target

        if action.type == "wait":
            await session.wait(duration)
        elif action.type == "scroll":
            await session.scroll_by(params.get("distance", 500), duration)
        elif action.type == "scroll-to":
            await session.scroll_to(params.get("y", 0), duration)
        elif action.type == "pan":
            width, height = self.options.width, self.options.height
            await session.move_mouse(params.get("startX", 0.2) * width, params.get("startY", 0.3) * height, steps=10)
            await session.wait(duration * 0.3)
            await session.move_mouse(params.get("endX", 0.8) * width, params.get("endY", 0.5) * height, steps=30)
            await session.wait(duration * 0.5)
        elif action.type == "hover" and target:
            await session.hover(target)
            await session.wait(duration * 0.4)
        elif action.type == "click" and target:
            await session.click(target)
            await session.wait(duration * 0.4)
        else:
            await session.wait(duration)

    async def finalize(self, raw_video: Optional[str]) -> Tuple[str, Optional[str]]:
        """Render and narrate concurrently; narration failure does not fail the run."""
        script = self.plan.script if self.plan and self.options.narrative_mode != "silent" else []
        video, narration = await asyncio.gather(
            self.finalizer.render(raw_video, self.options.output),
            self.finalizer.narrate(script, self.options.artifacts_dir),
            return_exceptions=True,
        )
        if isinstance(narration, BaseException):
            logger.warning("Narration failed: %s", narration)
            narration = None
        if isinstance(video, BaseException):
            raise video
        if not video:
            raise DemoExplorerError("No video recorded")
        return video, narration

    # ------------------------------------------------------------------
    # fallback & cleanup ------------------------------------------------

    async def fallback(self, url: str, cause: BaseException) -> DemoResult:
        """Reduced recording: one page, a slow scroll for the target duration, no pacing."""
        self._enter(Phase.FALLBACK)
        try:
            await self._close_session()
            await self._open_session()
            session = self.session
            total_ms = self.options.duration_ms
            await session.navigate(url)
            await session.wait(min(1000, total_ms))
            await session.scroll_by(self.options.height * 2, max(0, total_ms - 2000))
            await session.scroll_to(0, min(1000, total_ms))
            raw_video = await self._close_session()
            video = await self.finalizer.render(raw_video, self.options.output)
            if not video:
                raise DemoExplorerError("No video recorded")
        except Exception as exc:
            logger.error("Fallback also failed: %s", exc)
            return DemoResult(success=False, fallback=True, message=str(exc))
        return DemoResult(
            success=True,
            video_path=video,
            duration_ms=float(self.options.duration_ms),
            fallback=True,
            message=str(cause),
        )

    async def _close_session(self) -> Optional[str]:
        session, self.session = self.session, None
        # the default detector is bound to the session being closed
        self._default_detector = None
        if session is None:
            return None
        return await session.close()

    async def cleanup(self) -> None:
        self._enter(Phase.CLEANUP)
        try:
            await self._close_session()
        except Exception as exc:
            logger.warning("Cleanup failed: %s", exc)
        # raw captures are only needed until Finalize has rendered them
        for video_dir in self._video_dirs:
            shutil.rmtree(video_dir, ignore_errors=True)
        self._video_dirs.clear()

    # ------------------------------------------------------------------
    # helpers -----------------------------------------------------------

    async def _guarded(self, op: Callable[[], Awaitable[Any]], action: str, selector: Optional[str] = None) -> bool:
        outcome = await self.recovery.run_guarded(op, self._context(action, selector))
        return outcome.ok

    async def _dismiss_blocking(self) -> None:
        detector = self.state_detector
        if detector is not None:
            await self._guarded(detector.dismiss_blocking_elements, "dismiss-blocking")

    def status(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "phaseHistory": [p.value for p in self.phase_history],
            "pacing": self.pacing.get_status().to_dict() if self.pacing else None,
            "errors": self.recovery.get_stats(),
            "plan": self.plan.to_dict() if self.plan else None,
        }


async def generate_demo(url: str, options: Optional[OrchestratorOptions] = None, **kwargs: Any) -> DemoResult:
    """Convenience wrapper: build a DemoOrchestrator and run it once."""
    return await DemoOrchestrator(options, **kwargs).run(url)
