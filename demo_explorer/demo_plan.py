from __future__ import annotations

"""Plan phase: turn an explored NavigationGraph into a timed, ordered demo plan."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .navigation_graph import NavigationGraph, NavigationNode

logger = logging.getLogger(__name__)

IMPORTANT_TITLE_KEYWORDS = ("feature", "pricing", "product", "service", "solution", "demo", "about")

# Lower sorts earlier; pages matching nothing sit at DEFAULT_ORDER.
PAGE_ORDER = (
    ("feature", 10),
    ("product", 20),
    ("solution", 25),
    ("service", 30),
    ("pricing", 50),
    ("demo", 60),
    ("about", 80),
    ("contact", 90),
)
DEFAULT_ORDER = 40

INTRO_WAIT_MS = 1000
FINAL_PAUSE_MS = 500
SCROLL_DISTANCE_PX = 1500

INTROS = {
    "professional": ("Welcome to {title}. Let me show you what this platform offers.", "Let's explore the {title} section."),
    "casual": ("Hey! Check out {title}, pretty cool stuff here.", "Now let's check out {title}."),
    "energetic": ("Welcome to {title}! Get ready to see some amazing features!", "And here's the awesome {title} page!"),
}


class TransitionMethod(str, Enum):
    NAVIGATE = "navigate"
    CLICK = "click"
    BACK = "back"


@dataclass
class PlannedAction:
    """One step of a page timeline. ``duration`` is the planned length in ms."""

    type: str  # wait | pan | scroll | scroll-to | hover | click
    duration: float
    start_time: float = 0.0
    priority: int = 50
    skippable: bool = True
    target: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)
    narrative: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type,
            "startTime": self.start_time,
            "duration": self.duration,
            "priority": self.priority,
            "skippable": self.skippable,
        }
        if self.target:
            data["target"] = self.target
        if self.params:
            data["params"] = dict(self.params)
        if self.narrative:
            data["narrative"] = self.narrative
        return data


@dataclass
class PageEntry:
    id: str
    url: str
    title: str
    score: float
    is_root: bool = False
    duration: float = 0.0
    start_time: float = 0.0
    transition_method: TransitionMethod = TransitionMethod.NAVIGATE
    timeline: List[PlannedAction] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "priority": self.score,
            "duration": self.duration,
            "startTime": self.start_time,
            "transitionMethod": self.transition_method.value,
            "timeline": [a.to_dict() for a in self.timeline],
        }


class DemoPlan:
    """Ordered pages with per-page time budgets and action timelines."""

    def __init__(
        self,
        graph: Optional[NavigationGraph],
        start_url: str = "",
        duration_s: float = 60,
        max_pages: int = 5,
        style: str = "professional",
        focus: str = "features",
        include_narrative: bool = True,
        min_page_duration: float = 8000,
        max_page_duration: float = 20000,
        transition_time: float = 1500,
    ) -> None:
        self.graph = graph
        self.start_url = start_url
        self.total_duration = duration_s * 1000
        self.max_pages = max(1, max_pages)
        self.style = style
        self.focus = focus
        self.include_narrative = include_narrative
        self.min_page_duration = min_page_duration
        self.max_page_duration = max_page_duration
        self.transition_time = transition_time

        self.pages: List[PageEntry] = []
        self.script: List[str] = []

    @classmethod
    def create(cls, graph: Optional[NavigationGraph], **options: Any) -> "DemoPlan":
        plan = cls(graph, **options)
        plan.select_pages()
        plan.optimize_order()
        plan.allocate_time()
        plan.plan_transitions()
        plan.create_timelines()
        if plan.include_narrative:
            plan.generate_narrative()
        logger.info("Planned %d page(s), %d action(s)", len(plan.pages), plan.action_count)
        return plan

    # ------------------------------------------------------------------
    # page selection ----------------------------------------------------

    def select_pages(self) -> None:
        nodes = self.graph.get_visited_nodes() if self.graph is not None else []
        if not nodes:
            self.pages = [
                PageEntry(id="home", url=self.start_url, title="Home", score=100, is_root=True,
                          duration=self.total_duration)
            ]
            return

        root_id = self.graph.root_id
        scored = sorted(nodes, key=lambda n: self.score_page(n, n.id == root_id), reverse=True)
        selected = scored[: self.max_pages]
        root = self.graph.get_root()
        if root is not None and root not in selected:
            selected = [root] + selected[: self.max_pages - 1]

        # root first, whatever its score
        selected.sort(key=lambda n: n.id != root_id)
        self.pages = [
            PageEntry(
                id=n.id,
                url=n.url,
                title=n.title or "Page",
                score=self.score_page(n, n.id == root_id),
                is_root=n.id == root_id,
            )
            for n in selected
        ]

    @staticmethod
    def score_page(node: NavigationNode, is_root: bool = False) -> float:
        score = 50.0
        if is_root:
            score += 20
        title = (node.title or "").lower()
        if any(k in title for k in IMPORTANT_TITLE_KEYWORDS):
            score += 10
        if node.depth == 1:
            score += 5
        if node.depth > 2:
            score -= (node.depth - 2) * 5
        return max(0.0, min(100.0, score))

    def optimize_order(self) -> None:
        if len(self.pages) > 2:
            first, rest = self.pages[0], self.pages[1:]
            rest.sort(key=self._order_key)
            self.pages = [first] + rest
        for index, page in enumerate(self.pages):
            if index == 0:
                page.transition_method = TransitionMethod.NAVIGATE
            else:
                page.transition_method = self.transition_between(self.pages[index - 1], page)

    @staticmethod
    def _order_key(page: PageEntry) -> int:
        title = page.title.lower()
        url = page.url.lower()
        for keyword, order in PAGE_ORDER:
            if keyword in title or keyword in url:
                return order
        return DEFAULT_ORDER

    def transition_between(self, source: PageEntry, target: PageEntry) -> TransitionMethod:
        if self.graph is None:
            return TransitionMethod.NAVIGATE
        if any(e.to_id == target.id for e in self.graph.get_edges_from(source.id)):
            return TransitionMethod.CLICK
        if any(e.to_id == source.id for e in self.graph.get_edges_from(target.id)):
            return TransitionMethod.BACK
        return TransitionMethod.NAVIGATE

    # ------------------------------------------------------------------
    # timing ------------------------------------------------------------

    def allocate_time(self) -> None:
        if not self.pages:
            return
        available = self.total_duration - (len(self.pages) - 1) * self.transition_time
        total_score = sum(p.score for p in self.pages)

        allocated = 0.0
        for page in self.pages:
            share = page.score / total_score if total_score > 0 else 1 / len(self.pages)
            page.duration = round(max(self.min_page_duration, min(self.max_page_duration, available * share)))
            allocated += page.duration

        first = self.pages[0]
        first.duration = max(self.min_page_duration, first.duration + (available - allocated))

    def plan_transitions(self) -> None:
        offset = 0.0
        for index, page in enumerate(self.pages):
            page.start_time = offset
            offset += page.duration
            if index < len(self.pages) - 1:
                offset += self.transition_time

    def create_timelines(self) -> None:
        for page in self.pages:
            page.timeline = self.page_timeline(page)

    def page_timeline(self, page: PageEntry) -> List[PlannedAction]:
        scroll_duration = max(1000.0, page.duration - 3000)
        t = 0.0
        timeline = [
            PlannedAction("wait", INTRO_WAIT_MS, start_time=t, priority=100, skippable=False,
                          narrative=(self.intro_for(page) if self.include_narrative else "") or None),
        ]
        t += INTRO_WAIT_MS
        timeline.append(PlannedAction("pan", scroll_duration * 0.3, start_time=t, priority=60,
                                      params={"startX": 0.2, "startY": 0.3, "endX": 0.8, "endY": 0.4}))
        t += scroll_duration * 0.3
        timeline.append(PlannedAction("scroll", scroll_duration * 0.5, start_time=t, priority=50,
                                      params={"distance": SCROLL_DISTANCE_PX}))
        t += scroll_duration * 0.5
        timeline.append(PlannedAction("scroll-to", scroll_duration * 0.2, start_time=t, priority=40,
                                      params={"y": 0}))
        timeline.append(PlannedAction("wait", FINAL_PAUSE_MS, start_time=page.duration - FINAL_PAUSE_MS, priority=90))
        return timeline

    # ------------------------------------------------------------------
    # narration ---------------------------------------------------------

    def intro_for(self, page: PageEntry) -> str:
        templates = INTROS.get(self.style)
        if not templates:
            return ""
        home, other = templates
        # drop " | Brand" style suffixes
        title = page.title.split(" | ")[0] or "this page"
        return (home if page.is_root else other).format(title=title)

    def generate_narrative(self) -> None:
        self.script = [line for line in (self.intro_for(p) for p in self.pages) if line]

    @property
    def narrative(self) -> str:
        return " ".join(self.script)

    # ------------------------------------------------------------------
    # queries -----------------------------------------------------------

    @property
    def action_count(self) -> int:
        return sum(len(p.timeline) for p in self.pages)

    def get_timeline_for_page(self, page_id: str) -> List[PlannedAction]:
        for page in self.pages:
            if page.id == page_id:
                return page.timeline
        return []

    def get_action_at_time(self, global_ms: float) -> Optional[PlannedAction]:
        for page in self.pages:
            if page.start_time <= global_ms < page.start_time + page.duration:
                local = global_ms - page.start_time
                for action in page.timeline:
                    if action.start_time <= local < action.start_time + action.duration:
                        return action
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalDuration": self.total_duration,
            "style": self.style,
            "focus": self.focus,
            "pages": [p.to_dict() for p in self.pages],
            "narrative": self.narrative,
        }
