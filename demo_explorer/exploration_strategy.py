from __future__ import annotations

"""Exploration policy: which link to follow next, when to backtrack, when to stop."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from .config import StrategyOptions
from .decision_oracle import DecisionOracle
from .errors import StrategyConfigError
from .links import (
    Link,
    LinkFilter,
    create_domain_filter,
    skip_assets,
    skip_auth_pages,
    skip_blog_pages,
    skip_invalid_links,
    skip_legal_pages,
    skip_social_links,
)
from .navigation_graph import NavigationGraph, NavigationNode

logger = logging.getLogger(__name__)

NodeFilter = Callable[[NavigationNode], bool]


class StrategyType(str, Enum):
    BREADTH_FIRST = "breadth-first"
    DEPTH_FIRST = "depth-first"
    PRIORITY = "priority"
    AI_GUIDED = "ai-guided"


class ExplorationAction(str, Enum):
    CLICK = "click"
    BACK = "back"
    DONE = "done"
    SKIP = "skip"


@dataclass
class ExplorationDecision:
    action: ExplorationAction
    target: Optional[str] = None
    link: Optional[Link] = None
    reason: str = ""


@dataclass
class StrategyStats:
    links_evaluated: int = 0
    links_skipped: int = 0
    back_navigations: int = 0
    ai_decisions: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "linksEvaluated": self.links_evaluated,
            "linksSkipped": self.links_skipped,
            "backNavigations": self.back_navigations,
            "aiDecisions": self.ai_decisions,
        }


# ---- link scoring tables ----

HIGH_VALUE_KEYWORDS = {
    "feature": 30,
    "product": 25,
    "pricing": 20,
    "how it works": 25,
    "tour": 25,
    "demo": 30,
    "explore": 20,
    "discover": 15,
    "see": 10,
    "learn more": 15,
    "get started": 20,
    "dashboard": 15,
    "overview": 15,
}

LOW_VALUE_KEYWORDS = {
    "blog": -20,
    "news": -15,
    "login": -40,
    "sign in": -40,
    "sign up": -30,
    "register": -30,
    "terms": -50,
    "privacy": -50,
    "cookie": -50,
    "legal": -50,
    "careers": -40,
    "jobs": -40,
    "contact": -10,
    "support": -10,
}

FOCUS_KEYWORDS = {
    "features": ("feature",),
    "pricing": ("pricing", "plan"),
    "technical": ("doc", "api", "developer"),
    "overview": ("about", "overview"),
}
FOCUS_BOOST = 20
NAV_LINK_BOOST = 10

HIGH_VALUE_NODE_PATTERNS = (
    "feature", "product", "pricing", "tour", "demo",
    "how-it-works", "overview", "dashboard", "explore",
)


class ExplorationStrategy:
    """Decides the next navigation step given the graph and the links on the current node."""

    def __init__(
        self,
        graph: NavigationGraph,
        strategy: str | StrategyType = StrategyType.PRIORITY,
        max_depth: int = 3,
        max_nodes_per_level: int = 5,
        max_total_nodes: int = 20,
        focus: str = "features",
        oracle: Optional[DecisionOracle] = None,
    ) -> None:
        self.graph = graph
        self.strategy = self._coerce_strategy(strategy)
        self.max_depth = self._at_least_one("max_depth", max_depth)
        self.max_nodes_per_level = self._at_least_one("max_nodes_per_level", max_nodes_per_level)
        self.max_total_nodes = self._at_least_one("max_total_nodes", max_total_nodes)
        self.focus = focus
        self.oracle = oracle

        self.link_filters: List[LinkFilter] = []
        self.node_filters: List[NodeFilter] = []
        self.processed_urls: set[str] = set()
        self.stats = StrategyStats()

        self.add_link_filter(skip_invalid_links)
        self.add_link_filter(skip_assets)

    @classmethod
    def from_options(
        cls, graph: NavigationGraph, options: StrategyOptions, oracle: Optional[DecisionOracle] = None
    ) -> "ExplorationStrategy":
        return cls(
            graph,
            strategy=options.strategy,
            max_depth=options.max_depth,
            max_nodes_per_level=options.max_nodes_per_level,
            max_total_nodes=options.max_total_nodes,
            focus=options.focus,
            oracle=oracle,
        )

    # ------------------------------------------------------------------
    # configuration -----------------------------------------------------

    @staticmethod
    def _coerce_strategy(name: str | StrategyType) -> StrategyType:
        try:
            return StrategyType(name)
        except ValueError:
            valid = ", ".join(s.value for s in StrategyType)
            raise StrategyConfigError(f"Unknown strategy: {name}. Valid strategies: {valid}") from None

    @staticmethod
    def _at_least_one(name: str, value: int) -> int:
        if value < 1:
            raise StrategyConfigError(f"{name} must be at least 1")
        return value

    def set_strategy(self, name: str | StrategyType) -> None:
        self.strategy = self._coerce_strategy(name)

    def set_max_depth(self, depth: int) -> None:
        self.max_depth = self._at_least_one("max_depth", depth)

    def set_max_nodes_per_level(self, count: int) -> None:
        self.max_nodes_per_level = self._at_least_one("max_nodes_per_level", count)

    def set_max_total_nodes(self, count: int) -> None:
        self.max_total_nodes = self._at_least_one("max_total_nodes", count)

    def add_link_filter(self, fn: LinkFilter) -> None:
        if not callable(fn):
            raise StrategyConfigError("Link filter must be callable")
        self.link_filters.append(fn)

    def add_node_filter(self, fn: NodeFilter) -> None:
        if not callable(fn):
            raise StrategyConfigError("Node filter must be callable")
        self.node_filters.append(fn)

    def clear_link_filters(self) -> None:
        self.link_filters = []

    def clear_node_filters(self) -> None:
        self.node_filters = []

    def mark_processed(self, url: Optional[str]) -> None:
        if url:
            self.processed_urls.add(url)

    def reset_stats(self) -> None:
        self.stats = StrategyStats()
        self.processed_urls.clear()

    # ------------------------------------------------------------------
    # per-link / per-node decisions ------------------------------------

    def should_explore_link(self, link: Link, node: NavigationNode) -> bool:
        """Apply processed-url check, registered filters and the three budgets."""
        self.stats.links_evaluated += 1

        if link.href and link.href in self.processed_urls:
            return self._skip()
        for link_filter in self.link_filters:
            if not link_filter(link, node):
                return self._skip()
        if node.depth >= self.max_depth:
            return self._skip()
        if len(self.graph.get_nodes_at_depth(node.depth + 1)) >= self.max_nodes_per_level:
            return self._skip()
        if self.graph.size >= self.max_total_nodes:
            return self._skip()
        return True

    def _skip(self) -> bool:
        self.stats.links_skipped += 1
        return False

    def filter_links(self, node: NavigationNode, links: Iterable[Link]) -> List[Link]:
        return [link for link in links if self.should_explore_link(link, node)]

    def should_go_deeper(self, node: NavigationNode) -> bool:
        if node.depth >= self.max_depth or not node.has_unexplored_links():
            return False
        if not all(node_filter(node) for node_filter in self.node_filters):
            return False

        if self.strategy is StrategyType.BREADTH_FIRST:
            return not any(s.has_unexplored_links() for s in self.graph.get_siblings(node.id))
        if self.strategy is StrategyType.PRIORITY:
            return self.is_high_value_node(node)
        return True

    def should_go_back(self, node: NavigationNode) -> bool:
        if not node.parent:
            return False
        if not node.has_unexplored_links():
            return True
        if node.depth >= self.max_depth:
            return True
        if self.strategy is StrategyType.BREADTH_FIRST:
            parent = self.graph.get_parent(node.id)
            return bool(parent and parent.has_unexplored_links())
        return False

    def is_high_value_node(self, node: NavigationNode) -> bool:
        title = (node.title or "").lower()
        url = (node.url or "").lower()
        return any(p in title or p in url for p in HIGH_VALUE_NODE_PATTERNS)

    # ------------------------------------------------------------------
    # main entry point --------------------------------------------------

    async def select_next_action(self, node: NavigationNode, available_links: Iterable[Link]) -> ExplorationDecision:
        valid = self.filter_links(node, available_links)

        if not valid:
            if node.parent and self.graph.size < self.max_total_nodes:
                return self._back("No more valid links to explore")
            if self.graph.size >= self.max_total_nodes:
                return ExplorationDecision(ExplorationAction.DONE, reason="Maximum nodes limit reached")
            return ExplorationDecision(ExplorationAction.DONE, reason="Exploration complete - no more links")

        if self.should_go_back(node):
            return self._back("Strategy suggests returning to parent")

        if self.graph.size >= self.max_total_nodes:
            return ExplorationDecision(ExplorationAction.DONE, reason="Maximum nodes limit reached")

        if self.strategy is StrategyType.AI_GUIDED:
            decision = await self._select_with_oracle(node, valid)
            self.stats.ai_decisions += 1
            return decision

        if self.strategy is StrategyType.PRIORITY:
            chosen = self.select_by_priority(valid)
            reason = "Selected highest priority link"
        else:
            chosen = valid[0]
            reason = f"{self.strategy.value}: taking first available link"

        if chosen is None:
            return ExplorationDecision(ExplorationAction.DONE, reason="No suitable link found")
        logger.debug("Strategy %s picked %r (%s)", self.strategy.value, chosen.label, reason)
        return self._click(chosen, reason)

    def _back(self, reason: str) -> ExplorationDecision:
        self.stats.back_navigations += 1
        return ExplorationDecision(ExplorationAction.BACK, reason=reason)

    @staticmethod
    def _click(link: Link, reason: str) -> ExplorationDecision:
        return ExplorationDecision(ExplorationAction.CLICK, target=link.text or link.selector, link=link, reason=reason)

    # ------------------------------------------------------------------
    # priority scoring --------------------------------------------------

    def select_by_priority(self, links: List[Link]) -> Optional[Link]:
        if not links:
            return None
        # max() keeps the first of equally scored links, i.e. discovery order
        return max(links, key=self.score_link)

    def score_link(self, link: Link) -> int:
        text = (link.text or "").lower()
        href = (link.href or "").lower()
        score = 0

        for keyword, value in HIGH_VALUE_KEYWORDS.items():
            if keyword in text or keyword.replace(" ", "-") in href:
                score += value

        focus_terms = FOCUS_KEYWORDS.get(self.focus, ())
        if self.focus == "features":
            if any(t in text or t in href for t in focus_terms):
                score += FOCUS_BOOST
        elif any(t in text for t in focus_terms):
            score += FOCUS_BOOST

        for keyword, value in LOW_VALUE_KEYWORDS.items():
            if keyword in text or keyword.replace(" ", "-") in href:
                score += value

        if link.is_nav:
            score += NAV_LINK_BOOST
        return score

    # ------------------------------------------------------------------
    # AI-guided selection ----------------------------------------------

    async def _select_with_oracle(self, node: NavigationNode, candidates: List[Link]) -> ExplorationDecision:
        """Ask the oracle; any failure or out-of-set answer falls back to priority scoring."""
        if self.oracle is None:
            return self._priority_fallback(candidates, "Fallback: no decision oracle configured")

        texts = [link.text or link.href or "Unknown" for link in candidates]
        summary: Dict[str, Any] = {
            "title": node.title,
            "url": node.url,
            "depth": node.depth,
            "max_depth": self.max_depth,
            "visited_titles": self.graph.get_visited_titles()[-10:],
            "total_nodes": self.graph.size,
        }
        try:
            reply = await self.oracle.decide(summary, texts, self.focus)
        except Exception as exc:
            logger.warning("Decision oracle failed, using priority fallback: %s", exc)
            return self._priority_fallback(candidates, "Fallback: AI unavailable")

        action = str(getattr(reply, "action", "") or "").lower()
        if action == ExplorationAction.DONE.value:
            return ExplorationDecision(ExplorationAction.DONE, reason=reply.reason or "AI decided to stop")
        if action == ExplorationAction.BACK.value and node.parent:
            return self._back(reply.reason or "AI suggests returning to parent")

        match = self._match_candidate(getattr(reply, "target", None), candidates)
        if match is not None:
            return self._click(match, reply.reason or "AI-selected link")
        return self._priority_fallback(candidates, "AI target not found, using priority fallback")

    @staticmethod
    def _match_candidate(target: Optional[str], candidates: List[Link]) -> Optional[Link]:
        if not target:
            return None
        wanted = str(target).strip().casefold()
        for link in candidates:
            if (link.text or "").strip().casefold() == wanted or (link.href and link.href == target):
                return link
        return None

    def _priority_fallback(self, candidates: List[Link], reason: str) -> ExplorationDecision:
        chosen = self.select_by_priority(candidates)
        if chosen is None:
            return ExplorationDecision(ExplorationAction.DONE, reason="AI failed and no valid links")
        return self._click(chosen, reason)


def create_demo_strategy(
    graph: NavigationGraph,
    max_depth: int = 2,
    max_nodes_per_level: int = 4,
    max_total_nodes: int = 12,
    focus: str = "features",
    strategy: str | StrategyType = StrategyType.PRIORITY,
    skip_blog: bool = True,
    base_domain: Optional[str] = None,
    oracle: Optional[DecisionOracle] = None,
) -> ExplorationStrategy:
    """Strategy tuned for short product demos: shallow, feature-seeking, no auth/legal/social pages."""
    explorer = ExplorationStrategy(
        graph,
        strategy=strategy,
        max_depth=max_depth,
        max_nodes_per_level=max_nodes_per_level,
        max_total_nodes=max_total_nodes,
        focus=focus,
        oracle=oracle,
    )
    explorer.add_link_filter(skip_auth_pages)
    explorer.add_link_filter(skip_legal_pages)
    explorer.add_link_filter(skip_social_links)
    if skip_blog:
        explorer.add_link_filter(skip_blog_pages)
    if base_domain:
        explorer.add_link_filter(create_domain_filter(base_domain))
    return explorer
