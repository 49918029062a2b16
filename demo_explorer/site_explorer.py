from __future__ import annotations

"""Explore phase: walk the site with an ExplorationStrategy and build the NavigationGraph."""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, List, Optional

import networkx as nx

from .collaborators import HeuristicStateDetector, PageAutomation, StateDetector
from .error_recovery import ErrorRecovery, RecoveryContext
from .exploration_strategy import ExplorationAction, ExplorationStrategy
from .links import Link
from .navigation_graph import NavigationGraph, NavigationNode, create_node_id

logger = logging.getLogger(__name__)

# Returns {title, url, links:[{text, href, selector, isNav}]} for the current document.
LINK_EXTRACTOR_JS = """
(maxLinks) => {
  const navHrefs = new Set(
    Array.from(document.querySelectorAll('nav a, header a, [role="navigation"] a')).map(a => a.href)
  );
  const seen = new Set();
  const links = [];
  for (const a of document.querySelectorAll('a[href]')) {
    const raw = a.getAttribute('href') || '';
    const href = a.href;
    if (!href || raw.startsWith('#') || href.startsWith('javascript:')) continue;
    if (seen.has(href)) continue;
    seen.add(href);
    const text = (a.textContent || '').trim() || a.getAttribute('aria-label') || '';
    links.push({
      text: text.slice(0, 80),
      href,
      selector: `a[href="${raw.replace(/"/g, '\\\\"')}"]`,
      isNav: navHrefs.has(href),
    });
    if (links.length >= maxLinks) break;
  }
  return { title: document.title, url: window.location.href, links };
}
"""


@dataclass
class PageSnapshot:
    url: str
    title: str = ""
    links: List[Link] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Any, fallback_url: str) -> "PageSnapshot":
        if not isinstance(payload, dict):
            return cls(url=fallback_url)
        links = [
            Link.from_dict({**d, "text": (d.get("text") or "").strip()})
            for d in payload.get("links") or []
            if isinstance(d, dict)
        ]
        return cls(url=payload.get("url") or fallback_url, title=payload.get("title") or "", links=links)


class SiteExplorer:
    """Drives one exploration session against a PageAutomation."""

    def __init__(
        self,
        automation: PageAutomation,
        strategy: ExplorationStrategy,
        recovery: ErrorRecovery,
        state_detector: Optional[StateDetector] = None,
        max_steps: int = 40,
        max_links: int = 50,
        artifacts_dir: Optional[str] = None,
    ) -> None:
        self.automation = automation
        self.strategy = strategy
        self.graph: NavigationGraph = strategy.graph
        self.recovery = recovery
        self.state_detector = state_detector or HeuristicStateDetector(automation)
        self.max_steps = max_steps
        self.max_links = max_links
        self.artifacts_dir = artifacts_dir
        self.steps_taken = 0

    # ------------------------------------------------------------------
    async def explore(self, start_url: str) -> NavigationGraph:
        """Entry point. Raises FallbackRequired when recovery gives up."""
        logger.info("Exploring %s (strategy=%s, max_steps=%d)", start_url, self.strategy.strategy.value, self.max_steps)

        await self._navigate(start_url)
        await self._dismiss_blocking()
        snapshot = await self._snapshot(start_url)

        root = NavigationNode(
            id=create_node_id(snapshot.url),
            url=snapshot.url,
            title=snapshot.title,
            depth=0,
            unexplored_links=snapshot.links,
        )
        root = self.graph.add_node(root)
        self.graph.set_root(root.id)
        self.strategy.mark_processed(start_url)
        self.strategy.mark_processed(snapshot.url)

        current = root
        for _ in range(self.max_steps):
            self.steps_taken += 1
            decision = await self.strategy.select_next_action(current, list(current.unexplored_links))
            logger.debug("Step %d at %s: %s (%s)", self.steps_taken, current.id, decision.action.value, decision.reason)

            if decision.action is ExplorationAction.DONE:
                break
            if decision.action is ExplorationAction.SKIP:
                continue
            if decision.action is ExplorationAction.BACK:
                parent = self.graph.get_parent(current.id)
                if parent is None:
                    break
                if not await self._navigate(parent.url):
                    logger.warning("Could not return to %s, stopping exploration", parent.url)
                    break
                current = parent
                continue

            link = decision.link
            if link is None:
                continue
            current.mark_link_explored(link)
            self.strategy.mark_processed(link.href)
            current = await self._follow(current, link)

        logger.info("Exploration finished: %s", self.graph.summary())
        self._save_artifacts()
        return self.graph

    # ------------------------------------------------------------------
    # helpers -----------------------------------------------------------

    def _context(self, action: str, selector: Optional[str] = None) -> RecoveryContext:
        return RecoveryContext(
            automation=self.automation,
            action=action,
            selector=selector,
            state_detector=self.state_detector,
        )

    async def _navigate(self, url: str) -> bool:
        outcome = await self.recovery.run_guarded(
            lambda: self.automation.navigate(url, wait_until="domcontentloaded", timeout_ms=30_000),
            self._context("navigate"),
        )
        return outcome.ok

    async def _dismiss_blocking(self) -> None:
        await self.recovery.run_guarded(self.state_detector.dismiss_blocking_elements, self._context("dismiss-blocking"))

    async def _snapshot(self, fallback_url: str) -> PageSnapshot:
        outcome = await self.recovery.run_guarded(
            lambda: self.automation.evaluate(LINK_EXTRACTOR_JS, self.max_links),
            self._context("extract-links"),
        )
        if not outcome.ok:
            return PageSnapshot(url=fallback_url)
        return PageSnapshot.from_payload(outcome.value, fallback_url)

    async def _follow(self, current: NavigationNode, link: Link) -> NavigationNode:
        """Open ``link`` and register where it leads. Returns the node we end up on."""
        ctx = self._context("click", link.selector or None)

        async def _open() -> None:
            if link.href:
                await self.automation.navigate(link.href, wait_until="domcontentloaded", timeout_ms=30_000)
            else:
                await self.automation.click(ctx.current_target or link.selector)

        outcome = await self.recovery.run_guarded(_open, ctx)
        if not outcome.ok:
            # skipped; the link is already marked explored on ``current``
            return current

        await self._dismiss_blocking()
        snapshot = await self._snapshot(link.href or self.automation.url)
        node_id = create_node_id(snapshot.url)
        if node_id == current.id:
            return current

        is_new = not self.graph.has_node(node_id)
        if not is_new and self.graph.would_create_cycle(current.id, node_id):
            logger.debug("Link %r loops back to %s", link.label, node_id)

        node = self.graph.add_node(
            NavigationNode(
                id=node_id,
                url=snapshot.url,
                title=snapshot.title,
                parent=current.id,
                depth=current.depth + 1,
                unexplored_links=snapshot.links,
                metadata={"isNavigation": link.is_nav},
            )
        )
        self.graph.add_edge(current.id, node.id, via=link, type="click")
        self.strategy.mark_processed(snapshot.url)
        return node

    def _save_artifacts(self) -> None:
        if not self.artifacts_dir:
            return
        os.makedirs(self.artifacts_dir, exist_ok=True)
        try:
            with open(os.path.join(self.artifacts_dir, "navigation_graph.json"), "w", encoding="utf-8") as fh:
                json.dump(self.graph.to_json(), fh, indent=2)
        except OSError as e:
            logger.warning(f"Failed to write navigation_graph.json: {e}")
        try:
            nx.write_graphml(self.graph.to_networkx(), os.path.join(self.artifacts_dir, "navigation_graph.graphml"))
        except Exception as e:
            logger.warning(f"Failed to write GraphML: {e}")
