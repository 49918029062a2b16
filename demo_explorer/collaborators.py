from __future__ import annotations

"""Interfaces of the external collaborators the core drives, plus default implementations.

The core always calls a concrete method; where a real collaborator is optional the
defaults below stand in for it (heuristic state detection, no alternative
targets, a finalizer that only copies the raw capture).
"""

import asyncio
import logging
import os
import shutil
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

# Close buttons, "X" buttons, polite refusals and cookie/consent banners.
MODAL_DISMISS_SELECTORS = (
    '[aria-label="Close"]',
    '[aria-label="Dismiss"]',
    'button[class*="close"]',
    'button[class*="dismiss"]',
    ".modal-close",
    ".popup-close",
    ".close-button",
    '[data-dismiss="modal"]',
    'button:has-text("×")',
    'button:has-text("✕")',
    'button:has-text("X")',
    'button:has-text("No thanks")',
    'button:has-text("Maybe later")',
    'button:has-text("Not now")',
    'button:has-text("Skip")',
    'button:has-text("Cancel")',
    '[id*="cookie"] button',
    '[class*="cookie"] button',
    '[id*="consent"] button',
    '[class*="consent"] button',
    '[id*="gdpr"] button',
)


class PageAutomation(Protocol):
    """Page-level browser primitives. Failures surface as ordinary exceptions."""

    @property
    def url(self) -> str: ...

    async def navigate(self, url: str, wait_until: str = "domcontentloaded", timeout_ms: int = 30_000) -> None: ...

    async def reload(self, wait_until: str = "domcontentloaded", timeout_ms: int = 15_000) -> None: ...

    async def go_back(self, timeout_ms: int = 10_000) -> None: ...

    async def title(self) -> str: ...

    async def evaluate(self, script: str, arg: Any = None) -> Any: ...

    async def click(self, selector: str, timeout_ms: int = 5_000) -> None: ...

    async def hover(self, selector: str, timeout_ms: int = 5_000) -> None: ...

    async def is_visible(self, selector: str) -> bool: ...

    async def scroll_by(self, dy: float, duration_ms: float) -> None: ...

    async def scroll_to(self, y: float, duration_ms: float) -> None: ...

    async def move_mouse(self, x: float, y: float, steps: int = 20) -> None: ...

    async def press_key(self, key: str) -> None: ...

    async def wait(self, ms: float) -> None: ...


class CaptureSession(PageAutomation, Protocol):
    """A PageAutomation that records what it shows; ``close`` returns the raw video path."""

    async def open(self) -> None: ...

    async def close(self) -> Optional[str]: ...


class StateDetector(Protocol):
    async def dismiss_blocking_elements(self) -> None: ...

    async def wait_for_content_ready(self) -> None: ...


class ElementAlternativeFinder(Protocol):
    async def find_alternatives(self, selector: str) -> List[str]: ...


class Finalizer(Protocol):
    """Turns a raw capture into the deliverable; rendering and narration run concurrently."""

    async def render(self, raw_video: Optional[str], output_path: str) -> Optional[str]: ...

    async def narrate(self, script: Sequence[str], output_dir: str) -> Optional[str]: ...


# ---------------------------------------------------------------------------
# default implementations ---------------------------------------------------


class HeuristicStateDetector:
    """State detection without page understanding: fixed selector list plus Escape, fixed settle wait."""

    def __init__(
        self,
        automation: Optional[PageAutomation],
        sleep: Sleep = asyncio.sleep,
        settle_s: float = 2.0,
        selectors: Sequence[str] = MODAL_DISMISS_SELECTORS,
    ) -> None:
        self._automation = automation
        self._sleep = sleep
        self._settle_s = settle_s
        self._selectors = tuple(selectors)

    async def dismiss_blocking_elements(self) -> None:
        page = self._automation
        if page is None:
            return
        for selector in self._selectors:
            try:
                if await page.is_visible(selector):
                    await page.click(selector, timeout_ms=1000)
                    await self._sleep(0.3)
                    logger.debug("Dismissed overlay via %s", selector)
                    return
            except Exception as exc:
                logger.debug("Dismiss selector %s failed: %s", selector, exc)
        await page.press_key("Escape")
        await self._sleep(0.3)

    async def wait_for_content_ready(self) -> None:
        await self._sleep(self._settle_s)


class NoAlternativeFinder:
    async def find_alternatives(self, selector: str) -> List[str]:
        return []


class PassthroughFinalizer:
    """Copies the raw capture to the output path and writes the narration script as text."""

    async def render(self, raw_video: Optional[str], output_path: str) -> Optional[str]:
        if not raw_video or not os.path.exists(raw_video):
            logger.warning("No raw capture to render")
            return None
        out_dir = os.path.dirname(os.path.abspath(output_path))
        os.makedirs(out_dir, exist_ok=True)
        if os.path.abspath(raw_video) != os.path.abspath(output_path):
            await asyncio.to_thread(shutil.copyfile, raw_video, output_path)
        return output_path

    async def narrate(self, script: Sequence[str], output_dir: str) -> Optional[str]:
        if not script:
            return None
        os.makedirs(output_dir, exist_ok=True)
        path = os.path.join(output_dir, "narration.txt")
        with open(path, "w", encoding="utf-8") as fh:
            fh.write("\n".join(script) + "\n")
        return path
