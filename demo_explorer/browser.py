from __future__ import annotations

"""Playwright-backed capture session: a recording browser page plus a visible cursor overlay."""

import asyncio
import logging
import os
from typing import Any, Optional, Tuple

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

logger = logging.getLogger(__name__)

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]

_ENSURE_CURSOR_JS = """
() => {
    let cursor = document.getElementById('demo-cursor');
    if (!cursor && document.body) {
        cursor = document.createElement('div');
        cursor.id = 'demo-cursor';
        cursor.style.width = '14px';
        cursor.style.height = '14px';
        cursor.style.position = 'fixed';
        cursor.style.borderRadius = '50%';
        cursor.style.zIndex = '999999';
        cursor.style.pointerEvents = 'none';
        cursor.style.background = 'radial-gradient(circle at center, #fff 20%, #f00 100%)';
        cursor.style.boxShadow = '0 0 6px 2px rgba(255,0,0,0.5)';
        cursor.style.transition = 'left 0.05s linear, top 0.05s linear';
        document.body.appendChild(cursor);
    }
}
"""

_PLACE_CURSOR_JS = """
([x, y]) => {
    const cursor = document.getElementById('demo-cursor');
    if (cursor) {
        cursor.style.left = (x - 7) + 'px';
        cursor.style.top = (y - 7) + 'px';
    }
}
"""

_CLICK_RIPPLE_JS = """
([x, y]) => {
    if (!document.body) return;
    const ripple = document.createElement('div');
    ripple.style.position = 'fixed';
    ripple.style.left = (x - 20) + 'px';
    ripple.style.top = (y - 20) + 'px';
    ripple.style.width = '40px';
    ripple.style.height = '40px';
    ripple.style.borderRadius = '50%';
    ripple.style.backgroundColor = 'rgba(255, 0, 0, 0.3)';
    ripple.style.pointerEvents = 'none';
    ripple.style.zIndex = '999997';
    ripple.style.transition = 'transform 0.5s ease-out, opacity 0.5s ease-out';
    document.body.appendChild(ripple);
    requestAnimationFrame(() => { ripple.style.transform = 'scale(2)'; ripple.style.opacity = '0'; });
    setTimeout(() => ripple.remove(), 600);
}
"""


class PlaywrightCaptureSession:
    """Chromium page whose context records a video of everything shown."""

    def __init__(
        self,
        headless: bool = True,
        width: int = 1920,
        height: int = 1080,
        video_dir: Optional[str] = None,
        show_cursor: bool = True,
    ) -> None:
        self.headless = headless
        self.width = width
        self.height = height
        self.video_dir = video_dir
        self.show_cursor = show_cursor
        self.last_cursor_position: Tuple[float, float] = (width / 2, height / 2)

        self._pw: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    async def __aenter__(self) -> "PlaywrightCaptureSession":
        await self.open()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    async def open(self) -> None:
        self._pw = await async_playwright().start()
        self._browser = await self._pw.chromium.launch(headless=self.headless, args=LAUNCH_ARGS)
        context_kwargs: dict[str, Any] = {"viewport": {"width": self.width, "height": self.height}}
        if self.video_dir:
            os.makedirs(self.video_dir, exist_ok=True)
            context_kwargs["record_video_dir"] = self.video_dir
            context_kwargs["record_video_size"] = {"width": self.width, "height": self.height}
        self._context = await self._browser.new_context(**context_kwargs)
        self._page = await self._context.new_page()
        logger.info("Capture session open (%dx%d, headless=%s)", self.width, self.height, self.headless)

    async def close(self) -> Optional[str]:
        """Close everything; returns the recorded video path, if any."""
        video_path: Optional[str] = None
        video = self._page.video if self._page is not None else None
        try:
            if self._context is not None:
                await self._context.close()
            if video is not None:
                video_path = await video.path()
        finally:
            if self._browser is not None:
                await self._browser.close()
            if self._pw is not None:
                await self._pw.stop()
            self._page = self._context = self._browser = self._pw = None
        return video_path

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Capture session is not open")
        return self._page

    @property
    def url(self) -> str:
        return self._page.url if self._page is not None else ""

    # ------------------------------------------------------------------
    # navigation --------------------------------------------------------

    async def navigate(self, url: str, wait_until: str = "domcontentloaded", timeout_ms: int = 30_000) -> None:
        await self.page.goto(url, wait_until=wait_until, timeout=timeout_ms)
        await self._settle()

    async def reload(self, wait_until: str = "domcontentloaded", timeout_ms: int = 15_000) -> None:
        await self.page.reload(wait_until=wait_until, timeout=timeout_ms)
        await self._settle()

    async def go_back(self, timeout_ms: int = 10_000) -> None:
        await self.page.go_back(wait_until="domcontentloaded", timeout=timeout_ms)
        await self._settle()

    async def _settle(self) -> None:
        try:
            await self.page.wait_for_load_state("networkidle", timeout=10_000)
        except PlaywrightTimeoutError:
            logger.debug("Network did not go idle on %s", self.url)

    async def title(self) -> str:
        return await self.page.title()

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if arg is None:
            return await self.page.evaluate(script)
        return await self.page.evaluate(script, arg)

    # ------------------------------------------------------------------
    # interaction -------------------------------------------------------

    async def _center_of(self, selector: str, timeout_ms: int) -> Optional[Tuple[float, float]]:
        box = await self.page.locator(selector).first.bounding_box(timeout=timeout_ms)
        if not box:
            return None
        return box["x"] + box["width"] / 2, box["y"] + box["height"] / 2

    async def click(self, selector: str, timeout_ms: int = 5_000) -> None:
        center = await self._center_of(selector, timeout_ms) if self.show_cursor else None
        if center:
            await self.move_mouse(*center)
            await self.page.evaluate(_CLICK_RIPPLE_JS, list(center))
        await self.page.locator(selector).first.click(timeout=timeout_ms)

    async def hover(self, selector: str, timeout_ms: int = 5_000) -> None:
        center = await self._center_of(selector, timeout_ms)
        if center:
            await self.move_mouse(*center)
        await self.page.locator(selector).first.hover(timeout=timeout_ms)

    async def is_visible(self, selector: str) -> bool:
        return await self.page.locator(selector).first.is_visible()

    async def press_key(self, key: str) -> None:
        await self.page.keyboard.press(key)

    async def wait(self, ms: float) -> None:
        await self.page.wait_for_timeout(max(0.0, ms))

    async def move_mouse(self, x: float, y: float, steps: int = 20) -> None:
        """Glide the real mouse and the visible cursor overlay to (x, y)."""
        start_x, start_y = self.last_cursor_position
        if self.show_cursor:
            await self.page.evaluate(_ENSURE_CURSOR_JS)
        for step in range(1, steps + 1):
            cx = start_x + (x - start_x) * step / steps
            cy = start_y + (y - start_y) * step / steps
            await self.page.mouse.move(cx, cy)
            if self.show_cursor:
                await self.page.evaluate(_PLACE_CURSOR_JS, [cx, cy])
            await asyncio.sleep(0.01)
        self.last_cursor_position = (x, y)

    async def scroll_by(self, dy: float, duration_ms: float) -> None:
        await self._smooth_scroll(dy, duration_ms)

    async def scroll_to(self, y: float, duration_ms: float) -> None:
        current = await self.page.evaluate("() => window.scrollY")
        await self._smooth_scroll(y - (current or 0), duration_ms)

    async def _smooth_scroll(self, dy: float, duration_ms: float) -> None:
        steps = max(1, int(duration_ms // 50))
        per_step = dy / steps
        for _ in range(steps):
            await self.page.evaluate("(d) => window.scrollBy(0, d)", per_step)
            await asyncio.sleep(duration_ms / steps / 1000)
