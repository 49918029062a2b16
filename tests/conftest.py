import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest


# Ensure the repo root is on PYTHONPATH so `import demo_explorer` works in tests
_ROOT = Path(__file__).resolve().parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from demo_explorer.decision_oracle import OracleDecision  # noqa: E402


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class RecordingSleep:
    def __init__(self, clock: Optional[FakeClock] = None) -> None:
        self.calls: List[float] = []
        self._clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self._clock is not None:
            self._clock.advance(seconds * 1000)


class FakeSession:
    """In-memory CaptureSession over a tiny site map.

    ``site`` maps url -> {"title": str, "links": [{"text", "href", "selector", "isNav"}]}.
    ``failures`` maps url -> list of exceptions raised by successive navigate() calls;
    a None entry lets that call through.
    """

    def __init__(
        self,
        site: Dict[str, Dict[str, Any]],
        clock: Optional[FakeClock] = None,
        failures: Optional[Dict[str, List[Exception]]] = None,
        video_path: Optional[str] = None,
        action_failures: Optional[Dict[str, List[Exception]]] = None,
    ) -> None:
        self.site = site
        self.clock = clock
        self.failures = failures or {}
        self.action_failures = action_failures or {}
        self.video_path = video_path
        self.current = ""
        self.calls: List[tuple] = []
        self.opened = False
        self.closed = False

    @property
    def url(self) -> str:
        return self.current

    async def open(self) -> None:
        self.opened = True
        self.calls.append(("open",))

    async def close(self) -> Optional[str]:
        self.closed = True
        self.calls.append(("close",))
        return self.video_path

    async def navigate(self, url: str, wait_until: str = "domcontentloaded", timeout_ms: int = 30_000) -> None:
        self.calls.append(("navigate", url))
        pending = self.failures.get(url)
        if pending:
            exc = pending.pop(0)
            if exc is not None:
                raise exc
        self.current = url

    async def reload(self, wait_until: str = "domcontentloaded", timeout_ms: int = 15_000) -> None:
        self.calls.append(("reload",))

    async def go_back(self, timeout_ms: int = 10_000) -> None:
        self.calls.append(("go_back",))

    async def title(self) -> str:
        return self.site.get(self.current, {}).get("title", "")

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        page = self.site.get(self.current, {})
        return {"title": page.get("title", ""), "url": self.current, "links": list(page.get("links", []))}

    async def click(self, selector: str, timeout_ms: int = 5_000) -> None:
        self.calls.append(("click", selector))
        self._maybe_fail(("click", selector))
        for link in self.site.get(self.current, {}).get("links", []):
            if link.get("selector") == selector and link.get("href"):
                self.current = link["href"]
                return

    async def hover(self, selector: str, timeout_ms: int = 5_000) -> None:
        self.calls.append(("hover", selector))
        self._maybe_fail(("hover", selector))

    async def is_visible(self, selector: str) -> bool:
        return False

    async def scroll_by(self, dy: float, duration_ms: float) -> None:
        self.calls.append(("scroll_by", dy))
        self._maybe_fail(("scroll_by",))
        self._tick(duration_ms)

    async def scroll_to(self, y: float, duration_ms: float) -> None:
        self.calls.append(("scroll_to", y))
        self._tick(duration_ms)

    async def move_mouse(self, x: float, y: float, steps: int = 20) -> None:
        self.calls.append(("move_mouse", x, y))

    async def press_key(self, key: str) -> None:
        self.calls.append(("press_key", key))

    async def wait(self, ms: float) -> None:
        self.calls.append(("wait", ms))
        self._maybe_fail(("wait",))
        self._tick(ms)

    def _tick(self, ms: float) -> None:
        if self.clock is not None:
            self.clock.advance(ms)

    def _maybe_fail(self, key: tuple) -> None:
        pending = self.action_failures.get(key[0] if len(key) == 1 else f"{key[0]}:{key[1]}")
        if pending:
            raise pending.pop(0)


class StubOracle:
    def __init__(self, decision: Optional[OracleDecision] = None, error: Optional[Exception] = None) -> None:
        self.decision = decision
        self.error = error
        self.calls: List[tuple] = []

    async def decide(self, summary, candidates, focus):
        self.calls.append((summary, list(candidates), focus))
        if self.error is not None:
            raise self.error
        return self.decision


def _link(text: str, href: str, is_nav: bool = False) -> Dict[str, Any]:
    path = href.split("://", 1)[-1].split("/", 1)[-1]
    return {"text": text, "href": href, "selector": f'a[href="/{path}"]', "isNav": is_nav}


SITE = {
    "https://acme.test/": {
        "title": "Acme | Home",
        "links": [
            _link("Features", "https://acme.test/features", is_nav=True),
            _link("Pricing", "https://acme.test/pricing", is_nav=True),
            _link("Login", "https://acme.test/login"),
            _link("Privacy", "https://acme.test/privacy"),
            _link("Twitter", "https://twitter.com/acme"),
        ],
    },
    "https://acme.test/features": {
        "title": "Features | Acme",
        "links": [_link("Home", "https://acme.test/"), _link("Dashboard tour", "https://acme.test/features/tour")],
    },
    "https://acme.test/features/tour": {"title": "Product tour | Acme", "links": []},
    "https://acme.test/pricing": {"title": "Pricing | Acme", "links": [_link("Home", "https://acme.test/")]},
}


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def no_sleep():
    return RecordingSleep()


@pytest.fixture
def site():
    return {url: {"title": page["title"], "links": [dict(l) for l in page["links"]]} for url, page in SITE.items()}


@pytest.fixture
def fake_session(site, fake_clock, tmp_path):
    video = tmp_path / "raw.webm"
    video.write_bytes(b"webm")
    return FakeSession(site, clock=fake_clock, video_path=str(video))
