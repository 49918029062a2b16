import json

import pytest

from conftest import FakeSession, RecordingSleep
from demo_explorer.error_recovery import ErrorRecovery
from demo_explorer.exploration_strategy import create_demo_strategy
from demo_explorer.navigation_graph import NavigationGraph
from demo_explorer.site_explorer import PageSnapshot, SiteExplorer

START = "https://acme.test/"


class QuietDetector:
    def __init__(self):
        self.dismissed = 0
        self.waited = 0

    async def dismiss_blocking_elements(self):
        self.dismissed += 1

    async def wait_for_content_ready(self):
        self.waited += 1


def _explorer(session, max_steps=40, artifacts_dir=None, detector=None):
    graph = NavigationGraph()
    strategy = create_demo_strategy(graph, base_domain="acme.test")
    return SiteExplorer(
        session,
        strategy,
        ErrorRecovery(sleep=RecordingSleep()),
        state_detector=detector or QuietDetector(),
        max_steps=max_steps,
        artifacts_dir=artifacts_dir,
    )


@pytest.mark.asyncio
async def test_explore_builds_graph_of_demo_worthy_pages(site):
    explorer = _explorer(FakeSession(site))

    graph = await explorer.explore(START)

    assert graph.root_id == "https://acme.test"
    assert {n.id for n in graph.nodes} == {
        "https://acme.test",
        "https://acme.test/features",
        "https://acme.test/features/tour",
        "https://acme.test/pricing",
    }
    assert graph.get_node("https://acme.test/features/tour").depth == 2
    assert graph.get_node("https://acme.test/features").metadata["isNavigation"] is True
    assert graph.get_node("https://acme.test/pricing").siblings == {"https://acme.test/features"}
    assert graph.edge_count == 3
    # filtered links stay unexplored on the root
    remaining = {l.text for l in graph.get_node("https://acme.test").unexplored_links}
    assert remaining == {"Login", "Privacy", "Twitter"}


@pytest.mark.asyncio
async def test_explore_follows_the_highest_priority_link_first(site):
    session = FakeSession(site)
    explorer = _explorer(session, max_steps=1)

    graph = await explorer.explore(START)

    assert graph.size == 2
    assert ("navigate", "https://acme.test/features") in session.calls
    assert explorer.steps_taken == 1


@pytest.mark.asyncio
async def test_explore_recovers_from_a_failed_first_navigation(site):
    session = FakeSession(site, failures={START: [RuntimeError("net::ERR_CONNECTION_RESET")]})
    detector = QuietDetector()
    explorer = _explorer(session, detector=detector)

    graph = await explorer.explore(START)

    assert ("reload",) in session.calls
    assert detector.waited == 1
    assert graph.size == 4
    assert explorer.recovery.total_errors == 1


@pytest.mark.asyncio
async def test_explore_stops_when_back_navigation_fails(site):
    session = FakeSession(site, failures={"https://acme.test/features": [None, RuntimeError("Timeout 30000ms exceeded")]})
    explorer = _explorer(session)

    graph = await explorer.explore(START)

    assert graph.size == 3
    assert explorer.steps_taken == 3
    assert session.current == "https://acme.test/features/tour"
    assert explorer.recovery.total_errors == 1
    assert "https://acme.test/pricing" not in graph


class BrokenDetector(QuietDetector):
    async def dismiss_blocking_elements(self):
        raise RuntimeError("boom")


@pytest.mark.asyncio
async def test_dismiss_failures_are_recorded_by_recovery(site):
    explorer = _explorer(FakeSession(site), detector=BrokenDetector())

    graph = await explorer.explore(START)

    assert graph.size == 4
    assert explorer.recovery.total_errors == 4
    assert all(r.context["action"] == "dismiss-blocking" for r in explorer.recovery.fault_log)


@pytest.mark.asyncio
async def test_explore_writes_graph_artifacts(site, tmp_path):
    explorer = _explorer(FakeSession(site), artifacts_dir=str(tmp_path))

    await explorer.explore(START)

    saved = json.loads((tmp_path / "navigation_graph.json").read_text(encoding="utf-8"))
    assert saved["rootId"] == "https://acme.test"
    assert len(saved["nodes"]) == 4
    assert (tmp_path / "navigation_graph.graphml").exists()


def test_page_snapshot_tolerates_bad_payloads():
    assert PageSnapshot.from_payload(None, START).url == START

    snapshot = PageSnapshot.from_payload({"title": "T", "links": [{"text": "  A\n", "href": "/a"}, "junk"]}, START)
    assert snapshot.url == START
    assert [l.text for l in snapshot.links] == ["A"]
