import pytest

from demo_explorer.demo_plan import DemoPlan, TransitionMethod
from demo_explorer.navigation_graph import NavigationGraph, NavigationNode


@pytest.fixture
def explored_graph():
    graph = NavigationGraph()
    graph.add_node(NavigationNode(id="root", url="https://acme.test/", title="Acme | Home"))
    graph.set_root("root")
    graph.add_node(NavigationNode(id="features", url="https://acme.test/features", title="Features | Acme",
                                  parent="root", depth=1))
    graph.add_node(NavigationNode(id="pricing", url="https://acme.test/pricing", title="Pricing | Acme",
                                  parent="root", depth=1))
    graph.add_node(NavigationNode(id="tour", url="https://acme.test/features/tour", title="Product tour | Acme",
                                  parent="features", depth=2))
    graph.add_edge("root", "features")
    graph.add_edge("root", "pricing")
    graph.add_edge("features", "tour")
    return graph


def test_plan_selects_root_first_and_orders_by_page_kind(explored_graph):
    plan = DemoPlan.create(explored_graph, start_url="https://acme.test/", duration_s=60, max_pages=3)

    assert [p.id for p in plan.pages] == ["root", "features", "pricing"]
    assert plan.pages[0].is_root is True
    assert [p.transition_method for p in plan.pages] == [
        TransitionMethod.NAVIGATE,
        TransitionMethod.CLICK,
        TransitionMethod.NAVIGATE,
    ]


def test_plan_allocates_whole_duration(explored_graph):
    plan = DemoPlan.create(explored_graph, duration_s=60, max_pages=3)

    durations = [p.duration for p in plan.pages]
    assert durations == [19950, 18525, 18525]
    assert sum(durations) + 2 * plan.transition_time == 60_000
    assert [p.start_time for p in plan.pages] == [0, 21450, 41475]


def test_page_timeline_shape(explored_graph):
    plan = DemoPlan.create(explored_graph, duration_s=60, max_pages=3)

    timeline = plan.get_timeline_for_page("features")
    assert [a.type for a in timeline] == ["wait", "pan", "scroll", "scroll-to", "wait"]
    assert timeline[0].skippable is False
    assert timeline[0].priority == 100
    assert timeline[2].params == {"distance": 1500}
    assert timeline[-1].start_time == plan.pages[1].duration - 500
    assert plan.action_count == 15
    assert plan.get_timeline_for_page("missing") == []


def test_action_lookup_by_global_time(explored_graph):
    plan = DemoPlan.create(explored_graph, duration_s=60, max_pages=3)

    assert plan.get_action_at_time(0).type == "wait"
    assert plan.get_action_at_time(1500).type == "pan"
    # inside the transition gap between the first and second page
    assert plan.get_action_at_time(20_500) is None


def test_narrative_follows_style(explored_graph):
    plan = DemoPlan.create(explored_graph, duration_s=60, max_pages=2, style="professional")

    assert plan.script == [
        "Welcome to Acme. Let me show you what this platform offers.",
        "Let's explore the Features section.",
    ]
    assert plan.pages[0].timeline[0].narrative == plan.script[0]
    assert plan.to_dict()["narrative"].startswith("Welcome to Acme.")


def test_silent_plan_has_no_script(explored_graph):
    plan = DemoPlan.create(explored_graph, duration_s=60, include_narrative=False)

    assert plan.script == []
    assert plan.pages[0].timeline[0].narrative is None


@pytest.mark.parametrize("graph", [None, NavigationGraph()])
def test_empty_exploration_yields_single_home_page(graph):
    plan = DemoPlan.create(graph, start_url="https://acme.test/", duration_s=30)

    assert len(plan.pages) == 1
    page = plan.pages[0]
    assert page.id == "home"
    assert page.url == "https://acme.test/"
    assert page.duration == 30_000
    assert len(page.timeline) == 5


def test_short_duration_respects_page_minimum(explored_graph):
    plan = DemoPlan.create(explored_graph, duration_s=10, max_pages=3)

    assert all(p.duration >= plan.min_page_duration for p in plan.pages)
