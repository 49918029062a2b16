import pytest

from conftest import StubOracle
from demo_explorer.decision_oracle import OracleDecision
from demo_explorer.errors import StrategyConfigError
from demo_explorer.exploration_strategy import (
    ExplorationAction,
    ExplorationStrategy,
    StrategyType,
    create_demo_strategy,
)
from demo_explorer.links import Link
from demo_explorer.navigation_graph import NavigationGraph, NavigationNode

PRICING = Link(text="Pricing", href="https://acme.test/pricing", selector="#pricing")
LOGIN = Link(text="Login", href="https://acme.test/login", selector="#login")
FEATURES = Link(text="Features", href="https://acme.test/features", selector="#features")


def _graph_with_root(title="Acme"):
    graph = NavigationGraph()
    root = graph.add_node(NavigationNode(id="root", url="https://acme.test/", title=title))
    graph.set_root("root")
    return graph, root


def _child(graph, node_id, parent="root", depth=1, title=""):
    return graph.add_node(NavigationNode(id=node_id, url=f"https://acme.test/{node_id}", title=title,
                                         parent=parent, depth=depth))


@pytest.mark.asyncio
async def test_priority_strategy_prefers_features_over_pricing_and_login():
    graph, root = _graph_with_root()
    strategy = ExplorationStrategy(graph, strategy="priority", focus="features")

    decision = await strategy.select_next_action(root, [PRICING, LOGIN, FEATURES])

    assert decision.action is ExplorationAction.CLICK
    assert decision.link is FEATURES
    assert strategy.score_link(FEATURES) > strategy.score_link(PRICING) > strategy.score_link(LOGIN)


@pytest.mark.asyncio
async def test_breadth_first_takes_first_valid_link():
    graph, root = _graph_with_root()
    strategy = ExplorationStrategy(graph, strategy="breadth-first")

    decision = await strategy.select_next_action(root, [PRICING, FEATURES])

    assert decision.link is PRICING


def test_filter_links_returns_only_links_passing_every_filter():
    graph, root = _graph_with_root()
    strategy = create_demo_strategy(graph, base_domain="acme.test")
    links = [
        FEATURES,
        LOGIN,
        Link(text="Privacy", href="https://acme.test/privacy"),
        Link(text="GitHub", href="https://github.com/acme"),
        Link(text="Elsewhere", href="https://other.test/"),
        Link(text="Brochure", href="https://acme.test/brochure.pdf"),
        Link(text="Blog", href="https://acme.test/blog"),
    ]

    kept = strategy.filter_links(root, links)

    assert kept == [FEATURES]
    assert all(strategy.should_explore_link(link, root) for link in kept)
    assert strategy.stats.links_evaluated == len(links) + 1
    assert strategy.stats.links_skipped == len(links) - 1


def test_processed_urls_are_skipped():
    graph, root = _graph_with_root()
    strategy = ExplorationStrategy(graph)
    strategy.mark_processed(FEATURES.href)

    assert strategy.should_explore_link(FEATURES, root) is False


def test_depth_and_level_budgets():
    graph, root = _graph_with_root()
    strategy = ExplorationStrategy(graph, max_depth=1, max_nodes_per_level=2)
    deep = _child(graph, "a")

    assert strategy.should_explore_link(PRICING, deep) is False

    _child(graph, "b")
    assert strategy.should_explore_link(PRICING, root) is False


@pytest.mark.asyncio
@pytest.mark.parametrize("mode", [s.value for s in StrategyType])
async def test_done_when_node_budget_is_exhausted(mode):
    graph, root = _graph_with_root()
    child = _child(graph, "features", title="Features")
    strategy = ExplorationStrategy(graph, strategy=mode, max_total_nodes=2, oracle=StubOracle())

    from_root = await strategy.select_next_action(root, [PRICING])
    from_child = await strategy.select_next_action(child, [PRICING])

    assert from_root.action is ExplorationAction.DONE
    assert from_child.action is ExplorationAction.DONE


@pytest.mark.asyncio
async def test_back_when_child_has_no_valid_links():
    graph, _ = _graph_with_root()
    child = _child(graph, "features")
    strategy = ExplorationStrategy(graph)

    decision = await strategy.select_next_action(child, [])

    assert decision.action is ExplorationAction.BACK
    assert strategy.stats.back_navigations == 1


@pytest.mark.asyncio
async def test_root_without_links_is_done_not_back():
    graph, root = _graph_with_root()
    strategy = ExplorationStrategy(graph)

    decision = await strategy.select_next_action(root, [])

    assert decision.action is ExplorationAction.DONE
    assert strategy.should_go_back(root) is False


def test_should_go_deeper_depends_on_strategy():
    graph, root = _graph_with_root()
    plain = _child(graph, "about", title="About us")
    plain.unexplored_links.append(PRICING)
    feature = _child(graph, "features", title="Features")
    feature.unexplored_links.append(PRICING)

    priority = ExplorationStrategy(graph, strategy="priority")
    assert priority.should_go_deeper(feature) is True
    assert priority.should_go_deeper(plain) is False

    breadth = ExplorationStrategy(graph, strategy="breadth-first")
    assert breadth.should_go_deeper(plain) is False

    depth = ExplorationStrategy(graph, strategy="depth-first")
    assert depth.should_go_deeper(plain) is True
    depth.add_node_filter(lambda node: node.id != "about")
    assert depth.should_go_deeper(plain) is False


@pytest.mark.asyncio
async def test_oracle_choice_is_matched_case_insensitively():
    graph, root = _graph_with_root()
    oracle = StubOracle(OracleDecision(action="click", target="pricing", reason="show plans"))
    strategy = ExplorationStrategy(graph, strategy="ai-guided", oracle=oracle)

    decision = await strategy.select_next_action(root, [FEATURES, PRICING])

    assert decision.link is PRICING
    assert decision.reason == "show plans"
    assert strategy.stats.ai_decisions == 1
    summary, candidates, focus = oracle.calls[0]
    assert candidates == ["Features", "Pricing"]
    assert summary["title"] == "Acme"


@pytest.mark.asyncio
async def test_oracle_failure_or_unknown_target_falls_back_to_priority():
    graph, root = _graph_with_root()

    failing = ExplorationStrategy(graph, strategy="ai-guided", oracle=StubOracle(error=RuntimeError("down")))
    decision = await failing.select_next_action(root, [PRICING, FEATURES])
    assert decision.link is FEATURES
    assert "Fallback" in decision.reason

    invented = StubOracle(OracleDecision(action="click", target="Careers"))
    guessing = ExplorationStrategy(graph, strategy="ai-guided", oracle=invented)
    decision = await guessing.select_next_action(root, [PRICING, FEATURES])
    assert decision.link is FEATURES

    no_oracle = ExplorationStrategy(graph, strategy="ai-guided")
    decision = await no_oracle.select_next_action(root, [PRICING])
    assert decision.link is PRICING


@pytest.mark.asyncio
async def test_oracle_back_at_root_falls_back_to_priority():
    graph, root = _graph_with_root()
    strategy = ExplorationStrategy(graph, strategy="ai-guided", oracle=StubOracle(OracleDecision(action="back")))

    decision = await strategy.select_next_action(root, [PRICING])

    assert decision.action is ExplorationAction.CLICK


def test_invalid_configuration_is_rejected():
    graph, _ = _graph_with_root()

    with pytest.raises(StrategyConfigError):
        ExplorationStrategy(graph, strategy="random")
    strategy = ExplorationStrategy(graph)
    with pytest.raises(StrategyConfigError):
        strategy.set_max_depth(0)
    with pytest.raises(StrategyConfigError):
        strategy.add_link_filter("not callable")
    with pytest.raises(ValueError):
        strategy.set_max_total_nodes(-1)
