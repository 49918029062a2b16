"""Demo Explorer: automated discovery of a website and paced, fault-tolerant recording of a demo tour.

Key sub-modules:

navigation_graph.py      – Graph of discovered pages/states (networkx-backed node table).
links.py                 – Candidate link model and composable link filters.
exploration_strategy.py  – Policy deciding the next link to follow, when to go back and when to stop.
decision_oracle.py       – LLM (OpenAI) oracle used by the AI-guided exploration mode.
pacing_controller.py     – Closed-loop timing controller converging the recording on a target length.
error_recovery.py        – Fault classification, bounded retry and the global circuit breaker.
site_explorer.py         – Explore phase: walks the site and fills the navigation graph.
demo_plan.py             – Plan phase: page selection, ordering, time allocation and timelines.
orchestrator.py          – Phased state machine (Explore, Plan, Execute, Finalize, Fallback, Cleanup).
browser.py               – Playwright capture session used for exploration and recording.
"""

from .config import OrchestratorOptions, PacingOptions, RecoveryOptions, StrategyOptions
from .error_recovery import ErrorRecovery, ErrorType, Resolution
from .exploration_strategy import ExplorationAction, ExplorationStrategy, create_demo_strategy
from .links import Link
from .navigation_graph import NavigationEdge, NavigationGraph, NavigationNode, create_node_id
from .orchestrator import DemoOrchestrator, DemoResult, generate_demo
from .pacing_controller import PacingController

__all__ = [
    "OrchestratorOptions",
    "PacingOptions",
    "RecoveryOptions",
    "StrategyOptions",
    "ErrorRecovery",
    "ErrorType",
    "Resolution",
    "ExplorationAction",
    "ExplorationStrategy",
    "create_demo_strategy",
    "Link",
    "NavigationEdge",
    "NavigationGraph",
    "NavigationNode",
    "create_node_id",
    "DemoOrchestrator",
    "DemoResult",
    "generate_demo",
    "PacingController",
]
