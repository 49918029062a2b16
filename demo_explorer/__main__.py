import asyncio
import argparse
import json
import logging

from .config import OrchestratorOptions
from .decision_oracle import OpenAIDecisionOracle
from .orchestrator import DemoOrchestrator

logger = logging.getLogger("demo_explorer")


def main() -> None:
    parser = argparse.ArgumentParser(description="Explore a website and record a paced demo tour")
    parser.add_argument("--url", required=True, help="Start URL of the site to demo")
    parser.add_argument("--duration", type=int, help="Target demo length in seconds")
    parser.add_argument("--max-pages", type=int, help="Maximum number of pages shown in the demo")
    parser.add_argument("--max-steps", type=int, help="Maximum number of exploration steps")
    parser.add_argument("--max-depth", type=int, help="Maximum link depth explored from the start page")
    parser.add_argument("--strategy", choices=["breadth-first", "depth-first", "priority", "ai-guided"],
                        help="Exploration strategy")
    parser.add_argument("--focus", choices=["features", "pricing", "technical", "overview"], help="What the demo should emphasise")
    parser.add_argument("--style", choices=["professional", "casual", "energetic"], help="Narration style")
    parser.add_argument("--silent", action="store_true", help="Do not write a narration script")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument("--output", help="Path of the final video")
    parser.add_argument("--out", dest="artifacts_dir", help="Directory to save run artefacts")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    options = OrchestratorOptions.from_env()
    if args.duration is not None:
        options.duration_s = args.duration
    if args.max_pages is not None:
        options.max_pages = args.max_pages
    if args.max_steps is not None:
        options.max_steps = args.max_steps
    if args.max_depth is not None:
        options.strategy.max_depth = args.max_depth
    if args.strategy:
        options.strategy.strategy = args.strategy
    if args.focus:
        options.focus = options.strategy.focus = args.focus
    if args.style:
        options.style = args.style
    if args.silent:
        options.narrative_mode = "silent"
    if args.headed:
        options.headless = False
    if args.output:
        options.output = args.output
    if args.artifacts_dir:
        options.artifacts_dir = args.artifacts_dir

    oracle = OpenAIDecisionOracle() if options.strategy.strategy == "ai-guided" else None
    orchestrator = DemoOrchestrator(options, oracle=oracle)

    logger.info("Starting demo generation for %s", args.url)
    result = asyncio.run(orchestrator.run(args.url))
    print(json.dumps({k: v for k, v in result.to_dict().items() if k != "plan"}, indent=2))
    if not result.success:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
