from __future__ import annotations

"""LLM-backed decision oracle for the AI-guided exploration mode."""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from dotenv import load_dotenv

load_dotenv()

from openai import AsyncOpenAI

logger = logging.getLogger(__name__)

ORACLE_ACTIONS = ("click", "back", "done")


@dataclass
class OracleDecision:
    action: str
    target: Optional[str] = None
    reason: str = ""


class DecisionOracle(Protocol):
    """Chooses among candidate link texts for the node described by ``summary``."""

    async def decide(self, summary: Dict[str, Any], candidates: List[str], focus: str) -> OracleDecision:
        ...


def parse_oracle_reply(content: Optional[str]) -> Optional[OracleDecision]:
    """Parse a ``{action, target, reason}`` JSON reply, tolerating code fences and chatter.

    Returns ``None`` when no JSON object can be recovered. Unknown actions are
    read as ``click``.
    """
    if not content:
        return None
    cleaned = re.sub(r"```[a-zA-Z]*", "", content).strip("` \n")
    match = re.search(r"\{.*\}", cleaned, re.S)
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None

    action = str(parsed.get("action") or "click").lower()
    if action not in ORACLE_ACTIONS:
        action = "click"
    target = parsed.get("target")
    return OracleDecision(
        action=action,
        target=str(target) if target not in (None, "") else None,
        reason=str(parsed.get("reason") or "AI decision"),
    )


class OpenAIDecisionOracle:
    """Asks an OpenAI chat model which link makes the best next demo step."""

    def __init__(self, model: str = "gpt-4o-mini", max_candidates: int = 15, client: Any | None = None) -> None:
        self._model = model
        self._max_candidates = max_candidates
        self._client = client
        self.token_usage: int = 0

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = AsyncOpenAI()
        return self._client

    def _system_prompt(self, focus: str, max_depth: int) -> str:
        return (
            "You are helping create a product demo video. Given the current page and available links, "
            "decide the best next action for an engaging demo.\n\n"
            "Consider:\n"
            "- Feature pages are high value for demos\n"
            f"- Going too deep (> {max_depth} levels) loses context\n"
            "- Variety is better than depth, show different aspects\n"
            "- Skip login/signup/external links\n"
            f"- Focus area is: {focus}\n\n"
            "Return JSON only, no markdown:\n"
            '{ "action": "click|back|done", "target": "link text or null", "reason": "brief reason" }'
        )

    async def decide(self, summary: Dict[str, Any], candidates: List[str], focus: str) -> OracleDecision:
        shown = candidates[: self._max_candidates]
        visited = ", ".join(summary.get("visited_titles") or []) or "None"
        user_prompt = (
            f"Current page: \"{summary.get('title') or 'Unknown'}\" "
            f"(depth: {summary.get('depth', 0)}/{summary.get('max_depth', 3)})\n"
            f"URL: {summary.get('url', '')}\n"
            f"Already visited: {visited}\n"
            f"Total nodes explored: {summary.get('total_nodes', 0)}\n\n"
            "Available links to click:\n"
            + "\n".join(f"{i + 1}. {text}" for i, text in enumerate(shown))
            + "\n\nWhat should we do next for the best demo?"
        )

        resp = await self.client.chat.completions.create(
            model=self._model,
            messages=[
                {"role": "system", "content": self._system_prompt(focus, summary.get("max_depth", 3))},
                {"role": "user", "content": user_prompt},
            ],
            temperature=0.3,
            max_tokens=200,
        )
        if getattr(resp, "usage", None):
            self.token_usage += resp.usage.total_tokens or 0
        content = resp.choices[0].message.content or ""
        logger.debug("Oracle reply: %s", content)

        decision = parse_oracle_reply(content)
        if decision is None:
            logger.warning("Unparseable oracle reply, defaulting to first candidate")
            return OracleDecision(action="click", target=shown[0] if shown else None,
                                  reason="AI parsing failed, selecting first link")
        return decision
