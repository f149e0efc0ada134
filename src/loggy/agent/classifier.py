"""First assistant round trip: decide between a direct answer and tool use."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from loggy.agent.dispatcher import sanitize_tool_name
from loggy.agent.registry import CommandRegistry
from loggy.config import AgentConfig
from loggy.errors import ToolCallParseError
from loggy.llm.provider import CompletionProvider
from loggy.types import ToolCall

logger = logging.getLogger(__name__)

JUDGE_TOOL_NAME = "judge_tool"

PARSE_FAILURE_ANSWER = "Sorry, I ran into a problem while handling your request."
EMPTY_ANSWER = "Sorry, I'm not able to answer that."
ERROR_ANSWER = "Sorry, something went wrong. Please try again later."

_SYSTEM_PROMPT = """
You are a helpful assistant. Decide whether the user's request needs tools.

Available tools:
{tools}

Rules:
1) Questions, requests for information, small talk ("hi", "thanks") and
   requests for advice or explanations need no tools. Answer directly in the
   `answer` field of `judge_tool`, or reply in plain text.
2) Requests to act need tools: navigating ("go to", "open", "show me"),
   filling in or changing a form, adjusting the interface style ("make it
   bigger", "change the color"). Call `judge_tool` with the names of every
   tool needed in `tools`.

Decide from the user's actual intent.
""".strip()


@dataclass(slots=True)
class IntentDecision:
    """Disjoint outcome: either tool names to act on or a final answer."""

    tool_calls: list[ToolCall] = field(default_factory=list)
    answer: str | None = None

    @property
    def needs_tools(self) -> bool:
        return bool(self.tool_calls)

    @property
    def tool_names(self) -> list[str]:
        return [call.name for call in self.tool_calls]


def judge_tool(tool_names: list[str]) -> dict[str, Any]:
    """Meta-tool whose schema enumerates the currently registered names."""

    return {
        "type": "function",
        "function": {
            "name": JUDGE_TOOL_NAME,
            "description": (
                "Call this when the user wants an action performed (navigation, form "
                "filling, style changes) and list the tools it needs. For questions or "
                "chat, leave `tools` empty and put the reply in `answer`."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "tools": {
                        "type": "array",
                        "description": "Names of the tools to call",
                        "items": {"type": "string", "enum": list(tool_names)},
                        "minItems": 1,
                        "maxItems": len(tool_names),
                    },
                    "answer": {
                        "type": "string",
                        "description": "Direct reply when no tool is needed",
                    },
                },
                "required": ["tools"],
            },
        },
    }


class IntentClassifier:
    """Issues exactly one completion request with only `judge_tool` attached."""

    def __init__(
        self,
        provider: CompletionProvider,
        registry: CommandRegistry,
        config: AgentConfig | None = None,
    ) -> None:
        self.provider = provider
        self.registry = registry
        self.config = config or AgentConfig()

    async def classify(self, query: str) -> IntentDecision:
        """Classify a query. Never raises; failures become an apology answer."""

        tools = self.registry.get_tools()
        names = [tool.name for tool in tools]
        listing = "\n".join(f"- {tool.name}: {tool.description}" for tool in tools) or "(none)"
        messages = [
            {"role": "system", "content": _SYSTEM_PROMPT.format(tools=listing)},
            {"role": "user", "content": query},
        ]

        try:
            completion = await self.provider.complete(
                messages,
                tools=[judge_tool(names)] if names else None,
                tool_choice="required" if names else None,
                model=self.config.model,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except Exception:
            logger.exception("Intent classification request failed")
            return IntentDecision(answer=ERROR_ANSWER)

        judge_call = next(
            (
                call
                for call in completion.tool_calls
                if sanitize_tool_name(call.name) == JUDGE_TOOL_NAME
            ),
            None,
        )
        if judge_call is None:
            return IntentDecision(answer=completion.content or EMPTY_ANSWER)

        try:
            requested, answer = _parse_judge_arguments(judge_call.arguments)
        except ToolCallParseError as exc:
            logger.error("Could not parse %s arguments: %s", JUDGE_TOOL_NAME, exc)
            return IntentDecision(answer=PARSE_FAILURE_ANSWER)

        requested = [sanitize_tool_name(name) for name in requested]
        selected = [name for name in dict.fromkeys(requested) if self.registry.has_command(name)]
        dropped = [name for name in requested if name not in selected]
        if dropped:
            logger.warning("Classifier named unregistered tools: %s", dropped)

        if not selected:
            return IntentDecision(answer=answer or completion.content or EMPTY_ANSWER)

        logger.info("Classifier routed query to tools: %s", selected)
        return IntentDecision(tool_calls=[ToolCall(name=name, arguments="{}") for name in selected])


def _parse_judge_arguments(raw: str) -> tuple[list[str], str | None]:
    try:
        payload = json.loads(raw or "{}")
    except json.JSONDecodeError as exc:
        raise ToolCallParseError(exc.msg) from exc
    if not isinstance(payload, dict):
        raise ToolCallParseError("judge_tool arguments must be an object")

    tools = payload.get("tools") or []
    if isinstance(tools, str):
        tools = [tools]
    if not isinstance(tools, list):
        raise ToolCallParseError("`tools` must be a list of names")
    answer = payload.get("answer")
    return [str(name) for name in tools], (str(answer) if answer else None)
