"""Second assistant round trip and the classify-then-act entry point."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from loggy.agent.classifier import EMPTY_ANSWER, IntentClassifier
from loggy.agent.dispatcher import ToolCallDispatcher, sanitize_tool_name
from loggy.agent.registry import CommandRegistry
from loggy.config import AgentConfig
from loggy.llm.provider import CompletionProvider
from loggy.types import CommandResult, ToolCall

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AgentResponse:
    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    is_complete: bool = False
    error: str | None = None


@dataclass(slots=True)
class AssistantOutcome:
    """Result of one assistant action turn.

    Either `answer` is set and nothing ran, or `tool_calls` holds what the
    model asked for and `results` holds one entry per executed call.
    """

    answer: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    results: list[CommandResult] = field(default_factory=list)
    content: str | None = None
    error: str | None = None


class AgentOrchestrator:
    """Synthesizes concrete tool calls from the subset the classifier picked.

    The orchestrator only produces calls; executing them is the dispatcher's
    job.
    """

    def __init__(
        self,
        provider: CompletionProvider,
        registry: CommandRegistry,
        config: AgentConfig | None = None,
    ) -> None:
        self.provider = provider
        self.registry = registry
        self.config = config or AgentConfig()

    def select_tools(self, tool_names: Iterable[str]) -> list[dict[str, Any]]:
        """Registered tools whose names were requested, in registry order."""
        return self.registry.as_openai_tools(tool_names)

    async def plan(
        self,
        query: str,
        tool_names: Iterable[str],
        *,
        history: list[dict[str, Any]] | None = None,
        system_prompt: str | None = None,
    ) -> AgentResponse:
        tools = self.select_tools(tool_names)
        messages: list[dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.extend(history or [])
        messages.append({"role": "user", "content": query})

        try:
            completion = await self.provider.complete(
                messages,
                tools=tools or None,
                tool_choice="required" if tools else None,
                model=self.config.model,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except Exception as exc:
            logger.exception("Agent completion request failed")
            return AgentResponse(is_complete=False, error=str(exc) or type(exc).__name__)

        calls = [
            ToolCall(name=sanitize_tool_name(call.name), arguments=call.arguments, id=call.id)
            for call in completion.tool_calls
        ]
        logger.info(
            "Agent returned %d tool calls: %s", len(calls), [call.name for call in calls]
        )
        return AgentResponse(
            content=completion.content,
            tool_calls=calls,
            is_complete=completion.finish_reason == "stop",
        )


class AssistantAgent:
    """Runs classify -> plan -> dispatch behind one call."""

    def __init__(
        self,
        classifier: IntentClassifier,
        orchestrator: AgentOrchestrator,
        dispatcher: ToolCallDispatcher,
    ) -> None:
        self.classifier = classifier
        self.orchestrator = orchestrator
        self.dispatcher = dispatcher

    @classmethod
    def for_registry(
        cls,
        provider: CompletionProvider,
        registry: CommandRegistry,
        *,
        config: AgentConfig | None = None,
        dispatcher: ToolCallDispatcher | None = None,
    ) -> "AssistantAgent":
        return cls(
            IntentClassifier(provider, registry, config),
            AgentOrchestrator(provider, registry, config),
            dispatcher or ToolCallDispatcher(registry),
        )

    async def run(self, query: str) -> AssistantOutcome:
        decision = await self.classifier.classify(query)
        if not decision.needs_tools:
            return AssistantOutcome(answer=decision.answer)

        response = await self.orchestrator.plan(query, decision.tool_names)
        if response.error is not None:
            return AssistantOutcome(error=response.error)
        if not response.tool_calls:
            return AssistantOutcome(answer=response.content or EMPTY_ANSWER, content=response.content)

        results = await self.dispatcher.execute_tool_calls(response.tool_calls)
        return AssistantOutcome(
            tool_calls=response.tool_calls,
            results=results,
            content=response.content,
        )
