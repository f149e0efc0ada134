"""Completion provider contract and its LangChain chat-model adapter."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from langchain_core.messages import BaseMessage, convert_to_messages

from loggy.config import Settings
from loggy.errors import ProviderError
from loggy.types import ToolCall

logger = logging.getLogger(__name__)

ChatMessages = Sequence[dict[str, Any]]


@dataclass(slots=True)
class Completion:
    """One full (non-streamed) assistant turn."""

    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str | None = None


class CompletionProvider(Protocol):
    """Generates assistant turns from role/content messages."""

    async def complete(
        self,
        messages: ChatMessages,
        *,
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str | None = None,
        **options: Any,
    ) -> Completion:
        """Return one complete turn, optionally with function-calling tools."""

    def stream(self, messages: ChatMessages, **options: Any) -> AsyncIterator[str]:
        """Yield text increments in the order the backend produces them."""


class LangChainCompletionProvider:
    """Adapts a LangChain chat model (e.g. `ChatOpenAI`) to `CompletionProvider`.

    Tool calls are read from the raw provider payload so the argument JSON
    string reaches the dispatcher untouched; malformed arguments are then a
    per-call failure instead of a provider error.
    """

    def __init__(self, llm: Any, *, name: str = "langchain") -> None:
        self.llm = llm
        self.name = name

    async def complete(
        self,
        messages: ChatMessages,
        *,
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str | None = None,
        **options: Any,
    ) -> Completion:
        model = self.llm
        if tools:
            if tool_choice:
                model = model.bind_tools(tools, tool_choice=tool_choice)
            else:
                model = model.bind_tools(tools)
        bound_options = _drop_none(options)
        if bound_options:
            model = model.bind(**bound_options)

        logger.debug(
            "Completion request: %d messages, %d tools", len(messages), len(tools or [])
        )
        try:
            message = await model.ainvoke(convert_to_messages(list(messages)))
        except Exception as exc:
            raise ProviderError(f"Completion request failed: {exc}") from exc
        return completion_from_message(message)

    async def stream(self, messages: ChatMessages, **options: Any) -> AsyncIterator[str]:
        model = self.llm
        bound_options = _drop_none(options)
        if bound_options:
            model = model.bind(**bound_options)
        try:
            async for chunk in model.astream(convert_to_messages(list(messages))):
                text = _content_text(getattr(chunk, "content", ""))
                if text:
                    yield text
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(f"Streaming request failed: {exc}") from exc


def completion_from_message(message: BaseMessage) -> Completion:
    content = _content_text(message.content) or None
    metadata = getattr(message, "response_metadata", None) or {}
    return Completion(
        content=content,
        tool_calls=_extract_tool_calls(message),
        finish_reason=metadata.get("finish_reason"),
    )


def create_completion_provider(settings: Settings) -> LangChainCompletionProvider | None:
    """Build the DeepSeek-backed provider, or None when no key is configured."""

    if not settings.deepseek_api_key:
        return None

    from langchain_openai import ChatOpenAI

    llm = ChatOpenAI(
        model=settings.chat_model,
        api_key=settings.deepseek_api_key,
        base_url=settings.deepseek_base_url,
        temperature=0.7,
    )
    return LangChainCompletionProvider(llm, name="deepseek")


def _extract_tool_calls(message: BaseMessage) -> list[ToolCall]:
    raw_calls = (getattr(message, "additional_kwargs", None) or {}).get("tool_calls")
    if raw_calls:
        calls: list[ToolCall] = []
        for raw in raw_calls:
            function = raw.get("function") or {}
            calls.append(
                ToolCall(
                    name=str(function.get("name") or ""),
                    arguments=function.get("arguments") or "{}",
                    id=raw.get("id"),
                )
            )
        return calls

    # Chat models that only expose parsed calls.
    calls = [
        ToolCall(name=call["name"], arguments=json.dumps(call.get("args") or {}), id=call.get("id"))
        for call in getattr(message, "tool_calls", None) or []
    ]
    calls.extend(
        ToolCall(name=call.get("name") or "", arguments=call.get("args") or "{}", id=call.get("id"))
        for call in getattr(message, "invalid_tool_calls", None) or []
    )
    return calls


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                if "text" in item:
                    parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return "".join(parts)
    return str(content or "")


def _drop_none(options: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in options.items() if value is not None}
