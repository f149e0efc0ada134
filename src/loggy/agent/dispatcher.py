"""Sequential tool-call dispatch against a command registry."""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Callable, Sequence
from time import perf_counter
from typing import Any

from loggy.agent.commands import display_name
from loggy.agent.registry import CommandRegistry
from loggy.errors import CommandExecutionError, ToolCallParseError
from loggy.types import CommandResult, ExecutionStatus, ToolCall, ToolExecutionStatus

logger = logging.getLogger(__name__)

_TRAILING_QUOTES = "'\""

StatusObserver = Callable[[ToolExecutionStatus], None]


def sanitize_tool_name(raw_name: str) -> str:
    """Strip stray trailing quote characters some providers append to names.

    Only that one malformation is repaired; anything else is left for the
    registry lookup to reject.
    """

    clean = (raw_name or "").rstrip(_TRAILING_QUOTES)
    if clean != raw_name:
        logger.warning("Sanitized tool name %r -> %r", raw_name, clean)
    return clean


def parse_arguments(raw: str | None) -> dict[str, Any]:
    if raw is None or not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ToolCallParseError(f"Invalid tool arguments: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise ToolCallParseError("Tool arguments must be a JSON object")
    return payload


class ToolCallDispatcher:
    """Executes tool calls one at a time, isolating failures per call."""

    def __init__(
        self,
        registry: CommandRegistry,
        *,
        on_status: StatusObserver | None = None,
    ) -> None:
        self.registry = registry
        self._on_status = on_status

    def set_observer(self, observer: StatusObserver | None) -> None:
        """Set an optional callback receiving pending/executing/completed transitions."""
        self._on_status = observer

    async def execute_tool_call(self, call: ToolCall) -> CommandResult:
        """Run one call. Never raises; every failure becomes a failed result."""

        name = sanitize_tool_name(call.name)
        handler = self.registry.get_handler(name)
        if handler is None:
            logger.error("No handler registered for tool: %s", name)
            return CommandResult(
                tool_name=name, success=False, error=f"Unknown tool: {name}"
            )

        start = perf_counter()
        try:
            args = parse_arguments(call.arguments)
            logger.info("Executing tool %s with %s", name, args)
            output = handler.execute(args)
            if inspect.isawaitable(output):
                output = await output
        except ToolCallParseError as exc:
            logger.error("Tool %s rejected: %s", name, exc)
            return CommandResult(
                tool_name=name,
                success=False,
                error=str(exc),
                latency_ms=(perf_counter() - start) * 1000.0,
            )
        except Exception as exc:
            failure = CommandExecutionError(f"{type(exc).__name__}: {exc}")
            logger.exception("Tool %s failed", name)
            return CommandResult(
                tool_name=name,
                success=False,
                error=str(failure),
                latency_ms=(perf_counter() - start) * 1000.0,
            )

        logger.info("Tool %s completed", name)
        return CommandResult(
            tool_name=name,
            success=True,
            data=output,
            latency_ms=(perf_counter() - start) * 1000.0,
        )

    async def execute_tool_calls(self, calls: Sequence[ToolCall]) -> list[CommandResult]:
        """Run calls strictly in order; one result per call, no cascade."""

        results: list[CommandResult] = []
        for index, call in enumerate(calls):
            name = (call.name or "").rstrip(_TRAILING_QUOTES)
            self._emit(index, name, "pending")
            self._emit(index, name, "executing")
            results.append(await self.execute_tool_call(call))
            self._emit(index, name, "completed")
        return results

    def _emit(self, index: int, tool_name: str, status: ExecutionStatus) -> None:
        if self._on_status is None:
            return
        try:
            self._on_status(
                ToolExecutionStatus(
                    index=index,
                    tool_name=tool_name,
                    display_name=display_name(tool_name),
                    status=status,
                )
            )
        except Exception:
            logger.exception("Status callback failed for tool %s", tool_name)
