"""Session-scoped command registry built on Pydantic v2 models."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class ToolDefinition(BaseModel):
    """Immutable tool declaration exposed to the completion provider."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    description: str
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def to_openai(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class CommandHandler(BaseModel):
    """A tool definition paired with the callable that executes it.

    When `args_schema` is set the raw argument object is validated into that
    model before the handler runs, otherwise the handler receives the dict.
    Handlers may be plain functions or coroutine functions.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    tool: ToolDefinition
    handler: Callable[[Any], Any]
    args_schema: type[BaseModel] | None = None
    tags: list[str] = Field(default_factory=list)

    @property
    def name(self) -> str:
        return self.tool.name

    @classmethod
    def from_args_model(
        cls,
        *,
        name: str,
        description: str,
        args_schema: type[BaseModel],
        handler: Callable[[Any], Any],
        tags: list[str] | None = None,
    ) -> "CommandHandler":
        parameters = args_schema.model_json_schema()
        parameters.pop("title", None)
        return cls(
            tool=ToolDefinition(name=name, description=description, parameters=parameters),
            handler=handler,
            args_schema=args_schema,
            tags=tags or [],
        )

    def execute(self, args: dict[str, Any]) -> Any:
        if self.args_schema is not None:
            return self.handler(self.args_schema.model_validate(args))
        return self.handler(args)


class CommandRegistry:
    """Maps capability names to handlers for the lifetime of one surface.

    Registration is first-wins: a second handler with an existing name is
    logged and ignored. Create one registry per surface and `clear()` it when
    the surface tears down.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}

    def register(self, handler: CommandHandler) -> bool:
        name = handler.name
        if name in self._handlers:
            logger.warning("Command already registered, ignoring duplicate: %s", name)
            return False
        self._handlers[name] = handler
        logger.debug("Registered command: %s", name)
        return True

    def register_batch(self, handlers: Iterable[CommandHandler]) -> None:
        for handler in handlers:
            self.register(handler)

    def unregister(self, name: str) -> bool:
        if self._handlers.pop(name, None) is None:
            return False
        logger.debug("Unregistered command: %s", name)
        return True

    def clear(self) -> None:
        logger.debug("Clearing %d registered commands", len(self._handlers))
        self._handlers.clear()

    def get_tools(self) -> list[ToolDefinition]:
        return [handler.tool for handler in self._handlers.values()]

    def get_tool(self, name: str) -> ToolDefinition | None:
        handler = self._handlers.get(name)
        return handler.tool if handler is not None else None

    def get_handler(self, name: str) -> CommandHandler | None:
        return self._handlers.get(name)

    def has_command(self, name: str) -> bool:
        return name in self._handlers

    def get_command_names(self) -> list[str]:
        return list(self._handlers)

    def as_openai_tools(self, names: Iterable[str] | None = None) -> list[dict[str, Any]]:
        """Render tool definitions in function-calling shape, optionally filtered."""
        if names is None:
            return [tool.to_openai() for tool in self.get_tools()]
        wanted = set(names)
        return [tool.to_openai() for tool in self.get_tools() if tool.name in wanted]

    @property
    def size(self) -> int:
        return len(self._handlers)

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers
