"""Assistant surfaces: one registry and event bus per UI session."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from loggy.agent.commands import FormSpec, builtin_commands, generate_form_commands
from loggy.agent.dispatcher import ToolCallDispatcher
from loggy.agent.orchestrator import AssistantAgent, AssistantOutcome
from loggy.agent.registry import CommandRegistry
from loggy.config import AgentConfig
from loggy.errors import SurfaceNotFoundError
from loggy.llm.provider import CompletionProvider
from loggy.types import ToolExecutionStatus

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SurfaceEvent:
    """An effect emitted by a command for the UI to apply."""

    name: str
    payload: dict[str, Any]


@dataclass(slots=True)
class AssistRun:
    outcome: AssistantOutcome
    statuses: list[ToolExecutionStatus]
    events: list[SurfaceEvent]


@dataclass
class AssistantSurface:
    surface_id: str
    owner_id: str
    registry: CommandRegistry = field(default_factory=CommandRegistry)
    events: list[SurfaceEvent] = field(default_factory=list)

    def emit(self, name: str, payload: dict[str, Any]) -> None:
        self.events.append(SurfaceEvent(name=name, payload=payload))

    def populate(self, forms: Iterable[FormSpec] = (), text_targets: Iterable[str] = ()) -> None:
        self.registry.register_batch(builtin_commands(self.emit, text_targets=text_targets))
        self.registry.register_batch(generate_form_commands(forms, self.emit))
        logger.info(
            "Surface %s registered %d commands: %s",
            self.surface_id,
            self.registry.size,
            self.registry.get_command_names(),
        )

    def drain_events(self) -> list[SurfaceEvent]:
        events, self.events = self.events, []
        return events

    async def assist(
        self,
        query: str,
        provider: CompletionProvider,
        config: AgentConfig | None = None,
    ) -> AssistRun:
        statuses: list[ToolExecutionStatus] = []
        dispatcher = ToolCallDispatcher(self.registry, on_status=statuses.append)
        agent = AssistantAgent.for_registry(
            provider, self.registry, config=config, dispatcher=dispatcher
        )
        outcome = await agent.run(query)
        return AssistRun(outcome=outcome, statuses=statuses, events=self.drain_events())

    def close(self) -> None:
        self.registry.clear()
        self.events.clear()


class SurfaceManager:
    """Tracks open surfaces by owner and surface id."""

    def __init__(self) -> None:
        self._surfaces: dict[tuple[str, str], AssistantSurface] = {}

    def open(
        self,
        owner_id: str,
        surface_id: str,
        *,
        forms: Iterable[FormSpec] = (),
        text_targets: Iterable[str] = (),
    ) -> AssistantSurface:
        key = (owner_id, surface_id)
        previous = self._surfaces.pop(key, None)
        if previous is not None:
            previous.close()
        surface = AssistantSurface(surface_id=surface_id, owner_id=owner_id)
        surface.populate(forms, text_targets)
        self._surfaces[key] = surface
        return surface

    def get(self, owner_id: str, surface_id: str) -> AssistantSurface:
        surface = self._surfaces.get((owner_id, surface_id))
        if surface is None:
            raise SurfaceNotFoundError(f"Surface not found: {surface_id}")
        return surface

    def close(self, owner_id: str, surface_id: str) -> None:
        surface = self._surfaces.pop((owner_id, surface_id), None)
        if surface is None:
            raise SurfaceNotFoundError(f"Surface not found: {surface_id}")
        surface.close()
        logger.info("Surface %s closed", surface_id)
