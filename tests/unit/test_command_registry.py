import logging

import pytest
from pydantic import BaseModel, Field, ValidationError

from loggy.agent.registry import CommandHandler, CommandRegistry, ToolDefinition


class EchoInput(BaseModel):
    value: int = Field(ge=1)


def _echo(name: str = "echo") -> CommandHandler:
    def _handler(data: EchoInput) -> str:
        return str(data.value)

    return CommandHandler.from_args_model(
        name=name,
        description="echo positive int",
        args_schema=EchoInput,
        handler=_handler,
    )


def test_handler_validates_arguments_through_args_model() -> None:
    handler = _echo()

    assert handler.execute({"value": 3}) == "3"
    with pytest.raises(ValidationError):
        handler.execute({"value": 0})


def test_args_model_schema_becomes_tool_parameters() -> None:
    parameters = _echo().tool.parameters

    assert parameters["type"] == "object"
    assert "title" not in parameters
    assert parameters["properties"]["value"]["type"] == "integer"
    assert parameters["required"] == ["value"]


def test_duplicate_registration_is_ignored_and_first_wins(caplog) -> None:
    registry = CommandRegistry()
    first = _echo()
    second = CommandHandler(
        tool=ToolDefinition(name="echo", description="shadow"),
        handler=lambda args: "shadow",
    )

    assert registry.register(first) is True
    with caplog.at_level(logging.WARNING, logger="loggy.agent.registry"):
        assert registry.register(second) is False

    assert registry.size == 1
    assert registry.get_handler("echo") is first
    assert registry.get_tool("echo").description == "echo positive int"
    assert "already registered" in caplog.text


def test_registry_lifecycle_and_lookup() -> None:
    registry = CommandRegistry()
    registry.register_batch([_echo("alpha"), _echo("beta"), _echo("gamma")])

    assert registry.get_command_names() == ["alpha", "beta", "gamma"]
    assert "beta" in registry
    assert registry.has_command("gamma")
    assert registry.get_handler("missing") is None

    assert registry.unregister("beta") is True
    assert registry.unregister("beta") is False
    assert len(registry) == 2

    registry.clear()
    assert registry.size == 0
    assert registry.get_tools() == []


def test_openai_rendering_can_be_filtered_by_name() -> None:
    registry = CommandRegistry()
    registry.register_batch([_echo("alpha"), _echo("beta")])

    everything = registry.as_openai_tools()
    subset = registry.as_openai_tools(["beta", "not-registered"])

    assert [tool["function"]["name"] for tool in everything] == ["alpha", "beta"]
    assert [tool["function"]["name"] for tool in subset] == ["beta"]
    assert subset[0]["type"] == "function"
    assert registry.as_openai_tools([]) == []


def test_registries_are_independent() -> None:
    left = CommandRegistry()
    right = CommandRegistry()
    left.register(_echo())

    assert left.has_command("echo")
    assert not right.has_command("echo")
