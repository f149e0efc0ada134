"""Built-in assistant commands and form-derived commands."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from copy import deepcopy
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from loggy.agent.registry import CommandHandler, ToolDefinition

FORM_COMMAND_PREFIX = "change_form_values-"

PAGE_ROUTES: dict[str, dict[str, str]] = {
    "/": {"name": "Home", "description": "home page, dashboard, today's overview"},
    "/notes": {"name": "Notes", "description": "notes, note list, my notes"},
    "/todos": {"name": "Todos", "description": "todos, todo list, my tasks"},
    "/chat": {"name": "AI chat", "description": "AI chat, assistant, ask a question"},
    "/playground": {"name": "Playground", "description": "demos, playground, feature showcase"},
}

_DISPLAY_NAMES = {
    "navigate_to_page": "Navigate",
    "change_font_size": "Adjust font size",
    "change_font_color": "Adjust font color",
}

_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")

Emitter = Callable[[str, dict[str, Any]], None]


class FormOption(BaseModel):
    value: str
    label: str | None = None


class FormField(BaseModel):
    name: str = Field(min_length=1)
    label: str | None = None
    type: str | None = None
    options: list[FormOption] | None = None


class FormSpec(BaseModel):
    """Field metadata of one editable form currently shown on a surface."""

    form_id: str = Field(min_length=1)
    fields: list[FormField] = Field(default_factory=list)


class NavigateInput(BaseModel):
    page_path: Literal["/", "/notes", "/todos", "/chat", "/playground"] = Field(
        description="Target page path"
    )


class FontSizeInput(BaseModel):
    content: str = Field(min_length=1, description="Text element to resize")
    size: float | None = Field(
        default=None,
        gt=0,
        description="Absolute font size in px, for requests like 'set it to 32'",
    )
    scale: float | None = Field(
        default=None,
        gt=0,
        description="Relative factor based on 1, e.g. 1.1 for 10% larger, 0.9 for 10% smaller",
    )

    @model_validator(mode="after")
    def _size_or_scale(self) -> "FontSizeInput":
        if self.size is None and self.scale is None:
            raise ValueError("either size or scale is required")
        return self


class FontColorInput(BaseModel):
    content: str = Field(min_length=1, description="Text element to recolor")
    color: str = Field(description="Hex color such as #3072F6")

    @model_validator(mode="after")
    def _hex_color(self) -> "FontColorInput":
        if not _HEX_COLOR.match(self.color):
            raise ValueError(f"color must be a #RRGGBB hex value, got {self.color!r}")
        return self


def builtin_commands(emit: Emitter, *, text_targets: Iterable[str] = ()) -> list[CommandHandler]:
    """Build the fixed command set: page navigation and font styling.

    Each handler's effect is one surface event handed to `emit`; rendering
    it is the UI's concern.
    """

    targets = list(dict.fromkeys(text_targets))

    def _navigate(data: NavigateInput) -> dict[str, Any]:
        payload = {"pagePath": data.page_path}
        emit("navigate_to_page", payload)
        return payload

    def _font_size(data: FontSizeInput) -> dict[str, Any]:
        _check_target(data.content, targets)
        payload = {"size": data.size, "scale": data.scale}
        emit(f"changeSize-{data.content}", payload)
        return payload

    def _font_color(data: FontColorInput) -> dict[str, Any]:
        _check_target(data.content, targets)
        payload = {"color": data.color}
        emit(f"changeColor-{data.content}", payload)
        return payload

    navigate = CommandHandler.from_args_model(
        name="navigate_to_page",
        description=_navigation_description(),
        args_schema=NavigateInput,
        handler=_navigate,
        tags=["navigation"],
    )
    font_size = CommandHandler.from_args_model(
        name="change_font_size",
        description=(
            "Adjust font size. Use `scale` for relative requests ('a bit bigger' -> 1.1, "
            "'a bit smaller' -> 0.9) and `size` for absolute values ('set it to 32')."
        ),
        args_schema=FontSizeInput,
        handler=_font_size,
        tags=["style"],
    )
    font_color = CommandHandler.from_args_model(
        name="change_font_color",
        description="Change the font color of a text element, e.g. 'make the title red'.",
        args_schema=FontColorInput,
        handler=_font_color,
        tags=["style"],
    )
    if targets:
        for handler in (font_size, font_color):
            parameters = deepcopy(handler.tool.parameters)
            parameters["properties"]["content"]["enum"] = targets
            handler.tool = handler.tool.model_copy(update={"parameters": parameters})
    return [navigate, font_size, font_color]


def form_tool_definition(form: FormSpec) -> ToolDefinition:
    """Derive a form's tool definition from its field metadata alone."""

    mapping = "; ".join(f"{item.name}: {item.label or item.name}" for item in form.fields)
    properties: dict[str, dict[str, Any]] = {}
    for item in form.fields:
        prop: dict[str, Any] = {
            "type": "number" if item.type == "number" else "string",
            "description": item.label or f"field name: {item.name}",
        }
        if item.options:
            prop["enum"] = [option.value for option in item.options]
        if item.type == "date":
            prop["format"] = "date"
        properties[item.name] = prop

    return ToolDefinition(
        name=f"{FORM_COMMAND_PREFIX}{form.form_id}",
        description=(
            "Form tool for filling in or changing form values. "
            f"Field keys and labels: {mapping}. Only match the most relevant form."
        ),
        parameters={"type": "object", "properties": properties},
    )


def generate_form_commands(forms: Iterable[FormSpec], emit: Emitter) -> list[CommandHandler]:
    commands: list[CommandHandler] = []
    for form in forms:
        commands.append(
            CommandHandler(
                tool=form_tool_definition(form),
                handler=_form_handler(form, emit),
                tags=["form"],
            )
        )
    return commands


def display_name(tool_name: str) -> str:
    if tool_name.startswith(FORM_COMMAND_PREFIX):
        return f"Fill form ({tool_name[len(FORM_COMMAND_PREFIX):]})"
    return _DISPLAY_NAMES.get(tool_name, tool_name)


def _form_handler(form: FormSpec, emit: Emitter) -> Callable[[dict[str, Any]], dict[str, Any]]:
    known = {item.name for item in form.fields}

    def _apply(args: dict[str, Any]) -> dict[str, Any]:
        unknown = sorted(set(args) - known)
        if unknown:
            raise ValueError(f"Unknown fields for form {form.form_id}: {', '.join(unknown)}")
        emit(form.form_id, dict(args))
        return dict(args)

    return _apply


def _check_target(content: str, targets: list[str]) -> None:
    if targets and content not in targets:
        raise ValueError(f"Unknown text element: {content}")


def _navigation_description() -> str:
    pages = ", ".join(
        f"{route['name']} ({route['description'].split(',')[0]})" for route in PAGE_ROUTES.values()
    )
    return (
        "Page navigation tool: jump to the page matching the user's intent. "
        f"Supported: {pages}. Only match the most relevant page."
    )
