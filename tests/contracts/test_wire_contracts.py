import json

from loggy.agent.classifier import judge_tool
from loggy.agent.commands import builtin_commands
from loggy.chat.frames import ContentFrame, DoneFrame, ErrorFrame, StartFrame, to_sse
from loggy.types import ReferencedNote, ToolCall


def _parse(sse: str) -> tuple[str, dict]:
    assert sse.endswith("\n\n")
    event_line, data_line = sse[:-2].split("\n")
    assert event_line.startswith("event: ")
    assert data_line.startswith("data: ")
    return event_line[len("event: ") :], json.loads(data_line[len("data: ") :])


def test_sse_frames_match_wire_protocol() -> None:
    reference = ReferencedNote(note_id="n1", title="Trip", content="Kyoto", similarity=0.82)

    assert _parse(to_sse(StartFrame(references=[reference]))) == (
        "start",
        {
            "type": "start",
            "references": [
                {"noteId": "n1", "title": "Trip", "content": "Kyoto", "similarity": 0.82}
            ],
        },
    )
    assert _parse(to_sse(ContentFrame(data="你好\nworld"))) == (
        "content",
        {"type": "content", "data": "你好\nworld"},
    )
    assert _parse(to_sse(DoneFrame())) == ("done", {"type": "done"})
    assert _parse(to_sse(ErrorFrame(error="boom"))) == ("error", {"type": "error", "error": "boom"})


def test_tool_definitions_use_function_calling_shape() -> None:
    for handler in builtin_commands(lambda n, p: None):
        rendered = handler.tool.to_openai()
        assert rendered["type"] == "function"
        assert set(rendered["function"]) == {"name", "description", "parameters"}
        assert rendered["function"]["parameters"]["type"] == "object"


def test_judge_tool_contract() -> None:
    rendered = judge_tool(["navigate_to_page"])

    assert rendered["type"] == "function"
    assert rendered["function"]["name"] == "judge_tool"
    assert set(rendered["function"]["parameters"]["properties"]) == {"tools", "answer"}


def test_tool_call_wire_shape() -> None:
    assert ToolCall(name="navigate_to_page", arguments="{}", id="c1").to_openai() == {
        "type": "function",
        "function": {"name": "navigate_to_page", "arguments": "{}"},
        "id": "c1",
    }
