"""Tests for external tool execution."""

import pytest

from agentpipe.tools import ExternalTool, ExternalToolExecutor, normalize_tool_content


def _tool(name: str, execute, **kw) -> ExternalTool:
    return ExternalTool(name=name, description=f"{name} tool", execute=execute, **kw)


class TestDefinitions:

    def test_wire_definition(self) -> None:
        tool = _tool(
            "lookup",
            lambda call_id, args: "ok",
            parameters={"type": "object", "properties": {"q": {"type": "string"}}},
        )
        assert tool.to_wire() == {
            "name": "lookup",
            "label": "lookup",
            "description": "lookup tool",
            "parameters": {"type": "object", "properties": {"q": {"type": "string"}}},
        }

    def test_duplicate_names_rejected(self) -> None:
        with pytest.raises(ValueError):
            ExternalToolExecutor([_tool("a", lambda c, a: None), _tool("a", lambda c, a: None)])


class TestExecute:

    @pytest.mark.anyio
    async def test_sync_tool(self) -> None:
        seen = {}

        def execute(call_id, args):
            seen["call"] = (call_id, args)
            return "42"

        executor = ExternalToolExecutor([_tool("answer", execute)])
        payload = await executor.execute("tc-1", "answer", {"q": "life"})

        assert seen["call"] == ("tc-1", {"q": "life"})
        assert payload == {
            "tool_call_id": "tc-1",
            "content": [{"type": "text", "text": "42"}],
            "is_error": False,
        }

    @pytest.mark.anyio
    async def test_async_tool_returning_content_dict(self) -> None:
        async def execute(call_id, args):
            return {"content": [{"type": "text", "text": "done"}], "details": {"n": 1}}

        executor = ExternalToolExecutor([_tool("work", execute)])
        payload = await executor.execute("tc-2", "work", {})
        assert payload["content"] == [{"type": "text", "text": "done"}]
        assert payload["is_error"] is False

    @pytest.mark.anyio
    async def test_exception_becomes_error_result(self) -> None:
        def execute(call_id, args):
            raise RuntimeError("disk full")

        executor = ExternalToolExecutor([_tool("save", execute)])
        payload = await executor.execute("tc-3", "save", {})
        assert payload["is_error"] is True
        assert payload["content"] == [{"type": "text", "text": "disk full"}]

    @pytest.mark.anyio
    async def test_unknown_tool(self) -> None:
        payload = await ExternalToolExecutor().execute("tc-4", "missing", {})
        assert payload["is_error"] is True
        assert "missing" in payload["content"][0]["text"]


class TestNormalize:

    def test_values(self) -> None:
        assert normalize_tool_content(None) == []
        assert normalize_tool_content("x") == [{"type": "text", "text": "x"}]
        assert normalize_tool_content({"a": 1}) == [{"type": "text", "text": '{"a": 1}'}]
        blocks = [{"type": "image", "data": "..."}]
        assert normalize_tool_content(blocks) == blocks
