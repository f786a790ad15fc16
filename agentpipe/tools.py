"""Host-executed ("external") tools offered to the worker."""

from __future__ import annotations

import inspect
import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Union

import structlog

logger = structlog.get_logger(__name__)

ToolExecute = Callable[[str, dict], Union[Any, Awaitable[Any]]]


@dataclass
class ExternalTool:
    """A tool the worker may call but the host runs.

    ``execute`` receives the tool call id and the parsed input. It may be
    sync or async and may return a string, a list of content blocks, or a
    dict with a ``content`` list.
    """

    name: str
    description: str
    execute: ToolExecute
    parameters: dict = field(default_factory=lambda: {"type": "object", "properties": {}})
    label: str | None = None

    def to_wire(self) -> dict:
        return {
            "name": self.name,
            "label": self.label or self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


def _text_block(text: str) -> dict:
    return {"type": "text", "text": text}


def normalize_tool_content(value: Any) -> list[dict]:
    """Coerce an executor's return value into content blocks."""
    if value is None:
        return []
    if isinstance(value, str):
        return [_text_block(value)]
    if isinstance(value, dict) and isinstance(value.get("content"), list):
        value = value["content"]
    if isinstance(value, list) and all(isinstance(v, dict) and "type" in v for v in value):
        return value
    return [_text_block(json.dumps(value, default=str))]


class ExternalToolExecutor:
    """Runs external tools by name and shapes the reply payload."""

    def __init__(self, tools: Iterable[ExternalTool] = ()) -> None:
        self._tools: dict[str, ExternalTool] = {}
        for tool in tools:
            if tool.name in self._tools:
                raise ValueError(f"duplicate external tool name: {tool.name}")
            self._tools[tool.name] = tool

    def __len__(self) -> int:
        return len(self._tools)

    def definitions(self) -> list[dict]:
        return [tool.to_wire() for tool in self._tools.values()]

    async def execute(self, tool_call_id: str, tool_name: str, tool_input: dict) -> dict:
        """Run a tool and return the control-response payload.

        Returns:
            Dict with ``tool_call_id``, ``content`` blocks and ``is_error``.
        """
        tool = self._tools.get(tool_name)
        if tool is None:
            logger.warning("Worker requested unknown external tool", tool_name=tool_name)
            return {
                "tool_call_id": tool_call_id,
                "content": [_text_block(f"Unknown external tool: {tool_name}")],
                "is_error": True,
            }

        try:
            result = tool.execute(tool_call_id, tool_input)
            if inspect.isawaitable(result):
                result = await result
            content = normalize_tool_content(result)
        except Exception as e:
            logger.exception("External tool execution failed", tool_name=tool_name, tool_call_id=tool_call_id)
            return {
                "tool_call_id": tool_call_id,
                "content": [_text_block(str(e) or type(e).__name__)],
                "is_error": True,
            }
        return {"tool_call_id": tool_call_id, "content": content, "is_error": False}
