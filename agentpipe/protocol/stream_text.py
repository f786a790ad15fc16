"""Pull appendable assistant/reasoning text out of ``stream_event`` payloads."""

from __future__ import annotations

from typing import Any, Literal, NamedTuple


class StreamTextDelta(NamedTuple):
    kind: Literal["assistant", "reasoning"]
    text: str


def text_from_content(content: Any) -> str | None:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        pieces = []
        for part in content:
            if isinstance(part, str):
                pieces.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                pieces.append(part["text"])
        joined = "".join(pieces)
        return joined or None
    if isinstance(content, dict) and isinstance(content.get("text"), str):
        return content["text"]
    return None


def extract_stream_text_delta(event: Any) -> StreamTextDelta | None:
    """Return the text delta carried by a stream event, if any.

    Two shapes are emitted by the worker: content-block deltas
    (``{"delta": {"text"|"reasoning": ...}}``) and message chunks
    (``{"message_type": "assistant_message"|"reasoning_message", ...}``).
    """
    if not isinstance(event, dict):
        return None

    delta = event.get("delta")
    if isinstance(delta, dict):
        if isinstance(delta.get("reasoning"), str) and delta["reasoning"]:
            return StreamTextDelta("reasoning", delta["reasoning"])
        if isinstance(delta.get("text"), str) and delta["text"]:
            return StreamTextDelta("assistant", delta["text"])

    message_type = event.get("message_type")
    if message_type == "reasoning_message":
        reasoning = event.get("reasoning")
        text = reasoning if isinstance(reasoning, str) else text_from_content(event.get("content"))
        if text:
            return StreamTextDelta("reasoning", text)

    if message_type == "assistant_message":
        text = text_from_content(event.get("content"))
        if text:
            return StreamTextDelta("assistant", text)

    return None
