"""Outbound envelope builders and line framing for the stream-json protocol."""

from __future__ import annotations

import json
from typing import Any

# Inbound top-level kinds
SYSTEM = "system"
MESSAGE = "message"
STREAM_EVENT = "stream_event"
CONTROL_REQUEST = "control_request"
CONTROL_RESPONSE = "control_response"
RESULT = "result"
ERROR = "error"
RETRY = "retry"
USER = "user"

# Control request subtypes
INITIALIZE = "initialize"
INTERRUPT = "interrupt"
LIST_MESSAGES = "list_messages"
BOOTSTRAP_SESSION_STATE = "bootstrap_session_state"
REGISTER_EXTERNAL_TOOLS = "register_external_tools"
CAN_USE_TOOL = "can_use_tool"
EXECUTE_EXTERNAL_TOOL = "execute_external_tool"


def encode_line(envelope: dict) -> bytes:
    """Serialize one envelope as a compact JSON line."""
    return (json.dumps(envelope, separators=(",", ":")) + "\n").encode()


def control_request(request_id: str, subtype: str, **fields: Any) -> dict:
    request = {"subtype": subtype}
    request.update({k: v for k, v in fields.items() if v is not None})
    return {"type": CONTROL_REQUEST, "request_id": request_id, "request": request}


def control_success(request_id: str, payload: dict) -> dict:
    return {
        "type": CONTROL_RESPONSE,
        "response": {"subtype": "success", "request_id": request_id, "response": payload},
    }


def control_error(request_id: str, message: str) -> dict:
    return {
        "type": CONTROL_RESPONSE,
        "response": {"subtype": "error", "request_id": request_id, "error": message},
    }


def user_message(content: str | list[dict]) -> dict:
    return {"type": USER, "message": {"role": "user", "content": content}}
