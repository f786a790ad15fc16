"""Tests for envelope classification."""

from agentpipe.models import (
    AssistantEvent,
    ErrorEvent,
    InitEvent,
    ReasoningEvent,
    ResultEvent,
    RetryEvent,
    StreamEvent,
    ToolResultEvent,
)
from agentpipe.protocol import classifier
from agentpipe.protocol.classifier import Kind, classify


class TestInit:

    def test_init_identity_and_flags(self) -> None:
        classified = classify(
            {
                "type": "system",
                "subtype": "init",
                "agent_id": "agent-1",
                "session_id": "sess-1",
                "conversation_id": "conv-1",
                "model": "anthropic/claude",
                "tools": ["Bash", "Read"],
                "memfs_enabled": True,
                "skill_sources": ["bundled", "project"],
                "system_info_reminder_enabled": False,
                "reflection_trigger": "step-count",
                "reflection_behavior": "reminder",
                "reflection_step_count": 12,
            }
        )
        assert classified.kind == Kind.INIT
        event = classified.event
        assert isinstance(event, InitEvent)
        assert event.identity.agent_id == "agent-1"
        assert event.identity.tools == ["Bash", "Read"]
        assert event.memfs_enabled is True
        assert event.skill_sources == ["bundled", "project"]
        assert event.system_info_reminder_enabled is False
        assert event.sleeptime is not None
        assert event.sleeptime.step_count == 12

    def test_init_without_optional_flags(self) -> None:
        event = classify(
            {"type": "system", "subtype": "init", "agent_id": "a", "session_id": "s", "conversation_id": "c"}
        ).event
        assert event.memfs_enabled is False
        assert event.sleeptime is None
        assert event.skill_sources is None
        assert event.tools == []

    def test_partial_reflection_settings_ignored(self) -> None:
        event = classify(
            {
                "type": "system",
                "subtype": "init",
                "agent_id": "a",
                "session_id": "s",
                "conversation_id": "c",
                "reflection_trigger": "off",
            }
        ).event
        assert event.sleeptime is None

    def test_other_system_subtype_ignored(self) -> None:
        assert classify({"type": "system", "subtype": "heartbeat"}).kind == Kind.IGNORED


class TestMessages:

    def test_assistant(self) -> None:
        classified = classify(
            {"type": "message", "message_type": "assistant_message", "content": "hi", "uuid": "u1"}
        )
        assert classified.kind == Kind.CONTENT
        assert classified.event == AssistantEvent(content="hi", uuid="u1")

    def test_assistant_content_parts_joined(self) -> None:
        classified = classify(
            {
                "type": "message",
                "message_type": "assistant_message",
                "content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}],
            }
        )
        assert classified.event.content == "ab"

    def test_empty_assistant_ignored(self) -> None:
        assert classify({"type": "message", "message_type": "assistant_message", "content": ""}).kind == Kind.IGNORED

    def test_reasoning(self) -> None:
        classified = classify(
            {"type": "message", "message_type": "reasoning_message", "reasoning": "thinking", "uuid": "u2"}
        )
        assert classified.event == ReasoningEvent(content="thinking", uuid="u2")

    def test_tool_return(self) -> None:
        classified = classify(
            {
                "type": "message",
                "message_type": "tool_return_message",
                "tool_call_id": "tc-1",
                "tool_return": "ok",
                "status": "error",
                "uuid": "u3",
            }
        )
        assert classified.event == ToolResultEvent(tool_call_id="tc-1", content="ok", is_error=True, uuid="u3")

    def test_tool_call_single(self) -> None:
        classified = classify(
            {
                "type": "message",
                "message_type": "tool_call_message",
                "uuid": "u4",
                "tool_call": {"name": "Bash", "arguments": '{"command":"ls"}', "tool_call_id": "tc-1"},
            }
        )
        assert classified.kind == Kind.TOOL_CALL
        (fragment,) = classified.fragments
        assert fragment.tool_call_id == "tc-1"
        assert fragment.index is None
        assert fragment.name == "Bash"
        assert fragment.arguments == '{"command":"ls"}'
        assert fragment.needs_approval is False
        assert fragment.uuid == "u4"

    def test_approval_request_nested_function(self) -> None:
        classified = classify(
            {
                "type": "message",
                "message_type": "approval_request_message",
                "tool_calls": [
                    {"index": 2, "id": "call_abc", "function": {"name": "web_search", "arguments": '{"q'}},
                    {"index": 3, "function": {"arguments": "x"}},
                ],
            }
        )
        first, second = classified.fragments
        assert first.tool_call_id == "call_abc"
        assert first.index == 2
        assert first.name == "web_search"
        assert first.needs_approval is True
        assert second.tool_call_id is None
        assert second.name is None
        assert second.arguments == "x"

    def test_tool_call_without_calls_ignored(self) -> None:
        classified = classify({"type": "message", "message_type": "tool_call_message"})
        assert classified.kind == Kind.IGNORED

    def test_unknown_message_type_ignored(self) -> None:
        classified = classify({"type": "message", "message_type": "user_message", "content": "x"})
        assert classified.kind == Kind.IGNORED
        assert "user_message" in classified.reason


class TestOtherKinds:

    def test_stream_event(self) -> None:
        classified = classify({"type": "stream_event", "event": {"delta": {"text": "h"}}, "uuid": "u"})
        assert classified.kind == Kind.STREAM_DELTA
        assert classified.event == StreamEvent(event={"delta": {"text": "h"}}, uuid="u")

    def test_control_envelopes(self) -> None:
        request = {"type": "control_request", "request_id": "r", "request": {"subtype": "can_use_tool"}}
        assert classify(request).kind == Kind.CONTROL_REQUEST
        assert classify({"type": "control_request", "request_id": "r"}).kind == Kind.IGNORED
        assert classify({"type": "control_response", "response": {}}).kind == Kind.CONTROL_RESPONSE

    def test_result_success(self) -> None:
        event = classify(
            {
                "type": "result",
                "subtype": "success",
                "result": "done",
                "duration_ms": 120,
                "total_cost_usd": 0.01,
                "conversation_id": "conv-1",
                "stop_reason": "end_turn",
            }
        ).event
        assert event == ResultEvent(
            success=True,
            result="done",
            duration_ms=120,
            total_cost_usd=0.01,
            conversation_id="conv-1",
            stop_reason="end_turn",
        )

    def test_result_failure_carries_subtype_as_error(self) -> None:
        event = classify({"type": "result", "subtype": "error_max_turns"}).event
        assert event.success is False
        assert event.error == "error_max_turns"

    def test_error(self) -> None:
        classified = classify(
            {
                "type": "error",
                "message": "rate limited",
                "stop_reason": "llm_api_error",
                "run_id": "run-1",
                "api_error": {"status": 429},
            }
        )
        assert classified.kind == Kind.ERROR
        assert classified.event == ErrorEvent(
            message="rate limited", stop_reason="llm_api_error", run_id="run-1", api_error={"status": 429}
        )

    def test_retry(self) -> None:
        event = classify(
            {"type": "retry", "reason": "overloaded", "attempt": 1, "max_attempts": 3, "delay_ms": 500}
        ).event
        assert event == RetryEvent(reason="overloaded", attempt=1, max_attempts=3, delay_ms=500)

    def test_mistyped_retry_fields_fall_back(self) -> None:
        classified = classify(
            {"type": "retry", "reason": "x", "attempt": "first", "max_attempts": 2.0, "delay_ms": None}
        )
        assert classified.kind == Kind.RETRY
        assert classified.event == RetryEvent(reason="x", attempt=0, max_attempts=2, delay_ms=0)

    def test_mistyped_result_fields_fall_back(self) -> None:
        classified = classify(
            {"type": "result", "subtype": "success", "duration_ms": None, "total_cost_usd": "0.01 USD"}
        )
        assert classified.kind == Kind.RESULT
        assert classified.event.success is True
        assert classified.event.duration_ms == 0
        assert classified.event.total_cost_usd is None

    def test_unreadable_result_still_ends_turn(self, monkeypatch) -> None:
        monkeypatch.setattr(classifier, "_result_event", lambda envelope: ResultEvent(success="maybe"))

        classified = classify({"type": "result", "subtype": "success"})
        assert classified.kind == Kind.RESULT
        assert classified.event.success is False
        assert classified.event.error == "invalid_result"

    def test_unknown_and_non_object(self) -> None:
        assert classify({"type": "mystery"}).kind == Kind.IGNORED
        assert classify(["not", "an", "object"]).kind == Kind.IGNORED
        assert classify({}).kind == Kind.IGNORED
