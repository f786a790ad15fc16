"""Tests for the permission decision engine."""

import itertools

import pytest
from unittest.mock import AsyncMock, MagicMock

from agentpipe.models import PERMISSION_MODES, PermissionAllow, PermissionDeny
from agentpipe.permissions import (
    NO_CALLBACK_MESSAGE,
    PermissionEngine,
    Verdict,
    coerce_decision,
    evaluate_permission,
)


def _expected(requires_human_input: bool, mode: str, has_callback: bool, auto_allowed: bool) -> Verdict:
    if requires_human_input and not has_callback:
        return Verdict.DENY_NO_CALLBACK
    if mode == "bypassPermissions" and not requires_human_input:
        return Verdict.ALLOW
    if has_callback:
        return Verdict.ASK_CALLBACK
    if auto_allowed:
        return Verdict.ALLOW
    return Verdict.DENY_NO_CALLBACK


class TestRuleTable:

    @pytest.mark.parametrize(
        "requires_human_input,mode,has_callback,auto_allowed",
        list(itertools.product([True, False], PERMISSION_MODES, [True, False], [True, False])),
    )
    def test_every_combination(self, requires_human_input, mode, has_callback, auto_allowed) -> None:
        verdict = evaluate_permission(
            mode=mode,
            has_callback=has_callback,
            requires_human_input=requires_human_input,
            auto_allowed=auto_allowed,
        )
        assert verdict == _expected(requires_human_input, mode, has_callback, auto_allowed)

    @pytest.mark.parametrize("mode", PERMISSION_MODES)
    def test_human_input_without_callback_denied_in_every_mode(self, mode) -> None:
        for auto_allowed in (True, False):
            verdict = evaluate_permission(
                mode=mode, has_callback=False, requires_human_input=True, auto_allowed=auto_allowed
            )
            assert verdict == Verdict.DENY_NO_CALLBACK

    def test_bypass_allows_regardless_of_callback(self) -> None:
        for has_callback in (True, False):
            verdict = evaluate_permission(
                mode="bypassPermissions",
                has_callback=has_callback,
                requires_human_input=False,
                auto_allowed=False,
            )
            assert verdict == Verdict.ALLOW


class TestEngine:

    @pytest.mark.anyio
    async def test_ask_user_question_denied_in_bypass_without_callback(self) -> None:
        engine = PermissionEngine("bypassPermissions")
        decision = await engine.decide("AskUserQuestion", {})
        assert isinstance(decision, PermissionDeny)
        assert decision.message == NO_CALLBACK_MESSAGE

    @pytest.mark.anyio
    async def test_bypass_allows_without_calling_callback(self) -> None:
        callback = MagicMock(return_value=PermissionDeny(message="no"))
        engine = PermissionEngine("bypassPermissions", callback)
        decision = await engine.decide("Bash", {"command": "ls"})
        assert isinstance(decision, PermissionAllow)
        callback.assert_not_called()

    @pytest.mark.anyio
    async def test_sync_callback_result_used_verbatim(self) -> None:
        allow = PermissionAllow(updated_input={"command": "ls -la"})
        callback = MagicMock(return_value=allow)
        engine = PermissionEngine("default", callback)

        assert await engine.decide("Bash", {"command": "ls"}) is allow
        callback.assert_called_once_with("Bash", {"command": "ls"})

    @pytest.mark.anyio
    async def test_async_callback(self) -> None:
        callback = AsyncMock(return_value=PermissionDeny(message="not today", interrupt=True))
        engine = PermissionEngine("default", callback)

        decision = await engine.decide("Write", {"path": "x"})
        assert decision == PermissionDeny(message="not today", interrupt=True)

    @pytest.mark.anyio
    async def test_callback_for_human_input_tool(self) -> None:
        callback = AsyncMock(return_value={"behavior": "allow", "updatedInput": {"answer": "yes"}})
        engine = PermissionEngine("bypassPermissions", callback)

        decision = await engine.decide("AskUserQuestion", {"question": "?"})
        assert decision == PermissionAllow(updated_input={"answer": "yes"})
        callback.assert_awaited_once()

    @pytest.mark.anyio
    async def test_callback_exception_becomes_deny(self) -> None:
        callback = MagicMock(side_effect=RuntimeError("callback exploded"))
        engine = PermissionEngine("default", callback)

        decision = await engine.decide("Bash", {})
        assert isinstance(decision, PermissionDeny)
        assert decision.message == "callback exploded"

    @pytest.mark.anyio
    async def test_invalid_callback_result_becomes_deny(self) -> None:
        engine = PermissionEngine("default", lambda name, data: "yes please")
        decision = await engine.decide("Bash", {})
        assert isinstance(decision, PermissionDeny)
        assert "invalid permission decision" in decision.message

    @pytest.mark.anyio
    async def test_auto_allow_without_callback(self) -> None:
        engine = PermissionEngine("default")
        assert isinstance(await engine.decide("EnterPlanMode", {}), PermissionAllow)

    @pytest.mark.anyio
    async def test_default_without_callback_denies(self) -> None:
        engine = PermissionEngine("acceptEdits")
        decision = await engine.decide("Bash", {})
        assert decision == PermissionDeny(message=NO_CALLBACK_MESSAGE)

    @pytest.mark.anyio
    async def test_custom_tool_sets(self) -> None:
        engine = PermissionEngine(
            "bypassPermissions",
            human_input_tools={"Confirm"},
            auto_allow_tools=set(),
        )
        assert isinstance(await engine.decide("Confirm", {}), PermissionDeny)
        assert isinstance(await engine.decide("AskUserQuestion", {}), PermissionAllow)


class TestWireFormat:

    def test_allow_wire_shape(self) -> None:
        assert PermissionAllow().to_wire() == {
            "behavior": "allow",
            "updatedInput": None,
            "updatedPermissions": [],
        }

    def test_deny_wire_shape(self) -> None:
        assert PermissionDeny(message=NO_CALLBACK_MESSAGE).to_wire() == {
            "behavior": "deny",
            "message": "No canUseTool callback registered",
            "interrupt": False,
        }

    def test_coerce_deny_dict(self) -> None:
        assert coerce_decision({"behavior": "deny", "message": "nope"}) == PermissionDeny(message="nope")

    def test_coerce_rejects_unknown_behavior(self) -> None:
        with pytest.raises(TypeError):
            coerce_decision({"behavior": "maybe"})
