"""Allow/deny policy for tool-approval requests from the worker."""

from __future__ import annotations

import inspect
from enum import Enum
from typing import Any, Awaitable, Callable, Union

import structlog

from agentpipe.models import PermissionAllow, PermissionDecision, PermissionDeny, PermissionMode

logger = structlog.get_logger(__name__)

NO_CALLBACK_MESSAGE = "No canUseTool callback registered"

# Tools that only make sense with a human on the other end.
DEFAULT_HUMAN_INPUT_TOOLS = frozenset({"AskUserQuestion"})
# Tools that are safe to allow when nobody is asked.
DEFAULT_AUTO_ALLOW_TOOLS = frozenset({"EnterPlanMode"})

CanUseTool = Callable[
    [str, dict],
    Union[PermissionDecision, dict, Awaitable[Union[PermissionDecision, dict]]],
]


class Verdict(str, Enum):
    """Outcome of the static rule table."""
    DENY_NO_CALLBACK = "deny_no_callback"
    ALLOW = "allow"
    ASK_CALLBACK = "ask_callback"


def evaluate_permission(
    *,
    mode: PermissionMode,
    has_callback: bool,
    requires_human_input: bool,
    auto_allowed: bool,
) -> Verdict:
    """Apply the ordered permission rules.

    1. Human-input tool without a callback: deny.
    2. Bypass mode and no human input needed: allow.
    3. A callback is registered: ask it.
    4. Tool is in the auto-allow set: allow.
    5. Otherwise deny.
    """
    if requires_human_input and not has_callback:
        return Verdict.DENY_NO_CALLBACK
    if mode == "bypassPermissions" and not requires_human_input:
        return Verdict.ALLOW
    if has_callback:
        return Verdict.ASK_CALLBACK
    if auto_allowed:
        return Verdict.ALLOW
    return Verdict.DENY_NO_CALLBACK


def coerce_decision(value: Any) -> PermissionDecision:
    """Accept a decision model or a ``{"behavior": ...}`` dict from a callback."""
    if isinstance(value, (PermissionAllow, PermissionDeny)):
        return value
    if isinstance(value, dict):
        behavior = value.get("behavior")
        if behavior == "allow":
            return PermissionAllow(
                updated_input=value.get("updated_input", value.get("updatedInput")),
                updated_permissions=value.get("updated_permissions", value.get("updatedPermissions")) or [],
            )
        if behavior == "deny":
            return PermissionDeny(
                message=value.get("message") or "",
                interrupt=bool(value.get("interrupt", False)),
            )
    raise TypeError(f"invalid permission decision: {value!r}")


class PermissionEngine:
    """Decides tool approvals for one session.

    The host callback, when present, is the injected decision capability;
    the rule table in :func:`evaluate_permission` wraps it.
    """

    def __init__(
        self,
        mode: PermissionMode = "default",
        can_use_tool: CanUseTool | None = None,
        *,
        human_input_tools: frozenset[str] | set[str] = DEFAULT_HUMAN_INPUT_TOOLS,
        auto_allow_tools: frozenset[str] | set[str] = DEFAULT_AUTO_ALLOW_TOOLS,
    ) -> None:
        self.mode: PermissionMode = mode
        self._callback = can_use_tool
        self._human_input_tools = frozenset(human_input_tools)
        self._auto_allow_tools = frozenset(auto_allow_tools)

    @property
    def has_callback(self) -> bool:
        return self._callback is not None

    def requires_human_input(self, tool_name: str) -> bool:
        return tool_name in self._human_input_tools

    def is_auto_allowed(self, tool_name: str) -> bool:
        return tool_name in self._auto_allow_tools

    async def decide(self, tool_name: str, tool_input: dict) -> PermissionDecision:
        """Decide whether the worker may run ``tool_name`` with ``tool_input``.

        Never raises: a failing callback turns into a deny carrying its message.
        """
        verdict = evaluate_permission(
            mode=self.mode,
            has_callback=self.has_callback,
            requires_human_input=self.requires_human_input(tool_name),
            auto_allowed=self.is_auto_allowed(tool_name),
        )
        if verdict == Verdict.ALLOW:
            return PermissionAllow()
        if verdict == Verdict.DENY_NO_CALLBACK:
            return PermissionDeny(message=NO_CALLBACK_MESSAGE)

        assert self._callback is not None
        try:
            result = self._callback(tool_name, tool_input)
            if inspect.isawaitable(result):
                result = await result
            return coerce_decision(result)
        except Exception as exc:
            logger.warning(
                "Permission callback failed, denying",
                tool_name=tool_name,
                error=str(exc),
            )
            return PermissionDeny(message=str(exc) or type(exc).__name__)
