"""CLI entry point for agentpipe.

Provides ``agentpipe chat`` for one-shot turns and ``agentpipe history`` for
paging through a conversation.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from agentpipe.errors import AgentPipeError
from agentpipe.models import PERMISSION_MODES
from agentpipe.protocol import extract_stream_text_delta


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point (``agentpipe`` command)."""
    parser = argparse.ArgumentParser(
        prog="agentpipe",
        description="agentpipe: talk to a stream-json agent worker",
    )
    parser.add_argument("--worker", help="Path to the worker executable")
    parser.add_argument("--agent", dest="agent_id", help="Agent ID to use")
    parser.add_argument("--conversation", dest="conversation_id", help="Conversation ID to resume")
    sub = parser.add_subparsers(dest="command")

    # agentpipe chat
    chat_parser = sub.add_parser("chat", help="Send one message and print the reply")
    chat_parser.add_argument("prompt", help="Message text")
    chat_parser.add_argument(
        "--mode",
        choices=PERMISSION_MODES,
        default="default",
        help="Permission mode for tool calls",
    )
    chat_parser.add_argument(
        "--partial", action="store_true", help="Stream partial text as it is generated"
    )
    chat_parser.add_argument("--json", action="store_true", help="Print raw events as JSON lines")

    # agentpipe history
    history_parser = sub.add_parser("history", help="Print a page of conversation history")
    history_parser.add_argument("--limit", type=int, default=20)
    history_parser.add_argument("--before", help="Cursor: return messages before this ID")
    history_parser.add_argument("--order", choices=["asc", "desc"], default="desc")

    args = parser.parse_args(argv)

    if args.command == "chat":
        code = _run(_chat(args))
    elif args.command == "history":
        code = _run(_history(args))
    else:
        parser.print_help()
        code = 1
    sys.exit(code)


def _run(coro) -> int:
    from agentpipe.logging import configure_logging

    configure_logging()
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        return 130
    except AgentPipeError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


def _session(args: argparse.Namespace, **kwargs):
    from agentpipe.session import Session

    return Session(
        worker=args.worker,
        agent_id=args.agent_id,
        conversation_id=args.conversation_id,
        **kwargs,
    )


async def _chat(args: argparse.Namespace) -> int:
    """Handle ``agentpipe chat``."""
    async with _session(
        args,
        permission_mode=args.mode,
        include_partial_messages=args.partial,
    ) as session:
        await session.send(args.prompt)
        success = False
        async for event in session.stream():
            if args.json:
                print(event.model_dump_json(), flush=True)
            elif event.type == "stream_event":
                delta = extract_stream_text_delta(event.event)
                if delta and delta.kind == "assistant":
                    print(delta.text, end="", flush=True)
            elif event.type == "assistant" and not args.partial:
                print(event.content, flush=True)
            elif event.type == "tool_call" and event.complete:
                print(f"[tool] {event.tool_name} {json.dumps(event.tool_input)}", file=sys.stderr)
            elif event.type == "error":
                print(f"[error] {event.message}", file=sys.stderr)
            if event.type == "result":
                success = event.success
                if args.partial and not args.json:
                    print()
                if not success:
                    print(f"turn failed: {event.error}", file=sys.stderr)
    return 0 if success else 1


async def _history(args: argparse.Namespace) -> int:
    """Handle ``agentpipe history``."""
    async with _session(args) as session:
        await session.initialize()
        page = await session.list_history(limit=args.limit, before=args.before, order=args.order)
        for message in page.messages:
            print(json.dumps(message), flush=True)
        if page.has_more:
            print(f"next cursor: {page.next_before}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    main()
