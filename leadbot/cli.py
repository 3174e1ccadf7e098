"""
🧰 Leadbot CLI
--------------
Operator commands: stats, leads, groups, greet, update, serve, test-lead.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import uuid
from typing import Any, List, Optional

from leadbot.config import settings
from leadbot.errors import NotFound, SessionInvalidated
from leadbot.models import MessageEvent
from leadbot.processor import Dispatcher, build_dispatcher
from leadbot.runtime import configure_logging, get_logger, install_global_exception_hook
from leadbot.schema import GreetingSlot, LeadStatus, Priority
from leadbot.templates import SAMPLE_LEADS, format_sample_lead

logger = get_logger("cli")


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="leadbot", description="Lead detection engine for chat groups.")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("stats", help="Show lead statistics.")

    leads = sub.add_parser("leads", help="List tracked leads.")
    leads.add_argument("--status", choices=[s.value for s in LeadStatus])
    leads.add_argument("--priority", choices=[p.value for p in Priority])
    leads.add_argument("--conversation", dest="conversation_id")
    leads.add_argument("--since", help="ISO8601 lower bound on creation time.")
    leads.add_argument("--limit", type=int, default=20)

    sub.add_parser("groups", help="Show monitored groups and conversations with leads.")

    greet = sub.add_parser("greet", help="Send a greeting to a conversation.")
    greet.add_argument("conversation_id")
    greet.add_argument("--slot", choices=[s.value for s in GreetingSlot], help="Force a greeting bucket.")
    greet.add_argument("--force", action="store_true", help="Ignore the daily greeting cap.")

    update = sub.add_parser("update", help="Update a lead's status or assignee.")
    update.add_argument("lead_id")
    update.add_argument("--status", choices=[s.value for s in LeadStatus])
    update.add_argument("--assignee")
    update.add_argument("--note")

    serve = sub.add_parser("serve", help="Run the webhook API.")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)

    test = sub.add_parser("test-lead", help="Run sample leads through the pipeline without a transport.")
    test.add_argument("--template", choices=sorted(SAMPLE_LEADS) + ["all"], default="basic")
    test.add_argument("--conversation", default="test-group@g.us")
    return p.parse_args(argv)


# ---------- COMMANDS ----------
def cmd_groups(dispatcher: Dispatcher) -> dict:
    conversations = sorted({record.source_description for record in dispatcher.lead_store.all()})
    return {
        "monitoring": dispatcher.monitoring,
        "monitoredGroups": list(dispatcher.policy.groups) or ["<all groups>"],
        "directMessages": dispatcher.policy.direct_messages,
        "conversationsWithLeads": conversations,
    }


def cmd_test_lead(dispatcher: Dispatcher, template: str, conversation_id: str) -> dict:
    names = sorted(SAMPLE_LEADS) if template == "all" else [template]
    events = [
        MessageEvent(
            id=f"test-{uuid.uuid4().hex[:12]}",
            conversation_id=conversation_id,
            text=format_sample_lead(name),
            sender_id="tester@s.whatsapp.net",
            is_group=conversation_id.endswith("@g.us"),
            group_name="Leadbot Test Group",
        )
        for name in names
    ]
    return asyncio.run(dispatcher.handle_batch(events))


# ---------- MAIN ----------
def main(argv: Optional[List[str]] = None) -> int:
    configure_logging()
    install_global_exception_hook()
    args = _parse_args(argv)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("leadbot.main:app", host=args.host, port=args.port)
        return 0

    dispatcher = build_dispatcher()

    if args.command == "stats":
        _print(dispatcher.get_lead_stats())
    elif args.command == "leads":
        try:
            _print(dispatcher.list_leads({
                "status": args.status,
                "priority": args.priority,
                "conversation_id": args.conversation_id,
                "since": args.since,
                "limit": args.limit,
            }))
        except ValueError as exc:
            print(str(exc), file=sys.stderr)
            return 1
    elif args.command == "groups":
        _print(cmd_groups(dispatcher))
    elif args.command == "greet":
        try:
            ok = asyncio.run(dispatcher.send_greeting(args.conversation_id, args.slot, force=args.force))
        except SessionInvalidated as exc:
            logger.critical("🚨 %s", exc)
            return 2
        _print({"ok": ok, "conversationId": args.conversation_id})
        return 0 if ok else 1
    elif args.command == "update":
        patch = {k: v for k, v in {"status": args.status, "assignee": args.assignee, "note": args.note}.items() if v}
        try:
            _print(asyncio.run(dispatcher.update_lead(args.lead_id, patch)))
        except NotFound as exc:
            print(str(exc), file=sys.stderr)
            return 1
    elif args.command == "test-lead":
        try:
            _print(cmd_test_lead(dispatcher, args.template, args.conversation))
        except SessionInvalidated as exc:
            logger.critical("🚨 %s", exc)
            return 2
    if dispatcher.lead_store.degraded:
        logger.warning("⚠️ Lead store is degraded; last save did not reach %s", settings().STORE_BACKEND)
    return 0


if __name__ == "__main__":
    sys.exit(main())
