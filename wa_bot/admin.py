"""Command table maintenance.

Usage:
    wa-bot-admin list [--type list]
    wa-bot-admin show 3
    wa-bot-admin add hola "¡Hola!"                      # prefixed: !hola
    wa-bot-admin add gracias "De nada" --no-prefix       # plain-text trigger
    wa-bot-admin add menu "Elige:" --type list --title Menu --items '[{"title": "Café"}]'
    wa-bot-admin add --json '{"command": "x", "response": "y", "usePrefix": false}'
    wa-bot-admin delete 3
    wa-bot-admin delete-lists [3 4 ...]
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from services.command_service import CommandService
from services.command_store import CommandStore
from services.models import Command
from wa_bot.config import get_db_path, get_prefix, load_config
from wa_bot.db.connect import default_timeout


def build_service(config: Optional[Dict[str, Any]] = None, db_path: Optional[Path] = None) -> CommandService:
    cfg = config or load_config()
    store = CommandStore(db_path or get_db_path(cfg), prefix=get_prefix(cfg), timeout=default_timeout(cfg))
    store.init_db()
    return CommandService(store)


def _describe(command: Command) -> str:
    flag = "" if command.use_prefix else " (sin prefijo)"
    line = f"#{command.id} {command.command}{flag} [{command.response_type}]"
    if command.is_interactive:
        return f"{line} {command.title or ''} - {len(command.items)} opciones"
    return f"{line} -> {command.response[:60]}"


def _payload_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    if args.json:
        payload = json.loads(args.json)
        if not isinstance(payload, dict):
            raise ValueError("--json must be an object")
        return payload
    payload: Dict[str, Any] = {
        "command": args.command or "",
        "response": args.response or "",
        "use_prefix": not args.no_prefix,
        "response_type": args.type,
    }
    if args.title:
        payload["title"] = args.title
    if args.intro:
        payload["intro_text"] = args.intro
    if args.items:
        payload["items"] = json.loads(args.items)
    return payload


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wa-bot-admin", description="Manage custom bot commands")
    parser.add_argument("--db", type=Path, help="Command database (defaults to database.db_path)")
    sub = parser.add_subparsers(dest="action", required=True)

    list_cmd = sub.add_parser("list", help="List commands")
    list_cmd.add_argument("--type", choices=["text", "list", "buttons"])

    show_cmd = sub.add_parser("show", help="Show one command")
    show_cmd.add_argument("id", type=int)

    add_cmd = sub.add_parser("add", help="Create a command")
    add_cmd.add_argument("command", nargs="?")
    add_cmd.add_argument("response", nargs="?")
    add_cmd.add_argument("--no-prefix", action="store_true", help="Match as plain text instead of !command")
    add_cmd.add_argument("--type", default="text", choices=["text", "list", "buttons"])
    add_cmd.add_argument("--title")
    add_cmd.add_argument("--intro")
    add_cmd.add_argument("--items", help="JSON array of {title, description, response}")
    add_cmd.add_argument("--json", help="Full command payload as a JSON object")

    delete_cmd = sub.add_parser("delete", help="Delete a command")
    delete_cmd.add_argument("id", type=int)

    lists_cmd = sub.add_parser("delete-lists", help="Delete list commands (all, or the given ids)")
    lists_cmd.add_argument("ids", type=int, nargs="*")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    service = build_service(db_path=args.db)

    if args.action == "list":
        result = service.list_commands(args.type)
        if result["success"]:
            if not result["data"]:
                print("No hay comandos.")
            for command in result["data"]:
                print(_describe(command))
    elif args.action == "show":
        result = service.get_command(args.id)
        if result["success"]:
            command = result["data"]
            print(_describe(command))
            for number, item in enumerate(command.items, start=1):
                print(f"  {number}. {item.title} -> {item.response or '-'}")
    elif args.action == "add":
        try:
            payload = _payload_from_args(args)
        except ValueError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 2
        result = service.create_command(payload)
        if result["success"]:
            print(_describe(result["data"]))
    elif args.action == "delete":
        result = service.delete_command(args.id)
        if result["success"]:
            print(result["message"])
    else:
        result = service.delete_list_commands(args.ids or None)
        if result["success"]:
            print(result["message"])

    if not result["success"]:
        print(f"Error: {result['error']}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
