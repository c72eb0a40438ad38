from __future__ import annotations

import logging
import sys
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO

from services.bot import BotHandler
from services.builtin_commands import BuiltinCommands
from services.channel import InboundChannel
from services.command_index import CommandIndex
from services.command_store import CommandStore
from services.dispatcher import MessageDispatcher
from services.message_log import MessageLog
from services.models import InboundMessage
from services.pending_selection import PendingSelectionStore
from services.senders import ReplyFn, build_sender
from wa_bot.config import get_db_path, get_prefix, get_selection_ttl, load_config
from wa_bot.db.connect import default_timeout
from wa_bot.logging import configure_logging

logger = logging.getLogger(__name__)


@dataclass
class Bot:
    config: Dict[str, Any]
    store: CommandStore
    index: CommandIndex
    selections: PendingSelectionStore
    dispatcher: MessageDispatcher
    builtins: BuiltinCommands
    handler: BotHandler
    channel: InboundChannel
    reply: ReplyFn
    message_log: Optional[MessageLog] = None


def build_bot(config: Optional[Dict[str, Any]] = None, *, reply: Optional[ReplyFn] = None) -> Bot:
    """Wire every component once and hand the instances to each other."""
    cfg = config or load_config()
    prefix = get_prefix(cfg)

    store = CommandStore(get_db_path(cfg), prefix=prefix, timeout=default_timeout(cfg))
    store.init_db()

    selection_cfg = cfg.get("selection", {}) if isinstance(cfg.get("selection"), dict) else {}
    selections = PendingSelectionStore(
        get_selection_ttl(cfg),
        max_entries=int(selection_cfg.get("max_entries", 10000)),
    )

    reply_fn = reply or build_sender(cfg)
    index = CommandIndex(store, prefix)
    dispatcher = MessageDispatcher(index, store, selections, reply_fn)

    builtins = BuiltinCommands(prefix)
    for issue in builtins.validate():
        logger.error("Built-in command registry issue: %s", issue)

    db_cfg = cfg.get("database", {}) if isinstance(cfg.get("database"), dict) else {}
    message_log = None
    if db_cfg.get("message_log", True):
        message_log = MessageLog(store.db_path, timeout=store.timeout)
        message_log.init_db()

    bot_cfg = cfg.get("bot", {}) if isinstance(cfg.get("bot"), dict) else {}
    handler = BotHandler(
        dispatcher,
        builtins,
        reply_fn,
        keyword_replies=bool(bot_cfg.get("keyword_replies", True)),
        message_log=message_log,
    )

    inbound_cfg = cfg.get("inbound", {}) if isinstance(cfg.get("inbound"), dict) else {}
    channel = InboundChannel(
        handler.handle,
        workers=int(inbound_cfg.get("workers", 4)),
        idle_interval=float(inbound_cfg.get("idle_interval_seconds", 60)),
        on_idle=selections.sweep,
    )

    logger.info("Command DB path: %s", store.db_path)
    return Bot(
        config=cfg,
        store=store,
        index=index,
        selections=selections,
        dispatcher=dispatcher,
        builtins=builtins,
        handler=handler,
        channel=channel,
        reply=reply_fn,
        message_log=message_log,
    )


def parse_console_line(line: str) -> Optional[InboundMessage]:
    """Turn ``sender: text`` into an inbound message; other lines are ignored."""
    raw = str(line or "").rstrip("\r\n")
    if ":" not in raw:
        return None
    sender, body = raw.split(":", 1)
    sender = sender.strip()
    if not sender:
        return None
    return InboundMessage(
        sender_key=sender,
        body=body.strip(),
        message_id=uuid.uuid4().hex[:12],
        received_at=datetime.now(timezone.utc).isoformat(),
    )


def run_console(bot: Bot, stream: Optional[TextIO] = None) -> int:
    """Feed stdin lines through the channel until EOF; returns messages queued."""
    source = stream or sys.stdin
    submitted = 0
    bot.channel.start()
    try:
        for line in source:
            message = parse_console_line(line)
            if message is None:
                if line.strip():
                    logger.warning("Ignoring console line without 'sender: text' shape")
                continue
            bot.channel.submit(message)
            submitted += 1
        bot.channel.join()
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        bot.channel.stop(timeout=5)
    return submitted


def main() -> None:
    config = load_config()
    configure_logging(config)
    bot = build_bot(config)
    run_console(bot)


if __name__ == "__main__":
    main()
