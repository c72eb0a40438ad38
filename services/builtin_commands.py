from __future__ import annotations

import logging
import os
import platform
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

import psutil

from services.metrics import format_metrics_text, record_error
from services.similarity import find_similar
from services.wa_format import wa_card
from wa_bot.whatsapp.commands import render_help

logger = logging.getLogger(__name__)

# Handlers receive the parsed args and the sender key and return the reply text.
CommandHandler = Callable[[List[str], str], str]

CATEGORY_GENERAL = "general"
CATEGORY_SYSTEM = "sistema"

GROUP_ORDER: List[str] = [
    CATEGORY_GENERAL,
    "utilidad",
    "diversión",
    "multimedia",
    CATEGORY_SYSTEM,
    "admin",
    "misc",
]

_WEEKDAYS = ["lunes", "martes", "miércoles", "jueves", "viernes", "sábado", "domingo"]
_MONTHS = [
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
]


@dataclass
class CommandSpec:
    name: str
    description: str
    category: str
    handler: Optional[CommandHandler]
    usage: str = ""
    aliases: List[str] = field(default_factory=list)


@dataclass
class BuiltinReply:
    text: str
    found: bool
    command: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)


def format_uptime(seconds: float) -> str:
    total = int(max(0, seconds))
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours or days:
        parts.append(f"{hours}h")
    if minutes or hours or days:
        parts.append(f"{minutes}m")
    parts.append(f"{secs}s")
    return " ".join(parts)


def format_spanish_datetime(moment: datetime) -> str:
    return (
        f"{_WEEKDAYS[moment.weekday()]}, {moment.day} de {_MONTHS[moment.month - 1]} de {moment.year}, "
        f"{moment.strftime('%H:%M:%S')}"
    )


class BuiltinCommands:
    """Registry of the bot's own prefix commands (help, ping, time, status)."""

    def __init__(self, prefix: str = "!", *, clock: Callable[[], datetime] = datetime.now):
        self.prefix = prefix or "!"
        self._clock = clock
        self._started = time.monotonic()
        self._commands: Dict[str, CommandSpec] = {}
        self._aliases: Dict[str, str] = {}
        self._register_defaults()

    # Registry

    def register(self, spec: CommandSpec) -> CommandSpec:
        name = spec.name.strip().lower()
        spec.name = name
        self._commands[name] = spec
        for alias in spec.aliases:
            self._aliases[alias.strip().lower()] = name
        logger.debug("Built-in command registered: %s", name)
        return spec

    def has(self, name: str) -> bool:
        return self.resolve(name) is not None

    def remove(self, name: str) -> bool:
        key = str(name or "").strip().lower()
        spec = self._commands.pop(key, None)
        if spec is None:
            return False
        for alias in [a for a, target in self._aliases.items() if target == key]:
            self._aliases.pop(alias, None)
        return True

    def resolve(self, name: str) -> Optional[CommandSpec]:
        key = str(name or "").strip().lower()
        key = self._aliases.get(key, key)
        return self._commands.get(key)

    def names(self) -> List[str]:
        return list(self._commands) + list(self._aliases)

    def specs(self) -> List[CommandSpec]:
        return list(self._commands.values())

    def grouped(self) -> Dict[str, List[CommandSpec]]:
        groups: Dict[str, List[CommandSpec]] = {name: [] for name in GROUP_ORDER}
        for spec in self.specs():
            groups.setdefault(spec.category, []).append(spec)
        return {k: v for k, v in groups.items() if v}

    def validate(self) -> List[str]:
        issues: List[str] = []
        for spec in self.specs():
            if not spec.name:
                issues.append("Built-in command with empty name")
            if spec.handler is None:
                issues.append(f"Missing handler: {spec.name}")
            if spec.category not in GROUP_ORDER:
                issues.append(f"Unknown category '{spec.category}' on {spec.name}")
        for alias, target in self._aliases.items():
            if alias in self._commands:
                issues.append(f"Alias '{alias}' shadows command '{alias}' (points to {target})")
        return issues

    # Execution

    def parse(self, text: str) -> Optional[tuple[str, List[str]]]:
        raw = str(text or "").strip()
        if not raw.startswith(self.prefix):
            return None
        parts = raw[len(self.prefix):].strip().split()
        if not parts:
            return None
        return parts[0].lower(), parts[1:]

    def execute(self, text: str, sender_key: str = "") -> Optional[BuiltinReply]:
        """Run a prefix command; ``None`` when ``text`` is not prefixed at all."""
        parsed = self.parse(text)
        if parsed is None:
            if str(text or "").strip().startswith(self.prefix):
                return BuiltinReply(
                    text=f"⚠️ Comando no reconocido. Usa *{self.prefix}help* para ver los comandos disponibles.",
                    found=False,
                )
            return None

        name, args = parsed
        spec = self.resolve(name)
        if spec is None or spec.handler is None:
            return self._unknown(name)

        logger.info("Running built-in command %s args=%s", spec.name, args)
        try:
            reply = spec.handler(args, sender_key)
        except Exception as exc:
            logger.exception("Built-in command %s failed", spec.name)
            record_error("builtin_commands", type(exc).__name__)
            return BuiltinReply(
                text=f"❌ Ocurrió un error al ejecutar el comando: {exc}",
                found=True,
                command=spec.name,
            )
        return BuiltinReply(text=reply, found=True, command=spec.name)

    def _unknown(self, name: str) -> BuiltinReply:
        suggestions = find_similar(name, self.names())
        if suggestions:
            listed = ", ".join(f"*{self.prefix}{cmd}*" for cmd in suggestions)
            return BuiltinReply(
                text=f"⚠️ Comando no encontrado: *{name}*\n\n¿Quisiste decir alguno de estos?\n{listed}",
                found=False,
                suggestions=suggestions,
            )
        return BuiltinReply(
            text=f"⚠️ Comando no reconocido. Usa *{self.prefix}help* para ver los comandos disponibles.",
            found=False,
        )

    # Default handlers

    def _register_defaults(self) -> None:
        self.register(CommandSpec("help", "Muestra la lista de comandos disponibles", CATEGORY_GENERAL, self._help, usage="help [categoría]", aliases=["comandos"]))
        self.register(CommandSpec("ping", "Comprueba si el bot está activo", CATEGORY_GENERAL, self._ping))
        self.register(CommandSpec("hora", "Muestra la fecha y hora actual", CATEGORY_GENERAL, self._hora))
        self.register(CommandSpec("status", "Muestra el estado del bot y el sistema", CATEGORY_SYSTEM, self._status))

    def _help(self, args: List[str], sender_key: str) -> str:
        category = args[0].lower() if args else None
        return render_help(self, category)

    def _ping(self, args: List[str], sender_key: str) -> str:
        return "¡Pong! 🏓"

    def _hora(self, args: List[str], sender_key: str) -> str:
        return f"🕒 *Fecha y hora actual:*\n{format_spanish_datetime(self._clock())}"

    def _status(self, args: List[str], sender_key: str) -> str:
        rss_mb = psutil.Process(os.getpid()).memory_info().rss / (1024 * 1024)
        lines = [
            "🟢 *En línea:* Sí",
            f"⏱️ *Uptime:* {format_uptime(time.monotonic() - self._started)}",
            f"🖥️ *Sistema:* {platform.system()} {platform.release()} ({platform.machine()})",
            f"🧠 *Memoria:* {rss_mb:.0f} MB",
            f"📝 *Comandos:* {len(self._commands)}",
        ]
        detail = bool(args) and args[0].lower() in {"detalle", "detail", "--detail"}
        return wa_card("Estado del Bot", lines, footer=format_metrics_text() if detail else None)
