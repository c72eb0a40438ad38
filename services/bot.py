import logging
import random
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple, Union

from services.builtin_commands import BuiltinCommands
from services.dispatcher import OUTCOME_EMPTY, MessageDispatcher
from services.message_log import MessageLog
from services.metrics import metrics, record_error
from services.models import InboundMessage
from services.senders import ReplyFn, SendResult

logger = logging.getLogger(__name__)

STAGE_DISPATCHER = "dispatcher"
STAGE_BUILTIN = "builtin"
STAGE_KEYWORD = "keyword"
STAGE_IGNORED = "ignored"

JOKES: List[str] = [
    "¿Por qué los programadores prefieren el frío? Porque odian los bugs (bichos)",
    "¿Qué le dice un bit a otro bit? Nos vemos en el bus",
    "Solo hay 10 tipos de personas en el mundo: las que entienden binario y las que no",
    "Si no puedes convencerlos, confúndelos con tu código",
    "La única \"persona\" que escucha mis comandos sin cuestionar es mi WhatsApp Bot",
]

KeywordResponse = Union[str, Callable[[], str]]


@dataclass
class HandleResult:
    stage: str
    outcome: str
    reply_text: Optional[str] = None
    delivered: bool = False

    @property
    def handled(self) -> bool:
        return self.stage != STAGE_IGNORED


def default_keyword_replies(prefix: str, rng: random.Random) -> List[Tuple[Sequence[str], KeywordResponse]]:
    return [
        (("hola", "buenas", "saludos"), "¡Hola! 👋 ¿En qué puedo ayudarte hoy?"),
        (("gracias", "agradec"), "¡De nada! Estoy aquí para ayudar 😊"),
        (("ayuda", "help", "comandos"), f"Para ver la lista de comandos disponibles, envía *{prefix}help*"),
        (("cómo estás", "como estas"), "Estoy funcionando perfectamente, gracias por preguntar! 🤖"),
        (("chiste", "broma"), lambda: rng.choice(JOKES)),
    ]


class BotHandler:
    """Outer message handler.

    Custom commands and pending selections go through the dispatcher first.
    Only when it reports no match do the built-in prefix commands run, and
    plain text then falls back to keyword replies.
    """

    def __init__(
        self,
        dispatcher: MessageDispatcher,
        builtins: BuiltinCommands,
        reply: ReplyFn,
        *,
        keyword_replies: bool = True,
        rng: Optional[random.Random] = None,
        message_log: Optional[MessageLog] = None,
    ):
        self.dispatcher = dispatcher
        self.builtins = builtins
        self.reply = reply
        self.keyword_replies_enabled = keyword_replies
        self.message_log = message_log
        self._keywords = default_keyword_replies(builtins.prefix, rng or random.Random())

    def _send(self, sender_key: str, text: str) -> bool:
        try:
            result = self.reply(sender_key, text)
        except Exception as exc:
            logger.error("Failed to send reply to %s: %s", sender_key, exc)
            record_error("bot", "send_failure")
            return False
        if isinstance(result, SendResult) and not result.ok:
            logger.error("Failed to send reply to %s: %s", sender_key, result.error)
            record_error("bot", "send_failure")
            return False
        return True

    def keyword_reply(self, text: str) -> Optional[str]:
        content = str(text or "").lower()
        for keywords, response in self._keywords:
            if any(keyword in content for keyword in keywords):
                return response() if callable(response) else response
        return None

    def handle(self, message: InboundMessage) -> HandleResult:
        result = self._route(message)
        if self.message_log is not None and result.outcome != OUTCOME_EMPTY:
            self._log(message, result)
        return result

    def _log(self, message: InboundMessage, result: HandleResult) -> None:
        reply_text = result.reply_text if result.delivered else None
        try:
            self.message_log.record(message, stage=result.stage, outcome=result.outcome, reply_text=reply_text)
        except Exception as exc:
            logger.error("Failed to log message from %s: %s", message.sender_key, exc)
            record_error("message_log", type(exc).__name__)

    def _route(self, message: InboundMessage) -> HandleResult:
        body = str(message.body or "").strip()
        logger.info("Received message from %s: %s...", message.sender_key, body[:50])

        result = self.dispatcher.dispatch(message)
        if result.handled:
            return HandleResult(STAGE_DISPATCHER, result.outcome, result.reply_text, result.delivered)
        if result.outcome == OUTCOME_EMPTY:
            return HandleResult(STAGE_IGNORED, OUTCOME_EMPTY)

        builtin = self.builtins.execute(body, message.sender_key)
        if builtin is not None:
            metrics.increment("builtin_commands_total", labels={"found": str(builtin.found).lower()})
            delivered = self._send(message.sender_key, builtin.text)
            outcome = f"builtin_{builtin.command}" if builtin.found else "builtin_unknown"
            return HandleResult(STAGE_BUILTIN, outcome, builtin.text, delivered)

        if self.keyword_replies_enabled:
            text = self.keyword_reply(body)
            if text is not None:
                metrics.increment("keyword_replies_total")
                delivered = self._send(message.sender_key, text)
                return HandleResult(STAGE_KEYWORD, "keyword", text, delivered)

        logger.debug("No rule handled message from %s", message.sender_key)
        return HandleResult(STAGE_IGNORED, result.outcome)
