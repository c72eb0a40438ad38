import logging
import re
import time
from dataclasses import dataclass
from typing import Optional, Union

from services import pending_selection as ps
from services.command_index import CommandIndex, LookupProvider
from services.list_resolver import resolve_list
from services.metrics import record_dispatch, record_error
from services.models import Command, InboundMessage
from services.pending_selection import PendingSelectionStore, SelectionOption
from services.senders import ReplyFn, SendResult
from wa_bot.logging import log_with_context

logger = logging.getLogger(__name__)

NUMERIC_REPLY = re.compile(r"^[0-9]+$")
# Longer digit runs can never name an offered option.
MAX_OPTION_DIGITS = 9

LIST_ERROR_TEXT = "Lo siento, ha ocurrido un error al mostrar las opciones. Por favor, intenta más tarde."
GENERIC_ERROR_TEXT = "Lo siento, ha ocurrido un error al procesar tu mensaje. Por favor, inténtalo más tarde."

OUTCOME_EMPTY = "empty"
OUTCOME_SELECTION = "selection"
OUTCOME_INVALID_OPTION = "invalid_option"
OUTCOME_TEXT = "command_text"
OUTCOME_LIST = "command_list"
OUTCOME_LIST_EMPTY = "command_list_empty"
OUTCOME_NO_MATCH = "no_match"
OUTCOME_ERROR = "error"


@dataclass
class DispatchResult:
    handled: bool
    outcome: str
    reply_text: Optional[str] = None
    command_id: Optional[int] = None
    delivered: bool = False


def invalid_option_text(number: Union[int, str]) -> str:
    return f"⚠️ El número {number} no es una opción válida."


def selection_ack_text(option: SelectionOption) -> str:
    text = f"Has seleccionado: *{option.title}*"
    if option.description:
        text += f" - {option.description}"
    return text


class MessageDispatcher:
    """Routes one inbound message: numeric reply, then custom command lookup.

    Never raises for a single message; failures are logged and turned into a
    best-effort apology when the sender is waiting for an answer.
    """

    def __init__(
        self,
        index: CommandIndex,
        provider: LookupProvider,
        selections: PendingSelectionStore,
        reply: ReplyFn,
    ):
        self.index = index
        self.provider = provider
        self.selections = selections
        self.reply = reply

    def _send(self, sender_key: str, text: str) -> bool:
        try:
            result = self.reply(sender_key, text)
        except Exception as exc:
            logger.error("Reply to %s raised: %s", sender_key, exc)
            record_error("dispatcher", "send_failure")
            return False
        if isinstance(result, SendResult) and not result.ok:
            logger.error("Reply to %s failed: %s", sender_key, result.error)
            record_error("dispatcher", "send_failure")
            return False
        return True

    def _answer(self, message: InboundMessage, outcome: str, text: str, command_id: Optional[int] = None) -> DispatchResult:
        delivered = self._send(message.sender_key, text)
        return DispatchResult(
            handled=True,
            outcome=outcome,
            reply_text=text,
            command_id=command_id,
            delivered=delivered,
        )

    def _try_selection(self, message: InboundMessage, body: str) -> Optional[DispatchResult]:
        if len(body) > MAX_OPTION_DIGITS:
            if self.selections.get(message.sender_key) is None:
                return None
            return self._answer(message, OUTCOME_INVALID_OPTION, invalid_option_text(body))
        number = int(body)
        lookup = self.selections.resolve(message.sender_key, number)
        if lookup.status == ps.RESOLVED and lookup.option is not None:
            option = lookup.option
            logger.info("%s picked option %s (%s)", message.sender_key, number, option.title)
            text = option.response if option.response.strip() else selection_ack_text(option)
            return self._answer(message, OUTCOME_SELECTION, text)
        if lookup.status == ps.INVALID:
            logger.info("%s sent %s but only %s options were offered", message.sender_key, number, lookup.offered)
            return self._answer(message, OUTCOME_INVALID_OPTION, invalid_option_text(number))
        # No live selection: the digits are ordinary text for command matching.
        return None

    def _run_command(self, message: InboundMessage, command: Command) -> DispatchResult:
        if not command.is_interactive:
            return self._answer(message, OUTCOME_TEXT, command.response, command.id)

        try:
            prompt = resolve_list(command, self.provider)
        except Exception as exc:
            logger.error("Building list for command #%s failed: %s", command.id, exc)
            record_error("list_resolver", type(exc).__name__)
            return self._answer(message, OUTCOME_ERROR, LIST_ERROR_TEXT, command.id)

        if prompt.selection is None:
            logger.warning("List command #%s has no options configured", command.id)
            return self._answer(message, OUTCOME_LIST_EMPTY, prompt.text, command.id)

        # Register before sending so a fast numeric reply always finds the entry.
        self.selections.register(message.sender_key, prompt.selection)
        return self._answer(message, OUTCOME_LIST, prompt.text, command.id)

    def _dispatch(self, message: InboundMessage) -> DispatchResult:
        body = str(message.body or "").strip()
        if not body:
            return DispatchResult(handled=False, outcome=OUTCOME_EMPTY)

        if NUMERIC_REPLY.match(body):
            result = self._try_selection(message, body)
            if result is not None:
                return result

        command, strategy = self.index.match(body)
        if command is None:
            return DispatchResult(handled=False, outcome=OUTCOME_NO_MATCH)

        log_with_context(
            logger,
            logging.INFO,
            f"Command '{command.command}' matched",
            command_id=command.id,
            strategy=strategy,
            response_type=command.response_type,
        )
        return self._run_command(message, command)

    def dispatch(self, message: InboundMessage) -> DispatchResult:
        start = time.perf_counter()
        try:
            result = self._dispatch(message)
        except Exception as exc:
            logger.exception("Dispatch failed for message from %s", message.sender_key)
            record_error("dispatcher", type(exc).__name__)
            result = self._answer(message, OUTCOME_ERROR, GENERIC_ERROR_TEXT)
        record_dispatch(result.outcome, (time.perf_counter() - start) * 1000)
        return result
