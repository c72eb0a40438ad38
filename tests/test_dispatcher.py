import pytest

from services import dispatcher as dp
from services.command_index import CommandIndex
from services.command_store import CommandStore
from services.dispatcher import MessageDispatcher
from services.metrics import metrics
from services.models import Command, InboundMessage, ListItem, ListSection
from services.pending_selection import PendingSelectionStore
from services.senders import SendResult


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class RecordingReply:
    def __init__(self, ok=True, raises=False):
        self.ok = ok
        self.raises = raises
        self.sent = []

    def __call__(self, sender_key, text):
        self.sent.append((sender_key, text))
        if self.raises:
            raise ConnectionError("socket closed")
        return SendResult(ok=self.ok, error=None if self.ok else "rejected")

    @property
    def texts(self):
        return [text for _, text in self.sent]


@pytest.fixture
def store(tmp_path):
    s = CommandStore(tmp_path / "commands.db", timeout=1)
    s.init_db()
    s.create(Command(command="!hola", response="Hi"))
    s.create(Command(command="gracias", response="De nada", use_prefix=False))
    s.create(
        Command(
            command="menu",
            response="Menu",
            response_type="list",
            title="Menu",
            intro_text="Choose:",
            sections=[
                ListSection(
                    title="Drinks",
                    items=[ListItem(title="Coffee", response="☕"), ListItem(title="Tea", response="🍵")],
                )
            ],
        )
    )
    return s


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def reply():
    return RecordingReply()


@pytest.fixture
def dispatcher(store, clock, reply):
    selections = PendingSelectionStore(600, clock=clock)
    return MessageDispatcher(CommandIndex(store), store, selections, reply)


def _msg(body, sender="34600111222@c.us"):
    return InboundMessage(sender_key=sender, body=body)


def test_prefixed_text_command(dispatcher, reply):
    result = dispatcher.dispatch(_msg("!hola"))
    assert result.handled
    assert result.outcome == dp.OUTCOME_TEXT
    assert result.delivered
    assert reply.texts == ["Hi"]


def test_list_then_numeric_reply(dispatcher, reply):
    result = dispatcher.dispatch(_msg("!menu"))
    assert result.outcome == dp.OUTCOME_LIST
    assert "1. Coffee" in reply.texts[0]
    assert "2. Tea" in reply.texts[0]

    result = dispatcher.dispatch(_msg("2"))
    assert result.outcome == dp.OUTCOME_SELECTION
    assert reply.texts[-1] == "🍵"


def test_invalid_number_keeps_selection(dispatcher, reply):
    dispatcher.dispatch(_msg("!menu"))

    result = dispatcher.dispatch(_msg("5"))
    assert result.outcome == dp.OUTCOME_INVALID_OPTION
    assert reply.texts[-1] == "⚠️ El número 5 no es una opción válida."

    dispatcher.dispatch(_msg("2"))
    assert reply.texts[-1] == "🍵"


def test_selection_is_consumed_once(dispatcher, reply):
    dispatcher.dispatch(_msg("!menu"))
    dispatcher.dispatch(_msg("1"))
    assert reply.texts[-1] == "☕"

    result = dispatcher.dispatch(_msg("1"))
    assert not result.handled
    assert result.outcome == dp.OUTCOME_NO_MATCH
    assert len(reply.sent) == 2


def test_expired_selection_falls_through(dispatcher, reply, clock):
    dispatcher.dispatch(_msg("!menu"))
    clock.now += 601
    result = dispatcher.dispatch(_msg("2"))
    assert result.outcome == dp.OUTCOME_NO_MATCH
    assert len(reply.sent) == 1


def test_selection_is_per_sender(dispatcher, reply):
    dispatcher.dispatch(_msg("!menu", sender="alice"))
    result = dispatcher.dispatch(_msg("2", sender="bob"))
    assert not result.handled
    assert dispatcher.dispatch(_msg("2", sender="alice")).outcome == dp.OUTCOME_SELECTION


def test_unprefixed_substring(dispatcher, reply):
    result = dispatcher.dispatch(_msg("muchas gracias amigo"))
    assert result.outcome == dp.OUTCOME_TEXT
    assert reply.texts == ["De nada"]


def test_prefixed_command_needs_prefix(dispatcher, reply):
    result = dispatcher.dispatch(_msg("hola"))
    assert not result.handled
    assert reply.sent == []


def test_empty_body_is_ignored(dispatcher, reply):
    result = dispatcher.dispatch(_msg("   "))
    assert result.outcome == dp.OUTCOME_EMPTY
    assert reply.sent == []


def test_newer_list_overwrites_pending(store, dispatcher, reply):
    store.create(
        Command(
            command="colores",
            response="Colores",
            response_type="list",
            title="Colores",
            sections=[ListSection(title="", items=[ListItem(title="Rojo"), ListItem(title="Verde"), ListItem(title="Azul")])],
        )
    )
    dispatcher.dispatch(_msg("!menu"))
    dispatcher.dispatch(_msg("!colores"))

    dispatcher.dispatch(_msg("3"))
    assert reply.texts[-1] == "Has seleccionado: *Azul*"


def test_option_without_response_acknowledges(store, dispatcher, reply):
    store.create(
        Command(
            command="sabores",
            response="Sabores",
            response_type="buttons",
            title="Sabores",
            sections=[ListSection(title="S", items=[ListItem(title="Fresa", description="dulce")])],
        )
    )
    dispatcher.dispatch(_msg("!sabores"))
    dispatcher.dispatch(_msg("1"))
    assert reply.texts[-1] == "Has seleccionado: *Fresa* - dulce"


def test_list_without_options_sends_notice(store, dispatcher, reply):
    store.create(Command(command="vacia", response="Nada", response_type="list", title="Vacía"))
    result = dispatcher.dispatch(_msg("!vacia"))
    assert result.outcome == dp.OUTCOME_LIST_EMPTY
    assert "no tiene opciones definidas" in reply.texts[-1]
    assert len(dispatcher.selections) == 0


def test_list_resolution_failure_sends_apology(store, dispatcher, reply, monkeypatch):
    def broken(command_id):
        raise RuntimeError("disk I/O error")

    monkeypatch.setattr(store, "load_sections", broken)
    result = dispatcher.dispatch(_msg("!menu"))
    assert result.outcome == dp.OUTCOME_ERROR
    assert reply.texts == [dp.LIST_ERROR_TEXT]


def test_lookup_failure_is_no_match(store, dispatcher, reply, monkeypatch):
    def broken(text):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(store, "find_prefixed", broken)
    result = dispatcher.dispatch(_msg("!hola"))
    assert result.outcome == dp.OUTCOME_NO_MATCH
    assert reply.sent == []


def test_send_failure_is_reported_not_raised(store, clock):
    failing = RecordingReply(raises=True)
    dispatcher = MessageDispatcher(CommandIndex(store), store, PendingSelectionStore(clock=clock), failing)
    result = dispatcher.dispatch(_msg("!hola"))
    assert result.handled
    assert result.delivered is False

    rejected = RecordingReply(ok=False)
    dispatcher = MessageDispatcher(CommandIndex(store), store, PendingSelectionStore(clock=clock), rejected)
    assert dispatcher.dispatch(_msg("!hola")).delivered is False


def test_selection_registered_even_if_send_fails(store, clock):
    failing = RecordingReply(ok=False)
    selections = PendingSelectionStore(clock=clock)
    dispatcher = MessageDispatcher(CommandIndex(store), store, selections, failing)
    dispatcher.dispatch(_msg("!menu"))
    assert selections.get("34600111222@c.us") is not None


def test_dispatch_records_outcome_metric(dispatcher):
    metrics.reset()
    dispatcher.dispatch(_msg("!hola"))
    assert metrics.get_counter("dispatches_total", labels={"outcome": dp.OUTCOME_TEXT}) == 1.0
    assert metrics.get_histogram_stats("dispatch_duration_ms")["count"] == 1


def test_long_digit_run_without_selection_matches_commands(store, dispatcher, reply):
    digits = "1" * 5000
    store.create(Command(command=digits, response="muchos unos", use_prefix=False))
    result = dispatcher.dispatch(_msg(digits))
    assert result.outcome == dp.OUTCOME_TEXT
    assert reply.texts == ["muchos unos"]


def test_long_digit_run_with_selection_is_invalid_option(dispatcher, reply):
    dispatcher.dispatch(_msg("!menu"))
    result = dispatcher.dispatch(_msg("2" * 5000))
    assert result.outcome == dp.OUTCOME_INVALID_OPTION
    assert reply.texts[-1].startswith("⚠️ El número 222")

    dispatcher.dispatch(_msg("2"))
    assert reply.texts[-1] == "🍵"
