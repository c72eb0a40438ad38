import pytest

from services.list_resolver import NO_ITEMS_NOTICE, NO_SECTIONS_NOTICE, REPLY_INSTRUCTION, resolve_list
from services.models import Command, ListItem, ListSection


class SectionProvider:
    def __init__(self, sections=None, items=None, fail=False):
        self.sections = sections or []
        self.items = items or {}
        self.fail = fail

    def load_sections(self, command_id):
        if self.fail:
            raise RuntimeError("boom")
        return list(self.sections)

    def load_items(self, section_id):
        return list(self.items.get(section_id, []))

    def find_prefixed(self, text):
        return None

    def find_unprefixed_exact(self, text):
        return None

    def find_unprefixed_substring(self, text):
        return None


def _menu_command():
    return Command(id=7, command="!menu", response="Menu", response_type="list", title="Menu", intro_text="Choose:")


def test_numbers_run_across_sections():
    provider = SectionProvider(
        sections=[ListSection(id=1, title="Drinks"), ListSection(id=2, title="Food")],
        items={
            1: [ListItem(title="Coffee", response="☕"), ListItem(title="Tea", response="🍵")],
            2: [ListItem(title="Toast", description="with butter", row_id="toast")],
        },
    )
    prompt = resolve_list(_menu_command(), provider)

    assert prompt.text.splitlines() == [
        "Choose:",
        "",
        "*Drinks*",
        "1. Coffee",
        "2. Tea",
        "",
        "*Food*",
        "3. Toast: with butter",
        "",
        REPLY_INSTRUCTION,
    ]
    assert not prompt.empty
    assert prompt.selection.command_id == 7
    assert prompt.selection.numbers == [1, 2, 3]
    assert prompt.selection.option(2).response == "🍵"
    assert prompt.selection.option(3).item_id == "toast"
    assert prompt.selection.option(1).item_id == "item_1_0"


def test_missing_titles_get_placeholders():
    provider = SectionProvider(
        sections=[ListSection(id=4, title=""), ListSection(id=5, title=None)],
        items={4: [ListItem(title="")], 5: [ListItem(title="B")]},
    )
    prompt = resolve_list(_menu_command(), provider)
    assert "*Sección 1*" in prompt.text
    assert "*Sección 2*" in prompt.text
    assert "1. Opción 1" in prompt.text
    assert prompt.selection.option(1).title == "Opción 1"


def test_sections_without_items_are_skipped():
    provider = SectionProvider(
        sections=[ListSection(id=1, title="Empty"), ListSection(id=2, title="Full")],
        items={2: [ListItem(title="Only")]},
    )
    prompt = resolve_list(_menu_command(), provider)
    assert "*Empty*" not in prompt.text
    assert "1. Only" in prompt.text


def test_intro_falls_back_to_response():
    command = Command(id=1, command="!menu", response="Elige:", response_type="list")
    provider = SectionProvider(sections=[ListSection(id=1, title="S")], items={1: [ListItem(title="A")]})
    assert resolve_list(command, provider).text.startswith("Elige:\n\n*S*")


def test_no_sections_notice():
    prompt = resolve_list(_menu_command(), SectionProvider())
    assert prompt.empty
    assert prompt.selection is None
    assert prompt.text == f"Choose:\n\n{NO_SECTIONS_NOTICE}"


def test_no_items_notice():
    provider = SectionProvider(sections=[ListSection(id=1, title="S")])
    prompt = resolve_list(_menu_command(), provider)
    assert prompt.empty
    assert prompt.text == f"Choose:\n\n{NO_ITEMS_NOTICE}"


def test_provider_errors_propagate_to_caller():
    with pytest.raises(RuntimeError):
        resolve_list(_menu_command(), SectionProvider(fail=True))
