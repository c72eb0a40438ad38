from services.models import Command, ListItem, ListSection, normalize_command


def test_normalize_command_applies_prefix():
    assert normalize_command("Hola", True) == "!hola"
    assert normalize_command("  !HOLA ", True) == "!hola"


def test_normalize_command_strips_prefix_when_unprefixed():
    assert normalize_command("!Gracias", False) == "gracias"
    assert normalize_command("gracias", False) == "gracias"


def test_normalize_command_custom_prefix():
    assert normalize_command("/menu", True, prefix="/") == "/menu"
    assert normalize_command("menu", True, prefix="/") == "/menu"


def test_command_items_flatten_sections_in_order():
    command = Command(
        command="!menu",
        response_type="list",
        sections=[
            ListSection(title="Drinks", items=[ListItem(title="Coffee"), ListItem(title="Tea")]),
            ListSection(title="Food", items=[ListItem(title="Toast")]),
        ],
    )
    assert command.is_interactive
    assert [item.title for item in command.items] == ["Coffee", "Tea", "Toast"]


def test_buttons_are_interactive_text_is_not():
    assert Command(command="!x", response_type="buttons").is_interactive
    assert not Command(command="!x").is_interactive
