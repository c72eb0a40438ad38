import pytest

from services.command_service import CommandService, normalize_payload
from services.command_store import CommandStore


@pytest.fixture
def service(tmp_path):
    store = CommandStore(tmp_path / "commands.db", timeout=1)
    store.init_db()
    return CommandService(store)


def test_normalize_payload_folds_camel_case():
    data = normalize_payload(
        {
            "command": "menu",
            "response": "Elige",
            "usePrefix": "false",
            "responseType": "LIST",
            "introText": "Elige una opción",
            "items": [{"title": "A", "rowId": "a1"}],
        }
    )
    assert data["use_prefix"] is False
    assert data["response_type"] == "list"
    assert data["intro_text"] == "Elige una opción"
    assert len(data["sections"]) == 1
    assert data["sections"][0].items[0].row_id == "a1"


def test_snake_case_wins_over_camel_case():
    data = normalize_payload({"command": "x", "use_prefix": True, "usePrefix": False})
    assert data["use_prefix"] is True


def test_create_requires_command_and_response(service):
    result = service.create_command({"command": "hola"})
    assert result["success"] is False
    assert result["error"] == "Comando y respuesta son obligatorios"


def test_create_list_requires_title(service):
    result = service.create_command({"command": "menu", "response": "x", "responseType": "list"})
    assert result["success"] is False
    assert result["error"] == "El título es obligatorio para comandos de tipo lista"


def test_create_and_duplicate(service):
    first = service.create_command({"command": "Hola", "response": "Hi"})
    assert first["success"] is True
    assert first["data"].command == "!hola"

    again = service.create_command({"command": "!hola", "response": "Otra vez"})
    assert again["success"] is False
    assert again["error"] == "El comando ya existe"


def test_create_list_with_sections(service):
    result = service.create_command(
        {
            "command": "menu",
            "response": "Choose:",
            "responseType": "list",
            "title": "Menu",
            "sections": [{"title": "Drinks", "items": [{"title": "Coffee"}, {"title": "Tea"}]}],
        }
    )
    assert result["success"] is True
    assert [i.title for i in result["data"].items] == ["Coffee", "Tea"]


def test_get_missing_command(service):
    result = service.get_command(42)
    assert result == {"success": False, "data": None, "error": "Comando no encontrado"}


def test_update_list_to_text_drops_options(service):
    created = service.create_command(
        {
            "command": "menu",
            "response": "Choose:",
            "response_type": "list",
            "title": "Menu",
            "items": [{"title": "Coffee"}],
        }
    )["data"]

    result = service.update_command(created.id, {"responseType": "text", "response": "Cerrado"})
    assert result["success"] is True
    assert result["data"].response_type == "text"
    assert result["data"].title is None
    assert service.store.load_sections(created.id) == []


def test_update_rejects_collision(service):
    service.create_command({"command": "hola", "response": "Hi"})
    other = service.create_command({"command": "adios", "response": "Bye"})["data"]

    result = service.update_command(other.id, {"command": "HOLA"})
    assert result["success"] is False
    assert result["error"] == "El comando ya existe"


def test_update_rejects_unknown_type(service):
    created = service.create_command({"command": "hola", "response": "Hi"})["data"]
    result = service.update_command(created.id, {"responseType": "carousel"})
    assert result["success"] is False


def test_delete_command(service):
    created = service.create_command({"command": "hola", "response": "Hi"})["data"]
    assert service.delete_command(created.id)["success"] is True
    assert service.delete_command(created.id)["error"] == "Comando no encontrado"


def test_list_commands_rejects_bad_type(service):
    result = service.list_commands("carousel")
    assert result["success"] is False
    assert result["data"] == []


def test_delete_list_commands_reports_count(service):
    service.create_command({"command": "hola", "response": "Hi"})
    service.create_command(
        {"command": "menu", "response": "x", "responseType": "buttons", "title": "M", "items": [{"title": "A"}]}
    )
    result = service.delete_list_commands()
    assert result["success"] is True
    assert result["data"] == {"deleted": 1}
