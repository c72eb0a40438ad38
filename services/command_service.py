"""Validated CRUD over the custom command table.

Admin surfaces hand payloads in either camelCase or snake_case; everything is
folded into one canonical shape by ``normalize_payload`` before it reaches the
store. Every operation returns a result dict and never raises for bad input.
"""
import logging
from typing import Any, Dict, List, Optional

from services.command_store import CommandStore, CommandStoreError, DuplicateCommandError
from services.metrics import record_error
from services.models import (
    INTERACTIVE_TYPES,
    RESPONSE_TEXT,
    RESPONSE_TYPES,
    Command,
    ListItem,
    ListSection,
    normalize_command,
)

logger = logging.getLogger(__name__)

_FIELD_ALIASES: Dict[str, str] = {
    "usePrefix": "use_prefix",
    "responseType": "response_type",
    "introText": "intro_text",
    "createdBy": "created_by",
    "rowId": "row_id",
}


def _canonical_keys(payload: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in (payload or {}).items():
        canonical = _FIELD_ALIASES.get(key, key)
        # snake_case wins when both spellings are present.
        if canonical in out and key != canonical:
            continue
        out[canonical] = value
    return out


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _build_item(raw: Dict[str, Any]) -> ListItem:
    data = _canonical_keys(raw)
    return ListItem(
        title=str(data.get("title") or "").strip(),
        description=str(data.get("description") or "").strip(),
        response=str(data.get("response") or ""),
        row_id=str(data.get("row_id") or data.get("id") or "").strip(),
    )


def _build_sections(data: Dict[str, Any]) -> Optional[List[ListSection]]:
    if data.get("sections") is not None:
        sections = []
        for raw in data.get("sections") or []:
            raw_items = raw.get("items") or raw.get("rows") or []
            sections.append(
                ListSection(
                    title=str(raw.get("title") or "").strip(),
                    items=[_build_item(item) for item in raw_items],
                )
            )
        return sections
    if data.get("items") is not None:
        # A flat item list becomes one section named after the command title.
        items = [_build_item(item) for item in data.get("items") or []]
        return [ListSection(title=str(data.get("title") or "").strip(), items=items)] if items else []
    return None


def normalize_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Fold camelCase/snake_case aliases into one canonical payload."""
    data = _canonical_keys(payload)
    out: Dict[str, Any] = {}
    for key in ("command", "response", "title", "intro_text", "created_by"):
        if key in data and data[key] is not None:
            out[key] = str(data[key])
    if "use_prefix" in data and data["use_prefix"] is not None:
        out["use_prefix"] = _as_bool(data["use_prefix"])
    if data.get("response_type"):
        out["response_type"] = str(data["response_type"]).strip().lower()
    sections = _build_sections(data)
    if sections is not None:
        out["sections"] = sections
    return out


def _ok(data: Any, message: str) -> Dict[str, Any]:
    return {"success": True, "data": data, "message": message}


def _fail(error: str, data: Any = None) -> Dict[str, Any]:
    return {"success": False, "data": data, "error": error}


class CommandService:
    def __init__(self, store: CommandStore):
        self.store = store

    def list_commands(self, response_type: Optional[str] = None, *, limit: Optional[int] = None, offset: int = 0) -> Dict[str, Any]:
        if response_type and response_type not in RESPONSE_TYPES:
            return _fail(f"Tipo de respuesta no válido: {response_type}", data=[])
        try:
            commands = self.store.list_commands(response_type=response_type, limit=limit, offset=offset)
        except Exception as exc:
            logger.error("Listing commands failed: %s", exc)
            record_error("command_service", type(exc).__name__)
            return _fail("Error al obtener comandos", data=[])
        return _ok(commands, "Comandos obtenidos correctamente")

    def get_command(self, command_id: int) -> Dict[str, Any]:
        try:
            command = self.store.get(command_id)
        except Exception as exc:
            logger.error("Loading command #%s failed: %s", command_id, exc)
            record_error("command_service", type(exc).__name__)
            return _fail("Error al obtener comando")
        if command is None:
            return _fail("Comando no encontrado")
        return _ok(command, "Comando obtenido correctamente")

    def create_command(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = normalize_payload(payload)
        if not data.get("command", "").strip() or not data.get("response", "").strip():
            return _fail("Comando y respuesta son obligatorios")

        use_prefix = data.get("use_prefix", True)
        response_type = data.get("response_type", RESPONSE_TEXT)
        if response_type not in RESPONSE_TYPES:
            return _fail(f"Tipo de respuesta no válido: {response_type}")
        interactive = response_type in INTERACTIVE_TYPES
        if interactive and not data.get("title", "").strip():
            return _fail("El título es obligatorio para comandos de tipo lista")

        normalized = normalize_command(data["command"], use_prefix, self.store.prefix)
        try:
            if self.store.command_exists(normalized):
                return _fail("El comando ya existe")
            created = self.store.create(
                Command(
                    command=normalized,
                    response=data["response"],
                    use_prefix=use_prefix,
                    response_type=response_type,
                    title=data.get("title") if interactive else None,
                    intro_text=data.get("intro_text") if interactive else None,
                    created_by=data.get("created_by") or "admin",
                    sections=(data.get("sections") or []) if interactive else [],
                )
            )
        except DuplicateCommandError:
            return _fail("El comando ya existe")
        except CommandStoreError as exc:
            return _fail(str(exc))
        except Exception as exc:
            logger.error("Creating command '%s' failed: %s", normalized, exc)
            record_error("command_service", type(exc).__name__)
            return _fail("Error al añadir comando")
        return _ok(created, "Comando añadido correctamente")

    def update_command(self, command_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = normalize_payload(payload)
        try:
            existing = self.store.get(command_id)
            if existing is None:
                return _fail("Comando no encontrado")

            response_type = data.get("response_type", existing.response_type)
            if response_type not in RESPONSE_TYPES:
                return _fail(f"Tipo de respuesta no válido: {response_type}")

            fields: Dict[str, Any] = {}
            for key in ("command", "response", "use_prefix", "response_type"):
                if key in data:
                    fields[key] = data[key]
            sections = data.get("sections")
            if response_type in INTERACTIVE_TYPES:
                for key in ("title", "intro_text"):
                    if key in data:
                        fields[key] = data[key]
            elif existing.response_type in INTERACTIVE_TYPES:
                # Turning a list into plain text drops its options.
                fields["title"] = None
                fields["intro_text"] = None
                sections = []
            else:
                sections = None

            if "command" in fields or "use_prefix" in fields:
                normalized = normalize_command(
                    fields.get("command", existing.command),
                    fields.get("use_prefix", existing.use_prefix),
                    self.store.prefix,
                )
                if self.store.command_exists(normalized, exclude_id=command_id):
                    return _fail("El comando ya existe")

            updated = self.store.update(command_id, fields, sections=sections)
        except DuplicateCommandError:
            return _fail("El comando ya existe")
        except CommandStoreError as exc:
            return _fail(str(exc))
        except Exception as exc:
            logger.error("Updating command #%s failed: %s", command_id, exc)
            record_error("command_service", type(exc).__name__)
            return _fail("Error al actualizar comando")
        if updated is None:
            return _fail("Comando no encontrado")
        return _ok(updated, "Comando actualizado correctamente")

    def delete_command(self, command_id: int) -> Dict[str, Any]:
        try:
            if self.store.get(command_id) is None:
                return _fail("Comando no encontrado")
            deleted = self.store.delete(command_id)
        except Exception as exc:
            logger.error("Deleting command #%s failed: %s", command_id, exc)
            record_error("command_service", type(exc).__name__)
            return _fail("Error al eliminar comando")
        if not deleted:
            return _fail("Error al eliminar comando")
        return _ok(None, "Comando eliminado correctamente")

    def delete_list_commands(self, command_ids: Optional[List[int]] = None) -> Dict[str, Any]:
        try:
            count = self.store.delete_list_commands(command_ids)
        except Exception as exc:
            logger.error("Bulk list delete failed: %s", exc)
            record_error("command_service", type(exc).__name__)
            return _fail("Error al eliminar listas", data={"deleted": 0})
        return _ok({"deleted": count}, f"{count} comandos de lista eliminados")
