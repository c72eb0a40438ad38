import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from services.models import (
    DEFAULT_PREFIX,
    RESPONSE_TYPES,
    Command,
    INTERACTIVE_TYPES,
    ListItem,
    ListSection,
    normalize_command,
)
from wa_bot.db.connect import get_conn

logger = logging.getLogger(__name__)

COMMAND_COLUMNS = (
    "id, command, response, use_prefix, response_type, title, intro_text, "
    "created_by, created_at, updated_at"
)
UPDATABLE_FIELDS = ("command", "response", "use_prefix", "response_type", "title", "intro_text")


class CommandStoreError(Exception):
    pass


class DuplicateCommandError(CommandStoreError):
    pass


def _row_to_command(row: sqlite3.Row) -> Command:
    return Command(
        id=int(row["id"]),
        command=str(row["command"] or ""),
        response=str(row["response"] or ""),
        use_prefix=bool(row["use_prefix"]),
        response_type=str(row["response_type"] or "text"),
        title=row["title"],
        intro_text=row["intro_text"],
        created_by=str(row["created_by"] or "admin"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_section(row: sqlite3.Row) -> ListSection:
    return ListSection(
        id=int(row["id"]),
        command_id=int(row["command_id"]),
        title=str(row["title"] or ""),
        position=int(row["position"] or 0),
    )


def _row_to_item(row: sqlite3.Row) -> ListItem:
    return ListItem(
        id=int(row["id"]),
        section_id=int(row["section_id"]),
        row_id=str(row["row_id"] or ""),
        title=str(row["title"] or ""),
        description=str(row["description"] or ""),
        response=str(row["response"] or ""),
    )


class CommandStore:
    """SQLite-backed custom command table; also serves as the dispatcher's lookup provider."""

    def __init__(
        self,
        db_path: Optional[Path] = None,
        *,
        prefix: str = DEFAULT_PREFIX,
        timeout: Optional[float] = None,
    ):
        self.db_path = Path(db_path) if db_path else None
        self.prefix = prefix or DEFAULT_PREFIX
        self.timeout = timeout

    def _conn(self) -> sqlite3.Connection:
        return get_conn(self.db_path, timeout=self.timeout)

    def init_db(self) -> None:
        con = self._conn()
        try:
            cur = con.cursor()
            cur.execute("""
            CREATE TABLE IF NOT EXISTS custom_commands (
                id INTEGER PRIMARY KEY,
                command TEXT NOT NULL UNIQUE,
                response TEXT NOT NULL DEFAULT '',
                use_prefix INTEGER NOT NULL DEFAULT 1,
                response_type TEXT NOT NULL DEFAULT 'text'
                    CHECK(response_type IN ('text','list','buttons')),
                title TEXT,
                intro_text TEXT,
                created_by TEXT DEFAULT 'admin',
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            );
            """)

            cur.execute("""
            CREATE TABLE IF NOT EXISTS list_sections (
                id INTEGER PRIMARY KEY,
                command_id INTEGER NOT NULL,
                title TEXT,
                position INTEGER DEFAULT 0,
                FOREIGN KEY(command_id) REFERENCES custom_commands(id) ON DELETE CASCADE
            );
            """)

            cur.execute("""
            CREATE TABLE IF NOT EXISTS list_items (
                id INTEGER PRIMARY KEY,
                section_id INTEGER NOT NULL,
                row_id TEXT NOT NULL,
                title TEXT,
                description TEXT,
                response TEXT,
                UNIQUE(section_id, row_id),
                FOREIGN KEY(section_id) REFERENCES list_sections(id) ON DELETE CASCADE
            );
            """)

            cur.execute("CREATE INDEX IF NOT EXISTS idx_list_sections_command ON list_sections(command_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_list_items_section ON list_items(section_id)")
            con.commit()
        finally:
            con.close()

    # Lookup provider

    def find_prefixed(self, text: str) -> Optional[Command]:
        return self._find_one(
            f"SELECT {COMMAND_COLUMNS} FROM custom_commands WHERE command = ? AND use_prefix = 1 LIMIT 1",
            (text,),
        )

    def find_unprefixed_exact(self, text: str) -> Optional[Command]:
        return self._find_one(
            f"SELECT {COMMAND_COLUMNS} FROM custom_commands WHERE command = ? AND use_prefix = 0 LIMIT 1",
            (text,),
        )

    def find_unprefixed_substring(self, text: str) -> Optional[Command]:
        # Longest trigger wins; equal lengths fall back to the first registered.
        return self._find_one(
            f"""
            SELECT {COMMAND_COLUMNS}
            FROM custom_commands
            WHERE use_prefix = 0 AND command != '' AND instr(?, command) > 0
            ORDER BY length(command) DESC, id ASC
            LIMIT 1
            """,
            (text,),
        )

    def load_sections(self, command_id: int) -> List[ListSection]:
        con = self._conn()
        try:
            rows = con.execute(
                "SELECT id, command_id, title, position FROM list_sections WHERE command_id = ? ORDER BY position ASC, id ASC",
                (int(command_id),),
            ).fetchall()
            return [_row_to_section(row) for row in rows]
        finally:
            con.close()

    def load_items(self, section_id: int) -> List[ListItem]:
        con = self._conn()
        try:
            rows = con.execute(
                "SELECT id, section_id, row_id, title, description, response FROM list_items WHERE section_id = ? ORDER BY id ASC",
                (int(section_id),),
            ).fetchall()
            return [_row_to_item(row) for row in rows]
        finally:
            con.close()

    # Reads

    def _find_one(self, query: str, params: Iterable[Any]) -> Optional[Command]:
        con = self._conn()
        try:
            row = con.execute(query, tuple(params)).fetchone()
            return _row_to_command(row) if row else None
        finally:
            con.close()

    def _attach_sections(self, command: Command) -> Command:
        if command.id is None or command.response_type not in INTERACTIVE_TYPES:
            return command
        sections = self.load_sections(command.id)
        for section in sections:
            section.items = self.load_items(int(section.id))
        command.sections = sections
        return command

    def get(self, command_id: int) -> Optional[Command]:
        command = self._find_one(
            f"SELECT {COMMAND_COLUMNS} FROM custom_commands WHERE id = ?",
            (int(command_id),),
        )
        return self._attach_sections(command) if command else None

    def find_by_command(self, command: str) -> Optional[Command]:
        found = self._find_one(
            f"SELECT {COMMAND_COLUMNS} FROM custom_commands WHERE command = ?",
            (str(command or "").strip().lower(),),
        )
        return self._attach_sections(found) if found else None

    def list_commands(
        self,
        *,
        response_type: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Command]:
        query = f"SELECT {COMMAND_COLUMNS} FROM custom_commands"
        params: List[Any] = []
        if response_type:
            query += " WHERE response_type = ?"
            params.append(response_type)
        query += " ORDER BY command ASC"
        if limit:
            query += " LIMIT ? OFFSET ?"
            params.extend([int(limit), max(0, int(offset or 0))])

        con = self._conn()
        try:
            rows = con.execute(query, params).fetchall()
        finally:
            con.close()
        return [self._attach_sections(_row_to_command(row)) for row in rows]

    def command_exists(self, command: str, exclude_id: Optional[int] = None) -> bool:
        con = self._conn()
        try:
            return self._exists(con, command, exclude_id)
        finally:
            con.close()

    @staticmethod
    def _exists(con: sqlite3.Connection, command: str, exclude_id: Optional[int]) -> bool:
        query = "SELECT COUNT(*) FROM custom_commands WHERE command = ?"
        params: List[Any] = [command]
        if exclude_id is not None:
            query += " AND id != ?"
            params.append(int(exclude_id))
        return int(con.execute(query, params).fetchone()[0]) > 0

    # Writes

    def _insert_sections(self, con: sqlite3.Connection, command_id: int, sections: List[ListSection]) -> None:
        for position, section in enumerate(sections):
            cur = con.execute(
                "INSERT INTO list_sections (command_id, title, position) VALUES (?, ?, ?)",
                (int(command_id), section.title or None, position),
            )
            section.id = int(cur.lastrowid)
            section.command_id = int(command_id)
            section.position = position
            for index, item in enumerate(section.items):
                item.row_id = str(item.row_id or "").strip() or f"item_{section.id}_{index}"
                try:
                    item_cur = con.execute(
                        "INSERT INTO list_items (section_id, row_id, title, description, response) VALUES (?, ?, ?, ?, ?)",
                        (section.id, item.row_id, item.title or None, item.description or None, item.response or None),
                    )
                except sqlite3.IntegrityError as exc:
                    raise CommandStoreError(
                        f"Duplicate row id '{item.row_id}' in section '{section.title}'"
                    ) from exc
                item.id = int(item_cur.lastrowid)
                item.section_id = section.id

    def create(self, command: Command) -> Command:
        normalized = normalize_command(command.command, command.use_prefix, self.prefix)
        if not normalized or normalized == self.prefix:
            raise CommandStoreError("Command text is empty.")
        if command.response_type not in RESPONSE_TYPES:
            raise CommandStoreError(f"Unknown response type '{command.response_type}'.")

        con = self._conn()
        try:
            if self._exists(con, normalized, None):
                raise DuplicateCommandError(f"Command '{normalized}' already exists.")
            cur = con.execute(
                """
                INSERT INTO custom_commands
                    (command, response, use_prefix, response_type, title, intro_text, created_by)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    normalized,
                    command.response or "",
                    1 if command.use_prefix else 0,
                    command.response_type,
                    command.title,
                    command.intro_text,
                    command.created_by or "admin",
                ),
            )
            command_id = int(cur.lastrowid)
            if command.sections:
                self._insert_sections(con, command_id, command.sections)
            con.commit()
        except sqlite3.IntegrityError as exc:
            con.rollback()
            raise DuplicateCommandError(f"Command '{normalized}' already exists.") from exc
        except Exception:
            con.rollback()
            raise
        finally:
            con.close()

        logger.info("Created command #%s '%s' (%s)", command_id, normalized, command.response_type)
        created = self.get(command_id)
        if created is None:
            raise CommandStoreError(f"Command #{command_id} vanished after insert.")
        return created

    def update(
        self,
        command_id: int,
        fields: Dict[str, Any],
        sections: Optional[List[ListSection]] = None,
    ) -> Optional[Command]:
        existing = self.get(command_id)
        if existing is None:
            return None

        updates: Dict[str, Any] = {k: v for k, v in fields.items() if k in UPDATABLE_FIELDS}
        if "response_type" in updates and updates["response_type"] not in RESPONSE_TYPES:
            raise CommandStoreError(f"Unknown response type '{updates['response_type']}'.")

        # Prefix state must be re-applied whenever either the text or the flag changes.
        if "command" in updates or "use_prefix" in updates:
            use_prefix = bool(updates.get("use_prefix", existing.use_prefix))
            updates["command"] = normalize_command(
                updates.get("command", existing.command), use_prefix, self.prefix
            )
            updates["use_prefix"] = 1 if use_prefix else 0

        con = self._conn()
        try:
            if "command" in updates and self._exists(con, updates["command"], command_id):
                raise DuplicateCommandError(f"Command '{updates['command']}' already exists.")
            assignments = [f"{name} = ?" for name in updates]
            assignments.append("updated_at = CURRENT_TIMESTAMP")
            con.execute(
                f"UPDATE custom_commands SET {', '.join(assignments)} WHERE id = ?",
                [*updates.values(), int(command_id)],
            )
            if sections is not None:
                con.execute("DELETE FROM list_sections WHERE command_id = ?", (int(command_id),))
                self._insert_sections(con, int(command_id), sections)
            con.commit()
        except sqlite3.IntegrityError as exc:
            con.rollback()
            raise DuplicateCommandError(str(exc)) from exc
        except Exception:
            con.rollback()
            raise
        finally:
            con.close()

        logger.info("Updated command #%s (%s)", command_id, ", ".join(sorted(updates)) or "sections")
        return self.get(command_id)

    def delete(self, command_id: int) -> bool:
        con = self._conn()
        try:
            # Explicit child deletes keep the cascade intact even if foreign keys are off.
            con.execute(
                "DELETE FROM list_items WHERE section_id IN (SELECT id FROM list_sections WHERE command_id = ?)",
                (int(command_id),),
            )
            con.execute("DELETE FROM list_sections WHERE command_id = ?", (int(command_id),))
            deleted = con.execute("DELETE FROM custom_commands WHERE id = ?", (int(command_id),)).rowcount
            con.commit()
        except Exception:
            con.rollback()
            raise
        finally:
            con.close()
        if deleted:
            logger.info("Deleted command #%s", command_id)
        return bool(deleted)

    def delete_list_commands(self, command_ids: Optional[Iterable[int]] = None) -> int:
        """Delete every list/buttons command, or only the given ids among them."""
        query = "SELECT id FROM custom_commands WHERE response_type IN ('list','buttons')"
        params: List[Any] = []
        ids = [int(cid) for cid in command_ids] if command_ids is not None else None
        if ids is not None:
            if not ids:
                return 0
            query += f" AND id IN ({', '.join('?' for _ in ids)})"
            params.extend(ids)

        con = self._conn()
        try:
            targets = [int(row[0]) for row in con.execute(query, params).fetchall()]
        finally:
            con.close()
        return sum(1 for cid in targets if self.delete(cid))
