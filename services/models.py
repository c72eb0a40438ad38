from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

RESPONSE_TEXT = "text"
RESPONSE_LIST = "list"
RESPONSE_BUTTONS = "buttons"
RESPONSE_TYPES = (RESPONSE_TEXT, RESPONSE_LIST, RESPONSE_BUTTONS)

# Both list and buttons commands are rendered as a numbered text menu.
INTERACTIVE_TYPES = frozenset({RESPONSE_LIST, RESPONSE_BUTTONS})

DEFAULT_PREFIX = "!"


@dataclass
class ListItem:
    title: str = ""
    response: str = ""
    description: str = ""
    row_id: str = ""
    id: Optional[int] = None
    section_id: Optional[int] = None


@dataclass
class ListSection:
    title: str = ""
    items: List[ListItem] = field(default_factory=list)
    id: Optional[int] = None
    command_id: Optional[int] = None
    position: int = 0


@dataclass
class Command:
    command: str
    response: str = ""
    use_prefix: bool = True
    response_type: str = RESPONSE_TEXT
    title: Optional[str] = None
    intro_text: Optional[str] = None
    created_by: str = "admin"
    id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    sections: List[ListSection] = field(default_factory=list)

    @property
    def is_interactive(self) -> bool:
        return self.response_type in INTERACTIVE_TYPES

    @property
    def items(self) -> List[ListItem]:
        """All items across sections, in display order."""
        return [item for section in self.sections for item in section.items]


@dataclass
class InboundMessage:
    sender_key: str
    body: str
    message_id: str = ""
    received_at: Optional[str] = None
    sender_name: str = ""


def normalize_command(command: str, use_prefix: bool, prefix: str = DEFAULT_PREFIX) -> str:
    """Lowercase, strip any existing prefix, then re-apply it when requested."""
    normalized = str(command or "").strip().lower()
    if prefix and normalized.startswith(prefix):
        normalized = normalized[len(prefix):].strip()
    if use_prefix:
        normalized = f"{prefix}{normalized}"
    return normalized
