from dataclasses import dataclass
from typing import List, Optional

from services.command_index import LookupProvider
from services.models import Command, ListItem
from services.pending_selection import PendingSelection, SelectionOption
from services.wa_format import wa_bold

REPLY_INSTRUCTION = "📝 Responde con el número de la opción que deseas seleccionar."
NO_SECTIONS_NOTICE = "⚠️ Este comando está configurado como lista pero no tiene opciones definidas."
NO_ITEMS_NOTICE = "⚠️ Este comando está configurado como lista pero no tiene elementos definidos."


@dataclass
class ListPrompt:
    text: str
    selection: Optional[PendingSelection] = None

    @property
    def empty(self) -> bool:
        return self.selection is None


def intro_text(command: Command) -> str:
    return str(command.intro_text or command.response or "").strip()


def _with_notice(intro: str, notice: str) -> str:
    return f"{intro}\n\n{notice}" if intro else notice


def resolve_list(command: Command, provider: LookupProvider) -> ListPrompt:
    """Number every item of a list command and render the reply prompt.

    Numbering starts at 1 and runs across sections without resetting. Commands
    with no sections or no items get an explanatory reply instead of a menu.
    """
    intro = intro_text(command)
    sections = provider.load_sections(int(command.id)) if command.id is not None else []
    if not sections:
        return ListPrompt(text=_with_notice(intro, NO_SECTIONS_NOTICE))

    lines: List[str] = [intro, ""] if intro else []
    options: List[SelectionOption] = []
    shown_sections = 0

    for section in sections:
        items: List[ListItem] = provider.load_items(int(section.id)) if section.id is not None else []
        if not items:
            continue
        shown_sections += 1
        lines.append(wa_bold(section.title) or wa_bold(f"Sección {shown_sections}"))
        for index, item in enumerate(items):
            number = len(options) + 1
            title = str(item.title or "").strip() or f"Opción {number}"
            description = str(item.description or "").strip()
            lines.append(f"{number}. {title}: {description}" if description else f"{number}. {title}")
            options.append(
                SelectionOption(
                    number=number,
                    title=title,
                    description=description,
                    section_id=section.id,
                    item_id=str(item.row_id or "").strip() or f"item_{section.id}_{index}",
                    response=str(item.response or ""),
                )
            )
        lines.append("")

    if not options:
        return ListPrompt(text=_with_notice(intro, NO_ITEMS_NOTICE))

    lines.append(REPLY_INSTRUCTION)
    return ListPrompt(
        text="\n".join(lines).strip(),
        selection=PendingSelection(command_id=command.id, options=options),
    )
