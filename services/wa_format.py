import re
from typing import Iterable, List, Optional

WHATSAPP_TEXT_LIMIT = 4096


def wa_bold(text: object) -> str:
    value = "" if text is None else str(text).strip()
    return f"*{value}*" if value else ""


def wa_list(items: Iterable[object]) -> str:
    lines: List[str] = []
    for item in items:
        text = str(item or "").strip()
        if text:
            lines.append(f"• {text}")
    return "\n".join(lines)


def wa_card(title: object, lines: Optional[Iterable[object]] = None, footer: Optional[object] = None) -> str:
    out: List[str] = [wa_bold(title)]
    for line in lines or []:
        value = str(line or "").rstrip()
        if value:
            out.append(value)
    footer_text = str(footer or "").strip()
    if footer_text:
        out.append("")
        out.append(footer_text)
    return "\n".join(out).strip()


def split_message(text: str, limit: int = WHATSAPP_TEXT_LIMIT) -> List[str]:
    """Split a long body into chunks under ``limit``, preferring line then word breaks."""
    body = str(text or "")
    if len(body) <= limit:
        return [body]

    chunks: List[str] = []
    remaining = body
    while len(remaining) > limit:
        window = remaining[:limit]
        cut = window.rfind("\n")
        if cut <= 0:
            match = None
            for match in re.finditer(r"\s", window):
                pass
            cut = match.start() if match and match.start() > 0 else limit
        chunks.append(remaining[:cut].rstrip())
        remaining = remaining[cut:].lstrip("\n ")
    if remaining:
        chunks.append(remaining)
    return chunks
