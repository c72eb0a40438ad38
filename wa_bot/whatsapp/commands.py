from __future__ import annotations

from typing import Any, Dict, List, Optional


def grouped_command_lines(registry: Any) -> Dict[str, List[str]]:
    prefix = registry.prefix
    grouped: Dict[str, List[str]] = {}
    for category, specs in registry.grouped().items():
        lines = []
        for spec in specs:
            line = f"*{prefix}{spec.name}*: {spec.description}"
            if spec.aliases:
                line += " (alias: " + ", ".join(f"{prefix}{a}" for a in spec.aliases) + ")"
            lines.append(line)
        grouped[category] = lines
    return grouped


def render_help(registry: Any, category: Optional[str] = None) -> str:
    grouped = grouped_command_lines(registry)
    prefix = registry.prefix

    if category:
        lines = grouped.get(category.lower())
        if not lines:
            available = ", ".join(grouped) or "-"
            return (
                f"No se encontraron comandos para la categoría '{category}'.\n"
                f"Categorías disponibles: {available}"
            )
        return "\n".join([f"*Comandos de {category.lower()}:*", ""] + lines)

    out = ["*Comandos disponibles:*"]
    for name, lines in grouped.items():
        out.append("")
        out.append(f"*==== {name} ====*")
        out.extend(lines)
    out.append("")
    out.append(f"Puedes usar *{prefix}help [categoría]* para ver comandos específicos.")
    return "\n".join(out)
