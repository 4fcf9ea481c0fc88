"""Plain text tables with ASCII borders, as printed by the command line tools."""

from __future__ import annotations

import itertools
import unicodedata
from typing import Any, Iterable, Sequence

MAX_CELL_WIDTH = 30


def _width(text: str) -> int:
    return sum(2 if unicodedata.east_asian_width(ch) in ("W", "F") else 1 for ch in text)


def _title(name: str) -> str:
    text = name.replace("_", " ").replace(".", " ").strip()
    if not text and name:
        text = " "
    return text.upper()


def _wrap(text: str) -> list[str]:
    lines: list[str] = []
    for line in text.split("\n"):
        if _width(line) <= MAX_CELL_WIDTH or " " not in line:
            lines.append(line)
            continue
        current = ""
        for word in line.split():
            candidate = f"{current} {word}" if current else word
            if current and _width(candidate) > MAX_CELL_WIDTH:
                lines.append(current)
                current = word
            else:
                current = candidate
        lines.append(current)
    return lines


def _center(text: str, width: int) -> str:
    gap = width - _width(text)
    if gap <= 0:
        return text
    left = gap // 2
    return " " * left + text + " " * (gap - left)


def _left(text: str, width: int) -> str:
    return text + " " * max(width - _width(text), 0)


def render_table(header: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    """Render a bordered table with a centred header and left-aligned cells."""
    titles = [_title(h) for h in header]
    cells = [[_wrap(str(c)) for c in row] for row in rows]
    columns = max([len(titles)] + [len(row) for row in cells])
    titles += [""] * (columns - len(titles))
    cells = [row + [[""]] * (columns - len(row)) for row in cells]

    widths = [
        max([_width(title)] + [_width(line) for row in cells for line in row[i]])
        for i, title in enumerate(titles)
    ]
    border = "+" + "+".join("-" * (w + 2) for w in widths) + "+"

    out = [border]
    if any(titles):
        out.append("| " + " | ".join(_center(t, w) for t, w in zip(titles, widths)) + " |")
        out.append(border)
    for row in cells:
        for line in itertools.zip_longest(*row, fillvalue=""):
            out.append("| " + " | ".join(_left(c, w) for c, w in zip(line, widths)) + " |")
    out.append(border)
    return "\n".join(out) + "\n"