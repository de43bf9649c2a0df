"""Saída no terminal: cores ANSI (sem dependências externas) e tabela com borda."""
from __future__ import annotations

import os
import sys
from typing import List, Sequence, Tuple

_COLOR_ENABLED: bool = True


def set_color_enabled(enabled: bool) -> None:
    global _COLOR_ENABLED
    _COLOR_ENABLED = bool(enabled)


def color_enabled() -> bool:
    # Respeita NO_COLOR (https://no-color.org/) e saídas não interativas.
    if os.environ.get("NO_COLOR") is not None:
        return False
    return _COLOR_ENABLED and sys.stdout.isatty() and os.environ.get("TERM", "") != "dumb"


class C:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    CYAN = "\033[36m"


def color(s: str, *codes: str) -> str:
    if not color_enabled() or not codes:
        return s
    return "".join(codes) + s + C.RESET


def err(msg: str) -> None:
    print(color("ERRO ", C.RED, C.BOLD) + msg, file=sys.stderr)


def ok(msg: str) -> None:
    print(color("OK ", C.GREEN, C.BOLD) + msg)


def render_table(rows: Sequence[Tuple[str, str]]) -> str:
    """
    Tabela de duas colunas (chave à esquerda, valor à direita) com borda
    arredondada.
    """
    if not rows:
        return ""
    left = max(len(k) for k, _ in rows)
    right = max(len(v) for _, v in rows)
    inner = left + 2 + right
    lines: List[str] = [color("╭" + "─" * (inner + 2) + "╮", C.BLUE)]
    bar = color("│", C.BLUE)
    for k, v in rows:
        lines.append(f"{bar} {color(k.ljust(left), C.BOLD)}  {color(v.rjust(right), C.DIM)} {bar}")
    lines.append(color("└" + "─" * (inner + 2) + "┘", C.BLUE))
    return "\n".join(lines)
