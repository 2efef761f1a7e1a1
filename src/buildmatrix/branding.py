from __future__ import annotations

import shutil
from typing import Literal

# --------------------------------------------------
# Layout constants
# --------------------------------------------------

RULE_WIDTH = 64
LOG_GUTTER_WIDTH = 10  # "[ INFO ]  " etc.

Width = int | Literal["auto"]


def _rule_width(width: Width) -> int:
    if width != "auto":
        return max(RULE_WIDTH, int(width))
    try:
        cols = shutil.get_terminal_size().columns
    except (OSError, ValueError):
        return RULE_WIDTH
    return max(RULE_WIDTH, cols - LOG_GUTTER_WIDTH)


# --------------------------------------------------
# Banner
# --------------------------------------------------

BUILDMATRIX_BANNER = """
 _           _ _     _                 _        _
| |__  _   _(_) | __| |_ __ ___   __ _| |_ _ __(_)_  __
| '_ \\| | | | | |/ _` | '_ ` _ \\ / _` | __| '__| \\ \\/ /
| |_) | |_| | | | (_| | | | | | | (_| | |_| |  | |>  <
|_.__/ \\__,_|_|_|\\__,_|_| |_| |_|\\__,_|\\__|_|  |_/_/\\_\\
"""


# --------------------------------------------------
# Rules
# --------------------------------------------------


def BUILDMATRIX_HEADER(title: str, *, width: Width = RULE_WIDTH, fill: str = "═") -> str:
    """One-line rule with the title set into it: ``══ Build: t1 ═════``."""
    label = f" {title.strip()} "
    w = max(_rule_width(width), len(label) + 4)
    return f"{fill * 2}{label}{fill * (w - len(label) - 2)}"


def BUILDMATRIX_SECTION_END(*, width: Width = RULE_WIDTH, fill: str = "─") -> str:
    return fill * _rule_width(width)


# --------------------------------------------------
# Symbols
# --------------------------------------------------


class SYMBOLS:
    OK = "✔"
    FAIL = "✖"
    RUNNING = "▶"
    SKIPPED = "⤼"
