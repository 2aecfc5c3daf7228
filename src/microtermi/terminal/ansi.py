"""ANSI escape handling for captured terminal output.

Two entry points:

* ``strip_ansi`` removes control sequences for plain-text contexts (headers,
  logs, the CLI mirror).
* ``parse_ansi_line`` splits a line into styled segments using the SGR
  (``ESC [ ... m``) sequences it carries.

Both scan code points, not encoded bytes, so multi-byte characters are never
split. Each call starts from a clean style; malformed or unterminated
sequences lose their header bytes instead of raising, and the text after
them stays visible.
"""

from __future__ import annotations

import html
from dataclasses import dataclass

ESC = "\x1b"
C1_CSI = "\x9b"
BEL = "\x07"

_STRIP_INTRODUCERS = {"[", "]", "?"}


@dataclass(frozen=True)
class AnsiColor:
    name: str
    rgb: tuple[int, int, int]

    @property
    def hex(self) -> str:
        return "#{:02x}{:02x}{:02x}".format(*self.rgb)


@dataclass(frozen=True)
class AnsiSegment:
    text: str
    color: AnsiColor | None = None
    bold: bool = False


STANDARD_COLORS: tuple[AnsiColor, ...] = (
    AnsiColor("black", (0, 0, 0)),
    AnsiColor("red", (205, 49, 49)),
    AnsiColor("green", (13, 188, 121)),
    AnsiColor("yellow", (229, 229, 16)),
    AnsiColor("blue", (36, 114, 200)),
    AnsiColor("magenta", (188, 63, 188)),
    AnsiColor("cyan", (17, 168, 205)),
    AnsiColor("white", (229, 229, 229)),
)

BRIGHT_COLORS: tuple[AnsiColor, ...] = (
    AnsiColor("bright_black", (102, 102, 102)),
    AnsiColor("bright_red", (241, 76, 76)),
    AnsiColor("bright_green", (35, 209, 139)),
    AnsiColor("bright_yellow", (245, 245, 67)),
    AnsiColor("bright_blue", (59, 142, 234)),
    AnsiColor("bright_magenta", (214, 112, 214)),
    AnsiColor("bright_cyan", (41, 184, 219)),
    AnsiColor("bright_white", (255, 255, 255)),
)

COLORS_BY_NAME = {color.name: color for color in STANDARD_COLORS + BRIGHT_COLORS}


def _is_param(char: str) -> bool:
    return "\x30" <= char <= "\x3f"


def _is_intermediate(char: str) -> bool:
    return "\x20" <= char <= "\x2f"


def _is_final(char: str) -> bool:
    return "\x40" <= char <= "\x7e"


def _scan_csi(text: str, start: int) -> tuple[int, str, str]:
    """Scan a CSI body starting at ``start``.

    Returns ``(next_index, params, final)``. ``final`` is empty when the body
    was cut short by end of input or by a byte outside the CSI ranges.
    """
    index = start
    params: list[str] = []
    while index < len(text):
        char = text[index]
        if _is_param(char):
            params.append(char)
            index += 1
        elif _is_intermediate(char):
            index += 1
        elif _is_final(char):
            return index + 1, "".join(params), char
        else:
            break
    return index, "".join(params), ""


def _skip_osc(text: str, start: int) -> int | None:
    """Return the index past the BEL or ST (ESC \\) closing an OSC string, or None."""
    index = start
    while index < len(text):
        char = text[index]
        if char == BEL:
            return index + 1
        if char == ESC and text.startswith("\\", index + 1):
            return index + 2
        index += 1
    return None


def strip_ansi(text: str) -> str:
    out: list[str] = []
    index = 0
    length = len(text)
    while index < length:
        char = text[index]
        if char == C1_CSI:
            index, _, _ = _scan_csi(text, index + 1)
            continue
        if char != ESC:
            out.append(char)
            index += 1
            continue
        introducer = text[index + 1] if index + 1 < length else ""
        if introducer not in _STRIP_INTRODUCERS:
            out.append(char)
            index += 1
            continue
        end = _skip_osc(text, index + 2) if introducer == "]" else None
        if end is None:
            # CSI, or an OSC with no terminator: only the header is dropped.
            end, _, _ = _scan_csi(text, index + 2)
        index = end
    return "".join(out)


def _apply_sgr(params: str, color: AnsiColor | None, bold: bool) -> tuple[AnsiColor | None, bool]:
    for part in params.split(";"):
        try:
            code = int(part.strip() or "0")
        except ValueError:
            code = 0
        if code == 0:
            color, bold = None, False
        elif code == 1:
            bold = True
        elif 30 <= code <= 37:
            color = STANDARD_COLORS[code - 30]
        elif 90 <= code <= 97:
            color = BRIGHT_COLORS[code - 90]
    return color, bold


def parse_ansi_line(text: str) -> list[AnsiSegment]:
    segments: list[AnsiSegment] = []
    current: list[str] = []
    color: AnsiColor | None = None
    bold = False

    def flush() -> None:
        if current:
            segments.append(AnsiSegment(text="".join(current), color=color, bold=bold))
            current.clear()

    index = 0
    length = len(text)
    while index < length:
        char = text[index]
        if char == C1_CSI:
            body_start = index + 1
        elif char == ESC and text.startswith("[", index + 1):
            body_start = index + 2
        else:
            current.append(char)
            index += 1
            continue

        index, params, final = _scan_csi(text, body_start)
        if final == "m":
            flush()
            color, bold = _apply_sgr(params, color, bold)

    flush()
    return segments


def segments_to_html(segments: list[AnsiSegment]) -> str:
    parts: list[str] = []
    for segment in segments:
        escaped = html.escape(segment.text).replace(" ", "&nbsp;")
        styles: list[str] = []
        if segment.color is not None:
            styles.append(f"color:{segment.color.hex}")
        if segment.bold:
            styles.append("font-weight:bold")
        if styles:
            parts.append(f'<span style="{";".join(styles)}">{escaped}</span>')
        else:
            parts.append(escaped)
    return "".join(parts)
