"""Block splitting for plain text and markdown (pure).

Why: Ein Block = zusammenhängender Text unter genau einer Überschrift.
     The chunker relies on block boundaries to keep topics apart.
"""
from __future__ import annotations

import re

from ragdesk.domain.models import DocumentBlock, ParsedDocument

# ---------- Heuristiken für Überschriften ----------

_MD_HEADING = re.compile(r"^#{1,6}\s*(.*?)\s*#*$")
# 1. / 1.2 / 1.2.3) Titel
_NUMBERED_HEADING = re.compile(r"^(\d+(?:\.\d+){0,4})[.)]?\s+(\S.*)$")
_SENTENCE_END = (".", "!", "?", ";", ",", "。", "！", "？", "；", "，")

MAX_COLON_HEADING = 80
MAX_SHORT_HEADING = 60
MAX_TITLE_WORDS = 8
MAX_TITLE_CHARS = 120


def _is_all_caps(line: str) -> bool:
    letters = [ch for ch in line if ch.isalpha()]
    return len(letters) >= 3 and all(ch.isupper() for ch in letters)


def heading_title(line: str, prev_blank: bool = False, next_nonblank: bool = False) -> str | None:
    """Return the section title if ``line`` looks like a heading, else None.

    ``prev_blank``/``next_nonblank`` enable the title-line rule: a short line
    without sentence punctuation that opens a paragraph.
    """
    line = line.strip()
    if not line:
        return None
    m = _MD_HEADING.match(line)
    if m:
        return m.group(1).strip() or None
    m = _NUMBERED_HEADING.match(line)
    if m and len(line) <= MAX_COLON_HEADING and not line.endswith(_SENTENCE_END):
        return line
    if line.endswith((":", "：")) and len(line) <= MAX_COLON_HEADING:
        return line.rstrip(":：").strip() or None
    if len(line) <= MAX_SHORT_HEADING and _is_all_caps(line):
        return line
    if (
        prev_blank
        and next_nonblank
        and len(line) <= MAX_SHORT_HEADING
        and len(line.split()) <= MAX_TITLE_WORDS
        and not line.endswith(_SENTENCE_END)
    ):
        return line
    return None


def _split_lines(text: str) -> list[str]:
    return text.replace("\r\n", "\n").replace("\r", "\n").split("\n")


def split_text_blocks(text: str, page_no: int = 0) -> list[DocumentBlock]:
    """Split plain text into blocks using heading heuristics.

    Blank lines close the current block; the section carries over until the
    next heading.
    """
    lines = _split_lines(text)
    blocks: list[DocumentBlock] = []
    section = ""
    buf: list[str] = []

    def flush() -> None:
        if buf:
            blocks.append(DocumentBlock(text="\n".join(buf), section=section, page_no=page_no))
            buf.clear()

    prev_blank = True
    for i, raw in enumerate(lines):
        line = raw.strip()
        if not line:
            flush()
            prev_blank = True
            continue
        next_nonblank = i + 1 < len(lines) and bool(lines[i + 1].strip())
        title = heading_title(line, prev_blank=prev_blank, next_nonblank=next_nonblank)
        if title is not None:
            flush()
            section = title
        else:
            buf.append(line)
        prev_blank = False
    flush()
    return blocks


def split_markdown_blocks(text: str) -> list[DocumentBlock]:
    """One block per ``#`` section; fenced code never starts a section."""
    blocks: list[DocumentBlock] = []
    section = ""
    buf: list[str] = []
    in_code = False

    def flush() -> None:
        body = "\n".join(buf).strip("\n")
        if body.strip():
            blocks.append(DocumentBlock(text=body, section=section))
        buf.clear()

    for line in _split_lines(text):
        stripped = line.strip()
        if stripped.startswith("```"):
            in_code = not in_code
            buf.append(line)
            continue
        if not in_code:
            m = _MD_HEADING.match(stripped)
            if m:
                flush()
                section = m.group(1).strip()
                continue
        buf.append(line)
    flush()
    return blocks


def _meaningful(line: str) -> str:
    line = line.strip().lstrip("#>").strip()
    for bullet in ("- ", "* ", "+ "):
        if line.startswith(bullet):
            line = line[2:].strip()
    return line.replace("**", "").replace("__", "").replace("`", "").strip()


def infer_title(doc: ParsedDocument) -> str:
    """First meaningful parsed line, truncated to ``MAX_TITLE_CHARS``."""
    for block in doc.blocks:
        candidates = [block.section, *block.text.split("\n")]
        for cand in candidates:
            title = _meaningful(cand)
            if title and any(ch.isalnum() for ch in title):
                return title[:MAX_TITLE_CHARS].strip()
    return ""
