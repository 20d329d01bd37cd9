# ragdesk/domain/services/normalization.py
# Pure domain services: no I/O, deterministic, no external libraries.
"""Content normalization (markup stripping + whitespace cleanup).

Why: Normalization is a swappable strategy. Parser and chunker only see the
     ``ContentNormalizer`` protocol, so a stricter/looser policy can be
     injected without touching either of them.
"""
from __future__ import annotations

from typing import Protocol

from ragdesk.domain.models import (
    SOURCE_DOC,
    SOURCE_DOCX,
    SOURCE_HTML,
    SOURCE_MARKDOWN,
    SOURCE_PDF,
    SOURCE_TEXT,
    SOURCE_URL,
    DocumentBlock,
    ParsedDocument,
)

_BULLETS = ("- ", "* ", "+ ")

_SOURCE_ALIASES = {
    "": SOURCE_TEXT,
    "text": SOURCE_TEXT,
    "plain": SOURCE_TEXT,
    "txt": SOURCE_TEXT,
    "md": SOURCE_MARKDOWN,
    "markdown": SOURCE_MARKDOWN,
    "html": SOURCE_HTML,
    "htm": SOURCE_HTML,
    "doc": SOURCE_DOC,
    "docx": SOURCE_DOCX,
    "pdf": SOURCE_PDF,
    "url": SOURCE_URL,
    "link": SOURCE_URL,
}


def normalize_source_type(source_type: str) -> str:
    """Lowercase, trim and resolve aliases (md, htm, txt, link); empty means text."""
    value = (source_type or "").strip().lower()
    return _SOURCE_ALIASES.get(value, value)


def clean_content(text: str) -> str:
    """Unify line endings, collapse intra-line whitespace, trim the whole text."""
    if not text:
        return ""
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = [" ".join(line.split()) for line in normalized.split("\n")]
    return "\n".join(lines).strip()


def strip_markdown(text: str) -> str:
    """Remove emphasis, bullets, quote and heading markers.

    Fenced code lines are dropped; code content passes through verbatim.
    """
    if not text:
        return ""
    out: list[str] = []
    in_code = False
    for line in text.split("\n"):
        if line.strip().startswith("```"):
            in_code = not in_code
            continue
        if in_code:
            out.append(line)
            continue
        line = line.lstrip(" \t")
        if line.startswith(">"):
            line = line[1:].strip()
        if line.startswith("#"):
            line = line.lstrip("#").strip()
        if line.startswith(_BULLETS):
            line = line[2:].strip()
        line = line.replace("**", "").replace("__", "").replace("`", "")
        out.append(line)
    return "\n".join(out)


def strip_html_tags(text: str) -> str:
    """Crude tag stripper: ``<`` and ``>`` become spaces, tag bodies are dropped."""
    if not text:
        return ""
    buf: list[str] = []
    in_tag = False
    for ch in text:
        if ch == "<":
            in_tag = True
            buf.append(" ")
        elif ch == ">":
            in_tag = False
            buf.append(" ")
        elif not in_tag:
            buf.append(ch)
    return "".join(buf)


def normalize_text(text: str, source_type: str) -> str:
    if source_type == SOURCE_MARKDOWN:
        text = strip_markdown(text)
    elif source_type in (SOURCE_HTML, SOURCE_URL) and ("<" in text or ">" in text):
        text = strip_html_tags(text)
    return clean_content(text)


class ContentNormalizer(Protocol):
    def normalize(self, doc: ParsedDocument, source_type: str) -> ParsedDocument: ...


class DefaultNormalizer:
    """Markup-aware normalizer; drops blocks that end up empty."""

    def normalize(self, doc: ParsedDocument, source_type: str) -> ParsedDocument:
        blocks: list[DocumentBlock] = []
        for block in doc.blocks:
            text = normalize_text(block.text, source_type)
            if not text:
                continue
            section = clean_content(block.section)
            blocks.append(DocumentBlock(text=text, section=section, page_no=block.page_no))
        return ParsedDocument(meta=doc.meta, blocks=blocks)
