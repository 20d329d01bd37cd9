"""Format-specific document parser (text, markdown, html, doc, docx, pdf, url).

Why: Alle Formate enden als ParsedDocument mit Blöcken; der Chunker sieht
     keine Formatdetails. Binary formats accept raw bytes or base64 text.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import io
import re
import zipfile
from typing import Protocol

from ragdesk.domain.errors import DocumentError
from ragdesk.domain.models import (
    SOURCE_DOC,
    SOURCE_DOCX,
    SOURCE_HTML,
    SOURCE_MARKDOWN,
    SOURCE_PDF,
    SOURCE_URL,
    DocumentBlock,
    DocumentMeta,
    ParsedDocument,
)
from ragdesk.domain.services.blocks import infer_title, split_markdown_blocks, split_text_blocks
from ragdesk.domain.services.normalization import normalize_source_type, strip_html_tags
from ragdesk.infrastructure.parsing.url_fetcher import (
    MAX_DOCUMENT_BYTES,
    FetchedPage,
    HttpxUrlFetcher,
)

_BINARY_TYPES = (SOURCE_PDF, SOURCE_DOC, SOURCE_DOCX)

_ZIP_MAGIC = b"PK\x03\x04"
_ASCII_RUN = re.compile(rb"[\x20-\x7e\t\r\n]{4,}")
_MIN_UTF16_RUN = 4


class UrlFetcher(Protocol):
    async def fetch(self, raw_url: str) -> FetchedPage: ...


# ---------- docx / doc ----------


def extract_docx_text(data: bytes) -> str:
    """Paragraph text via python-docx, one line per paragraph (tabs kept)."""
    try:
        from docx import Document as open_docx  # lazy import; only docx uploads need it
        from docx.opc.exceptions import PackageNotFoundError
    except Exception as ex:  # pragma: no cover
        raise DocumentError("python-docx is not installed", code="DOCX_UNSUPPORTED") from ex

    try:
        document = open_docx(io.BytesIO(data))
    except (zipfile.BadZipFile, PackageNotFoundError) as ex:
        raise DocumentError(f"docx payload is not a zip archive: {ex}", code="DOCX_INVALID") from ex
    except KeyError as ex:
        # Package relationships point at a part the archive does not contain
        raise DocumentError(f"docx document part missing: {ex}", code="DOCX_XML_MISSING") from ex
    except Exception as ex:  # noqa: BLE001
        raise DocumentError(f"docx parse failed: {ex}", code="DOCX_INVALID") from ex
    return "\n".join(para.text for para in document.paragraphs)


def _ascii_runs(data: bytes) -> str:
    return "\n".join(m.group(0).decode("ascii") for m in _ASCII_RUN.finditer(data))


def _utf16_runs(data: bytes) -> str:
    best = ""
    for offset in (0, 1):
        chunk = data[offset:]
        chunk = chunk[: len(chunk) - (len(chunk) % 2)]
        decoded = chunk.decode("utf-16-le", errors="replace")
        runs: list[str] = []
        buf: list[str] = []
        for ch in decoded:
            if ch != "�" and (ch.isprintable() or ch in "\t\r\n"):
                buf.append(ch)
                continue
            if len(buf) >= _MIN_UTF16_RUN:
                runs.append("".join(buf))
            buf = []
        if len(buf) >= _MIN_UTF16_RUN:
            runs.append("".join(buf))
        text = "\n".join(runs)
        if _richness(text) > _richness(best):
            best = text
    return best


def _richness(text: str) -> int:
    return sum(1 for ch in text if ch.isalnum())


def extract_legacy_doc_text(data: bytes) -> str:
    """Best-effort text from a legacy binary .doc.

    The format is not parsed; whichever of a UTF-16 or a printable-ASCII
    scan yields more letters/digits wins. A zip payload is a mislabeled docx.
    """
    if data.startswith(_ZIP_MAGIC):
        return extract_docx_text(data)
    utf16 = _utf16_runs(data)
    ascii_text = _ascii_runs(data)
    return utf16 if _richness(utf16) > _richness(ascii_text) else ascii_text


# ---------- Parser ----------


class DocumentParser:
    """Turns raw payloads into a ParsedDocument per source type."""

    def __init__(self, fetcher: UrlFetcher | None = None, max_bytes: int = MAX_DOCUMENT_BYTES) -> None:
        self._fetcher = fetcher or HttpxUrlFetcher()
        self._max_bytes = max_bytes

    def _check_size(self, size: int) -> None:
        if size > self._max_bytes:
            raise DocumentError(
                f"document is {size} bytes, limit is {self._max_bytes}",
                code="DOC_CONTENT_TOO_LARGE",
            )

    def _as_bytes(self, raw: str | bytes) -> bytes:
        if isinstance(raw, bytes):
            return raw
        text = raw.strip()
        if not text:
            raise DocumentError("document content missing", code="DOC_CONTENT_MISSING")
        # base64 inflates by 4/3; reject early before decoding
        self._check_size(len(text) * 3 // 4)
        try:
            return base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as ex:
            raise DocumentError("binary content must be base64", code="DOC_BASE64_INVALID") from ex

    @staticmethod
    def _as_text(raw: str | bytes) -> str:
        if isinstance(raw, bytes):
            return raw.decode("utf-8", errors="replace")
        return raw

    async def parse(
        self,
        raw: str | bytes,
        source_type: str,
        title: str = "",
        source_uri: str = "",
    ) -> ParsedDocument:
        st = normalize_source_type(source_type)
        meta = DocumentMeta(title=title.strip(), source_uri=source_uri, source_type=st)

        if st == SOURCE_URL:
            page = await self._fetcher.fetch(self._as_text(raw))
            meta.source_uri = page.url
            blocks = split_text_blocks(page.text)
        elif st in _BINARY_TYPES:
            data = self._as_bytes(raw)
            self._check_size(len(data))
            if st == SOURCE_PDF:
                blocks = await asyncio.to_thread(self._parse_pdf, data, meta)
            elif st == SOURCE_DOCX:
                blocks = split_text_blocks(extract_docx_text(data))
            else:
                blocks = split_text_blocks(extract_legacy_doc_text(data))
        else:
            text = self._as_text(raw)
            self._check_size(len(text.encode("utf-8")))
            if st == SOURCE_MARKDOWN:
                blocks = split_markdown_blocks(text)
            elif st == SOURCE_HTML:
                blocks = split_text_blocks(strip_html_tags(text))
            else:
                blocks = split_text_blocks(text)

        doc = ParsedDocument(meta=meta, blocks=blocks)
        if not meta.title:
            meta.title = infer_title(doc)
        return doc

    def _parse_pdf(self, data: bytes, meta: DocumentMeta) -> list[DocumentBlock]:
        try:
            from pypdf import PdfReader  # lazy import to avoid hard dependency in tests
        except Exception as ex:  # pragma: no cover
            raise DocumentError("pypdf is not installed", code="DOC_PDF_UNSUPPORTED") from ex

        try:
            reader = PdfReader(io.BytesIO(data))
            blocks: list[DocumentBlock] = []
            for page_no, page in enumerate(reader.pages, start=1):
                text = (page.extract_text() or "").strip()
                if text:
                    blocks.append(DocumentBlock(text=text, page_no=page_no))
            if not meta.title and getattr(reader, "metadata", None):
                meta.title = (reader.metadata.title or "").strip()
            return blocks
        except Exception as ex:  # noqa: BLE001
            raise DocumentError(f"PDF parse failed: {ex}", code="DOC_PDF_INVALID") from ex
