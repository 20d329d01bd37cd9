import argparse
import asyncio
import sys
from dataclasses import replace
from pathlib import Path

from ragdesk.application.dto.ingest_dto import UploadDocumentRequest
from ragdesk.config.compose import Container
from ragdesk.config.logging import configure_logging

_EXTENSION_TYPES = {
    ".md": "markdown",
    ".markdown": "markdown",
    ".html": "html",
    ".htm": "html",
    ".pdf": "pdf",
    ".docx": "docx",
    ".doc": "doc",
}
_BINARY_TYPES = ("pdf", "doc", "docx")


def guess_source_type(path: str) -> str:
    return _EXTENSION_TYPES.get(Path(path).suffix.lower(), "text")


def add_arguments(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("--tenant", required=True)
    ap.add_argument("--kb", default="", help="Knowledge base (required for --path/--url)")
    src = ap.add_mutually_exclusive_group(required=True)
    src.add_argument("--path", help="Local file (text, markdown, html, pdf, doc, docx)")
    src.add_argument("--url", help="Fetch and ingest a web page")
    src.add_argument("--reindex", metavar="DOCUMENT_ID", help="Re-ingest a document as a new version")
    src.add_argument("--rollback", metavar="DOCUMENT_ID", help="Make an earlier ready version current")
    ap.add_argument("--version", type=int, default=0, help="Target version for --rollback")
    ap.add_argument("--title", default="")
    ap.add_argument("--source-type", default="", help="Override type detected from the file suffix")
    ap.add_argument("--async", dest="use_async", action="store_true", help="Enqueue instead of inline")


def build_request(args: argparse.Namespace) -> UploadDocumentRequest:
    if args.url:
        return UploadDocumentRequest(
            tenant_id=args.tenant,
            kb_id=args.kb,
            content=args.url,
            source_type="url",
            title=args.title,
            source_uri=args.url,
        )
    source_type = args.source_type or guess_source_type(args.path)
    path = Path(args.path)
    content: str | bytes
    if source_type.lower() in _BINARY_TYPES:
        content = path.read_bytes()
    else:
        content = path.read_text(encoding="utf-8", errors="replace")
    return UploadDocumentRequest(
        tenant_id=args.tenant,
        kb_id=args.kb,
        content=content,
        source_type=source_type,
        title=args.title,
        source_uri=path.resolve().as_uri(),
    )


async def run(args: argparse.Namespace, container: Container) -> int:
    if args.use_async and not container.settings.ingestion_async:
        container.settings = replace(container.settings, ingestion_async=True)
    uc = container.build_ingest_use_case()
    if args.rollback:
        rolled = await uc.rollback(args.tenant, args.rollback, args.version)
        if rolled.ok and rolled.value is not None:
            print(f"Rollback done: document={rolled.value.id} current_version={rolled.value.current_version}")
            return 0
        err = rolled.error
        print(f"[ERROR] {type(err).__name__}: {err}", file=sys.stderr)
        return 1

    if args.reindex:
        result = await uc.reindex(args.tenant, args.reindex)
    else:
        result = await uc.upload(build_request(args))
    if result.ok and result.value is not None:
        up = result.value
        state = "queued" if up.queued else f"{up.chunk_count} chunks"
        print(f"Ingest done: document={up.document.id} version={up.version.version} ({state})")
        return 0
    err = result.error
    print(f"[ERROR] {type(err).__name__}: {err}", file=sys.stderr)
    return 1


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser("ragdesk-ingest")
    add_arguments(ap)
    args = ap.parse_args(argv)
    container = Container()
    configure_logging(container.settings.log_level, container.settings.log_json, container.settings.app_env)
    return asyncio.run(run(args, container))


if __name__ == "__main__":
    raise SystemExit(main())
