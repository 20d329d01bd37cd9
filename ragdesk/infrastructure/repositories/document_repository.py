"""Document catalog repository (documents and their versions).

Why: Rohdaten bleiben außerhalb des Vector Stores, damit Reindex ohne
     erneuten Upload möglich ist. Records live in memory and, when a
     directory is configured, are mirrored to one JSON file per tenant.
"""

from __future__ import annotations

import asyncio
import base64
import json
import os
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any

from ragdesk.domain.errors import ConflictError, NotFoundError, ValidationError
from ragdesk.domain.models import Document, DocumentVersion


def _version_to_json(version: DocumentVersion) -> dict[str, Any]:
    data = asdict(version)
    if isinstance(version.raw_content, bytes):
        data["raw_content"] = base64.b64encode(version.raw_content).decode("ascii")
        data["raw_encoding"] = "base64"
    return data


def _version_from_json(data: dict[str, Any]) -> DocumentVersion:
    data = dict(data)
    if data.pop("raw_encoding", "") == "base64":
        data["raw_content"] = base64.b64decode(data["raw_content"])
    return DocumentVersion(**data)


class DocumentRepository:
    """DocumentRepositoryPort backed by dicts plus optional JSON files.

    Every lookup is tenant-scoped; a record of another tenant is reported
    as not found.
    """

    def __init__(self, base_dir: str | Path | None = None) -> None:
        self._dir = Path(base_dir) if base_dir else None
        self._docs: dict[tuple[str, str], Document] = {}
        self._versions: dict[tuple[str, str], DocumentVersion] = {}
        self._lock = asyncio.Lock()
        if self._dir is not None:
            self._load_all()

    # ---------- persistence ----------

    def _tenant_file(self, tenant_id: str) -> Path:
        assert self._dir is not None
        safe = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in tenant_id)
        return self._dir / f"{safe}.json"

    def _load_all(self) -> None:
        assert self._dir is not None
        self._dir.mkdir(parents=True, exist_ok=True)
        for path in sorted(self._dir.glob("*.json")):
            data = json.loads(path.read_text(encoding="utf-8"))
            for raw in data.get("documents", []):
                doc = Document(**raw)
                self._docs[(doc.tenant_id, doc.id)] = doc
            for raw in data.get("versions", []):
                ver = _version_from_json(raw)
                self._versions[(ver.tenant_id, ver.id)] = ver

    def _write_tenant(self, tenant_id: str) -> None:
        if self._dir is None:
            return
        data = {
            "documents": [asdict(d) for (t, _), d in self._docs.items() if t == tenant_id],
            "versions": [_version_to_json(v) for (t, _), v in self._versions.items() if t == tenant_id],
        }
        path = self._tenant_file(tenant_id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, path)

    async def _persist(self, tenant_id: str) -> None:
        if self._dir is not None:
            await asyncio.to_thread(self._write_tenant, tenant_id)

    # ---------- documents ----------

    async def create_document(self, doc: Document) -> Document:
        if not doc.tenant_id.strip():
            raise ValidationError("tenant_id missing", code="TENANT_MISSING")
        async with self._lock:
            key = (doc.tenant_id, doc.id)
            if key in self._docs:
                raise ConflictError(f"document {doc.id} exists", code="DOCUMENT_EXISTS")
            self._docs[key] = replace(doc)
            await self._persist(doc.tenant_id)
        return replace(doc)

    def _doc(self, tenant_id: str, document_id: str) -> Document:
        doc = self._docs.get((tenant_id, document_id))
        if doc is None:
            raise NotFoundError(f"document {document_id} not found", code="DOCUMENT_NOT_FOUND")
        return doc

    async def get_document(self, tenant_id: str, document_id: str) -> Document:
        return replace(self._doc(tenant_id, document_id))

    async def update_document_state(
        self, tenant_id: str, document_id: str, status: str, current_version: int
    ) -> None:
        async with self._lock:
            doc = self._doc(tenant_id, document_id)
            doc.status = status
            doc.current_version = current_version
            await self._persist(tenant_id)

    async def update_document_title(self, tenant_id: str, document_id: str, title: str) -> None:
        async with self._lock:
            self._doc(tenant_id, document_id).title = title
            await self._persist(tenant_id)

    # ---------- versions ----------

    async def create_version(self, version: DocumentVersion) -> DocumentVersion:
        async with self._lock:
            self._doc(version.tenant_id, version.document_id)
            if (version.tenant_id, version.id) in self._versions:
                raise ConflictError(f"version {version.id} exists", code="VERSION_EXISTS")
            for existing in self._versions.values():
                if (
                    existing.tenant_id == version.tenant_id
                    and existing.document_id == version.document_id
                    and existing.version == version.version
                ):
                    raise ConflictError(
                        f"document {version.document_id} already has version {version.version}",
                        code="VERSION_EXISTS",
                    )
            self._versions[(version.tenant_id, version.id)] = replace(version)
            await self._persist(version.tenant_id)
        return replace(version)

    def _version(self, tenant_id: str, version_id: str) -> DocumentVersion:
        ver = self._versions.get((tenant_id, version_id))
        if ver is None:
            raise NotFoundError(f"document version {version_id} not found", code="VERSION_NOT_FOUND")
        return ver

    async def get_version(self, tenant_id: str, version_id: str) -> DocumentVersion:
        return replace(self._version(tenant_id, version_id))

    async def get_version_by_number(
        self, tenant_id: str, document_id: str, version: int
    ) -> DocumentVersion:
        for ver in self._versions.values():
            if ver.tenant_id == tenant_id and ver.document_id == document_id and ver.version == version:
                return replace(ver)
        raise NotFoundError(
            f"document {document_id} has no version {version}", code="VERSION_NOT_FOUND"
        )

    async def list_versions(self, tenant_id: str, document_id: str) -> list[DocumentVersion]:
        items = [
            replace(v)
            for v in self._versions.values()
            if v.tenant_id == tenant_id and v.document_id == document_id
        ]
        return sorted(items, key=lambda v: v.version)

    async def update_version_status(
        self, tenant_id: str, version_id: str, status: str, error_reason: str = ""
    ) -> None:
        async with self._lock:
            ver = self._version(tenant_id, version_id)
            ver.status = status
            ver.error_reason = error_reason
            await self._persist(tenant_id)
