"""Ports for the catalog collaborators (document records, bot bindings)."""

from __future__ import annotations

from typing import Protocol

from ragdesk.domain.models import BotKnowledgeBase, Document, DocumentVersion


class DocumentRepositoryPort(Protocol):
    async def create_document(self, doc: Document) -> Document: ...

    async def get_document(self, tenant_id: str, document_id: str) -> Document: ...

    async def update_document_state(
        self, tenant_id: str, document_id: str, status: str, current_version: int
    ) -> None: ...

    async def update_document_title(self, tenant_id: str, document_id: str, title: str) -> None: ...

    async def create_version(self, version: DocumentVersion) -> DocumentVersion: ...

    async def get_version(self, tenant_id: str, version_id: str) -> DocumentVersion: ...

    async def get_version_by_number(
        self, tenant_id: str, document_id: str, version: int
    ) -> DocumentVersion: ...

    async def list_versions(self, tenant_id: str, document_id: str) -> list[DocumentVersion]: ...

    async def update_version_status(
        self, tenant_id: str, version_id: str, status: str, error_reason: str = ""
    ) -> None: ...


class BotBindingsPort(Protocol):
    async def resolve_bot_knowledge_bases(
        self, tenant_id: str, bot_id: str
    ) -> list[BotKnowledgeBase]: ...
