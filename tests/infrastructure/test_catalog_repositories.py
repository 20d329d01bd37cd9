"""Tests for the document catalog repository and static bot bindings."""

import json
from pathlib import Path

import pytest

from ragdesk.domain.errors import ConfigurationError, ConflictError, NotFoundError, ValidationError
from ragdesk.domain.models import BotKnowledgeBase, Document, DocumentVersion
from ragdesk.infrastructure.repositories.bot_bindings import StaticBotBindings, parse_bot_bindings
from ragdesk.infrastructure.repositories.document_repository import DocumentRepository


def make_doc(doc_id: str = "d1", tenant: str = "t1") -> Document:
    return Document(id=doc_id, tenant_id=tenant, kb_id="kb1", title="", source_type="text")


def make_version(version_id: str, number: int, raw: str | bytes = "body", doc_id: str = "d1") -> DocumentVersion:
    return DocumentVersion(id=version_id, tenant_id="t1", document_id=doc_id, version=number, raw_content=raw)


class TestDocumentRepository:
    @pytest.mark.asyncio
    async def test_create_and_get_returns_copies(self) -> None:
        repo = DocumentRepository()
        await repo.create_document(make_doc())
        doc = await repo.get_document("t1", "d1")
        doc.title = "mutated"
        assert (await repo.get_document("t1", "d1")).title == ""

    @pytest.mark.asyncio
    async def test_duplicates_conflict(self) -> None:
        repo = DocumentRepository()
        await repo.create_document(make_doc())
        with pytest.raises(ConflictError):
            await repo.create_document(make_doc())
        await repo.create_version(make_version("v1", 1))
        with pytest.raises(ConflictError) as exc_info:
            await repo.create_version(make_version("v1-bis", 1))
        assert exc_info.value.code == "VERSION_EXISTS"

    @pytest.mark.asyncio
    async def test_tenant_isolation(self) -> None:
        repo = DocumentRepository()
        await repo.create_document(make_doc())
        with pytest.raises(NotFoundError) as exc_info:
            await repo.get_document("t2", "d1")
        assert exc_info.value.code == "DOCUMENT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_tenant_required(self) -> None:
        with pytest.raises(ValidationError):
            await DocumentRepository().create_document(make_doc(tenant=" "))

    @pytest.mark.asyncio
    async def test_version_for_unknown_document(self) -> None:
        with pytest.raises(NotFoundError):
            await DocumentRepository().create_version(make_version("v1", 1))

    @pytest.mark.asyncio
    async def test_versions_and_status_updates(self) -> None:
        repo = DocumentRepository()
        await repo.create_document(make_doc())
        await repo.create_version(make_version("v2", 2))
        await repo.create_version(make_version("v1", 1))

        await repo.update_version_status("t1", "v2", "failed", "boom")
        await repo.update_document_state("t1", "d1", "ready", 1)
        await repo.update_document_title("t1", "d1", "Handbook")

        assert [v.id for v in await repo.list_versions("t1", "d1")] == ["v1", "v2"]
        assert (await repo.get_version_by_number("t1", "d1", 2)).error_reason == "boom"
        doc = await repo.get_document("t1", "d1")
        assert (doc.status, doc.current_version, doc.title) == ("ready", 1, "Handbook")
        with pytest.raises(NotFoundError) as exc_info:
            await repo.get_version_by_number("t1", "d1", 7)
        assert exc_info.value.code == "VERSION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_persists_per_tenant_json(self, tmp_path: Path) -> None:
        repo = DocumentRepository(tmp_path)
        await repo.create_document(make_doc())
        await repo.create_version(make_version("v1", 1, raw=b"%PDF-1.7 binary"))
        await repo.create_version(make_version("v2", 2, raw="plain text"))

        data = json.loads((tmp_path / "t1.json").read_text(encoding="utf-8"))
        assert [d["id"] for d in data["documents"]] == ["d1"]

        reloaded = DocumentRepository(tmp_path)
        assert (await reloaded.get_version("t1", "v1")).raw_content == b"%PDF-1.7 binary"
        assert (await reloaded.get_version("t1", "v2")).raw_content == "plain text"
        assert (await reloaded.get_document("t1", "d1")).kb_id == "kb1"


class TestBotBindings:
    def test_parse_mixed_entries(self) -> None:
        raw = json.dumps(
            {
                "support": [{"kb_id": "faq", "weight": 0.5, "priority": 1}, "manuals", {"kb_id": ""}],
                "t2:support": "t2-faq",
            }
        )
        parsed = parse_bot_bindings(raw)
        assert parsed["support"] == [BotKnowledgeBase("faq", 0.5, 1), BotKnowledgeBase("manuals")]
        assert parsed["t2:support"] == [BotKnowledgeBase("t2-faq")]

    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]", '{"bot": [42]}'])
    def test_parse_invalid(self, raw: str) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            parse_bot_bindings(raw)
        assert exc_info.value.code == "BOT_BINDINGS_INVALID"

    def test_parse_empty(self) -> None:
        assert parse_bot_bindings("  ") == {}

    @pytest.mark.asyncio
    async def test_resolve_prefers_tenant_key_and_sorts_by_priority(self) -> None:
        bindings = StaticBotBindings(
            {
                "support": [BotKnowledgeBase("a", priority=0), BotKnowledgeBase("b", priority=5)],
                "t2:support": [BotKnowledgeBase("t2-only")],
            }
        )
        assert [b.kb_id for b in await bindings.resolve_bot_knowledge_bases("t1", "support")] == ["b", "a"]
        assert [b.kb_id for b in await bindings.resolve_bot_knowledge_bases("t2", " support ")] == ["t2-only"]
        assert await bindings.resolve_bot_knowledge_bases("t1", "unknown") == []
        assert await bindings.resolve_bot_knowledge_bases("t1", "") == []

    @pytest.mark.asyncio
    async def test_resolve_requires_tenant(self) -> None:
        with pytest.raises(ValidationError):
            await StaticBotBindings().resolve_bot_knowledge_bases("", "support")
