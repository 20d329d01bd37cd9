"""Static bot → knowledge base bindings loaded from configuration."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

from ragdesk.domain.errors import ConfigurationError, ValidationError
from ragdesk.domain.models import BotKnowledgeBase


def _parse_binding(item: Any) -> BotKnowledgeBase:
    if isinstance(item, str):
        return BotKnowledgeBase(kb_id=item.strip())
    if isinstance(item, Mapping):
        return BotKnowledgeBase(
            kb_id=str(item.get("kb_id") or "").strip(),
            weight=float(item.get("weight") or 1.0),
            priority=int(item.get("priority") or 0),
        )
    raise ConfigurationError(f"unsupported bot binding entry: {item!r}", code="BOT_BINDINGS_INVALID")


def parse_bot_bindings(raw: str) -> dict[str, list[BotKnowledgeBase]]:
    """Parse ``{"bot": [{"kb_id": ..., "weight": ...}, "kb2"]}``.

    Keys are either ``bot_id`` (any tenant) or ``tenant_id:bot_id``.
    """
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except ValueError as ex:
        raise ConfigurationError(f"bot bindings are not valid JSON: {ex}", code="BOT_BINDINGS_INVALID") from ex
    if not isinstance(data, dict):
        raise ConfigurationError("bot bindings must be a JSON object", code="BOT_BINDINGS_INVALID")
    out: dict[str, list[BotKnowledgeBase]] = {}
    for key, items in data.items():
        if not isinstance(items, list):
            items = [items]
        out[str(key).strip()] = [b for b in (_parse_binding(i) for i in items) if b.kb_id]
    return out


class StaticBotBindings:
    def __init__(self, bindings: Mapping[str, Sequence[BotKnowledgeBase]] | None = None) -> None:
        self._bindings = {k: list(v) for k, v in (bindings or {}).items()}

    async def resolve_bot_knowledge_bases(self, tenant_id: str, bot_id: str) -> list[BotKnowledgeBase]:
        if not tenant_id.strip():
            raise ValidationError("tenant_id missing", code="TENANT_MISSING")
        bot_id = bot_id.strip()
        if not bot_id:
            return []
        items = self._bindings.get(f"{tenant_id.strip()}:{bot_id}")
        if items is None:
            items = self._bindings.get(bot_id, [])
        # higher priority first, stable otherwise
        return sorted(items, key=lambda b: b.priority, reverse=True)
