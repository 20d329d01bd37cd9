from __future__ import annotations

from typing import Protocol

from ragdesk.domain.models import ParsedDocument


class DocumentParserPort(Protocol):
    async def parse(
        self,
        raw: str | bytes,
        source_type: str,
        title: str = "",
        source_uri: str = "",
    ) -> ParsedDocument: ...
