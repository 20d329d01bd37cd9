"""URL content fetcher on httpx.

Why: URL sources are fetched once at ingestion time with a bounded timeout
     and a hard body cap; HTML responses are reduced to text right away.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlsplit

import httpx

from ragdesk.config.logging import get_logger
from ragdesk.domain.errors import DocumentError, UpstreamError
from ragdesk.domain.services.normalization import strip_html_tags

MAX_DOCUMENT_BYTES = 5 << 20

logger = get_logger(__name__)


@dataclass
class UrlFetcherConfig:
    timeout_s: float = 10.0
    max_bytes: int = MAX_DOCUMENT_BYTES
    user_agent: str = "ragdesk-ingest/1.0"


@dataclass(frozen=True)
class FetchedPage:
    url: str
    text: str
    content_type: str = ""


def validate_url(raw: str) -> str:
    url = raw.strip()
    if not url:
        raise DocumentError("document url missing", code="DOC_URL_EMPTY")
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise DocumentError(f"document url invalid: {url!r}", code="DOC_URL_INVALID")
    return url


class HttpxUrlFetcher:
    """Fetches a URL and returns its (tag-stripped) text, capped at ``max_bytes``."""

    def __init__(
        self, cfg: UrlFetcherConfig | None = None, client: httpx.AsyncClient | None = None
    ) -> None:
        self._cfg = cfg or UrlFetcherConfig()
        self._client = client

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self._cfg.timeout_s),
            follow_redirects=True,
            headers={"User-Agent": self._cfg.user_agent},
        )

    async def fetch(self, raw_url: str) -> FetchedPage:
        url = validate_url(raw_url)
        client = self._client or self._new_client()
        try:
            async with client.stream("GET", url) as resp:
                if not 200 <= resp.status_code < 300:
                    raise DocumentError(
                        f"document url fetch failed with status {resp.status_code}",
                        code="DOC_URL_FETCH_FAILED",
                    )
                body = bytearray()
                async for chunk in resp.aiter_bytes():
                    body.extend(chunk)
                    if len(body) >= self._cfg.max_bytes:
                        logger.warning("url_content_truncated", url=url, max_bytes=self._cfg.max_bytes)
                        break
                content_type = resp.headers.get("content-type", "").lower()
                encoding = resp.encoding or "utf-8"
        except httpx.HTTPError as ex:
            logger.warning("url_fetch_failed", url=url, error=str(ex))
            raise UpstreamError(f"document url fetch failed: {ex}", code="DOC_URL_FETCH_FAILED") from ex
        finally:
            if self._client is None:
                await client.aclose()

        text = bytes(body[: self._cfg.max_bytes]).decode(encoding, errors="replace")
        if "text/html" in content_type:
            text = strip_html_tags(text)
        return FetchedPage(url=url, text=text, content_type=content_type)
