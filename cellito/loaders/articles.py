from __future__ import annotations

"""Published knowledge-base articles read from a SharePoint list."""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from cellito.loaders.chunking import extract_article_text
from cellito.rag.cache import build_fingerprint
from cellito.rag.types import (
    CorpusFingerprint,
    DocumentStoreError,
    MalformedStoredContent,
    RawDocument,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

CACHE_ARTICLE_SLUG = "cellito-rag-cache"
ARTICLE_FIELDS = (
    "Id",
    "Title",
    "Summary",
    "Category",
    "Subcategory",
    "ArticleType",
    "ArticleLevel",
    "Tags",
    "ArticleContent",
    "ArticleSlug",
    "ReadTime",
    "Created",
    "Modified",
    "LastModifiedContentDate",
)
FINGERPRINT_FIELDS = ("Id", "LastModifiedContentDate", "Modified", "Created")
_METADATA_FIELDS = ("Subcategory", "ArticleType", "ArticleLevel", "ArticleSlug", "ReadTime", "Summary")


def _modified_at(item: dict[str, Any]) -> datetime | None:
    for key in ("LastModifiedContentDate", "Modified", "Created"):
        value = item.get(key)
        if value:
            try:
                return parse_timestamp(value)
            except MalformedStoredContent:
                logger.warning("article_timestamp_invalid", extra={"doc_id": item.get("Id"), "field": key})
    return None


def _tags_text(tags: Any) -> str:
    if not tags:
        return ""
    if isinstance(tags, str):
        return tags
    return json.dumps(tags, ensure_ascii=False)


def article_to_document(item: dict[str, Any]) -> RawDocument:
    """Combine title, summary, cleaned body and tags into one searchable text."""
    title = str(item.get("Title") or "Untitled")
    body = extract_article_text(str(item.get("ArticleContent") or ""))
    parts = [title, str(item.get("Summary") or ""), body, _tags_text(item.get("Tags"))]
    text = "\n\n".join(part for part in parts if part)
    metadata = {key: item.get(key) for key in _METADATA_FIELDS if item.get(key)}
    if item.get("Tags"):
        metadata["Tags"] = item.get("Tags")
    return RawDocument(
        doc_id=str(item.get("Id")),
        title=title,
        text=text,
        category=str(item.get("Category") or ""),
        modified_at=_modified_at(item),
        source_metadata=metadata,
        file_name=f"{title}.article",
    )


@dataclass(frozen=True)
class SharePointArticleStore:
    """Document store over the published items of a SharePoint article list.

    The cache's own list item (identified by its slug) is always excluded so
    the index never contains itself.
    """
    site_url: str
    access_token: str
    list_name: str = "ArticlesList"
    timeout: float = 30.0
    max_items: int = 1000
    cache_slug: str = CACHE_ARTICLE_SLUG
    transport: httpx.AsyncBaseTransport | None = None

    @property
    def items_url(self) -> str:
        return f"{self.site_url.rstrip('/')}/_api/web/lists/getbytitle('{self.list_name}')/items"

    @property
    def filter_expression(self) -> str:
        return f"ArticleStatus eq 'Published' and ArticleSlug ne '{self.cache_slug}'"

    async def list_documents(self) -> list[RawDocument]:
        items = await self._fetch(ARTICLE_FIELDS)
        documents = [article_to_document(item) for item in items]
        logger.info("articles_loaded", extra={"documents": len(documents)})
        return documents

    async def get_fingerprint(self) -> CorpusFingerprint:
        items = await self._fetch(FINGERPRINT_FIELDS)
        return build_fingerprint(
            (item.get("Id") for item in items),
            [_modified_at(item) for item in items],
            source_kind="articles",
        )

    async def _fetch(self, fields: tuple[str, ...]) -> list[dict[str, Any]]:
        params = {
            "$select": ",".join(fields),
            "$filter": self.filter_expression,
            "$orderby": "LastModifiedContentDate desc",
            "$top": str(self.max_items),
        }
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json;odata=nometadata",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(self.items_url, params=params, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            raise DocumentStoreError(
                f"SharePoint list error: {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise DocumentStoreError(str(exc) or "SharePoint request failed") from exc
        except ValueError as exc:
            raise DocumentStoreError("Invalid SharePoint response") from exc

        items = data.get("value") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise DocumentStoreError("Invalid SharePoint response")
        return [item for item in items if isinstance(item, dict) and item.get("Id") is not None]
