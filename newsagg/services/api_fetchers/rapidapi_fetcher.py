# newsagg/services/api_fetchers/rapidapi_fetcher.py
"""
RapidAPI news adapter.

The RapidAPI plan exposes several NewsAPI-shaped endpoints behind one key;
calls rotate across them so no single endpoint's per-minute limit is hit
first. Responses look like `{"status": "ok", "articles": [...]}`.
"""

import itertools
from datetime import datetime, timezone
from typing import Any

from newsagg.schemas.article import CanonicalArticle
from newsagg.services.api_fetchers.base import (
    DOMESTIC,
    FetchParams,
    ProviderAdapter,
    clean_text,
    domain_of,
    make_external_id,
    parse_datetime,
)
from newsagg.services.errors import ProviderPermanent, ProviderTransient


RAPIDAPI_CATEGORY_MAP = {
    "breaking": "general",
    "business": "business",
    "finance": "business",
    "entertainment": "entertainment",
    "general": "general",
    "health": "health",
    "politics": "general",
    "science": "science",
    "sports": "sports",
    "technology": "technology",
}

RAPIDAPI_PERMANENT_CODES = {"apiKeyInvalid", "apiKeyMissing", "apiKeyDisabled", "apiKeyExhausted", "parameterInvalid"}


class RapidApiAdapter(ProviderAdapter):
    """Fetch from the RapidAPI news endpoints, round-robin."""

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._endpoints = itertools.cycle(self.config.endpoints)

    def select_endpoint(self, params: FetchParams) -> str:
        return next(self._endpoints)

    def build_request(self, endpoint: str, params: FetchParams) -> tuple[dict[str, Any], dict[str, str]]:
        query: dict[str, Any] = {
            "language": params.language,
            "pageSize": params.page_size,
            "country": "in" if params.scope == DOMESTIC else "us",
        }
        category = RAPIDAPI_CATEGORY_MAP.get(params.category)
        if category:
            query["category"] = category
        if params.query:
            query["q"] = params.query
        headers = {
            "X-RapidAPI-Key": self.config.api_key or "",
            "X-RapidAPI-Host": self.config.host or "",
        }
        return query, headers

    def check_payload(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            raise ProviderTransient(self.name, "unexpected response body")
        if payload.get("status") != "error":
            return
        code = payload.get("code", "error")
        message = payload.get("message", "Unknown error")
        if code in RAPIDAPI_PERMANENT_CODES:
            raise ProviderPermanent(self.name, f"{code}: {message}")
        raise ProviderTransient(self.name, f"{code}: {message}")

    def extract_records(self, payload: Any) -> list[dict[str, Any]]:
        records = payload.get("articles")
        if records is None:
            records = payload.get("data")
        return records if isinstance(records, list) else []

    def normalize(self, record: dict[str, Any], params: FetchParams) -> CanonicalArticle | None:
        url = clean_text(record.get("url") or record.get("link"))
        title = clean_text(record.get("title"))
        if not url or not title:
            return None

        source = record.get("source")
        if isinstance(source, dict):
            source_name = clean_text(source.get("name"))
            source_id = source.get("id")
        else:
            source_name = clean_text(source)
            source_id = None

        return CanonicalArticle(
            provider=self.name,
            external_id=make_external_id(record.get("id") or record.get("article_id"), url),
            title=title,
            url=url,
            description=clean_text(record.get("description")),
            body=clean_text(record.get("content")),
            image_url=clean_text(record.get("urlToImage") or record.get("photo_url")),
            source_name=source_name or clean_text(source_id),
            source_domain=domain_of(url),
            author=clean_text(record.get("author")),
            category=params.category,
            country=clean_text(record.get("country")),
            published_at=(
                parse_datetime(record.get("publishedAt") or record.get("published_datetime_utc"))
                or datetime.now(timezone.utc)
            ),
        )
