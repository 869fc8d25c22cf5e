# newsagg/services/api_fetchers/mediastack_fetcher.py
"""
Mediastack adapter.

Mediastack answers `{"pagination": {...}, "data": [...]}`. Invalid keys and
plan limits are reported as `{"error": {"code": ..., "message": ...}}`,
sometimes with a 200.

API Documentation: https://mediastack.com/documentation
"""

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

MEDIASTACK_CATEGORY_MAP = {
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

MEDIASTACK_TRANSIENT_CODES = {"rate_limit_reached", "internal_error"}


class MediastackAdapter(ProviderAdapter):
    """Fetch from Mediastack `/v1/news`."""

    def build_request(self, endpoint: str, params: FetchParams) -> tuple[dict[str, Any], dict[str, str]]:
        query: dict[str, Any] = {
            "access_key": self.config.api_key,
            "languages": params.language,
            "limit": params.page_size,
            "sort": "published_desc",
            # Leading "-" excludes a country
            "countries": "in" if params.scope == DOMESTIC else "-in",
            "categories": MEDIASTACK_CATEGORY_MAP.get(params.category, "general"),
        }
        if params.query:
            query["keywords"] = params.query
        return query, {}

    def check_payload(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            raise ProviderTransient(self.name, "unexpected response body")
        error = payload.get("error")
        if not error:
            return
        code = error.get("code", "error") if isinstance(error, dict) else "error"
        message = error.get("message", "") if isinstance(error, dict) else str(error)
        if code in MEDIASTACK_TRANSIENT_CODES:
            raise ProviderTransient(self.name, f"{code}: {message}")
        raise ProviderPermanent(self.name, f"{code}: {message}")

    def extract_records(self, payload: Any) -> list[dict[str, Any]]:
        records = payload.get("data")
        return records if isinstance(records, list) else []

    def normalize(self, record: dict[str, Any], params: FetchParams) -> CanonicalArticle | None:
        url = clean_text(record.get("url"))
        title = clean_text(record.get("title"))
        if not url or not title:
            return None

        return CanonicalArticle(
            provider=self.name,
            external_id=make_external_id(None, url),
            title=title,
            url=url,
            description=clean_text(record.get("description")),
            image_url=clean_text(record.get("image")),
            source_name=clean_text(record.get("source")),
            source_domain=domain_of(url),
            author=clean_text(record.get("author")),
            category=params.category,
            country=clean_text(record.get("country")),
            published_at=parse_datetime(record.get("published_at")) or datetime.now(timezone.utc),
        )
