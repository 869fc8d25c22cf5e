# newsagg/services/api_fetchers/gnews_fetcher.py
"""
GNews adapter.

Top headlines by category, or keyword search when a query is given.
Responses look like `{"totalArticles": n, "articles": [...]}`; a 200 with an
`errors` list means the request was rejected.

API Documentation: https://gnews.io/docs/v4
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

GNEWS_CATEGORY_MAP = {
    "breaking": "general",
    "business": "business",
    "finance": "business",
    "entertainment": "entertainment",
    "general": "general",
    "health": "health",
    "politics": "nation",
    "science": "science",
    "sports": "sports",
    "technology": "technology",
}

GNEWS_MAX_PER_REQUEST = 10


class GNewsAdapter(ProviderAdapter):
    """Fetch from GNews top-headlines or search."""

    def select_endpoint(self, params: FetchParams) -> str:
        if params.query and len(self.config.endpoints) > 1:
            return self.config.endpoints[1]
        return self.config.endpoints[0]

    def build_request(self, endpoint: str, params: FetchParams) -> tuple[dict[str, Any], dict[str, str]]:
        query: dict[str, Any] = {
            "apikey": self.config.api_key,
            "lang": params.language,
            "max": min(params.page_size, GNEWS_MAX_PER_REQUEST),
            "country": "in" if params.scope == DOMESTIC else "us",
        }
        if params.query:
            query["q"] = params.query
        else:
            query["category"] = GNEWS_CATEGORY_MAP.get(params.category, "general")
        return query, {}

    def check_payload(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            raise ProviderTransient(self.name, "unexpected response body")
        errors = payload.get("errors")
        if errors:
            message = "; ".join(str(e) for e in errors) if isinstance(errors, list) else str(errors)
            raise ProviderPermanent(self.name, message)

    def extract_records(self, payload: Any) -> list[dict[str, Any]]:
        records = payload.get("articles")
        return records if isinstance(records, list) else []

    def normalize(self, record: dict[str, Any], params: FetchParams) -> CanonicalArticle | None:
        url = clean_text(record.get("url"))
        title = clean_text(record.get("title"))
        if not url or not title:
            return None

        source = record.get("source") if isinstance(record.get("source"), dict) else {}

        return CanonicalArticle(
            provider=self.name,
            external_id=make_external_id(record.get("id"), url),
            title=title,
            url=url,
            description=clean_text(record.get("description")),
            body=clean_text(record.get("content")),
            image_url=clean_text(record.get("image")),
            source_name=clean_text(source.get("name")),
            source_domain=domain_of(source.get("url") or url),
            category=params.category,
            published_at=parse_datetime(record.get("publishedAt")) or datetime.now(timezone.utc),
        )
