# newsagg/services/api_fetchers/newsdata_fetcher.py
"""
NewsData.io adapter.

NewsData.io returns `{"status": "success", "results": [...]}`; errors come
back either as HTTP status codes or as `{"status": "error", "results":
{"code": ..., "message": ...}}` with a 200.

API Documentation: https://newsdata.io/documentation
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


# Canonical categories -> NewsData.io categories
NEWSDATA_CATEGORY_MAP = {
    "breaking": "top",
    "business": "business",
    "finance": "business",
    "entertainment": "entertainment",
    "general": "top",
    "health": "health",
    "politics": "politics",
    "science": "science",
    "sports": "sports",
    "technology": "technology",
}

# Error codes that clear up on their own
NEWSDATA_TRANSIENT_CODES = {"RateLimitExceeded", "TooManyRequests", "ServerError", "InternalServerError"}

NEWSDATA_DATE_FORMATS = ("%Y-%m-%d %H:%M:%S",)
GLOBAL_COUNTRIES = "us,gb,au,ca"


class NewsDataAdapter(ProviderAdapter):
    """
    Fetch articles from NewsData.io `/latest`.

    Free plan: 200 credits/day, 10 results per credit.
    """

    DEFAULT_PAGE_SIZE = 10  # free plan max per request

    def build_request(self, endpoint: str, params: FetchParams) -> tuple[dict[str, Any], dict[str, str]]:
        query: dict[str, Any] = {
            "apikey": self.config.api_key,
            "language": params.language,
            "size": min(params.page_size, self.DEFAULT_PAGE_SIZE),
            "country": "in" if params.scope == DOMESTIC else GLOBAL_COUNTRIES,
        }
        category = NEWSDATA_CATEGORY_MAP.get(params.category)
        if category:
            query["category"] = category
        if params.query:
            query["q"] = params.query
        return query, {}

    def check_payload(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            raise ProviderTransient(self.name, "unexpected response body")
        if payload.get("status") == "success":
            return
        results = payload.get("results")
        code = results.get("code") if isinstance(results, dict) else None
        message = results.get("message", "Unknown error") if isinstance(results, dict) else "Unknown error"
        if code in NEWSDATA_TRANSIENT_CODES:
            raise ProviderTransient(self.name, f"{code}: {message}")
        raise ProviderPermanent(self.name, f"{code or 'error'}: {message}")

    def extract_records(self, payload: Any) -> list[dict[str, Any]]:
        results = payload.get("results")
        return results if isinstance(results, list) else []

    def normalize(self, record: dict[str, Any], params: FetchParams) -> CanonicalArticle | None:
        url = clean_text(record.get("link"))
        title = clean_text(record.get("title"))
        if not url or not title:
            return None

        # Author can be a list
        creator = record.get("creator")
        if isinstance(creator, list) and creator:
            author = clean_text(creator[0])
        else:
            author = clean_text(creator)

        country = record.get("country")
        if isinstance(country, list):
            country = country[0] if country else None

        keywords = record.get("keywords") or []
        if not isinstance(keywords, list):
            keywords = []

        return CanonicalArticle(
            provider=self.name,
            external_id=make_external_id(record.get("article_id"), url),
            title=title,
            url=url,
            description=clean_text(record.get("description")),
            body=clean_text(record.get("full_content")) or clean_text(record.get("content")),
            image_url=clean_text(record.get("image_url")),
            source_name=clean_text(record.get("source_name")) or clean_text(record.get("source_id")),
            source_domain=domain_of(record.get("source_url") or url),
            author=author,
            category=params.category,
            country=_country_code(country),
            published_at=parse_datetime(record.get("pubDate"), NEWSDATA_DATE_FORMATS) or datetime.now(timezone.utc),
            tags=[str(k) for k in keywords if k],
        )


def _country_code(value: Any) -> str | None:
    """NewsData reports full names ("india"); keep ISO codes as-is."""
    if not isinstance(value, str) or not value:
        return None
    value = value.strip().lower()
    return "in" if value == "india" else value[:8]
