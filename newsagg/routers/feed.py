# newsagg/routers/feed.py
"""
Feed endpoint.

GET /v1/feed - One page of aggregated articles for a category or query
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from newsagg.runtime import NewsRuntime, get_runtime
from newsagg.schemas.article import CanonicalArticle
from newsagg.schemas.feed import FeedArticle, FeedResponse
from newsagg.services.errors import ExhaustedError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["feed"])


def _to_feed_article(article: CanonicalArticle) -> FeedArticle:
    return FeedArticle(
        id=f"{article.provider}:{article.external_id}",
        provider=article.provider,
        title=article.title,
        url=article.url,
        description=article.description,
        image_url=article.image_url,
        source_name=article.source_name,
        author=article.author,
        category=article.category,
        published_at=article.published_at,
        is_domestic=article.is_domestic,
        tags=article.tags,
    )


@router.get("/feed", response_model=FeedResponse)
async def get_feed(
    category: str = Query("general", min_length=1, max_length=32, description="Content category"),
    q: str | None = Query(None, max_length=200, description="Free-text query"),
    page: int = Query(1, ge=1, le=50),
    limit: int = Query(20, ge=1, le=100),
    runtime: NewsRuntime = Depends(get_runtime),
) -> FeedResponse:
    """
    Serve a feed page.

    Cached pages are returned directly; a miss runs one aggregation per
    signature. When every provider is starved the persisted articles are
    served instead, and 503 is returned only if there are none.
    """
    try:
        feed = await runtime.feed.get_feed(category, query=q, page=page, limit=limit)
    except ExhaustedError as e:
        raise HTTPException(
            status_code=503,
            detail={
                "error": "providers_exhausted",
                "message": "All news providers are out of quota or unavailable; no stored articles to serve",
                "providers": {name: o.status for name, o in e.batch.provenance.items()},
            },
        )

    return FeedResponse(
        status=feed.status.value,
        source=feed.source,
        category=feed.category,
        query=feed.query,
        page=feed.page,
        limit=feed.limit,
        count=len(feed.articles),
        providers=feed.providers,
        articles=[_to_feed_article(a) for a in feed.articles],
    )
