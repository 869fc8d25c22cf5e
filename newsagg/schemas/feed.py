# newsagg/schemas/feed.py
"""
Schemas for the feed endpoint.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class FeedArticle(BaseModel):
    """Article as served to clients."""

    id: str = Field(..., description="provider:external_id")
    provider: str
    title: str
    url: str
    description: str | None = None
    image_url: str | None = None
    source_name: str | None = None
    author: str | None = None
    category: str
    published_at: datetime
    is_domestic: bool
    tags: list[str] = Field(default_factory=list)


class FeedResponse(BaseModel):
    """One page of the feed."""

    status: str = Field(..., description="ok|empty")
    source: str = Field(..., description="live|cache|store")
    category: str
    query: str | None = None
    page: int
    limit: int
    count: int
    providers: list[str] = Field(default_factory=list)
    articles: list[FeedArticle] = Field(default_factory=list)
