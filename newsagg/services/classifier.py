# newsagg/services/classifier.py
"""
Domestic vs global content classification using keyword heuristics.

Metadata wins when present (country code, .in domains); otherwise the title,
description and tags are matched against a keyword list of Indian places,
institutions, markets and sports.
"""

import re
from dataclasses import dataclass

from newsagg.schemas.article import CanonicalArticle
from newsagg.services.api_fetchers.base import DOMESTIC, GLOBAL


DOMESTIC_KEYWORDS = [
    # Places
    "india", "indian", "delhi", "new delhi", "mumbai", "bangalore", "bengaluru",
    "chennai", "kolkata", "hyderabad", "pune", "ahmedabad", "hindustan",
    # Politics & institutions
    "modi", "bjp", "congress", "lok sabha", "rajya sabha", "supreme court of india",
    "aadhaar", "gst", "rbi", "isro",
    # Markets & companies
    "rupee", "sensex", "nifty", "tata", "reliance", "infosys", "wipro",
    # Culture & sport
    "bollywood", "cricket", "ipl", "bcci",
]

_KEYWORD_PATTERN = re.compile(
    r"\b(" + "|".join(re.escape(k) for k in sorted(DOMESTIC_KEYWORDS, key=len, reverse=True)) + r")\b",
    re.IGNORECASE,
)

DOMESTIC_COUNTRY_CODES = {"in", "ind", "india"}


class DomesticClassifier:
    """Decide whether an article is domestic (Indian) content."""

    def __init__(self, keywords: list[str] | None = None):
        if keywords is None:
            self._pattern = _KEYWORD_PATTERN
        else:
            self._pattern = re.compile(
                r"\b(" + "|".join(re.escape(k) for k in sorted(keywords, key=len, reverse=True)) + r")\b",
                re.IGNORECASE,
            )

    def classify(self, article: CanonicalArticle) -> bool:
        if article.country:
            return article.country.strip().lower() in DOMESTIC_COUNTRY_CODES
        if article.source_domain and (article.source_domain.endswith(".in") or ".co.in" in article.source_domain):
            return True

        text = " ".join(filter(None, [article.title, article.description, " ".join(article.tags)]))
        return bool(self._pattern.search(text))

    def apply(self, articles: list[CanonicalArticle]) -> list[CanonicalArticle]:
        """Set is_domestic on each article in place."""
        for article in articles:
            article.is_domestic = self.classify(article)
        return articles


@dataclass
class ContentSplit:
    """Running domestic/global counts used to bias the next request's scope."""

    domestic: int = 0
    global_: int = 0

    def record(self, articles: list[CanonicalArticle]) -> None:
        for article in articles:
            if article.is_domestic:
                self.domestic += 1
            else:
                self.global_ += 1

    @property
    def total(self) -> int:
        return self.domestic + self.global_

    def domestic_ratio(self) -> float:
        return self.domestic / self.total if self.total else 0.0

    def preferred_scope(self, domestic_share: float) -> str:
        """
        Whichever side is under-represented against the target share.

        The share is a target, not a sub-cap: once one side runs dry the other
        simply keeps being requested.
        """
        if domestic_share <= 0.0:
            return GLOBAL
        if domestic_share >= 1.0:
            return DOMESTIC
        return DOMESTIC if self.domestic_ratio() < domestic_share else GLOBAL
