# newsagg/services/deduper.py
"""
Near-duplicate suppression across providers.

Two articles are duplicates when BOTH hold:
1. Their publish times are within the dedup window (default 1 hour)
2. Their normalized titles score >= threshold (default 0.8) on token-set overlap

Identical canonical URLs inside the window also count as the same story.

Survivor choice is a greedy pass over candidates sorted by a total key
(provider priority, then richer content), so the result does not depend on
input order and running it twice changes nothing.
"""

import hashlib
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from newsagg.schemas.article import CanonicalArticle
from newsagg.services.errors import DedupAmbiguous

logger = logging.getLogger(__name__)

TRACKING_PARAMS = ("utm_", "fbclid", "gclid", "ref", "cmpid", "ocid")


@dataclass(frozen=True)
class DedupPolicy:
    threshold: float = 0.8
    window_minutes: int = 60
    ambiguity_margin: float = 0.1

    @property
    def window(self) -> timedelta:
        return timedelta(minutes=self.window_minutes)


@dataclass
class DedupResult:
    articles: list[CanonicalArticle]
    removed: int = 0
    ambiguous: list[DedupAmbiguous] = field(default_factory=list)


@dataclass
class _Candidate:
    article: CanonicalArticle
    tokens: frozenset[str]
    url: str
    published_at: datetime


class Deduper:
    """Deduplication engine."""

    def __init__(
        self,
        policy: DedupPolicy | None = None,
        priority_of: Callable[[str], int] | None = None,
    ):
        self.policy = policy or DedupPolicy()
        self._priority_of = priority_of or (lambda provider: 0)
        self._processed = 0
        self._removed = 0
        self._ambiguous = 0
        self._runs = 0

    # -- normalization -------------------------------------------------------

    @staticmethod
    def normalize_text(text: str | None) -> str:
        """Normalize text for comparison."""
        if not text:
            return ""
        # Lowercase
        text = text.lower()
        # Remove punctuation
        text = re.sub(r"[^\w\s]", "", text)
        # Collapse whitespace
        text = re.sub(r"\s+", " ", text).strip()
        return text

    @staticmethod
    def normalize_url(url: str | None) -> str:
        """Lowercase host, drop www, fragment, tracking params and trailing slash."""
        if not url:
            return ""
        parsed = urlparse(url.strip())
        host = parsed.netloc.lower()
        if host.startswith("www."):
            host = host[4:]
        query = [
            (k, v)
            for k, v in parse_qsl(parsed.query, keep_blank_values=True)
            if not k.lower().startswith(TRACKING_PARAMS)
        ]
        path = parsed.path.rstrip("/") or "/"
        return urlunparse(("", host, path, "", urlencode(sorted(query)), ""))

    @staticmethod
    def title_similarity(text1: str | None, text2: str | None) -> float:
        """
        Token-set overlap coefficient: |A & B| / min(|A|, |B|).

        Symmetric, within [0, 1], and tolerant of one title carrying a few
        extra words.
        """
        words1 = set(Deduper.normalize_text(text1).split())
        words2 = set(Deduper.normalize_text(text2).split())
        return Deduper._overlap(words1, words2)

    @staticmethod
    def _overlap(words1: set[str] | frozenset[str], words2: set[str] | frozenset[str]) -> float:
        if not words1 or not words2:
            return 0.0
        return len(words1 & words2) / min(len(words1), len(words2))

    @staticmethod
    def hash_title(title: str | None) -> str:
        """SHA256 of the normalized title."""
        return hashlib.sha256(Deduper.normalize_text(title).encode("utf-8")).hexdigest()

    def fingerprint(self, article: CanonicalArticle) -> str:
        """Normalized-title hash plus publish-time bucket."""
        window_seconds = int(self.policy.window.total_seconds())
        bucket = int(_as_utc(article.published_at).timestamp()) // window_seconds
        return f"{self.hash_title(article.title)[:32]}:{bucket}"

    # -- dedupe --------------------------------------------------------------

    def _sort_key(self, article: CanonicalArticle) -> tuple:
        return (
            self._priority_of(article.provider),
            -len(article.body or ""),
            0 if article.image_url else 1,
            -len(article.description or ""),
            article.provider,
            article.external_id,
        )

    def _compare(self, candidate: _Candidate, kept: _Candidate) -> tuple[bool, float]:
        """(is_duplicate, similarity) for two candidates."""
        if candidate.article.key == kept.article.key:
            return True, 1.0
        if abs(candidate.published_at - kept.published_at) > self.policy.window:
            return False, 0.0
        if candidate.url and candidate.url == kept.url:
            return True, 1.0
        score = self._overlap(candidate.tokens, kept.tokens)
        return score >= self.policy.threshold, score

    def dedupe_with_report(self, articles: list[CanonicalArticle]) -> DedupResult:
        """Deduplicate and report what was removed or looked ambiguous."""
        candidates = [
            _Candidate(
                article=a,
                tokens=frozenset(self.normalize_text(a.title).split()),
                url=self.normalize_url(a.url),
                published_at=_as_utc(a.published_at),
            )
            for a in sorted(articles, key=self._sort_key)
        ]

        kept: list[_Candidate] = []
        ambiguous: list[DedupAmbiguous] = []
        floor = self.policy.threshold - self.policy.ambiguity_margin

        for candidate in candidates:
            duplicate = False
            near: list[tuple[_Candidate, float]] = []
            for survivor in kept:
                is_dup, score = self._compare(candidate, survivor)
                if is_dup:
                    duplicate = True
                    break
                if floor <= score < self.policy.threshold:
                    near.append((survivor, score))
            if duplicate:
                continue
            kept.append(candidate)
            for survivor, score in near:
                ambiguous.append(
                    DedupAmbiguous(
                        kept=f"{survivor.article.provider}:{survivor.article.external_id}",
                        other=f"{candidate.article.provider}:{candidate.article.external_id}",
                        score=round(score, 4),
                    )
                )

        for item in ambiguous:
            logger.info(
                f"Ambiguous duplicate kept: {item.kept} ~ {item.other} (score {item.score})",
                extra={"event": "dedup_ambiguous"},
            )

        survivors = [c.article for c in kept]
        for article in survivors:
            article.fingerprint = self.fingerprint(article)

        removed = len(articles) - len(survivors)
        self._runs += 1
        self._processed += len(articles)
        self._removed += removed
        self._ambiguous += len(ambiguous)

        return DedupResult(articles=survivors, removed=removed, ambiguous=ambiguous)

    def dedupe(self, articles: list[CanonicalArticle]) -> list[CanonicalArticle]:
        return self.dedupe_with_report(articles).articles

    def stats(self) -> dict:
        return {
            "runs": self._runs,
            "processed": self._processed,
            "removed": self._removed,
            "ambiguous": self._ambiguous,
            "removal_rate": round(self._removed / self._processed, 4) if self._processed else 0.0,
        }


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
