# tests/unit/test_deduper.py
"""
Unit tests for deduplication.

Tests the title/time duplicate rule, survivor choice, order independence,
idempotence and ambiguous-pair reporting.
"""

import random
from datetime import timedelta

import pytest

from newsagg.config import Settings
from newsagg.services.deduper import Deduper, DedupPolicy
from tests.factories import FIXED_NOW, make_article

GOVT = "Govt announces new policy today"
GOVERNMENT = "Government announces new policy today"


@pytest.fixture
def deduper():
    priorities = {"alpha": 1, "beta": 2, "gamma": 3}
    return Deduper(DedupPolicy(threshold=0.8, window_minutes=60), priority_of=priorities.get)


def _keys(articles):
    return sorted(a.key for a in articles)


class TestTextNormalization:
    """Tests for normalization helpers."""

    def test_normalize_text(self):
        assert Deduper.normalize_text("  Hello,   WORLD!  ") == "hello world"
        assert Deduper.normalize_text(None) == ""

    def test_normalize_url_drops_tracking_and_www(self):
        a = Deduper.normalize_url("https://www.Example.com/story/?utm_source=x&id=7#top")
        b = Deduper.normalize_url("http://example.com/story?id=7&fbclid=abc")
        assert a == b

    def test_title_similarity_symmetric(self):
        assert Deduper.title_similarity(GOVT, GOVERNMENT) == Deduper.title_similarity(GOVERNMENT, GOVT)
        assert Deduper.title_similarity(GOVT, GOVERNMENT) == pytest.approx(0.8)

    def test_title_similarity_bounds(self):
        assert Deduper.title_similarity("same words here", "Same words here!") == 1.0
        assert Deduper.title_similarity("alpha beta", "gamma delta") == 0.0
        assert Deduper.title_similarity("", "anything") == 0.0

    def test_hash_title_ignores_case_and_punctuation(self):
        assert Deduper.hash_title("Breaking: Rain!") == Deduper.hash_title("breaking rain")


class TestDuplicateRule:
    """Duplicate requires both the time window and title similarity."""

    def test_similar_titles_within_window_keep_one(self, deduper):
        articles = [
            make_article("alpha", "1", GOVT, published_at=FIXED_NOW),
            make_article("beta", "2", GOVERNMENT, published_at=FIXED_NOW + timedelta(minutes=10)),
        ]
        result = deduper.dedupe(articles)
        assert len(result) == 1

    def test_similar_titles_outside_window_keep_both(self, deduper):
        articles = [
            make_article("alpha", "1", GOVT, published_at=FIXED_NOW),
            make_article("beta", "2", GOVERNMENT, published_at=FIXED_NOW + timedelta(hours=3)),
        ]
        assert len(deduper.dedupe(articles)) == 2

    def test_different_titles_within_window_keep_both(self, deduper):
        articles = [
            make_article("alpha", "1", "Monsoon arrives early in Kerala"),
            make_article("beta", "2", "Sensex closes at record high"),
        ]
        assert len(deduper.dedupe(articles)) == 2

    def test_same_key_is_duplicate(self, deduper):
        articles = [
            make_article("alpha", "1", "Completely different headline"),
            make_article("alpha", "1", "Another wording entirely", published_at=FIXED_NOW + timedelta(hours=5)),
        ]
        assert len(deduper.dedupe(articles)) == 1

    def test_same_url_within_window_is_duplicate(self, deduper):
        articles = [
            make_article("alpha", "1", "Rain lashes Mumbai", url="https://www.example.com/rain?utm_source=a"),
            make_article("beta", "9", "Heavy showers in city", url="https://example.com/rain"),
        ]
        assert len(deduper.dedupe(articles)) == 1

    def test_empty_input(self, deduper):
        assert deduper.dedupe([]) == []


class TestSurvivorChoice:
    def test_higher_priority_provider_survives(self, deduper):
        articles = [
            make_article("beta", "2", GOVERNMENT, body="much longer body text " * 10),
            make_article("alpha", "1", GOVT),
        ]
        [survivor] = deduper.dedupe(articles)
        assert survivor.provider == "alpha"

    def test_richer_content_wins_within_same_provider(self, deduper):
        articles = [
            make_article("alpha", "1", GOVT),
            make_article("alpha", "2", GOVERNMENT, body="Full story body", image_url="https://img/1.jpg"),
        ]
        [survivor] = deduper.dedupe(articles)
        assert survivor.external_id == "2"

    def test_fingerprint_assigned(self, deduper):
        [survivor] = deduper.dedupe([make_article("alpha", "1", GOVT)])
        assert survivor.fingerprint is not None
        assert survivor.fingerprint.startswith(Deduper.hash_title(GOVT)[:32])


class TestDedupProperties:
    """Order independence, idempotence and subset properties."""

    @pytest.fixture
    def mixed(self):
        return [
            make_article("alpha", "1", GOVT, published_at=FIXED_NOW),
            make_article("beta", "2", GOVERNMENT, published_at=FIXED_NOW + timedelta(minutes=10)),
            make_article("gamma", "3", GOVT, published_at=FIXED_NOW + timedelta(minutes=30)),
            make_article("beta", "4", "Sensex closes at record high"),
            make_article("gamma", "5", "Sensex closes at a record high", published_at=FIXED_NOW + timedelta(hours=4)),
            make_article("alpha", "6", "ISRO schedules next lunar mission"),
        ]

    def test_order_independent(self, deduper, mixed):
        expected = _keys(deduper.dedupe(list(mixed)))
        rng = random.Random(7)
        for _ in range(10):
            shuffled = list(mixed)
            rng.shuffle(shuffled)
            assert _keys(deduper.dedupe(shuffled)) == expected

    def test_idempotent(self, deduper, mixed):
        once = deduper.dedupe(list(mixed))
        twice = deduper.dedupe(list(once))
        assert _keys(once) == _keys(twice)

    def test_output_is_subset_of_input(self, deduper, mixed):
        result = deduper.dedupe(list(mixed))
        assert set(_keys(result)) <= set(_keys(mixed))
        assert len(result) == 4


class TestAmbiguousPairs:
    def test_near_threshold_pair_reported_and_kept(self):
        deduper = Deduper(DedupPolicy(threshold=0.8, ambiguity_margin=0.1))
        articles = [
            # 3 of 4 words shared: 0.75, inside [0.7, 0.8)
            make_article("alpha", "1", "Floods hit Assam villages"),
            make_article("beta", "2", "Floods hit Assam towns"),
        ]
        report = deduper.dedupe_with_report(articles)

        assert len(report.articles) == 2
        assert report.removed == 0
        assert len(report.ambiguous) == 1
        assert report.ambiguous[0].score == pytest.approx(0.75)

    def test_default_band_is_a_tenth_below_threshold(self):
        policy = DedupPolicy()
        assert policy.threshold - policy.ambiguity_margin == pytest.approx(0.7)

        report = Deduper(policy).dedupe_with_report(
            [
                make_article("alpha", "1", "Floods hit Assam villages"),
                make_article("beta", "2", "Floods hit Assam towns"),
            ]
        )
        assert len(report.ambiguous) == 1
        assert Settings.model_fields["DEDUP_AMBIGUITY_MARGIN"].default == policy.ambiguity_margin

    def test_stats(self, deduper):
        deduper.dedupe(
            [
                make_article("alpha", "1", GOVT),
                make_article("beta", "2", GOVERNMENT),
            ]
        )
        stats = deduper.stats()
        assert stats["runs"] == 1
        assert stats["processed"] == 2
        assert stats["removed"] == 1
        assert stats["removal_rate"] == 0.5
