# tests/unit/test_domestic_classifier.py
"""
Unit tests for domestic/global classification and the running content split.
"""

import pytest

from newsagg.services.api_fetchers.base import DOMESTIC, GLOBAL
from newsagg.services.classifier import ContentSplit, DomesticClassifier
from tests.factories import make_article


class TestDomesticClassifier:
    """Tests for DomesticClassifier.classify."""

    @pytest.fixture
    def classifier(self):
        return DomesticClassifier()

    def test_country_code_wins(self, classifier):
        assert classifier.classify(make_article(title="Cricket final tonight", country="us")) is False
        assert classifier.classify(make_article(title="Wall Street slips", country="IN")) is True

    def test_indian_domain(self, classifier):
        article = make_article(title="Local elections update", source_domain="timesofindia.co.in")
        assert classifier.classify(article) is True

    @pytest.mark.parametrize(
        "title",
        ["Sensex jumps 500 points", "Monsoon session of Lok Sabha begins", "ISRO readies Chandrayaan", "RBI keeps rates"],
    )
    def test_keyword_match(self, classifier, title):
        assert classifier.classify(make_article(title=title)) is True

    def test_keyword_requires_word_boundary(self, classifier):
        # "indiana" must not match "india"
        assert classifier.classify(make_article(title="Indiana wins in overtime")) is False

    def test_tags_and_description_checked(self, classifier):
        assert classifier.classify(make_article(title="Markets update", tags=["nifty"])) is True
        assert classifier.classify(make_article(title="Markets update", description="The rupee weakened")) is True

    def test_global_story(self, classifier):
        assert classifier.classify(make_article(title="EU agrees climate package")) is False

    def test_custom_keywords(self):
        classifier = DomesticClassifier(keywords=["brazil"])
        assert classifier.classify(make_article(title="Brazil cuts rates")) is True
        assert classifier.classify(make_article(title="Sensex jumps")) is False

    def test_apply_sets_flag(self, classifier):
        articles = [make_article(external_id="1", title="Sensex jumps"), make_article(external_id="2", title="EU vote")]
        classifier.apply(articles)
        assert [a.is_domestic for a in articles] == [True, False]


class TestContentSplit:
    """Tests for the domestic share target."""

    def test_empty_split_prefers_domestic(self):
        assert ContentSplit().preferred_scope(0.75) == DOMESTIC

    def test_under_represented_side_preferred(self):
        split = ContentSplit(domestic=3, global_=1)
        assert split.domestic_ratio() == 0.75
        assert split.preferred_scope(0.8) == DOMESTIC
        assert split.preferred_scope(0.6) == GLOBAL

    def test_extreme_shares(self):
        split = ContentSplit(domestic=0, global_=10)
        assert split.preferred_scope(0.0) == GLOBAL
        assert split.preferred_scope(1.0) == DOMESTIC

    def test_record(self):
        split = ContentSplit()
        articles = [make_article(external_id="1", is_domestic=True), make_article(external_id="2")]
        split.record(articles)
        assert (split.domestic, split.global_, split.total) == (1, 1, 2)
