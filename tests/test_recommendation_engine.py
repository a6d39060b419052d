"""
Unit tests for deterministic scoring.
"""
import asyncio

import pytest

from models import (
    HairProfile, IngredientSafety, Preferences, ReviewSummary, ScoreBreakdown,
    Sustainability,
)
from collaborators import IngredientSafetyService, KnowledgeBaseSafetyService
from recommendation_engine import (
    ScoringConfig, ScoringEngine, ScoringWeights, has_allergen_conflict, is_blacklisted,
    score_price_match, score_review_sentiment, score_sustainability, score_tag_match,
    weighted_total,
)


class FailingSafetyService(IngredientSafetyService):
    async def analyze(self, ingredient_names, allergens=()):
        raise RuntimeError('safety backend down')


class TestSubScores:
    """Test the individual sub-score functions."""

    def test_no_tags_is_neutral(self, make_record, curly_profile):
        assert score_tag_match(make_record(tags=[]), curly_profile) == 50

    def test_full_tag_match(self, catalog, curly_profile):
        assert score_tag_match(catalog[0], curly_profile) == 100

    def test_partial_tag_match(self, make_record, curly_profile):
        """Two of five profile attributes present."""
        record = make_record(tags=['curly-hair', 'anti-frizz'])
        assert score_tag_match(record, curly_profile) == pytest.approx(40)

    def test_price_inside_budget(self, make_record, curly_profile):
        assert score_price_match(make_record(price=20.0), curly_profile) == 100

    def test_price_below_and_above_budget(self, make_record, curly_profile):
        assert score_price_match(make_record(price=8.0), curly_profile) == 70
        above = score_price_match(make_record(price=60.0), curly_profile)
        assert above == pytest.approx(50 - 25 / 35 * 50)
        assert score_price_match(make_record(price=500.0), curly_profile) == 0

    def test_price_unknown_or_no_budget(self, make_record, curly_profile):
        assert score_price_match(make_record(price=None), curly_profile) == 50
        no_budget = HairProfile(hair_type='wavy', porosity='medium')
        assert score_price_match(make_record(price=20.0), no_budget) == 50

    def test_free_product_is_priced(self, make_record):
        """Price 0 is a real price, not a missing one."""
        profile = HairProfile(hair_type='wavy', porosity='medium', budget='low')
        assert score_price_match(make_record(price=0.0), profile) == 100

    def test_sustainability_uses_subrecord(self, make_record, curly_profile):
        record = make_record(sustainability=Sustainability(score=82))
        assert score_sustainability(record, curly_profile) == 82

    def test_sustainability_preference_fallback(self, make_record, curly_profile):
        record = make_record(tags=['vegan', 'cruelty-free'])
        assert score_sustainability(record, curly_profile) == 90

    def test_review_sentiment_mapping(self, make_record):
        assert score_review_sentiment(make_record()) == 50
        record = make_record(reviews=ReviewSummary(sentiment_score=0.5))
        assert score_review_sentiment(record) == 75
        record = make_record(reviews=ReviewSummary(sentiment_score=-1))
        assert score_review_sentiment(record) == 0


class TestWeights:
    """Test weighted aggregation."""

    def test_weights_must_sum_to_100(self):
        with pytest.raises(ValueError):
            ScoringWeights(tag_match=50)

    def test_weighted_total(self):
        breakdown = ScoreBreakdown(
            tag_match=100, sustainability=0, ingredient_safety=50,
            review_sentiment=100, price_match=0)
        assert weighted_total(breakdown) == pytest.approx(35 + 10 + 15)

    def test_custom_weights(self):
        weights = ScoringWeights(tag_match=100, sustainability=0, ingredient_safety=0,
                                 review_sentiment=0, price_match=0)
        breakdown = ScoreBreakdown(tag_match=42, sustainability=100, ingredient_safety=100,
                                   review_sentiment=100, price_match=100)
        assert weighted_total(breakdown, weights) == pytest.approx(42)


class TestHardFilters:
    """Test blacklist and allergen exclusion."""

    def test_brand_blacklist_is_case_insensitive_substring(self, make_record):
        assert is_blacklisted(make_record(brand='Cheapo Labs'), ['cheapo'])
        assert not is_blacklisted(make_record(brand='Acme'), ['cheapo'])
        assert not is_blacklisted(make_record(brand='Acme'), [])

    def test_allergen_conflict(self, make_record):
        record = make_record(ingredient_safety=IngredientSafety(
            score=60, allergen_matches=['fragrance']))
        assert has_allergen_conflict(record, ['Fragrance'])
        assert not has_allergen_conflict(record, ['lanolin'])
        assert not has_allergen_conflict(make_record(), ['fragrance'])

    def test_allergen_conflict_from_ingredient_names(self, make_record):
        record = make_record(ingredients=['Aqua', 'Glycerin'])
        assert record.ingredient_safety is None
        assert has_allergen_conflict(record, ['glycerin'])
        assert not has_allergen_conflict(record, ['  '])


class TestScoringEngine:
    """Test filtering, enrichment and ordering."""

    def test_scores_sorted_and_bounded(self, scoring_engine, catalog, curly_profile):
        scored = asyncio.run(scoring_engine.score_all(catalog, curly_profile))
        assert len(scored) == len(catalog)
        values = [s.deterministic_score for s in scored]
        assert values == sorted(values, reverse=True)
        assert all(0 <= v <= 100 for v in values)
        assert scored[0].product_id == 'p1'

    def test_enrichment_fills_safety_and_reviews(self, scoring_engine, catalog, curly_profile):
        scored = asyncio.run(scoring_engine.score_all(catalog, curly_profile))
        for s in scored:
            assert s.record.ingredient_safety is not None
            assert s.record.reviews is not None
            assert s.compatibility is not None

    def test_inputs_not_mutated(self, scoring_engine, catalog, curly_profile):
        asyncio.run(scoring_engine.score_all(catalog, curly_profile))
        assert all(r.ingredient_safety is None for r in catalog)

    def test_allergen_records_excluded(self, scoring_engine, catalog):
        profile = HairProfile(hair_type='curly', porosity='low', allergens=['fragrance'])
        scored = asyncio.run(scoring_engine.score_all(catalog, profile))
        assert 'p2' not in [s.product_id for s in scored]

    def test_blacklisted_brand_excluded(self, catalog, curly_profile):
        engine = ScoringEngine(config=ScoringConfig(blacklisted_brands=('lux',)))
        scored = asyncio.run(engine.score_all(catalog, curly_profile))
        assert 'p4' not in [s.product_id for s in scored]
        assert len(scored) == 3

    def test_low_porosity_coconut_gets_warning(self, scoring_engine, catalog, curly_profile):
        scored = asyncio.run(scoring_engine.score_all(catalog, curly_profile))
        mask = next(s for s in scored if s.product_id == 'p3')
        assert mask.compatibility.adjustment < 0
        assert any('low-porosity' in w for w in mask.compatibility.warnings)

    def test_collaborator_failure_is_counted_not_raised(self, make_record, curly_profile):
        engine = ScoringEngine(safety_service=FailingSafetyService())
        record = make_record()
        enriched, failures = asyncio.run(engine.enrich_counting_failures(record, curly_profile))
        assert failures == 1
        assert enriched.ingredient_safety is None

    def test_existing_enrichment_is_kept(self, make_record, curly_profile):
        engine = ScoringEngine(safety_service=KnowledgeBaseSafetyService())
        record = make_record(ingredient_safety=IngredientSafety(score=99))
        enriched = asyncio.run(engine.enrich_missing(record, curly_profile))
        assert enriched.ingredient_safety.score == 99

    def test_without_collaborators_everything_neutral(self, make_record):
        profile = HairProfile(hair_type='straight', porosity='medium',
                              preferences=Preferences())
        record = make_record(tags=[], price=None)
        scored = ScoringEngine().score_record(record, profile)
        assert scored.deterministic_score == pytest.approx(50)
        assert scored.compatibility is None
