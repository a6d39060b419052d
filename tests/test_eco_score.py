"""
Unit tests for the sustainability scorer.
"""
import pytest

from models import Sustainability
from eco_score import (
    DEFAULT_ECO_KEYWORDS, NO_NEGATIVES, NO_POSITIVES, NO_REASONING, EcoScorer, grade_for,
)


@pytest.fixture
def scorer():
    return EcoScorer()


class TestGrades:
    """Test score → letter grade mapping."""

    @pytest.mark.parametrize('score,grade', [
        (100, 'A+'), (90, 'A+'), (89, 'A'), (85, 'A'), (80, 'B+'), (70, 'B'),
        (60, 'C+'), (50, 'C'), (40, 'D'), (39, 'F'), (0, 'F'),
    ])
    def test_thresholds(self, score, grade):
        assert grade_for(score) == grade


class TestEcoScore:
    """Test the additive sustainability score."""

    def test_empty_record_is_neutral(self, scorer, make_record):
        result = scorer.score(make_record(ingredients=[], tags=[]))
        assert result.score == 50
        assert result.grade == 'C'
        assert result.reasoning == [NO_REASONING]
        assert result.positive_factors == [NO_POSITIVES]
        assert result.negative_factors == [NO_NEGATIVES]

    def test_sulfate_formula_scores_below_organic_aloe(self, scorer, make_record):
        """An untagged SLS formula is strictly worse than an organic aloe one."""
        sls = scorer.score(make_record(ingredients=['Aqua', 'Sodium Lauryl Sulfate'], tags=[]))
        aloe = scorer.score(make_record(ingredients=['Aqua', 'Aloe Vera'], tags=['organic']))
        assert sls.score < aloe.score
        assert sls.score == 37
        assert aloe.score == 70
        assert any('harmful' in f for f in sls.negative_factors)
        assert 'Organic certified' in aloe.positive_factors

    def test_harmful_penalty_is_capped(self, scorer, make_record):
        ingredients = ['Sodium Lauryl Sulfate', 'Methylparaben', 'Formaldehyde',
                       'Triclosan', 'Phthalate', 'DMDM Hydantoin']
        result = scorer.score(make_record(ingredients=ingredients, tags=[]))
        assert any('Deducted 30 points for harmful' in r for r in result.reasoning)

    def test_microplastics(self, scorer, make_record):
        result = scorer.score(make_record(ingredients=['Polyethylene'], tags=[]))
        assert result.score == 30
        assert 'May contain microplastics' in result.negative_factors

    def test_eco_tag_matches_substring(self, scorer, make_record):
        result = scorer.score(make_record(ingredients=[], tags=['eco-friendly']))
        assert result.score == 60

    def test_score_is_bounded(self, scorer, make_record):
        """Every tag bonus at once still caps at 100."""
        tags = [t for tb in DEFAULT_ECO_KEYWORDS.tag_bonuses for t in tb.tags]
        result = scorer.score(make_record(
            ingredients=['Aqua', 'Aloe', 'Coconut Oil', 'Argan Oil', 'Shea', 'Jojoba'], tags=tags))
        assert result.score == 100
        assert result.grade == 'A+'

    def test_recommendations_follow_score_band(self, scorer, make_record):
        low = scorer.score(make_record(ingredients=['Sodium Lauryl Sulfate', 'Paraben'], tags=[]))
        assert any('sulfates' in r for r in low.recommendations)
        high = scorer.score(make_record(ingredients=['Aqua'], tags=['organic', 'vegan', 'recyclable']))
        assert 'Excellent eco-friendly choice!' in high.recommendations


class TestEnrich:
    """Test sustainability sub-record attachment."""

    def test_enrich_attaches_subrecord(self, scorer, make_record):
        record = make_record(ingredients=['Aqua', 'Aloe Vera'], tags=['organic'])
        enriched = scorer.enrich(record)
        assert record.sustainability is None
        assert enriched.sustainability.score == 70
        assert enriched.sustainability.grade == 'B'
        assert 'Organic certified' in enriched.sustainability.certifications
        assert NO_NEGATIVES not in enriched.sustainability.negative_factors

    def test_existing_subrecord_is_kept(self, scorer, make_record):
        existing = Sustainability(score=12, grade='F')
        record = make_record(sustainability=existing)
        assert scorer.enrich(record) is record
