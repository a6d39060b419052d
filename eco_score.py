"""
Hair Care Recommender — Eco / Sustainability Scorer
eco_score.py

Derives a 0-100 sustainability score and letter grade from a record's
ingredient list and catalog tags. Pure; never raises on a valid record.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field

from models import CatalogRecord, EcoScoreResult, Sustainability

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TagBonus:
    """A fixed bonus applied when any of ``tags`` appears on the record."""
    tags: tuple[str, ...]
    points: int
    factor: str
    reason: str
    substring: bool = False   # match inside tags instead of exact tag equality


@dataclass(frozen=True)
class EcoKeywords:
    harmful: tuple[str, ...] = (
        'sodium lauryl sulfate', 'sodium laureth sulfate', 'ammonium lauryl sulfate',
        'sulfate', 'paraben', 'methylparaben', 'propylparaben', 'butylparaben',
        'ethylparaben', 'formaldehyde', 'dmdm hydantoin', 'imidazolidinyl urea',
        'diazolidinyl urea', 'phthalate', 'triclosan', 'diethanolamine',
        'triethanolamine', 'cocamide dea',
    )
    natural: tuple[str, ...] = (
        'aloe', 'coconut', 'argan', 'jojoba', 'shea', 'avocado', 'olive',
        'chamomile', 'lavender', 'rosemary', 'tea tree', 'eucalyptus', 'honey',
        'beeswax', 'glycerin', 'vitamin e', 'vitamin c', 'botanical', 'extract', 'oil',
    )
    preservatives: tuple[str, ...] = (
        'methylparaben', 'propylparaben', 'butylparaben', 'ethylparaben',
        'phenoxyethanol', 'benzyl alcohol', 'potassium sorbate', 'sodium benzoate',
    )
    microplastics: tuple[str, ...] = (
        'polyethylene', 'polypropylene', 'polystyrene', 'nylon', 'polyester', 'acrylates',
    )
    water: tuple[str, ...] = ('water', 'aqua')
    tag_bonuses: tuple[TagBonus, ...] = field(default_factory=lambda: (
        TagBonus(('eco', 'green'), 10, 'Eco-friendly certified or labeled',
                 'eco-friendly certification', substring=True),
        TagBonus(('organic',), 15, 'Organic certified', 'organic certification'),
        TagBonus(('cruelty-free', 'not-tested-on-animals'), 10,
                 'Cruelty-free (not tested on animals)', 'cruelty-free certification'),
        TagBonus(('vegan',), 5, 'Vegan (no animal-derived ingredients)', 'vegan certification'),
        TagBonus(('recyclable', 'recycled-packaging'), 10,
                 'Recyclable or recycled packaging', 'sustainable packaging'),
        TagBonus(('plant-based', 'botanical'), 8, 'Plant-based ingredients',
                 'plant-based formulation'),
        TagBonus(('fair-trade', 'ethical'), 10, 'Fair-trade or ethically sourced',
                 'fair-trade practices'),
        TagBonus(('local', 'small-batch', 'artisan'), 5, 'Local or small-batch production',
                 'supporting local/small businesses'),
        TagBonus(('biodegradable',), 8, 'Biodegradable formulation', 'biodegradable ingredients'),
    ))

    harmful_cap: int = 30
    harmful_each: int = 8
    natural_cap: int = 20
    natural_each: int = 2
    preservative_cap: int = 15
    preservative_each: int = 5
    microplastic_penalty: int = 20
    water_first_bonus: int = 3


DEFAULT_ECO_KEYWORDS = EcoKeywords()

GRADE_THRESHOLDS: list[tuple[int, str]] = [
    (90, 'A+'), (85, 'A'), (80, 'B+'), (70, 'B'),
    (60, 'C+'), (50, 'C'), (40, 'D'),
]

NO_REASONING = 'Standard product with no specific sustainability certifications'
NO_POSITIVES = 'No specific positive factors identified'
NO_NEGATIVES = 'No major concerns identified'


def grade_for(score: float) -> str:
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return 'F'


def _matching_keywords(ingredients: list[str], keywords: tuple[str, ...]) -> list[str]:
    """Keywords (in list order) that occur inside at least one ingredient."""
    return [k for k in keywords if any(k in ing for ing in ingredients)]


class EcoScorer:

    def __init__(self, keywords: EcoKeywords = DEFAULT_ECO_KEYWORDS):
        self.keywords = keywords

    def score(self, record: CatalogRecord) -> EcoScoreResult:
        kw = self.keywords
        ingredients = [i.lower() for i in record.ingredients if i and i.strip()]
        tags = [t.lower() for t in record.tags]

        score = 50
        positives: list[str] = []
        negatives: list[str] = []
        reasoning: list[str] = []

        harmful = _matching_keywords(ingredients, kw.harmful)
        if harmful:
            penalty = min(kw.harmful_cap, len(harmful) * kw.harmful_each)
            score -= penalty
            negatives.append(
                f"Contains {len(harmful)} potentially harmful chemical(s): {', '.join(harmful[:3])}")
            reasoning.append(f"Deducted {penalty} points for harmful chemicals")

        natural = _matching_keywords(ingredients, kw.natural)
        if natural:
            bonus = min(kw.natural_cap, len(natural) * kw.natural_each)
            score += bonus
            positives.append(f"Contains {len(natural)} natural/organic ingredient(s)")
            reasoning.append(f"Added {bonus} points for natural ingredients")

        for tb in kw.tag_bonuses:
            if self._tag_hit(tags, tb):
                score += tb.points
                positives.append(tb.factor)
                reasoning.append(f"Added {tb.points} points for {tb.reason}")

        preservatives = _matching_keywords(ingredients, kw.preservatives)
        if preservatives:
            penalty = min(kw.preservative_cap, len(preservatives) * kw.preservative_each)
            score -= penalty
            negatives.append(f"Contains synthetic preservatives: {', '.join(preservatives[:2])}")
            reasoning.append(f"Deducted {penalty} points for synthetic preservatives")

        if _matching_keywords(ingredients, kw.microplastics):
            score -= kw.microplastic_penalty
            negatives.append('May contain microplastics')
            reasoning.append(f"Deducted {kw.microplastic_penalty} points for potential microplastics")

        if ingredients and any(w in ingredients[0] for w in kw.water):
            score += kw.water_first_bonus
            reasoning.append(
                f"Added {kw.water_first_bonus} points for water-based formulation")

        score = int(round(max(0, min(100, score))))

        return EcoScoreResult(
            score=score,
            grade=grade_for(score),
            reasoning=reasoning or [NO_REASONING],
            positive_factors=positives or [NO_POSITIVES],
            negative_factors=negatives or [NO_NEGATIVES],
            recommendations=self._recommendations(score, positives, negatives),
        )

    def to_sustainability(self, result: EcoScoreResult) -> Sustainability:
        """Convert a score into the sub-record attached to a catalog record during enrichment."""
        certifications = [
            tb.factor for tb in self.keywords.tag_bonuses if tb.factor in result.positive_factors
        ]
        return Sustainability(
            score=result.score,
            grade=result.grade,
            certifications=certifications,
            positive_factors=[f for f in result.positive_factors if f != NO_POSITIVES],
            negative_factors=[f for f in result.negative_factors if f != NO_NEGATIVES],
            explanation='; '.join(result.reasoning),
        )

    def enrich(self, record: CatalogRecord) -> CatalogRecord:
        """Return a copy of ``record`` with its sustainability sub-record set, unless already present."""
        if record.sustainability is not None:
            return record
        return record.model_copy(update={'sustainability': self.to_sustainability(self.score(record))})

    @staticmethod
    def _tag_hit(tags: list[str], tb: TagBonus) -> bool:
        if tb.substring:
            return any(k in t for t in tags for k in tb.tags)
        return any(k in tags for k in tb.tags)

    @staticmethod
    def _recommendations(score: int, positives: list[str], negatives: list[str]) -> list[str]:
        recs: list[str] = []
        if score < 50:
            recs.append('Consider products with organic or natural ingredient certifications')
            recs.append('Look for cruelty-free and vegan options')
            if any('harmful chemical' in f for f in negatives):
                recs.append('Avoid products with sulfates, parabens, or formaldehyde-releasing agents')
        elif score < 70:
            recs.append('Good sustainability profile, but could be improved with recyclable packaging')
            recs.append('Consider products with fair-trade certifications')
        else:
            recs.append('Excellent eco-friendly choice!')
            if not any('recyclable' in f.lower() for f in positives):
                recs.append('Consider checking if packaging is recyclable')
        return recs
