"""
Hair Care Recommender — Deterministic Scoring Engine
recommendation_engine.py

Responsibilities:
  1. Hard filtering (brand blacklist, declared allergens)
  2. Sub-scores: tag match, sustainability, ingredient safety,
     review sentiment, price fit
  3. Weighted total, clamped to [0, 100]
  4. Filling missing safety / review data through collaborators
  5. Ingredient compatibility annotation per product
"""
from __future__ import annotations
import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from models import (
    Budget, CatalogRecord, HairProfile, ProductScore, ScoreBreakdown,
)
from ingredient_rules import IngredientCompatibilityEngine
from collaborators import (
    IngredientSafetyService, IngredientScienceLookup, ReviewService,
    gather_in_batches,
)

logger = logging.getLogger(__name__)

NEUTRAL = 50.0

# ============================================================
# Configuration
# ============================================================

@dataclass(frozen=True)
class ScoringWeights:
    """Percent weights for the five sub-scores. Must sum to 100."""
    tag_match: float = 35
    sustainability: float = 25
    ingredient_safety: float = 20
    review_sentiment: float = 15
    price_match: float = 5

    def __post_init__(self):
        total = (self.tag_match + self.sustainability + self.ingredient_safety
                 + self.review_sentiment + self.price_match)
        if not math.isclose(total, 100.0):
            raise ValueError(f"Scoring weights must sum to 100, got {total}")


DEFAULT_WEIGHTS = ScoringWeights()


@dataclass(frozen=True)
class ScoringConfig:
    """Tunable parameters for deterministic scoring."""
    weights: ScoringWeights = DEFAULT_WEIGHTS
    # Lowercase substrings; a brand containing any of them is dropped
    blacklisted_brands: tuple[str, ...] = ()
    budget_ranges: dict[Budget, tuple[float, float]] = field(default_factory=lambda: {
        Budget.LOW: (0.0, 15.0),
        Budget.MEDIUM: (15.0, 35.0),
        Budget.HIGH: (35.0, math.inf),
    })
    below_budget_score: float = 70.0
    enrichment_batch_size: int = 5
    collaborator_timeout_seconds: float = 10.0


DEFAULT_SCORING_CONFIG = ScoringConfig()

# ============================================================
# Hard Filters
# ============================================================

def is_blacklisted(record: CatalogRecord, blacklist: Iterable[str]) -> bool:
    brand = (record.brand or '').lower()
    return any(b and b.lower() in brand for b in blacklist)


def has_allergen_conflict(record: CatalogRecord, allergens: Iterable[str]) -> bool:
    """
    True when a declared allergen appears in the record's known allergen
    labels or in one of its normalized ingredient names.
    """
    allergens = [a.lower().strip() for a in allergens if a and a.strip()]
    if not allergens:
        return False
    matches = list(record.normalized_ingredients)
    if record.ingredient_safety is not None:
        matches.extend(m.lower() for m in record.ingredient_safety.allergen_matches)
    return any(a in m for a in allergens for m in matches)

# ============================================================
# Sub-score Functions
# ============================================================

def score_tag_match(record: CatalogRecord, profile: HairProfile) -> float:
    """
    Fraction of profile attributes (hair type, porosity, each concern,
    water type) found as a substring of any product tag, scaled to 100.
    """
    if not record.tags:
        return NEUTRAL
    tags = [t.lower() for t in record.tags]
    checks = [profile.hair_type.value, profile.porosity.value, *profile.concerns,
              profile.water_type.value]
    matches = sum(1 for c in checks if any(c.lower() in t for t in tags))
    return matches / len(checks) * 100


def score_sustainability(record: CatalogRecord, profile: HairProfile) -> float:
    if record.sustainability is not None:
        return _clamp(record.sustainability.score)
    tags = [t.lower() for t in record.tags]
    score = NEUTRAL
    prefs = profile.preferences
    if prefs.vegan and any('vegan' in t for t in tags):
        score += 20
    if prefs.cruelty_free and any('cruelty-free' in t for t in tags):
        score += 20
    if prefs.organic and any('organic' in t for t in tags):
        score += 10
    return _clamp(score)


def score_ingredient_safety(record: CatalogRecord) -> float:
    if record.ingredient_safety is not None:
        return _clamp(record.ingredient_safety.score)
    return NEUTRAL


def score_review_sentiment(record: CatalogRecord) -> float:
    if record.reviews is None:
        return NEUTRAL
    return _clamp((record.reviews.sentiment_score + 1) / 2 * 100)


def score_price_match(
    record: CatalogRecord,
    profile: HairProfile,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
) -> float:
    """
    100 inside the budget range, a flat score below it, and a linear
    penalty above it: 50 - overage/range_max*50, floored at 0.
    """
    if record.price is None or profile.budget is None:
        return NEUTRAL
    low, high = config.budget_ranges[profile.budget]
    price = record.price
    if low <= price <= high:
        return 100.0
    if price < low:
        return config.below_budget_score
    overage = price - high
    return max(0.0, 50 - (overage / high) * 50)


def weighted_total(breakdown: ScoreBreakdown, weights: ScoringWeights = DEFAULT_WEIGHTS) -> float:
    total = (
        breakdown.tag_match * weights.tag_match
        + breakdown.sustainability * weights.sustainability
        + breakdown.ingredient_safety * weights.ingredient_safety
        + breakdown.review_sentiment * weights.review_sentiment
        + breakdown.price_match * weights.price_match
    ) / 100
    return _clamp(total)

# ============================================================
# Scoring Engine
# ============================================================

class ScoringEngine:
    """
    Deterministic scorer. ``score_record`` is pure; ``score_all`` also fills
    missing safety and review data through collaborators, returning new
    records rather than mutating the inputs.
    """

    def __init__(
        self,
        config: ScoringConfig = DEFAULT_SCORING_CONFIG,
        safety_service: Optional[IngredientSafetyService] = None,
        review_service: Optional[ReviewService] = None,
        science_lookup: Optional[IngredientScienceLookup] = None,
        compatibility: Optional[IngredientCompatibilityEngine] = None,
    ):
        self.config = config
        self.safety_service = safety_service
        self.review_service = review_service
        self.science_lookup = science_lookup
        self.compatibility = compatibility or IngredientCompatibilityEngine()

    # ----------------------------------------------------------
    # Public API
    # ----------------------------------------------------------

    def passes_hard_filters(self, record: CatalogRecord, profile: HairProfile) -> bool:
        if is_blacklisted(record, self.config.blacklisted_brands):
            logger.debug(f"Filtered {record.id}: blacklisted brand {record.brand!r}")
            return False
        if has_allergen_conflict(record, profile.allergens):
            logger.debug(f"Filtered {record.id}: allergen match")
            return False
        return True

    def score_record(
        self,
        record: CatalogRecord,
        profile: HairProfile,
        science: Optional[dict] = None,
    ) -> ProductScore:
        """Score one record with whatever enrichment it already carries."""
        breakdown = ScoreBreakdown(
            tag_match=score_tag_match(record, profile),
            sustainability=score_sustainability(record, profile),
            ingredient_safety=score_ingredient_safety(record),
            review_sentiment=score_review_sentiment(record),
            price_match=score_price_match(record, profile, self.config),
        )
        compatibility = None
        if science is not None and record.normalized_ingredients:
            compatibility = self.compatibility.score_for_profile(
                record.normalized_ingredients, profile, science)
        return ProductScore(
            record=record,
            deterministic_score=weighted_total(breakdown, self.config.weights),
            breakdown=breakdown,
            compatibility=compatibility,
        )

    async def score_all(
        self,
        records: Sequence[CatalogRecord],
        profile: HairProfile,
        enrich: bool = True,
    ) -> list[ProductScore]:
        """
        Filter, enrich and score. Result is sorted by deterministic score,
        highest first. Filtered records are dropped, not scored 0. Pass
        ``enrich=False`` when the caller has already run enrichment.
        """
        candidates = [r for r in records
                      if not is_blacklisted(r, self.config.blacklisted_brands)]

        if enrich:
            candidates = await gather_in_batches(
                candidates,
                lambda r: self.enrich_missing(r, profile),
                self.config.enrichment_batch_size,
            )
        candidates = [r for r in candidates if self.passes_hard_filters(r, profile)]

        science = await self._lookup_science(candidates)
        scored = [self.score_record(r, profile, science) for r in candidates]
        scored.sort(key=lambda s: s.deterministic_score, reverse=True)

        logger.info(
            f"Scored {len(scored)} of {len(records)} products "
            f"({len(records) - len(scored)} filtered)")
        return scored

    async def enrich_missing(
        self, record: CatalogRecord, profile: Optional[HairProfile] = None,
    ) -> CatalogRecord:
        """Return a copy with safety and reviews filled where absent; failures leave them unset."""
        record, _ = await self.enrich_counting_failures(record, profile)
        return record

    async def enrich_counting_failures(
        self, record: CatalogRecord, profile: Optional[HairProfile] = None,
    ) -> tuple[CatalogRecord, int]:
        updates = {}
        failures = 0
        if record.ingredient_safety is None and record.ingredients and self.safety_service:
            allergens = profile.allergens if profile else []
            try:
                updates['ingredient_safety'] = await self._bounded(
                    self.safety_service.analyze(record.ingredients, allergens))
            except Exception as e:
                failures += 1
                logger.warning(f"Safety analysis failed for {record.id}: {e!r}")
        if record.reviews is None and self.review_service:
            try:
                reviews = await self._bounded(self.review_service.fetch(record.brand, record.name))
                if reviews is not None:
                    updates['reviews'] = reviews
            except Exception as e:
                failures += 1
                logger.warning(f"Review lookup failed for {record.id}: {e!r}")
        return (record.model_copy(update=updates) if updates else record), failures

    # ----------------------------------------------------------
    # Collaborator calls
    # ----------------------------------------------------------

    async def _bounded(self, coro):
        return await asyncio.wait_for(coro, timeout=self.config.collaborator_timeout_seconds)

    async def _lookup_science(self, records: Sequence[CatalogRecord]) -> Optional[dict]:
        if self.science_lookup is None:
            return None
        names = sorted({n for r in records for n in r.normalized_ingredients})
        if not names:
            return {}
        try:
            return await self._bounded(self.science_lookup.batch_lookup(names))
        except Exception as e:
            logger.warning(f"Ingredient science lookup failed: {e!r}")
            return None


# ============================================================
# Helpers
# ============================================================

def _clamp(val: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, float(val)))
