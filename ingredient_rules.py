"""
Hair Care Recommender — Ingredient Compatibility Engine
ingredient_rules.py

Responsibilities:
  1. Lexical ingredient classification (heavy oil, silicone, protein, ...)
  2. Per-ingredient analysis against a hair profile
  3. Category rules: porosity, hair type, scalp sensitivity, concerns
  4. Explainable reasons / warnings / recommendations

The classifier is a plain keyword matcher, not a chemical ontology. It is
exposed as a swappable callable so a real lookup can replace it without
touching the rules.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Mapping, Optional, Sequence

from models import (
    CompatibilityResult, HairProfile, HairType, IngredientScienceFact,
    Porosity, normalize_inci, _ordered_unique,
)

logger = logging.getLogger(__name__)

NEUTRAL_BASELINE = 50

# ============================================================
# Classification
# ============================================================

@dataclass(frozen=True)
class IngredientKeywords:
    """Keyword lists used by the lexical classifier. Matching is substring, lowercase."""
    heavy_oils: tuple[str, ...] = ('coconut', 'castor', 'olive', 'avocado', 'shea')
    lightweight_oils: tuple[str, ...] = ('argan', 'jojoba', 'grapeseed', 'sweet almond')
    silicones: tuple[str, ...] = ('silicon', 'dimethicone', 'cyclomethicone')
    proteins: tuple[str, ...] = (
        'keratin', 'collagen', 'wheat protein', 'soy protein', 'amino acid',
    )
    harsh_surfactants: tuple[str, ...] = (
        'sodium lauryl sulfate', 'sodium laureth sulfate', 'ammonium lauryl sulfate',
    )
    gentle_surfactants: tuple[str, ...] = (
        'cocamidopropyl betaine', 'decyl glucoside', 'lauryl glucoside',
    )
    oils: tuple[str, ...] = ('oil',)
    lightweight: tuple[str, ...] = ('glycerin', 'hyaluronic acid', 'aloe vera')


DEFAULT_KEYWORDS = IngredientKeywords()


@dataclass(frozen=True)
class IngredientClass:
    is_heavy_oil: bool = False
    is_lightweight_oil: bool = False
    is_silicone: bool = False
    is_protein: bool = False
    is_harsh_surfactant: bool = False
    is_gentle_surfactant: bool = False
    is_oil: bool = False
    is_lightweight: bool = False


Classifier = Callable[[str], IngredientClass]


def classify(ingredient: str, keywords: IngredientKeywords = DEFAULT_KEYWORDS) -> IngredientClass:
    """Classify one ingredient name by literal keyword membership."""
    name = (ingredient or '').lower()

    def has(words: tuple[str, ...]) -> bool:
        return any(w in name for w in words)

    return IngredientClass(
        is_heavy_oil=has(keywords.heavy_oils),
        is_lightweight_oil=has(keywords.lightweight_oils),
        is_silicone=has(keywords.silicones),
        is_protein=has(keywords.proteins),
        is_harsh_surfactant=has(keywords.harsh_surfactants),
        is_gentle_surfactant=has(keywords.gentle_surfactants),
        is_oil=has(keywords.oils),
        is_lightweight=has(keywords.lightweight),
    )

# ============================================================
# Rule Output Accumulator
# ============================================================

@dataclass
class RuleOutcome:
    adjustment: int = 0
    reasons: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def add(self, other: 'RuleOutcome') -> None:
        self.adjustment += other.adjustment
        self.reasons.extend(other.reasons)
        self.warnings.extend(other.warnings)
        self.recommendations.extend(other.recommendations)

# ============================================================
# Compatibility Engine
# ============================================================

class IngredientCompatibilityEngine:
    """
    Scores an ingredient list against a hair profile. Rule categories run
    independently and their adjustments sum onto a neutral baseline of 50.
    """

    def __init__(
        self,
        classifier: Optional[Classifier] = None,
        keywords: Optional[IngredientKeywords] = None,
    ):
        if classifier is None:
            classifier = partial(classify, keywords=keywords or DEFAULT_KEYWORDS)
        self.classifier = classifier

    def score_for_profile(
        self,
        ingredients: Sequence[str],
        profile: HairProfile,
        science: Mapping[str, IngredientScienceFact],
    ) -> CompatibilityResult:
        """
        Evaluate all rules once for a product.

        Args:
            ingredients: ingredient names, raw or normalized
            profile: the user's hair profile
            science: resolved facts keyed by normalized INCI name. Ingredients
                     missing from it skip the per-ingredient analysis.
        """
        names = _ordered_unique(n for n in (normalize_inci(i) for i in ingredients) if n)
        classes = {n: self.classifier(n) for n in names}
        outcome = RuleOutcome()

        for name in names:
            fact = science.get(name)
            if fact is not None:
                outcome.add(self._analyze_ingredient(name, classes[name], fact, profile))

        outcome.add(self._porosity_rules(names, classes, profile.porosity))
        outcome.add(self._hair_type_rules(names, science, profile.hair_type))
        if profile.scalp_sensitive:
            outcome.add(self._scalp_rules(names, classes))
        if profile.concerns:
            outcome.add(self._concern_rules(names, classes, science, profile.concerns))

        score = max(0, min(100, NEUTRAL_BASELINE + outcome.adjustment))
        return CompatibilityResult(
            adjustment=outcome.adjustment,
            score=score,
            reasons=_ordered_unique_exact(outcome.reasons),
            warnings=_ordered_unique_exact(outcome.warnings),
            recommendations=_ordered_unique_exact(outcome.recommendations),
        )

    async def score_with_lookup(
        self,
        ingredients: Sequence[str],
        profile: HairProfile,
        science_lookup,
    ) -> CompatibilityResult:
        """Resolve science facts through an IngredientScienceLookup, then score."""
        names = [n for n in (normalize_inci(i) for i in ingredients) if n]
        facts = await science_lookup.batch_lookup(names) if names else {}
        return self.score_for_profile(names, profile, facts)

    # ----------------------------------------------------------
    # Per-ingredient analysis (needs a resolved science fact)
    # ----------------------------------------------------------

    def _analyze_ingredient(
        self,
        name: str,
        cls: IngredientClass,
        fact: IngredientScienceFact,
        profile: HairProfile,
    ) -> RuleOutcome:
        out = RuleOutcome()
        label = fact.inci_name or name
        functions = {f.lower() for f in fact.functions}

        if profile.porosity == Porosity.LOW:
            if 'emollient' in functions and cls.is_heavy_oil:
                out.adjustment -= 15
                out.warnings.append(
                    f"Contains {label}, which can sit on the surface of low-porosity hair and weigh it down")
                out.reasons.append(
                    f"Avoids heavy oils like {label} for low-porosity hair because they can weigh it down")
            if cls.is_silicone:
                out.adjustment -= 10
                out.warnings.append(
                    f"Contains {label}, a silicone that can cause buildup on low-porosity hair")
                out.reasons.append(
                    f"Avoids silicones like {label} for low-porosity hair because they can cause buildup")

        elif profile.porosity == Porosity.HIGH:
            if 'emollient' in functions and cls.is_heavy_oil:
                out.adjustment += 10
                out.recommendations.append(
                    f"Contains {label}, which helps seal moisture into high-porosity hair")
                out.reasons.append(
                    f"Includes {label} for high-porosity hair because it helps seal in moisture")
            if cls.is_protein:
                out.adjustment += 10
                out.recommendations.append(
                    f"Contains {label}, a protein that helps strengthen high-porosity hair")
                out.reasons.append(
                    f"Includes {label} for high-porosity hair because it strengthens the hair shaft")

        if profile.scalp_sensitive and cls.is_harsh_surfactant:
            out.adjustment -= 20
            out.warnings.append(f"Contains {label}, which can irritate a sensitive scalp")
            out.reasons.append(f"Avoids {label} for sensitive scalp because it can cause irritation")

        if 'dryness' in profile.concerns and fact.is_humectant:
            out.reasons.append(f"Includes {label} for dry hair because it helps retain moisture")

        if 'volume' in profile.concerns and cls.is_lightweight:
            out.reasons.append(f"Includes {label} for volume because it is lightweight")

        return out

    # ----------------------------------------------------------
    # Category rules
    # ----------------------------------------------------------

    def _porosity_rules(
        self, names: list[str], classes: dict[str, IngredientClass], porosity: Porosity,
    ) -> RuleOutcome:
        out = RuleOutcome()
        if porosity == Porosity.LOW:
            if any(classes[n].is_heavy_oil for n in names):
                out.adjustment -= 10
                out.warnings.append('Contains heavy oils that may not penetrate low-porosity hair')
            if any(classes[n].is_silicone for n in names):
                out.adjustment -= 10
                out.warnings.append('Contains silicones that can build up on low-porosity hair')
            if any(classes[n].is_lightweight_oil for n in names):
                out.adjustment += 10
                out.reasons.append('Contains lightweight oils suitable for low-porosity hair')
        elif porosity == Porosity.HIGH:
            if any(classes[n].is_heavy_oil for n in names):
                out.adjustment += 15
                out.reasons.append('Contains heavy oils that help seal moisture into high-porosity hair')
            if any(classes[n].is_protein for n in names):
                out.adjustment += 10
                out.reasons.append('Contains proteins that help strengthen high-porosity hair')
        return out

    def _hair_type_rules(
        self, names: list[str], science: Mapping[str, IngredientScienceFact], hair_type: HairType,
    ) -> RuleOutcome:
        out = RuleOutcome()
        if hair_type in (HairType.CURLY, HairType.COILY):
            if any(science[n].is_humectant for n in names if n in science):
                out.adjustment += 10
                out.reasons.append('Contains humectants that help maintain moisture in curly/coily hair')
        return out

    def _scalp_rules(self, names: list[str], classes: dict[str, IngredientClass]) -> RuleOutcome:
        out = RuleOutcome()
        if any(classes[n].is_harsh_surfactant for n in names):
            out.adjustment -= 20
            out.warnings.append('Contains harsh surfactants that may irritate a sensitive scalp')
        if any(classes[n].is_gentle_surfactant for n in names):
            out.adjustment += 15
            out.reasons.append('Contains gentle surfactants suitable for a sensitive scalp')
        return out

    def _concern_rules(
        self,
        names: list[str],
        classes: dict[str, IngredientClass],
        science: Mapping[str, IngredientScienceFact],
        concerns: list[str],
    ) -> RuleOutcome:
        out = RuleOutcome()
        if 'dryness' in concerns and any(science[n].is_humectant for n in names if n in science):
            out.adjustment += 15
            out.recommendations.append('Contains humectants that help retain moisture in dry hair')
        if 'frizz' in concerns and any(classes[n].is_silicone or classes[n].is_oil for n in names):
            out.adjustment += 10
            out.recommendations.append('Contains ingredients that help control frizz')
        if 'damage' in concerns and any(classes[n].is_protein for n in names):
            out.adjustment += 15
            out.recommendations.append('Contains proteins that help repair damaged hair')
        if 'volume' in concerns and any(classes[n].is_lightweight for n in names):
            out.adjustment += 10
            out.recommendations.append('Contains lightweight ingredients that add volume without weight')
        return out


def _ordered_unique_exact(items: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for s in items:
        if s not in seen:
            seen.add(s)
            out.append(s)
    return out
