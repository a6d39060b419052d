"""
Hair Care Recommender — Core Pydantic Models
models.py
"""
from __future__ import annotations
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# ============================================================
# Enums
# ============================================================

class HairType(str, Enum):
    STRAIGHT = "straight"
    WAVY = "wavy"
    CURLY = "curly"
    COILY = "coily"
    MIXED = "mixed"

class Porosity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

class WaterType(str, Enum):
    HARD = "hard"
    SOFT = "soft"
    NEUTRAL = "neutral"

class Budget(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

class CatalogSourceName(str, Enum):
    OPEN_BEAUTY_FACTS = "openbeautyfacts"
    BEAUTY_FEEDS = "beautyfeeds"
    MANUAL = "manual"

class ExplanationSource(str, Enum):
    AI = "ai"
    MOCK = "mock"
    FALLBACK = "fallback"
    NONE = "none"

class RerankMode(str, Enum):
    AI = "ai"
    MOCK = "mock"
    FALLBACK = "fallback"

class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

# ============================================================
# Errors
# ============================================================

class PipelineError(Exception):
    """Base class for recommendation pipeline errors."""

class ValidationError(PipelineError):
    """Caller input rejected before any work is done."""

class SourceUnavailableError(PipelineError):
    """An external collaborator failed or timed out."""

    def __init__(self, source: str, message: str = ""):
        self.source = source
        super().__init__(f"{source}: {message}" if message else source)

class MalformedPayloadError(PipelineError):
    """An external payload could not be parsed into the expected shape."""

class PersistenceError(PipelineError):
    pass

class DuplicateResultError(PersistenceError):
    """A recommendation result with the same (user_id, timestamp) already exists."""

# ============================================================
# Enrichment Sub-records
# ============================================================

class FlaggedIngredient(BaseModel):
    name: str
    concern: str
    severity: Severity = Severity.LOW

class IngredientSafety(BaseModel):
    score: float = Field(ge=0, le=100)
    flagged: list[FlaggedIngredient] = Field(default_factory=list)
    allergen_matches: list[str] = Field(default_factory=list)

class Sustainability(BaseModel):
    score: float = Field(ge=0, le=100)
    grade: Optional[str] = None
    certifications: list[str] = Field(default_factory=list)
    positive_factors: list[str] = Field(default_factory=list)
    negative_factors: list[str] = Field(default_factory=list)
    explanation: Optional[str] = None

class Review(BaseModel):
    author: str = "anonymous"
    rating: float = Field(ge=0, le=5)
    text: str = ""
    date: Optional[str] = None

class ReviewSummary(BaseModel):
    average_rating: float = Field(default=0.0, ge=0, le=5)
    total_reviews: int = 0
    sentiment_score: float = Field(default=0.0, ge=-1, le=1)
    reviews: list[Review] = Field(default_factory=list)

class IngredientScienceFact(BaseModel):
    """Scientific facts about one ingredient, keyed by normalized INCI name."""
    model_config = ConfigDict(frozen=True)

    inci_name: str
    functions: list[str] = Field(default_factory=list)
    restrictions: Optional[str] = None
    safety_notes: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    cas_number: Optional[str] = None

    @property
    def is_humectant(self) -> bool:
        return any('humectant' in f.lower() for f in self.functions)

# ============================================================
# Core Domain Models
# ============================================================

class CatalogRecord(BaseModel):
    """
    One product as seen by the pipeline. Immutable: enrichment stages
    return a copy via ``model_copy(update=...)`` instead of mutating.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    upc: Optional[str] = None
    name: str
    brand: str = ""
    description: Optional[str] = None
    image_url: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    ingredients: list[str] = Field(default_factory=list)
    normalized_ingredients: list[str] = Field(default_factory=list)

    ingredient_safety: Optional[IngredientSafety] = None
    sustainability: Optional[Sustainability] = None
    reviews: Optional[ReviewSummary] = None

    # Provenance
    source: CatalogSourceName = CatalogSourceName.MANUAL
    source_id: Optional[str] = None
    url: Optional[str] = None

    @field_validator('tags')
    @classmethod
    def unique_tags(cls, v: list[str]) -> list[str]:
        return _ordered_unique(t.strip() for t in v if t and t.strip())

    @model_validator(mode='before')
    @classmethod
    def derive_normalized(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get('ingredients') and not data.get('normalized_ingredients'):
            data = {**data, 'normalized_ingredients': normalize_ingredient_list(data['ingredients'])}
        return data

class Preferences(BaseModel):
    vegan: bool = False
    cruelty_free: bool = False
    organic: bool = False
    fragrance_free: bool = False

class HairProfile(BaseModel):
    hair_type: HairType
    porosity: Porosity
    water_type: WaterType = WaterType.NEUTRAL
    concerns: list[str] = Field(default_factory=list)
    preferences: Preferences = Field(default_factory=Preferences)
    allergens: list[str] = Field(default_factory=list)
    budget: Optional[Budget] = None
    scalp_sensitive: bool = False

    @field_validator('hair_type', 'porosity', 'water_type', 'budget', mode='before')
    @classmethod
    def lower_enum(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator('concerns', 'allergens')
    @classmethod
    def lower_list(cls, v: list[str]) -> list[str]:
        return _ordered_unique(s.strip().lower() for s in v if s and s.strip())

# ============================================================
# Scoring Results
# ============================================================

class ScoreBreakdown(BaseModel):
    tag_match: float = Field(ge=0, le=100)
    sustainability: float = Field(ge=0, le=100)
    ingredient_safety: float = Field(ge=0, le=100)
    review_sentiment: float = Field(ge=0, le=100)
    price_match: float = Field(ge=0, le=100)

class CompatibilityResult(BaseModel):
    adjustment: int = 0
    score: float = Field(default=50, ge=0, le=100)
    reasons: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)

class EcoScoreResult(BaseModel):
    score: int = Field(ge=0, le=100)
    grade: str
    reasoning: list[str] = Field(default_factory=list)
    positive_factors: list[str] = Field(default_factory=list)
    negative_factors: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)

class ProductScore(BaseModel):
    """Deterministic score for one record plus the optional AI annotations."""
    model_config = ConfigDict(frozen=True)

    record: CatalogRecord
    deterministic_score: float = Field(ge=0, le=100)
    breakdown: ScoreBreakdown
    compatibility: Optional[CompatibilityResult] = None
    ai_score: Optional[float] = Field(default=None, ge=0, le=100)
    ai_explanation: Optional[str] = None
    explanation_source: ExplanationSource = ExplanationSource.NONE
    final_rank: Optional[int] = None

    @property
    def product_id(self) -> str:
        return self.record.id

    @property
    def effective_score(self) -> float:
        return self.ai_score if self.ai_score is not None else self.deterministic_score

class RecommendationMetadata(BaseModel):
    total_products_found: int = 0
    products_after_dedup: int = 0
    products_after_filtering: int = 0
    processing_time_ms: int = 0
    cache_hit: bool = False
    rerank_mode: RerankMode = RerankMode.MOCK
    failed_sources: list[str] = Field(default_factory=list)
    enrichment_failures: int = 0
    persisted: int = 0
    persist_failures: int = 0
    result_saved: bool = False

class RecommendationResult(BaseModel):
    """Write-once output of a pipeline run, identified by (user_id, timestamp)."""
    user_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    hair_profile: HairProfile
    recommendations: list[ProductScore] = Field(default_factory=list)
    metadata: RecommendationMetadata = Field(default_factory=RecommendationMetadata)

    @property
    def key(self) -> tuple[str, str]:
        return self.user_id, self.timestamp.isoformat()

# ============================================================
# API Request/Response Models
# ============================================================

class RecommendRequest(BaseModel):
    user_id: str
    hair_profile: Optional[HairProfile] = None
    tags: Optional[list[str]] = None
    top_k: Optional[int] = Field(default=None, ge=1, le=50)

class EcoScoreRequest(BaseModel):
    record: CatalogRecord

class CompatibilityRequest(BaseModel):
    ingredients: list[str]
    hair_profile: HairProfile

class SyncRequest(BaseModel):
    tags: list[str] = Field(default_factory=lambda: ['shampoo', 'conditioner', 'hair-care'])
    limit: int = Field(default=50, ge=1, le=500)

class SyncResponse(BaseModel):
    job_id: str
    status: JobStatus
    products_fetched: int = 0
    products_persisted: int = 0
    failed_sources: list[str] = Field(default_factory=list)
    error: Optional[str] = None

class HealthResponse(BaseModel):
    status: str
    components: dict[str, dict]
    version: str
    uptime_seconds: int

# ============================================================
# Utility: INCI Normalizer
# ============================================================

INCI_ALIASES = {
    'water': 'aqua',
    'h2o': 'aqua',
    'eau': 'aqua',
}

def normalize_inci(name: str) -> str:
    """Canonical INCI form: 'Water (Aqua)' -> 'aqua', 'Cetearyl  Alcohol' -> 'cetearyl alcohol'."""
    if not name:
        return ''
    t = name.strip().lower()
    t = re.sub(r'\([^)]*\)', ' ', t)      # drop parenthetical qualifiers
    t = re.sub(r'[/\\]', ' ', t)
    t = re.sub(r'\s*-\s*', '-', t)
    t = re.sub(r'[*.;:]+$', '', t)
    t = re.sub(r'\s+', ' ', t).strip(' ,')
    return INCI_ALIASES.get(t, t)


def parse_ingredients_text(text: Optional[str]) -> list[str]:
    """Split a raw ingredient list ('Aqua, Glycerin; Coconut Oil and Shea') into ordered names."""
    if not text:
        return []
    parts = re.split(r',|;|\band\b|\n', text, flags=re.IGNORECASE)
    return _ordered_unique(p.strip(' .*') for p in parts if p and p.strip(' .*'))


def normalize_ingredient_list(names: list[str]) -> list[str]:
    return _ordered_unique(n for n in (normalize_inci(i) for i in names) if n)


def _ordered_unique(items) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        key = item.lower()
        if key not in seen:
            seen.add(key)
            out.append(item)
    return out
