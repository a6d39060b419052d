"""
Shared pytest fixtures and configuration.
"""
import random

import pytest

from models import (
    CatalogRecord, HairProfile, IngredientSafety, Preferences, ReviewSummary,
)
from recommendation_engine import ScoringEngine
from collaborators import (
    KnowledgeBaseSafetyService, LocalIngredientScience, StaticCatalogSource,
    StaticReviewService,
)
from repository import InMemoryRepository
from reranker import AIReranker
from pipeline import PipelineConfig, RecommendationPipeline


@pytest.fixture
def curly_profile():
    """Curly, low-porosity profile with a medium budget."""
    return HairProfile(
        hair_type='curly',
        porosity='low',
        water_type='hard',
        concerns=['dryness', 'frizz'],
        preferences=Preferences(vegan=True, cruelty_free=True),
        budget='medium',
    )


@pytest.fixture
def make_record():
    """Factory for catalog records with sensible defaults."""
    def _make(**kwargs):
        defaults = {
            'name': 'Hydrating Shampoo',
            'brand': 'Acme',
            'price': 20.0,
            'tags': ['shampoo', 'curly'],
            'ingredients': ['Aqua', 'Glycerin', 'Cocamidopropyl Betaine'],
        }
        defaults.update(kwargs)
        return CatalogRecord(**defaults)
    return _make


@pytest.fixture
def catalog(make_record):
    """A small catalog covering good, average and poor fits."""
    return [
        make_record(
            id='p1', upc='111', name='Curl Cream', brand='Curlco', price=22.0,
            tags=['curly', 'low-porosity', 'dryness', 'frizz', 'hard', 'vegan', 'cruelty-free', 'organic'],
            ingredients=['Aqua', 'Glycerin', 'Argan Oil', 'Aloe Vera'],
        ),
        make_record(
            id='p2', upc='222', name='Everyday Shampoo', brand='Basic', price=8.0,
            tags=['shampoo', 'hair-care'],
            ingredients=['Aqua', 'Sodium Lauryl Sulfate', 'Fragrance'],
        ),
        make_record(
            id='p3', upc='333', name='Coconut Mask', brand='Tropic', price=30.0,
            tags=['curly', 'dryness', 'mask'],
            ingredients=['Coconut Oil', 'Shea Butter', 'Glycerin'],
        ),
        make_record(
            id='p4', upc='444', name='Silk Serum', brand='Lux', price=60.0,
            tags=['frizz', 'serum'],
            ingredients=['Dimethicone', 'Argan Oil'],
        ),
    ]


@pytest.fixture
def scoring_engine():
    """Scoring engine wired to the local knowledge bases and a neutral review service."""
    return ScoringEngine(
        safety_service=KnowledgeBaseSafetyService(),
        review_service=StaticReviewService(default=ReviewSummary(
            average_rating=4.0, total_reviews=2, sentiment_score=0.5)),
        science_lookup=LocalIngredientScience(),
    )


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def pipeline(catalog, scoring_engine, repository):
    """Pipeline over a static catalog with the mock re-ranker."""
    return RecommendationPipeline(
        sources=[StaticCatalogSource(catalog, name='static')],
        scoring=scoring_engine,
        reranker=AIReranker(rng=random.Random(7)),
        repository=repository,
        config=PipelineConfig(top_k=3, persist_batch_size=2),
    )


@pytest.fixture
def safe_record(make_record):
    """Record carrying precomputed safety data."""
    return make_record(ingredient_safety=IngredientSafety(score=90))
