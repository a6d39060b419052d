"""
Hair Care Recommender — External Collaborators
collaborators.py

Narrow interfaces the pipeline consumes, plus one concrete implementation
of each:
  - CatalogSource:            OpenBeautyFactsSource, BeautyFeedsSource (httpx),
                              StaticCatalogSource (in-memory)
  - IngredientSafetyService:  KnowledgeBaseSafetyService
  - IngredientScienceLookup:  LocalIngredientScience
  - ReviewService:            HttpReviewService (httpx), StaticReviewService

Untyped HTTP payloads are converted into CatalogRecord / ReviewSummary here;
nothing past this module sees raw JSON.
"""
from __future__ import annotations
import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence, TypeVar
from uuid import uuid4

import httpx
from pydantic import ValidationError as PydanticValidationError

from models import (
    CatalogRecord, CatalogSourceName, FlaggedIngredient, IngredientSafety,
    IngredientScienceFact, Review, ReviewSummary, Severity,
    SourceUnavailableError, normalize_inci, parse_ingredients_text,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')
R = TypeVar('R')

USER_AGENT = 'HairCareRecommender/1.0'

# ============================================================
# Bounded Concurrency
# ============================================================

async def gather_in_batches(
    items: Sequence[T],
    fn: Callable[[T], Awaitable[R]],
    batch_size: int,
) -> list[R]:
    """
    Run ``fn`` over ``items`` in sequential batches; calls inside a batch
    run concurrently. Output order matches input order. Exceptions propagate,
    so ``fn`` is expected to handle its own failures.
    """
    results: list[R] = []
    for start in range(0, len(items), max(1, batch_size)):
        batch = items[start:start + batch_size]
        results.extend(await asyncio.gather(*(fn(item) for item in batch)))
    return results

# ============================================================
# Interfaces
# ============================================================

class CatalogSource:
    """A product catalog. ``search`` returns [] for no results and raises
    SourceUnavailableError when the source itself cannot be reached."""

    name: str = 'catalog'

    async def search(self, tags: Sequence[str], limit: int = 50) -> list[CatalogRecord]:
        raise NotImplementedError

    async def aclose(self) -> None:
        pass


class IngredientSafetyService:

    async def analyze(
        self, ingredient_names: Sequence[str], allergens: Sequence[str] = (),
    ) -> IngredientSafety:
        raise NotImplementedError


class IngredientScienceLookup:

    async def batch_lookup(self, normalized_names: Sequence[str]) -> dict[str, IngredientScienceFact]:
        raise NotImplementedError


class ReviewService:

    async def fetch(self, brand: str, name: str) -> Optional[ReviewSummary]:
        raise NotImplementedError

    async def aclose(self) -> None:
        pass

# ============================================================
# Catalog Sources
# ============================================================

class StaticCatalogSource(CatalogSource):
    """In-memory catalog for tests / local dev. Matches on any tag substring."""

    def __init__(self, records: Iterable[CatalogRecord], name: str = 'static'):
        self.records = list(records)
        self.name = name

    async def search(self, tags: Sequence[str], limit: int = 50) -> list[CatalogRecord]:
        wanted = [t.lower() for t in tags]
        if not wanted:
            return self.records[:limit]
        hits = [
            r for r in self.records
            if any(w in t.lower() for w in wanted for t in r.tags)
        ]
        return hits[:limit]


class _HttpCatalogSource(CatalogSource):

    def __init__(self, base_url: str, timeout: float = 10.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip('/')
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=timeout, headers={'User-Agent': USER_AGENT})

    async def _get_json(self, url: str, **kwargs) -> Any:
        try:
            resp = await self.client.get(url, **kwargs)
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SourceUnavailableError(self.name, repr(e)) from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


class OpenBeautyFactsSource(_HttpCatalogSource):
    """Open Beauty Facts search by category tags (``en:<tag>``)."""

    name = CatalogSourceName.OPEN_BEAUTY_FACTS.value

    async def search(self, tags: Sequence[str], limit: int = 50) -> list[CatalogRecord]:
        categories = ','.join(f"en:{t.lower()}" for t in tags)
        data = await self._get_json(
            f"{self.base_url}/api/v0/search.json",
            params={'categories_tags': categories, 'page_size': limit, 'json': 1},
        )
        items = data.get('products') if isinstance(data, dict) else None
        records = [r for r in (self.to_record(i) for i in items or []) if r is not None]
        logger.info(f"[{self.name}] {len(records)} products for tags={list(tags)}")
        return records[:limit]

    @staticmethod
    def to_record(item: Any) -> Optional[CatalogRecord]:
        if not isinstance(item, dict) or not item.get('product_name') or not item.get('brands'):
            return None
        code = str(item.get('code') or '').strip() or None
        tags = [t.split(':', 1)[-1] for t in item.get('categories_tags') or [] if isinstance(t, str)]
        try:
            return CatalogRecord(
                id=f"obf_{code}" if code else f"obf_{uuid4().hex}",
                upc=code,
                name=item['product_name'],
                brand=str(item['brands']).split(',')[0].strip(),
                description=item.get('generic_name') or None,
                image_url=item.get('image_url'),
                tags=tags,
                ingredients=parse_ingredients_text(item.get('ingredients_text')),
                source=CatalogSourceName.OPEN_BEAUTY_FACTS,
                source_id=code,
                url=item.get('url'),
            )
        except PydanticValidationError as e:
            logger.debug(f"Skipping malformed Open Beauty Facts item {code}: {e}")
            return None


class BeautyFeedsSource(_HttpCatalogSource):
    """BeautyFeeds product search (bearer token, ``data`` array response)."""

    name = CatalogSourceName.BEAUTY_FEEDS.value

    def __init__(self, base_url: str, api_key: Optional[str], timeout: float = 10.0,
                 client: Optional[httpx.AsyncClient] = None):
        super().__init__(base_url, timeout, client)
        self.api_key = api_key

    async def search(self, tags: Sequence[str], limit: int = 50) -> list[CatalogRecord]:
        if not self.api_key:
            raise SourceUnavailableError(self.name, 'no API key configured')
        category = tags[0] if tags else 'hair-care'
        data = await self._get_json(
            f"{self.base_url}/products/search",
            params={'category': category, 'limit': limit},
            headers={'Authorization': f"Bearer {self.api_key}"},
        )
        items = data.get('data') if isinstance(data, dict) else None
        records = [r for r in (self.to_record(i) for i in items or []) if r is not None]
        logger.info(f"[{self.name}] {len(records)} products for category={category!r}")
        return records[:limit]

    @staticmethod
    def to_record(item: Any) -> Optional[CatalogRecord]:
        if not isinstance(item, dict) or not item.get('product_name'):
            return None
        raw_ingredients = item.get('ingredients')
        if isinstance(raw_ingredients, str):
            ingredients = parse_ingredients_text(raw_ingredients)
        elif isinstance(raw_ingredients, list):
            ingredients = [str(i).strip() for i in raw_ingredients if str(i).strip()]
        else:
            ingredients = []
        ean_list = item.get('ean_list') or []
        uid = _str_or_none(item.get('uniq_id'))
        upc = _str_or_none(item.get('upc') or (ean_list[0] if ean_list else None))
        try:
            return CatalogRecord(
                id=f"bf_{uid}" if uid else f"bf_{uuid4().hex}",
                upc=upc,
                name=item['product_name'],
                brand=item.get('brand_name') or '',
                description=item.get('description') or item.get('summary'),
                image_url=item.get('primary_image_url'),
                price=_parse_price(item.get('price')),
                currency=item.get('currency') or 'USD',
                tags=[c for c in (item.get('category_1'), item.get('category_2'),
                                  item.get('category_3')) if c],
                ingredients=ingredients,
                source=CatalogSourceName.BEAUTY_FEEDS,
                source_id=uid,
                url=item.get('product_url'),
            )
        except PydanticValidationError as e:
            logger.debug(f"Skipping malformed BeautyFeeds item {uid}: {e}")
            return None

# ============================================================
# Ingredient Safety (local knowledge base)
# ============================================================

BLACKLISTED_INGREDIENTS = (
    'sodium lauryl sulfate', 'sodium laureth sulfate', 'ammonium lauryl sulfate',
    'formaldehyde', 'paraben', 'phthalate', 'triclosan',
)

INGREDIENT_CONCERNS: dict[str, tuple[str, Severity]] = {
    'sodium lauryl sulfate': ('Can cause dryness and irritation', Severity.HIGH),
    'sodium laureth sulfate': ('Milder than SLS but can still cause irritation', Severity.MEDIUM),
    'paraben': ('Potential hormone disruption', Severity.MEDIUM),
    'formaldehyde': ('Carcinogen, skin irritant', Severity.HIGH),
    'dimethicone': ('Can cause buildup, not water-soluble', Severity.LOW),
    'alcohol denat': ('Can be drying', Severity.MEDIUM),
}

# Ingredient keyword -> allergen label reported in allergen_matches
KNOWN_ALLERGENS: dict[str, str] = {
    'fragrance': 'fragrance',
    'parfum': 'fragrance',
    'limonene': 'limonene',
    'linalool': 'linalool',
    'methylisothiazolinone': 'methylisothiazolinone',
    'cocamidopropyl betaine': 'cocamidopropyl betaine',
    'lanolin': 'lanolin',
    'wheat': 'gluten',
    'nut oil': 'tree nut',
    'almond': 'tree nut',
}

SEVERITY_SCORES = {Severity.HIGH: 30, Severity.MEDIUM: 50, Severity.LOW: 70}
BLACKLISTED_SCORE = 20
UNREMARKABLE_SCORE = 80


class KnowledgeBaseSafetyService(IngredientSafetyService):
    """
    Per-ingredient scores from a local concern map, averaged. Any blacklisted
    ingredient caps the product score at 20.
    """

    def __init__(
        self,
        concerns: Optional[dict[str, tuple[str, Severity]]] = None,
        blacklist: Sequence[str] = BLACKLISTED_INGREDIENTS,
        allergens: Optional[dict[str, str]] = None,
    ):
        self.concerns = INGREDIENT_CONCERNS if concerns is None else concerns
        self.blacklist = tuple(blacklist)
        self.allergens = KNOWN_ALLERGENS if allergens is None else allergens

    async def analyze(
        self, ingredient_names: Sequence[str], allergens: Sequence[str] = (),
    ) -> IngredientSafety:
        return self.analyze_sync(ingredient_names, allergens)

    def analyze_sync(
        self, ingredient_names: Sequence[str], allergens: Sequence[str] = (),
    ) -> IngredientSafety:
        names = [(raw, normalize_inci(raw)) for raw in ingredient_names if normalize_inci(raw)]
        if not names:
            return IngredientSafety(score=50)

        flagged: list[FlaggedIngredient] = []
        matches: list[str] = []
        scores: list[float] = []
        blacklisted = False

        for raw, norm in names:
            concern = next((v for k, v in self.concerns.items() if k in norm), None)
            if any(b in norm for b in self.blacklist):
                blacklisted = True
                scores.append(BLACKLISTED_SCORE)
                flagged.append(FlaggedIngredient(
                    name=raw, concern=concern[0] if concern else 'Blacklisted ingredient',
                    severity=Severity.HIGH))
            elif concern:
                scores.append(SEVERITY_SCORES[concern[1]])
                flagged.append(FlaggedIngredient(name=raw, concern=concern[0], severity=concern[1]))
            else:
                scores.append(UNREMARKABLE_SCORE)

            for keyword, label in self.allergens.items():
                if keyword in norm and label not in matches:
                    matches.append(label)
            for a in allergens:
                a = a.lower().strip()
                if a and a in norm and raw not in matches:
                    matches.append(raw)

        score = sum(scores) / len(scores)
        if blacklisted:
            score = min(score, BLACKLISTED_SCORE)
        return IngredientSafety(
            score=max(0.0, min(100.0, score)),
            flagged=flagged,
            allergen_matches=matches,
        )

# ============================================================
# Ingredient Science (local knowledge base)
# ============================================================

LOCAL_SCIENCE_FACTS: dict[str, IngredientScienceFact] = {
    'glycerin': IngredientScienceFact(
        inci_name='Glycerin', cas_number='56-81-5',
        functions=['humectant', 'emollient'], restrictions='None',
        safety_notes='Safe for cosmetic use. Excellent humectant properties.',
        tags=['moisturizing', 'hydration', 'safe']),
    'aqua': IngredientScienceFact(
        inci_name='Aqua', functions=['solvent'], restrictions='None',
        safety_notes='Water, safe for all cosmetic uses.', tags=['safe', 'base']),
    'cocamidopropyl betaine': IngredientScienceFact(
        inci_name='Cocamidopropyl Betaine', functions=['surfactant', 'foaming agent'],
        restrictions='None', safety_notes='Gentle surfactant, common in shampoos.',
        tags=['cleansing', 'gentle']),
    'sodium lauryl sulfate': IngredientScienceFact(
        inci_name='Sodium Lauryl Sulfate', cas_number='151-21-3',
        functions=['surfactant', 'foaming agent'],
        restrictions='Max 1% in leave-on products',
        safety_notes='Can be drying and irritating. Avoid for sensitive scalp.',
        tags=['cleansing', 'harsh']),
    'dimethicone': IngredientScienceFact(
        inci_name='Dimethicone', functions=['emollient', 'conditioning agent'],
        restrictions='None',
        safety_notes='Silicone conditioner. Can cause buildup on low-porosity hair.',
        tags=['conditioning', 'silicone']),
    'coconut oil': IngredientScienceFact(
        inci_name='Cocos Nucifera Oil', functions=['emollient', 'conditioning agent'],
        restrictions='None',
        safety_notes='Heavy oil. May weigh down low-porosity hair.',
        tags=['moisturizing', 'heavy', 'oil']),
    'argan oil': IngredientScienceFact(
        inci_name='Argania Spinosa Kernel Oil', functions=['emollient', 'conditioning agent'],
        restrictions='None',
        safety_notes='Lightweight oil. Suits most hair types, especially low-porosity.',
        tags=['moisturizing', 'lightweight', 'oil']),
    'shea butter': IngredientScienceFact(
        inci_name='Butyrospermum Parkii Butter', functions=['emollient', 'skin conditioning'],
        restrictions='None', safety_notes='Rich butter; seals moisture.',
        tags=['moisturizing', 'heavy']),
    'hydrolyzed keratin': IngredientScienceFact(
        inci_name='Hydrolyzed Keratin', functions=['hair conditioning', 'film forming'],
        restrictions='None', safety_notes='Protein that binds to damaged cuticles.',
        tags=['protein', 'repair']),
    'aloe vera': IngredientScienceFact(
        inci_name='Aloe Barbadensis Leaf Juice', functions=['humectant', 'skin conditioning'],
        restrictions='None', safety_notes='Lightweight hydration.',
        tags=['moisturizing', 'lightweight']),
    'panthenol': IngredientScienceFact(
        inci_name='Panthenol', functions=['humectant', 'hair conditioning'],
        restrictions='None', safety_notes='Provitamin B5.',
        tags=['moisturizing']),
}

# Common INCI spellings that refer to a knowledge-base entry
SCIENCE_ALIASES: dict[str, str] = {
    'water': 'aqua',
    'cocos nucifera oil': 'coconut oil',
    'argania spinosa kernel oil': 'argan oil',
    'butyrospermum parkii butter': 'shea butter',
    'aloe barbadensis leaf juice': 'aloe vera',
    'glycerine': 'glycerin',
}


class LocalIngredientScience(IngredientScienceLookup):
    """Bundled ingredient facts keyed by normalized INCI name."""

    def __init__(self, facts: Optional[dict[str, IngredientScienceFact]] = None):
        self.facts = LOCAL_SCIENCE_FACTS if facts is None else facts

    async def batch_lookup(self, normalized_names: Sequence[str]) -> dict[str, IngredientScienceFact]:
        found: dict[str, IngredientScienceFact] = {}
        for name in normalized_names:
            key = normalize_inci(name)
            fact = self.facts.get(key) or self.facts.get(SCIENCE_ALIASES.get(key, ''))
            if fact is not None:
                found[name] = fact
        return found

# ============================================================
# Reviews
# ============================================================

def summarize_reviews(reviews: Sequence[Review]) -> ReviewSummary:
    """Average rating and sentiment, where sentiment = mean((rating - 3) / 2)."""
    rated = [r for r in reviews if r.rating > 0]
    if not rated:
        return ReviewSummary(reviews=list(reviews))
    avg = sum(r.rating for r in rated) / len(rated)
    sentiment = sum((r.rating - 3) / 2 for r in rated) / len(rated)
    return ReviewSummary(
        average_rating=round(avg, 2),
        total_reviews=len(reviews),
        sentiment_score=max(-1.0, min(1.0, sentiment)),
        reviews=list(reviews),
    )


class StaticReviewService(ReviewService):
    """Fixed review summaries keyed by lowercase 'brand|name'."""

    def __init__(self, summaries: Optional[dict[str, ReviewSummary]] = None,
                 default: Optional[ReviewSummary] = None):
        self.summaries = {k.lower(): v for k, v in (summaries or {}).items()}
        self.default = default

    async def fetch(self, brand: str, name: str) -> Optional[ReviewSummary]:
        return self.summaries.get(f"{brand}|{name}".lower(), self.default)


class HttpReviewService(ReviewService):
    """GET {base_url}/reviews?product=<brand name>, expecting {"reviews": [...]}."""

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = 10.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=timeout, headers={'User-Agent': USER_AGENT})

    async def fetch(self, brand: str, name: str) -> Optional[ReviewSummary]:
        headers = {'Authorization': f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            resp = await self.client.get(
                f"{self.base_url}/reviews",
                params={'product': f"{brand} {name}".strip()},
                headers=headers,
            )
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SourceUnavailableError('reviews', repr(e)) from e

        items = data.get('reviews') if isinstance(data, dict) else data
        if not isinstance(items, list) or not items:
            return None
        reviews: list[Review] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            try:
                reviews.append(Review(
                    author=item.get('author') or 'anonymous',
                    rating=float(item.get('rating') or 0),
                    text=item.get('text') or '',
                    date=item.get('date'),
                ))
            except (PydanticValidationError, TypeError, ValueError):
                continue
        return summarize_reviews(reviews) if reviews else None

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


def _parse_price(val: Any) -> Optional[float]:
    if isinstance(val, (int, float)) and not isinstance(val, bool):
        return float(val) if val >= 0 else None
    if isinstance(val, str):
        try:
            price = float(val.strip().lstrip('$').replace(',', ''))
        except ValueError:
            return None
        return price if price >= 0 else None
    return None


def _str_or_none(val: Any) -> Optional[str]:
    """Partner feeds send ids and EANs as either strings or JSON numbers."""
    if val is None or val == '':
        return None
    return str(val).strip() or None
