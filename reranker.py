"""
Hair Care Recommender — AI Re-ranking Stage
reranker.py

Responsibilities:
  1. Candidate selection (top 2*K by deterministic score)
  2. Prompt construction and one oracle call per run
  3. Permissive parsing of the oracle reply into Parsed | Malformed
  4. Merge by product id, re-sort, renumber, truncate
  5. Two degraded paths:
       mock     - no oracle configured (expected); deterministic order,
                  bounded jitter on ai_score, rotating explanations
       fallback - oracle failed / timed out / malformed (unexpected);
                  deterministic order, no jitter, generic explanations
"""
from __future__ import annotations
import asyncio
import json
import logging
import math
import random
import re
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Union

from cachetools import TTLCache
from openai import AsyncOpenAI

from models import ExplanationSource, ProductScore, RerankMode

logger = logging.getLogger(__name__)

# ============================================================
# Configuration
# ============================================================

@dataclass(frozen=True)
class RerankConfig:
    candidate_multiplier: int = 2
    mock_jitter: float = 5.0
    timeout_seconds: float = 20.0
    cache_ttl_seconds: float = 7200.0
    cache_max_entries: int = 512
    model: str = 'gpt-4o-mini'
    temperature: float = 0.7
    max_tokens: int = 2500


DEFAULT_RERANK_CONFIG = RerankConfig()

SYSTEM_PROMPT = (
    'You are a professional hair care expert with deep knowledge of ingredients, '
    'product formulations, and hair science. Provide accurate, helpful '
    'recommendations based on data-driven analysis.'
)

MOCK_EXPLANATIONS = (
    'This product is well-suited for your hair type with good ingredient safety and positive reviews.',
    'A solid choice that matches your preferences and hair profile.',
    'Highly rated by users with similar hair concerns. The ingredients are generally safe.',
    'Good value for money with a favourable sustainability profile.',
    'Effective product with strong tag matches for your hair needs.',
)

FALLBACK_EXPLANATIONS = (
    'Ranked by overall match score for your hair profile.',
    'Recommended based on tag match, ingredient safety, and sustainability scores.',
    'Selected by deterministic scoring; a personalised explanation is unavailable.',
)

NO_EXPLANATION = 'No explanation provided'

# ============================================================
# Oracle Reply Parsing
# ============================================================

@dataclass(frozen=True)
class RerankItem:
    product_id: str
    score: float
    explanation: str


@dataclass(frozen=True)
class Parsed:
    items: list[RerankItem]


@dataclass(frozen=True)
class Malformed:
    raw: str
    reason: str


ParseResult = Union[Parsed, Malformed]

_FENCE_RE = re.compile(r'```(?:json)?\s*(.*?)```', re.DOTALL | re.IGNORECASE)
_ARRAY_KEYS = ('recommendations', 'products', 'results', 'rankings')
_MISSING = object()


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return _MISSING


def parse_rerank_payload(raw: Optional[str]) -> ParseResult:
    """
    Accepts a bare JSON array, an object holding the array under a known
    key, either of those inside a ```json fence, or an array embedded in
    surrounding prose. Items need a non-empty productId/id; scores are
    clamped to [0, 100] with 50 for anything non-numeric.
    """
    text = (raw or '').strip()
    if not text:
        return Malformed(raw or '', 'empty response')

    data = _loads(text)
    if data is _MISSING:
        m = _FENCE_RE.search(text)
        if m:
            data = _loads(m.group(1).strip())
    if data is _MISSING:
        start, end = text.find('['), text.rfind(']')
        if 0 <= start < end:
            data = _loads(text[start:end + 1])
    if data is _MISSING:
        return Malformed(text, 'not valid JSON')

    if isinstance(data, dict):
        data = next((data[k] for k in _ARRAY_KEYS if isinstance(data.get(k), list)), None)
    if not isinstance(data, list):
        return Malformed(text, 'no result array')

    items: list[RerankItem] = []
    for entry in data:
        if not isinstance(entry, dict):
            continue
        pid = entry.get('productId') or entry.get('product_id') or entry.get('id')
        if pid is None or not str(pid).strip():
            continue
        items.append(RerankItem(
            product_id=str(pid).strip(),
            score=_coerce_score(entry.get('score')),
            explanation=str(entry.get('explanation') or entry.get('reason') or NO_EXPLANATION),
        ))
    if not items:
        return Malformed(text, 'no usable items')
    return Parsed(items)


def _coerce_score(val: Any) -> float:
    try:
        score = float(val)
    except (TypeError, ValueError):
        return 50.0
    if math.isnan(score):
        return 50.0
    return max(0.0, min(100.0, score))

# ============================================================
# Prompt
# ============================================================

def build_prompt(candidates: Sequence[ProductScore]) -> str:
    summaries = []
    for i, ps in enumerate(candidates, 1):
        r, b = ps.record, ps.breakdown
        summaries.append('\n'.join([
            f"Product {i}: {r.brand} {r.name}".strip(),
            f"- ID: {r.id}",
            f"- Overall Score: {ps.deterministic_score:.1f}/100",
            f"- Tag Match: {b.tag_match:.1f}/100",
            f"- Sustainability: {b.sustainability:.1f}/100",
            f"- Ingredient Safety: {b.ingredient_safety:.1f}/100",
            f"- Review Sentiment: {b.review_sentiment:.1f}/100",
            f"- Price Match: {b.price_match:.1f}/100",
            f"- Tags: {', '.join(r.tags) or 'N/A'}",
            f"- Price: {'$%.2f' % r.price if r.price is not None else 'N/A'}",
            f"- Description: {r.description or 'N/A'}",
        ]))

    return (
        'You are a hair care expert analyzing products for personalized recommendations.\n\n'
        f"Analyze these {len(candidates)} hair care products and:\n"
        '1. Re-rank them based on overall quality, user needs, value, and effectiveness\n'
        '2. Provide one clear sentence for each product explaining why it is or is not recommended\n\n'
        'Products:\n'
        + '\n\n'.join(summaries)
        + '\n\nReturn ONLY a valid JSON array, no markdown:\n'
        '[{"productId": "exact_id_from_above", "score": 85, "explanation": "One sentence."}]\n'
        'Rank from best to worst. Scores must be between 0 and 100.'
    )

# ============================================================
# Oracles
# ============================================================

class RerankOracle:
    """External re-ranker. ``complete`` returns the raw model reply."""

    async def complete(self, prompt: str) -> str:
        raise NotImplementedError

    async def rank(self, candidates: Sequence[ProductScore]) -> ParseResult:
        return parse_rerank_payload(await self.complete(build_prompt(candidates)))


class OpenAIRerankOracle(RerankOracle):
    """Chat-completions oracle using the OpenAI SDK."""

    def __init__(self, api_key: str, config: RerankConfig = DEFAULT_RERANK_CONFIG, client: Any = None):
        self.config = config
        self.client = client or AsyncOpenAI(api_key=api_key, timeout=config.timeout_seconds)

    async def complete(self, prompt: str) -> str:
        resp = await self.client.chat.completions.create(
            model=self.config.model,
            messages=[
                {'role': 'system', 'content': SYSTEM_PROMPT},
                {'role': 'user', 'content': prompt},
            ],
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
        )
        return resp.choices[0].message.content or ''

# ============================================================
# Re-ranker
# ============================================================

@dataclass
class RerankOutcome:
    scores: list[ProductScore]
    mode: RerankMode
    cache_hit: bool = False
    failure: Optional[str] = None


class AIReranker:

    def __init__(
        self,
        oracle: Optional[RerankOracle] = None,
        config: RerankConfig = DEFAULT_RERANK_CONFIG,
        rng: Optional[random.Random] = None,
    ):
        self.oracle = oracle
        self.config = config
        self.rng = rng or random.Random()
        # TTL <= 0 disables caching
        self._cache: Optional[TTLCache] = None
        if config.cache_ttl_seconds > 0:
            self._cache = TTLCache(maxsize=config.cache_max_entries, ttl=config.cache_ttl_seconds)

    async def rerank(self, scored: Sequence[ProductScore], top_k: int) -> RerankOutcome:
        """Never raises; degraded paths are reported through ``RerankOutcome.mode``."""
        if top_k <= 0 or not scored:
            mode = RerankMode.AI if self.oracle else RerankMode.MOCK
            return RerankOutcome(scores=[], mode=mode)

        ordered = sorted(scored, key=lambda s: s.deterministic_score, reverse=True)
        candidates = ordered[:top_k * self.config.candidate_multiplier]

        if self.oracle is None:
            return RerankOutcome(scores=self._mock(candidates, top_k), mode=RerankMode.MOCK)

        key = tuple((c.product_id, round(c.deterministic_score, 3)) for c in candidates)
        cached = self._cache_get(key)
        if cached is not None:
            return RerankOutcome(scores=self._merge(candidates, cached, top_k),
                                 mode=RerankMode.AI, cache_hit=True)

        try:
            result = await asyncio.wait_for(
                self.oracle.rank(candidates), timeout=self.config.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Re-rank oracle timed out after {self.config.timeout_seconds}s")
            return self._fallback_outcome(candidates, top_k, 'timeout')
        except Exception as e:
            logger.warning(f"Re-rank oracle failed: {e!r}")
            return self._fallback_outcome(candidates, top_k, repr(e))

        if isinstance(result, Malformed):
            logger.warning(f"Malformed re-rank payload ({result.reason}): {result.raw[:200]!r}")
            return self._fallback_outcome(candidates, top_k, f"malformed: {result.reason}")

        self._cache_put(key, result.items)
        return RerankOutcome(scores=self._merge(candidates, result.items, top_k), mode=RerankMode.AI)

    def clear_cache(self) -> None:
        if self._cache is not None:
            self._cache.clear()

    # ----------------------------------------------------------
    # Paths
    # ----------------------------------------------------------

    def _merge(
        self, candidates: Sequence[ProductScore], items: Sequence[RerankItem], top_k: int,
    ) -> list[ProductScore]:
        by_id: dict[str, RerankItem] = {}
        for item in items:
            by_id.setdefault(item.product_id, item)

        merged = []
        for c in candidates:
            item = by_id.get(c.product_id)
            if item is None:
                merged.append(c)
            else:
                merged.append(c.model_copy(update={
                    'ai_score': item.score,
                    'ai_explanation': item.explanation,
                    'explanation_source': ExplanationSource.AI,
                }))
        merged.sort(key=lambda s: s.effective_score, reverse=True)
        return _ranked(merged[:top_k])

    def _mock(self, candidates: Sequence[ProductScore], top_k: int) -> list[ProductScore]:
        jitter = self.config.mock_jitter
        out = []
        for i, c in enumerate(candidates[:top_k]):
            noisy = c.deterministic_score + self.rng.uniform(-jitter, jitter)
            out.append(c.model_copy(update={
                'ai_score': max(0.0, min(100.0, noisy)),
                'ai_explanation': MOCK_EXPLANATIONS[i % len(MOCK_EXPLANATIONS)],
                'explanation_source': ExplanationSource.MOCK,
            }))
        return _ranked(out)

    def _fallback_outcome(
        self, candidates: Sequence[ProductScore], top_k: int, failure: str,
    ) -> RerankOutcome:
        out = [
            c.model_copy(update={
                'ai_score': None,
                'ai_explanation': FALLBACK_EXPLANATIONS[i % len(FALLBACK_EXPLANATIONS)],
                'explanation_source': ExplanationSource.FALLBACK,
            })
            for i, c in enumerate(candidates[:top_k])
        ]
        return RerankOutcome(scores=_ranked(out), mode=RerankMode.FALLBACK, failure=failure)

    # ----------------------------------------------------------
    # Cache
    # ----------------------------------------------------------

    def _cache_get(self, key: tuple) -> Optional[list[RerankItem]]:
        if self._cache is None:
            return None
        return self._cache.get(key)

    def _cache_put(self, key: tuple, items: list[RerankItem]) -> None:
        if self._cache is not None:
            self._cache[key] = items


def _ranked(scores: Sequence[ProductScore]) -> list[ProductScore]:
    return [s.model_copy(update={'final_rank': i}) for i, s in enumerate(scores, 1)]
