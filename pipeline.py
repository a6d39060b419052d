"""
Hair Care Recommender — Pipeline Orchestrator
pipeline.py

Drives one recommendation run:
  profile → search tags → concurrent source fetch → dedup → enrichment
  (safety, reviews, eco) → deterministic scoring → AI re-rank → persist
  → write-once result

Partial failures (a source, an enrichment call, a persistence chunk, the
result save) are logged and counted in RecommendationMetadata; only invalid
caller input raises.

Also hosts SyncJobRunner, the out-of-band catalog resync.
"""
from __future__ import annotations
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional, Sequence
from uuid import uuid4

from models import (
    CatalogRecord, HairProfile, JobStatus, PersistenceError, RecommendationMetadata,
    RecommendationResult, SyncResponse, ValidationError,
)
from config import Settings
from collaborators import (
    BeautyFeedsSource, CatalogSource, HttpReviewService, KnowledgeBaseSafetyService,
    LocalIngredientScience, OpenBeautyFactsSource, ReviewService, gather_in_batches,
)
from deduplicator import deduplicate
from eco_score import EcoScorer
from recommendation_engine import ScoringConfig, ScoringEngine, is_blacklisted
from reranker import AIReranker, OpenAIRerankOracle, RerankConfig
from repository import ProductRepository

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_TAGS = ('shampoo', 'conditioner', 'hair-care')

# ============================================================
# Configuration
# ============================================================

@dataclass(frozen=True)
class PipelineConfig:
    top_k: int = 10
    source_fetch_limit: int = 50
    source_timeout_seconds: float = 10.0
    enrichment_batch_size: int = 5
    persist_batch_size: int = 50


DEFAULT_PIPELINE_CONFIG = PipelineConfig()


def build_search_tags(profile: HairProfile) -> list[str]:
    """Catalog search tags derived from a hair profile, in a stable order."""
    tags = [
        profile.hair_type.value,
        f"hair-{profile.hair_type.value}",
        profile.porosity.value,
        f"{profile.porosity.value}-porosity",
        *profile.concerns,
    ]
    prefs = profile.preferences
    if prefs.vegan:
        tags.append('vegan')
    if prefs.cruelty_free:
        tags.append('cruelty-free')
    if prefs.organic:
        tags.append('organic')
    if prefs.fragrance_free:
        tags.append('fragrance-free')
    tags.append(profile.water_type.value)
    tags.extend(DEFAULT_SEARCH_TAGS)

    seen: set[str] = set()
    return [t for t in tags if not (t in seen or seen.add(t))]

# ============================================================
# Orchestrator
# ============================================================

@dataclass
class FetchOutcome:
    records: list[CatalogRecord] = field(default_factory=list)
    failed_sources: list[str] = field(default_factory=list)


@dataclass
class SyncStats:
    products_fetched: int = 0
    products_after_dedup: int = 0
    products_persisted: int = 0
    persist_failures: int = 0
    enrichment_failures: int = 0
    failed_sources: list[str] = field(default_factory=list)


class RecommendationPipeline:

    def __init__(
        self,
        sources: Sequence[CatalogSource],
        scoring: ScoringEngine,
        reranker: AIReranker,
        repository: ProductRepository,
        eco: Optional[EcoScorer] = None,
        config: PipelineConfig = DEFAULT_PIPELINE_CONFIG,
    ):
        self.sources = list(sources)
        self.scoring = scoring
        self.reranker = reranker
        self.repository = repository
        self.eco = eco or EcoScorer()
        self.config = config

    # ----------------------------------------------------------
    # Public API
    # ----------------------------------------------------------

    async def run(
        self,
        user_id: str,
        profile: Optional[HairProfile],
        tags: Optional[Sequence[str]] = None,
        top_k: Optional[int] = None,
    ) -> RecommendationResult:
        start = time.monotonic()
        if not user_id or not user_id.strip():
            raise ValidationError("user_id is required")
        if profile is None:
            raise ValidationError("hair_profile is required")
        top_k = self.config.top_k if top_k is None else top_k
        if top_k < 1:
            raise ValidationError(f"top_k must be >= 1, got {top_k}")

        search_tags = list(tags) if tags else build_search_tags(profile)
        meta = RecommendationMetadata()

        fetched = await self.fetch_all(search_tags, self.config.source_fetch_limit)
        meta.total_products_found = len(fetched.records)
        meta.failed_sources = fetched.failed_sources

        records = deduplicate(fetched.records)
        meta.products_after_dedup = len(records)

        records = [r for r in records
                   if not is_blacklisted(r, self.scoring.config.blacklisted_brands)]
        records, meta.enrichment_failures = await self.enrich(records)

        scored = await self.scoring.score_all(records, profile, enrich=False)
        meta.products_after_filtering = len(scored)

        outcome = await self.reranker.rerank(scored, top_k)
        meta.rerank_mode = outcome.mode
        meta.cache_hit = outcome.cache_hit

        meta.persisted, meta.persist_failures = await self.persist(records)

        result = RecommendationResult(
            user_id=user_id,
            hair_profile=profile,
            recommendations=outcome.scores,
            metadata=meta,
        )
        meta.processing_time_ms = int((time.monotonic() - start) * 1000)
        try:
            await self.repository.save_recommendation(result)
            meta.result_saved = True
        except PersistenceError as e:
            logger.error(f"Could not save result for {user_id}: {e}")
        except Exception:
            logger.exception(f"Unexpected error saving result for {user_id}")

        logger.info(
            f"[recommend] user={user_id} found={meta.total_products_found} "
            f"dedup={meta.products_after_dedup} scored={meta.products_after_filtering} "
            f"returned={len(result.recommendations)} mode={meta.rerank_mode.value} "
            f"time={meta.processing_time_ms}ms")
        return result

    async def sync(self, tags: Sequence[str], limit: int) -> SyncStats:
        """Fetch, dedup, enrich and persist without scoring."""
        stats = SyncStats()
        fetched = await self.fetch_all(tags, limit)
        stats.products_fetched = len(fetched.records)
        stats.failed_sources = fetched.failed_sources

        records = deduplicate(fetched.records)
        stats.products_after_dedup = len(records)
        records, stats.enrichment_failures = await self.enrich(records)
        stats.products_persisted, stats.persist_failures = await self.persist(records)
        return stats

    async def aclose(self) -> None:
        for source in self.sources:
            await source.aclose()
        if self.scoring.review_service is not None:
            await self.scoring.review_service.aclose()

    # ----------------------------------------------------------
    # Stages
    # ----------------------------------------------------------

    async def fetch_all(self, tags: Sequence[str], limit: int) -> FetchOutcome:
        """Query every source concurrently; a failing source is recorded and skipped."""
        results = await asyncio.gather(
            *(asyncio.wait_for(s.search(tags, limit), timeout=self.config.source_timeout_seconds)
              for s in self.sources),
            return_exceptions=True,
        )
        outcome = FetchOutcome()
        for source, result in zip(self.sources, results):
            if isinstance(result, BaseException):
                logger.warning(f"Source {source.name} failed: {result!r}")
                outcome.failed_sources.append(source.name)
            else:
                logger.debug(f"Source {source.name} returned {len(result)} records")
                outcome.records.extend(result)
        return outcome

    async def enrich(self, records: Sequence[CatalogRecord]) -> tuple[list[CatalogRecord], int]:
        """
        Safety, reviews and eco score per record, in sequential batches.
        Records are enriched without profile data; user allergens are
        checked at scoring time.
        """
        async def one(record: CatalogRecord) -> tuple[CatalogRecord, int]:
            enriched, failures = await self.scoring.enrich_counting_failures(record)
            return self.eco.enrich(enriched), failures

        pairs = await gather_in_batches(records, one, self.config.enrichment_batch_size)
        return [r for r, _ in pairs], sum(f for _, f in pairs)

    async def persist(self, records: Sequence[CatalogRecord]) -> tuple[int, int]:
        """Upsert in chunks. Returns (records persisted, chunks failed)."""
        persisted = failed = 0
        size = self.config.persist_batch_size
        for start in range(0, len(records), size):
            chunk = records[start:start + size]
            try:
                persisted += await self.repository.upsert_products(chunk)
            except Exception as e:
                failed += 1
                logger.warning(
                    f"Persist chunk {start // size} ({len(chunk)} records) failed: {e!r}")
        return persisted, failed

# ============================================================
# Out-of-band Resync
# ============================================================

@dataclass
class SyncJob:
    job_id: str
    tags: list[str]
    limit: int
    status: JobStatus = JobStatus.QUEUED
    stats: Optional[SyncStats] = None
    error: Optional[str] = None
    task: Optional[asyncio.Task] = None

    @property
    def finished(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    def to_response(self) -> SyncResponse:
        stats = self.stats or SyncStats()
        return SyncResponse(
            job_id=self.job_id,
            status=self.status,
            products_fetched=stats.products_fetched,
            products_persisted=stats.products_persisted,
            failed_sources=stats.failed_sources,
            error=self.error,
        )


class SyncJobRunner:
    """
    Schedules catalog resyncs as asyncio tasks. Jobs never share state with
    a running recommendation; completion or failure is read back through
    ``status`` / ``wait``. ``submit`` must be called from inside a running
    event loop.
    """

    def __init__(self, pipeline: RecommendationPipeline, max_finished_jobs: int = 100):
        self.pipeline = pipeline
        self.max_finished_jobs = max_finished_jobs
        self.jobs: dict[str, SyncJob] = {}

    @property
    def active_count(self) -> int:
        return sum(1 for j in self.jobs.values() if not j.finished)

    def submit(self, tags: Sequence[str], limit: int) -> str:
        job = SyncJob(job_id=str(uuid4()), tags=list(tags), limit=limit)
        self.jobs[job.job_id] = job
        job.task = asyncio.get_running_loop().create_task(self._run(job))
        logger.info(f"[sync] job={job.job_id} queued tags={job.tags} limit={limit}")
        return job.job_id

    def status(self, job_id: str) -> Optional[SyncResponse]:
        job = self.jobs.get(job_id)
        return job.to_response() if job else None

    async def wait(self, job_id: str) -> SyncResponse:
        job = self.jobs.get(job_id)
        if job is None:
            raise KeyError(job_id)
        if job.task is not None:
            await asyncio.shield(job.task)
        return job.to_response()

    async def _run(self, job: SyncJob) -> None:
        job.status = JobStatus.PROCESSING
        try:
            job.stats = await self.pipeline.sync(job.tags, job.limit)
            job.status = JobStatus.COMPLETED
            logger.info(
                f"[sync] job={job.job_id} fetched={job.stats.products_fetched} "
                f"persisted={job.stats.products_persisted} "
                f"failed_sources={job.stats.failed_sources}")
        except Exception as e:
            job.status = JobStatus.FAILED
            job.error = str(e)
            logger.exception(f"Sync job {job.job_id} failed: {e}")
        finally:
            self._prune()

    def _prune(self) -> None:
        """Drop the oldest finished jobs beyond ``max_finished_jobs``."""
        finished = [jid for jid, j in self.jobs.items() if j.finished]
        for jid in finished[:max(0, len(finished) - self.max_finished_jobs)]:
            del self.jobs[jid]

# ============================================================
# Construction from Settings
# ============================================================

def scoring_config_from_settings(settings: Settings) -> ScoringConfig:
    return ScoringConfig(
        blacklisted_brands=tuple(settings.blacklisted_brand_list),
        enrichment_batch_size=settings.enrichment_batch_size,
        collaborator_timeout_seconds=settings.collaborator_timeout_seconds,
    )


def rerank_config_from_settings(settings: Settings) -> RerankConfig:
    return RerankConfig(
        timeout_seconds=settings.ai_timeout_seconds,
        cache_ttl_seconds=settings.rerank_cache_ttl_seconds,
        cache_max_entries=settings.rerank_cache_max_entries,
        model=settings.ai_model,
        temperature=settings.ai_temperature,
        max_tokens=settings.ai_max_tokens,
    )


def pipeline_config_from_settings(settings: Settings) -> PipelineConfig:
    return PipelineConfig(
        top_k=settings.default_top_k,
        source_fetch_limit=settings.source_fetch_limit,
        source_timeout_seconds=settings.http_timeout_seconds,
        enrichment_batch_size=settings.enrichment_batch_size,
        persist_batch_size=settings.persist_batch_size,
    )


def build_sources(settings: Settings) -> list[CatalogSource]:
    sources: list[CatalogSource] = [
        OpenBeautyFactsSource(settings.openbeautyfacts_api_url, settings.http_timeout_seconds),
    ]
    if settings.beautyfeeds_api_key:
        sources.append(BeautyFeedsSource(
            settings.beautyfeeds_api_url, settings.beautyfeeds_api_key,
            settings.http_timeout_seconds))
    else:
        logger.info("BeautyFeeds API key not set; source disabled")
    return sources


def build_pipeline(
    settings: Settings,
    repository: ProductRepository,
    sources: Optional[Sequence[CatalogSource]] = None,
) -> RecommendationPipeline:
    review_service: Optional[ReviewService] = None
    if settings.reviews_api_url:
        review_service = HttpReviewService(
            settings.reviews_api_url, settings.reviews_api_key, settings.http_timeout_seconds)

    rerank_config = rerank_config_from_settings(settings)
    oracle = None
    if settings.openai_api_key:
        oracle = OpenAIRerankOracle(settings.openai_api_key, rerank_config)
    else:
        logger.info("OpenAI API key not set; re-ranking runs in mock mode")

    scoring = ScoringEngine(
        config=scoring_config_from_settings(settings),
        safety_service=KnowledgeBaseSafetyService(),
        review_service=review_service,
        science_lookup=LocalIngredientScience(),
    )
    return RecommendationPipeline(
        sources=sources if sources is not None else build_sources(settings),
        scoring=scoring,
        reranker=AIReranker(oracle, rerank_config),
        repository=repository,
        config=pipeline_config_from_settings(settings),
    )
