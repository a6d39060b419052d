"""
Hair Care Recommender — FastAPI Application Layer
api.py

Endpoints:
  1. POST /recommend                  — Ranked recommendations for a hair profile
  2. POST /eco-score                  — Sustainability score for one record
  3. POST /compatibility              — Ingredient compatibility for a profile
  4. POST /sync                       — Queue a catalog resync
  5. GET  /sync/{job_id}              — Resync job status
  6. GET  /recommendations/{user_id}  — Saved results for a user
  7. GET  /health                     — Health check
"""
from __future__ import annotations
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from models import (
    CompatibilityRequest, CompatibilityResult, EcoScoreRequest, EcoScoreResult,
    HealthResponse, RecommendRequest, RecommendationResult, SyncRequest,
    SyncResponse, ValidationError, parse_ingredients_text,
)
from config import Settings, get_settings, configure_logging
from eco_score import EcoScorer
from ingredient_rules import IngredientCompatibilityEngine
from collaborators import LocalIngredientScience
from pipeline import RecommendationPipeline, SyncJobRunner, build_pipeline
from repository import AsyncPGRepository, DatabasePool, InMemoryRepository, ProductRepository

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

# ============================================================
# Application State (shared singletons)
# ============================================================

class AppState:
    """Holds all shared service instances."""
    settings: Settings
    repo: ProductRepository
    pipeline: RecommendationPipeline
    sync_runner: SyncJobRunner
    eco: EcoScorer
    compatibility: IngredientCompatibilityEngine
    science: LocalIngredientScience
    start_time: float
    request_count: int = 0

    def __init__(self):
        self.start_time = time.monotonic()
        self.request_count = 0


_state = AppState()


# ============================================================
# Lifespan: Startup / Shutdown
# ============================================================

async def _build_repository(settings: Settings) -> ProductRepository:
    dsn = settings.asyncpg_dsn
    if not dsn:
        logger.info("DATABASE_URL not set; using in-memory repository")
        return InMemoryRepository()
    db = DatabasePool(dsn, settings.db_pool_min, settings.db_pool_max)
    await db.initialize()
    repo = AsyncPGRepository(db)
    await repo.create_schema()
    return repo


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize services on startup, cleanup on shutdown."""
    settings = get_settings()
    configure_logging(settings)
    logger.info("Starting Hair Care Recommender...")

    _state.settings = settings
    _state.repo = await _build_repository(settings)
    _state.pipeline = build_pipeline(settings, _state.repo)
    _state.sync_runner = SyncJobRunner(_state.pipeline)
    _state.eco = _state.pipeline.eco
    _state.compatibility = _state.pipeline.scoring.compatibility
    _state.science = LocalIngredientScience()

    logger.info(
        f"System ready. sources={[s.name for s in _state.pipeline.sources]} "
        f"ai={'on' if _state.pipeline.reranker.oracle else 'mock'}")
    yield

    logger.info("Shutting down Hair Care Recommender...")
    await _state.pipeline.aclose()
    await _state.repo.close()


# ============================================================
# FastAPI App
# ============================================================

app = FastAPI(
    title="Hair Care Recommender API",
    description="Personalized hair-care product recommendations from catalog, "
                "ingredient, sustainability and review data.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================
# Middleware: Request Counting & Timing
# ============================================================

@app.middleware("http")
async def timing_middleware(request: Request, call_next):
    start = time.monotonic()
    _state.request_count += 1
    response = await call_next(request)
    elapsed = int((time.monotonic() - start) * 1000)
    response.headers["X-Response-Time-Ms"] = str(elapsed)
    return response


# ============================================================
# 1. POST /recommend — Recommendations
# ============================================================

@app.post("/recommend", response_model=RecommendationResult, tags=["Recommendations"])
async def recommend_products(request: RecommendRequest):
    """
    Fetch, score and rank products for a hair profile.

    Tags default to ones derived from the profile; top_k defaults to the
    configured value. Partial upstream failures are reported in ``metadata``.
    """
    try:
        return await _state.pipeline.run(
            request.user_id, request.hair_profile, request.tags, request.top_k)
    except ValidationError as e:
        raise HTTPException(422, str(e))
    except Exception as e:
        logger.exception("Recommendation failed")
        raise HTTPException(500, f"Recommendation error: {str(e)}")


# ============================================================
# 2. POST /eco-score — Sustainability
# ============================================================

@app.post("/eco-score", response_model=EcoScoreResult, tags=["Analysis"])
async def eco_score(request: EcoScoreRequest):
    return _state.eco.score(request.record)


# ============================================================
# 3. POST /compatibility — Ingredient Compatibility
# ============================================================

@app.post("/compatibility", response_model=CompatibilityResult, tags=["Analysis"])
async def ingredient_compatibility(request: CompatibilityRequest):
    ingredients = [i for raw in request.ingredients for i in parse_ingredients_text(raw)]
    if not ingredients:
        raise HTTPException(400, "At least one ingredient is required")
    return await _state.compatibility.score_with_lookup(
        ingredients, request.hair_profile, _state.science)


# ============================================================
# 4-5. Catalog Resync
# ============================================================

@app.post("/sync", response_model=SyncResponse, status_code=202, tags=["Catalog"])
async def queue_sync(request: SyncRequest):
    """Queue a fetch → dedup → enrich → persist pass. Returns a job id for polling."""
    job_id = _state.sync_runner.submit(request.tags, request.limit)
    return _state.sync_runner.status(job_id)


@app.get("/sync/{job_id}", response_model=SyncResponse, tags=["Catalog"])
async def sync_status(job_id: str):
    status = _state.sync_runner.status(job_id)
    if status is None:
        raise HTTPException(404, f"Sync job not found: {job_id}")
    return status


# ============================================================
# 6. GET /recommendations/{user_id} — History
# ============================================================

@app.get("/recommendations/{user_id}", response_model=list[RecommendationResult],
         tags=["Recommendations"])
async def recommendation_history(user_id: str, limit: int = Query(20, ge=1, le=100)):
    return await _state.repo.get_recommendations(user_id, limit)


# ============================================================
# 7. GET /health — Health Check
# ============================================================

@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check():
    """System health check."""
    uptime = int(time.monotonic() - _state.start_time)
    repo_health = await _state.repo.health_check()
    reranker = _state.pipeline.reranker

    components = {
        "repository": repo_health,
        "catalog_sources": {
            "status": "healthy",
            "sources": [s.name for s in _state.pipeline.sources],
        },
        "reranker": {
            "status": "healthy",
            "mode": "ai" if reranker.oracle else "mock",
        },
        "sync": {
            "status": "healthy",
            "active_jobs": _state.sync_runner.active_count,
            "retained_jobs": len(_state.sync_runner.jobs),
        },
        "api": {"status": "healthy", "request_count": _state.request_count},
    }
    status = "healthy" if repo_health.get("status") == "healthy" else "degraded"

    return HealthResponse(
        status=status,
        components=components,
        version=VERSION,
        uptime_seconds=uptime,
    )


# ============================================================
# Entry Point
# ============================================================

if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run("api:app", host=settings.host, port=settings.port,
                reload=settings.reload, log_level=settings.log_level.lower())
