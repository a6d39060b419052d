"""
API tests using FastAPI's TestClient over the in-memory stack.
"""
import random

import pytest
from fastapi.testclient import TestClient

import api
from config import Settings
from collaborators import StaticCatalogSource
from pipeline import PipelineConfig, RecommendationPipeline
from reranker import AIReranker


PROFILE = {
    'hair_type': 'Curly',
    'porosity': 'low',
    'water_type': 'hard',
    'concerns': ['dryness', 'frizz'],
    'preferences': {'vegan': True, 'cruelty_free': True},
    'budget': 'medium',
}


@pytest.fixture
def client(monkeypatch, catalog, scoring_engine):
    """TestClient whose lifespan builds a pipeline over the static catalog."""
    settings = Settings(_env_file=None, database_url=None, openai_api_key=None)

    def fake_build_pipeline(settings, repository):
        return RecommendationPipeline(
            sources=[StaticCatalogSource(catalog)],
            scoring=scoring_engine,
            reranker=AIReranker(rng=random.Random(0)),
            repository=repository,
            config=PipelineConfig(top_k=2),
        )

    logging_calls = []
    monkeypatch.setattr(api, 'get_settings', lambda: settings)
    monkeypatch.setattr(api, 'build_pipeline', fake_build_pipeline)
    monkeypatch.setattr(api, 'configure_logging', logging_calls.append)
    with TestClient(api.app) as c:
        c.logging_calls = logging_calls
        c.settings = settings
        yield c


class TestSystem:

    def test_health(self, client):
        resp = client.get('/health')
        assert resp.status_code == 200
        body = resp.json()
        assert body['status'] == 'healthy'
        assert body['components']['repository']['backend'] == 'memory'
        assert body['components']['reranker']['mode'] == 'mock'
        assert 'X-Response-Time-Ms' in resp.headers

    def test_health_reports_requests_and_jobs(self, client):
        client.get('/health')
        body = client.get('/health').json()
        assert body['components']['api']['request_count'] >= 2
        assert body['components']['sync']['active_jobs'] == 0

    def test_startup_configures_logging(self, client):
        assert client.logging_calls == [client.settings]


class TestRecommend:
    """Test POST /recommend and history."""

    def test_recommend(self, client):
        resp = client.post('/recommend', json={'user_id': 'u1', 'hair_profile': PROFILE})
        assert resp.status_code == 200
        body = resp.json()
        assert len(body['recommendations']) == 2
        assert body['recommendations'][0]['record']['id'] == 'p1'
        assert body['recommendations'][0]['final_rank'] == 1
        assert body['metadata']['rerank_mode'] == 'mock'
        assert body['hair_profile']['hair_type'] == 'curly'

    def test_top_k_override(self, client):
        resp = client.post('/recommend', json={'user_id': 'u1', 'hair_profile': PROFILE, 'top_k': 4})
        assert len(resp.json()['recommendations']) == 4

    def test_missing_profile_is_422(self, client):
        resp = client.post('/recommend', json={'user_id': 'u1'})
        assert resp.status_code == 422
        assert 'hair_profile' in resp.json()['detail']

    def test_invalid_enum_is_422(self, client):
        bad = {**PROFILE, 'porosity': 'extreme'}
        resp = client.post('/recommend', json={'user_id': 'u1', 'hair_profile': bad})
        assert resp.status_code == 422

    def test_history(self, client):
        client.post('/recommend', json={'user_id': 'u2', 'hair_profile': PROFILE})
        resp = client.get('/recommendations/u2')
        assert resp.status_code == 200
        assert len(resp.json()) == 1
        assert client.get('/recommendations/nobody').json() == []


class TestAnalysis:
    """Test the stateless scoring endpoints."""

    def test_eco_score(self, client):
        record = {'name': 'Aloe Wash', 'ingredients': ['Aqua', 'Aloe Vera'], 'tags': ['organic']}
        resp = client.post('/eco-score', json={'record': record})
        assert resp.status_code == 200
        assert resp.json()['score'] == 70
        assert resp.json()['grade'] == 'B'

    def test_compatibility(self, client):
        resp = client.post('/compatibility', json={
            'ingredients': ['Coconut Oil, Shea Butter'],
            'hair_profile': {'hair_type': 'straight', 'porosity': 'low'},
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body['adjustment'] < 0
        assert any('low-porosity' in w for w in body['warnings'])

    def test_compatibility_requires_ingredients(self, client):
        resp = client.post('/compatibility', json={
            'ingredients': [' '],
            'hair_profile': {'hair_type': 'straight', 'porosity': 'low'},
        })
        assert resp.status_code == 400


class TestSync:
    """Test resync job submission and polling."""

    def test_submit_and_poll(self, client):
        resp = client.post('/sync', json={'tags': ['curly'], 'limit': 10})
        assert resp.status_code == 202
        job_id = resp.json()['job_id']
        status = client.get(f'/sync/{job_id}')
        assert status.status_code == 200
        assert status.json()['status'] in ('queued', 'processing', 'completed')

    def test_unknown_job_is_404(self, client):
        assert client.get('/sync/does-not-exist').status_code == 404

    def test_limit_validated(self, client):
        assert client.post('/sync', json={'limit': 0}).status_code == 422
