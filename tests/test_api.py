#!/usr/bin/env python3
"""
Tests for api/main.py

Tests cover:
- Every analytics endpoint over the snapshot fixture
- 404 for years without rated contracts
- 503 when the ratings tables are unavailable
"""

import pytest
from fastapi.testclient import TestClient

from api.main import app
from api.services.stars_service import StarsAnalysisService, get_stars_analysis_service
from db.duckdb_layer import StarsQueryEngine
from stars_analytics.config import EngineConfig


@pytest.fixture
def client(engine):
    service = StarsAnalysisService(engine, EngineConfig())
    app.dependency_overrides[get_stars_analysis_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def unavailable_client():
    engine = StarsQueryEngine(register_sources=False)
    service = StarsAnalysisService(engine, EngineConfig())
    app.dependency_overrides[get_stars_analysis_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()
    engine.close()


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "version": "1.0.0"}


class TestRiskOpportunity:

    def test_defaults_to_latest_year(self, client):
        response = client.get("/api/stars/risk-opportunity")
        assert response.status_code == 200
        data = response.json()
        assert data['year'] == 2026
        assert data['focusContractCount'] == 2
        assert data['focusLabel'] == 'UnitedHealth'
        assert data['focusParentOrganizations'] == [
            'UnitedHealth Group, Inc.', 'UnitedHealthcare of Texas, Inc.',
        ]
        assert {c['contractId'] for c in data['byContract']} == {'H1001', 'H1002'}

    def test_unknown_year(self, client):
        response = client.get("/api/stars/risk-opportunity", params={"year": 1999})
        assert response.status_code == 404
        assert "1999" in response.json()['error']


class TestCohortComparison:

    def test_two_years(self, client):
        data = client.get("/api/stars/cohort-comparison").json()
        assert data['years'] == [2026, 2025]
        summary = data['yearSummaries'][0]
        assert summary['focusContractCount'] == 2
        assert summary['marketContractCount'] == 3
        assert [m['measureCode'] for m in summary['measures']] == ['C01', 'C02', 'C28', 'D08']

    def test_years_validated(self, client):
        assert client.get("/api/stars/cohort-comparison", params={"years": 0}).status_code == 422

    def test_year_over_year(self, client):
        data = client.get("/api/stars/year-over-year").json()
        assert data['currentYear'] == 2026
        assert data['previousYear'] == 2025
        assert data['measuresCompared'] == 4
        assert data['focusLabel'] == 'UnitedHealth'


class TestOperationsImpact:

    def test_removed_codes(self, client):
        response = client.get("/api/stars/operations-impact", params={"year": 2026, "removed": "c28, "})
        assert response.status_code == 200
        data = response.json()
        assert data['removedMeasureCodes'] == ['C28']
        assert data['summary']['totalContracts'] == 6
        assert set(data['rewardFactorImpact']) == {'overall', 'partC', 'partD'}

    def test_default_removal_list(self, client):
        data = client.get("/api/stars/operations-impact").json()
        assert 'C28' in data['removedMeasureCodes']


class TestRewardFactor:

    def test_rating_type(self, client):
        response = client.get(
            "/api/stars/reward-factor",
            params={"year": 2026, "rating_type": "part_c", "removed": "C28"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data['ratingType'] == 'part_c'
        assert data['year'] == 2026
        assert data['removedMeasureCodes'] == ['C28']
        assert 'officialComparison' in data
        assert len(data['distribution']) == 8

    def test_no_official_comparison_for_other_years(self, client):
        response = client.get("/api/stars/reward-factor", params={"year": 2025, "rating_type": "part_c"})
        assert response.status_code == 200
        data = response.json()
        assert data['year'] == 2025
        assert 'officialComparison' not in data

        impact = client.get("/api/stars/operations-impact", params={"year": 2025}).json()
        assert 'officialComparison' not in impact['rewardFactorImpact']['overall']

    def test_invalid_rating_type(self, client):
        response = client.get("/api/stars/reward-factor", params={"rating_type": "part_z"})
        assert response.status_code == 422


def test_empirical_cutpoints(client):
    data = client.get("/api/stars/empirical-cutpoints", params={"year": 2026}).json()
    assert data['year'] == 2026
    c01 = next(m for m in data['measures'] if m['measureCode'] == 'C01')
    assert c01['isAnalyzable'] is True
    assert c01['measureName'] == 'Breast Cancer Screening'
    # Unrated H3001 (star 1, score 5) is not part of the cut points
    assert c01['starCutPoints']['1'] is None


def test_data_unavailable(unavailable_client):
    response = unavailable_client.get("/api/stars/risk-opportunity")
    assert response.status_code == 503
    assert response.json()['error'] == 'Ratings data unavailable'
