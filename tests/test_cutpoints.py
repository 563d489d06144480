#!/usr/bin/env python3
"""
Tests for stars_analytics/cutpoints.py

Tests cover:
- Minimum score per star level
- Analyzable measures (two or more populated levels)
- Rated allow-list and year filtering
"""

from stars_analytics.cutpoints import analyzable_cut_points, derive_cut_points
from stars_analytics.models import latest_measure_meta

from conftest import measure, obs


def sample_observations():
    return [
        obs('H1', 'C01', star=1, score=10),
        obs('H2', 'C01', star=1, score=12),
        obs('H3', 'C01', star=2, score=15),
        obs('H4', 'C01', star=2, score=20),
        obs('H5', 'C01', star=3, score=25),
    ]


RATED = ['H1', 'H2', 'H3', 'H4', 'H5']


class TestDeriveCutPoints:

    def test_minimum_score_per_star(self):
        cut_points = derive_cut_points(sample_observations(), RATED)['C01']
        assert cut_points.star_cut_points == {1: 10, 2: 15, 3: 25, 4: None, 5: None}
        assert cut_points.sample_sizes == {1: 2, 2: 2, 3: 1, 4: 0, 5: 0}
        assert cut_points.total_contracts == 5
        assert cut_points.levels_with_data == 3
        assert cut_points.is_analyzable

    def test_score_summary(self):
        summary = derive_cut_points(sample_observations(), RATED)['C01'].score_summary
        assert summary.count == 5
        assert summary.min == 10
        assert summary.max == 25
        assert summary.median == 15

    def test_single_level_not_analyzable(self):
        observations = sample_observations() + [
            obs('H1', 'C02', star=4, score=70),
            obs('H2', 'C02', star=4, score=75),
        ]
        cut_points = derive_cut_points(observations, RATED)
        assert not cut_points['C02'].is_analyzable
        assert list(analyzable_cut_points(cut_points)) == ['C01']

    def test_unrated_contracts_ignored(self):
        observations = sample_observations() + [obs('H9', 'C01', star=1, score=2)]
        cut_points = derive_cut_points(observations, RATED)['C01']
        assert cut_points.cut_point(1) == 10

    def test_needs_star_and_score(self):
        observations = sample_observations() + [
            obs('H1', 'C01', star=3, score=None),
            obs('H2', 'C01', star=None, score=1),
            obs('H3', 'C01', star=7, score=1),
        ]
        cut_points = derive_cut_points(observations, RATED)['C01']
        assert cut_points.star_cut_points[3] == 25
        assert cut_points.total_contracts == 5

    def test_text_star_rating_rounded(self):
        observations = [
            obs('H1', 'C01', star='2.6', score=30),
            obs('H2', 'C01', star='1', score=5),
        ]
        cut_points = derive_cut_points(observations, RATED)['C01']
        assert cut_points.cut_point(3) == 30

    def test_year_filter(self):
        observations = sample_observations() + [obs('H1', 'C01', star=1, score=1, year=2025)]
        assert derive_cut_points(observations, RATED, year=2026)['C01'].cut_point(1) == 10
        assert derive_cut_points(observations, RATED, year=2025)['C01'].cut_point(1) == 1

    def test_measure_metadata(self):
        meta = latest_measure_meta([measure('C01', name='Breast Cancer Screening', domain='HEDIS Measures')])
        cut_points = derive_cut_points(sample_observations() + [obs('H1', 'C02', star=1, score=3),
                                                                 obs('H2', 'C02', star=2, score=4)],
                                       RATED, meta)
        assert cut_points['C01'].measure_name == 'Breast Cancer Screening'
        assert cut_points['C01'].domain == 'HEDIS Measures'
        assert cut_points['C02'].measure_name == 'C02'
        assert cut_points['C02'].domain is None

    def test_empty(self):
        assert derive_cut_points([], RATED) == {}

    def test_json_keys(self):
        data = derive_cut_points(sample_observations(), RATED)['C01'].to_dict()
        assert data['measureCode'] == 'C01'
        assert data['starCutPoints'] == {'1': 10.0, '2': 15.0, '3': 25.0, '4': None, '5': None}
        assert data['totalContracts'] == 5
