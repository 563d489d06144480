#!/usr/bin/env python3
"""
Tests for stars_analytics/models.py and stars_analytics/measures.py

Tests cover:
- parseFloat-style star rating parsing and star buckets
- Record normalization at the data boundary
- Latest-year-wins measure metadata
- Measure category flags and focus cohort matching
"""

import math

from stars_analytics.measures import (
    OrganizationMatcher,
    is_hedis_measure,
    is_inverse_measure,
    is_pharmacy_measure,
)
from stars_analytics.config import DEFAULT_FOCUS_ORGANIZATION_PATTERNS
from stars_analytics.models import (
    MetricObservation,
    latest_measure_meta,
    parse_float,
    rated_contract_ids,
    to_star_bucket,
)

from conftest import measure, rated


class TestParseFloat:

    def test_leading_number_prefix(self):
        assert parse_float("4 out of 5 stars") == 4.0
        assert parse_float(" 3.2e1 ") == 32.0
        assert parse_float(".5") == 0.5

    def test_numbers_pass_through(self):
        assert parse_float(3) == 3.0
        assert parse_float(4.5) == 4.5

    def test_unparseable_is_none(self):
        assert parse_float("Plan too new to be measured") is None
        assert parse_float("") is None
        assert parse_float("NaN") is None
        assert parse_float(None) is None
        assert parse_float(True) is None

    def test_non_finite_is_none(self):
        assert parse_float(math.inf) is None
        assert parse_float(float('nan')) is None
        assert parse_float("1e999") is None


class TestStarBucket:

    def test_rounds_half_up(self):
        assert to_star_bucket(4.5) == 5
        assert to_star_bucket(2.49) == 2
        assert to_star_bucket(1.0) == 1

    def test_out_of_range_discarded(self):
        assert to_star_bucket(0.5) is None
        assert to_star_bucket(5.4) is None
        assert to_star_bucket(None) is None


class TestMetricObservation:

    def test_normalizes_fields(self):
        o = MetricObservation(
            contract_id=" h1234 ", measure_code=" C01 ", year=2026,
            star_rating="3 stars", rate_percent="NaN", metric_category=" Part C ",
        )
        assert o.contract_id == "H1234"
        assert o.measure_code == "C01"
        assert o.star_rating == 3.0
        assert o.star_bucket == 3
        assert o.rate_percent is None
        assert o.metric_category == "Part C"
        assert o.is_usable
        assert not o.has_score

    def test_invalid_star_without_score_is_unusable(self):
        o = MetricObservation(contract_id="H1", measure_code="C01", year=2026, star_rating="6")
        assert o.star_bucket is None
        assert not o.is_usable

    def test_score_only_is_usable(self):
        o = MetricObservation(contract_id="H1", measure_code="C01", year=2026, rate_percent=81.5)
        assert o.star_bucket is None
        assert o.is_usable


class TestLatestMeasureMeta:

    def test_most_recent_year_wins(self):
        lookup = latest_measure_meta([
            measure('C01', name='Old name', year=2025),
            measure('C01', name='New name', year=2026),
            measure('C02', name='Undated', year=None),
            measure('C02', name='Dated', year=2024),
        ])
        assert lookup['C01'].name == 'New name'
        assert lookup['C02'].name == 'Dated'

    def test_display_name_falls_back_to_code(self):
        assert measure('C05').display_name == 'C05'


def test_rated_contract_ids_by_year():
    contracts = [rated('H2', year=2026), rated('H1', year=2026), rated('H3', year=2025)]
    assert rated_contract_ids(contracts, 2026) == ['H1', 'H2']
    assert rated_contract_ids(contracts) == ['H1', 'H2', 'H3']


class TestMeasureFlags:

    def test_hedis(self):
        assert is_hedis_measure('HEDIS Measures')
        assert not is_hedis_measure('Member Complaints')
        assert not is_hedis_measure(None)

    def test_pharmacy_by_domain_or_code(self):
        assert is_pharmacy_measure('Drug Safety and Accuracy of Drug Pricing', 'D99')
        assert is_pharmacy_measure(None, 'd10')
        assert not is_pharmacy_measure('HEDIS Measures', 'C01')

    def test_inverse(self):
        assert is_inverse_measure('Complaints about the Health Plan')
        assert is_inverse_measure(None, 'C29')
        assert not is_inverse_measure('Breast Cancer Screening', 'C01')


class TestOrganizationMatcher:

    def setup_method(self):
        self.matcher = OrganizationMatcher(DEFAULT_FOCUS_ORGANIZATION_PATTERNS)

    def test_matches_focus_names(self):
        assert self.matcher.matches('UnitedHealth Group, Inc.')
        assert self.matcher.matches('UnitedHealthcare of Texas, Inc.')
        assert self.matcher.matches('  UNITEDHEALTH  ')

    def test_similar_names_stay_in_market(self):
        assert not self.matcher.matches('West Virginia United Health System')
        assert not self.matcher.matches('Humana Inc.')
        assert not self.matcher.matches(None)

    def test_focus_contracts_for_year(self):
        contracts = [
            rated('H1', 'UnitedHealth Group, Inc.', year=2026),
            rated('H2', 'Humana Inc.', year=2026),
            rated('H3', 'UnitedHealthcare of Texas, Inc.', year=2025),
        ]
        assert self.matcher.focus_contracts(contracts, 2026) == {'H1': 'UnitedHealth Group, Inc.'}
        assert self.matcher.focus_parent_organizations(contracts) == [
            'UnitedHealth Group, Inc.', 'UnitedHealthcare of Texas, Inc.',
        ]
