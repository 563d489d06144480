#!/usr/bin/env python3
"""
Shared test fixtures for the stars analytics test suite.

Provides reusable fixtures for:
- Record factories (observations, measures, rated contracts)
- A two-year Star Ratings snapshot as DataFrames
- Query engines over registered DataFrames or Parquet files in tmp_path
"""

import sys
from pathlib import Path
from typing import Dict

import pandas as pd
import pytest

# Add parent to path for module imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from db.duckdb_layer import StarsQueryEngine
from stars_analytics.config import EngineConfig
from stars_analytics.models import MeasureMeta, MetricObservation, RatedContract


# ============================================================================
# RECORD FACTORIES
# ============================================================================

def obs(contract_id, measure_code, star=None, score=None, year=2026, category=None) -> MetricObservation:
    return MetricObservation(
        contract_id=contract_id,
        measure_code=measure_code,
        year=year,
        star_rating=star,
        rate_percent=score,
        metric_category=category,
    )


def measure(code, name=None, domain=None, weight=1.0, year=2026) -> MeasureMeta:
    return MeasureMeta(code=code, name=name, domain=domain, weight=weight, year=year)


def rated(contract_id, parent=None, overall=4.0, year=2026, part_c=None, part_d=None) -> RatedContract:
    return RatedContract(
        contract_id=contract_id,
        year=year,
        parent_organization=parent,
        overall_rating=overall,
        part_c_rating=part_c,
        part_d_rating=part_d,
    )


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig()


# ============================================================================
# SNAPSHOT DATA
# ============================================================================

PARENTS = {
    'H1001': 'UnitedHealth Group, Inc.',
    'H1002': 'UnitedHealthcare of Texas, Inc.',
    'H2001': 'Humana Inc.',
    'H2002': 'West Virginia United Health System',
    'H2003': 'CVS Health Corporation',
}

# Measure stars per contract: C01, C02, D08, C28
STARS = {
    'H1001': (4, 5, 4, 2),
    'H1002': (3, 4, 3, 5),
    'H2001': (5, 5, 4, 4),
    'H2002': (2, 3, 3, 3),
    'H2003': (3, 2, 5, 1),
}

MEASURES = (
    ('C01', 'Breast Cancer Screening', 'HEDIS Measures', 1.0, 'Part C'),
    ('C02', 'Diabetes Care - Blood Sugar Controlled', 'HEDIS Measures', 3.0, 'Part C'),
    ('D08', 'Medication Adherence for Diabetes Medications', 'Drug Safety and Accuracy of Drug Pricing', 3.0, 'Part D'),
    ('C28', 'Complaints about the Health Plan', 'Member Complaints', 2.0, 'Part C'),
)


def _snapshot_frames() -> Dict[str, pd.DataFrame]:
    summary_rows = []
    metric_rows = []
    measure_rows = []
    contract_rows = []

    for year, shift in ((2026, 0), (2025, -1)):
        for contract_id, parent in PARENTS.items():
            stars = [max(1, s + shift) for s in STARS[contract_id]]
            summary_rows.append({
                'contract_id': contract_id,
                'year': year,
                'parent_organization': parent,
                'overall_rating_numeric': 3.5 + (0.5 if stars[0] >= 4 else 0.0),
                'part_c_summary_numeric': 3.5,
                'part_d_summary_numeric': float(stars[2]),
            })
            contract_rows.append({
                'contract_id': contract_id,
                'year': year,
                'contract_name': f'{contract_id} Medicare Advantage',
                'organization_marketing_name': parent,
                'parent_organization': parent,
                'organization_type': 'Local CCP',
                'snp_indicator': 'No',
            })
            for (code, _, _, _, category), star in zip(MEASURES, stars):
                metric_rows.append({
                    'contract_id': contract_id,
                    'metric_code': code,
                    'metric_category': category,
                    'star_rating': str(star),
                    'rate_percent': 50.0 + star * 8 + (1.0 if contract_id.startswith('H1') else 0.0),
                    'year': year,
                })

        # Contract without an overall rating
        summary_rows.append({
            'contract_id': 'H3001',
            'year': year,
            'parent_organization': 'Elevance Health, Inc.',
            'overall_rating_numeric': None,
            'part_c_summary_numeric': None,
            'part_d_summary_numeric': None,
        })
        metric_rows.append({
            'contract_id': 'H3001', 'metric_code': 'C01', 'metric_category': 'Part C',
            'star_rating': '1', 'rate_percent': 5.0, 'year': year,
        })
        # Unusable rows
        metric_rows.append({
            'contract_id': 'H2001', 'metric_code': 'C99', 'metric_category': 'Part C',
            'star_rating': 'Plan too small to be measured', 'rate_percent': None, 'year': year,
        })

        for code, name, domain, weight, _ in MEASURES:
            measure_rows.append({'code': code, 'year': year, 'name': name, 'domain': domain, 'weight': weight})

    return {
        'summary_ratings': pd.DataFrame(summary_rows),
        'ma_metrics': pd.DataFrame(metric_rows),
        'ma_measures': pd.DataFrame(measure_rows),
        'ma_contracts': pd.DataFrame(contract_rows),
    }


@pytest.fixture
def snapshot_frames() -> Dict[str, pd.DataFrame]:
    """Two rated years (2026, 2025) for five contracts and four measures."""
    return _snapshot_frames()


@pytest.fixture
def engine(snapshot_frames) -> StarsQueryEngine:
    """Query engine serving the snapshot from registered DataFrames."""
    engine = StarsQueryEngine(register_sources=False)
    for table_name, df in snapshot_frames.items():
        engine.register_frame(table_name, df)
    yield engine
    engine.close()


@pytest.fixture
def parquet_dir(tmp_path, snapshot_frames) -> Path:
    """The snapshot written as one Parquet file per table."""
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    for table_name, df in snapshot_frames.items():
        df.to_parquet(data_dir / f"{table_name}.parquet", index=False)
    return data_dir
