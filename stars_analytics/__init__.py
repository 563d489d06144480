# MA Stars Analytics - Star Rating Projection & Threshold Engine
#
# Pure calculations over validated, in-memory snapshots of the ratings data.
# Data access lives in db/, HTTP in api/.
#
# Usage:
#     from stars_analytics import analyze_risk_opportunity, analyze_reward_factor_impact
#
#     summary = analyze_risk_opportunity(observations, rated_ids, focus_contracts, measures, year=2026)
#     impact = analyze_reward_factor_impact(contract_measures, removed_codes, RatingType.OVERALL_MAPD)

from .config import ConfigError, DEFAULT_CONFIG, EngineConfig, load_config
from .models import (
    ContractInfo,
    MeasureMeta,
    MetricObservation,
    RatedContract,
    rated_contract_ids,
)
from .measures import OrganizationMatcher
from .cutpoints import CutPointSet, analyzable_cut_points, derive_cut_points
from .risk_opportunity import analyze_risk_opportunity
from .reward_factor import (
    ContractMeasure,
    PercentileThresholds,
    RatingType,
    analyze_reward_factor_impact,
    build_contract_measures,
)
from .official_thresholds import official_thresholds
from .projection import analyze_operations_impact
from .comparison import build_cohort_comparison, calculate_percentages, compare_years

__all__ = [
    'ConfigError', 'DEFAULT_CONFIG', 'EngineConfig', 'load_config',
    'ContractInfo', 'MeasureMeta', 'MetricObservation', 'RatedContract', 'rated_contract_ids',
    'OrganizationMatcher',
    'CutPointSet', 'analyzable_cut_points', 'derive_cut_points',
    'analyze_risk_opportunity',
    'ContractMeasure', 'PercentileThresholds', 'RatingType',
    'analyze_reward_factor_impact', 'build_contract_measures',
    'official_thresholds',
    'analyze_operations_impact',
    'build_cohort_comparison', 'calculate_percentages', 'compare_years',
]
