"""
Reward Factor Threshold Engine
Based on CMS 2026 Star Ratings Technical Notes.

The reward factor rewards contracts with high, consistent performance:

1. Weighted mean of individual measure stars (performance)
2. Weighted variance of individual measure stars (consistency)

Percentile cut points are computed across all rankable contracts, once for
the current measure set and once with a set of measures removed, and every
contract is reclassified against both.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import Field, model_serializer

from .config import DEFAULT_CONFIG, EngineConfig
from .measures import RATING_CATEGORY_PART_C, RATING_CATEGORY_PART_D, normalize_codes
from .models import MeasureMeta, MetricObservation, ResultModel, latest_measure_meta
from .statistics import percentile, round_half_up, weighted_mean, weighted_variance

logger = logging.getLogger(__name__)


class RatingType(str, Enum):
    PART_C = "part_c"
    PART_D_MAPD = "part_d_mapd"
    PART_D_PDP = "part_d_pdp"
    OVERALL_MAPD = "overall_mapd"

    @property
    def category(self) -> Optional[str]:
        """Metric category the rating is computed from (None = all measures)."""
        if self is RatingType.PART_C:
            return RATING_CATEGORY_PART_C
        if self in (RatingType.PART_D_MAPD, RatingType.PART_D_PDP):
            return RATING_CATEGORY_PART_D
        return None


@dataclass
class ContractMeasure:
    """One scored measure of a contract, ready for weighting."""
    code: str
    star_value: float
    weight: float
    category: Optional[str] = None


class CohortStats(ResultModel):
    """Weighted performance statistics of one contract."""
    contract_id: str
    weighted_mean: Optional[float] = None
    weighted_variance: Optional[float] = None
    measure_count: int = 0
    total_weight: float = 0.0


class PercentileThresholds(ResultModel):
    mean_65th: Optional[float] = Field(default=None, alias='mean65th')
    mean_85th: Optional[float] = Field(default=None, alias='mean85th')
    variance_30th: Optional[float] = Field(default=None, alias='variance30th')
    variance_70th: Optional[float] = Field(default=None, alias='variance70th')


class ThresholdChanges(ResultModel):
    mean_65th_change: Optional[float] = Field(default=None, alias='mean65thChange')
    mean_85th_change: Optional[float] = Field(default=None, alias='mean85thChange')
    variance_30th_change: Optional[float] = Field(default=None, alias='variance30thChange')
    variance_70th_change: Optional[float] = Field(default=None, alias='variance70thChange')


class OfficialComparison(ResultModel):
    """Calculated minus published thresholds; informational only."""
    official: PercentileThresholds
    differences: PercentileThresholds
    percent_differences: PercentileThresholds


class RewardFactorResult(ResultModel):
    contract_id: str
    rating_type: RatingType
    weighted_mean: float
    weighted_variance: float
    mean_category: str
    variance_category: str
    r_factor: float
    base_rating: float
    adjusted_rating: float


class ContractRewardFactorImpact(ResultModel):
    contract_id: str
    current: RewardFactorResult
    projected: RewardFactorResult
    current_r_factor: float
    projected_r_factor: float
    r_factor_change: float


class RewardFactorMover(ResultModel):
    contract_id: str
    current_r_factor: float
    projected_r_factor: float
    change: float
    current_mean: float
    projected_mean: float
    current_variance: float
    projected_variance: float


class RewardFactorSummary(ResultModel):
    total_contracts: int
    contracts_gaining_r_factor: int
    contracts_losing_r_factor: int
    contracts_unchanged: int
    avg_r_factor_change: float


class RewardFactorImpact(ResultModel):
    rating_type: RatingType
    removed_measure_codes: List[str]
    current_thresholds: Optional[PercentileThresholds] = None
    projected_thresholds: Optional[PercentileThresholds] = None
    threshold_changes: Optional[ThresholdChanges] = None
    official_comparison: Optional[OfficialComparison] = None
    contract_results: List[ContractRewardFactorImpact]
    summary: RewardFactorSummary
    distribution: Dict[str, int]
    top_gainers: List[RewardFactorMover]
    top_losers: List[RewardFactorMover]

    @model_serializer(mode='wrap')
    def _omit_missing_official(self, handler):
        # An absent reference must not read as a zero difference
        data = handler(self)
        if self.official_comparison is None:
            data.pop('officialComparison', None)
            data.pop('official_comparison', None)
        return data


def _usable(measures: Iterable[ContractMeasure]) -> List[ContractMeasure]:
    return [m for m in measures if m.weight > 0 and m.star_value > 0]


def contract_stats(
    contract_id: str,
    measures: Sequence[ContractMeasure],
    category: Optional[str] = None
) -> CohortStats:
    """
    Weighted mean and variance of a contract's measure stars.

    Args:
        contract_id: Contract the measures belong to
        measures: The contract's measures
        category: Only use measures of this category ("Part C" / "Part D")

    Returns:
        CohortStats; mean/variance are None when no measure carries weight
    """
    filtered = [m for m in measures if category is None or m.category == category]
    valid = _usable(filtered)
    pairs = [(m.star_value, m.weight) for m in valid]

    mean = weighted_mean(pairs)
    variance = weighted_variance(pairs, mean) if mean is not None else None

    return CohortStats(
        contract_id=contract_id,
        weighted_mean=mean,
        weighted_variance=variance,
        measure_count=len(valid),
        total_weight=sum(m.weight for m in valid),
    )


def is_rankable(stats: CohortStats, config: EngineConfig = DEFAULT_CONFIG) -> bool:
    return (
        stats.weighted_mean is not None
        and stats.weighted_variance is not None
        and stats.measure_count >= config.min_measures_for_ranking
    )


def compute_percentile_thresholds(
    stats: Iterable[CohortStats],
    config: EngineConfig = DEFAULT_CONFIG
) -> Optional[PercentileThresholds]:
    """
    Percentile cut lines over the rankable contracts.

    Returns None when no contract can be ranked.
    """
    ranked = [s for s in stats if is_rankable(s, config)]
    if not ranked:
        return None

    means = sorted(s.weighted_mean for s in ranked)
    variances = sorted(s.weighted_variance for s in ranked)
    mean_low, mean_high = config.mean_percentiles
    var_low, var_high = config.variance_percentiles

    return PercentileThresholds(
        mean_65th=percentile(means, mean_low),
        mean_85th=percentile(means, mean_high),
        variance_30th=percentile(variances, var_low),
        variance_70th=percentile(variances, var_high),
    )


def classify_mean(mean: float, thresholds: PercentileThresholds) -> str:
    if mean >= thresholds.mean_85th:
        return 'high'
    if mean >= thresholds.mean_65th:
        return 'relatively_high'
    return 'below_threshold'


def classify_variance(variance: float, thresholds: PercentileThresholds) -> str:
    # Low variance is the desirable end
    if variance <= thresholds.variance_30th:
        return 'low'
    if variance >= thresholds.variance_70th:
        return 'high'
    return 'medium'


def reward_factor_for(
    mean_category: str,
    variance_category: str,
    config: EngineConfig = DEFAULT_CONFIG
) -> float:
    return config.reward_factor_table[mean_category][variance_category]


def clamp_rating(rating: float) -> float:
    return min(5.0, max(1.0, rating))


def calculate_reward_factor(
    stats: CohortStats,
    thresholds: PercentileThresholds,
    rating_type: RatingType,
    config: EngineConfig = DEFAULT_CONFIG,
    base_rating: Optional[float] = None
) -> RewardFactorResult:
    """Classify one rankable contract and apply its reward factor."""
    mean_category = classify_mean(stats.weighted_mean, thresholds)
    variance_category = classify_variance(stats.weighted_variance, thresholds)
    r_factor = reward_factor_for(mean_category, variance_category, config)

    base = base_rating if base_rating is not None else stats.weighted_mean

    return RewardFactorResult(
        contract_id=stats.contract_id,
        rating_type=rating_type,
        weighted_mean=stats.weighted_mean,
        weighted_variance=stats.weighted_variance,
        mean_category=mean_category,
        variance_category=variance_category,
        r_factor=r_factor,
        base_rating=base,
        adjusted_rating=clamp_rating(base + r_factor),
    )


def filter_measures(measures: Iterable[ContractMeasure], removed_codes: Iterable[str]) -> List[ContractMeasure]:
    """Drop measures whose code is in removed_codes (case-insensitive)."""
    removed = normalize_codes(removed_codes)
    return [m for m in measures if m.code.strip().upper() not in removed]


def compare_thresholds(
    current: Optional[PercentileThresholds],
    projected: Optional[PercentileThresholds]
) -> Optional[ThresholdChanges]:
    """Projected minus current, per cut line."""
    if current is None or projected is None:
        return None
    return ThresholdChanges(
        mean_65th_change=projected.mean_65th - current.mean_65th,
        mean_85th_change=projected.mean_85th - current.mean_85th,
        variance_30th_change=projected.variance_30th - current.variance_30th,
        variance_70th_change=projected.variance_70th - current.variance_70th,
    )


def compare_with_official(
    calculated: Optional[PercentileThresholds],
    official: Optional[PercentileThresholds]
) -> Optional[OfficialComparison]:
    """Raw and percent differences between calculated and published thresholds."""
    if calculated is None or official is None:
        return None

    def diff(name: str) -> float:
        return getattr(calculated, name) - getattr(official, name)

    def pct_diff(name: str) -> float:
        off = getattr(official, name)
        return (getattr(calculated, name) - off) / off * 100 if off != 0 else 0.0

    names = ('mean_65th', 'mean_85th', 'variance_30th', 'variance_70th')
    return OfficialComparison(
        official=official,
        differences=PercentileThresholds(**{n: diff(n) for n in names}),
        percent_differences=PercentileThresholds(**{n: pct_diff(n) for n in names}),
    )


def _change_label(change: float) -> str:
    if change > 0:
        return f"gained +{change:.1f}"
    return f"lost {change:.1f}"


def _empty_distribution() -> Dict[str, int]:
    steps = (0.4, 0.3, 0.2, 0.1)
    labels = [_change_label(s) for s in steps] + [_change_label(-s) for s in reversed(steps)]
    return {label: 0 for label in labels}


def _mover(result: ContractRewardFactorImpact) -> RewardFactorMover:
    return RewardFactorMover(
        contract_id=result.contract_id,
        current_r_factor=result.current_r_factor,
        projected_r_factor=result.projected_r_factor,
        change=result.r_factor_change,
        current_mean=result.current.weighted_mean,
        projected_mean=result.projected.weighted_mean,
        current_variance=result.current.weighted_variance,
        projected_variance=result.projected.weighted_variance,
    )


def analyze_reward_factor_impact(
    contract_measures: Mapping[str, Sequence[ContractMeasure]],
    removed_codes: Iterable[str],
    rating_type: RatingType = RatingType.OVERALL_MAPD,
    config: EngineConfig = DEFAULT_CONFIG,
    official: Optional[PercentileThresholds] = None
) -> RewardFactorImpact:
    """
    Compare reward factors with and without a set of measures.

    Args:
        contract_measures: {contract_id: measures} for every rated contract
        removed_codes: Measure codes excluded in the projected pass
        rating_type: Which rating the reward factor is computed for
        config: Engine constants
        official: Published thresholds to compare the current pass against

    Returns:
        RewardFactorImpact
    """
    removed = normalize_codes(removed_codes)
    category = rating_type.category

    current_stats: Dict[str, CohortStats] = {}
    projected_stats: Dict[str, CohortStats] = {}
    for contract_id, measures in contract_measures.items():
        current = contract_stats(contract_id, measures, category)
        if is_rankable(current, config):
            current_stats[contract_id] = current

        projected = contract_stats(contract_id, filter_measures(measures, removed), category)
        if is_rankable(projected, config):
            projected_stats[contract_id] = projected

    current_thresholds = compute_percentile_thresholds(current_stats.values(), config)
    projected_thresholds = compute_percentile_thresholds(projected_stats.values(), config)

    results: List[ContractRewardFactorImpact] = []
    for contract_id in sorted(contract_measures):
        current = current_stats.get(contract_id)
        projected = projected_stats.get(contract_id)
        if current is None or projected is None:
            continue

        current_result = calculate_reward_factor(current, current_thresholds, rating_type, config)
        projected_result = calculate_reward_factor(projected, projected_thresholds, rating_type, config)
        results.append(ContractRewardFactorImpact(
            contract_id=contract_id,
            current=current_result,
            projected=projected_result,
            current_r_factor=current_result.r_factor,
            projected_r_factor=projected_result.r_factor,
            r_factor_change=round_half_up(projected_result.r_factor - current_result.r_factor, 1),
        ))

    gains = [r for r in results if r.r_factor_change > 0]
    losses = [r for r in results if r.r_factor_change < 0]

    distribution = _empty_distribution()
    for r in gains + losses:
        label = _change_label(r.r_factor_change)
        distribution[label] = distribution.get(label, 0) + 1

    summary = RewardFactorSummary(
        total_contracts=len(results),
        contracts_gaining_r_factor=len(gains),
        contracts_losing_r_factor=len(losses),
        contracts_unchanged=len(results) - len(gains) - len(losses),
        avg_r_factor_change=sum(r.r_factor_change for r in results) / len(results) if results else 0.0,
    )

    top_gainers = sorted(gains, key=lambda r: (-r.r_factor_change, r.contract_id))[:config.top_movers]
    top_losers = sorted(losses, key=lambda r: (r.r_factor_change, r.contract_id))[:config.top_movers]

    logger.debug(
        "Reward factor %s: %d contracts, %d gaining, %d losing",
        rating_type.value, summary.total_contracts,
        summary.contracts_gaining_r_factor, summary.contracts_losing_r_factor,
    )

    return RewardFactorImpact(
        rating_type=rating_type,
        removed_measure_codes=sorted(removed),
        current_thresholds=current_thresholds,
        projected_thresholds=projected_thresholds,
        threshold_changes=compare_thresholds(current_thresholds, projected_thresholds),
        official_comparison=compare_with_official(current_thresholds, official),
        contract_results=results,
        summary=summary,
        distribution=distribution,
        top_gainers=[_mover(r) for r in top_gainers],
        top_losers=[_mover(r) for r in top_losers],
    )


def build_contract_measures(
    observations: Iterable[MetricObservation],
    measures: Iterable[MeasureMeta],
    allowed_contracts: Optional[Iterable[str]] = None,
    year: Optional[int] = None
) -> Dict[str, List[ContractMeasure]]:
    """
    Group star-rated observations by contract, attaching measure weights.

    Observations without a valid star rating, or whose measure has no
    positive weight, are skipped.
    """
    meta = latest_measure_meta(measures)
    allowed = set(allowed_contracts) if allowed_contracts is not None else None

    grouped: Dict[str, List[ContractMeasure]] = {}
    for obs in observations:
        if year is not None and obs.year != year:
            continue
        if allowed is not None and obs.contract_id not in allowed:
            continue
        if obs.star_bucket is None:
            continue
        measure = meta.get(obs.measure_code)
        if measure is None or measure.weight is None or measure.weight <= 0:
            continue
        grouped.setdefault(obs.contract_id, []).append(ContractMeasure(
            code=obs.measure_code,
            star_value=obs.star_rating,
            weight=measure.weight,
            category=obs.metric_category,
        ))
    return grouped
