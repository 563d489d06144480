"""
Cohort Comparison

Star distributions and measure score statistics for a focus cohort (one
parent organization family) against the rest of the rated market, per
measure per year, plus year-over-year deltas.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from .config import DEFAULT_CONFIG, EngineConfig
from .measures import OrganizationMatcher
from .models import STAR_BUCKETS, MeasureMeta, MetricObservation, RatedContract, ResultModel, latest_measure_meta
from .statistics import round_half_up

logger = logging.getLogger(__name__)

HIGH_STAR_BUCKETS = ('4', '5')


def empty_distribution() -> Dict[str, int]:
    distribution = {str(star): 0 for star in STAR_BUCKETS}
    distribution['total'] = 0
    return distribution


def calculate_percentages(distribution: Dict[str, int]) -> Dict[str, float]:
    """Share of each star level in percent; all zeros for an empty cohort."""
    total = distribution.get('total', 0)
    if total == 0:
        return {str(star): 0.0 for star in STAR_BUCKETS}
    return {str(star): distribution.get(str(star), 0) / total * 100 for star in STAR_BUCKETS}


class ScoreStats(ResultModel):
    avg: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    count: int = 0
    scores: List[float] = []


def score_stats(scores: Sequence[float]) -> ScoreStats:
    """Average, min and max rounded to 2 decimals, with the sorted scores."""
    if not scores:
        return ScoreStats()
    ordered = sorted(scores)
    return ScoreStats(
        avg=round_half_up(sum(ordered) / len(ordered), 2),
        min=round_half_up(ordered[0], 2),
        max=round_half_up(ordered[-1], 2),
        count=len(ordered),
        scores=ordered,
    )


class MeasureComparison(ResultModel):
    measure_code: str
    measure_name: str
    domain: Optional[str] = None
    year: int
    focus: Dict[str, int]
    market: Dict[str, int]
    focus_percentages: Dict[str, float]
    market_percentages: Dict[str, float]
    focus_scores: ScoreStats
    market_scores: ScoreStats
    focus_scores_by_star: Dict[str, ScoreStats]
    market_scores_by_star: Dict[str, ScoreStats]

    @property
    def has_data(self) -> bool:
        return (self.focus['total'] > 0 or self.market['total'] > 0
                or self.focus_scores.count > 0 or self.market_scores.count > 0)


class YearSummary(ResultModel):
    year: int
    focus_contract_count: int
    market_contract_count: int
    measures: List[MeasureComparison]


class CohortComparisonReport(ResultModel):
    focus_label: str
    market_label: str
    years: List[int]
    year_summaries: List[YearSummary]
    focus_parent_organizations: List[str]


class _CohortAccumulator:
    """Star counts and scores for one cohort, one measure, one year."""

    def __init__(self):
        self.distribution = empty_distribution()
        self.scores: List[float] = []
        self.scores_by_star: Dict[str, List[float]] = {str(star): [] for star in STAR_BUCKETS}

    def add(self, obs: MetricObservation) -> None:
        bucket = obs.star_bucket
        if bucket is not None:
            self.distribution[str(bucket)] += 1
            self.distribution['total'] += 1
        if obs.rate_percent is not None:
            self.scores.append(obs.rate_percent)
            if bucket is not None:
                self.scores_by_star[str(bucket)].append(obs.rate_percent)


def build_cohort_comparison(
    observations: Iterable[MetricObservation],
    rated: Iterable[RatedContract],
    measures: Iterable[MeasureMeta] = (),
    years: Optional[Sequence[int]] = None,
    config: EngineConfig = DEFAULT_CONFIG,
    matcher: Optional[OrganizationMatcher] = None
) -> CohortComparisonReport:
    """
    Per-year, per-measure star distributions for the focus and market cohorts.

    Args:
        observations: Metric rows
        rated: Contracts with an official overall rating; only these are counted
        measures: Measure metadata (names, domains)
        years: Years to summarize, most recent first (defaults to the rated years)
        config: Engine constants (cohort patterns and labels)
        matcher: Overrides the matcher built from config

    Returns:
        CohortComparisonReport
    """
    rated = list(rated)
    matcher = matcher or OrganizationMatcher(config.focus_organization_patterns)
    if years is None:
        years = sorted({r.year for r in rated}, reverse=True)
    years = list(years)

    focus_by_year: Dict[int, set] = {year: set() for year in years}
    market_by_year: Dict[int, set] = {year: set() for year in years}
    for r in rated:
        if r.year not in focus_by_year:
            continue
        if matcher.matches(r.parent_organization):
            focus_by_year[r.year].add(r.contract_id)
        else:
            market_by_year[r.year].add(r.contract_id)

    for year in years:
        logger.info(
            "Year %s rated contracts: %s=%d, %s=%d",
            year, config.focus_label, len(focus_by_year[year]), config.market_label, len(market_by_year[year]),
        )

    meta = latest_measure_meta(measures)

    accumulators: Dict[tuple, Dict[str, _CohortAccumulator]] = {}
    included = excluded = 0
    for obs in observations:
        if obs.year not in focus_by_year:
            continue
        if obs.contract_id in focus_by_year[obs.year]:
            cohort = 'focus'
        elif obs.contract_id in market_by_year[obs.year]:
            cohort = 'market'
        else:
            excluded += 1
            continue
        if not obs.is_usable:
            continue
        included += 1
        key = (obs.year, obs.measure_code)
        if key not in accumulators:
            accumulators[key] = {'focus': _CohortAccumulator(), 'market': _CohortAccumulator()}
        accumulators[key][cohort].add(obs)

    logger.debug("Included %d metrics from rated contracts, excluded %d", included, excluded)

    summaries = []
    for year in years:
        comparisons = []
        for code in sorted(code for (y, code) in accumulators if y == year):
            focus = accumulators[(year, code)]['focus']
            market = accumulators[(year, code)]['market']
            measure = meta.get(code)
            comparison = MeasureComparison(
                measure_code=code,
                measure_name=measure.display_name if measure else code,
                domain=measure.domain if measure else None,
                year=year,
                focus=focus.distribution,
                market=market.distribution,
                focus_percentages=calculate_percentages(focus.distribution),
                market_percentages=calculate_percentages(market.distribution),
                focus_scores=score_stats(focus.scores),
                market_scores=score_stats(market.scores),
                focus_scores_by_star={s: score_stats(v) for s, v in focus.scores_by_star.items()},
                market_scores_by_star={s: score_stats(v) for s, v in market.scores_by_star.items()},
            )
            if comparison.has_data:
                comparisons.append(comparison)

        summaries.append(YearSummary(
            year=year,
            focus_contract_count=len(focus_by_year[year]),
            market_contract_count=len(market_by_year[year]),
            measures=comparisons,
        ))

    return CohortComparisonReport(
        focus_label=config.focus_label,
        market_label=config.market_label,
        years=years,
        year_summaries=summaries,
        focus_parent_organizations=matcher.focus_parent_organizations(
            r for r in rated if r.year in focus_by_year
        ),
    )


class MeasureYearOverYear(ResultModel):
    measure_code: str
    measure_name: str
    domain: Optional[str] = None
    focus_high_star_change: float
    market_high_star_change: float
    focus_outperformed_market: bool
    relative_performance: float
    focus_star_changes: Dict[str, float]
    market_star_changes: Dict[str, float]
    focus_score_change: Optional[float] = None
    market_score_change: Optional[float] = None


class YearOverYearReport(ResultModel):
    current_year: int
    previous_year: int
    measures_compared: int
    focus_outperformed_count: int
    market_outperformed_count: int
    avg_focus_high_star_change: Optional[float] = None
    avg_market_high_star_change: Optional[float] = None
    measures: List[MeasureYearOverYear]


def high_star_percentage(percentages: Dict[str, float]) -> float:
    return sum(percentages[s] for s in HIGH_STAR_BUCKETS)


def _score_change(current: ScoreStats, previous: ScoreStats) -> Optional[float]:
    if current.avg is None or previous.avg is None:
        return None
    return round_half_up(current.avg - previous.avg, 2)


def compare_measure(current: MeasureComparison, previous: MeasureComparison) -> MeasureYearOverYear:
    """Year-over-year change of one measure for both cohorts."""
    focus_change = high_star_percentage(current.focus_percentages) - high_star_percentage(previous.focus_percentages)
    market_change = high_star_percentage(current.market_percentages) - high_star_percentage(previous.market_percentages)

    return MeasureYearOverYear(
        measure_code=current.measure_code,
        measure_name=current.measure_name,
        domain=current.domain,
        focus_high_star_change=focus_change,
        market_high_star_change=market_change,
        focus_outperformed_market=focus_change > market_change,
        relative_performance=focus_change - market_change,
        focus_star_changes={
            s: current.focus_percentages[s] - previous.focus_percentages[s] for s in current.focus_percentages
        },
        market_star_changes={
            s: current.market_percentages[s] - previous.market_percentages[s] for s in current.market_percentages
        },
        focus_score_change=_score_change(current.focus_scores, previous.focus_scores),
        market_score_change=_score_change(current.market_scores, previous.market_scores),
    )


def compare_years(current: YearSummary, previous: YearSummary) -> YearOverYearReport:
    """
    Compare two year summaries over the measures present in both.

    Measures are matched by code; the result is sorted by relative
    performance, focus cohort's best first.
    """
    previous_by_code = {m.measure_code: m for m in previous.measures}
    changes = [
        compare_measure(m, previous_by_code[m.measure_code])
        for m in current.measures
        if m.measure_code in previous_by_code
    ]
    changes.sort(key=lambda c: (-c.relative_performance, c.measure_code))

    focus_better = sum(1 for c in changes if c.focus_outperformed_market)
    market_better = sum(1 for c in changes if c.relative_performance < 0)

    return YearOverYearReport(
        current_year=current.year,
        previous_year=previous.year,
        measures_compared=len(changes),
        focus_outperformed_count=focus_better,
        market_outperformed_count=market_better,
        avg_focus_high_star_change=(
            sum(c.focus_high_star_change for c in changes) / len(changes) if changes else None
        ),
        avg_market_high_star_change=(
            sum(c.market_high_star_change for c in changes) / len(changes) if changes else None
        ),
        measures=changes,
    )
