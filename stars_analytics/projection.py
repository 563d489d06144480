"""
Rating Projection (Operations Impact)

Projects how contract ratings move when CMS removes a set of measures from
the Star Ratings:

1. Current ratings: official summary ratings, or the weighted mean of the
   contract's measure stars when no official rating exists
2. Projected ratings: weighted mean without the removed measures
3. Final projected ratings: projected rating plus the reward factor the
   contract earns against the projected thresholds
4. Portfolio and parent organization rollups of the changes
"""

import logging
from typing import Dict, Iterable, List, Optional

from .config import DEFAULT_CONFIG, EngineConfig
from .measures import RATING_CATEGORY_PART_C, RATING_CATEGORY_PART_D, normalize_codes
from .models import ContractInfo, MeasureMeta, MetricObservation, RatedContract, ResultModel, latest_measure_meta
from .official_thresholds import official_thresholds
from .reward_factor import (
    ContractRewardFactorImpact,
    RatingType,
    RewardFactorImpact,
    analyze_reward_factor_impact,
    build_contract_measures,
    clamp_rating,
)
from .statistics import round_to_half, weighted_mean

logger = logging.getLogger(__name__)

# Rating changes smaller than this count as unchanged
CHANGE_TOLERANCE = 0.01

UNKNOWN_PARENT = 'Unknown'


class DomainMeasure(ResultModel):
    code: str
    name: Optional[str] = None
    weight: float
    is_being_removed: bool


class DomainSummary(ResultModel):
    domain: str
    measure_count: int = 0
    removed_measure_count: int = 0
    total_weight: float = 0.0
    removed_weight: float = 0.0
    measures: List[DomainMeasure] = []


class RemovedMeasure(ResultModel):
    code: str
    name: Optional[str] = None
    domain: str
    weight: float


class RemovedMeasuresSummary(ResultModel):
    count: int
    total_weight: float


class ContractRewardFactor(ResultModel):
    """Overall reward factor of one contract before and after the removal."""
    current_r_factor: float
    projected_r_factor: float
    r_factor_change: float
    current_mean: float
    projected_mean: float
    current_variance: float
    projected_variance: float
    current_adjusted_rating: float
    projected_adjusted_rating: float


class ContractProjection(ResultModel):
    contract_id: str
    contract_name: Optional[str] = None
    organization_marketing_name: Optional[str] = None
    parent_organization: Optional[str] = None
    organization_type: Optional[str] = None
    snp_indicator: Optional[str] = None

    current_overall_rating: Optional[float] = None
    current_part_c_rating: Optional[float] = None
    current_part_d_rating: Optional[float] = None
    projected_overall_rating: Optional[float] = None
    projected_part_c_rating: Optional[float] = None
    projected_part_d_rating: Optional[float] = None
    final_projected_overall: Optional[float] = None
    final_projected_part_c: Optional[float] = None
    final_projected_part_d: Optional[float] = None

    overall_change: Optional[float] = None
    part_c_change: Optional[float] = None
    part_d_change: Optional[float] = None
    final_overall_change: Optional[float] = None
    star_bracket_change: int = 0
    final_star_bracket_change: int = 0

    measures_excluded: int = 0
    total_measures_used: int = 0
    total_measures_without_removed: int = 0

    reward_factor: Optional[ContractRewardFactor] = None


class BracketTransition(ResultModel):
    transition: str
    count: int
    direction: str


class ParentOrganizationImpact(ResultModel):
    parent_organization: str
    contract_count: int
    avg_current_rating: Optional[float] = None
    avg_projected_rating: Optional[float] = None
    avg_final_projected_rating: Optional[float] = None
    avg_overall_change: Optional[float] = None
    avg_final_overall_change: Optional[float] = None
    contracts_gaining: int
    contracts_losing: int
    bracket_gainers: int
    bracket_losers: int
    final_bracket_gainers: int
    final_bracket_losers: int


class ProjectionSummary(ResultModel):
    total_contracts: int
    avg_overall_change: float
    avg_final_overall_change: Optional[float] = None
    contracts_gaining: int
    contracts_losing: int
    contracts_unchanged: int
    final_contracts_gaining: int
    final_contracts_losing: int
    bracket_gainers: int
    bracket_losers: int
    final_bracket_gainers: int
    final_bracket_losers: int
    bracket_change_distribution: Dict[str, int]
    bracket_transitions: List[BracketTransition]
    total_parent_orgs: int


class OperationsImpactReport(ResultModel):
    year: Optional[int] = None
    removed_measure_codes: List[str]
    domains: List[DomainSummary]
    removed_measures: List[RemovedMeasure]
    removed_measures_summary: RemovedMeasuresSummary
    summary: ProjectionSummary
    contracts: List[ContractProjection]
    parent_organizations: List[ParentOrganizationImpact]
    reward_factor_impact: Dict[str, RewardFactorImpact]


def star_bracket_change(current: Optional[float], projected: Optional[float]) -> int:
    """Signed number of half-star steps between two ratings."""
    if current is None or projected is None:
        return 0
    return int(round((round_to_half(projected) - round_to_half(current)) * 2))


def _change(current: Optional[float], projected: Optional[float]) -> Optional[float]:
    if current is None or projected is None:
        return None
    return projected - current


def _average(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def summarize_domains(meta: Dict[str, MeasureMeta], removed: frozenset) -> List[DomainSummary]:
    """Measure counts and weights per domain, with the removed share."""
    domains: Dict[str, DomainSummary] = {}
    for code in sorted(meta):
        measure = meta[code]
        if not measure.domain or measure.weight is None:
            continue
        is_removed = code.upper() in removed
        summary = domains.setdefault(measure.domain, DomainSummary(domain=measure.domain))
        summary.measure_count += 1
        summary.total_weight += measure.weight
        if is_removed:
            summary.removed_measure_count += 1
            summary.removed_weight += measure.weight
        summary.measures.append(DomainMeasure(
            code=code, name=measure.name, weight=measure.weight, is_being_removed=is_removed,
        ))
    return [domains[d] for d in sorted(domains)]


def removed_measure_list(meta: Dict[str, MeasureMeta], removed: frozenset) -> List[RemovedMeasure]:
    return [
        RemovedMeasure(code=code, name=m.name, domain=m.domain, weight=m.weight)
        for code, m in sorted(meta.items())
        if code.upper() in removed and m.domain and m.weight is not None
    ]


def _project_contract(
    contract_id: str,
    observations: List[MetricObservation],
    meta: Dict[str, MeasureMeta],
    removed: frozenset,
    rated: Optional[RatedContract],
    info: Optional[ContractInfo]
) -> ContractProjection:
    current = {'overall': [], RATING_CATEGORY_PART_C: [], RATING_CATEGORY_PART_D: []}
    projected = {'overall': [], RATING_CATEGORY_PART_C: [], RATING_CATEGORY_PART_D: []}
    used = excluded = 0

    for obs in observations:
        measure = meta.get(obs.measure_code)
        if measure is None or measure.weight is None or measure.weight <= 0:
            continue
        pair = (obs.star_rating, measure.weight)
        used += 1
        current['overall'].append(pair)
        if obs.metric_category in current:
            current[obs.metric_category].append(pair)

        if obs.measure_code.upper() in removed:
            excluded += 1
            continue
        projected['overall'].append(pair)
        if obs.metric_category in projected:
            projected[obs.metric_category].append(pair)

    def official_or_mean(official: Optional[float], key: str) -> Optional[float]:
        return official if official is not None else weighted_mean(current[key])

    current_overall = official_or_mean(rated.overall_rating if rated else None, 'overall')
    current_part_c = official_or_mean(rated.part_c_rating if rated else None, RATING_CATEGORY_PART_C)
    current_part_d = official_or_mean(rated.part_d_rating if rated else None, RATING_CATEGORY_PART_D)
    projected_overall = weighted_mean(projected['overall'])
    projected_part_c = weighted_mean(projected[RATING_CATEGORY_PART_C])
    projected_part_d = weighted_mean(projected[RATING_CATEGORY_PART_D])

    return ContractProjection(
        contract_id=contract_id,
        contract_name=info.contract_name if info else None,
        organization_marketing_name=info.organization_marketing_name if info else None,
        parent_organization=(info.parent_organization if info else None) or (rated.parent_organization if rated else None),
        organization_type=info.organization_type if info else None,
        snp_indicator=info.snp_indicator if info else None,
        current_overall_rating=current_overall,
        current_part_c_rating=current_part_c,
        current_part_d_rating=current_part_d,
        projected_overall_rating=projected_overall,
        projected_part_c_rating=projected_part_c,
        projected_part_d_rating=projected_part_d,
        overall_change=_change(current_overall, projected_overall),
        part_c_change=_change(current_part_c, projected_part_c),
        part_d_change=_change(current_part_d, projected_part_d),
        star_bracket_change=star_bracket_change(current_overall, projected_overall),
        measures_excluded=excluded,
        total_measures_used=used,
        total_measures_without_removed=used - excluded,
    )


def apply_reward_factor(
    projection: ContractProjection,
    overall: Optional[ContractRewardFactorImpact],
    part_c: Optional[ContractRewardFactorImpact] = None,
    part_d: Optional[ContractRewardFactorImpact] = None
) -> None:
    """Fold the projected reward factors into the final projected ratings."""
    if overall is not None and projection.projected_overall_rating is not None:
        current_rating = projection.current_overall_rating
        if current_rating is None:
            current_rating = overall.current.weighted_mean
        current_rating = clamp_rating(current_rating)
        final = clamp_rating(projection.projected_overall_rating + overall.projected_r_factor)

        projection.final_projected_overall = final
        projection.final_overall_change = final - current_rating
        projection.final_star_bracket_change = star_bracket_change(current_rating, final)
        projection.reward_factor = ContractRewardFactor(
            current_r_factor=overall.current_r_factor,
            projected_r_factor=overall.projected_r_factor,
            r_factor_change=overall.r_factor_change,
            current_mean=overall.current.weighted_mean,
            projected_mean=overall.projected.weighted_mean,
            current_variance=overall.current.weighted_variance,
            projected_variance=overall.projected.weighted_variance,
            current_adjusted_rating=overall.current.adjusted_rating,
            projected_adjusted_rating=final,
        )

    if part_c is not None and projection.projected_part_c_rating is not None:
        projection.final_projected_part_c = clamp_rating(projection.projected_part_c_rating + part_c.projected_r_factor)
    if part_d is not None and projection.projected_part_d_rating is not None:
        projection.final_projected_part_d = clamp_rating(projection.projected_part_d_rating + part_d.projected_r_factor)


def _direction(change: float) -> str:
    if change > CHANGE_TOLERANCE:
        return 'gain'
    if change < -CHANGE_TOLERANCE:
        return 'loss'
    return 'unchanged'


def bracket_transitions(projections: Iterable[ContractProjection]) -> List[BracketTransition]:
    """Counts of half-star moves such as "4.0★ → 3.5★"; gains first, then unchanged, then losses."""
    counts: Dict[str, BracketTransition] = {}
    for p in projections:
        if p.current_overall_rating is None:
            continue
        final = p.final_projected_overall if p.final_projected_overall is not None else p.projected_overall_rating
        if final is None:
            continue
        current_bracket = round_to_half(p.current_overall_rating)
        final_bracket = round_to_half(final)
        label = f"{current_bracket:.1f}★ → {final_bracket:.1f}★"
        entry = counts.setdefault(label, BracketTransition(
            transition=label, count=0, direction=_direction(final_bracket - current_bracket),
        ))
        entry.count += 1

    order = {'gain': 0, 'unchanged': 1, 'loss': 2}
    return sorted(counts.values(), key=lambda t: (order[t.direction], -t.count, t.transition))


def bracket_change_distribution(projections: Iterable[ContractProjection]) -> Dict[str, int]:
    """Contracts per half-star change of the final projected rating."""
    distribution = {
        '+1.0★+': 0, '+0.5★': 0, 'No change': 0,
        '-0.5★': 0, '-1.0★': 0, '-1.5★': 0, '-2.0★+': 0,
    }
    labels = {1: '+0.5★', 0: 'No change', -1: '-0.5★', -2: '-1.0★', -3: '-1.5★'}
    for p in projections:
        steps = p.final_star_bracket_change
        if steps >= 2:
            distribution['+1.0★+'] += 1
        elif steps <= -4:
            distribution['-2.0★+'] += 1
        else:
            distribution[labels[steps]] += 1
    return distribution


def parent_organization_rollups(projections: Iterable[ContractProjection]) -> List[ParentOrganizationImpact]:
    grouped: Dict[str, List[ContractProjection]] = {}
    for p in projections:
        parent = (p.parent_organization or '').strip() or UNKNOWN_PARENT
        grouped.setdefault(parent, []).append(p)

    rollups = []
    for parent, contracts in grouped.items():
        with_ratings = [c for c in contracts
                        if c.current_overall_rating is not None and c.projected_overall_rating is not None]
        with_final = [c for c in contracts
                      if c.current_overall_rating is not None and c.final_projected_overall is not None]

        rollups.append(ParentOrganizationImpact(
            parent_organization=parent,
            contract_count=len(contracts),
            avg_current_rating=_average([c.current_overall_rating for c in with_ratings]),
            avg_projected_rating=_average([c.projected_overall_rating for c in with_ratings]),
            avg_final_projected_rating=_average([c.final_projected_overall for c in with_final]),
            avg_overall_change=_average([c.overall_change for c in with_ratings]),
            avg_final_overall_change=_average([c.final_overall_change for c in with_final]),
            contracts_gaining=sum(1 for c in contracts if (c.overall_change or 0) > CHANGE_TOLERANCE),
            contracts_losing=sum(1 for c in contracts if (c.overall_change or 0) < -CHANGE_TOLERANCE),
            bracket_gainers=sum(1 for c in contracts if c.star_bracket_change > 0),
            bracket_losers=sum(1 for c in contracts if c.star_bracket_change < 0),
            final_bracket_gainers=sum(1 for c in contracts if c.final_star_bracket_change > 0),
            final_bracket_losers=sum(1 for c in contracts if c.final_star_bracket_change < 0),
        ))

    def sort_key(r: ParentOrganizationImpact):
        change = r.avg_final_overall_change if r.avg_final_overall_change is not None else r.avg_overall_change
        return (-(change if change is not None else float('-inf')), r.parent_organization)

    return sorted(rollups, key=sort_key)


def analyze_operations_impact(
    observations: Iterable[MetricObservation],
    measures: Iterable[MeasureMeta],
    rated: Iterable[RatedContract],
    contracts: Iterable[ContractInfo] = (),
    removed_codes: Optional[Iterable[str]] = None,
    year: Optional[int] = None,
    config: EngineConfig = DEFAULT_CONFIG
) -> OperationsImpactReport:
    """
    Project every contract's ratings without the removed measures.

    Args:
        observations: Metric rows for the year
        measures: Measure metadata (domain, weight)
        rated: Official summary ratings; their ids are the reward factor population
        contracts: Descriptive contract attributes
        removed_codes: Measure codes to remove (defaults to config.removed_measure_codes)
        year: Rating year
        config: Engine constants

    Returns:
        OperationsImpactReport
    """
    removed = normalize_codes(removed_codes if removed_codes is not None else config.removed_measure_codes)
    measures = [m for m in measures if year is None or m.year is None or m.year == year]
    meta = latest_measure_meta(measures)

    rated_by_id = {r.contract_id: r for r in rated if year is None or r.year == year}
    info_by_id = {c.contract_id: c for c in contracts}

    by_contract: Dict[str, List[MetricObservation]] = {}
    observations = [o for o in observations if year is None or o.year == year]
    for obs in observations:
        if obs.star_bucket is None:
            continue
        by_contract.setdefault(obs.contract_id, []).append(obs)

    projections = [
        _project_contract(cid, rows, meta, removed, rated_by_id.get(cid), info_by_id.get(cid))
        for cid, rows in sorted(by_contract.items())
    ]

    contract_measures = build_contract_measures(observations, measures, rated_by_id.keys(), year)
    impacts = {
        key: analyze_reward_factor_impact(
            contract_measures, removed, rating_type, config, official=official_thresholds(rating_type, year=year),
        )
        for key, rating_type in (
            ('overall', RatingType.OVERALL_MAPD),
            ('partC', RatingType.PART_C),
            ('partD', RatingType.PART_D_MAPD),
        )
    }
    results = {key: {r.contract_id: r for r in impact.contract_results} for key, impact in impacts.items()}

    for p in projections:
        apply_reward_factor(
            p,
            results['overall'].get(p.contract_id),
            results['partC'].get(p.contract_id),
            results['partD'].get(p.contract_id),
        )

    def sort_key(p: ContractProjection):
        change = p.final_overall_change if p.final_overall_change is not None else p.overall_change
        return (-(change if change is not None else float('-inf')), p.contract_id)

    projections.sort(key=sort_key)

    valid = [p for p in projections if p.overall_change is not None]
    with_final = [p for p in valid if p.final_overall_change is not None]
    parents = parent_organization_rollups(valid)

    summary = ProjectionSummary(
        total_contracts=len(valid),
        avg_overall_change=_average([p.overall_change for p in valid]) or 0.0,
        avg_final_overall_change=_average([p.final_overall_change for p in with_final]),
        contracts_gaining=sum(1 for p in valid if p.overall_change > CHANGE_TOLERANCE),
        contracts_losing=sum(1 for p in valid if p.overall_change < -CHANGE_TOLERANCE),
        contracts_unchanged=sum(1 for p in valid if abs(p.overall_change) <= CHANGE_TOLERANCE),
        final_contracts_gaining=sum(1 for p in with_final if p.final_overall_change > CHANGE_TOLERANCE),
        final_contracts_losing=sum(1 for p in with_final if p.final_overall_change < -CHANGE_TOLERANCE),
        bracket_gainers=sum(1 for p in valid if p.star_bracket_change > 0),
        bracket_losers=sum(1 for p in valid if p.star_bracket_change < 0),
        final_bracket_gainers=sum(1 for p in valid if p.final_star_bracket_change > 0),
        final_bracket_losers=sum(1 for p in valid if p.final_star_bracket_change < 0),
        bracket_change_distribution=bracket_change_distribution(valid),
        bracket_transitions=bracket_transitions(valid),
        total_parent_orgs=len(parents),
    )

    removed_list = removed_measure_list(meta, removed)
    logger.info(
        "Operations impact %s: %d contracts projected, %d removed measures",
        year, summary.total_contracts, len(removed_list),
    )

    return OperationsImpactReport(
        year=year,
        removed_measure_codes=sorted(removed),
        domains=summarize_domains(meta, removed),
        removed_measures=removed_list,
        removed_measures_summary=RemovedMeasuresSummary(
            count=len(removed_list),
            total_weight=sum(m.weight for m in removed_list),
        ),
        summary=summary,
        contracts=projections,
        parent_organizations=parents,
        reward_factor_impact=impacts,
    )
