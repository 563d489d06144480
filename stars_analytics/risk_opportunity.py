"""
Risk/Opportunity Classifier

Flags contract measures whose score sits close to a star boundary:

- Risk: score is within the proximity threshold above the cut point of its
  current star level (could drop a star).
- Opportunity: score is within the threshold below the cut point of the
  next star level (could gain a star).

A measure can be both at once.
"""

import logging
from typing import Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel, Field

from .config import DEFAULT_CONFIG, EngineConfig
from .cutpoints import CutPointSet, analyzable_cut_points, derive_cut_points, observations_frame
from .measures import is_hedis_measure, is_inverse_measure, is_pharmacy_measure
from .models import MeasureMeta, MetricObservation, ResultModel, latest_measure_meta, normalize_contract_id
from .statistics import percentile_rank, round_half_up

logger = logging.getLogger(__name__)


class ProximityFlags(BaseModel):
    """Raw proximity result for one score against one measure's cut points."""
    lower_cut_point: Optional[float] = None
    upper_cut_point: Optional[float] = None
    is_risk: bool = False
    risk_points: Optional[float] = None
    is_opportunity: bool = False
    opportunity_points: Optional[float] = None


def classify_observation(
    score: float,
    star_bucket: int,
    cut_points: CutPointSet,
    threshold: float = DEFAULT_CONFIG.proximity_threshold
) -> ProximityFlags:
    """
    Compare one score with the cut points around its star level.

    Args:
        score: Measure score (rate percent)
        star_bucket: Current star level, 1-5
        cut_points: Cut points for the measure
        threshold: Proximity threshold in points

    Returns:
        ProximityFlags with points rounded to 1 decimal
    """
    lower = cut_points.cut_point(star_bucket)
    upper = cut_points.cut_point(star_bucket + 1) if star_bucket < 5 else None

    flags = ProximityFlags(lower_cut_point=lower, upper_cut_point=upper)

    if lower is not None:
        # Rounded so one-decimal scores exactly on the threshold stay inclusive
        above_lower = round(score - lower, 9)
        if 0 <= above_lower <= threshold:
            flags.is_risk = True
            flags.risk_points = round_half_up(above_lower, 1)

    if upper is not None:
        below_upper = round(upper - score, 9)
        if 0 < below_upper <= threshold:
            flags.is_opportunity = True
            flags.opportunity_points = round_half_up(below_upper, 1)

    return flags


class ContractClassification(ResultModel):
    """A flagged contract measure."""
    contract_id: str
    parent_organization: Optional[str] = None
    measure_code: str
    measure_name: str
    domain: Optional[str] = None
    score: float
    star_rating: int
    lower_cut_point: Optional[float] = None
    upper_cut_point: Optional[float] = None
    is_risk: bool
    risk_points: Optional[float] = None
    is_opportunity: bool
    opportunity_points: Optional[float] = None
    percentile_rank: Optional[float] = None
    is_hedis: bool = Field(default=False, alias='isHEDIS')
    is_pharmacy: bool = False
    is_inverse: bool = False


class ContractRiskOpportunity(ResultModel):
    contract_id: str
    parent_organization: Optional[str] = None
    risk_measures: List[ContractClassification]
    opportunity_measures: List[ContractClassification]
    total_risk_count: int
    total_opportunity_count: int


class RiskOpportunitySummary(ResultModel):
    year: Optional[int] = None
    focus_contract_count: int
    total_measures_analyzed: int
    by_contract: List[ContractRiskOpportunity]
    total_risk_measures: int
    total_opportunity_measures: int
    measure_cut_points: List[CutPointSet]


def analyze_risk_opportunity(
    observations: Iterable[MetricObservation],
    rated_contract_ids: Iterable[str],
    focus_contracts: Mapping[str, Optional[str]],
    measures: Iterable[MeasureMeta] = (),
    year: Optional[int] = None,
    config: EngineConfig = DEFAULT_CONFIG
) -> RiskOpportunitySummary:
    """
    Classify the focus cohort's measures against empirical cut points.

    Cut points are derived from every rated contract; only the focus
    contracts are classified.

    Args:
        observations: Metric rows for the analysis year
        rated_contract_ids: Contracts with an official overall rating
        focus_contracts: {contract_id: parent_organization} to classify
        measures: Measure metadata (names, domains)
        year: Restrict observations to this year
        config: Engine constants (proximity threshold)

    Returns:
        RiskOpportunitySummary
    """
    observations = list(observations)
    focus_contracts = {normalize_contract_id(cid): parent for cid, parent in focus_contracts.items()}
    meta = latest_measure_meta(measures)
    rated = set(rated_contract_ids)

    cut_points = analyzable_cut_points(derive_cut_points(observations, rated, meta, year))
    logger.debug("Calculated cut points for %d measures", len(cut_points))

    # Rated contracts' scores per measure, for percentile ranks
    scores_by_measure = {
        code: sorted(group.tolist())
        for code, group in observations_frame(observations, rated, year).groupby('measure_code')['rate_percent']
    }

    by_contract: Dict[str, Dict[str, List[ContractClassification]]] = {
        contract_id: {'risk': [], 'opportunity': []} for contract_id in focus_contracts
    }

    for obs in observations:
        if year is not None and obs.year != year:
            continue
        if obs.contract_id not in by_contract:
            continue
        measure_cut_points = cut_points.get(obs.measure_code)
        if measure_cut_points is None or obs.rate_percent is None:
            continue
        star = obs.star_bucket
        if star is None:
            continue

        flags = classify_observation(obs.rate_percent, star, measure_cut_points, config.proximity_threshold)
        if not (flags.is_risk or flags.is_opportunity):
            continue

        domain = measure_cut_points.domain
        entry = ContractClassification(
            contract_id=obs.contract_id,
            parent_organization=focus_contracts.get(obs.contract_id),
            measure_code=obs.measure_code,
            measure_name=measure_cut_points.measure_name,
            domain=domain,
            score=round_half_up(obs.rate_percent, 1),
            star_rating=star,
            lower_cut_point=round_half_up(flags.lower_cut_point, 1),
            upper_cut_point=round_half_up(flags.upper_cut_point, 1),
            is_risk=flags.is_risk,
            risk_points=flags.risk_points,
            is_opportunity=flags.is_opportunity,
            opportunity_points=flags.opportunity_points,
            percentile_rank=percentile_rank(scores_by_measure.get(obs.measure_code, []), obs.rate_percent),
            is_hedis=is_hedis_measure(domain),
            is_pharmacy=is_pharmacy_measure(domain, obs.measure_code),
            is_inverse=is_inverse_measure(measure_cut_points.measure_name, obs.measure_code),
        )

        if flags.is_risk:
            by_contract[obs.contract_id]['risk'].append(entry)
        if flags.is_opportunity:
            by_contract[obs.contract_id]['opportunity'].append(entry)

    contracts = []
    for contract_id, flagged in by_contract.items():
        risk = sorted(flagged['risk'], key=lambda e: (e.risk_points, e.measure_code))
        opportunity = sorted(flagged['opportunity'], key=lambda e: (e.opportunity_points, e.measure_code))
        contracts.append(ContractRiskOpportunity(
            contract_id=contract_id,
            parent_organization=focus_contracts.get(contract_id),
            risk_measures=risk,
            opportunity_measures=opportunity,
            total_risk_count=len(risk),
            total_opportunity_count=len(opportunity),
        ))

    contracts.sort(key=lambda c: (-(c.total_risk_count + c.total_opportunity_count), c.contract_id))

    return RiskOpportunitySummary(
        year=year,
        focus_contract_count=len(focus_contracts),
        total_measures_analyzed=len(cut_points),
        by_contract=contracts,
        total_risk_measures=sum(c.total_risk_count for c in contracts),
        total_opportunity_measures=sum(c.total_opportunity_count for c in contracts),
        measure_cut_points=sorted(cut_points.values(), key=lambda c: (c.measure_name, c.measure_code)),
    )
