"""
Cut-Point Deriver

Empirical star-level boundaries per measure. CMS assigns a star because a
contract's score crosses a threshold, so the minimum score observed at a
star level is the data's lower boundary for that level.
"""

import logging
from typing import Dict, Iterable, Mapping, Optional

import pandas as pd

from .models import STAR_BUCKETS, MeasureMeta, MetricObservation, ResultModel
from .statistics import SummaryStats, describe

logger = logging.getLogger(__name__)

MIN_LEVELS_FOR_ANALYSIS = 2


class CutPointSet(ResultModel):
    """Per-measure minimum observed score at each star level."""
    measure_code: str
    measure_name: str
    domain: Optional[str] = None
    star_cut_points: Dict[int, Optional[float]]
    sample_sizes: Dict[int, int]
    total_contracts: int
    score_summary: Optional[SummaryStats] = None

    @property
    def levels_with_data(self) -> int:
        return sum(1 for v in self.star_cut_points.values() if v is not None)

    @property
    def is_analyzable(self) -> bool:
        """A single populated level gives no boundary to measure against."""
        return self.levels_with_data >= MIN_LEVELS_FOR_ANALYSIS

    def cut_point(self, star_bucket: int) -> Optional[float]:
        return self.star_cut_points.get(star_bucket)


def observations_frame(
    observations: Iterable[MetricObservation],
    allowed_contracts: Optional[Iterable[str]] = None,
    year: Optional[int] = None
) -> pd.DataFrame:
    """Observations with both a star bucket and a score, as a DataFrame."""
    allowed = set(allowed_contracts) if allowed_contracts is not None else None

    rows = []
    for obs in observations:
        if year is not None and obs.year != year:
            continue
        if allowed is not None and obs.contract_id not in allowed:
            continue
        bucket = obs.star_bucket
        if bucket is None or obs.rate_percent is None:
            continue
        rows.append({
            'contract_id': obs.contract_id,
            'measure_code': obs.measure_code,
            'star_bucket': bucket,
            'rate_percent': obs.rate_percent,
        })

    return pd.DataFrame(rows, columns=['contract_id', 'measure_code', 'star_bucket', 'rate_percent'])


def derive_cut_points(
    observations: Iterable[MetricObservation],
    rated_contract_ids: Iterable[str],
    measures: Optional[Mapping[str, MeasureMeta]] = None,
    year: Optional[int] = None
) -> Dict[str, CutPointSet]:
    """
    Derive cut points for every measure with joint star/score data.

    Args:
        observations: Metric rows (any years; filtered by `year` if given)
        rated_contract_ids: Allow-list of contracts with an official overall rating
        measures: Measure metadata by code, for names and domains
        year: Restrict to one rating year

    Returns:
        {measure_code: CutPointSet}, sorted by code. Includes measures that
        are not analyzable; check `is_analyzable` before classifying.
    """
    measures = measures or {}
    df = observations_frame(observations, rated_contract_ids, year)
    if df.empty:
        return {}

    grouped = df.groupby(['measure_code', 'star_bucket'])['rate_percent'].agg(['min', 'size'])
    scores = df.groupby('measure_code')['rate_percent']

    result: Dict[str, CutPointSet] = {}
    for measure_code in sorted(grouped.index.get_level_values('measure_code').unique()):
        levels = grouped.loc[measure_code]

        cut_points: Dict[int, Optional[float]] = {star: None for star in STAR_BUCKETS}
        sample_sizes: Dict[int, int] = {star: 0 for star in STAR_BUCKETS}
        for star, row in levels.iterrows():
            cut_points[int(star)] = float(row['min'])
            sample_sizes[int(star)] = int(row['size'])

        meta = measures.get(measure_code)
        result[measure_code] = CutPointSet(
            measure_code=measure_code,
            measure_name=meta.display_name if meta else measure_code,
            domain=meta.domain if meta else None,
            star_cut_points=cut_points,
            sample_sizes=sample_sizes,
            total_contracts=sum(sample_sizes.values()),
            score_summary=describe(scores.get_group(measure_code).tolist()),
        )

    analyzable = sum(1 for c in result.values() if c.is_analyzable)
    logger.debug("Derived cut points for %d measures (%d analyzable)", len(result), analyzable)
    return result


def analyzable_cut_points(cut_points: Mapping[str, CutPointSet]) -> Dict[str, CutPointSet]:
    """Measures with at least two populated star levels."""
    return {code: c for code, c in cut_points.items() if c.is_analyzable}
