"""
Stars Analysis Service

Loads Star Ratings snapshots through the query layer and runs the
analytics engine on them. Results are plain JSON-ready dicts.
"""

import logging
from typing import Dict, Iterable, List, Optional
import sys
import os

# Add parent directory for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from db import StarsQueryEngine, get_engine
from stars_analytics.comparison import CohortComparisonReport, build_cohort_comparison, compare_years
from stars_analytics.config import EngineConfig, load_config
from stars_analytics.cutpoints import derive_cut_points
from stars_analytics.measures import OrganizationMatcher
from stars_analytics.models import latest_measure_meta, rated_contract_ids
from stars_analytics.official_thresholds import official_thresholds
from stars_analytics.projection import analyze_operations_impact
from stars_analytics.reward_factor import RatingType, analyze_reward_factor_impact, build_contract_measures
from stars_analytics.risk_opportunity import analyze_risk_opportunity

logger = logging.getLogger(__name__)


class YearNotFoundError(LookupError):
    """Raised when no rated contracts exist for the requested year(s)."""


class StarsAnalysisService:
    """Service for Star Ratings analyses."""

    def __init__(self, engine: Optional[StarsQueryEngine] = None, config: Optional[EngineConfig] = None):
        self.engine = engine or get_engine()
        self.config = config or load_config()
        self.matcher = OrganizationMatcher(self.config.focus_organization_patterns)

    def resolve_year(self, year: Optional[int]) -> int:
        if year is not None:
            return year
        years = self.engine.latest_rated_years(1)
        if not years:
            raise YearNotFoundError("No rated contracts data available")
        return years[0]

    def _rated(self, year: int):
        rated = self.engine.rated_contracts([year])
        if not rated:
            raise YearNotFoundError(f"No rated contracts for {year}")
        return rated

    def risk_opportunity(self, year: Optional[int] = None) -> Dict:
        """
        Risk and opportunity measures for the focus cohort's contracts.
        """
        year = self.resolve_year(year)
        rated = self._rated(year)
        focus = self.matcher.focus_contracts(rated, year)
        logger.info("Found %d %s contracts out of %d rated contracts for %s",
                    len(focus), self.config.focus_label, len(rated), year)

        summary = analyze_risk_opportunity(
            self.engine.observations([year]),
            rated_contract_ids(rated, year),
            focus,
            self.engine.measure_meta([year]),
            year=year,
            config=self.config,
        )

        result = summary.to_dict()
        result['focusLabel'] = self.config.focus_label
        result['focusParentOrganizations'] = self.matcher.focus_parent_organizations(rated)
        return result

    def _comparison(self, years: int) -> CohortComparisonReport:
        year_list = self.engine.latest_rated_years(years)
        if not year_list:
            raise YearNotFoundError("No rated contracts data available")
        logger.info("Building cohort comparison for years %s", year_list)

        return build_cohort_comparison(
            self.engine.observations(year_list),
            self.engine.rated_contracts(year_list),
            self.engine.measure_meta(year_list),
            years=year_list,
            config=self.config,
            matcher=self.matcher,
        )

    def cohort_comparison(self, years: int = 2) -> Dict:
        """
        Focus cohort vs market star distributions for the latest rated years.
        """
        return self._comparison(years).to_dict()

    def year_over_year(self) -> Dict:
        """
        Change between the two latest rated years, per measure.
        """
        report = self._comparison(2)
        if len(report.year_summaries) < 2:
            raise YearNotFoundError("Year-over-year comparison needs two rated years")

        current, previous = report.year_summaries[0], report.year_summaries[1]
        result = compare_years(current, previous).to_dict()
        result['focusLabel'] = report.focus_label
        result['marketLabel'] = report.market_label
        return result

    def operations_impact(self, year: int, removed_codes: Optional[Iterable[str]] = None) -> Dict:
        """
        Projected ratings once the removed measures leave the Star Ratings.
        """
        rated = self._rated(year)
        report = analyze_operations_impact(
            self.engine.observations([year]),
            self.engine.measure_meta([year]),
            rated,
            self.engine.contracts(year),
            removed_codes=removed_codes,
            year=year,
            config=self.config,
        )
        return report.to_dict()

    def reward_factor_impact(
        self,
        year: int,
        rating_type: RatingType = RatingType.OVERALL_MAPD,
        removed_codes: Optional[Iterable[str]] = None,
        improvement_included: bool = True,
        new_included: bool = True
    ) -> Dict:
        """
        Reward factor thresholds and reclassification with and without the removed measures.
        """
        rated = self._rated(year)
        contract_measures = build_contract_measures(
            self.engine.observations([year]),
            self.engine.measure_meta([year]),
            rated_contract_ids(rated, year),
            year,
        )
        removed = removed_codes if removed_codes is not None else self.config.removed_measure_codes

        impact = analyze_reward_factor_impact(
            contract_measures,
            removed,
            RatingType(rating_type),
            self.config,
            official=official_thresholds(rating_type, improvement_included, new_included, year),
        )
        result = impact.to_dict()
        result['year'] = year
        return result

    def cut_points(self, year: int) -> List[Dict]:
        """
        Empirical cut points for every measure with star/score data.
        """
        rated = self._rated(year)
        measures = latest_measure_meta(self.engine.measure_meta([year]))
        cut_points = derive_cut_points(
            self.engine.observations([year]),
            rated_contract_ids(rated, year),
            measures,
            year,
        )

        results = []
        for cut_point_set in cut_points.values():
            entry = cut_point_set.to_dict()
            entry['isAnalyzable'] = cut_point_set.is_analyzable
            results.append(entry)
        return results


# Singleton instance
_service_instance = None

def get_stars_analysis_service() -> StarsAnalysisService:
    """Get or create singleton stars analysis service."""
    global _service_instance
    if _service_instance is None:
        _service_instance = StarsAnalysisService()
    return _service_instance
