"""
Official CMS reward factor thresholds.

Published in the 2026 Star Ratings Technical Notes for four scenarios
(improvement measures included or not x new measures included or not).
Used only to validate calculated thresholds; never for classification.
Other rating years have no published reference here.
"""

import json
import os
from functools import lru_cache
from typing import Dict, Optional

from .reward_factor import PercentileThresholds, RatingType

THRESHOLDS_FILE = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'official_thresholds_2026.json')


@lru_cache(maxsize=1)
def _load_thresholds() -> Dict:
    with open(THRESHOLDS_FILE, 'r') as f:
        return json.load(f)


def published_year() -> int:
    """Rating year the bundled thresholds were published for."""
    return int(_load_thresholds()['year'])


def official_thresholds(
    rating_type: RatingType,
    improvement_included: bool = True,
    new_included: bool = True,
    year: Optional[int] = None
) -> Optional[PercentileThresholds]:
    """
    Published thresholds for one scenario and rating type.

    Args:
        rating_type: Rating the thresholds apply to (enum or its value)
        improvement_included: Scenario with improvement measures
        new_included: Scenario with new measures
        year: Rating year; None means the bundled year

    Returns:
        PercentileThresholds, or None when nothing was published for the
        year or scenario
    """
    rating_type = RatingType(rating_type)
    data = _load_thresholds()
    if year is not None and year != int(data['year']):
        return None

    for scenario in data['scenarios']:
        if (scenario['improvement_measures_included'] == improvement_included
                and scenario['new_measures_included'] == new_included):
            performance = scenario['performance']
            variance = scenario['variance']
            return PercentileThresholds(
                mean_65th=performance['percentile65'][rating_type.value],
                mean_85th=performance['percentile85'][rating_type.value],
                variance_30th=variance['percentile30'][rating_type.value],
                variance_70th=variance['percentile70'][rating_type.value],
            )
    return None
