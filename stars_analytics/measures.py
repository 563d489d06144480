"""
Measure and organization classification helpers.

Category flags are used for grouping in reports only; they never change
how a measure is scored.
"""

import re
from typing import Dict, Iterable, List, Optional, Sequence

from .models import RatedContract

# D08-D12: medication adherence, MTM CMR completion, statin use in diabetes
PHARMACY_MEASURE_CODES = frozenset({'D08', 'D09', 'D10', 'D11', 'D12'})
PHARMACY_DOMAIN_TERMS = ('pharmacy', 'drug', 'medication')

# Lower value is better
INVERSE_MEASURE_CODES = frozenset({'C28', 'C29', 'C30', 'D87', 'D88', 'D89'})
INVERSE_KEYWORDS = (
    "members choosing to leave",
    "complaints about",
    "disenrollment",
    "leaving the plan",
    "plan makes it easy to leave",
)

RATING_CATEGORY_PART_C = "Part C"
RATING_CATEGORY_PART_D = "Part D"


def is_hedis_measure(domain: Optional[str]) -> bool:
    if not domain:
        return False
    return 'hedis' in domain.lower().strip()


def is_pharmacy_measure(domain: Optional[str], measure_code: Optional[str]) -> bool:
    normalized_domain = (domain or '').lower().strip()
    if any(term in normalized_domain for term in PHARMACY_DOMAIN_TERMS):
        return True
    return (measure_code or '').strip().upper() in PHARMACY_MEASURE_CODES


def is_inverse_measure(label: Optional[str], code: Optional[str] = None) -> bool:
    """True for measures where a lower score is better (complaints, disenrollment)."""
    normalized_label = (label or '').strip().lower()
    normalized_code = (code or '').strip().upper()

    if normalized_code and normalized_code in INVERSE_MEASURE_CODES:
        return True
    return any(keyword in normalized_label for keyword in INVERSE_KEYWORDS)


def normalize_codes(codes: Iterable[str]) -> frozenset:
    return frozenset(str(c).strip().upper() for c in codes if c and str(c).strip())


class OrganizationMatcher:
    """
    Decides whether a parent organization belongs to the focus cohort.

    Patterns are case-insensitive regular expressions searched against the
    trimmed, lower-cased parent organization name.
    """

    def __init__(self, patterns: Sequence[str]):
        self.patterns = tuple(patterns)
        self._compiled = [re.compile(p, re.IGNORECASE) for p in self.patterns]

    def matches(self, parent_organization: Optional[str]) -> bool:
        if not parent_organization:
            return False
        normalized = parent_organization.strip().lower()
        return any(p.search(normalized) for p in self._compiled)

    def focus_contracts(self, rated: Iterable[RatedContract], year: Optional[int] = None) -> Dict[str, Optional[str]]:
        """Focus-cohort contract ids mapped to their parent organization."""
        return {
            r.contract_id: r.parent_organization
            for r in rated
            if (year is None or r.year == year) and self.matches(r.parent_organization)
        }

    def focus_parent_organizations(self, rated: Iterable[RatedContract]) -> List[str]:
        return sorted({
            r.parent_organization for r in rated
            if r.parent_organization and self.matches(r.parent_organization)
        })
