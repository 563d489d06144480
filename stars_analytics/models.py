"""
Typed records for the Star Rating analytics engine.

Input records are validated once, at the data-access boundary; the engine
only ever sees these types. Output models serialize to camelCase JSON:

    result.model_dump(by_alias=True, mode="json")
"""

import math
import re
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

STAR_BUCKETS = (1, 2, 3, 4, 5)

# Leading numeric prefix, the way parseFloat reads "4.5 out of 5 stars"
_LEADING_NUMBER = re.compile(r'^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)')


def parse_float(value) -> Optional[float]:
    """Parse a number from a float, int or text; None if missing, unparseable or non-finite."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        match = _LEADING_NUMBER.match(str(value))
        if not match:
            return None
        number = float(match.group(1))
    return number if math.isfinite(number) else None


def to_star_bucket(star_rating: Optional[float]) -> Optional[int]:
    """Round a star rating half-up to a 1-5 bucket; out-of-range ratings are invalid."""
    if star_rating is None or star_rating < 1 or star_rating > 5:
        return None
    return int(math.floor(star_rating + 0.5))


def normalize_contract_id(contract_id) -> str:
    return str(contract_id or '').strip().upper()


class Record(BaseModel):
    """Base for validated input rows."""
    model_config = ConfigDict(frozen=True)


class ResultModel(BaseModel):
    """Base for engine outputs: camelCase JSON, snake_case attributes."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict:
        return self.model_dump(by_alias=True, mode="json")


class MetricObservation(Record):
    """One (contract, measure, year) metric row."""
    contract_id: str
    measure_code: str
    year: int
    star_rating: Optional[float] = None
    rate_percent: Optional[float] = None
    metric_category: Optional[str] = None

    @field_validator('contract_id', mode='before')
    @classmethod
    def _normalize_contract(cls, v):
        return normalize_contract_id(v)

    @field_validator('measure_code', mode='before')
    @classmethod
    def _normalize_code(cls, v):
        return str(v or '').strip()

    @field_validator('star_rating', 'rate_percent', mode='before')
    @classmethod
    def _parse_number(cls, v):
        return parse_float(v)

    @field_validator('metric_category', mode='before')
    @classmethod
    def _strip_category(cls, v):
        if v is None:
            return None
        return str(v).strip() or None

    @property
    def star_bucket(self) -> Optional[int]:
        return to_star_bucket(self.star_rating)

    @property
    def has_score(self) -> bool:
        return self.rate_percent is not None

    @property
    def is_usable(self) -> bool:
        """A valid star bucket and/or a finite score."""
        return self.star_bucket is not None or self.has_score


class MeasureMeta(Record):
    """Measure metadata for one year."""
    code: str
    year: Optional[int] = None
    name: Optional[str] = None
    domain: Optional[str] = None
    weight: Optional[float] = None

    @field_validator('code', mode='before')
    @classmethod
    def _normalize_code(cls, v):
        return str(v or '').strip()

    @field_validator('domain', 'name', mode='before')
    @classmethod
    def _strip_text(cls, v):
        if v is None:
            return None
        return str(v).strip() or None

    @field_validator('weight', mode='before')
    @classmethod
    def _parse_weight(cls, v):
        return parse_float(v)

    @property
    def display_name(self) -> str:
        return self.name or self.code


class RatedContract(Record):
    """A contract with an official overall rating in a given year."""
    contract_id: str
    year: int
    parent_organization: Optional[str] = None
    overall_rating: Optional[float] = None
    part_c_rating: Optional[float] = None
    part_d_rating: Optional[float] = None

    @field_validator('contract_id', mode='before')
    @classmethod
    def _normalize_contract(cls, v):
        return normalize_contract_id(v)

    @field_validator('overall_rating', 'part_c_rating', 'part_d_rating', mode='before')
    @classmethod
    def _parse_rating(cls, v):
        return parse_float(v)


class ContractInfo(Record):
    """Descriptive contract attributes."""
    contract_id: str
    contract_name: Optional[str] = None
    organization_marketing_name: Optional[str] = None
    parent_organization: Optional[str] = None
    organization_type: Optional[str] = None
    snp_indicator: Optional[str] = None

    @field_validator('contract_id', mode='before')
    @classmethod
    def _normalize_contract(cls, v):
        return normalize_contract_id(v)


def latest_measure_meta(measures: Iterable[MeasureMeta]) -> Dict[str, MeasureMeta]:
    """
    One metadata entry per measure code.

    Iterates most recent year first; the first entry seen for a code wins.
    """
    ordered = sorted(measures, key=lambda m: m.year if m.year is not None else -math.inf, reverse=True)
    lookup: Dict[str, MeasureMeta] = {}
    for meta in ordered:
        if meta.code and meta.code not in lookup:
            lookup[meta.code] = meta
    return lookup


def rated_contract_ids(rated: Iterable[RatedContract], year: Optional[int] = None) -> List[str]:
    """Contract ids in the rated allow-list, optionally for one year."""
    return sorted({r.contract_id for r in rated if year is None or r.year == year})
