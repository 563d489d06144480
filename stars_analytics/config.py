"""
Engine Configuration

Domain constants for the Star Rating analytics engine, collected in one
immutable object that every calculation takes as an argument.

Defaults follow the CMS 2026 Star Ratings Technical Notes. Overrides can be
loaded from a YAML file:

    from stars_analytics.config import load_config

    config = load_config("engine.yaml")        # explicit path
    config = load_config()                      # $STARS_ENGINE_CONFIG or defaults
"""

import os
import logging
from dataclasses import dataclass, field, fields, replace
from types import MappingProxyType
from typing import Dict, FrozenSet, Mapping, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "STARS_ENGINE_CONFIG"

MEAN_CATEGORIES = ("high", "relatively_high", "below_threshold")
VARIANCE_CATEGORIES = ("low", "medium", "high")

# Mean category x variance category -> reward factor
DEFAULT_REWARD_FACTOR_TABLE = {
    "high": {"low": 0.4, "medium": 0.3, "high": 0.0},
    "relatively_high": {"low": 0.2, "medium": 0.1, "high": 0.0},
    "below_threshold": {"low": 0.0, "medium": 0.0, "high": 0.0},
}

# CMS measures being removed from the Star Ratings (2028-2029 Stars)
DEFAULT_REMOVED_MEASURE_CODES = frozenset({
    'C31',  # Plan Makes Timely Decisions about Appeals - 2029
    'C32',  # Reviewing Appeals Decisions - 2029
    'C07',  # SNP Care Management - 2029
    'C33',  # Call Center - Foreign Language Interpreter and TTY (Part C) - 2028
    'D01',  # Call Center - Foreign Language Interpreter and TTY (Part D) - 2028
    'C28',  # Complaints about the Health Plan - 2029
    'D02',  # Complaints about the Drug Plan - 2029
    'D07',  # Medicare Plan Finder Price Accuracy - 2029
    'C11',  # Diabetes Care - Eye Exam - 2029
    'C19',  # Statin Therapy for Patients with Cardiovascular Disease - 2028
    'C29',  # Members Choosing to Leave the Plan (Part C) - 2029
    'D03',  # Members Choosing to Leave the Plan (Part D) - 2029
    'C24',  # Customer Service - 2029
    'C25',  # Rating of Health Care Quality - 2029
})

# UnitedHealth Group parent organizations. "unitedhealth" as one word, so
# names like "West Virginia United Health System" stay in the market cohort.
DEFAULT_FOCUS_ORGANIZATION_PATTERNS = (
    r"unitedhealthgroup",
    r"unitedhealth group",
    r"unitedhealthcare",
    r"^unitedhealth,",
    r"^unitedhealth$",
    r"unitedhealth, inc",
    r"unitedhealth ins",
    r"\bunitedhealth\s+group\b",
)


class ConfigError(ValueError):
    """Raised when engine configuration values are invalid."""


def _freeze_table(table: Mapping) -> Mapping[str, Mapping[str, float]]:
    """Read-only copy of a reward factor table."""
    if not isinstance(table, Mapping) or not all(isinstance(row, Mapping) for row in table.values()):
        raise ConfigError("reward_factor_table must map mean categories to variance category rows")
    return MappingProxyType({str(mean): MappingProxyType(dict(row)) for mean, row in table.items()})


@dataclass(frozen=True)
class EngineConfig:
    """Immutable engine constants."""

    # Points from a cut point that count as risk / opportunity
    proximity_threshold: float = 2.0

    # Percentile cut lines for the reward factor
    mean_percentiles: Tuple[float, float] = (65.0, 85.0)
    variance_percentiles: Tuple[float, float] = (30.0, 70.0)
    reward_factor_table: Mapping[str, Mapping[str, float]] = field(
        default_factory=lambda: _freeze_table(DEFAULT_REWARD_FACTOR_TABLE)
    )

    # A contract needs this many usable measures to be ranked
    min_measures_for_ranking: int = 2
    top_movers: int = 10

    removed_measure_codes: FrozenSet[str] = DEFAULT_REMOVED_MEASURE_CODES

    focus_organization_patterns: Tuple[str, ...] = DEFAULT_FOCUS_ORGANIZATION_PATTERNS
    focus_label: str = "UnitedHealth"
    market_label: str = "Market"

    def __post_init__(self):
        object.__setattr__(self, 'reward_factor_table', _freeze_table(self.reward_factor_table))
        validate_config(self)

    def with_overrides(self, **overrides) -> "EngineConfig":
        """Return a copy with some values replaced."""
        return replace(self, **_coerce_overrides(overrides))


def validate_config(config: EngineConfig) -> None:
    """Check constants for internal consistency."""
    if config.proximity_threshold < 0:
        raise ConfigError(f"proximity_threshold must be >= 0, got {config.proximity_threshold}")

    for name in ('mean_percentiles', 'variance_percentiles'):
        lower, upper = getattr(config, name)
        if not (0 <= lower <= upper <= 100):
            raise ConfigError(f"{name} must satisfy 0 <= lower <= upper <= 100, got {(lower, upper)}")

    table = config.reward_factor_table
    for mean_category in MEAN_CATEGORIES:
        row = table.get(mean_category)
        if row is None:
            raise ConfigError(f"reward_factor_table missing mean category '{mean_category}'")
        for variance_category in VARIANCE_CATEGORIES:
            if variance_category not in row:
                raise ConfigError(
                    f"reward_factor_table['{mean_category}'] missing variance category '{variance_category}'"
                )

    # Weighted variance needs two measures
    if config.min_measures_for_ranking < 2:
        raise ConfigError("min_measures_for_ranking must be at least 2")
    if config.top_movers < 0:
        raise ConfigError("top_movers must be >= 0")


def _coerce_overrides(raw: Dict) -> Dict:
    """Convert YAML-friendly values (lists) to the dataclass field types."""
    known = {f.name for f in fields(EngineConfig)}
    unknown = set(raw) - known
    if unknown:
        raise ConfigError(f"Unknown config keys: {sorted(unknown)}")

    values = dict(raw)
    for name in ('mean_percentiles', 'variance_percentiles'):
        if name in values:
            pair = values[name]
            if not isinstance(pair, (list, tuple)) or len(pair) != 2:
                raise ConfigError(f"{name} must be a pair of percentiles")
            values[name] = (float(pair[0]), float(pair[1]))
    if 'removed_measure_codes' in values:
        values['removed_measure_codes'] = frozenset(
            str(code).strip().upper() for code in values['removed_measure_codes']
        )
    if 'focus_organization_patterns' in values:
        values['focus_organization_patterns'] = tuple(values['focus_organization_patterns'])
    if 'reward_factor_table' in values:
        _freeze_table(values['reward_factor_table'])
        values['reward_factor_table'] = {
            str(mean): {str(var): float(v) for var, v in row.items()}
            for mean, row in values['reward_factor_table'].items()
        }
    return values


def load_config(path: Optional[str] = None) -> EngineConfig:
    """
    Load engine configuration.

    Args:
        path: YAML file with overrides. Falls back to $STARS_ENGINE_CONFIG,
              then to the built-in defaults.

    Returns:
        EngineConfig
    """
    path = path or os.environ.get(CONFIG_ENV_VAR)
    if not path:
        return DEFAULT_CONFIG

    try:
        with open(path, 'r') as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not read engine config {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Engine config {path} must be a mapping")

    logger.info("Loaded engine config overrides from %s: %s", path, sorted(raw))
    return DEFAULT_CONFIG.with_overrides(**raw)


DEFAULT_CONFIG = EngineConfig()
