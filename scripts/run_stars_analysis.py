#!/usr/bin/env python3
"""
Star Ratings Analysis Runner

Runs one analysis over the Star Ratings Parquet tables and writes the
result as JSON:

1. risk-opportunity    Focus cohort measures near a cut point
2. cohort-comparison   Focus vs market star distributions
3. year-over-year      Change between the two latest rated years
4. operations-impact   Ratings projected without the removed measures
5. reward-factor       Reward factor thresholds and reclassification
6. cut-points          Empirical cut points per measure

Usage:
    python run_stars_analysis.py reward-factor --year 2026 --data-dir data/
    python run_stars_analysis.py operations-impact --year 2026 --removed C31,C32 -o impact.json
    python run_stars_analysis.py risk-opportunity --config engine.yaml
"""

import os
import sys
import json
import logging
import argparse
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from db import DataSourceError, StarsQueryEngine
from stars_analytics.config import ConfigError, load_config
from stars_analytics.reward_factor import RatingType
from api.services.stars_service import StarsAnalysisService, YearNotFoundError

logger = logging.getLogger(__name__)

ANALYSES = (
    'risk-opportunity',
    'cohort-comparison',
    'year-over-year',
    'operations-impact',
    'reward-factor',
    'cut-points',
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Run a Star Ratings analysis')
    parser.add_argument('analysis', choices=ANALYSES, help='Analysis to run')
    parser.add_argument('--year', type=int, help='Rating year (defaults to the latest rated year)')
    parser.add_argument('--years', type=int, default=2, help='Years to compare for cohort-comparison')
    parser.add_argument('--data-dir', default=os.environ.get('STARS_DATA_DIR', 'data'),
                        help='Directory or s3:// prefix with the Parquet tables')
    parser.add_argument('--config', help='YAML file with engine overrides')
    parser.add_argument('--removed', help='Comma-separated measure codes to remove')
    parser.add_argument('--rating-type', choices=[r.value for r in RatingType], default=RatingType.OVERALL_MAPD.value)
    parser.add_argument('-o', '--output', help='Write JSON here instead of stdout')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    return parser


def run_analysis(service: StarsAnalysisService, args) -> object:
    removed = None
    if args.removed is not None:
        removed = [code.strip().upper() for code in args.removed.split(',') if code.strip()]

    if args.analysis == 'risk-opportunity':
        return service.risk_opportunity(args.year)
    if args.analysis == 'cohort-comparison':
        return service.cohort_comparison(args.years)
    if args.analysis == 'year-over-year':
        return service.year_over_year()

    year = args.year if args.year is not None else service.resolve_year(None)
    if args.analysis == 'operations-impact':
        return service.operations_impact(year, removed)
    if args.analysis == 'reward-factor':
        return service.reward_factor_impact(year, RatingType(args.rating_type), removed)
    return {'year': year, 'measures': service.cut_points(year)}


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    try:
        config = load_config(args.config)
        engine = StarsQueryEngine(args.data_dir)
        service = StarsAnalysisService(engine, config)
        result = run_analysis(service, args)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 2
    except (DataSourceError, YearNotFoundError) as e:
        logger.error("%s failed: %s", args.analysis, e)
        return 1

    output = json.dumps(result, indent=2)
    if args.output:
        Path(args.output).write_text(output)
        logger.info("Wrote %s to %s", args.analysis, args.output)
    else:
        print(output)
    return 0


if __name__ == '__main__':
    sys.exit(main())
