#!/usr/bin/env python3
"""
DuckDB Query Layer

Provides SQL queries over the Star Ratings Parquet tables and returns
validated records for the analytics engine.

Features:
1. Reads Parquet directly (local directory or S3 via httpfs, no data copying)
2. Bound parameters for every filter value
3. Typed fetchers: rows become pydantic records at this boundary
4. DataFrames can be registered in place of the Parquet sources (tests, notebooks)

Usage:
    from db.duckdb_layer import StarsQueryEngine

    engine = StarsQueryEngine("s3://ma-data123/processed/stars")

    years = engine.latest_rated_years(2)
    observations = engine.observations(years)
"""

import os
import logging
from typing import Dict, List, Optional, Sequence, Type

import duckdb
import pandas as pd
from pydantic import BaseModel, ValidationError

from stars_analytics.models import ContractInfo, MeasureMeta, MetricObservation, RatedContract

logger = logging.getLogger(__name__)

# Configuration
DATA_DIR = os.environ.get("STARS_DATA_DIR", "data")
S3_REGION = os.environ.get("AWS_REGION", "us-east-1")

TABLES = ('ma_metrics', 'ma_measures', 'summary_ratings', 'ma_contracts')


class DataSourceError(RuntimeError):
    """Raised when the ratings data cannot be read."""


def _placeholders(values: Sequence) -> str:
    return ", ".join("?" for _ in values)


def _quote(value: str) -> str:
    return value.replace("'", "''")


class StarsQueryEngine:
    """
    DuckDB-based query engine for the Star Ratings tables.

    Each table is a view over `<data_dir>/<table>.parquet` (or a directory of
    Parquet files under `<data_dir>/<table>/`).
    """

    def __init__(self, data_dir: Optional[str] = None, register_sources: bool = True):
        """
        Initialize the query engine.

        Args:
            data_dir: Local directory or s3:// prefix holding the tables
            register_sources: If False, no Parquet views are created; register
                              DataFrames with register_frame() instead
        """
        self.data_dir = (data_dir or DATA_DIR).rstrip('/')
        self.conn = duckdb.connect(":memory:")
        if register_sources:
            if self.data_dir.startswith('s3://'):
                self._setup_s3()
            self._register_tables()

    def _setup_s3(self):
        """Configure DuckDB for S3 access."""
        self.conn.execute("INSTALL httpfs")
        self.conn.execute("LOAD httpfs")
        self.conn.execute(f"SET s3_region = '{_quote(S3_REGION)}'")

        aws_access_key = os.environ.get("AWS_ACCESS_KEY_ID", "")
        aws_secret_key = os.environ.get("AWS_SECRET_ACCESS_KEY", "")
        if aws_access_key and aws_secret_key:
            self.conn.execute(f"SET s3_access_key_id = '{_quote(aws_access_key)}'")
            self.conn.execute(f"SET s3_secret_access_key = '{_quote(aws_secret_key)}'")

    def _source_path(self, table_name: str) -> str:
        single_file = f"{self.data_dir}/{table_name}.parquet"
        if self.data_dir.startswith('s3://') or os.path.exists(single_file):
            return single_file
        return f"{self.data_dir}/{table_name}/**/*.parquet"

    def _register_tables(self):
        """Register all tables as views pointing to Parquet files."""
        for table_name in TABLES:
            path = self._source_path(table_name)
            try:
                self.conn.execute(f"""
                    CREATE OR REPLACE VIEW {table_name} AS
                    SELECT * FROM read_parquet('{_quote(path)}', hive_partitioning=true)
                """)
            except duckdb.Error as e:
                logger.warning("Could not register %s from %s: %s", table_name, path, e)

    def register_frame(self, table_name: str, df: pd.DataFrame):
        """Serve a table from an in-memory DataFrame."""
        if table_name not in TABLES:
            raise ValueError(f"Unknown table: {table_name}")
        self.conn.execute(f"DROP VIEW IF EXISTS {table_name}")
        self.conn.register(table_name, df)

    def query(self, sql: str, params: Optional[Sequence] = None) -> pd.DataFrame:
        """
        Execute a SQL query and return results as DataFrame.

        Args:
            sql: SQL query string with ? placeholders
            params: Values bound to the placeholders

        Returns:
            pandas DataFrame with results
        """
        try:
            return self.conn.execute(sql, list(params or [])).fetchdf()
        except duckdb.Error as e:
            raise DataSourceError(f"Query failed: {e}") from e

    def _records(self, df: pd.DataFrame, model: Type[BaseModel], required: Sequence[str]) -> List:
        """Validate rows into records; rows that fail validation are dropped."""
        df = df.astype(object).where(pd.notna(df), None)

        records = []
        dropped = 0
        for row in df.to_dict('records'):
            if any(row.get(col) is None or str(row.get(col)).strip() == '' for col in required):
                dropped += 1
                continue
            try:
                records.append(model(**row))
            except ValidationError as e:
                dropped += 1
                logger.debug("Dropped invalid %s row %s: %s", model.__name__, row, e)

        if dropped:
            logger.debug("Dropped %d of %d %s rows", dropped, len(df), model.__name__)
        return records

    # -------------------------------------------------------------------------
    # Typed fetchers
    # -------------------------------------------------------------------------

    def latest_rated_years(self, limit: int = 2) -> List[int]:
        """Most recent years with official overall ratings, newest first."""
        df = self.query("""
            SELECT DISTINCT year
            FROM summary_ratings
            WHERE year IS NOT NULL AND overall_rating_numeric IS NOT NULL
            ORDER BY year DESC
        """)
        return [int(y) for y in df['year']][:limit]

    def rated_contracts(self, years: Sequence[int]) -> List[RatedContract]:
        """Contracts with an official overall rating in the given years."""
        if not years:
            return []
        df = self.query(f"""
            SELECT
                contract_id,
                year,
                parent_organization,
                overall_rating_numeric AS overall_rating,
                part_c_summary_numeric AS part_c_rating,
                part_d_summary_numeric AS part_d_rating
            FROM summary_ratings
            WHERE year IN ({_placeholders(years)})
              AND overall_rating_numeric IS NOT NULL
        """, list(years))
        return self._records(df, RatedContract, ['contract_id', 'year', 'overall_rating'])

    def observations(self, years: Sequence[int]) -> List[MetricObservation]:
        """Metric rows with a star rating and/or a score."""
        if not years:
            return []
        df = self.query(f"""
            SELECT
                contract_id,
                metric_code AS measure_code,
                year,
                star_rating,
                rate_percent,
                metric_category
            FROM ma_metrics
            WHERE year IN ({_placeholders(years)})
              AND ((star_rating IS NOT NULL AND CAST(star_rating AS VARCHAR) != '')
                   OR rate_percent IS NOT NULL)
        """, list(years))
        return self._records(df, MetricObservation, ['contract_id', 'measure_code', 'year'])

    def measure_meta(self, years: Sequence[int]) -> List[MeasureMeta]:
        """Measure definitions, most recent year first."""
        if not years:
            return []
        df = self.query(f"""
            SELECT code, year, name, domain, weight
            FROM ma_measures
            WHERE year IN ({_placeholders(years)})
            ORDER BY year DESC
        """, list(years))
        return self._records(df, MeasureMeta, ['code'])

    def contracts(self, year: int) -> List[ContractInfo]:
        """Descriptive contract attributes for one year."""
        df = self.query("""
            SELECT
                contract_id,
                contract_name,
                organization_marketing_name,
                parent_organization,
                organization_type,
                snp_indicator
            FROM ma_contracts
            WHERE year = ?
        """, [year])
        return self._records(df, ContractInfo, ['contract_id'])

    def table_counts(self) -> Dict[str, Optional[int]]:
        """Row count per table; None where the table is unavailable."""
        counts = {}
        for table_name in TABLES:
            try:
                counts[table_name] = int(self.query(f"SELECT COUNT(*) AS n FROM {table_name}")['n'][0])
            except DataSourceError:
                counts[table_name] = None
        return counts

    def close(self):
        """Close the connection."""
        self.conn.close()


# Singleton for API use
_engine_instance = None

def get_engine() -> StarsQueryEngine:
    """Get or create singleton query engine."""
    global _engine_instance
    if _engine_instance is None:
        _engine_instance = StarsQueryEngine()
    return _engine_instance
