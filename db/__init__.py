# MA Stars Analytics - Database Layer
#
# DuckDB-based query engine reading the Star Ratings Parquet tables.
# Every filter is a bound parameter; rows come back as validated records.
#
# Usage:
#     from db import get_engine
#
#     engine = get_engine()
#     years = engine.latest_rated_years(2)
#     rated = engine.rated_contracts(years)

from .duckdb_layer import (
    DataSourceError,
    StarsQueryEngine,
    get_engine,
)

__all__ = ['DataSourceError', 'StarsQueryEngine', 'get_engine']
