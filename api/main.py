"""
MA Stars Analytics - FastAPI Backend
Serves Star Rating projections and threshold analytics for the dashboard.
"""

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import List, Optional
import logging
import os

from db import DataSourceError
from stars_analytics.reward_factor import RatingType

from .services import StarsAnalysisService, YearNotFoundError, get_stars_analysis_service

logger = logging.getLogger(__name__)

app = FastAPI(
    title="MA Stars Analytics API",
    description="Star Rating cut points, risk/opportunity and reward factor projections",
    version="1.0.0"
)

# CORS for Next.js frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.environ.get("CORS_ORIGINS", "http://localhost:3000,http://localhost:3001").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# === Error Handling ===

@app.exception_handler(YearNotFoundError)
async def year_not_found_handler(request: Request, exc: YearNotFoundError):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(DataSourceError)
async def data_source_error_handler(request: Request, exc: DataSourceError):
    logger.error("Data source error on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"error": "Ratings data unavailable", "details": str(exc)}
    )


def parse_codes(removed: Optional[str]) -> Optional[List[str]]:
    """Comma-separated measure codes; None keeps the configured removal list."""
    if removed is None:
        return None
    return [code.strip().upper() for code in removed.split(",") if code.strip()]


# === Star Ratings Analytics ===

@app.get("/api/stars/risk-opportunity")
async def get_risk_opportunity(
    year: Optional[int] = None,
    service: StarsAnalysisService = Depends(get_stars_analysis_service)
):
    """
    Focus cohort measures within 2 points of a star cut point.
    Defaults to the latest year with official overall ratings.
    """
    return service.risk_opportunity(year)


@app.get("/api/stars/cohort-comparison")
async def get_cohort_comparison(
    years: int = Query(2, ge=1, le=10),
    service: StarsAnalysisService = Depends(get_stars_analysis_service)
):
    """
    Star distributions per measure: focus cohort vs the rest of the market.
    """
    return service.cohort_comparison(years)


@app.get("/api/stars/year-over-year")
async def get_year_over_year(service: StarsAnalysisService = Depends(get_stars_analysis_service)):
    """
    High-star percentage change between the two latest rated years.
    """
    return service.year_over_year()


@app.get("/api/stars/operations-impact")
async def get_operations_impact(
    year: int = 2026,
    removed: Optional[str] = Query(None, description="Comma-separated measure codes to remove"),
    service: StarsAnalysisService = Depends(get_stars_analysis_service)
):
    """
    Projected ratings once the removed measures leave the Star Ratings.
    """
    return service.operations_impact(year, parse_codes(removed))


@app.get("/api/stars/reward-factor")
async def get_reward_factor(
    year: int = 2026,
    rating_type: RatingType = RatingType.OVERALL_MAPD,
    removed: Optional[str] = Query(None, description="Comma-separated measure codes to remove"),
    improvement_included: bool = True,
    new_included: bool = True,
    service: StarsAnalysisService = Depends(get_stars_analysis_service)
):
    """
    Reward factor thresholds, reclassification and official comparison.
    """
    return service.reward_factor_impact(
        year, rating_type, parse_codes(removed), improvement_included, new_included
    )


@app.get("/api/stars/empirical-cutpoints")
async def get_empirical_cutpoints(
    year: int = 2026,
    service: StarsAnalysisService = Depends(get_stars_analysis_service)
):
    """
    Minimum observed score at each star level, per measure.
    """
    return {"year": year, "measures": service.cut_points(year)}


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host="0.0.0.0", port=8000)
