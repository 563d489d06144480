# API Services
#
# Service layer connecting API endpoints to the query layer and the
# Star Ratings analytics engine.

from .stars_service import StarsAnalysisService, YearNotFoundError, get_stars_analysis_service

__all__ = [
    'StarsAnalysisService',
    'YearNotFoundError',
    'get_stars_analysis_service',
]
