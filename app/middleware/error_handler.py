"""
Global error handling middleware.
"""
import logging
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Callable

from app.domain.models import TimelineIntegrityError
from app.infrastructure.growth_rate_client import GrowthRateServiceError


logger = logging.getLogger(__name__)


def error_response(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "detail": detail})


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Turns exceptions that escape the routers into JSON error responses.

    Estimator failures keep their status code, bad values become 400 and
    everything else, timeline integrity errors included, becomes 500.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        context = {"path": request.url.path, "method": request.method}
        try:
            return await call_next(request)
        except GrowthRateServiceError as e:
            logger.error(f"Growth-rate service error: {e}",
                         extra={**context, "status_code": e.status_code})
            return error_response(e.status_code, "Growth-rate service error", str(e))
        except TimelineIntegrityError as e:
            logger.exception(f"Timeline integrity error: {e}", extra=context)
            return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR,
                                  "Timeline integrity error", str(e))
        except ValueError as e:
            logger.warning(f"Validation error: {e}", extra=context)
            return error_response(status.HTTP_400_BAD_REQUEST, "Invalid request", str(e))
        except Exception as e:
            logger.exception(f"Unhandled exception: {e}", extra=context)
            return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR,
                                  "Internal server error", "An unexpected error occurred")
