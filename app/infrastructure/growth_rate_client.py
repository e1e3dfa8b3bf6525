"""
Infrastructure layer: Growth-rate estimator client with retry logic.
"""
from typing import Any, Dict, Optional
import logging

from pydantic import BaseModel, ConfigDict, Field
import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from app.config import settings
from app.infrastructure.api_constants import APIConstants, GrowthRateAPIEndpoints

logger = logging.getLogger(__name__)


# Pydantic models for the estimator's request and response
class WeatherConditions(BaseModel):
    """Weather summary sent to the estimator."""
    precipitation: float = Field(description="Precipitation in mm")
    min_temperature: float = Field(description="Minimum temperature in °C")
    max_temperature: float = Field(description="Maximum temperature in °C")
    humidity: float = Field(description="Relative humidity in %")


class GrowthRateRequest(BaseModel):
    """Request body for the growth-rate endpoint."""
    weather: WeatherConditions
    crop: str
    product: str
    soil_ph: float = APIConstants.DEFAULT_SOIL_PH
    soil_nitrogen: float = APIConstants.DEFAULT_SOIL_NITROGEN


class GrowthRateEstimate(BaseModel):
    """Response from the growth-rate endpoint; unknown fields are ignored."""
    growth_rate_increase: float = Field(
        description="Fractional boost, e.g. 0.05 for +5%"
    )
    observations: str = APIConstants.DEFAULT_OBSERVATIONS

    model_config = ConfigDict(extra="ignore")


class GrowthRateServiceError(Exception):
    """Custom exception for growth-rate estimator errors."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.status_code = status_code


class GrowthRateClient:
    """
    Client for the product growth-rate estimation service.
    Implements retry logic with exponential backoff.
    """

    def __init__(self):
        """Initialize the API client with configuration."""
        self.base_url = settings.growth_rate_api_base_url
        self.api_key = settings.growth_rate_api_key
        headers = {"accept": APIConstants.CONTENT_TYPE_JSON}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=APIConstants.DEFAULT_TIMEOUT,
        )

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> "GrowthRateClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @retry(
        stop=stop_after_attempt(settings.max_retry_attempts),
        wait=wait_exponential(
            multiplier=settings.retry_backoff_multiplier,
            min=settings.retry_min_wait,
            max=settings.retry_max_wait,
        ),
        retry=retry_if_exception_type((httpx.HTTPStatusError, httpx.RequestError)),
        reraise=True,
    )
    async def _make_request(
        self,
        method: str,
        endpoint: str,
        **kwargs
    ) -> Dict[str, Any]:
        """
        Make an HTTP request with retry logic.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint path
            **kwargs: Additional arguments for the request

        Returns:
            Response data as dictionary

        Raises:
            GrowthRateServiceError: If the request is rejected (4xx)
            httpx.HTTPStatusError: If server errors persist after retries
            httpx.RequestError: If transport errors persist after retries
        """
        try:
            response = await self.client.request(method, endpoint, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            # Retry on server errors (5xx)
            if e.response.status_code >= 500:
                logger.warning(f"Estimator returned {e.response.status_code}, retrying")
                raise
            # Don't retry on client errors (4xx)
            raise GrowthRateServiceError(
                f"Growth-rate request failed: {e.response.status_code} - {e.response.text}",
                status_code=e.response.status_code,
            )

    async def estimate_growth_rate(self, request: GrowthRateRequest) -> GrowthRateEstimate:
        """
        Ask the estimator how much a product boosts growth.

        Args:
            request: Weather, crop, product and soil conditions

        Returns:
            GrowthRateEstimate instance

        Raises:
            GrowthRateServiceError: If the request fails or the response is malformed
        """
        logger.info(f"Requesting growth rate for {request.product} on {request.crop}")
        try:
            data = await self._make_request(
                "POST",
                GrowthRateAPIEndpoints.GROWTH_RATE,
                json=request.model_dump(),
            )
        except httpx.HTTPStatusError as e:
            raise GrowthRateServiceError(
                f"Growth-rate service unavailable: {e.response.status_code}",
                status_code=502,
            )
        except httpx.RequestError as e:
            raise GrowthRateServiceError(f"Growth-rate request error: {str(e)}", status_code=502)
        except ValueError as e:
            raise GrowthRateServiceError(f"Growth-rate response is not JSON: {e}", status_code=502)

        try:
            estimate = GrowthRateEstimate(**data)
        except (TypeError, ValueError) as e:
            raise GrowthRateServiceError(f"Malformed growth-rate response: {e}", status_code=502)

        logger.info(f"Estimated growth rate increase {estimate.growth_rate_increase:+.2%} "
                    f"for {request.product} on {request.crop}")
        return estimate


# Singleton instance
_growth_rate_client: Optional[GrowthRateClient] = None


def get_growth_rate_client() -> GrowthRateClient:
    """
    Get or create the singleton growth-rate client instance.

    Returns:
        GrowthRateClient instance
    """
    global _growth_rate_client
    if _growth_rate_client is None:
        _growth_rate_client = GrowthRateClient()
    return _growth_rate_client


async def close_growth_rate_client() -> None:
    """Close and forget the singleton client, if one was created."""
    global _growth_rate_client
    if _growth_rate_client is not None:
        await _growth_rate_client.close()
        _growth_rate_client = None
