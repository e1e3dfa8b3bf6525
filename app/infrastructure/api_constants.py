"""
API endpoint constants and configuration.

This module contains the growth-rate estimator's endpoint paths and related
constants, so the client does not hard-code them.
"""


class GrowthRateAPIEndpoints:
    """Growth-rate estimator endpoint paths."""

    GROWTH_RATE = "/growth-rate"


# API Configuration Constants
class APIConstants:
    """General API configuration constants."""

    # HTTP Headers
    CONTENT_TYPE_JSON = "application/json"

    # Timeouts (in seconds)
    DEFAULT_TIMEOUT = 30.0

    # Estimator fallbacks
    DEFAULT_OBSERVATIONS = "No observations provided."
    DEFAULT_SOIL_PH = 6.5
    DEFAULT_SOIL_NITROGEN = 40.0
