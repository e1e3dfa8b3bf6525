"""
Dependency injection for FastAPI.
"""
from typing import Annotated
from fastapi import Depends

from app.infrastructure.growth_rate_client import (
    GrowthRateClient,
    get_growth_rate_client,
)
from app.services.application.simulation_service import (
    SimulationRegistry,
    SimulationService,
    get_simulation_registry,
)


def get_simulation_service(
    registry: Annotated[SimulationRegistry, Depends(get_simulation_registry)],
    growth_rate_client: Annotated[GrowthRateClient, Depends(get_growth_rate_client)],
) -> SimulationService:
    """
    Dependency factory for SimulationService.

    Args:
        registry: Session registry (injected)
        growth_rate_client: Growth-rate estimator client (injected)

    Returns:
        SimulationService instance
    """
    return SimulationService(registry=registry, growth_rate_client=growth_rate_client)


# Type aliases for cleaner route signatures
SimulationServiceDep = Annotated[SimulationService, Depends(get_simulation_service)]
