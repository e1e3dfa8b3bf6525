"""
API router for simulation endpoints.
"""
from fastapi import APIRouter, HTTPException, Path, status
from typing import Annotated, Optional

from app.api.dependencies import SimulationServiceDep
from app.api.v1.models.requests import (
    ApplyProductRequest,
    CreateSimulationRequest,
    PlayRequest,
    SeasonJumpRequest,
    SetDayRequest,
    SpeedRequest,
)
from app.api.v1.models.responses import (
    DaySummary,
    FieldResponse,
    PlaybackResponse,
    PlaybackStatusResponse,
    ProductApplicationResponse,
    SimulationResponse,
    TimelineResponse,
)
from app.config import settings
from app.domain.crops import estimated_plant_population
from app.domain.models import TimelineDay
from app.services.application.simulation_service import (
    ApplicationNotFoundError,
    DuplicateApplicationError,
    SimulationNotFoundError,
    SimulationService,
    SimulationSession,
)
from app.services.domain.timeline_controller import TimelineController


router = APIRouter(
    prefix="/simulations",
    tags=["simulations"],
)

SimulationId = Annotated[str, Path(description="Identifier returned when the simulation was created")]

COMMON_RESPONSES = {
    404: {"description": "Simulation not found"},
    429: {"description": "Rate limit exceeded"},
}


def _playback(controller: TimelineController) -> PlaybackResponse:
    return PlaybackResponse(
        state=controller.state.value,
        current_day_index=controller.get_current_day_index(),
        total_days=controller.get_total_days(),
        speed=controller.speed,
        interval_ms=controller.interval_ms,
        season_phase=controller.season_phase(),
    )


def _playback_status(controller: TimelineController) -> PlaybackStatusResponse:
    return PlaybackStatusResponse(
        playback=_playback(controller),
        current_day=controller.get_current_day(),
    )


def _simulation_response(session: SimulationSession) -> SimulationResponse:
    controller = session.controller
    return SimulationResponse(
        simulation_id=session.simulation_id,
        crop_type=controller.crop_type,
        latitude=session.latitude,
        longitude=session.longitude,
        start_date=controller.start_date,
        created_at=session.created_at,
        plant_count=session.layout.plant_count,
        playback=_playback(controller),
        current_day=controller.get_current_day(),
        applications=[
            ProductApplicationResponse.from_application(a) for a in controller.applications
        ],
    )


def _get_session(service: SimulationService, simulation_id: str) -> SimulationSession:
    try:
        return service.get_simulation(simulation_id)
    except SimulationNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Simulation with ID '{simulation_id}' not found"
        )


# ============================================================
# Session lifecycle
# ============================================================

@router.post(
    "",
    response_model=SimulationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a simulation",
    description="""
    Lay out a field and build its growth timeline.

    This endpoint:
    1. Validates the outline (invalid outlines fall back to a default square)
    2. Scales the field to the requested area, within the view's bounds
    3. Places plants on a crop-specific row grid
    4. Generates (or takes observed) daily weather and growth factors
    5. Returns a paused session at day 0
    """,
    responses={
        400: {"description": "Invalid simulation parameters"},
        429: {"description": "Rate limit exceeded"},
    }
)
async def create_simulation(
    request: CreateSimulationRequest,
    simulation_service: SimulationServiceDep,
) -> SimulationResponse:
    """
    Start a new simulation session.

    Args:
        request: Field, crop, location and timeline parameters
        simulation_service: Simulation service (injected dependency)

    Returns:
        SimulationResponse for the new session
    """
    session = simulation_service.create_simulation(
        crop_type=request.crop_type,
        latitude=request.latitude,
        longitude=request.longitude,
        hectares=request.hectares,
        density_percent=request.density,
        polygon=request.polygon,
        geo_polygon=request.geo_polygon,
        start_date=request.start_date,
        horizon_days=request.horizon_days,
        seed=request.seed,
        observations=request.observations,
        layout_mode=request.layout_mode,
    )
    return _simulation_response(session)


@router.get(
    "/{simulation_id}",
    response_model=SimulationResponse,
    summary="Get a simulation",
    responses=COMMON_RESPONSES,
)
async def get_simulation(
    simulation_id: SimulationId,
    simulation_service: SimulationServiceDep,
) -> SimulationResponse:
    return _simulation_response(_get_session(simulation_service, simulation_id))


@router.delete(
    "/{simulation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="End a simulation",
    responses=COMMON_RESPONSES,
)
async def end_simulation(
    simulation_id: SimulationId,
    simulation_service: SimulationServiceDep,
) -> None:
    try:
        simulation_service.end_simulation(simulation_id)
    except SimulationNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Simulation with ID '{simulation_id}' not found"
        )


@router.get(
    "/{simulation_id}/field",
    response_model=FieldResponse,
    summary="Get the field layout",
    description="Scaled field outline and an evenly sampled subset of plant positions.",
    responses=COMMON_RESPONSES,
)
async def get_field(
    simulation_id: SimulationId,
    simulation_service: SimulationServiceDep,
) -> FieldResponse:
    layout = _get_session(simulation_service, simulation_id).layout
    return FieldResponse(
        crop_type=layout.crop_type,
        hectares=layout.hectares,
        density_percent=layout.density_percent,
        polygon=list(layout.scaled_polygon),
        plant_count=layout.plant_count,
        estimated_population=estimated_plant_population(
            layout.crop_type, layout.hectares, layout.density_percent
        ),
        rendered_positions=layout.rendered_positions(settings.max_rendered_plants),
    )


# ============================================================
# Timeline
# ============================================================

@router.get(
    "/{simulation_id}/days",
    response_model=TimelineResponse,
    summary="List all days",
    responses=COMMON_RESPONSES,
)
async def list_days(
    simulation_id: SimulationId,
    simulation_service: SimulationServiceDep,
) -> TimelineResponse:
    controller = _get_session(simulation_service, simulation_id).controller
    return TimelineResponse(
        simulation_id=simulation_id,
        total_days=controller.get_total_days(),
        days=[DaySummary.from_day(day) for day in controller.get_days()],
    )


@router.get(
    "/{simulation_id}/days/current",
    response_model=TimelineDay,
    summary="Get the current day",
    description="Full record of the day now shown, including its render settings.",
    responses=COMMON_RESPONSES,
)
async def get_current_day(
    simulation_id: SimulationId,
    simulation_service: SimulationServiceDep,
) -> TimelineDay:
    return _get_session(simulation_service, simulation_id).controller.get_current_day()


# ============================================================
# Playback
# ============================================================

@router.post(
    "/{simulation_id}/playback/day",
    response_model=PlaybackStatusResponse,
    summary="Move to a day",
    description="Out-of-range indices are clamped to the first or last day.",
    responses=COMMON_RESPONSES,
)
async def set_day(
    simulation_id: SimulationId,
    request: SetDayRequest,
    simulation_service: SimulationServiceDep,
) -> PlaybackStatusResponse:
    controller = _get_session(simulation_service, simulation_id).controller
    controller.set_day(request.day_index)
    return _playback_status(controller)


@router.post(
    "/{simulation_id}/playback/next",
    response_model=PlaybackStatusResponse,
    summary="Advance one day",
    responses=COMMON_RESPONSES,
)
async def next_day(
    simulation_id: SimulationId,
    simulation_service: SimulationServiceDep,
) -> PlaybackStatusResponse:
    controller = _get_session(simulation_service, simulation_id).controller
    controller.next_day()
    return _playback_status(controller)


@router.post(
    "/{simulation_id}/playback/prev",
    response_model=PlaybackStatusResponse,
    summary="Go back one day",
    responses=COMMON_RESPONSES,
)
async def prev_day(
    simulation_id: SimulationId,
    simulation_service: SimulationServiceDep,
) -> PlaybackStatusResponse:
    controller = _get_session(simulation_service, simulation_id).controller
    controller.prev_day()
    return _playback_status(controller)


@router.post(
    "/{simulation_id}/playback/play",
    response_model=PlaybackStatusResponse,
    summary="Start playback",
    description="Advances one day per interval and stops by itself on the final day.",
    responses=COMMON_RESPONSES,
)
async def play(
    simulation_id: SimulationId,
    simulation_service: SimulationServiceDep,
    request: Optional[PlayRequest] = None,
) -> PlaybackStatusResponse:
    controller = _get_session(simulation_service, simulation_id).controller
    controller.play(request.speed if request else None)
    return _playback_status(controller)


@router.post(
    "/{simulation_id}/playback/pause",
    response_model=PlaybackStatusResponse,
    summary="Pause playback",
    responses=COMMON_RESPONSES,
)
async def pause(
    simulation_id: SimulationId,
    simulation_service: SimulationServiceDep,
) -> PlaybackStatusResponse:
    controller = _get_session(simulation_service, simulation_id).controller
    controller.pause()
    return _playback_status(controller)


@router.post(
    "/{simulation_id}/playback/speed",
    response_model=PlaybackStatusResponse,
    summary="Change playback speed",
    responses=COMMON_RESPONSES,
)
async def set_speed(
    simulation_id: SimulationId,
    request: SpeedRequest,
    simulation_service: SimulationServiceDep,
) -> PlaybackStatusResponse:
    controller = _get_session(simulation_service, simulation_id).controller
    controller.set_speed(request.speed)
    return _playback_status(controller)


@router.post(
    "/{simulation_id}/playback/season",
    response_model=PlaybackStatusResponse,
    summary="Jump to a season phase",
    responses=COMMON_RESPONSES,
)
async def jump_to_season(
    simulation_id: SimulationId,
    request: SeasonJumpRequest,
    simulation_service: SimulationServiceDep,
) -> PlaybackStatusResponse:
    controller = _get_session(simulation_service, simulation_id).controller
    controller.jump_to_season(request.phase)
    return _playback_status(controller)


# ============================================================
# Products
# ============================================================

@router.get(
    "/{simulation_id}/products",
    response_model=list[ProductApplicationResponse],
    summary="List product applications in effect",
    responses=COMMON_RESPONSES,
)
async def list_products(
    simulation_id: SimulationId,
    simulation_service: SimulationServiceDep,
) -> list[ProductApplicationResponse]:
    controller = _get_session(simulation_service, simulation_id).controller
    return [ProductApplicationResponse.from_application(a) for a in controller.applications]


@router.post(
    "/{simulation_id}/products",
    response_model=ProductApplicationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Apply a product",
    description="""
    Boost growth from a day onward.

    Every day from `day_index` gets its growth factor multiplied by
    `1 + growth_rate_increase`, capped at 1.0. When `growth_rate_increase`
    is omitted, it is requested from the growth-rate estimator.
    """,
    responses={
        404: {"description": "Simulation not found"},
        409: {"description": "Product already applied from that day"},
        429: {"description": "Rate limit exceeded"},
        502: {"description": "Growth-rate estimator unavailable"},
    }
)
async def apply_product(
    simulation_id: SimulationId,
    request: ApplyProductRequest,
    simulation_service: SimulationServiceDep,
) -> ProductApplicationResponse:
    """
    Apply a product to a simulation.

    Args:
        simulation_id: Target simulation
        request: Product and first affected day
        simulation_service: Simulation service (injected dependency)

    Returns:
        ProductApplicationResponse for the recorded application

    Raises:
        HTTPException: If the simulation is unknown or the product is a duplicate
    """
    try:
        application, observations = await simulation_service.apply_product(
            simulation_id,
            product_id=request.product_id,
            product_name=request.product_name,
            from_day_index=request.day_index,
            growth_rate_increase=request.growth_rate_increase,
            soil_ph=request.soil_ph,
            soil_nitrogen=request.soil_nitrogen,
        )
    except SimulationNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Simulation with ID '{simulation_id}' not found"
        )
    except DuplicateApplicationError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return ProductApplicationResponse.from_application(application, observations)


@router.delete(
    "/{simulation_id}/products/{application_id}",
    response_model=ProductApplicationResponse,
    summary="Remove a product application",
    description="""
    Undo a product application, best effort.

    The inverse factor restores the previous growth factors exactly only when
    the application never hit the 1.0 ceiling (`reversal_exact`).
    """,
    responses={
        404: {"description": "Simulation or application not found"},
        429: {"description": "Rate limit exceeded"},
    }
)
async def remove_product(
    simulation_id: SimulationId,
    application_id: Annotated[str, Path(description="Identifier of the product application")],
    simulation_service: SimulationServiceDep,
) -> ProductApplicationResponse:
    try:
        application = simulation_service.remove_product(simulation_id, application_id)
    except (SimulationNotFoundError, ApplicationNotFoundError) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return ProductApplicationResponse.from_application(application)
