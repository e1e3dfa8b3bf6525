"""
Domain service: Timeline playback and product effects.

The controller is the only writer of a timeline's day records. Readers get
deep copies, and every change of the visible day or of its values is pushed
to an optional render callback.
"""
from datetime import date
from enum import Enum
from typing import Callable, Iterator, List, Optional, Union
import math
import logging

from app.domain.models import (
    GrowthStage,
    ProductApplication,
    SeasonPhase,
    Timeline,
    TimelineDay,
    TimelineIntegrityError,
)
from app.services.domain.growth_timeline import (
    classify_growth_stage,
    season_markers,
    season_phase,
)
from app.services.domain.playback import AsyncioPlaybackTimer, PlaybackTimer

logger = logging.getLogger(__name__)

RenderCallback = Callable[[TimelineDay], None]
StageClassifier = Callable[[float], GrowthStage]

# Lowest accepted increase; -1 would zero every day and make reversal undefined
MIN_GROWTH_RATE_INCREASE = -0.95


class PlaybackState(str, Enum):
    PAUSED = "paused"
    PLAYING = "playing"


class ProductEffectLedger:
    """Ordered record of the product applications in effect."""

    def __init__(self):
        self._applications: List[ProductApplication] = []

    def record(self, application: ProductApplication) -> None:
        self._applications.append(application)

    def find(self, application_id: str) -> Optional[ProductApplication]:
        for application in self._applications:
            if application.application_id == application_id:
                return application
        return None

    def find_by_product(self, product_id: str, day_index: int) -> Optional[ProductApplication]:
        """Find an application of ``product_id`` starting on ``day_index``."""
        for application in self._applications:
            if application.product_id == product_id and application.applied_at_day_index == day_index:
                return application
        return None

    def remove(self, application_id: str) -> Optional[ProductApplication]:
        application = self.find(application_id)
        if application is not None:
            self._applications.remove(application)
        return application

    def __iter__(self) -> Iterator[ProductApplication]:
        return iter(list(self._applications))

    def __len__(self) -> int:
        return len(self._applications)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, ProductApplication):
            item = item.application_id
        return self.find(item) is not None


class TimelineController:
    """
    Playback state machine and intervention API over one timeline.

    States are PAUSED and PLAYING; the current day index always stays in
    ``[0, total_days)``. All calls run synchronously on the caller's thread,
    and the playback timer ticks on the same event loop, so mutations never
    interleave.

    Product effects are multiplicative and clamped to [0, 1]. Removing a
    product applies the algebraic inverse of its increase, which restores the
    previous values only when no day it covers hit the 1.0 ceiling while it was
    in effect; ``ProductApplication.saturated_days`` lists the days where one
    did, whichever application or removal pushed the day there.
    """

    def __init__(
        self,
        timeline: Timeline,
        render_callback: Optional[RenderCallback] = None,
        stage_classifier: StageClassifier = classify_growth_stage,
        timer: Optional[PlaybackTimer] = None,
        base_interval_ms: float = 1000,
        min_speed: float = 0.1,
        max_speed: float = 16.0,
    ):
        """
        Initialize the controller paused at day 0.

        Args:
            timeline: Fully built timeline; the controller takes ownership
            render_callback: Called with a copy of the current day on every sync
            stage_classifier: Maps a growth factor to a growth stage
            timer: Playback timer (an asyncio timer by default)
            base_interval_ms: Delay between days at speed 1
            min_speed: Lowest accepted speed multiplier
            max_speed: Highest accepted speed multiplier

        Raises:
            TimelineIntegrityError: If the timeline has no days
        """
        if not timeline.days:
            raise TimelineIntegrityError("Cannot control an empty timeline")

        self._timeline = timeline
        self._render_callback = render_callback
        self._classify = stage_classifier
        self._timer = timer or AsyncioPlaybackTimer()
        self._base_interval_ms = base_interval_ms
        self._min_speed = min_speed
        self._max_speed = max_speed

        self._state = PlaybackState.PAUSED
        self._speed = 1.0
        self._current_day_index = 0
        self._ledger = ProductEffectLedger()

        # Bumped on every mutation of day values
        self._revision = 0
        self._last_synced: Optional[tuple] = None

        self._sync()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def is_playing(self) -> bool:
        return self._state is PlaybackState.PLAYING

    @property
    def speed(self) -> float:
        return self._speed

    @property
    def interval_ms(self) -> float:
        """Current delay between advanced days."""
        return self._base_interval_ms / self._speed

    @property
    def applications(self) -> List[ProductApplication]:
        return list(self._ledger)

    @property
    def ledger(self) -> ProductEffectLedger:
        return self._ledger

    @property
    def crop_type(self) -> str:
        return self._timeline.crop_type

    @property
    def start_date(self) -> date:
        return self._timeline.start_date

    def get_current_day(self) -> TimelineDay:
        """Copy of the current day record; changes to it do not affect the timeline."""
        return self._timeline.day(self._current_day_index).model_copy(deep=True)

    def get_current_day_index(self) -> int:
        return self._current_day_index

    def get_total_days(self) -> int:
        return self._timeline.total_days

    def get_days(self) -> List[TimelineDay]:
        """Copies of every day record, in order."""
        return [day.model_copy(deep=True) for day in self._timeline.days]

    def season_phase(self) -> SeasonPhase:
        return season_phase(self._current_day_index, self.get_total_days())

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def set_day(self, index: int) -> int:
        """
        Move to a day, clamping the index into range.

        Repeating the same call without any change in between does not
        notify the render callback again.

        Returns:
            The day index actually selected
        """
        self._current_day_index = self._clamp_index(index)
        self._sync()
        return self._current_day_index

    def next_day(self) -> bool:
        """Advance one day. Returns False (and does nothing) on the final day."""
        if self._current_day_index >= self.get_total_days() - 1:
            return False
        self.set_day(self._current_day_index + 1)
        return True

    def prev_day(self) -> bool:
        """Go back one day. Returns False (and does nothing) on day 0."""
        if self._current_day_index <= 0:
            return False
        self.set_day(self._current_day_index - 1)
        return True

    def jump_to_season(self, phase: Union[SeasonPhase, str]) -> int:
        """Move to the representative day of an early, middle or late season phase."""
        markers = season_markers(self.get_total_days())
        return self.set_day(markers[SeasonPhase(phase)])

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    def play(self, speed_multiplier: Optional[float] = None) -> None:
        """
        Start advancing one day per interval.

        Playback stops on its own once the final day is shown. Calling play
        while playing reschedules the timer.

        Args:
            speed_multiplier: New speed, or None to keep the current one
        """
        if speed_multiplier is not None:
            self._speed = self._clamp_speed(speed_multiplier)

        if self._current_day_index >= self.get_total_days() - 1:
            logger.info("Already on the final day, playback not started")
            self.pause()
            return

        self._timer.cancel()
        self._timer.start(self.interval_ms / 1000, self._advance)
        self._state = PlaybackState.PLAYING
        logger.debug(f"Playback started at {self._speed}x ({self.interval_ms:.0f} ms/day)")

    def pause(self) -> None:
        """Stop playback; the current day is kept."""
        self._timer.cancel()
        self._state = PlaybackState.PAUSED

    def set_speed(self, multiplier: float) -> float:
        """
        Change playback speed, clamped into the accepted range.

        When playing, the pending tick is cancelled and a new one scheduled at
        the new interval; the current day is not touched.

        Returns:
            The speed actually applied
        """
        self._speed = self._clamp_speed(multiplier)
        if self.is_playing:
            self._timer.cancel()
            self._timer.start(self.interval_ms / 1000, self._advance)
        return self._speed

    def close(self) -> None:
        """Release the playback timer."""
        self.pause()

    def _advance(self) -> None:
        try:
            self.next_day()
        except Exception:
            self.pause()
            logger.error(f"Playback stopped on day {self._current_day_index} after a failed advance")
            raise
        if self._current_day_index >= self.get_total_days() - 1:
            self.pause()
            logger.info("Playback reached the final day")

    # ------------------------------------------------------------------
    # Product effects
    # ------------------------------------------------------------------

    def apply_product(
        self,
        product_id: str,
        product_name: str,
        growth_rate_increase: float,
        from_day_index: int,
    ) -> ProductApplication:
        """
        Boost growth from a day onward.

        Every day at or after ``from_day_index`` gets
        ``growth_factor = min(1.0, growth_factor * (1 + growth_rate_increase))``
        and its stage reclassified. Applying the same product twice compounds.

        Args:
            product_id: Product identifier
            product_name: Display name
            growth_rate_increase: Fractional boost (0.1 = +10%); values below
                -0.95 are raised to -0.95 and non-finite values count as 0
            from_day_index: First affected day, clamped into range

        Returns:
            The recorded ProductApplication
        """
        increase = float(growth_rate_increase)
        if not math.isfinite(increase):
            logger.warning(f"Growth rate increase {growth_rate_increase} is not finite, applying 0")
            increase = 0.0
        if increase < MIN_GROWTH_RATE_INCREASE:
            logger.warning(f"Growth rate increase {increase} raised to {MIN_GROWTH_RATE_INCREASE}")
            increase = MIN_GROWTH_RATE_INCREASE

        start = self._clamp_index(from_day_index)
        saturated_days = []
        for index in range(start, self.get_total_days()):
            day = self._timeline.day(index)
            boosted = day.growth_factor * (1 + increase)
            if boosted > 1.0:
                saturated_days.append(index)
            self._set_growth_factor(day, boosted)
        self._mark_saturated(saturated_days)

        application = ProductApplication(
            product_id=product_id,
            product_name=product_name,
            growth_rate_increase=increase,
            applied_at_day_index=start,
            saturated_days=saturated_days,
        )
        self._ledger.record(application)
        self._revision += 1

        logger.info(f"Applied {product_name} ({increase:+.2%}) from day {start}, "
                    f"{len(saturated_days)} days saturated")
        self._sync()
        return application

    def remove_product(self, application: Union[ProductApplication, str]) -> bool:
        """
        Undo a product application, best effort.

        Days from the application's start get the inverse factor
        ``1 + r`` with ``r = -increase / (1 + increase)``, clamped to [0, 1].
        The result is exact only when ``application.reversal_exact``.

        Args:
            application: The application or its id

        Returns:
            False if the application is not in the ledger, True otherwise
        """
        application_id = (
            application.application_id
            if isinstance(application, ProductApplication)
            else application
        )
        recorded = self._ledger.find(application_id)
        if recorded is None:
            logger.warning(f"Product application {application_id} not found, nothing removed")
            return False

        increase = recorded.growth_rate_increase
        reverse_factor = -increase / (1 + increase)
        saturated_days = []
        for index in range(recorded.applied_at_day_index, self.get_total_days()):
            day = self._timeline.day(index)
            restored = day.growth_factor * (1 + reverse_factor)
            if restored > 1.0:
                saturated_days.append(index)
            self._set_growth_factor(day, restored)

        self._ledger.remove(application_id)
        self._mark_saturated(saturated_days)
        self._revision += 1

        if recorded.saturated_days:
            logger.warning(f"Removed {recorded.product_name}; {len(recorded.saturated_days)} "
                           f"saturated days could not be restored exactly")
        else:
            logger.info(f"Removed {recorded.product_name} from day {recorded.applied_at_day_index}")
        self._sync()
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _mark_saturated(self, day_indices: List[int]) -> None:
        """Record clamped days on every application in effect on them."""
        for application in self._ledger:
            for index in day_indices:
                if index >= application.applied_at_day_index and index not in application.saturated_days:
                    application.saturated_days.append(index)
            application.saturated_days.sort()

    def _set_growth_factor(self, day: TimelineDay, value: float) -> None:
        day.growth_factor = max(0.0, min(1.0, value))
        day.growth_stage = self._classify(day.growth_factor)

    def _clamp_index(self, index: int) -> int:
        return max(0, min(self.get_total_days() - 1, int(index)))

    def _clamp_speed(self, multiplier: float) -> float:
        multiplier = float(multiplier)
        if not math.isfinite(multiplier):
            return self._speed
        return max(self._min_speed, min(self._max_speed, multiplier))

    def _sync(self) -> None:
        key = (self._current_day_index, self._revision)
        if key == self._last_synced:
            return
        self._last_synced = key
        if self._render_callback is not None:
            self._render_callback(self.get_current_day())
