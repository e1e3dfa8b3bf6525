"""
Unit tests for the timeline controller.

Tests cover:
- Day navigation and render notifications
- Playback state machine (manual and asyncio timers)
- Product application and best-effort removal
- The product effect ledger
"""
import asyncio

import pytest

from app.domain.models import GrowthStage, ProductApplication, SeasonPhase, TimelineIntegrityError
from app.services.domain.playback import AsyncioPlaybackTimer
from app.services.domain.timeline_controller import (
    PlaybackState,
    ProductEffectLedger,
    TimelineController,
)


@pytest.fixture
def rendered():
    """Collects every day pushed to the render callback."""
    return []


@pytest.fixture
def controller(ten_day_timeline, manual_timer, rendered):
    return TimelineController(ten_day_timeline, render_callback=rendered.append, timer=manual_timer)


# ============================================================
# Construction and Reads
# ============================================================

class TestControllerBasics:
    """Tests for initial state and read accessors."""

    def test_initial_state(self, controller, rendered):
        assert controller.state is PlaybackState.PAUSED
        assert controller.get_current_day_index() == 0
        assert controller.get_total_days() == 10
        assert controller.speed == 1.0
        assert controller.interval_ms == 1000
        assert len(rendered) == 1
        assert rendered[0].index == 0

    def test_empty_timeline_rejected(self, make_timeline, manual_timer):
        with pytest.raises(TimelineIntegrityError):
            TimelineController(make_timeline([]), timer=manual_timer)

    def test_current_day_is_copy(self, controller):
        day = controller.get_current_day()
        day.growth_factor = 0.99
        day.render_settings.rain_particles = 5

        fresh = controller.get_current_day()
        assert fresh.growth_factor == 0.1
        assert fresh.render_settings.rain_particles == 0

    def test_days_are_copies(self, controller):
        days = controller.get_days()
        days[3].growth_factor = 0.0

        assert controller.get_days()[3].growth_factor == 0.5

    def test_rendered_day_is_copy(self, controller, rendered):
        rendered[0].growth_factor = 0.7

        assert controller.get_current_day().growth_factor == 0.1

    def test_works_without_callback(self, ten_day_timeline, manual_timer):
        controller = TimelineController(ten_day_timeline, timer=manual_timer)

        assert controller.set_day(4) == 4


# ============================================================
# Navigation Tests
# ============================================================

class TestNavigation:
    """Tests for set_day / next_day / prev_day."""

    def test_set_day(self, controller, rendered):
        assert controller.set_day(3) == 3
        assert controller.get_current_day().index == 3
        assert rendered[-1].index == 3

    @pytest.mark.parametrize("requested,expected", [(-4, 0), (9, 9), (10, 9), (250, 9)])
    def test_set_day_clamps(self, controller, requested, expected):
        assert controller.set_day(requested) == expected
        assert controller.get_current_day_index() == expected

    def test_repeated_set_day_notifies_once(self, controller, rendered):
        controller.set_day(5)
        controller.set_day(5)

        assert len(rendered) == 2

    def test_clamped_repeat_notifies_once(self, controller, rendered):
        controller.set_day(100)
        controller.set_day(42)

        assert len(rendered) == 2
        assert rendered[-1].index == 9

    def test_next_and_prev(self, controller):
        assert controller.next_day() is True
        assert controller.next_day() is True
        assert controller.prev_day() is True

        assert controller.get_current_day_index() == 1

    def test_prev_on_first_day_is_noop(self, controller, rendered):
        assert controller.prev_day() is False
        assert controller.get_current_day_index() == 0
        assert len(rendered) == 1

    def test_next_on_final_day_is_noop(self, controller, rendered):
        controller.set_day(9)

        assert controller.next_day() is False
        assert controller.get_current_day_index() == 9
        assert len(rendered) == 2

    @pytest.mark.parametrize("phase,index,expected", [
        (SeasonPhase.EARLY, 1, SeasonPhase.EARLY),
        ("middle", 4, SeasonPhase.MIDDLE),
        ("late", 8, SeasonPhase.LATE),
    ])
    def test_jump_to_season(self, controller, phase, index, expected):
        assert controller.jump_to_season(phase) == index
        assert controller.season_phase() is expected

    def test_jump_to_unknown_season(self, controller):
        with pytest.raises(ValueError):
            controller.jump_to_season("harvest")


# ============================================================
# Playback Tests
# ============================================================

class TestPlayback:
    """Tests for the playback state machine."""

    def test_play_schedules_timer(self, controller, manual_timer):
        controller.play()

        assert controller.state is PlaybackState.PLAYING
        assert controller.is_playing
        assert manual_timer.active
        assert manual_timer.interval_s == pytest.approx(1.0)

    def test_ticks_advance_days(self, controller, manual_timer, rendered):
        controller.play()
        manual_timer.tick(3)

        assert controller.get_current_day_index() == 3
        assert [day.index for day in rendered] == [0, 1, 2, 3]

    def test_failed_advance_pauses(self, ten_day_timeline, manual_timer):
        def render(day):
            if day.index == 2:
                raise RuntimeError("render failed")

        controller = TimelineController(ten_day_timeline, render_callback=render, timer=manual_timer)
        controller.play()
        manual_timer.tick()

        with pytest.raises(RuntimeError, match="render failed"):
            manual_timer.tick()

        assert controller.state is PlaybackState.PAUSED
        assert not controller.is_playing
        assert not manual_timer.active
        assert controller.get_current_day_index() == 2

    def test_pause_keeps_day(self, controller, manual_timer):
        controller.play()
        manual_timer.tick(2)
        controller.pause()

        assert controller.state is PlaybackState.PAUSED
        assert not manual_timer.active
        assert controller.get_current_day_index() == 2

    def test_stops_on_final_day(self, controller, manual_timer):
        controller.play()
        manual_timer.tick(50)

        assert controller.get_current_day_index() == 9
        assert controller.state is PlaybackState.PAUSED
        assert not manual_timer.active

    def test_play_on_final_day_stays_paused(self, controller, manual_timer):
        controller.set_day(9)
        controller.play()

        assert controller.state is PlaybackState.PAUSED
        assert manual_timer.start_count == 0

    def test_play_with_speed(self, controller, manual_timer):
        controller.play(speed_multiplier=4)

        assert controller.speed == 4
        assert controller.interval_ms == 250
        assert manual_timer.interval_s == pytest.approx(0.25)

    def test_set_speed_while_playing_reschedules(self, controller, manual_timer):
        controller.play()
        manual_timer.tick(3)

        applied = controller.set_speed(2)

        assert applied == 2
        assert manual_timer.start_count == 2
        assert manual_timer.interval_s == pytest.approx(0.5)
        assert controller.get_current_day_index() == 3
        assert controller.is_playing

    def test_set_speed_while_paused_does_not_start(self, controller, manual_timer):
        controller.set_speed(8)

        assert manual_timer.start_count == 0
        assert controller.state is PlaybackState.PAUSED
        assert controller.interval_ms == 125

    @pytest.mark.parametrize("requested,expected", [(100, 16.0), (0, 0.1), (-3, 0.1), (0.5, 0.5)])
    def test_speed_clamped(self, controller, requested, expected):
        assert controller.set_speed(requested) == pytest.approx(expected)

    def test_non_finite_speed_keeps_current(self, controller):
        controller.set_speed(3)

        assert controller.set_speed(float("nan")) == 3
        assert controller.set_speed(float("inf")) == 3

    def test_close_stops_timer(self, controller, manual_timer):
        controller.play()
        controller.close()

        assert not manual_timer.active
        assert controller.state is PlaybackState.PAUSED


class TestAsyncioPlaybackTimer:
    """Tests for the event-loop timer."""

    def test_rejects_non_positive_interval(self):
        timer = AsyncioPlaybackTimer()

        with pytest.raises(ValueError):
            timer.start(0, lambda: None)

    @pytest.mark.asyncio
    async def test_ticks_until_cancelled(self):
        timer = AsyncioPlaybackTimer()
        ticks = []

        timer.start(0.01, lambda: ticks.append(1))
        await asyncio.sleep(0.1)
        timer.cancel()
        count = len(ticks)
        await asyncio.sleep(0.05)

        assert count >= 2
        assert len(ticks) == count
        assert not timer.active

    @pytest.mark.asyncio
    async def test_controller_plays_to_end(self, ten_day_timeline):
        controller = TimelineController(ten_day_timeline, base_interval_ms=10)

        controller.play()
        await asyncio.sleep(0.5)

        assert controller.get_current_day_index() == 9
        assert controller.state is PlaybackState.PAUSED

    @pytest.mark.asyncio
    async def test_failed_tick_pauses_controller(self, ten_day_timeline):
        def render(day):
            if day.index == 2:
                raise RuntimeError("render failed")

        controller = TimelineController(ten_day_timeline, render_callback=render, base_interval_ms=5)

        controller.play()
        await asyncio.sleep(0.2)

        assert controller.state is PlaybackState.PAUSED
        assert controller.get_current_day_index() == 2


# ============================================================
# Product Effect Tests
# ============================================================

class TestApplyProduct:
    """Tests for boosting growth from a day onward."""

    def test_boost_applies_from_day(self, controller):
        controller.apply_product("yield_booster", "Yield Booster", 0.05, 4)
        days = controller.get_days()

        assert [d.growth_factor for d in days[:4]] == [0.1, 0.25, 0.4, 0.5]
        assert days[4].growth_factor == pytest.approx(0.5775)
        assert days[8].growth_factor == pytest.approx(0.924)
        assert days[9].growth_factor == pytest.approx(0.9975)

    def test_stages_reclassified(self, controller):
        controller.apply_product("yield_booster", "Yield Booster", 0.05, 4)
        days = controller.get_days()

        assert days[5].growth_stage is GrowthStage.REPRODUCTIVE
        assert days[8].growth_stage is GrowthStage.MATURE

    def test_saturates_at_one(self, make_timeline, manual_timer):
        controller = TimelineController(make_timeline([0.95]), timer=manual_timer)

        application = controller.apply_product("stress_buster", "Stress Buster", 0.5, 0)

        day = controller.get_current_day()
        assert day.growth_factor == 1.0
        assert day.growth_stage is GrowthStage.MATURE
        assert application.saturated_days == [0]
        assert application.reversal_exact is False

    def test_base_factor_untouched(self, controller):
        controller.apply_product("yield_booster", "Yield Booster", 0.3, 0)

        assert controller.get_days()[2].base_growth_factor == 0.4

    def test_repeated_application_compounds(self, controller):
        controller.apply_product("nue", "NUE", 0.1, 0)
        controller.apply_product("nue", "NUE", 0.1, 0)

        assert controller.get_current_day().growth_factor == pytest.approx(0.121)
        assert len(controller.applications) == 2

    @pytest.mark.parametrize("requested,expected", [(-3, 0), (40, 9)])
    def test_start_day_clamped(self, controller, requested, expected):
        application = controller.apply_product("nue", "NUE", 0.01, requested)

        assert application.applied_at_day_index == expected

    def test_increase_floor(self, controller):
        application = controller.apply_product("nue", "NUE", -2.0, 0)

        assert application.growth_rate_increase == -0.95
        assert controller.get_current_day().growth_factor == pytest.approx(0.005)

    @pytest.mark.parametrize("increase", [float("nan"), float("inf")])
    def test_non_finite_increase_has_no_effect(self, controller, increase):
        before = [d.growth_factor for d in controller.get_days()]

        application = controller.apply_product("nue", "NUE", increase, 0)

        assert application.growth_rate_increase == 0.0
        assert [d.growth_factor for d in controller.get_days()] == before

    def test_rerenders_current_day(self, controller, rendered):
        controller.set_day(6)
        controller.apply_product("yield_booster", "Yield Booster", 0.1, 2)

        assert len(rendered) == 3
        assert rendered[-1].index == 6
        assert rendered[-1].growth_factor == pytest.approx(0.77)

    def test_injected_stage_classifier(self, ten_day_timeline, manual_timer):
        def two_stage(factor):
            return GrowthStage.MATURE if factor >= 0.5 else GrowthStage.SEEDLING

        controller = TimelineController(
            ten_day_timeline, stage_classifier=two_stage, timer=manual_timer
        )
        controller.apply_product("nue", "NUE", 0.01, 0)

        stages = [d.growth_stage for d in controller.get_days()]
        assert stages[:3] == [GrowthStage.SEEDLING] * 3
        assert stages[3:] == [GrowthStage.MATURE] * 7


class TestRemoveProduct:
    """Tests for undoing an application."""

    def test_exact_reversal(self, controller):
        before = [d.growth_factor for d in controller.get_days()]
        application = controller.apply_product("yield_booster", "Yield Booster", 0.05, 4)

        assert application.reversal_exact
        assert controller.remove_product(application) is True

        after = [d.growth_factor for d in controller.get_days()]
        assert after == pytest.approx(before)
        assert controller.get_days()[8].growth_stage is GrowthStage.REPRODUCTIVE
        assert len(controller.ledger) == 0

    def test_remove_by_id(self, controller):
        application = controller.apply_product("nue", "NUE", 0.2, 0)

        assert controller.remove_product(application.application_id) is True
        assert controller.get_current_day().growth_factor == pytest.approx(0.1)

    def test_saturated_reversal_is_best_effort(self, controller):
        application = controller.apply_product("stress_buster", "Stress Buster", 0.1, 8)

        assert application.saturated_days == [9]
        controller.remove_product(application)
        days = controller.get_days()

        assert days[8].growth_factor == pytest.approx(0.88)
        assert days[9].growth_factor == pytest.approx(1.0 / 1.1)

    def test_later_saturation_marks_earlier_application(self, make_timeline, manual_timer):
        controller = TimelineController(make_timeline([0.8, 0.8]), timer=manual_timer)

        first = controller.apply_product("nue", "NUE", 0.1, 0)
        assert first.reversal_exact

        second = controller.apply_product("stress_buster", "Stress Buster", 0.2, 1)

        assert second.saturated_days == [1]
        assert first.saturated_days == [1]
        assert first.reversal_exact is False

        controller.remove_product(first)
        days = controller.get_days()

        assert days[0].growth_factor == pytest.approx(0.8)
        # 0.88 * 1.2 was clamped to 1.0, so removing the first product cannot give 0.96
        assert days[1].growth_factor == pytest.approx(1.0 / 1.1)
        assert second.reversal_exact is False

    def test_removal_hitting_ceiling_marks_remaining(self, make_timeline, manual_timer):
        controller = TimelineController(make_timeline([0.8]), timer=manual_timer)
        drought = controller.apply_product("drought", "Drought Stress", -0.5, 0)
        booster = controller.apply_product("stress_buster", "Stress Buster", 1.4, 0)

        assert booster.reversal_exact

        controller.remove_product(drought)

        assert controller.get_current_day().growth_factor == 1.0
        assert booster.saturated_days == [0]
        assert booster in controller.ledger

    def test_unknown_application(self, controller, rendered):
        assert controller.remove_product("does-not-exist") is False
        assert len(rendered) == 1

    def test_second_removal_is_noop(self, controller):
        application = controller.apply_product("nue", "NUE", 0.2, 0)
        controller.remove_product(application)

        assert controller.remove_product(application) is False
        assert controller.get_current_day().growth_factor == pytest.approx(0.1)

    def test_apply_then_remove_from_day_three(self, controller):
        original = [d.growth_factor for d in controller.get_days()]

        application = controller.apply_product("yield_booster", "Yield Booster", 0.1, 3)
        boosted = [d.growth_factor for d in controller.get_days()]

        assert boosted[:3] == original[:3]
        assert boosted[3:] == pytest.approx([min(1.0, f * 1.1) for f in original[3:]])
        assert application.saturated_days == [9]

        controller.remove_product(application)
        restored = [d.growth_factor for d in controller.get_days()]

        assert restored[:9] == pytest.approx(original[:9])
        # day 9 hit the ceiling, so only 1.0 / 1.1 comes back
        assert restored[9] == pytest.approx(1.0 / 1.1)
        assert abs(restored[9] - original[9]) < 0.05

    def test_end_to_end_scenario(self, controller, manual_timer, rendered):
        controller.play(speed_multiplier=2)
        manual_timer.tick(4)
        application = controller.apply_product("yield_booster", "Yield Booster", 0.05, 4)
        manual_timer.tick(4)

        assert controller.get_current_day_index() == 8
        assert controller.get_current_day().growth_stage is GrowthStage.MATURE

        controller.pause()
        controller.remove_product(application)

        assert controller.get_current_day().growth_factor == pytest.approx(0.88)
        assert controller.get_current_day().growth_stage is GrowthStage.REPRODUCTIVE
        assert rendered[-1].growth_stage is GrowthStage.REPRODUCTIVE


# ============================================================
# Ledger Tests
# ============================================================

class TestProductEffectLedger:
    """Tests for the ordered application record."""

    def _application(self, product_id="nue", day=0):
        return ProductApplication(
            product_id=product_id,
            product_name=product_id.upper(),
            growth_rate_increase=0.1,
            applied_at_day_index=day,
        )

    def test_record_and_find(self):
        ledger = ProductEffectLedger()
        first = self._application()
        second = self._application("nue", 5)
        ledger.record(first)
        ledger.record(second)

        assert len(ledger) == 2
        assert list(ledger) == [first, second]
        assert ledger.find(second.application_id) is second
        assert ledger.find_by_product("nue", 5) is second
        assert ledger.find_by_product("nue", 3) is None

    def test_contains(self):
        ledger = ProductEffectLedger()
        application = self._application()
        ledger.record(application)

        assert application in ledger
        assert application.application_id in ledger
        assert "other" not in ledger

    def test_remove(self):
        ledger = ProductEffectLedger()
        application = self._application()
        ledger.record(application)

        assert ledger.remove(application.application_id) is application
        assert ledger.remove(application.application_id) is None
        assert len(ledger) == 0

    def test_applications_are_unique(self):
        assert self._application().application_id != self._application().application_id
