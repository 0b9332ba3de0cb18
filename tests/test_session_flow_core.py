from __future__ import annotations

from dataclasses import dataclass

import pytest

from cosmos_mind.cognitive_core import SeededRng
from cosmos_mind.rules import RuleCategory
from cosmos_mind.session_flow import (
    END_REASONS,
    CognitiveStage,
    EndTrigger,
    FlowConfig,
    SessionFlowController,
    WavePhase,
)


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


def _flow(seed: int = 1) -> tuple[SessionFlowController, FakeClock]:
    clock = FakeClock()
    return SessionFlowController(clock=clock, rng=SeededRng(seed)), clock


def test_flow_config_validation() -> None:
    with pytest.raises(ValueError):
        FlowConfig(optimal_min_minutes=25.0)
    with pytest.raises(ValueError):
        FlowConfig(optimal_min_minutes=0.0)
    with pytest.raises(ValueError):
        FlowConfig(start_difficulty=11.0)


def test_wave_phases_cycle_in_order() -> None:
    flow, _ = _flow()
    changes: list[tuple[int, WavePhase]] = []
    for n in range(1, 13):
        outcome = flow.record_round_result(True, 1000.0, False)
        assert not outcome.should_end_session
        if outcome.phase_changed:
            assert outcome.new_phase is not None
            changes.append((n, outcome.new_phase))
    assert changes == [
        (3, WavePhase.STRETCH),
        (7, WavePhase.PEAK),
        (10, WavePhase.REFLECTION),
        (12, WavePhase.WARMUP),
    ]
    assert flow.phase_description() == "Confidence building"


def test_stage_advances_on_lifetime_rounds_and_accuracy() -> None:
    flow, _ = _flow()
    assert flow.stage is CognitiveStage.AWARENESS
    flow.set_lifetime_rounds(19)
    outcome = flow.record_round_result(True, 900.0, False)
    assert outcome.stage_changed
    assert outcome.new_stage is CognitiveStage.STABILITY
    assert flow.lifetime_rounds == 20


def test_stage_needs_accuracy_as_well_as_rounds() -> None:
    flow, _ = _flow()
    flow.set_lifetime_rounds(40)
    outcome = flow.record_round_result(False, 900.0, False)
    assert not outcome.stage_changed
    assert flow.stage is CognitiveStage.AWARENESS


def test_stage_climbs_one_step_at_a_time_and_never_regresses() -> None:
    flow, _ = _flow()
    flow.set_lifetime_rounds(500)
    seen = []
    for _ in range(6):
        outcome = flow.record_round_result(True, 900.0, False)
        if outcome.stage_changed:
            seen.append(outcome.new_stage)
    assert seen == [
        CognitiveStage.STABILITY,
        CognitiveStage.ADAPTABILITY,
        CognitiveStage.INSIGHT,
        CognitiveStage.MASTERY,
    ]
    for _ in range(5):
        flow.record_round_result(False, 900.0, False)
    assert flow.stage is CognitiveStage.MASTERY


def test_stage_unlocks_gate_inversion_and_temporal_challenges() -> None:
    flow, _ = _flow()
    early = flow.stage_unlocks()
    assert early.categories == frozenset({RuleCategory.STATIC})
    assert not early.rule_inversion
    assert not early.temporal_challenges

    flow.load_progress(CognitiveStage.MASTERY, 250)
    late = flow.stage_unlocks()
    assert late.categories == frozenset(RuleCategory)
    assert late.rule_inversion
    assert late.temporal_challenges
    assert flow.lifetime_rounds == 250


def test_error_patterns_count_only_misses() -> None:
    flow, _ = _flow()
    flow.record_round_result(False, 15000.0, False, "timeout")
    flow.record_round_result(True, 800.0, False, "timeout")
    flow.record_round_result(False, 800.0, False)
    m = flow.metrics()
    assert m.error_patterns == {"timeout": 1}
    assert m.correct == 1
    assert m.incorrect == 2


def test_metrics_are_a_copy() -> None:
    flow, _ = _flow()
    m = flow.metrics()
    m.rounds_completed = 99
    assert flow.metrics().rounds_completed == 0


def test_difficulty_eases_in_during_warmup_and_stays_bounded() -> None:
    flow, _ = _flow()
    flow.record_round_result(True, 1000.0, False)
    assert flow.difficulty == pytest.approx(3.0 * 0.8 + 2.8 * 0.2)
    for _ in range(200):
        flow.record_round_result(False, 1000.0, True)
        assert 1.0 <= flow.difficulty <= 10.0
    assert flow.difficulty < 2.0


def test_frustration_ends_the_session_early() -> None:
    flow, _ = _flow()
    ended = None
    for n in range(1, 8):
        outcome = flow.record_round_result(False, 1000.0, False)
        if outcome.should_end_session:
            ended = n
            assert outcome.end_trigger is EndTrigger.FRUSTRATION
            assert outcome.session_end_reason == END_REASONS[EndTrigger.FRUSTRATION]
            break
    assert ended is not None and ended <= 7


def test_frustration_outranks_the_natural_stop() -> None:
    flow, clock = _flow()
    for _ in range(10):
        flow.record_round_result(False, 1000.0, False)
    clock.advance(21 * 60.0)
    outcome = flow.record_round_result(False, 1000.0, False)
    assert outcome.end_trigger is EndTrigger.FRUSTRATION
    assert not flow.metrics().optimal_play_reached


def test_hard_cap_outranks_everything() -> None:
    flow, clock = _flow()
    flow.record_round_result(True, 1000.0, False)
    clock.advance(30 * 60.0)
    outcome = flow.record_round_result(True, 1000.0, False)
    assert outcome.should_end_session
    assert outcome.end_trigger is EndTrigger.MAX_DURATION


def test_declining_performance_after_ten_minutes_suggests_stopping_once() -> None:
    flow, clock = _flow()
    for _ in range(5):
        flow.record_round_result(True, 1000.0, False)
    clock.advance(11 * 60.0)
    first = flow.record_round_result(False, 1000.0, False)
    assert first.end_trigger is EndTrigger.OPTIMAL_REACHED
    assert first.session_end_reason == END_REASONS[EndTrigger.OPTIMAL_REACHED]
    second = flow.record_round_result(False, 1000.0, False)
    assert not second.should_end_session


def test_performance_declining_compares_window_halves() -> None:
    flow, _ = _flow()
    for ok in (True, True, True, False, False):
        flow.record_round_result(ok, 1000.0, False)
    assert not flow.performance_declining()
    flow.record_round_result(False, 1000.0, False)
    assert flow.performance_declining()

    steady, _ = _flow()
    for _ in range(8):
        steady.record_round_result(True, 1000.0, False)
    assert not steady.performance_declining()


def test_idle_time_builds_fatigue_up_to_the_hard_cap() -> None:
    flow, clock = _flow()
    last = 0.0
    triggers: list[EndTrigger] = []
    for minute in range(1, 31):
        clock.advance(60.0)
        check = flow.check_idle()
        fatigue = flow.metrics().fatigue
        assert fatigue > last
        last = fatigue
        if check.trigger is not None:
            triggers.append(check.trigger)
        if minute < 30:
            assert check.trigger is not EndTrigger.MAX_DURATION
        else:
            assert check.trigger is EndTrigger.MAX_DURATION
    assert triggers.count(EndTrigger.NATURAL_STOP) <= 1
    assert triggers[-1] is EndTrigger.MAX_DURATION


def test_feedback_only_appears_during_reflection() -> None:
    flow, _ = _flow(seed=5)
    seen = 0
    for _ in range(240):
        outcome = flow.record_round_result(True, 1000.0, False)
        if outcome.feedback is not None:
            assert flow.phase is WavePhase.REFLECTION
            seen += 1
    assert seen > 0


def test_reflection_insight_mentions_repeated_errors_when_chosen() -> None:
    flow, _ = _flow(seed=3)
    for _ in range(3):
        flow.record_round_result(False, 1000.0, False, "trap_selected")
    options = {flow.reflection_insight() for _ in range(60)}
    assert "Pattern noted: trap_selected challenges require more attention." in options
    assert "Observation deepens with practice." in options


def test_short_session_summary() -> None:
    flow, _ = _flow()
    for _ in range(5):
        flow.record_round_result(True, 1000.0, False)
    summary = flow.generate_session_summary()
    assert summary.description == "0 minutes of focused practice. 5 challenges completed."
    assert summary.cognitive_changes == (
        "Consistent response timing throughout.",
        "Strong pattern recognition under varying conditions.",
    )
    assert summary.suggestions == ("Brief session complete. Longer sessions deepen learning.",)


def test_new_session_keeps_stage_and_lifetime_rounds() -> None:
    flow, clock = _flow()
    flow.set_lifetime_rounds(19)
    for _ in range(4):
        flow.record_round_result(True, 1000.0, False)
    clock.advance(300.0)
    assert flow.stage is CognitiveStage.STABILITY

    flow.start_new_session()
    m = flow.metrics()
    assert m.rounds_completed == 0
    assert m.session_start_s == 300.0
    assert m.phase is WavePhase.WARMUP
    assert m.stage is CognitiveStage.STABILITY
    assert flow.stage is CognitiveStage.STABILITY
    assert flow.lifetime_rounds == 23
    assert flow.difficulty == 3.0
