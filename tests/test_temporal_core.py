from __future__ import annotations

from dataclasses import dataclass

import pytest

from cosmos_mind.elements import GameElement, ShapeType
from cosmos_mind.temporal import (
    DIFFERENT_TRUTH,
    MEMORY_FADES,
    TemporalChallengeType,
    TemporalEngine,
)


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


def _el(element_id: str, *, correct: bool = False, x: float = 100.0, y: float = 200.0) -> GameElement:
    return GameElement(
        element_id=element_id,
        shape=ShapeType.SQUARE,
        color="#4ECDC4",
        x=x,
        y=y,
        size=50.0,
        is_correct=correct,
    )


def test_history_is_rejected_when_not_positive() -> None:
    with pytest.raises(ValueError):
        TemporalEngine(clock=FakeClock(), history=0)


def test_recording_a_round_twice_replaces_it() -> None:
    engine = TemporalEngine(clock=FakeClock())
    engine.record_temporal_state(1, [_el("a", correct=True)])
    engine.record_temporal_state(1, [_el("a"), _el("b", correct=True)])
    states = engine.states()
    assert [s.round for s in states] == [1]
    assert [e.element_id for e in states[0].elements] == ["a", "b"]


def test_history_keeps_only_the_last_ten_rounds() -> None:
    clock = FakeClock()
    engine = TemporalEngine(clock=clock)
    for r in range(1, 16):
        clock.advance(1.0)
        engine.record_temporal_state(r, [_el("a")])
    rounds = [s.round for s in engine.states()]
    assert rounds == list(range(6, 16))
    assert engine.reference_state(5) is None
    assert engine.reference_state(6) is not None


def test_snapshots_do_not_follow_live_elements() -> None:
    engine = TemporalEngine(clock=FakeClock())
    live = [_el("a", correct=True)]
    engine.record_temporal_state(1, live)
    live[0].is_correct = False
    live[0].x = 5.0
    ref = engine.reference_state(1)
    assert ref is not None
    assert ref.elements[0].is_correct
    assert ref.elements[0].x == 100.0


def test_reference_round_uses_template_lookback_and_floors_at_one() -> None:
    engine = TemporalEngine(clock=FakeClock())
    assert engine.reference_round_for(TemporalChallengeType.REMEMBER_ORIGINAL, 5) == 3
    assert engine.reference_round_for(TemporalChallengeType.TRACK_CHANGES, 5) == 4
    assert engine.reference_round_for(TemporalChallengeType.PREDICT_NEXT, 2) == 1


def test_selection_is_scored_against_the_reference_round() -> None:
    engine = TemporalEngine(clock=FakeClock())
    engine.record_temporal_state(1, [_el("a", correct=True), _el("b")])
    engine.record_temporal_state(2, [_el("a"), _el("b", correct=True)])
    engine.initialize_temporal_challenge(TemporalChallengeType.REMEMBER_ORIGINAL, [_el("a"), _el("b")], current_round=3)

    hit = engine.evaluate_temporal_selection(_el("a"), 3)
    assert hit.is_correct and hit.insight is None

    miss = engine.evaluate_temporal_selection(_el("b"), 3)
    assert not miss.is_correct
    assert miss.insight == DIFFERENT_TRUTH

    unknown = engine.evaluate_temporal_selection(_el("zzz"), 3)
    assert not unknown.is_correct


def test_missing_reference_reports_memory_fades() -> None:
    engine = TemporalEngine(clock=FakeClock())
    engine.initialize_temporal_challenge(TemporalChallengeType.REMEMBER_ORIGINAL, [_el("a")], current_round=9)
    verdict = engine.evaluate_temporal_selection(_el("a"), 9)
    assert not verdict.is_correct
    assert verdict.insight == MEMORY_FADES


def test_no_active_challenge_is_never_correct() -> None:
    engine = TemporalEngine(clock=FakeClock())
    engine.record_temporal_state(1, [_el("a", correct=True)])
    assert not engine.evaluate_temporal_selection(_el("a"), 1).is_correct
    assert engine.compression_multiplier() == 1.0


def test_compression_multiplier_follows_level() -> None:
    engine = TemporalEngine(clock=FakeClock())
    engine.initialize_temporal_challenge(TemporalChallengeType.TIMELINE_MERGE, [_el("a")], current_round=6)
    assert engine.compression_multiplier() == pytest.approx(1.8)
    engine.clear_challenge()
    assert engine.compression_multiplier() == 1.0


def test_timeline_merge_builds_a_shifted_decoy_past() -> None:
    clock = FakeClock(t=100.0)
    engine = TemporalEngine(clock=clock)
    live = [_el("a", x=50.0, y=60.0)]
    challenge = engine.initialize_temporal_challenge(TemporalChallengeType.TIMELINE_MERGE, live, current_round=7)
    assert challenge.prompt == "Multiple pasts. One truth."
    assert challenge.delayed_penalty
    assert challenge.reference_round == 4
    assert len(challenge.decoy_states) == 1
    decoy = challenge.decoy_states[0]
    assert decoy.recorded_at_s == pytest.approx(95.0)
    assert (decoy.elements[0].x, decoy.elements[0].y) == (70.0, 50.0)
    assert (live[0].x, live[0].y) == (50.0, 60.0)


def test_reset_forgets_history() -> None:
    engine = TemporalEngine(clock=FakeClock())
    engine.record_temporal_state(1, [_el("a")])
    engine.initialize_temporal_challenge(TemporalChallengeType.TRACK_CHANGES, [_el("a")], current_round=2)
    engine.reset()
    assert engine.states() == []
    assert engine.active_challenge is None
