from __future__ import annotations

from dataclasses import dataclass

import pytest

from cosmos_mind.adaptive import (
    AdaptiveIntelligence,
    CognitiveFingerprint,
    EmotionalState,
    PerformanceSignal,
    trial_domain_score,
)
from cosmos_mind.cognitive_core import CognitiveDomain, SeededRng


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


def _signal(n: int, *, accuracy: float, rt: float = 1500.0, impulsive: float = 0.3, **kw: object) -> PerformanceSignal:
    return PerformanceSignal(
        timestamp_s=float(n),
        round_number=n,
        accuracy=accuracy,
        average_response_time_ms=rt,
        impulsive_action_rate=impulsive,
        traps_fallen=0,
        rules_adapted=0,
        **kw,  # type: ignore[arg-type]
    )


def test_trial_domain_score() -> None:
    assert trial_domain_score(correct=False, response_time_ms=100.0, difficulty=9.0) == 20.0
    assert trial_domain_score(correct=True, response_time_ms=1000.0, difficulty=5.0) == pytest.approx(90.0)
    assert trial_domain_score(correct=True, response_time_ms=0.0, difficulty=10.0) == 100.0


def test_parameters_adapt_every_three_signals() -> None:
    ai = AdaptiveIntelligence(clock=FakeClock(), rng=SeededRng(1))
    ai.record_performance(_signal(1, accuracy=1.0))
    ai.record_performance(_signal(2, accuracy=1.0))
    assert ai.adaptations == 0
    ai.record_performance(_signal(3, accuracy=1.0))
    assert ai.adaptations == 1
    assert ai.parameters().base_difficulty == pytest.approx(3.0 * 0.8 + 3.5 * 0.2)


def test_parameters_adapt_after_two_minutes_even_with_few_signals() -> None:
    clock = FakeClock()
    ai = AdaptiveIntelligence(clock=clock, rng=SeededRng(1))
    clock.advance(121.0)
    ai.record_performance(_signal(1, accuracy=0.0))
    assert ai.adaptations == 1


@pytest.mark.parametrize("accuracy", [0.0, 1.0])
def test_difficulty_stays_inside_bounds(accuracy: float) -> None:
    ai = AdaptiveIntelligence(clock=FakeClock(), rng=SeededRng(9))
    for n in range(1, 301):
        ai.record_performance(_signal(n, accuracy=accuracy))
        base = ai.parameters().base_difficulty
        assert 1.0 <= base <= 10.0
        assert 1.0 <= ai.difficulty_for_next_puzzle() <= 10.0
        assert 1.0 <= ai.difficulty_for_next_puzzle(10.0) <= 10.0
    if accuracy == 0.0:
        assert ai.parameters().base_difficulty < 2.0
    else:
        assert ai.parameters().base_difficulty > 8.0


def test_weighting_favours_the_weakest_domain() -> None:
    ai = AdaptiveIntelligence(clock=FakeClock(), rng=SeededRng(2))
    ai.load_fingerprint(CognitiveFingerprint(perception=90.0, temporal=10.0))
    ai.record_performance(_signal(1, accuracy=0.6))
    ai.adapt_parameters()

    weights = ai.parameters().domain_weighting
    assert weights[CognitiveDomain.TEMPORAL] == pytest.approx(0.4)
    assert weights[CognitiveDomain.PERCEPTION] == pytest.approx(0.3)
    for d in (CognitiveDomain.SPATIAL, CognitiveDomain.LOGIC, CognitiveDomain.META):
        assert weights[d] == pytest.approx(0.1)
    assert sum(weights.values()) == pytest.approx(1.0)
    assert ai.fingerprint().weakest_domain is CognitiveDomain.TEMPORAL
    assert ai.next_puzzle_bias() in set(CognitiveDomain)


def test_domain_signals_move_the_fingerprint() -> None:
    ai = AdaptiveIntelligence(clock=FakeClock(), rng=SeededRng(2))
    ai.record_performance(_signal(1, accuracy=1.0, rt=500.0, domain=CognitiveDomain.LOGIC, difficulty=5.0))
    assert ai.fingerprint().logic > 50.0
    ai.record_performance(_signal(2, accuracy=0.0, domain=CognitiveDomain.SPATIAL))
    assert ai.fingerprint().spatial < 50.0


def test_impulsive_signals_push_the_bias_up() -> None:
    ai = AdaptiveIntelligence(clock=FakeClock(), rng=SeededRng(2))
    for n in range(1, 10):
        ai.record_performance(_signal(n, accuracy=0.7, impulsive=0.9))
    fp = ai.fingerprint()
    assert fp.impulsivity_bias > 0.5
    assert fp.risk_tolerance > 0.5


def test_loaded_fingerprint_is_copied() -> None:
    ai = AdaptiveIntelligence(clock=FakeClock(), rng=SeededRng(2))
    fp = CognitiveFingerprint(meta=77.0)
    ai.load_fingerprint(fp)
    fp.meta = 1.0
    assert ai.fingerprint().meta == 77.0


def test_emotional_state_needs_three_signals() -> None:
    ai = AdaptiveIntelligence(clock=FakeClock(), rng=SeededRng(2))
    assert ai.detect_emotional_state() is EmotionalState.CALM
    assert ai.generate_session_insight()


def test_new_session_keeps_the_profile_and_reset_clears_it() -> None:
    clock = FakeClock()
    ai = AdaptiveIntelligence(clock=clock, rng=SeededRng(3))
    for n in range(1, 7):
        ai.record_performance(_signal(n, accuracy=1.0, domain=CognitiveDomain.META, difficulty=8.0, rt=400.0))
    learned = ai.fingerprint().meta
    clock.advance(600.0)

    ai.start_new_session()
    assert ai.history() == []
    assert ai.session_minutes() == 0.0
    assert ai.fingerprint().meta == learned

    ai.reset_profile()
    assert ai.fingerprint() == CognitiveFingerprint()
    assert ai.parameters().base_difficulty == 3.0
    assert ai.adaptations == 0
