from __future__ import annotations

import copy
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import StrEnum

from .clock import Clock
from .cognitive_core import (
    CognitiveDomain,
    SeededRng,
    clamp,
    clamp01,
    lerp,
    linear_slope,
    mean,
    variance,
)

logger = logging.getLogger("cosmos_mind.adaptive")

LEARNING_RATE = 0.1
HISTORY_SIGNALS = 100
RECENT_WINDOW = 5
ADAPT_EVERY_ROUNDS = 3
ADAPT_EVERY_S = 120.0


class EmotionalState(StrEnum):
    CALM = "calm"
    FOCUSED = "focused"
    FRUSTRATED = "frustrated"
    FATIGUED = "fatigued"
    FLOW = "flow"


@dataclass(slots=True)
class CognitiveFingerprint:
    """Cross-session player model. Domain scores are 0-100."""

    perception: float = 50.0
    spatial: float = 50.0
    logic: float = 50.0
    temporal: float = 50.0
    meta: float = 50.0

    impulsivity_bias: float = 0.0  # -1 deliberate .. 1 impulsive
    risk_tolerance: float = 0.5
    adaptation_rate: float = 0.5
    consistency_score: float = 0.5
    trap_susceptibility: float = 0.3
    optimal_session_minutes: float = 15.0

    weakest_domain: CognitiveDomain = CognitiveDomain.TEMPORAL
    strongest_domain: CognitiveDomain = CognitiveDomain.PERCEPTION

    def domain_score(self, domain: CognitiveDomain) -> float:
        return float(getattr(self, domain.value))

    def set_domain_score(self, domain: CognitiveDomain, value: float) -> None:
        setattr(self, domain.value, clamp(value, 0.0, 100.0))

    def domain_scores(self) -> dict[CognitiveDomain, float]:
        return {d: self.domain_score(d) for d in CognitiveDomain}

    def refresh_extremes(self) -> None:
        ranked = sorted(CognitiveDomain, key=self.domain_score)
        self.weakest_domain = ranked[0]
        self.strongest_domain = ranked[-1]


def _default_weighting() -> dict[CognitiveDomain, float]:
    return {
        CognitiveDomain.PERCEPTION: 0.30,
        CognitiveDomain.SPATIAL: 0.25,
        CognitiveDomain.LOGIC: 0.25,
        CognitiveDomain.TEMPORAL: 0.15,
        CognitiveDomain.META: 0.05,
    }


@dataclass(slots=True)
class AdaptiveParameters:
    base_difficulty: float = 3.0
    domain_weighting: dict[CognitiveDomain, float] = field(default_factory=_default_weighting)
    trap_density: float = 0.15
    rule_complexity: float = 1.0
    temporal_pressure: float = 0.5

    observation_time_ms: float = 2000.0
    action_time_ms: float = 12000.0

    false_affordance_level: float = 0.2
    rule_inversion_probability: float = 0.0

    silence_probability: float = 0.1
    relief_intensity: float = 0.5


@dataclass(frozen=True, slots=True)
class PerformanceSignal:
    timestamp_s: float
    round_number: int
    accuracy: float
    average_response_time_ms: float
    impulsive_action_rate: float
    traps_fallen: int
    rules_adapted: int
    emotional_state: EmotionalState = EmotionalState.CALM
    domain: CognitiveDomain | None = None
    difficulty: float = 0.0


_INSIGHTS: dict[EmotionalState, tuple[str, ...]] = {
    EmotionalState.FLOW: (
        "You entered a state of deep focus today.",
        "The patterns revealed themselves clearly.",
        "Your mind found its rhythm.",
    ),
    EmotionalState.FOCUSED: (
        "Concentration held steady.",
        "Your awareness sharpened through the session.",
        "Deliberate actions, measured progress.",
    ),
    EmotionalState.FRUSTRATED: (
        "Resistance met. Growth follows.",
        "The challenge exposed edges to refine.",
        "Difficulty reveals, not defeats.",
    ),
    EmotionalState.FATIGUED: (
        "Rest now. Return stronger.",
        "The mind has limits. Honor them.",
        "Quality diminishes past capacity.",
    ),
    EmotionalState.CALM: (
        "A measured session. Neither peak nor valley.",
        "Consistency is its own achievement.",
        "The baseline holds.",
    ),
}


def trial_domain_score(*, correct: bool, response_time_ms: float, difficulty: float) -> float:
    """0-100 evidence of skill from one trial; misses count as 20."""

    if not correct:
        return 20.0
    return clamp(max(0.0, 100.0 - response_time_ms / 50.0) + difficulty * 2.0, 0.0, 100.0)


class AdaptiveIntelligence:
    """Running cognitive fingerprint plus the tuning vector derived from it.

    Signals arrive once per round. The fingerprint moves by exponential
    smoothing on every signal; the tuning parameters are recomputed at most
    every three signals or two minutes.
    """

    def __init__(self, *, clock: Clock, rng: SeededRng) -> None:
        self._clock = clock
        self._rng = rng
        self._fingerprint = CognitiveFingerprint()
        self._params = AdaptiveParameters()
        self._history: deque[PerformanceSignal] = deque(maxlen=HISTORY_SIGNALS)
        self._session_start_s = clock.now()
        self._last_adaptation_s = self._session_start_s
        self._signals_since_adaptation = 0
        self._adaptations = 0

    # -- state -----------------------------------------------------------------

    def fingerprint(self) -> CognitiveFingerprint:
        return copy.deepcopy(self._fingerprint)

    def parameters(self) -> AdaptiveParameters:
        return copy.deepcopy(self._params)

    def history(self) -> list[PerformanceSignal]:
        return list(self._history)

    @property
    def adaptations(self) -> int:
        return self._adaptations

    def session_minutes(self) -> float:
        return max(0.0, self._clock.now() - self._session_start_s) / 60.0

    def load_fingerprint(self, fingerprint: CognitiveFingerprint) -> None:
        self._fingerprint = copy.deepcopy(fingerprint)

    # -- signals ---------------------------------------------------------------

    def record_performance(self, signal: PerformanceSignal) -> None:
        self._history.append(signal)
        self._signals_since_adaptation += 1
        self._update_fingerprint(signal)
        if self.should_adapt():
            self.adapt_parameters()

    def _update_fingerprint(self, signal: PerformanceSignal) -> None:
        fp = self._fingerprint
        rate = LEARNING_RATE

        if signal.impulsive_action_rate > 0.5:
            fp.impulsivity_bias = lerp(fp.impulsivity_bias, 1.0, rate)
        elif signal.impulsive_action_rate < 0.2:
            fp.impulsivity_bias = lerp(fp.impulsivity_bias, -1.0, rate)

        if signal.traps_fallen > 0:
            fp.trap_susceptibility = lerp(fp.trap_susceptibility, min(1.0, fp.trap_susceptibility + 0.1), rate)
        else:
            fp.trap_susceptibility = lerp(fp.trap_susceptibility, max(0.0, fp.trap_susceptibility - 0.02), rate)

        if signal.rules_adapted > 0:
            fp.adaptation_rate = lerp(fp.adaptation_rate, min(1.0, fp.adaptation_rate + 0.05), rate)

        fp.risk_tolerance = lerp(fp.risk_tolerance, clamp01(signal.impulsive_action_rate), rate)

        recent = [s.accuracy for s in list(self._history)[-RECENT_WINDOW:]]
        if len(recent) >= 3:
            fp.consistency_score = lerp(fp.consistency_score, max(0.0, 1.0 - variance(recent)), rate)

        if signal.domain is not None:
            evidence = trial_domain_score(
                correct=signal.accuracy >= 0.5,
                response_time_ms=signal.average_response_time_ms,
                difficulty=signal.difficulty,
            )
            fp.set_domain_score(signal.domain, lerp(fp.domain_score(signal.domain), evidence, rate))

    def detect_emotional_state(self) -> EmotionalState:
        if len(self._history) < 3:
            return EmotionalState.CALM

        recent = list(self._history)[-RECENT_WINDOW:]
        acc = mean([s.accuracy for s in recent])
        rt = mean([s.average_response_time_ms for s in recent])
        trend = linear_slope([s.accuracy for s in recent])

        if self.session_minutes() > self._fingerprint.optimal_session_minutes * 1.2:
            if trend < -0.1 or rt > 3000.0:
                return EmotionalState.FATIGUED
        if acc > 0.85 and self._fingerprint.consistency_score > 0.7 and 800.0 < rt < 2000.0:
            return EmotionalState.FLOW
        if trend < -0.2 and acc < 0.5:
            return EmotionalState.FRUSTRATED
        if acc > 0.7 and trend >= 0.0:
            return EmotionalState.FOCUSED
        return EmotionalState.CALM

    # -- adaptation ------------------------------------------------------------

    def should_adapt(self) -> bool:
        elapsed = self._clock.now() - self._last_adaptation_s
        return self._signals_since_adaptation >= ADAPT_EVERY_ROUNDS or elapsed > ADAPT_EVERY_S

    def adapt_parameters(self) -> AdaptiveParameters:
        self._last_adaptation_s = self._clock.now()
        self._signals_since_adaptation = 0

        recent = list(self._history)[-RECENT_WINDOW:]
        if not recent:
            return self.parameters()

        p = self._params
        fp = self._fingerprint
        acc = mean([s.accuracy for s in recent])
        state = self.detect_emotional_state()

        if acc > 0.85:
            p.base_difficulty = self._smoothed_difficulty(p.base_difficulty + 0.5)
            p.trap_density = min(0.4, p.trap_density + 0.05)
            p.rule_complexity = min(5.0, p.rule_complexity + 0.3)
        elif acc < 0.5:
            p.base_difficulty = self._smoothed_difficulty(p.base_difficulty - 0.5)
            p.trap_density = max(0.05, p.trap_density - 0.05)
            p.rule_complexity = max(1.0, p.rule_complexity - 0.3)

        if fp.impulsivity_bias > 0.5:
            # Impulsive players get room to deliberate.
            p.action_time_ms = min(20000.0, p.action_time_ms + 1000.0)
            p.observation_time_ms = min(4000.0, p.observation_time_ms + 500.0)
        elif fp.impulsivity_bias < -0.3:
            p.action_time_ms = max(8000.0, p.action_time_ms - 500.0)
            p.temporal_pressure = min(1.0, p.temporal_pressure + 0.1)

        if fp.trap_susceptibility > 0.5:
            p.trap_density = min(0.35, p.trap_density + 0.05)
            p.false_affordance_level = min(0.5, p.false_affordance_level + 0.05)

        self._update_domain_weighting()

        if state is EmotionalState.FRUSTRATED:
            p.base_difficulty = clamp(p.base_difficulty - 1.0, 1.0, 10.0)
            p.silence_probability = 0.2
            p.trap_density = max(0.05, p.trap_density - 0.1)
        elif state is EmotionalState.FATIGUED:
            p.relief_intensity = 1.0
            p.temporal_pressure = 0.3
        elif state is EmotionalState.FLOW:
            p.base_difficulty = clamp(p.base_difficulty + 0.1, 1.0, 10.0)
            p.silence_probability = 0.05
        elif state is EmotionalState.FOCUSED:
            p.rule_inversion_probability = min(0.3, p.rule_inversion_probability + 0.05)

        self._adaptations += 1
        logger.debug(
            "adapted: state=%s acc=%.2f base=%.2f traps=%.2f",
            state,
            acc,
            p.base_difficulty,
            p.trap_density,
        )
        return self.parameters()

    def _smoothed_difficulty(self, target: float) -> float:
        old = self._params.base_difficulty
        return clamp(old * 0.8 + clamp(target, 1.0, 10.0) * 0.2, 1.0, 10.0)

    def _update_domain_weighting(self) -> None:
        fp = self._fingerprint
        fp.refresh_extremes()
        others = [d for d in CognitiveDomain if d not in (fp.weakest_domain, fp.strongest_domain)]
        share = 0.3 / len(others) if others else 0.0
        weighting: dict[CognitiveDomain, float] = {}
        for d in CognitiveDomain:
            if d is fp.weakest_domain:
                weighting[d] = 0.4
            elif d is fp.strongest_domain:
                weighting[d] = 0.3
            else:
                weighting[d] = share
        self._params.domain_weighting = weighting

    # -- queries for generation ------------------------------------------------

    def next_puzzle_bias(self) -> CognitiveDomain:
        roll = self._rng.random()
        cumulative = 0.0
        for domain, weight in self._params.domain_weighting.items():
            cumulative += weight
            if roll <= cumulative:
                return domain
        return CognitiveDomain.PERCEPTION

    def difficulty_for_next_puzzle(self, pacing_difficulty: float | None = None) -> float:
        base = self._params.base_difficulty
        if pacing_difficulty is not None:
            base = (base + pacing_difficulty) / 2.0
        jitter = self._rng.random() - 0.5
        return clamp(base + jitter, 1.0, 10.0)

    def should_trigger_silence(self) -> bool:
        return self._rng.chance(self._params.silence_probability)

    def should_invert_rule(self) -> bool:
        return self._rng.chance(self._params.rule_inversion_probability)

    def generate_session_insight(self) -> str:
        return self._rng.choice(_INSIGHTS[self.detect_emotional_state()])

    # -- lifecycle -------------------------------------------------------------

    def start_new_session(self) -> None:
        """Clear per-session history; fingerprint and tuning carry over."""

        self._session_start_s = self._clock.now()
        self._last_adaptation_s = self._session_start_s
        self._history.clear()
        self._signals_since_adaptation = 0

    def reset_profile(self) -> None:
        self._fingerprint = CognitiveFingerprint()
        self._params = AdaptiveParameters()
        self._adaptations = 0
        self.start_new_session()
