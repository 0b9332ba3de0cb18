"""Session pacing: wave phases, the cognitive-stage ladder, invisible
difficulty adjustment and fatigue/frustration-gated session caps."""

from __future__ import annotations

import copy
import logging
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType

from .clock import Clock
from .cognitive_core import SeededRng, clamp, mean, std_dev
from .deception import DeceptionStyle
from .puzzle import PuzzleUnlocks
from .rules import RuleCategory

logger = logging.getLogger("cosmos_mind.session_flow")


class WavePhase(StrEnum):
    WARMUP = "warmup"
    STRETCH = "stretch"
    PEAK = "peak"
    REFLECTION = "reflection"


class CognitiveStage(StrEnum):
    AWARENESS = "awareness"
    STABILITY = "stability"
    ADAPTABILITY = "adaptability"
    INSIGHT = "insight"
    MASTERY = "mastery"


class EndTrigger(StrEnum):
    MAX_DURATION = "max_duration"
    OPTIMAL_REACHED = "optimal_reached"
    FRUSTRATION = "frustration"
    NATURAL_STOP = "natural_stop"


END_REASONS: Mapping[EndTrigger, str] = MappingProxyType(
    {
        EndTrigger.MAX_DURATION: "Your mind has worked deeply today. Rest now to consolidate.",
        EndTrigger.OPTIMAL_REACHED: "Your mind has adapted enough for today. Return tomorrow stronger.",
        EndTrigger.FRUSTRATION: "Challenge accepted. Step back, breathe. Return when ready.",
        EndTrigger.NATURAL_STOP: "You've reached a natural stopping point. Your progress is saved.",
    }
)


@dataclass(frozen=True, slots=True)
class WaveConfig:
    phase: WavePhase
    rounds: int
    difficulty_modifier: float
    description: str


WAVE_SEQUENCE: tuple[WaveConfig, ...] = (
    WaveConfig(WavePhase.WARMUP, 3, -0.2, "Confidence building"),
    WaveConfig(WavePhase.STRETCH, 4, 0.0, "New challenges introduced"),
    WaveConfig(WavePhase.PEAK, 3, 0.15, "High challenge, high engagement"),
    WaveConfig(WavePhase.REFLECTION, 2, -0.3, "Integration and calm"),
)
WAVES: Mapping[WavePhase, WaveConfig] = MappingProxyType({w.phase: w for w in WAVE_SEQUENCE})


@dataclass(frozen=True, slots=True)
class StageConfig:
    stage: CognitiveStage
    name: str
    description: str
    rounds_total: int
    accuracy_min: float
    rule_categories: frozenset[RuleCategory]
    deception_styles: frozenset[DeceptionStyle]
    mechanics: frozenset[str]

    def unlocks(self) -> PuzzleUnlocks:
        return PuzzleUnlocks(
            categories=self.rule_categories,
            styles=self.deception_styles,
            temporal_challenges="temporal_memory" in self.mechanics,
            rule_inversion="rule_discovery" in self.mechanics,
        )


_S = RuleCategory
_D = DeceptionStyle
STAGE_LADDER: tuple[StageConfig, ...] = (
    StageConfig(
        CognitiveStage.AWARENESS, "Awareness", "Learning to truly observe", 0, 0.0,
        frozenset({_S.STATIC}),
        frozenset({_D.SIZE_INVERSION}),
        frozenset({"basic_selection"}),
    ),
    StageConfig(
        CognitiveStage.STABILITY, "Stability", "Building consistent patterns", 20, 0.5,
        frozenset({_S.STATIC, _S.RELATIONAL}),
        frozenset({_D.BRIGHTEST_LIE, _D.CENTER_TRAP}),
        frozenset({"basic_selection", "rule_discovery"}),
    ),
    StageConfig(
        CognitiveStage.ADAPTABILITY, "Adaptability", "Embracing change gracefully", 50, 0.6,
        frozenset({_S.STATIC, _S.RELATIONAL, _S.TEMPORAL}),
        frozenset({_D.BRIGHTEST_LIE, _D.CENTER_TRAP, _D.SYMMETRY_DECEPTION}),
        frozenset({"basic_selection", "rule_discovery", "temporal_memory"}),
    ),
    StageConfig(
        CognitiveStage.INSIGHT, "Insight", "Seeing deeper truths", 100, 0.65,
        frozenset({_S.STATIC, _S.RELATIONAL, _S.TEMPORAL, _S.INVERSE}),
        frozenset({_D.BRIGHTEST_LIE, _D.CENTER_TRAP, _D.SYMMETRY_DECEPTION, _D.HESITATION_DECAY}),
        frozenset({"basic_selection", "rule_discovery", "temporal_memory", "deceptive_affordance"}),
    ),
    StageConfig(
        CognitiveStage.MASTERY, "Mastery", "Effortless cognition", 200, 0.7,
        frozenset(RuleCategory),
        frozenset(
            {
                _D.BRIGHTEST_LIE,
                _D.CENTER_TRAP,
                _D.SYMMETRY_DECEPTION,
                _D.HESITATION_DECAY,
                _D.GAZE_PUNISHMENT,
                _D.COMFORT_ZONE,
            }
        ),
        frozenset(
            {"basic_selection", "rule_discovery", "temporal_memory", "deceptive_affordance", "combined_mechanics"}
        ),
    ),
)
STAGES: Mapping[CognitiveStage, StageConfig] = MappingProxyType({s.stage: s for s in STAGE_LADDER})


@dataclass(frozen=True, slots=True)
class FlowConfig:
    optimal_min_minutes: float = 10.0
    optimal_max_minutes: float = 20.0
    absolute_max_minutes: float = 30.0
    frustration_cap: float = 0.85
    fatigue_cap: float = 0.6
    start_difficulty: float = 3.0
    reaction_window: int = 20
    outcome_window: int = 10
    adaptation_history: int = 50

    def __post_init__(self) -> None:
        if not (0 < self.optimal_min_minutes <= self.optimal_max_minutes <= self.absolute_max_minutes):
            raise ValueError("session minutes must satisfy 0 < optimal_min <= optimal_max <= absolute_max")
        if not (1.0 <= self.start_difficulty <= 10.0):
            raise ValueError("start_difficulty must be in [1, 10]")


@dataclass(frozen=True, slots=True)
class AdaptationPoint:
    at_s: float
    difficulty: float


@dataclass(slots=True)
class SessionMetrics:
    session_start_s: float
    elapsed_s: float = 0.0
    rounds_completed: int = 0
    correct: int = 0
    incorrect: int = 0
    reaction_times_ms: deque[float] = field(default_factory=lambda: deque(maxlen=20))
    reaction_spread_ms: float = 0.0
    hesitations: int = 0
    error_patterns: dict[str, int] = field(default_factory=dict)
    phase: WavePhase = WavePhase.WARMUP
    phase_progress: float = 0.0
    stage: CognitiveStage = CognitiveStage.AWARENESS
    stage_progress: float = 0.0
    difficulty: float = 3.0
    fatigue: float = 0.0
    frustration: float = 0.0
    engagement: float = 0.7
    adaptation_history: deque[AdaptationPoint] = field(default_factory=lambda: deque(maxlen=50))
    recent_outcomes: deque[bool] = field(default_factory=lambda: deque(maxlen=10))
    optimal_play_reached: bool = False

    @property
    def accuracy(self) -> float:
        return self.correct / max(self.rounds_completed, 1)

    @property
    def minutes(self) -> float:
        return self.elapsed_s / 60.0


@dataclass(frozen=True, slots=True)
class SessionEndCheck:
    should_end: bool
    trigger: EndTrigger | None = None
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class RoundOutcome:
    phase_changed: bool
    new_phase: WavePhase | None
    stage_changed: bool
    new_stage: CognitiveStage | None
    should_end_session: bool
    session_end_reason: str | None
    end_trigger: EndTrigger | None = None
    feedback: str | None = None


@dataclass(frozen=True, slots=True)
class SessionSummary:
    description: str
    cognitive_changes: tuple[str, ...]
    suggestions: tuple[str, ...]


class SessionFlowController:
    def __init__(self, *, clock: Clock, rng: SeededRng, config: FlowConfig | None = None) -> None:
        self._clock = clock
        self._rng = rng
        self._cfg = config or FlowConfig()
        self._lifetime_rounds = 0
        self._stage = CognitiveStage.AWARENESS
        self._phase_index = 0
        self._wave_start_round = 0
        self._metrics = self._fresh_metrics()

    def _fresh_metrics(self) -> SessionMetrics:
        now = self._clock.now()
        m = SessionMetrics(
            session_start_s=now,
            reaction_times_ms=deque(maxlen=self._cfg.reaction_window),
            adaptation_history=deque(maxlen=self._cfg.adaptation_history),
            recent_outcomes=deque(maxlen=self._cfg.outcome_window),
            stage=self._stage,
            difficulty=self._cfg.start_difficulty,
        )
        m.adaptation_history.append(AdaptationPoint(now, m.difficulty))
        return m

    # -- accessors -------------------------------------------------------------

    @property
    def config(self) -> FlowConfig:
        return self._cfg

    def metrics(self) -> SessionMetrics:
        return copy.deepcopy(self._metrics)

    @property
    def phase(self) -> WavePhase:
        return self._metrics.phase

    @property
    def stage(self) -> CognitiveStage:
        return self._stage

    @property
    def difficulty(self) -> float:
        return self._metrics.difficulty

    @property
    def lifetime_rounds(self) -> int:
        return self._lifetime_rounds

    def set_lifetime_rounds(self, rounds: int) -> None:
        self._lifetime_rounds = max(0, int(rounds))

    def load_progress(self, stage: CognitiveStage, lifetime_rounds: int) -> None:
        """Adopt persisted progress wholesale (profile import or reset)."""

        self._stage = stage
        self._metrics.stage = stage
        self._metrics.stage_progress = 0.0
        self.set_lifetime_rounds(lifetime_rounds)

    def stage_unlocks(self) -> PuzzleUnlocks:
        return STAGES[self._stage].unlocks()

    def phase_description(self) -> str:
        return WAVES[self._metrics.phase].description

    # -- round results ---------------------------------------------------------

    def record_round_result(
        self,
        is_correct: bool,
        reaction_time_ms: float,
        hesitated: bool,
        error_type: str | None = None,
    ) -> RoundOutcome:
        m = self._metrics
        m.rounds_completed += 1
        self._lifetime_rounds += 1
        if is_correct:
            m.correct += 1
        else:
            m.incorrect += 1
            if error_type:
                m.error_patterns[error_type] = m.error_patterns.get(error_type, 0) + 1

        m.reaction_times_ms.append(max(0.0, float(reaction_time_ms)))
        m.reaction_spread_ms = std_dev(list(m.reaction_times_ms)) if len(m.reaction_times_ms) >= 3 else 0.0
        if hesitated:
            m.hesitations += 1
        m.recent_outcomes.append(bool(is_correct))
        self._touch()

        self._update_fatigue()
        self._update_frustration(is_correct, reaction_time_ms)

        phase_changed, new_phase = self._advance_phase()
        stage_changed, new_stage = self._advance_stage()
        self._adapt_difficulty()
        end = self.check_session_end()

        return RoundOutcome(
            phase_changed=phase_changed,
            new_phase=new_phase,
            stage_changed=stage_changed,
            new_stage=new_stage,
            should_end_session=end.should_end,
            session_end_reason=end.reason,
            end_trigger=end.trigger,
            feedback=self._subtle_feedback(),
        )

    def check_idle(self) -> SessionEndCheck:
        """Account for time passing without a round, then test the caps."""

        self._touch()
        self._update_fatigue()
        return self.check_session_end()

    def _touch(self) -> None:
        self._metrics.elapsed_s = max(0.0, self._clock.now() - self._metrics.session_start_s)

    def _update_fatigue(self) -> None:
        m = self._metrics
        time_signal = min(m.minutes / self._cfg.absolute_max_minutes, 1.0)
        spread_signal = min(m.reaction_spread_ms / 1000.0, 0.5)
        m.fatigue = min(1.0, m.fatigue * 0.95 + (time_signal + spread_signal) * 0.05)

    def _update_frustration(self, is_correct: bool, reaction_time_ms: float) -> None:
        m = self._metrics
        if is_correct:
            m.frustration = max(0.0, m.frustration - 0.08)
        else:
            m.frustration = min(1.0, m.frustration + 0.15)
        avg = mean(list(m.reaction_times_ms)) if m.reaction_times_ms else 1000.0
        if reaction_time_ms > avg * 1.5:
            m.frustration = min(1.0, m.frustration + 0.05)
        base = 0.8 if is_correct else 0.6
        m.engagement = base * (1.0 - m.fatigue * 0.5) * (1.0 - m.frustration * 0.3)

    def _advance_phase(self) -> tuple[bool, WavePhase | None]:
        m = self._metrics
        wave = WAVE_SEQUENCE[self._phase_index]
        in_phase = m.rounds_completed - self._wave_start_round
        m.phase_progress = min(in_phase / wave.rounds, 1.0)
        if in_phase < wave.rounds:
            return False, None
        self._phase_index = (self._phase_index + 1) % len(WAVE_SEQUENCE)
        m.phase = WAVE_SEQUENCE[self._phase_index].phase
        m.phase_progress = 0.0
        self._wave_start_round = m.rounds_completed
        logger.debug("wave phase -> %s", m.phase)
        return True, m.phase

    def _advance_stage(self) -> tuple[bool, CognitiveStage | None]:
        m = self._metrics
        order = list(CognitiveStage)
        idx = order.index(self._stage)
        if idx >= len(order) - 1:
            m.stage_progress = 1.0
            return False, None
        nxt = STAGES[order[idx + 1]]
        rounds_progress = min(self._lifetime_rounds / max(nxt.rounds_total, 1), 1.0)
        acc_progress = min(m.accuracy / nxt.accuracy_min, 1.0) if nxt.accuracy_min > 0 else 1.0
        m.stage_progress = (rounds_progress + acc_progress) / 2.0
        if self._lifetime_rounds >= nxt.rounds_total and m.accuracy >= nxt.accuracy_min:
            self._stage = nxt.stage
            m.stage = nxt.stage
            m.stage_progress = 0.0
            logger.info("cognitive stage advanced to %s", nxt.stage)
            return True, nxt.stage
        return False, None

    def _adapt_difficulty(self) -> None:
        m = self._metrics
        adjustment = (
            WAVES[m.phase].difficulty_modifier
            + self._performance_adjustment()
            - m.fatigue * 0.3
            - m.frustration * 0.4
        )
        target = clamp(m.difficulty + adjustment, 1.0, 10.0)
        m.difficulty = clamp(m.difficulty * 0.8 + target * 0.2, 1.0, 10.0)
        m.adaptation_history.append(AdaptationPoint(self._clock.now(), m.difficulty))

    def _performance_adjustment(self) -> float:
        m = self._metrics
        if m.rounds_completed < 5:
            return 0.0
        acc = m.accuracy
        if acc > 0.85:
            adj = 0.15
        elif acc > 0.7:
            adj = 0.05
        elif acc < 0.4:
            adj = -0.2
        elif acc < 0.55:
            adj = -0.1
        else:
            adj = 0.0
        if m.reaction_spread_ms > 500.0:
            adj -= 0.1
        if m.hesitations / max(m.rounds_completed, 1) > 0.5:
            adj -= 0.15
        return adj

    def performance_declining(self) -> bool:
        outcomes = [1.0 if o else 0.0 for o in self._metrics.recent_outcomes]
        if len(outcomes) < 6:
            return False
        half = len(outcomes) // 2
        return mean(outcomes[:half]) - mean(outcomes[half:]) > 0.2

    def check_session_end(self) -> SessionEndCheck:
        m = self._metrics
        cfg = self._cfg
        minutes = m.minutes

        if minutes >= cfg.absolute_max_minutes:
            return self._end(EndTrigger.MAX_DURATION)
        if minutes >= cfg.optimal_min_minutes and not m.optimal_play_reached:
            if self.performance_declining() or m.fatigue > cfg.fatigue_cap:
                m.optimal_play_reached = True
                return self._end(EndTrigger.OPTIMAL_REACHED)
        if m.frustration > cfg.frustration_cap:
            return self._end(EndTrigger.FRUSTRATION)
        if minutes >= cfg.optimal_max_minutes and not m.optimal_play_reached:
            m.optimal_play_reached = True
            return self._end(EndTrigger.NATURAL_STOP)
        return SessionEndCheck(False)

    def _end(self, trigger: EndTrigger) -> SessionEndCheck:
        logger.info("session end suggested: %s", trigger)
        return SessionEndCheck(True, trigger, END_REASONS[trigger])

    # -- narrative -------------------------------------------------------------

    def _subtle_feedback(self) -> str | None:
        if self._rng.random() > 0.3:
            return None
        if self._metrics.phase is not WavePhase.REFLECTION:
            return None
        return self.reflection_insight()

    def reflection_insight(self) -> str:
        m = self._metrics
        insights: list[str] = []
        if m.accuracy > 0.8:
            insights.append("Pattern recognition is sharp.")
        elif m.accuracy > 0.6:
            insights.append("Attention is focusing.")
        else:
            insights.append("Observation deepens with practice.")
        if m.reaction_spread_ms < 200.0:
            insights.append("Response timing is consistent.")
        elif m.reaction_spread_ms > 500.0:
            insights.append("Reaction speed varies - normal under new challenges.")
        if m.error_patterns:
            error, count = max(m.error_patterns.items(), key=lambda kv: kv[1])
            if count >= 3:
                insights.append(f"Pattern noted: {error} challenges require more attention.")
        return self._rng.choice(insights)

    def generate_session_summary(self) -> SessionSummary:
        self._touch()
        m = self._metrics
        minutes = int(round(m.minutes))
        description = f"{minutes} minutes of focused practice. {m.rounds_completed} challenges completed."

        changes: list[str] = []
        times = list(m.reaction_times_ms)
        if len(times) >= 5:
            half = len(times) // 2
            first, second = mean(times[:half]), mean(times[half:])
            if second < first * 0.85:
                changes.append("Reaction speed improved through the session.")
            elif second > first * 1.15:
                changes.append("Fatigue affected reaction time toward the end.")
            else:
                changes.append("Consistent response timing throughout.")
        if m.accuracy > 0.75:
            changes.append("Strong pattern recognition under varying conditions.")
        elif m.accuracy > 0.5:
            changes.append("Developing understanding of complex rule patterns.")
        else:
            changes.append("Exploring new cognitive territory - errors are learning.")

        if m.fatigue > 0.5:
            suggestion = "Rest enhances consolidation. Return tomorrow."
        elif minutes < self._cfg.optimal_min_minutes:
            suggestion = "Brief session complete. Longer sessions deepen learning."
        else:
            suggestion = "Optimal session length reached. Progress is natural."
        return SessionSummary(description, tuple(changes), (suggestion,))

    # -- lifecycle -------------------------------------------------------------

    def start_new_session(self) -> None:
        """Fresh metrics; stage and lifetime rounds carry over."""

        self._phase_index = 0
        self._wave_start_round = 0
        self._metrics = self._fresh_metrics()

    def reset(self) -> None:
        self.start_new_session()
