"""One player's play context.

``CognitiveSession`` owns every engine and the single round timer. The
presentation layer calls :meth:`start_round`, feeds real time through
:meth:`tick` and forwards selections to :meth:`select`; everything else
(mutation, adaptation, pacing, archetype drift, the persisted mind model)
happens behind those three calls.
"""

from __future__ import annotations

import copy
import logging
from collections import deque
from dataclasses import dataclass, field

from .adaptive import AdaptiveIntelligence, PerformanceSignal
from .archetypes import ArchetypeAction, ArchetypeEngine, ArchetypeUpdate
from .clock import Clock
from .cognitive_core import CognitiveDomain, SeededRng
from .deception import DeceptionEngine
from .elements import find_element
from .mind_model import (
    MindModel,
    MindModelFormatError,
    TrialRecord,
    decode_mind_model,
    encode_mind_model,
    observe_trial,
)
from .puzzle import (
    ActionResult,
    Feedback,
    GeneratorConfig,
    InversionEvent,
    PuzzleEngine,
    PuzzleState,
    PuzzleUnlocks,
    RoundPhase,
)
from .results import RoundRecord, SessionResult, session_result_from_records
from .rules import RuleEngine
from .session_flow import (
    CognitiveStage,
    FlowConfig,
    RoundOutcome,
    SessionEndCheck,
    SessionFlowController,
    SessionSummary,
)
from .temporal import TemporalEngine

logger = logging.getLogger("cosmos_mind.session")

ERROR_TRAP = "trap_selected"
ERROR_WRONG_RULE = "wrong_rule"
ERROR_TIMEOUT = "timeout"

TRIAL_WINDOW = 20


@dataclass(frozen=True, slots=True)
class SessionConfig:
    generator: GeneratorConfig = field(default_factory=GeneratorConfig)
    flow: FlowConfig = field(default_factory=FlowConfig)
    hesitation_ms: float = 3000.0
    temporal_history: int = 10
    pattern_streak: int = 3

    def __post_init__(self) -> None:
        if self.hesitation_ms <= 0:
            raise ValueError("hesitation_ms must be > 0")
        if self.temporal_history <= 0:
            raise ValueError("temporal_history must be > 0")
        if self.pattern_streak <= 0:
            raise ValueError("pattern_streak must be > 0")


class RoundTimer:
    """Countdown in round time. Fires at most once per start()."""

    def __init__(self) -> None:
        self._remaining_ms = 0.0
        self._armed = False

    @property
    def armed(self) -> bool:
        return self._armed

    @property
    def remaining_ms(self) -> float:
        return self._remaining_ms if self._armed else 0.0

    def start(self, duration_ms: float) -> None:
        if duration_ms <= 0:
            raise ValueError("duration_ms must be > 0")
        self._remaining_ms = float(duration_ms)
        self._armed = True

    def cancel(self) -> None:
        self._armed = False
        self._remaining_ms = 0.0

    def advance(self, delta_ms: float) -> bool:
        if not self._armed or delta_ms <= 0:
            return False
        self._remaining_ms -= float(delta_ms)
        if self._remaining_ms <= 0:
            self.cancel()
            return True
        return False


@dataclass(frozen=True, slots=True)
class TickResult:
    phase: RoundPhase | None = None
    inversion: InversionEvent | None = None
    timed_out: bool = False
    round: RoundOutcome | None = None


@dataclass(frozen=True, slots=True)
class SelectionOutcome:
    action: ActionResult
    round: RoundOutcome | None = None
    archetype: ArchetypeUpdate | None = None


class CognitiveSession:
    def __init__(self, *, clock: Clock, seed: int, config: SessionConfig | None = None) -> None:
        self._clock = clock
        self._seed = int(seed)
        self._cfg = config or SessionConfig()

        root = SeededRng(self._seed)
        self._rules = RuleEngine(rng=root.fork())
        self._deception = DeceptionEngine(rng=root.fork(), area=self._cfg.generator.area)
        self._temporal = TemporalEngine(clock=clock, history=self._cfg.temporal_history)
        self._puzzle = PuzzleEngine(
            rng=root.fork(),
            rules=self._rules,
            deception=self._deception,
            temporal=self._temporal,
            config=self._cfg.generator,
        )
        self._adaptive = AdaptiveIntelligence(clock=clock, rng=root.fork())
        self._flow = SessionFlowController(clock=clock, rng=root.fork(), config=self._cfg.flow)
        self._archetypes = ArchetypeEngine(clock=clock, rng=root.fork())

        now = clock.now()
        self._model = MindModel(model_id=f"mind-{self._seed}", created_at_s=now, updated_at_s=now, total_sessions=1)
        self._timer = RoundTimer()
        self._round_no = 0
        self._round_open = False
        self._records: list[RoundRecord] = []
        self._trials: deque[TrialRecord] = deque(maxlen=TRIAL_WINDOW)
        self._session_start_s = now
        self._streak = 0
        self._last_solved_rule: str | None = None
        self._end: SessionEndCheck = SessionEndCheck(False)
        logger.info("session started (seed=%d)", self._seed)

    # -- accessors -------------------------------------------------------------

    @property
    def seed(self) -> int:
        return self._seed

    @property
    def config(self) -> SessionConfig:
        return self._cfg

    @property
    def round_no(self) -> int:
        return self._round_no

    @property
    def round_open(self) -> bool:
        return self._round_open

    @property
    def timer(self) -> RoundTimer:
        return self._timer

    @property
    def puzzle_state(self) -> PuzzleState | None:
        return self._puzzle.state

    @property
    def rules(self) -> RuleEngine:
        return self._rules

    @property
    def deception(self) -> DeceptionEngine:
        return self._deception

    @property
    def temporal(self) -> TemporalEngine:
        return self._temporal

    @property
    def adaptive(self) -> AdaptiveIntelligence:
        return self._adaptive

    @property
    def flow(self) -> SessionFlowController:
        return self._flow

    @property
    def archetypes(self) -> ArchetypeEngine:
        return self._archetypes

    @property
    def end_check(self) -> SessionEndCheck:
        return self._end

    def mind_model(self) -> MindModel:
        self._sync_model()
        return copy.deepcopy(self._model)

    # -- round loop ------------------------------------------------------------

    def start_round(self) -> PuzzleState:
        self._timer.cancel()
        if self._round_open:
            # An unresolved round is abandoned without a result.
            self._puzzle.close_round()
            self._round_open = False

        self._round_no += 1
        difficulty = self._adaptive.difficulty_for_next_puzzle(self._flow.difficulty)
        state = self._puzzle.generate_puzzle(
            self._round_no,
            difficulty,
            self._adaptive.next_puzzle_bias(),
            tuning=self._adaptive.parameters(),
            unlocks=self._flow.stage_unlocks(),
            invert_rule=self._adaptive.should_invert_rule(),
            silence=self._adaptive.should_trigger_silence(),
        )
        self._temporal.record_temporal_state(self._round_no, state.elements)
        self._timer.start(state.total_ms)
        self._round_open = True
        return state

    def tick(self, delta_ms: float) -> TickResult:
        """Advance round time. Expiry resolves the round as a timeout."""

        if not self._round_open or delta_ms <= 0:
            return TickResult()
        phase = self._puzzle.advance(delta_ms)
        inversion = self._puzzle.check_for_rule_inversion()
        if not self._timer.advance(delta_ms):
            return TickResult(phase=phase, inversion=inversion)

        st = self._puzzle.state
        assert st is not None
        outcome, _ = self._finish_round(
            action=None,
            element_id=None,
            correct=False,
            response_time_ms=st.act_ms,
            error_type=ERROR_TIMEOUT,
            feedback=ERROR_TIMEOUT,
        )
        return TickResult(phase=phase, inversion=inversion, timed_out=True, round=outcome)

    def select(self, element_id: str) -> SelectionOutcome:
        st = self._puzzle.state
        if not self._round_open or st is None:
            return SelectionOutcome(self._puzzle.process_action(element_id, 0.0))

        action = self._puzzle.process_action(element_id, st.elapsed_ms)
        if action.failure is not None:
            return SelectionOutcome(action)

        if action.feedback is Feedback.TRAP:
            error = ERROR_TRAP
        elif action.success:
            error = None
        else:
            error = ERROR_WRONG_RULE
        outcome, update = self._finish_round(
            action=action,
            element_id=element_id,
            correct=action.success,
            response_time_ms=action.response_time_ms,
            error_type=error,
            feedback=str(action.feedback),
        )
        return SelectionOutcome(action, outcome, update)

    def record_gaze(self, element_id: str, delta_ms: float) -> None:
        if self._round_open:
            self._puzzle.record_gaze(element_id, delta_ms)

    def _finish_round(
        self,
        *,
        action: ActionResult | None,
        element_id: str | None,
        correct: bool,
        response_time_ms: float,
        error_type: str | None,
        feedback: str,
    ) -> tuple[RoundOutcome, ArchetypeUpdate]:
        st = self._puzzle.state
        assert st is not None
        self._timer.cancel()
        self._puzzle.close_round()
        self._round_open = False
        # Later rounds remember the answers as they stood when this one ended.
        self._temporal.record_temporal_state(st.round, st.elements)
        now = self._clock.now()

        rule = st.rule
        if action is not None and action.should_mutate:
            self._rules.mutate_rule()

        trap_fallen = action is not None and action.feedback is Feedback.TRAP
        rule_adapted = correct and self._last_solved_rule is not None and rule.rule_id != self._last_solved_rule
        self._streak = self._streak + 1 if correct else 0
        chosen = find_element(st.elements, element_id) if element_id is not None else None
        if correct:
            self._last_solved_rule = rule.rule_id
            if chosen is not None:
                self._deception.note_successful_shape(chosen.shape)

        impulsive = action is not None and action.was_impulsive
        update = self._archetypes.process_action(
            ArchetypeAction(
                response_time_ms=response_time_ms,
                was_correct=correct,
                was_deliberate=action is not None and action.was_deliberate,
                was_impulsive=impulsive,
                trap_avoided=correct and bool(st.trap_ids()),
                trap_fallen=trap_fallen,
                rule_adapted=rule_adapted,
                pattern_found=correct and self._streak >= self._cfg.pattern_streak,
            )
        )

        self._model.curve(rule.kind.value).record(correct=correct, now_s=now)
        self._adaptive.record_performance(
            PerformanceSignal(
                timestamp_s=now,
                round_number=st.round,
                accuracy=1.0 if correct else 0.0,
                average_response_time_ms=response_time_ms,
                impulsive_action_rate=1.0 if impulsive else 0.0,
                traps_fallen=1 if trap_fallen else 0,
                rules_adapted=1 if rule_adapted else 0,
                emotional_state=self._adaptive.detect_emotional_state(),
                domain=rule.domain,
                difficulty=st.difficulty,
            )
        )

        outcome = self._flow.record_round_result(
            correct,
            response_time_ms,
            response_time_ms > self._cfg.hesitation_ms,
            error_type,
        )
        self._end = SessionEndCheck(outcome.should_end_session, outcome.end_trigger, outcome.session_end_reason)

        self._model.total_trials += 1
        if correct:
            self._model.lifetime_correct += 1
        position = None
        if chosen is not None:
            area = self._cfg.generator.area
            position = ((chosen.x - area.x) / area.width, (chosen.y - area.y) / area.height)
        self._trials.append(
            TrialRecord(
                at_s=now,
                correct=correct,
                response_time_ms=float(response_time_ms),
                difficulty=st.difficulty,
                position=position,
            )
        )
        observe_trial(self._model, self._trials, fatigue=self._flow.metrics().fatigue)
        self._records.append(
            RoundRecord(
                round=st.round,
                rule_kind=rule.kind.value,
                element_id=element_id,
                feedback=feedback,
                is_correct=correct,
                response_time_ms=float(response_time_ms),
                difficulty=st.difficulty,
                temporal=st.temporal is not None,
                inverted=st.inverted,
            )
        )
        return outcome, update

    # -- contract pass-throughs ------------------------------------------------

    def generate_puzzle(
        self,
        round_no: int,
        difficulty: float,
        domain_bias: CognitiveDomain | None = None,
        *,
        unlocks: PuzzleUnlocks | None = None,
    ) -> PuzzleState:
        return self._puzzle.generate_puzzle(
            round_no,
            difficulty,
            domain_bias,
            tuning=self._adaptive.parameters(),
            unlocks=unlocks,
        )

    def process_action(self, element_id: str, timestamp_ms: float) -> ActionResult:
        return self._puzzle.process_action(element_id, timestamp_ms)

    def check_for_rule_inversion(self) -> InversionEvent | None:
        return self._puzzle.check_for_rule_inversion()

    def record_performance(self, signal: PerformanceSignal) -> None:
        self._adaptive.record_performance(signal)

    def record_round_result(
        self,
        is_correct: bool,
        reaction_time_ms: float,
        hesitated: bool,
        error_type: str | None = None,
    ) -> RoundOutcome:
        return self._flow.record_round_result(is_correct, reaction_time_ms, hesitated, error_type)

    def check_idle(self) -> SessionEndCheck:
        self._end = self._flow.check_idle()
        return self._end

    # -- mind model ------------------------------------------------------------

    def _sync_model(self) -> None:
        m = self._model
        m.fingerprint = self._adaptive.fingerprint()
        m.lifetime_rounds = self._flow.lifetime_rounds
        m.cognitive_stage = self._flow.stage.value
        m.updated_at_s = self._clock.now()

    def export_mind_model(self) -> str:
        self._sync_model()
        return encode_mind_model(self._model)

    def import_mind_model(self, data: str | bytes) -> bool:
        """Adopt a previously exported model. Malformed input changes nothing."""

        try:
            model = decode_mind_model(data)
            stage = CognitiveStage(model.cognitive_stage)
        except (MindModelFormatError, ValueError) as exc:
            logger.warning("mind model import rejected: %s", exc)
            return False

        self._model = model
        self._adaptive.load_fingerprint(model.fingerprint)
        self._flow.load_progress(stage, model.lifetime_rounds)
        logger.info("mind model %s imported (%d trials)", model.model_id, model.total_trials)
        return True

    # -- summaries -------------------------------------------------------------

    def summary(self) -> SessionSummary:
        return self._flow.generate_session_summary()

    def session_insight(self) -> str:
        return self._adaptive.generate_session_insight()

    def result(self) -> SessionResult:
        return session_result_from_records(
            self._records,
            seed=self._seed,
            started_at_s=self._session_start_s,
            ended_at_s=self._clock.now(),
            final_difficulty=self._flow.difficulty,
            cognitive_stage=self._flow.stage.value,
            dominant_archetype=self._archetypes.dominant.archetype_id.value,
        )

    # -- lifecycle -------------------------------------------------------------

    def _drop_round_state(self) -> None:
        self._timer.cancel()
        self._round_open = False
        self._round_no = 0
        self._puzzle.reset()
        self._rules.reset()
        self._deception.reset()
        self._temporal.reset()
        self._records = []
        self._trials.clear()
        self._streak = 0
        self._last_solved_rule = None
        self._end = SessionEndCheck(False)
        self._session_start_s = self._clock.now()

    def start_new_session(self) -> None:
        """Per-session state starts over; the player's profile carries on."""

        self._drop_round_state()
        self._adaptive.start_new_session()
        self._flow.start_new_session()
        self._model.total_sessions += 1
        logger.info("session started (seed=%d, sessions=%d)", self._seed, self._model.total_sessions)

    def reset(self) -> None:
        """Abandon the current session, including any round in progress."""

        self._drop_round_state()
        self._adaptive.start_new_session()
        self._flow.reset()

    def reset_profile(self) -> None:
        self._drop_round_state()
        self._deception.reset(forget_player=True)
        self._adaptive.reset_profile()
        self._archetypes.reset()
        self._flow.load_progress(CognitiveStage.AWARENESS, 0)
        self._flow.reset()
        now = self._clock.now()
        self._model = MindModel(model_id=f"mind-{self._seed}", created_at_s=now, updated_at_s=now, total_sessions=1)
        logger.info("profile reset")
