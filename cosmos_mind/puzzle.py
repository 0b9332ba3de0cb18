"""Round generation and in-round play.

``PuzzleEngine`` composes the rule, deception and temporal engines into one
playable element set per round, then scores selections against it. Round
time is driven explicitly through :meth:`PuzzleEngine.advance`.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum

from .adaptive import AdaptiveParameters
from .cognitive_core import CognitiveDomain, SeededRng, clamp, clamp01
from .deception import (
    DeceptionEngine,
    DeceptionOutcome,
    DeceptionStyle,
    calculate_affordance,
)
from .elements import (
    DECOY_COLORS,
    MAX_SIZE,
    MIN_SIZE,
    TRAP_COLORS,
    VALID_COLORS,
    GameElement,
    PlayArea,
    ShapeType,
    find_element,
    find_open_position,
    snapshot_elements,
)
from .rules import (
    RULE_ATTRIBUTES,
    RULES_BY_KIND,
    EnvironmentResponse,
    HiddenRule,
    RuleCategory,
    RuleContext,
    RuleEngine,
    RuleKind,
    RuleShaping,
    build_rule_context,
    conform,
    evaluate_rule,
)
from .temporal import TemporalChallenge, TemporalChallengeType, TemporalEngine

logger = logging.getLogger("cosmos_mind.puzzle")

IMPULSIVE_MS = 400.0
DELIBERATE_MS = 2000.0
RULE_SHIFT_MESSAGE = "The rule shifts."
DEFAULT_INVERSION_PROBABILITY = 0.3
DEFAULT_FALSE_AFFORDANCE = 0.2

_TRAP_INSIGHTS = (
    "The obvious path deceives.",
    "Similarity is not identity.",
    "Your eye moved faster than your mind.",
    "The trap was set. You walked in.",
)
_PATIENCE_INSIGHT = "Patience reveals patterns others miss."


def pressure_scale(temporal_pressure: float) -> float:
    """Action-window multiplier: 1.0 at pressure 0.5, 0.75 at full pressure."""

    return 1.0 + (0.5 - clamp01(temporal_pressure)) * 0.5


def reward_scale(relief_intensity: float) -> float:
    return 1.0 + (clamp01(relief_intensity) - 0.5) * 0.5


class RoundPhase(StrEnum):
    OBSERVE = "observe"
    ACT = "act"
    CLOSED = "closed"


class Feedback(StrEnum):
    VALID = "valid"
    TRAP = "trap"
    WRONG = "wrong"


class FailureReason(StrEnum):
    NO_ACTIVE_PUZZLE = "no_active_puzzle"
    ELEMENT_NOT_FOUND = "element_not_found"


@dataclass(frozen=True, slots=True)
class GeneratorConfig:
    area: PlayArea = field(default_factory=PlayArea)
    min_distance: float = 80.0
    placement_attempts: int = 50
    stay_probability: float = 0.6
    max_elements: int = 12
    history_rounds: int = 10

    def __post_init__(self) -> None:
        if self.placement_attempts <= 0:
            raise ValueError("placement_attempts must be > 0")
        if not (0.0 <= self.stay_probability <= 1.0):
            raise ValueError("stay_probability must be in [0.0, 1.0]")
        if self.max_elements < 2:
            raise ValueError("max_elements must be >= 2")


@dataclass(frozen=True, slots=True)
class PuzzleUnlocks:
    """What the current cognitive stage allows the generator to use.

    ``None`` for a collection means no restriction.
    """

    categories: frozenset[RuleCategory] | None = None
    styles: frozenset[DeceptionStyle] | None = None
    temporal_challenges: bool = True
    rule_inversion: bool = True


@dataclass(frozen=True, slots=True)
class PlayerAction:
    element_id: str
    timestamp_ms: float
    was_correct: bool
    response_time_ms: float
    was_impulsive: bool
    was_deliberate: bool
    feedback: Feedback


@dataclass(frozen=True, slots=True)
class ActionResult:
    success: bool
    feedback: Feedback | None = None
    failure: FailureReason | None = None
    reason: str | None = None
    score_modifier: float | None = None
    insight: str | None = None
    should_mutate: bool = False
    decayed: bool = False
    response_time_ms: float = 0.0
    was_impulsive: bool = False
    was_deliberate: bool = False
    environment_response: EnvironmentResponse = EnvironmentResponse.NEUTRAL


@dataclass(frozen=True, slots=True)
class InversionEvent:
    message: str
    at_ms: float
    swapped: int


@dataclass(slots=True)
class PuzzleState:
    puzzle_id: str
    round: int
    difficulty: float
    rule: HiddenRule
    elements: list[GameElement]
    deception: DeceptionOutcome | None
    temporal: TemporalChallenge | None
    observe_ms: float
    act_ms: float
    rule_inversion_pending: bool
    silence_before_reveal: bool
    reward_scale: float = 1.0
    phase: RoundPhase = RoundPhase.OBSERVE
    phase_started_ms: float = 0.0
    elapsed_ms: float = 0.0
    inverted_at_ms: float | None = None
    actions: list[PlayerAction] = field(default_factory=list)

    @property
    def phase_duration_ms(self) -> float:
        return self.observe_ms if self.phase is RoundPhase.OBSERVE else self.act_ms

    @property
    def total_ms(self) -> float:
        return self.observe_ms + self.act_ms

    @property
    def inverted(self) -> bool:
        return self.inverted_at_ms is not None

    def correct_ids(self) -> list[str]:
        return [e.element_id for e in self.elements if e.is_correct]

    def trap_ids(self) -> list[str]:
        return [e.element_id for e in self.elements if e.is_trap]

    def decoy_ids(self) -> list[str]:
        return [e.element_id for e in self.elements if not e.is_correct and not e.is_trap]


class PuzzleEngine:
    def __init__(
        self,
        *,
        rng: SeededRng,
        rules: RuleEngine,
        deception: DeceptionEngine,
        temporal: TemporalEngine,
        config: GeneratorConfig | None = None,
    ) -> None:
        self._rng = rng
        self._rules = rules
        self._deception = deception
        self._temporal = temporal
        self._cfg = config or GeneratorConfig()
        self._state: PuzzleState | None = None
        self._previous: tuple[GameElement, ...] = ()
        self._two_ago: tuple[GameElement, ...] = ()
        self._selection_history: dict[int, tuple[str, ...]] = {}
        self._rule_difficulty = 0.0
        self._generated = 0

    @property
    def config(self) -> GeneratorConfig:
        return self._cfg

    @property
    def area(self) -> PlayArea:
        return self._cfg.area

    @property
    def state(self) -> PuzzleState | None:
        return self._state

    # -- generation ------------------------------------------------------------

    def generate_puzzle(
        self,
        round_no: int,
        difficulty: float,
        domain_bias: CognitiveDomain | None = None,
        *,
        tuning: AdaptiveParameters | None = None,
        unlocks: PuzzleUnlocks | None = None,
        invert_rule: bool | None = None,
        silence: bool | None = None,
    ) -> PuzzleState:
        """Build the next round.

        ``invert_rule`` and ``silence`` are the caller's pacing decisions; left
        as ``None`` the generator draws the inversion itself and stays silent
        only at high difficulty.
        """

        d = clamp(difficulty, 1.0, 10.0)
        allowed = unlocks or PuzzleUnlocks()

        if self._state is not None:
            self._two_ago = self._previous
            self._previous = snapshot_elements(self._state.elements)
        carried = list(self._previous)

        rule = self._select_rule(d, domain_bias, tuning, allowed)

        count = min(self._cfg.max_elements, 6 + int(math.floor(d * 0.8)))
        elements = self._place_elements(round_no, count, carried)

        valid_target = max(2, int(math.floor(count * 0.25)))
        trap_share = d * 0.3
        if tuning is not None:
            trap_share *= 0.5 + tuning.trap_density / 0.3
        trap_target = max(0, min(int(math.floor(trap_share)), count - valid_target))

        rule, correct = self._shape_for_rule(rule, elements, round_no, valid_target, d)
        for e in elements:
            e.is_correct = e.element_id in correct
            e.is_trap = False

        lure = DEFAULT_FALSE_AFFORDANCE if tuning is None else tuning.false_affordance_level
        planted, correct = self._plant_traps(rule, elements, round_no, trap_target, lure)
        outcome = self._deception.initialize_deception(
            d,
            elements,
            rule_correct=correct,
            styles=allowed.styles,
        )
        for trap_id in planted | set(outcome.traps):
            e = find_element(elements, trap_id)
            if e is not None and not e.is_correct:
                e.mark_trap()

        challenge = None
        if allowed.temporal_challenges and d >= 4 and self._rng.random() < 0.3:
            challenge = self._activate_temporal(elements, round_no, d)
        else:
            self._temporal.clear_challenge()

        self._paint(elements)
        self._rng.shuffle(elements)

        temporal_rule = rule.category is RuleCategory.TEMPORAL or challenge is not None
        compression = self._temporal.compression_multiplier()
        observe_ms = 3000.0 if temporal_rule else 1500.0
        if tuning is not None:
            observe_ms = (observe_ms + tuning.observation_time_ms) / 2.0
            act_ms = tuning.action_time_ms * pressure_scale(tuning.temporal_pressure)
        else:
            act_ms = 15000.0 - d * 500.0
        observe_ms /= compression
        act_ms /= compression

        pending = (
            allowed.rule_inversion
            and challenge is None
            and d > 5
            and (self._rng.chance(DEFAULT_INVERSION_PROBABILITY) if invert_rule is None else invert_rule)
        )

        self._generated += 1
        self._state = PuzzleState(
            puzzle_id=f"puzzle-{round_no}-{self._generated}",
            round=int(round_no),
            difficulty=d,
            rule=rule,
            elements=elements,
            deception=outcome,
            temporal=challenge,
            observe_ms=observe_ms,
            act_ms=act_ms,
            rule_inversion_pending=pending,
            silence_before_reveal=d > 7 or bool(silence),
            reward_scale=1.0 if tuning is None else reward_scale(tuning.relief_intensity),
        )
        logger.debug(
            "round %d: rule=%s n=%d correct=%d traps=%d temporal=%s",
            round_no,
            rule.rule_id,
            len(elements),
            len(self._state.correct_ids()),
            len(self._state.trap_ids()),
            None if challenge is None else challenge.challenge_type,
        )
        return self._state

    def _select_rule(
        self,
        d: float,
        domain_bias: CognitiveDomain | None,
        tuning: AdaptiveParameters | None,
        allowed: PuzzleUnlocks,
    ) -> HiddenRule:
        active = self._rules.active_rule
        escalated = active is not None and d - self._rule_difficulty >= 2.0
        blocked = (
            active is not None and allowed.categories is not None and active.category not in allowed.categories
        )
        if active is None or self._rules.rounds_since_change > 5 or escalated or blocked:
            rule_complexity = 1.0 if tuning is None else tuning.rule_complexity
            active = self._rules.initialize_rule(
                d * 0.5 + rule_complexity * 0.5,
                categories=allowed.categories,
                domain=domain_bias,
            )
            self._rule_difficulty = d
        return active

    def _place_elements(self, round_no: int, count: int, carried: list[GameElement]) -> list[GameElement]:
        area = self._cfg.area
        center = area.center
        by_id = {e.element_id: e for e in carried}
        placed: list[GameElement] = []
        for i in range(count):
            slot_id = f"slot-{i}"
            prev = by_id.get(slot_id)
            brightness = self._rng.uniform(0.4, 1.0)
            e = GameElement(
                element_id=slot_id,
                shape=self._rng.choice(tuple(ShapeType)),
                color=VALID_COLORS[0],
                x=center.x,
                y=center.y,
                size=self._rng.uniform(MIN_SIZE, MAX_SIZE),
                opacity=1.0,
                appeared_round=int(round_no),
                is_symmetric=self._rng.random() > 0.4,
                brightness=brightness,
            )
            others = [p.position for p in placed]
            if prev is not None:
                e.move_count = prev.move_count
                e.appeared_round = prev.appeared_round
                e.was_selected_before = prev.was_selected_before
                e.was_relevant_last_round = prev.is_correct
                e.gaze_time_ms = prev.gaze_time_ms
                stays = self._rng.random() < self._cfg.stay_probability
                if stays and all(prev.position.distance_to(p) >= self._cfg.min_distance for p in others):
                    e.move_to(prev.position, center=center)
                else:
                    p = find_open_position(
                        self._rng,
                        area,
                        others,
                        min_distance=self._cfg.min_distance,
                        attempts=self._cfg.placement_attempts,
                    )
                    e.move_to(p, center=center)
                    e.has_moved = True
                    e.move_count += 1
            else:
                p = find_open_position(
                    self._rng,
                    area,
                    others,
                    min_distance=self._cfg.min_distance,
                    attempts=self._cfg.placement_attempts,
                )
                e.move_to(p, center=center)
            placed.append(e)
        return placed

    def _shape_for_rule(
        self,
        rule: HiddenRule,
        elements: list[GameElement],
        round_no: int,
        valid_target: int,
        d: float,
    ) -> tuple[HiddenRule, set[str]]:
        tried: list[RuleKind] = []
        for _ in range(3):
            correct = self._shape_once(rule, elements, round_no, valid_target)
            if correct:
                return rule, correct
            tried.append(rule.kind)
            fallback = self._rules.fallback_rule(d * 0.5, exclude=rule.kind)
            logger.debug("rule %s had no answer this round; falling back to %s", rule.rule_id, fallback.rule_id)
            rule = self._rules.activate(fallback)

        # Symmetry can always be set directly on an object.
        rule = self._rules.activate(RULES_BY_KIND[RuleKind.SYMMETRY_KEEPER])
        correct = self._shape_once(rule, elements, round_no, valid_target)
        return rule, correct

    def _shape_once(
        self,
        rule: HiddenRule,
        elements: list[GameElement],
        round_no: int,
        valid_target: int,
    ) -> set[str]:
        shaping = RuleShaping(
            rng=self._rng,
            area=self._cfg.area,
            elements=elements,
            current_round=int(round_no),
            focus_shape=self._rng.choice(tuple(ShapeType)),
            min_distance=self._cfg.min_distance,
            attempts=self._cfg.placement_attempts,
        )
        order = list(elements)
        self._rng.shuffle(order)
        chosen: set[str] = set()
        for e in order:
            if len(chosen) >= valid_target:
                break
            if conform(rule, e, satisfy=True, shaping=shaping):
                chosen.add(e.element_id)
        for e in order:
            if e.element_id not in chosen:
                conform(rule, e, satisfy=False, shaping=shaping)

        ctx = self._context(elements, round_no)
        return {e.element_id for e in elements if evaluate_rule(rule, e, ctx)}

    def _plant_traps(
        self,
        rule: HiddenRule,
        elements: list[GameElement],
        round_no: int,
        trap_target: int,
        lure: float,
    ) -> tuple[set[str], set[str]]:
        """Make the most inviting wrong objects look even more inviting.

        Returns the planted trap ids and the rule-correct ids after planting.
        """

        if trap_target <= 0:
            return set(), {e.element_id for e in elements if e.is_correct}
        bright_floor = min(0.98, 0.85 + 0.25 * clamp01(lure))
        size_floor = MAX_SIZE - 10.0 + 10.0 * clamp01(lure)
        candidates = [e for e in elements if not e.is_correct]
        area = self._cfg.area
        candidates.sort(key=lambda e: calculate_affordance(e, elements, area).overall, reverse=True)
        locked = RULE_ATTRIBUTES.get(rule.kind, frozenset())
        planted: set[str] = set()
        for e in candidates[:trap_target]:
            if "brightness" not in locked:
                e.brightness = self._rng.uniform(bright_floor, 1.0)
            if "size" not in locked:
                e.size = self._rng.uniform(size_floor, MAX_SIZE)
            if "is_symmetric" not in locked:
                e.is_symmetric = True
            planted.add(e.element_id)

        # Embellishment may have changed the verdict of a planted object.
        ctx = self._context(elements, round_no)
        correct = {e.element_id for e in elements if evaluate_rule(rule, e, ctx)}
        if correct:
            for e in elements:
                e.is_correct = e.element_id in correct
        else:
            correct = {e.element_id for e in elements if e.is_correct}
        return planted - correct, correct

    def _paint(self, elements: list[GameElement]) -> None:
        for e in elements:
            if e.is_correct:
                e.color = self._rng.choice(VALID_COLORS)
                e.opacity = 1.0
            elif e.is_trap:
                e.color = TRAP_COLORS[self._rng.choice(VALID_COLORS)]
                e.opacity = 1.0
            else:
                e.color = self._rng.choice(DECOY_COLORS)
                e.opacity = 0.85

    def _activate_temporal(self, elements: list[GameElement], round_no: int, d: float) -> TemporalChallenge | None:
        pool = [TemporalChallengeType.REMEMBER_ORIGINAL, TemporalChallengeType.TRACK_CHANGES]
        if d >= 6:
            pool += [TemporalChallengeType.DECAY_DETECTION, TemporalChallengeType.PREDICT_NEXT]
        if d >= 8:
            pool.append(TemporalChallengeType.TIMELINE_MERGE)
        challenge_type = self._rng.choice(pool)

        ref = self._temporal.reference_state(self._temporal.reference_round_for(challenge_type, round_no))
        if ref is None:
            self._temporal.clear_challenge()
            return None
        past_correct = {e.element_id for e in ref.elements if e.is_correct}
        if not any(e.element_id in past_correct for e in elements):
            self._temporal.clear_challenge()
            return None

        challenge = self._temporal.initialize_temporal_challenge(challenge_type, ref.elements, current_round=round_no)
        # The past now defines the answer; a remembered answer is never a trap.
        for e in elements:
            if e.element_id in past_correct:
                e.mark_correct()
            else:
                e.is_correct = False
        return challenge

    def _context(self, elements: Iterable[GameElement], round_no: int, selections: Iterable[str] = ()) -> RuleContext:
        return build_rule_context(
            elements,
            current_round=round_no,
            area=self._cfg.area,
            previous_round=self._previous,
            two_rounds_ago=self._two_ago,
            selections=selections,
            selection_history=self._selection_history,
        )

    # -- round clock -----------------------------------------------------------

    def advance(self, delta_ms: float) -> RoundPhase | None:
        """Move round time forward. Returns the new phase on a transition."""

        st = self._state
        if st is None or st.phase is RoundPhase.CLOSED or delta_ms <= 0:
            return None
        st.elapsed_ms += float(delta_ms)
        if st.phase is RoundPhase.OBSERVE and st.elapsed_ms - st.phase_started_ms >= st.observe_ms:
            st.phase = RoundPhase.ACT
            st.phase_started_ms = st.phase_started_ms + st.observe_ms
            return st.phase
        return None

    def record_gaze(self, element_id: str, delta_ms: float) -> None:
        st = self._state
        if st is None or delta_ms <= 0:
            return
        e = find_element(st.elements, element_id)
        if e is None:
            return
        e.gaze_time_ms += float(delta_ms)
        if st.temporal is None and "gaze" in RULE_ATTRIBUTES.get(st.rule.kind, frozenset()):
            # Attention is part of the rule, so the answer moves with it.
            ctx = self._context(st.elements, st.round)
            for other in st.elements:
                if not other.is_trap:
                    other.is_correct = evaluate_rule(st.rule, other, ctx) != st.inverted

    def check_for_rule_inversion(self) -> InversionEvent | None:
        st = self._state
        if st is None or not st.rule_inversion_pending or st.inverted or st.phase is not RoundPhase.ACT:
            return None
        if st.elapsed_ms - st.phase_started_ms <= st.act_ms * 0.5:
            return None

        flipped = {e.element_id: (not e.is_correct and not e.is_trap) for e in st.elements}
        st.rule_inversion_pending = False
        if not any(flipped.values()):
            logger.debug("round %d: inversion skipped, it would leave no answer", st.round)
            return None
        for e in st.elements:
            e.is_correct = flipped[e.element_id]
        st.inverted_at_ms = st.elapsed_ms
        logger.debug("round %d: rule inverted at %.0fms", st.round, st.elapsed_ms)
        return InversionEvent(message=RULE_SHIFT_MESSAGE, at_ms=st.elapsed_ms, swapped=len(flipped))

    # -- selection -------------------------------------------------------------

    def process_action(self, element_id: str, timestamp_ms: float) -> ActionResult:
        st = self._state
        if st is None or st.phase is RoundPhase.CLOSED:
            return ActionResult(success=False, failure=FailureReason.NO_ACTIVE_PUZZLE, reason="no_active_puzzle")
        element = find_element(st.elements, element_id)
        if element is None:
            return ActionResult(success=False, failure=FailureReason.ELEMENT_NOT_FOUND, reason="element_not_found")

        since = st.actions[-1].timestamp_ms if st.actions else st.phase_started_ms
        response_ms = max(0.0, float(timestamp_ms) - since)
        impulsive = response_ms < IMPULSIVE_MS
        deliberate = response_ms > DELIBERATE_MS

        picks = [a.element_id for a in st.actions] + [element_id]
        evaluation = self._rules.evaluate_selection(element, self._context(st.elements, st.round, picks))
        is_correct = evaluation.is_correct != st.inverted

        insight: str | None = None
        reason: str | None = None
        if st.temporal is not None:
            verdict = self._temporal.evaluate_temporal_selection(element, st.round)
            is_correct = verdict.is_correct
            insight = verdict.insight

        decayed = False
        if element.is_trap:
            is_correct = False
        elif is_correct and self._deception.check_hesitation_decay(element_id, response_ms):
            decayed = True
            is_correct = False

        if element.is_trap:
            feedback = Feedback.TRAP
            reason = "false_affordance"
            insight = self._rng.choice(_TRAP_INSIGHTS)
        elif is_correct:
            feedback = Feedback.VALID
            if self._rng.random() < 0.1 and deliberate:
                insight = _PATIENCE_INSIGHT
        else:
            feedback = Feedback.WRONG
            reason = "hesitation_decay" if decayed else "decoy_selected"

        element.was_selected_before = True
        st.actions.append(
            PlayerAction(
                element_id=element_id,
                timestamp_ms=float(timestamp_ms),
                was_correct=is_correct,
                response_time_ms=response_ms,
                was_impulsive=impulsive,
                was_deliberate=deliberate,
                feedback=feedback,
            )
        )
        history = dict(self._selection_history)
        history[st.round] = tuple(a.element_id for a in st.actions)
        self._selection_history = {r: ids for r, ids in history.items() if r > st.round - self._cfg.history_rounds}

        modifier = None
        if is_correct:
            modifier = st.reward_scale
            if deliberate:
                modifier *= 1.5
            if impulsive:
                modifier *= 0.8
        return ActionResult(
            success=is_correct,
            feedback=feedback,
            reason=reason,
            score_modifier=modifier,
            insight=insight,
            should_mutate=evaluation.should_mutate,
            decayed=decayed,
            response_time_ms=response_ms,
            was_impulsive=impulsive,
            was_deliberate=deliberate,
            environment_response=(
                EnvironmentResponse.STABILIZE if is_correct else EnvironmentResponse.CONTRACT
            ),
        )

    def close_round(self) -> None:
        if self._state is not None:
            self._state.phase = RoundPhase.CLOSED

    def reset(self) -> None:
        """Drop the current round and all element history."""

        self._state = None
        self._previous = ()
        self._two_ago = ()
        self._selection_history = {}
        self._rule_difficulty = 0.0
