from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import StrEnum

from .cognitive_core import SeededRng
from .elements import GameElement, PlayArea, ShapeType

logger = logging.getLogger("cosmos_mind.deception")

HESITATION_DECAY_MS = 2000.0


@dataclass(frozen=True, slots=True)
class AffordanceProfile:
    """How strongly an object invites selection, regardless of correctness."""

    visual_attraction: float
    position_bias: float
    size_dominance: float
    color_salience: float
    symmetry_appeal: float
    overall: float

    @property
    def decays_on_hesitation(self) -> bool:
        return self.overall > 0.7

    @property
    def reacts_to_gaze(self) -> bool:
        return self.overall > 0.6

    @property
    def pulses_for_attention(self) -> bool:
        return self.overall > 0.8


def calculate_affordance(element: GameElement, elements: Sequence[GameElement], area: PlayArea) -> AffordanceProfile:
    visual = element.brightness
    position = 1.0 - element.distance_from_center / area.max_distance
    max_size = max((e.size for e in elements), default=element.size) or 1.0
    size = element.size / max_size
    color = element.brightness * 0.7 + 0.3
    symmetry = 0.8 if element.is_symmetric else 0.4
    overall = visual * 0.25 + position * 0.25 + size * 0.2 + color * 0.15 + symmetry * 0.15
    return AffordanceProfile(
        visual_attraction=visual,
        position_bias=position,
        size_dominance=size,
        color_salience=color,
        symmetry_appeal=symmetry,
        overall=overall,
    )


class DeceptionStyle(StrEnum):
    BRIGHTEST_LIE = "brightest_lie"
    CENTER_TRAP = "center_trap"
    SYMMETRY_DECEPTION = "symmetry_deception"
    SIZE_INVERSION = "size_inversion"
    GAZE_PUNISHMENT = "gaze_punishment"
    HESITATION_DECAY = "hesitation_decay"
    COMFORT_ZONE = "comfort_zone"


@dataclass(frozen=True, slots=True)
class DeceptionStrategy:
    style: DeceptionStyle
    name: str
    description: str
    difficulty: int


DECEPTION_STRATEGIES: tuple[DeceptionStrategy, ...] = (
    DeceptionStrategy(DeceptionStyle.BRIGHTEST_LIE, "The Brightest Lie", "The most prominent object is wrong", 3),
    DeceptionStrategy(DeceptionStyle.CENTER_TRAP, "The Center Trap", "Center objects are wrong", 3),
    DeceptionStrategy(DeceptionStyle.SYMMETRY_DECEPTION, "The Beautiful Lie", "Symmetric objects are wrong", 4),
    DeceptionStrategy(DeceptionStyle.SIZE_INVERSION, "The Small Truth", "The largest objects are traps", 2),
    DeceptionStrategy(DeceptionStyle.GAZE_PUNISHMENT, "The Watched Pot", "Long-watched objects become wrong", 6),
    DeceptionStrategy(DeceptionStyle.HESITATION_DECAY, "The Fading Choice", "Safe choices decay over time", 5),
    DeceptionStrategy(DeceptionStyle.COMFORT_ZONE, "The Comfortable Lie", "Past successful patterns are wrong", 5),
)

DEFAULT_COMFORT_SHAPES: tuple[ShapeType, ...] = (ShapeType.CIRCLE, ShapeType.SQUARE)


def apply_strategy(
    strategy: DeceptionStrategy,
    elements: Sequence[GameElement],
    *,
    comfort_shapes: Iterable[ShapeType] = DEFAULT_COMFORT_SHAPES,
) -> tuple[list[str], list[str]]:
    """Raw (traps, correct) picks of a strategy, before rule reconciliation."""

    if not elements:
        return [], []
    style = strategy.style
    if style is DeceptionStyle.BRIGHTEST_LIE:
        ranked = sorted(elements, key=lambda e: e.brightness, reverse=True)
        return [ranked[0].element_id], [e.element_id for e in ranked[-2:]]
    if style is DeceptionStyle.CENTER_TRAP:
        ranked = sorted(elements, key=lambda e: e.distance_from_center)
        return [e.element_id for e in ranked[:2]], [e.element_id for e in ranked[-2:]]
    if style is DeceptionStyle.SYMMETRY_DECEPTION:
        return (
            [e.element_id for e in elements if e.is_symmetric],
            [e.element_id for e in elements if not e.is_symmetric],
        )
    if style is DeceptionStyle.SIZE_INVERSION:
        ranked = sorted(elements, key=lambda e: e.size, reverse=True)
        return [e.element_id for e in ranked[:2]], [e.element_id for e in ranked[-2:]]
    if style is DeceptionStyle.GAZE_PUNISHMENT:
        ranked = sorted(elements, key=lambda e: e.gaze_time_ms, reverse=True)
        return (
            [e.element_id for e in ranked if e.gaze_time_ms > 800.0],
            [e.element_id for e in ranked if e.gaze_time_ms < 300.0],
        )
    if style is DeceptionStyle.HESITATION_DECAY:
        # Traps appear over time through check_hesitation_decay.
        return [], [e.element_id for e in elements[:3]]
    if style is DeceptionStyle.COMFORT_ZONE:
        comfy = set(comfort_shapes)
        return (
            [e.element_id for e in elements if e.shape in comfy],
            [e.element_id for e in elements if e.shape not in comfy],
        )
    raise ValueError(f"unknown deception style: {style!r}")


@dataclass(frozen=True, slots=True)
class DeceptionOutcome:
    strategy: DeceptionStrategy
    traps: tuple[str, ...]
    correct: tuple[str, ...]


class DeceptionEngine:
    """Plants false affordances around the active rule's answers."""

    def __init__(self, *, rng: SeededRng, area: PlayArea) -> None:
        self._rng = rng
        self._area = area
        self._active: DeceptionStrategy | None = None
        self._profiles: dict[str, AffordanceProfile] = {}
        self._successful_shapes: Counter[ShapeType] = Counter()

    @property
    def active_strategy(self) -> DeceptionStrategy | None:
        return self._active

    def initialize_deception(
        self,
        difficulty: float,
        elements: Sequence[GameElement],
        *,
        rule_correct: Iterable[str] | None = None,
        styles: Iterable[DeceptionStyle] | None = None,
    ) -> DeceptionOutcome:
        """Pick a strategy and split ``elements`` into traps and correct picks.

        ``rule_correct`` defaults to the ids already marked ``is_correct``.
        Returned traps never include a rule-correct id, and returned correct
        ids are always rule-correct.
        """

        pool = [s for s in DECEPTION_STRATEGIES if s.difficulty <= difficulty + 1]
        if styles is not None:
            allowed = set(styles)
            pool = [s for s in pool if s.style in allowed] or pool
        if not pool:
            pool = [min(DECEPTION_STRATEGIES, key=lambda s: s.difficulty)]
        self._active = self._rng.choice(pool)

        self._profiles = {e.element_id: calculate_affordance(e, elements, self._area) for e in elements}

        if rule_correct is None:
            correct_ids = {e.element_id for e in elements if e.is_correct}
        else:
            correct_ids = set(rule_correct)
        raw_traps, raw_correct = apply_strategy(self._active, elements, comfort_shapes=self.comfort_shapes())
        traps = tuple(t for t in raw_traps if t not in correct_ids)
        correct = tuple(c for c in raw_correct if c in correct_ids)
        if len(traps) != len(raw_traps):
            logger.debug("deception %s: dropped %d rule-correct trap(s)", self._active.style, len(raw_traps) - len(traps))
        return DeceptionOutcome(strategy=self._active, traps=traps, correct=correct)

    def affordance_profile(self, element_id: str) -> AffordanceProfile | None:
        return self._profiles.get(element_id)

    def check_hesitation_decay(self, element_id: str, hesitation_ms: float) -> bool:
        profile = self._profiles.get(element_id)
        return profile is not None and profile.decays_on_hesitation and hesitation_ms > HESITATION_DECAY_MS

    def note_successful_shape(self, shape: ShapeType) -> None:
        self._successful_shapes[shape] += 1

    def comfort_shapes(self) -> tuple[ShapeType, ...]:
        top = [s for s, _ in self._successful_shapes.most_common(2)]
        for s in DEFAULT_COMFORT_SHAPES:
            if len(top) >= 2:
                break
            if s not in top:
                top.append(s)
        return tuple(top)

    def reset(self, *, forget_player: bool = False) -> None:
        self._active = None
        self._profiles.clear()
        if forget_player:
            self._successful_shapes.clear()
