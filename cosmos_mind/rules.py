"""Hidden rules: the unannounced win conditions of a round.

Rules are a closed catalog of tagged records (``HIDDEN_RULES``). Evaluation
and generation support both go through one dispatcher keyed on
``HiddenRule.kind``; nothing in the catalog holds behaviour of its own.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType

from .cognitive_core import CognitiveDomain, SeededRng
from .elements import (
    MAX_SIZE,
    GameElement,
    PlayArea,
    Point,
    ShapeType,
    find_open_position,
)

logger = logging.getLogger("cosmos_mind.rules")


class RuleCategory(StrEnum):
    STATIC = "static"
    TEMPORAL = "temporal"
    RELATIONAL = "relational"
    INVERSE = "inverse"
    CONTEXTUAL = "contextual"


class RuleKind(StrEnum):
    NEVER_MOVED = "never_moved"
    MOST_MOVED = "most_moved"
    SYMMETRY_BREAKER = "symmetry_breaker"
    SYMMETRY_KEEPER = "symmetry_keeper"
    EDGE_DWELLER = "edge_dweller"
    CENTER_DWELLER = "center_dweller"
    IRRELEVANT_LAST_ROUND = "irrelevant_last_round"
    RELEVANT_LAST_ROUND = "relevant_last_round"
    FIRST_APPEARED = "first_appeared"
    NEWEST_ARRIVAL = "newest_arrival"
    MINORITY_SHAPE = "minority_shape"
    MAJORITY_SHAPE = "majority_shape"
    ISOLATED_ONE = "isolated_one"
    NOT_BRIGHTEST = "not_brightest"
    NOT_CENTER = "not_center"
    NOT_OBVIOUS = "not_obvious"
    NEVER_SELECTED = "never_selected"
    HESITATION_TARGET = "hesitation_target"


class EnvironmentResponse(StrEnum):
    STABILIZE = "stabilize"
    CONTRACT = "contract"
    NEUTRAL = "neutral"


@dataclass(frozen=True, slots=True)
class HiddenRule:
    kind: RuleKind
    name: str
    description: str  # debugging only, never shown to the player
    complexity: int
    category: RuleCategory
    domain: CognitiveDomain
    mutates_to: tuple[RuleKind, ...] = ()
    can_promote: bool = False  # generator can always produce a satisfying object

    @property
    def rule_id(self) -> str:
        return self.kind.value


HIDDEN_RULES: tuple[HiddenRule, ...] = (
    HiddenRule(
        RuleKind.NEVER_MOVED, "The Still Ones", "Only shapes that never moved are valid",
        2, RuleCategory.STATIC, CognitiveDomain.PERCEPTION, (RuleKind.MOST_MOVED,),
    ),
    HiddenRule(
        RuleKind.MOST_MOVED, "The Restless", "Only shapes that moved the most are valid",
        3, RuleCategory.STATIC, CognitiveDomain.PERCEPTION, (RuleKind.NEVER_MOVED,),
    ),
    HiddenRule(
        RuleKind.SYMMETRY_BREAKER, "The Anomaly", "Tap the object that violates symmetry",
        4, RuleCategory.STATIC, CognitiveDomain.PERCEPTION, (RuleKind.SYMMETRY_KEEPER,), True,
    ),
    HiddenRule(
        RuleKind.SYMMETRY_KEEPER, "The Balanced", "Only symmetric objects are valid",
        3, RuleCategory.STATIC, CognitiveDomain.PERCEPTION, (RuleKind.SYMMETRY_BREAKER,), True,
    ),
    HiddenRule(
        RuleKind.EDGE_DWELLER, "The Peripheral", "Only objects far from center are valid",
        2, RuleCategory.STATIC, CognitiveDomain.SPATIAL, (RuleKind.CENTER_DWELLER,), True,
    ),
    HiddenRule(
        RuleKind.CENTER_DWELLER, "The Core", "Only objects near center are valid",
        2, RuleCategory.STATIC, CognitiveDomain.SPATIAL, (RuleKind.EDGE_DWELLER,), True,
    ),
    HiddenRule(
        RuleKind.IRRELEVANT_LAST_ROUND, "The Forgotten", "The correct object was irrelevant last round",
        5, RuleCategory.TEMPORAL, CognitiveDomain.TEMPORAL, (RuleKind.RELEVANT_LAST_ROUND,),
    ),
    HiddenRule(
        RuleKind.RELEVANT_LAST_ROUND, "The Persistent", "The correct object was relevant last round",
        4, RuleCategory.TEMPORAL, CognitiveDomain.TEMPORAL, (RuleKind.IRRELEVANT_LAST_ROUND,),
    ),
    HiddenRule(
        RuleKind.FIRST_APPEARED, "The Elder", "Only objects from round 1 are valid",
        4, RuleCategory.TEMPORAL, CognitiveDomain.TEMPORAL,
    ),
    HiddenRule(
        RuleKind.NEWEST_ARRIVAL, "The Newcomer", "Only objects that appeared this round are valid",
        3, RuleCategory.TEMPORAL, CognitiveDomain.TEMPORAL, (RuleKind.FIRST_APPEARED,), True,
    ),
    HiddenRule(
        RuleKind.MINORITY_SHAPE, "The Rare", "Only the least common shape type is valid",
        4, RuleCategory.RELATIONAL, CognitiveDomain.LOGIC, (RuleKind.MAJORITY_SHAPE,),
    ),
    HiddenRule(
        RuleKind.MAJORITY_SHAPE, "The Common", "Only the most common shape type is valid",
        3, RuleCategory.RELATIONAL, CognitiveDomain.LOGIC, (RuleKind.MINORITY_SHAPE,),
    ),
    HiddenRule(
        RuleKind.ISOLATED_ONE, "The Solitary", "Only the most isolated object is valid",
        5, RuleCategory.RELATIONAL, CognitiveDomain.SPATIAL,
    ),
    HiddenRule(
        RuleKind.NOT_BRIGHTEST, "The Dim Truth", "The brightest object is never correct",
        3, RuleCategory.INVERSE, CognitiveDomain.PERCEPTION, (), True,
    ),
    HiddenRule(
        RuleKind.NOT_CENTER, "The Peripheral Truth", "Center objects are never correct",
        3, RuleCategory.INVERSE, CognitiveDomain.SPATIAL, (), True,
    ),
    HiddenRule(
        RuleKind.NOT_OBVIOUS, "The Hidden", "The most attention-grabbing object is wrong",
        6, RuleCategory.INVERSE, CognitiveDomain.META,
    ),
    HiddenRule(
        RuleKind.NEVER_SELECTED, "The Untouched", "Only objects never selected before are valid",
        4, RuleCategory.CONTEXTUAL, CognitiveDomain.META, (), True,
    ),
    HiddenRule(
        RuleKind.HESITATION_TARGET, "The Considered", "The object you looked at longest is correct",
        7, RuleCategory.CONTEXTUAL, CognitiveDomain.META,
    ),
)

RULES_BY_KIND: Mapping[RuleKind, HiddenRule] = MappingProxyType({r.kind: r for r in HIDDEN_RULES})

# Element attributes each rule reads. Trap embellishment must leave these alone
# so that planting a trap never changes which objects satisfy the rule.
RULE_ATTRIBUTES: Mapping[RuleKind, frozenset[str]] = MappingProxyType(
    {
        RuleKind.NEVER_MOVED: frozenset({"history"}),
        RuleKind.MOST_MOVED: frozenset({"history"}),
        RuleKind.SYMMETRY_BREAKER: frozenset({"is_symmetric"}),
        RuleKind.SYMMETRY_KEEPER: frozenset({"is_symmetric"}),
        RuleKind.EDGE_DWELLER: frozenset({"position"}),
        RuleKind.CENTER_DWELLER: frozenset({"position"}),
        RuleKind.IRRELEVANT_LAST_ROUND: frozenset({"history"}),
        RuleKind.RELEVANT_LAST_ROUND: frozenset({"history"}),
        RuleKind.FIRST_APPEARED: frozenset({"history"}),
        RuleKind.NEWEST_ARRIVAL: frozenset({"history"}),
        RuleKind.MINORITY_SHAPE: frozenset({"shape"}),
        RuleKind.MAJORITY_SHAPE: frozenset({"shape"}),
        RuleKind.ISOLATED_ONE: frozenset({"position"}),
        RuleKind.NOT_BRIGHTEST: frozenset({"brightness"}),
        RuleKind.NOT_CENTER: frozenset({"position"}),
        RuleKind.NOT_OBVIOUS: frozenset({"brightness", "size", "position"}),
        RuleKind.NEVER_SELECTED: frozenset({"history"}),
        RuleKind.HESITATION_TARGET: frozenset({"gaze"}),
    }
)


@dataclass(frozen=True, slots=True)
class RuleContext:
    """Read-only scene facts a rule is evaluated against."""

    elements: tuple[GameElement, ...]
    previous_round: tuple[GameElement, ...]
    two_rounds_ago: tuple[GameElement, ...]
    current_round: int
    selections: tuple[str, ...]
    selection_history: Mapping[int, tuple[str, ...]]
    symmetry_axis: Point
    center: Point
    dominant_color: str
    dominant_shape: ShapeType | None


def build_rule_context(
    elements: Iterable[GameElement],
    *,
    current_round: int,
    area: PlayArea,
    previous_round: Iterable[GameElement] = (),
    two_rounds_ago: Iterable[GameElement] = (),
    selections: Iterable[str] = (),
    selection_history: Mapping[int, tuple[str, ...]] | None = None,
) -> RuleContext:
    els = tuple(elements)
    colors = Counter(e.color for e in els)
    shapes = Counter(e.shape for e in els)
    history = {} if selection_history is None else dict(selection_history)
    return RuleContext(
        elements=els,
        previous_round=tuple(previous_round),
        two_rounds_ago=tuple(two_rounds_ago),
        current_round=int(current_round),
        selections=tuple(selections),
        selection_history=MappingProxyType(history),
        symmetry_axis=area.center,
        center=area.center,
        dominant_color=colors.most_common(1)[0][0] if colors else "",
        dominant_shape=shapes.most_common(1)[0][0] if shapes else None,
    )


def evaluate_rule(rule: HiddenRule, element: GameElement, ctx: RuleContext) -> bool:
    """Apply ``rule`` to ``element``. Pure: reads ``ctx``, never writes it."""

    kind = rule.kind
    if kind is RuleKind.NEVER_MOVED:
        return not element.has_moved and element.move_count == 0
    if kind is RuleKind.MOST_MOVED:
        max_moves = max((e.move_count for e in ctx.elements), default=0)
        return max_moves > 0 and element.move_count == max_moves
    if kind is RuleKind.SYMMETRY_BREAKER:
        return not element.is_symmetric
    if kind is RuleKind.SYMMETRY_KEEPER:
        return element.is_symmetric
    if kind is RuleKind.EDGE_DWELLER:
        return element.distance_from_center > 150.0
    if kind is RuleKind.CENTER_DWELLER:
        return element.distance_from_center < 100.0
    if kind is RuleKind.IRRELEVANT_LAST_ROUND:
        return not element.was_relevant_last_round
    if kind is RuleKind.RELEVANT_LAST_ROUND:
        return element.was_relevant_last_round
    if kind is RuleKind.FIRST_APPEARED:
        return element.appeared_round == 1
    if kind is RuleKind.NEWEST_ARRIVAL:
        return element.appeared_round == ctx.current_round
    if kind is RuleKind.MINORITY_SHAPE or kind is RuleKind.MAJORITY_SHAPE:
        counts = Counter(e.shape for e in ctx.elements)
        if not counts:
            return False
        target = min(counts.values()) if kind is RuleKind.MINORITY_SHAPE else max(counts.values())
        return counts.get(element.shape, 0) == target
    if kind is RuleKind.ISOLATED_ONE:
        return _most_isolated_id(ctx.elements) == element.element_id
    if kind is RuleKind.NOT_BRIGHTEST:
        max_brightness = max((e.brightness for e in ctx.elements), default=0.0)
        return element.brightness < max_brightness * 0.8
    if kind is RuleKind.NOT_CENTER:
        return element.distance_from_center > 80.0
    if kind is RuleKind.NOT_OBVIOUS:
        return _most_obvious_id(ctx.elements) != element.element_id
    if kind is RuleKind.NEVER_SELECTED:
        return not element.was_selected_before
    if kind is RuleKind.HESITATION_TARGET:
        max_gaze = max((e.gaze_time_ms for e in ctx.elements), default=0.0)
        return max_gaze > 500.0 and element.gaze_time_ms == max_gaze
    raise ValueError(f"unknown rule kind: {kind!r}")


def _most_isolated_id(elements: tuple[GameElement, ...]) -> str | None:
    if len(elements) < 2:
        return elements[0].element_id if elements else None
    best_id: str | None = None
    best_avg = -1.0
    for target in elements:
        dists = [target.position.distance_to(o.position) for o in elements if o.element_id != target.element_id]
        avg = sum(dists) / len(dists)
        if avg > best_avg:
            best_avg = avg
            best_id = target.element_id
    return best_id


def obviousness(element: GameElement) -> float:
    return (
        element.brightness * 0.4
        + (element.size / 100.0) * 0.3
        + (1.0 - element.distance_from_center / 200.0) * 0.3
    )


def _most_obvious_id(elements: tuple[GameElement, ...]) -> str | None:
    best_id: str | None = None
    best = float("-inf")
    for e in elements:
        score = obviousness(e)
        if score > best:
            best = score
            best_id = e.element_id
    return best_id


@dataclass(slots=True)
class RuleShaping:
    """Scratch state the generator hands to :func:`conform` for one round."""

    rng: SeededRng
    area: PlayArea
    elements: list[GameElement]
    current_round: int
    focus_shape: ShapeType
    min_distance: float = 80.0
    attempts: int = 50
    respawned: set[str] = field(default_factory=set)

    def others(self, element: GameElement) -> list[Point]:
        return [e.position for e in self.elements if e.element_id != element.element_id]


def conform(rule: HiddenRule, element: GameElement, *, satisfy: bool, shaping: RuleShaping) -> bool:
    """Edit ``element`` so that it satisfies (or violates) ``rule``.

    Returns False when the element cannot be brought into the requested state
    without rewriting history it already has. For set-relative rules this is a
    best effort; the caller re-evaluates the finished set.
    """

    kind = rule.kind
    if kind is RuleKind.NEVER_MOVED:
        if satisfy:
            if not element.has_moved and element.move_count == 0:
                return True
            _respawn(element, shaping)
            return True
        if element.has_moved or element.move_count > 0:
            return True
        return _relocate(element, shaping)
    if kind is RuleKind.MOST_MOVED:
        if satisfy:
            return _relocate(element, shaping)
        return not element.has_moved
    if kind is RuleKind.SYMMETRY_BREAKER:
        element.is_symmetric = not satisfy
        return True
    if kind is RuleKind.SYMMETRY_KEEPER:
        element.is_symmetric = satisfy
        return True
    if kind is RuleKind.EDGE_DWELLER:
        return _place_in_band(element, shaping, outside=150.0 if satisfy else None, inside=None if satisfy else 150.0)
    if kind is RuleKind.CENTER_DWELLER:
        return _place_in_band(element, shaping, outside=None if satisfy else 100.0, inside=100.0 if satisfy else None)
    if kind is RuleKind.NOT_CENTER:
        return _place_in_band(element, shaping, outside=80.0 if satisfy else None, inside=None if satisfy else 80.0)
    if kind is RuleKind.IRRELEVANT_LAST_ROUND:
        if satisfy and element.was_relevant_last_round:
            _respawn(element, shaping)
        return satisfy or element.was_relevant_last_round
    if kind is RuleKind.RELEVANT_LAST_ROUND:
        if not satisfy and element.was_relevant_last_round:
            _respawn(element, shaping)
        return element.was_relevant_last_round == satisfy
    if kind is RuleKind.FIRST_APPEARED:
        if not satisfy and element.appeared_round == 1 and shaping.current_round != 1:
            _respawn(element, shaping)
        return (element.appeared_round == 1) == satisfy
    if kind is RuleKind.NEWEST_ARRIVAL:
        if satisfy and element.appeared_round != shaping.current_round:
            _respawn(element, shaping)
        return (element.appeared_round == shaping.current_round) == satisfy
    if kind is RuleKind.MINORITY_SHAPE or kind is RuleKind.MAJORITY_SHAPE:
        if satisfy:
            element.shape = shaping.focus_shape
        else:
            element.shape = _off_focus_shape(element, shaping, concentrate=kind is RuleKind.MINORITY_SHAPE)
        return True
    if kind is RuleKind.NOT_BRIGHTEST:
        element.brightness = shaping.rng.uniform(0.4, 0.6) if satisfy else shaping.rng.uniform(0.95, 1.0)
        element.opacity = element.brightness
        return True
    if kind is RuleKind.NOT_OBVIOUS:
        if satisfy:
            return True
        element.brightness = 1.0
        element.opacity = 1.0
        element.size = MAX_SIZE
        return _place_in_band(element, shaping, outside=None, inside=60.0)
    if kind is RuleKind.NEVER_SELECTED:
        if satisfy and element.was_selected_before:
            _respawn(element, shaping)
        return element.was_selected_before != satisfy
    # Isolation and gaze are properties of the whole scene or of the player.
    return False


def _relocate(element: GameElement, shaping: RuleShaping, *, min_radius: float | None = None, max_radius: float | None = None) -> bool:
    p = find_open_position(
        shaping.rng,
        shaping.area,
        shaping.others(element),
        min_distance=shaping.min_distance,
        attempts=shaping.attempts,
        min_radius=min_radius,
        max_radius=max_radius,
    )
    element.move_to(p, center=shaping.area.center)
    if element.appeared_round >= shaping.current_round:
        # A new object has no earlier position to move from.
        return False
    if not element.has_moved:
        element.has_moved = True
        element.move_count += 1
    return True


def _place_in_band(element: GameElement, shaping: RuleShaping, *, outside: float | None, inside: float | None) -> bool:
    d = element.distance_from_center
    if (outside is None or d > outside) and (inside is None or d < inside):
        return True
    min_r = None if outside is None else outside + 10.0
    max_r = None if inside is None else max(0.0, inside - 10.0)
    _relocate(element, shaping, min_radius=min_r, max_radius=max_r)
    d = element.distance_from_center
    return (outside is None or d > outside) and (inside is None or d < inside)


def _respawn(element: GameElement, shaping: RuleShaping) -> None:
    """Replace the object in this slot with a brand-new one."""

    element.appeared_round = shaping.current_round
    element.has_moved = False
    element.move_count = 0
    element.was_selected_before = False
    element.was_relevant_last_round = False
    element.gaze_time_ms = 0.0
    p = find_open_position(
        shaping.rng,
        shaping.area,
        shaping.others(element),
        min_distance=shaping.min_distance,
        attempts=shaping.attempts,
    )
    element.move_to(p, center=shaping.area.center)
    shaping.respawned.add(element.element_id)


def _off_focus_shape(element: GameElement, shaping: RuleShaping, *, concentrate: bool) -> ShapeType:
    counts = Counter(e.shape for e in shaping.elements if e.element_id != element.element_id)
    options = [s for s in ShapeType if s is not shaping.focus_shape]
    shaping.rng.shuffle(options)
    if concentrate:
        return max(options, key=lambda s: counts.get(s, 0))
    return min(options, key=lambda s: counts.get(s, 0))


@dataclass(frozen=True, slots=True)
class RuleEvaluation:
    is_correct: bool
    should_mutate: bool
    environment_response: EnvironmentResponse


class RuleEngine:
    """Owns the active hidden rule and its silent mutation schedule."""

    def __init__(self, *, rng: SeededRng, catalog: tuple[HiddenRule, ...] = HIDDEN_RULES) -> None:
        if not catalog:
            raise ValueError("rule catalog must not be empty")
        self._rng = rng
        self._catalog = catalog
        self._active: HiddenRule | None = None
        self._history: list[str] = []
        self._rounds_since_change = 0
        self._threshold = self._roll_threshold()

    @property
    def active_rule(self) -> HiddenRule | None:
        return self._active

    @property
    def rounds_since_change(self) -> int:
        return self._rounds_since_change

    @property
    def mutation_threshold(self) -> int:
        return self._threshold

    def rule_history(self) -> list[str]:
        return list(self._history)

    def initialize_rule(
        self,
        complexity: float,
        *,
        categories: Iterable[RuleCategory] | None = None,
        domain: CognitiveDomain | None = None,
    ) -> HiddenRule:
        pool = [r for r in self._catalog if r.complexity <= complexity + 2] or list(self._catalog)
        if categories is not None:
            allowed = set(categories)
            pool = [r for r in pool if r.category in allowed] or pool
        if domain is not None:
            pool = [r for r in pool if r.domain is domain] or pool
        return self.activate(self._rng.choice(pool))

    def activate(self, rule: HiddenRule) -> HiddenRule:
        """Make ``rule`` active and start a fresh mutation window."""

        self._active = rule
        self._history.append(rule.rule_id)
        self._rounds_since_change = 0
        self._threshold = self._roll_threshold()
        logger.debug("rule active: %s", rule.rule_id)
        return rule

    def evaluate(self, element: GameElement, ctx: RuleContext) -> bool:
        """Predicate only; does not advance the mutation window."""

        if self._active is None:
            return False
        return evaluate_rule(self._active, element, ctx)

    def evaluate_selection(self, element: GameElement, ctx: RuleContext) -> RuleEvaluation:
        if self._active is None:
            return RuleEvaluation(False, False, EnvironmentResponse.NEUTRAL)
        is_correct = evaluate_rule(self._active, element, ctx)
        self._rounds_since_change += 1
        should_mutate = self._rounds_since_change >= self._threshold
        return RuleEvaluation(
            is_correct=is_correct,
            should_mutate=should_mutate,
            environment_response=EnvironmentResponse.STABILIZE if is_correct else EnvironmentResponse.CONTRACT,
        )

    def mutate_rule(self) -> HiddenRule | None:
        current = self._active
        if current is None:
            return None

        candidates: list[HiddenRule]
        if current.mutates_to:
            candidates = [RULES_BY_KIND[k] for k in current.mutates_to if k in RULES_BY_KIND]
        else:
            candidates = [
                r
                for r in self._catalog
                if abs(r.complexity - current.complexity) <= 1 and r.kind is not current.kind
            ]
        if not candidates:
            # Nothing to become; start a new window so the flag is not raised again at once.
            self._rounds_since_change = 0
            self._threshold = self._roll_threshold()
            logger.debug("rule %s has no mutation target", current.rule_id)
            return None

        rule = self.activate(self._rng.choice(candidates))
        logger.debug("rule mutated silently: %s -> %s", current.rule_id, rule.rule_id)
        return rule

    def fallback_rule(self, complexity: float, *, exclude: RuleKind | None = None) -> HiddenRule:
        """A rule the generator can always satisfy, near the requested complexity."""

        promotable = [r for r in self._catalog if r.can_promote and r.kind is not exclude]
        if not promotable:
            promotable = [r for r in HIDDEN_RULES if r.can_promote]
        near = [r for r in promotable if r.complexity <= complexity + 2] or promotable
        return self._rng.choice(near)

    def reset(self) -> None:
        self._active = None
        self._history.clear()
        self._rounds_since_change = 0
        self._threshold = self._roll_threshold()

    def _roll_threshold(self) -> int:
        return 4 + self._rng.randint(0, 2)
