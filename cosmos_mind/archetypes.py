from __future__ import annotations

import copy
import logging
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType

from .clock import Clock
from .cognitive_core import CognitiveDomain, SeededRng

logger = logging.getLogger("cosmos_mind.archetypes")

MAX_BREAKTHROUGHS = 50
START_SCORE = 25.0
SHIFT_LEAD = 10.0
SECONDARY_LEAD = 5.0


class ArchetypeId(StrEnum):
    OBSERVER = "observer"
    STRATEGIST = "strategist"
    REACTOR = "reactor"
    ARCHITECT = "architect"


class BreakthroughKind(StrEnum):
    ARCHETYPE_SHIFT = "archetype_shift"
    STAGE_ADVANCE = "stage_advance"


@dataclass(frozen=True, slots=True)
class Archetype:
    archetype_id: ArchetypeId
    name: str
    title: str
    essence: str
    evolution_path: tuple[str, ...]  # one title per evolution stage
    preferred_domains: tuple[CognitiveDomain, ...]
    insights: tuple[str, ...]


ARCHETYPES: Mapping[ArchetypeId, Archetype] = MappingProxyType(
    {
        ArchetypeId.OBSERVER: Archetype(
            ArchetypeId.OBSERVER,
            "Observer",
            "The Watcher in Stillness",
            "Sees what others miss. Finds patterns in chaos. Patience as power.",
            (
                "Awakening Observer",
                "Perceptive Mind",
                "Pattern Seer",
                "Depth Reader",
                "The All-Seeing",
                "Transcendent Observer",
            ),
            (CognitiveDomain.PERCEPTION, CognitiveDomain.META),
            (
                "Your patience reveals what haste conceals.",
                "The stillness before action defines the action.",
                "You see the trap before the trap sees you.",
            ),
        ),
        ArchetypeId.STRATEGIST: Archetype(
            ArchetypeId.STRATEGIST,
            "Strategist",
            "The Architect of Paths",
            "Plans before moving. Every action serves the whole. Thinking in systems.",
            (
                "Awakening Strategist",
                "Thoughtful Mind",
                "System Thinker",
                "Master Planner",
                "The Foreseeing",
                "Transcendent Strategist",
            ),
            (CognitiveDomain.LOGIC, CognitiveDomain.SPATIAL),
            (
                "Every move serves the whole pattern.",
                "You think three steps ahead. Consider four.",
                "The rule behind the rule - you sense it.",
            ),
        ),
        ArchetypeId.REACTOR: Archetype(
            ArchetypeId.REACTOR,
            "Reactor",
            "The Lightning Mind",
            "Acts on instinct refined by experience. Speed without sacrifice. Flow state native.",
            (
                "Awakening Reactor",
                "Swift Mind",
                "Instinct Rider",
                "Flow Walker",
                "The Instantaneous",
                "Transcendent Reactor",
            ),
            (CognitiveDomain.TEMPORAL, CognitiveDomain.PERCEPTION),
            (
                "Trust your trained instinct.",
                "Speed and accuracy - your equilibrium.",
                "The moment arrives. You are ready.",
            ),
        ),
        ArchetypeId.ARCHITECT: Archetype(
            ArchetypeId.ARCHITECT,
            "Architect",
            "The Builder of Understanding",
            "Constructs mental models. Understands the why behind the what. Creates from chaos.",
            (
                "Awakening Architect",
                "Foundation Mind",
                "Structure Builder",
                "Framework Master",
                "The Reality Shaper",
                "Transcendent Architect",
            ),
            (CognitiveDomain.LOGIC, CognitiveDomain.META),
            (
                "You build understanding from chaos.",
                "The structure of the problem reveals the solution.",
                "Every failure is a foundation stone.",
            ),
        ),
    }
)


@dataclass(frozen=True, slots=True)
class EvolutionStage:
    level: int
    name: str
    threshold: float
    description: str


EVOLUTION_STAGES: tuple[EvolutionStage, ...] = (
    EvolutionStage(0, "Awakening", 0, "The void stirs. Awareness begins."),
    EvolutionStage(1, "Recognition", 500, "Patterns emerge from noise. The self observes the self."),
    EvolutionStage(2, "Integration", 2000, "Separate skills weave together. The mind becomes more than parts."),
    EvolutionStage(3, "Mastery", 5000, "Understanding deepens beyond technique. Intuition and analysis merge."),
    EvolutionStage(4, "Transcendence", 12000, "The game becomes the teacher. Every challenge, a mirror."),
    EvolutionStage(5, "Infinity", 30000, "Beyond measurement. The observer and observed unite."),
)


@dataclass(frozen=True, slots=True)
class Breakthrough:
    kind: BreakthroughKind
    at_s: float
    title: str
    description: str
    archetype_id: ArchetypeId | None = None


@dataclass(frozen=True, slots=True)
class ArchetypeAction:
    response_time_ms: float
    was_correct: bool
    was_deliberate: bool = False
    was_impulsive: bool = False
    trap_avoided: bool = False
    trap_fallen: bool = False
    rule_adapted: bool = False
    pattern_found: bool = False


@dataclass(frozen=True, slots=True)
class ArchetypeShift:
    from_id: ArchetypeId
    to_id: ArchetypeId


@dataclass(frozen=True, slots=True)
class StageAdvance:
    from_level: int
    to_level: int


@dataclass(frozen=True, slots=True)
class ArchetypeUpdate:
    archetype_shift: ArchetypeShift | None = None
    stage_advance: StageAdvance | None = None


@dataclass(slots=True)
class PlayerEvolution:
    dominant: ArchetypeId = ArchetypeId.OBSERVER
    secondary: ArchetypeId | None = None
    scores: dict[ArchetypeId, float] = field(default_factory=lambda: {a: START_SCORE for a in ArchetypeId})
    stage: int = 0
    stage_progress: int = 0  # percent toward the next stage
    total_insights: int = 0
    breakthroughs: deque[Breakthrough] = field(default_factory=lambda: deque(maxlen=MAX_BREAKTHROUGHS))

    @property
    def total_score(self) -> float:
        return sum(self.scores.values())


def action_deltas(action: ArchetypeAction) -> dict[ArchetypeId, float]:
    deltas: dict[ArchetypeId, float] = {}

    def bump(a: ArchetypeId, d: float) -> None:
        deltas[a] = deltas.get(a, 0.0) + d

    ok = action.was_correct
    if action.trap_avoided:
        bump(ArchetypeId.OBSERVER, 3)
    if action.was_deliberate and ok:
        bump(ArchetypeId.OBSERVER, 1)
    if action.pattern_found:
        bump(ArchetypeId.OBSERVER, 2)

    if action.rule_adapted:
        bump(ArchetypeId.STRATEGIST, 3)
    if action.was_deliberate and ok and action.response_time_ms > 1500:
        bump(ArchetypeId.STRATEGIST, 1)

    if action.was_impulsive and ok:
        bump(ArchetypeId.REACTOR, 2)
    if action.response_time_ms < 800 and ok:
        bump(ArchetypeId.REACTOR, 2)
    if action.trap_fallen:
        bump(ArchetypeId.REACTOR, -1)

    if action.rule_adapted and action.pattern_found:
        bump(ArchetypeId.ARCHITECT, 3)
    if ok and not action.was_impulsive:
        bump(ArchetypeId.ARCHITECT, 0.5)
    return deltas


class ArchetypeEngine:
    """Slow-moving identity layer fed by every resolved selection."""

    def __init__(self, *, clock: Clock, rng: SeededRng) -> None:
        self._clock = clock
        self._rng = rng
        self._evo = PlayerEvolution()

    def evolution(self) -> PlayerEvolution:
        return copy.deepcopy(self._evo)

    @property
    def dominant(self) -> Archetype:
        return ARCHETYPES[self._evo.dominant]

    @property
    def secondary(self) -> Archetype | None:
        return None if self._evo.secondary is None else ARCHETYPES[self._evo.secondary]

    @property
    def stage(self) -> EvolutionStage:
        return EVOLUTION_STAGES[self._evo.stage]

    @property
    def current_title(self) -> str:
        return self.dominant.evolution_path[self._evo.stage]

    def process_action(self, action: ArchetypeAction) -> ArchetypeUpdate:
        for archetype, delta in action_deltas(action).items():
            self._evo.scores[archetype] = max(0.0, self._evo.scores[archetype] + delta)
        return self._evaluate()

    def _evaluate(self) -> ArchetypeUpdate:
        evo = self._evo
        # sorted() is stable, so ties keep declaration order.
        ranked = sorted(ArchetypeId, key=lambda a: evo.scores[a], reverse=True)
        first, second, third = ranked[0], ranked[1], ranked[2]

        shift: ArchetypeShift | None = None
        if first is not evo.dominant and evo.scores[first] - evo.scores[second] > SHIFT_LEAD:
            shift = ArchetypeShift(evo.dominant, first)
            evo.dominant = first
            arch = ARCHETYPES[first]
            self._log_breakthrough(
                BreakthroughKind.ARCHETYPE_SHIFT, f"Emergence of the {arch.name}", arch.essence, first
            )
            logger.info("dominant archetype %s -> %s", shift.from_id, shift.to_id)

        if second is not evo.secondary and evo.scores[second] - evo.scores[third] > SECONDARY_LEAD:
            evo.secondary = second

        advance: StageAdvance | None = None
        total = evo.total_score
        if evo.stage + 1 < len(EVOLUTION_STAGES):
            nxt = EVOLUTION_STAGES[evo.stage + 1]
            if total >= nxt.threshold:
                advance = StageAdvance(evo.stage, nxt.level)
                evo.stage = nxt.level
                evo.stage_progress = 0
                self._log_breakthrough(BreakthroughKind.STAGE_ADVANCE, f"{nxt.name} Achieved", nxt.description)
            else:
                cur = EVOLUTION_STAGES[evo.stage]
                evo.stage_progress = int((total - cur.threshold) / (nxt.threshold - cur.threshold) * 100)
        return ArchetypeUpdate(shift, advance)

    def _log_breakthrough(
        self, kind: BreakthroughKind, title: str, description: str, archetype_id: ArchetypeId | None = None
    ) -> None:
        self._evo.breakthroughs.append(Breakthrough(kind, self._clock.now(), title, description, archetype_id))

    def generate_insight(self) -> str:
        dominant = self.dominant
        secondary = self.secondary
        pool = list(dominant.insights)
        if secondary is not None:
            pool.append(f"The {dominant.name} and {secondary.name} within you collaborate.")
            pool.append(f"Your {dominant.name} nature is tempered by {secondary.name} wisdom.")
        pool.append(self.stage.description)
        self._evo.total_insights += 1
        return self._rng.choice(pool)

    def archetype_balance(self) -> dict[ArchetypeId, float]:
        total = self._evo.total_score
        if total <= 0:
            return {a: 0.25 for a in ArchetypeId}
        return {a: s / total for a, s in self._evo.scores.items()}

    def recent_breakthroughs(self, count: int = 5) -> list[Breakthrough]:
        if count <= 0:
            return []
        return list(self._evo.breakthroughs)[-count:][::-1]

    def reset(self) -> None:
        self._evo = PlayerEvolution()
