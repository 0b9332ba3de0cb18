from __future__ import annotations

import copy
import logging
from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType

from .clock import Clock
from .elements import GameElement, find_element, snapshot_elements

logger = logging.getLogger("cosmos_mind.temporal")

HISTORY_ROUNDS = 10

MEMORY_FADES = "Memory fades..."
DIFFERENT_TRUTH = "The past held a different truth."


class TemporalChallengeType(StrEnum):
    REMEMBER_ORIGINAL = "remember_original"
    TRACK_CHANGES = "track_changes"
    PREDICT_NEXT = "predict_next"
    TIMELINE_MERGE = "timeline_merge"
    DECAY_DETECTION = "decay_detection"


@dataclass(frozen=True, slots=True)
class TemporalState:
    round: int
    elements: tuple[GameElement, ...]
    recorded_at_s: float


@dataclass(frozen=True, slots=True)
class TemporalTemplate:
    description: str
    lookback: int  # reference round = current round - lookback
    compression_level: int
    delayed_penalty: bool = False
    decoy_shift: tuple[float, float] | None = None


TEMPORAL_TEMPLATES: Mapping[TemporalChallengeType, TemporalTemplate] = MappingProxyType(
    {
        TemporalChallengeType.REMEMBER_ORIGINAL: TemporalTemplate("Round one holds the truth", 2, 1),
        TemporalChallengeType.TRACK_CHANGES: TemporalTemplate("What moved? What stayed?", 1, 2),
        TemporalChallengeType.PREDICT_NEXT: TemporalTemplate("The pattern reveals the future", 3, 2),
        TemporalChallengeType.TIMELINE_MERGE: TemporalTemplate(
            "Multiple pasts. One truth.", 3, 4, delayed_penalty=True, decoy_shift=(20.0, -10.0)
        ),
        TemporalChallengeType.DECAY_DETECTION: TemporalTemplate("What was lost?", 2, 3),
    }
)


@dataclass(frozen=True, slots=True)
class TemporalChallenge:
    challenge_type: TemporalChallengeType
    prompt: str
    reference_round: int
    decoy_states: tuple[TemporalState, ...]
    compression_level: int
    delayed_penalty: bool


@dataclass(frozen=True, slots=True)
class TemporalVerdict:
    is_correct: bool
    insight: str | None


class TemporalEngine:
    """Bounded memory of past rounds and the challenge that reads from it."""

    def __init__(self, *, clock: Clock, history: int = HISTORY_ROUNDS) -> None:
        if history <= 0:
            raise ValueError("history must be > 0")
        self._clock = clock
        self._states: deque[TemporalState] = deque(maxlen=history)
        self._active: TemporalChallenge | None = None

    @property
    def active_challenge(self) -> TemporalChallenge | None:
        return self._active

    def states(self) -> list[TemporalState]:
        return list(self._states)

    def record_temporal_state(self, round_no: int, elements: Iterable[GameElement]) -> None:
        # Re-recording a round replaces the earlier snapshot of it.
        kept = [s for s in self._states if s.round != round_no]
        if len(kept) != len(self._states):
            self._states = deque(kept, maxlen=self._states.maxlen)
        self._states.append(
            TemporalState(round=int(round_no), elements=snapshot_elements(list(elements)), recorded_at_s=self._clock.now())
        )

    def reference_state(self, round_no: int) -> TemporalState | None:
        for s in self._states:
            if s.round == round_no:
                return s
        return None

    def reference_round_for(self, challenge_type: TemporalChallengeType, current_round: int) -> int:
        return max(1, int(current_round) - TEMPORAL_TEMPLATES[challenge_type].lookback)

    def initialize_temporal_challenge(
        self,
        challenge_type: TemporalChallengeType,
        elements: Iterable[GameElement],
        *,
        current_round: int,
    ) -> TemporalChallenge:
        tpl = TEMPORAL_TEMPLATES[challenge_type]
        reference_round = self.reference_round_for(challenge_type, current_round)
        decoys: tuple[TemporalState, ...] = ()
        if tpl.decoy_shift is not None:
            dx, dy = tpl.decoy_shift
            shifted = []
            for e in elements:
                c = copy.deepcopy(e)
                c.x += dx
                c.y += dy
                shifted.append(c)
            decoys = (
                TemporalState(round=reference_round, elements=tuple(shifted), recorded_at_s=self._clock.now() - 5.0),
            )
        self._active = TemporalChallenge(
            challenge_type=challenge_type,
            prompt=tpl.description,
            reference_round=reference_round,
            decoy_states=decoys,
            compression_level=tpl.compression_level,
            delayed_penalty=tpl.delayed_penalty,
        )
        logger.debug("temporal challenge %s -> round %d", challenge_type, reference_round)
        return self._active

    def evaluate_temporal_selection(self, element: GameElement, current_round: int) -> TemporalVerdict:
        """Score a selection against the reference round's recorded truth."""

        _ = current_round
        if self._active is None:
            return TemporalVerdict(False, None)
        ref = self.reference_state(self._active.reference_round)
        if ref is None:
            return TemporalVerdict(False, MEMORY_FADES)
        past = find_element(ref.elements, element.element_id)
        was_correct = past is not None and past.is_correct
        return TemporalVerdict(was_correct, None if was_correct else DIFFERENT_TRUTH)

    def compression_multiplier(self) -> float:
        if self._active is None:
            return 1.0
        return 1.0 + self._active.compression_level * 0.2

    def clear_challenge(self) -> None:
        self._active = None

    def reset(self) -> None:
        self._states.clear()
        self._active = None
