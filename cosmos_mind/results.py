from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RoundRecord:
    round: int
    rule_kind: str
    element_id: str | None  # None when the round timed out
    feedback: str
    is_correct: bool
    response_time_ms: float
    difficulty: float
    temporal: bool
    inverted: bool


@dataclass(frozen=True, slots=True)
class SessionResult:
    """Persistable summary + round log for one play session."""

    seed: int
    started_at_s: float
    duration_s: float
    rounds: int
    correct: int
    accuracy: float
    mean_rt_ms: float | None
    median_rt_ms: float | None
    final_difficulty: float
    cognitive_stage: str
    dominant_archetype: str

    events: list[RoundRecord]


def session_result_from_records(
    records: list[RoundRecord],
    *,
    seed: int,
    started_at_s: float,
    ended_at_s: float,
    final_difficulty: float,
    cognitive_stage: str,
    dominant_archetype: str,
) -> SessionResult:
    """Build a SessionResult from the rounds a session resolved."""

    correct = sum(1 for r in records if r.is_correct)
    rts_ms = sorted(int(round(r.response_time_ms)) for r in records if r.element_id is not None)

    mean_ms: float | None
    median_ms: float | None
    if not rts_ms:
        mean_ms = None
        median_ms = None
    else:
        mean_ms = float(sum(rts_ms)) / float(len(rts_ms))
        mid = len(rts_ms) // 2
        if len(rts_ms) % 2 == 1:
            median_ms = float(rts_ms[mid])
        else:
            median_ms = float(rts_ms[mid - 1] + rts_ms[mid]) / 2.0

    return SessionResult(
        seed=int(seed),
        started_at_s=float(started_at_s),
        duration_s=max(0.0, float(ended_at_s) - float(started_at_s)),
        rounds=len(records),
        correct=correct,
        accuracy=(correct / len(records)) if records else 0.0,
        mean_rt_ms=mean_ms,
        median_rt_ms=median_ms,
        final_difficulty=float(final_difficulty),
        cognitive_stage=str(cognitive_stage),
        dominant_archetype=str(dominant_archetype),
        events=list(records),
    )
