"""The persisted player model and its JSON wire format.

Wire format (``schema_version`` 1)::

    {
      "schema": "cosmos_mind.mind_model",
      "schema_version": 1,
      "model_id": "...",
      "created_at_s": 0.0,
      "updated_at_s": 0.0,
      "fingerprint": {...},
      "learning_curves": [["never_moved", {...}], ...],
      "total_sessions": 0,
      "total_trials": 0,
      "lifetime_rounds": 0,
      "lifetime_correct": 0,
      "cognitive_stage": "awareness",
      "reaction_profile": {...},
      "risk_profile": {...},
      "behavior_signature": {...},
      "mood": "curious"
    }

``learning_curves`` is an ordered list of ``[key, value]`` pairs.
"""

from __future__ import annotations

import json
import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .adaptive import CognitiveFingerprint
from .cognitive_core import CognitiveDomain, clamp01, lerp, mean, variance

SCHEMA_NAME = "cosmos_mind.mind_model"
SCHEMA_VERSION = 1

_FINGERPRINT_FLOATS = (
    "perception",
    "spatial",
    "logic",
    "temporal",
    "meta",
    "impulsivity_bias",
    "risk_tolerance",
    "adaptation_rate",
    "consistency_score",
    "trap_susceptibility",
    "optimal_session_minutes",
)


class MindModelFormatError(ValueError):
    """Raised when a serialized mind model cannot be decoded."""


@dataclass(slots=True)
class LearningCurve:
    challenge_type: str
    exposures: int = 0
    hits: int = 0
    initial_accuracy: float = 0.0  # percent
    current_accuracy: float = 0.0  # percent
    plateau_level: float = 0.0
    improvement_rate: float = 0.0
    last_exposure_s: float = 0.0

    @property
    def plateaued(self) -> bool:
        return self.exposures >= 5 and abs(self.improvement_rate) < 1.0

    def record(self, *, correct: bool, now_s: float) -> None:
        if self.exposures == 0:
            self.initial_accuracy = 100.0 if correct else 0.0
            self.current_accuracy = self.initial_accuracy
        self.exposures += 1
        if correct:
            self.hits += 1
        self.last_exposure_s = float(now_s)

        accuracy = self.hits / self.exposures * 100.0
        previous = self.current_accuracy
        self.current_accuracy = accuracy
        self.improvement_rate = (accuracy - previous) / self.exposures
        if self.plateaued:
            self.plateau_level = accuracy


class ReactionTrend(StrEnum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"
    VOLATILE = "volatile"


class PressureResponse(StrEnum):
    THRIVES = "thrives"
    NEUTRAL = "neutral"
    STRUGGLES = "struggles"


class ScanPattern(StrEnum):
    SYSTEMATIC = "systematic"
    RANDOM = "random"
    CENTER_OUT = "center_out"
    EDGE_FIRST = "edge_first"


class PlayerMood(StrEnum):
    CURIOUS = "curious"
    FOCUSED = "focused"
    FLOWING = "flowing"
    DETERMINED = "determined"
    FRUSTRATED = "frustrated"
    FATIGUED = "fatigued"


@dataclass(frozen=True, slots=True)
class TrialRecord:
    """One resolved round as the mind model sees it.

    ``position`` is the selected object's place in the play area, scaled to
    0-1 on both axes; timeouts have none.
    """

    at_s: float
    correct: bool
    response_time_ms: float
    difficulty: float
    position: tuple[float, float] | None = None


@dataclass(slots=True)
class ReactionProfile:
    mean: float = 2000.0
    median: float = 1800.0
    variance: float = 500.0
    percentile_25: float = 1400.0
    percentile_75: float = 2400.0
    trend: ReactionTrend = ReactionTrend.STABLE
    fatigue_signal: float = 0.0


@dataclass(slots=True)
class RiskProfile:
    speed_accuracy_tradeoff: float = 0.0  # -0.5 careful .. 0.5 fast
    hesitation_frequency: float = 0.0
    pressure_response: PressureResponse = PressureResponse.NEUTRAL


@dataclass(slots=True)
class BehaviorSignature:
    preferred_x: float = 0.5
    preferred_y: float = 0.5
    scan_pattern: ScanPattern = ScanPattern.RANDOM
    intuition_vs_analysis: float = 0.0  # -1 analytic .. 1 intuitive


@dataclass(slots=True)
class MindModel:
    model_id: str
    created_at_s: float
    updated_at_s: float
    fingerprint: CognitiveFingerprint = field(default_factory=CognitiveFingerprint)
    learning_curves: dict[str, LearningCurve] = field(default_factory=dict)
    total_sessions: int = 0
    total_trials: int = 0
    lifetime_rounds: int = 0
    lifetime_correct: int = 0
    cognitive_stage: str = "awareness"
    reaction: ReactionProfile = field(default_factory=ReactionProfile)
    risk: RiskProfile = field(default_factory=RiskProfile)
    behavior: BehaviorSignature = field(default_factory=BehaviorSignature)
    mood: PlayerMood = PlayerMood.CURIOUS

    def curve(self, challenge_type: str) -> LearningCurve:
        c = self.learning_curves.get(challenge_type)
        if c is None:
            c = LearningCurve(challenge_type=challenge_type)
            self.learning_curves[challenge_type] = c
        return c


def encode_mind_model(model: MindModel) -> str:
    fp = model.fingerprint
    r = model.reaction
    b = model.behavior
    fingerprint: dict[str, Any] = {name: float(getattr(fp, name)) for name in _FINGERPRINT_FLOATS}
    fingerprint["weakest_domain"] = fp.weakest_domain.value
    fingerprint["strongest_domain"] = fp.strongest_domain.value

    curves = [
        [
            key,
            {
                "challenge_type": c.challenge_type,
                "exposures": c.exposures,
                "hits": c.hits,
                "initial_accuracy": c.initial_accuracy,
                "current_accuracy": c.current_accuracy,
                "plateau_level": c.plateau_level,
                "improvement_rate": c.improvement_rate,
                "last_exposure_s": c.last_exposure_s,
            },
        ]
        for key, c in model.learning_curves.items()
    ]
    payload = {
        "schema": SCHEMA_NAME,
        "schema_version": SCHEMA_VERSION,
        "model_id": model.model_id,
        "created_at_s": float(model.created_at_s),
        "updated_at_s": float(model.updated_at_s),
        "fingerprint": fingerprint,
        "learning_curves": curves,
        "total_sessions": int(model.total_sessions),
        "total_trials": int(model.total_trials),
        "lifetime_rounds": int(model.lifetime_rounds),
        "lifetime_correct": int(model.lifetime_correct),
        "cognitive_stage": model.cognitive_stage,
        "reaction_profile": {
            "mean": r.mean,
            "median": r.median,
            "variance": r.variance,
            "percentile_25": r.percentile_25,
            "percentile_75": r.percentile_75,
            "trend": r.trend.value,
            "fatigue_signal": r.fatigue_signal,
        },
        "risk_profile": {
            "speed_accuracy_tradeoff": model.risk.speed_accuracy_tradeoff,
            "hesitation_frequency": model.risk.hesitation_frequency,
            "pressure_response": model.risk.pressure_response.value,
        },
        "behavior_signature": {
            "preferred_x": b.preferred_x,
            "preferred_y": b.preferred_y,
            "scan_pattern": b.scan_pattern.value,
            "intuition_vs_analysis": b.intuition_vs_analysis,
        },
        "mood": model.mood.value,
    }
    return json.dumps(payload, allow_nan=False)


def decode_mind_model(data: str | bytes) -> MindModel:
    """Parse and validate a serialized model.

    Raises MindModelFormatError on anything other than a well-formed
    version-1 document.
    """

    try:
        payload = json.loads(data)
    except (TypeError, ValueError, RecursionError) as exc:
        raise MindModelFormatError(f"not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise MindModelFormatError("top-level value must be an object")
    if payload.get("schema") != SCHEMA_NAME:
        raise MindModelFormatError(f"unknown schema: {payload.get('schema')!r}")
    version = payload.get("schema_version")
    if version != SCHEMA_VERSION:
        raise MindModelFormatError(f"unsupported schema_version: {version!r}")

    raw_fp = _field(payload, "fingerprint", dict)
    fp = CognitiveFingerprint()
    for name in _FINGERPRINT_FLOATS:
        setattr(fp, name, _number(raw_fp, name))
    fp.weakest_domain = _domain(raw_fp, "weakest_domain")
    fp.strongest_domain = _domain(raw_fp, "strongest_domain")

    curves: dict[str, LearningCurve] = {}
    for pair in _field(payload, "learning_curves", list):
        if not (isinstance(pair, list) and len(pair) == 2 and isinstance(pair[0], str) and isinstance(pair[1], dict)):
            raise MindModelFormatError("learning_curves entries must be [key, object] pairs")
        key, raw = pair
        curves[key] = LearningCurve(
            challenge_type=_field(raw, "challenge_type", str),
            exposures=_count(raw, "exposures"),
            hits=_count(raw, "hits"),
            initial_accuracy=_number(raw, "initial_accuracy"),
            current_accuracy=_number(raw, "current_accuracy"),
            plateau_level=_number(raw, "plateau_level"),
            improvement_rate=_number(raw, "improvement_rate"),
            last_exposure_s=_number(raw, "last_exposure_s"),
        )

    raw_r = _field(payload, "reaction_profile", dict)
    reaction = ReactionProfile(
        mean=_number(raw_r, "mean"),
        median=_number(raw_r, "median"),
        variance=_number(raw_r, "variance"),
        percentile_25=_number(raw_r, "percentile_25"),
        percentile_75=_number(raw_r, "percentile_75"),
        trend=_choice(raw_r, "trend", ReactionTrend),
        fatigue_signal=_number(raw_r, "fatigue_signal"),
    )
    raw_risk = _field(payload, "risk_profile", dict)
    risk = RiskProfile(
        speed_accuracy_tradeoff=_number(raw_risk, "speed_accuracy_tradeoff"),
        hesitation_frequency=_number(raw_risk, "hesitation_frequency"),
        pressure_response=_choice(raw_risk, "pressure_response", PressureResponse),
    )
    raw_b = _field(payload, "behavior_signature", dict)
    behavior = BehaviorSignature(
        preferred_x=_number(raw_b, "preferred_x"),
        preferred_y=_number(raw_b, "preferred_y"),
        scan_pattern=_choice(raw_b, "scan_pattern", ScanPattern),
        intuition_vs_analysis=_number(raw_b, "intuition_vs_analysis"),
    )

    return MindModel(
        model_id=_field(payload, "model_id", str),
        created_at_s=_number(payload, "created_at_s"),
        updated_at_s=_number(payload, "updated_at_s"),
        fingerprint=fp,
        learning_curves=curves,
        total_sessions=_count(payload, "total_sessions"),
        total_trials=_count(payload, "total_trials"),
        lifetime_rounds=_count(payload, "lifetime_rounds"),
        lifetime_correct=_count(payload, "lifetime_correct"),
        cognitive_stage=_field(payload, "cognitive_stage", str),
        reaction=reaction,
        risk=risk,
        behavior=behavior,
        mood=_choice(payload, "mood", PlayerMood),
    )


def _field(obj: dict[str, Any], key: str, kind: type) -> Any:
    if key not in obj:
        raise MindModelFormatError(f"missing key: {key}")
    value = obj[key]
    if not isinstance(value, kind):
        raise MindModelFormatError(f"{key} must be {kind.__name__}")
    return value


def _number(obj: dict[str, Any], key: str) -> float:
    value = obj.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MindModelFormatError(f"{key} must be a number")
    if not math.isfinite(value):
        raise MindModelFormatError(f"{key} must be finite")
    return float(value)


def _count(obj: dict[str, Any], key: str) -> int:
    value = obj.get(key)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise MindModelFormatError(f"{key} must be a non-negative integer")
    return value


def _domain(obj: dict[str, Any], key: str) -> CognitiveDomain:
    raw = _field(obj, key, str)
    try:
        return CognitiveDomain(raw)
    except ValueError as exc:
        raise MindModelFormatError(f"{key}: unknown domain {raw!r}") from exc


def _choice(obj: dict[str, Any], key: str, kind: type[StrEnum]) -> Any:
    raw = _field(obj, key, str)
    try:
        return kind(raw)
    except ValueError as exc:
        raise MindModelFormatError(f"{key}: unknown value {raw!r}") from exc


FAST_MS = 1500.0
HIGH_PRESSURE_DIFFICULTY = 6.0


def observe_trial(model: MindModel, trials: Sequence[TrialRecord], *, fatigue: float) -> None:
    """Fold the newest trial (``trials[-1]``) into the behavioural profiles.

    ``trials`` is the session's recent window in play order; ``fatigue`` is
    the pacing controller's 0-1 fatigue level.
    """

    if not trials:
        return
    _update_reaction_profile(model.reaction, trials)
    _update_risk_profile(model.risk, model.reaction, trials)
    _update_behavior(model.behavior, trials)
    model.mood = infer_mood(model.reaction, trials, fatigue=fatigue)


def _update_reaction_profile(profile: ReactionProfile, trials: Sequence[TrialRecord]) -> None:
    if len(trials) < 5:
        return
    chronological = [t.response_time_ms for t in trials]
    times = sorted(chronological)
    n = len(times)
    avg = mean(times)
    spread = variance(times)

    change = profile.mean - avg
    significant = math.sqrt(spread) * 0.5
    if math.sqrt(spread) > profile.mean * 0.5:
        trend = ReactionTrend.VOLATILE
    elif change > significant:
        trend = ReactionTrend.IMPROVING
    elif change < -significant:
        trend = ReactionTrend.DECLINING
    else:
        trend = ReactionTrend.STABLE

    fatigue_signal = 0.0
    if n >= 10:
        half = n // 2
        first = mean(chronological[:half])
        second = mean(chronological[half:])
        if first > 0:
            fatigue_signal = clamp01((second - first) / first * 2.0)

    profile.mean = avg
    profile.median = times[n // 2]
    profile.variance = spread
    profile.percentile_25 = times[int(n * 0.25)]
    profile.percentile_75 = times[int(n * 0.75)]
    profile.trend = trend
    profile.fatigue_signal = fatigue_signal


def _accuracy(trials: Sequence[TrialRecord]) -> float:
    return sum(1 for t in trials if t.correct) / len(trials) if trials else 0.0


def _update_risk_profile(risk: RiskProfile, reaction: ReactionProfile, trials: Sequence[TrialRecord]) -> None:
    n = len(trials)
    fast = sum(1 for t in trials if t.response_time_ms < FAST_MS)
    risk.speed_accuracy_tradeoff = lerp(risk.speed_accuracy_tradeoff, fast / n - 0.5, 0.1)

    hesitation_ms = reaction.percentile_75 * 1.5
    risk.hesitation_frequency = sum(1 for t in trials if t.response_time_ms > hesitation_ms) / n

    high = [t for t in trials if t.difficulty > HIGH_PRESSURE_DIFFICULTY]
    low = [t for t in trials if t.difficulty <= HIGH_PRESSURE_DIFFICULTY]
    if len(high) >= 3 and len(low) >= 3:
        high_acc = _accuracy(high)
        low_acc = _accuracy(low)
        if high_acc > low_acc * 1.1:
            risk.pressure_response = PressureResponse.THRIVES
        elif high_acc < low_acc * 0.8:
            risk.pressure_response = PressureResponse.STRUGGLES
        else:
            risk.pressure_response = PressureResponse.NEUTRAL


def detect_scan_pattern(positions: Sequence[tuple[float, float]]) -> ScanPattern:
    angles = [math.atan2(b[1] - a[1], b[0] - a[0]) for a, b in zip(positions, positions[1:])]
    if angles and variance(angles) < 0.5:
        return ScanPattern.SYSTEMATIC

    dists = [math.hypot(x - 0.5, y - 0.5) for x, y in positions]
    if all(d >= prev * 0.9 for prev, d in zip(dists, dists[1:])):
        return ScanPattern.CENTER_OUT

    edge = sum(1 for x, y in positions if x < 0.2 or x > 0.8 or y < 0.2 or y > 0.8)
    if edge > len(positions) * 0.6:
        return ScanPattern.EDGE_FIRST
    return ScanPattern.RANDOM


def _update_behavior(sig: BehaviorSignature, trials: Sequence[TrialRecord]) -> None:
    trial = trials[-1]
    if trial.position is not None:
        sig.preferred_x = lerp(sig.preferred_x, clamp01(trial.position[0]), 0.05)
        sig.preferred_y = lerp(sig.preferred_y, clamp01(trial.position[1]), 0.05)

    positions = [t.position for t in list(trials)[-10:] if t.position is not None]
    if len(positions) >= 5:
        sig.scan_pattern = detect_scan_pattern(positions)

    if trial.correct and trial.response_time_ms < 1200.0:
        sig.intuition_vs_analysis = lerp(sig.intuition_vs_analysis, 1.0, 0.1)
    elif trial.correct and trial.response_time_ms >= 2000.0:
        sig.intuition_vs_analysis = lerp(sig.intuition_vs_analysis, -1.0, 0.1)


def infer_mood(reaction: ReactionProfile, trials: Sequence[TrialRecord], *, fatigue: float) -> PlayerMood:
    recent = list(trials)[-10:]
    if len(recent) < 5:
        return PlayerMood.CURIOUS
    acc = _accuracy(recent)
    avg = mean([t.response_time_ms for t in recent])
    trend = reaction.trend

    if acc > 0.8 and avg < FAST_MS and trend is ReactionTrend.IMPROVING:
        return PlayerMood.FLOWING
    if acc > 0.7 and trend is not ReactionTrend.DECLINING:
        return PlayerMood.FOCUSED
    if acc < 0.6 and avg < reaction.median:
        return PlayerMood.DETERMINED
    if acc < 0.5 and trend is ReactionTrend.VOLATILE:
        return PlayerMood.FRUSTRATED
    if fatigue > 0.6:
        return PlayerMood.FATIGUED
    return PlayerMood.CURIOUS
