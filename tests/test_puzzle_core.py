from __future__ import annotations

from dataclasses import dataclass, replace

import pytest

from cosmos_mind.adaptive import AdaptiveIntelligence, AdaptiveParameters, PerformanceSignal
from cosmos_mind.cognitive_core import SeededRng
from cosmos_mind.deception import DeceptionEngine
from cosmos_mind.elements import MAX_SIZE, PlayArea, find_element
from cosmos_mind.puzzle import (
    RULE_SHIFT_MESSAGE,
    FailureReason,
    Feedback,
    GeneratorConfig,
    PuzzleEngine,
    PuzzleUnlocks,
    RoundPhase,
)
from cosmos_mind.rules import (
    HIDDEN_RULES,
    RULE_ATTRIBUTES,
    RULES_BY_KIND,
    HiddenRule,
    RuleCategory,
    RuleEngine,
    RuleKind,
    build_rule_context,
    evaluate_rule,
)
from cosmos_mind.temporal import TemporalEngine


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


@dataclass
class Rig:
    puzzle: PuzzleEngine
    rules: RuleEngine
    deception: DeceptionEngine
    temporal: TemporalEngine
    area: PlayArea


def _rig(seed: int, catalog: tuple[HiddenRule, ...] = HIDDEN_RULES) -> Rig:
    root = SeededRng(seed)
    area = PlayArea()
    rules = RuleEngine(rng=root.fork(), catalog=catalog)
    deception = DeceptionEngine(rng=root.fork(), area=area)
    temporal = TemporalEngine(clock=FakeClock())
    puzzle = PuzzleEngine(
        rng=root.fork(),
        rules=rules,
        deception=deception,
        temporal=temporal,
        config=GeneratorConfig(area=area),
    )
    return Rig(puzzle=puzzle, rules=rules, deception=deception, temporal=temporal, area=area)


SYMMETRY_ONLY = (RULES_BY_KIND[RuleKind.SYMMETRY_KEEPER],)


def test_generator_config_validation() -> None:
    with pytest.raises(ValueError):
        GeneratorConfig(placement_attempts=0)
    with pytest.raises(ValueError):
        GeneratorConfig(stay_probability=1.5)
    with pytest.raises(ValueError):
        GeneratorConfig(max_elements=1)


@pytest.mark.parametrize("seed", [1, 7, 42])
def test_every_round_has_an_answer_and_no_trap_is_correct(seed: int) -> None:
    rig = _rig(seed)
    round_no = 0
    for d in range(1, 11):
        for _ in range(4):
            round_no += 1
            st = rig.puzzle.generate_puzzle(round_no, float(d))
            rig.temporal.record_temporal_state(round_no, st.elements)

            assert st.correct_ids(), (seed, d, st.rule.rule_id)
            assert not set(st.correct_ids()) & set(st.trap_ids())
            assert all(not (e.is_correct and e.is_trap) for e in st.elements)
            assert st.deception is not None
            assert not set(st.deception.traps) & set(st.deception.correct)
            assert len(st.elements) == min(12, 6 + int(d * 0.8))


def test_slot_ids_are_stable_between_rounds() -> None:
    rig = _rig(3)
    first = rig.puzzle.generate_puzzle(1, 3.0)
    ids_one = {e.element_id for e in first.elements}
    second = rig.puzzle.generate_puzzle(2, 3.0)
    ids_two = {e.element_id for e in second.elements}
    assert ids_one == ids_two == {f"slot-{i}" for i in range(len(first.elements))}


def test_default_timing_without_tuning() -> None:
    rig = _rig(11)
    st = rig.puzzle.generate_puzzle(1, 4.0)
    assert st.temporal is None
    expected_observe = 3000.0 if st.rule.category is RuleCategory.TEMPORAL else 1500.0
    assert st.observe_ms == pytest.approx(expected_observe)
    assert st.act_ms == pytest.approx(13000.0)
    assert not st.rule_inversion_pending


def test_round_clock_moves_from_observe_to_act() -> None:
    rig = _rig(5)
    st = rig.puzzle.generate_puzzle(1, 3.0)
    assert st.phase is RoundPhase.OBSERVE
    assert rig.puzzle.advance(st.observe_ms - 1.0) is None
    assert rig.puzzle.advance(1.0) is RoundPhase.ACT
    assert st.phase_started_ms == pytest.approx(st.observe_ms)
    assert rig.puzzle.advance(0.0) is None


def test_gaze_accumulates_per_slot() -> None:
    rig = _rig(5)
    st = rig.puzzle.generate_puzzle(1, 3.0)
    slot = st.elements[0].element_id
    before = st.elements[0].gaze_time_ms
    rig.puzzle.record_gaze(slot, 250.0)
    rig.puzzle.record_gaze(slot, 250.0)
    rig.puzzle.record_gaze("missing", 250.0)
    assert st.elements[0].gaze_time_ms == pytest.approx(before + 500.0)


def test_selection_without_a_round_or_on_an_unknown_id_fails() -> None:
    rig = _rig(2)
    result = rig.puzzle.process_action("slot-0", 100.0)
    assert not result.success
    assert result.failure is FailureReason.NO_ACTIVE_PUZZLE

    rig.puzzle.generate_puzzle(1, 3.0)
    missing = rig.puzzle.process_action("nope", 100.0)
    assert missing.failure is FailureReason.ELEMENT_NOT_FOUND
    assert missing.reason == "element_not_found"

    rig.puzzle.close_round()
    closed = rig.puzzle.process_action("slot-0", 100.0)
    assert closed.failure is FailureReason.NO_ACTIVE_PUZZLE


def test_decoy_selection_is_wrong_and_leaves_the_rule_alone() -> None:
    rig = _rig(8, SYMMETRY_ONLY)
    st = rig.puzzle.generate_puzzle(1, 3.0)
    assert st.decoy_ids()
    rule_before = rig.rules.active_rule

    result = rig.puzzle.process_action(st.decoy_ids()[0], 1000.0)
    assert not result.success
    assert result.feedback is Feedback.WRONG
    assert result.reason == "decoy_selected"
    assert result.score_modifier is None
    assert not result.should_mutate
    assert rig.rules.active_rule is rule_before


def test_correct_selection_scores_and_marks_history() -> None:
    rig = _rig(8, SYMMETRY_ONLY)
    st = rig.puzzle.generate_puzzle(1, 3.0)
    target = st.correct_ids()[0]
    result = rig.puzzle.process_action(target, 1000.0)
    assert result.success
    assert result.feedback is Feedback.VALID
    assert result.score_modifier == pytest.approx(1.0)
    assert result.response_time_ms == pytest.approx(1000.0)
    assert find_element(st.elements, target).was_selected_before  # type: ignore[union-attr]


def test_trap_selection_reports_a_false_affordance() -> None:
    rig = _rig(21)
    found = False
    for round_no in range(1, 60):
        st = rig.puzzle.generate_puzzle(round_no, 7.0)
        if st.trap_ids() and st.temporal is None and not st.inverted:
            result = rig.puzzle.process_action(st.trap_ids()[0], 500.0)
            assert not result.success
            assert result.feedback is Feedback.TRAP
            assert result.reason == "false_affordance"
            assert result.insight
            found = True
            break
    assert found


def _decay_rig(seed: int) -> tuple[Rig, str]:
    rig = _rig(seed, SYMMETRY_ONLY)
    st = rig.puzzle.generate_puzzle(1, 2.0)
    target = find_element(st.elements, st.correct_ids()[0])
    assert target is not None
    # Make one answer maximally inviting so it decays under hesitation.
    target.brightness = 1.0
    target.size = MAX_SIZE
    target.move_to(rig.area.center, center=rig.area.center)
    rig.deception.initialize_deception(2.0, st.elements, rule_correct=st.correct_ids())
    rig.puzzle.advance(st.observe_ms)
    assert st.phase is RoundPhase.ACT
    return rig, target.element_id


def test_hesitating_on_an_inviting_answer_decays_it() -> None:
    rig, target = _decay_rig(31)
    st = rig.puzzle.state
    assert st is not None
    result = rig.puzzle.process_action(target, st.phase_started_ms + 2001.0)
    assert not result.success
    assert result.decayed
    assert result.feedback is Feedback.WRONG
    assert result.reason == "hesitation_decay"


def test_prompt_pick_of_an_inviting_answer_holds() -> None:
    rig, target = _decay_rig(31)
    st = rig.puzzle.state
    assert st is not None
    result = rig.puzzle.process_action(target, st.phase_started_ms + 1999.0)
    assert result.success
    assert not result.decayed
    assert result.feedback is Feedback.VALID


def test_rule_inversion_fires_once_after_half_the_action_window() -> None:
    rig = _rig(13)
    st = None
    for round_no in range(1, 300):
        candidate = rig.puzzle.generate_puzzle(round_no, 8.0)
        rig.temporal.record_temporal_state(round_no, candidate.elements)
        if candidate.rule_inversion_pending and candidate.decoy_ids():
            st = candidate
            break
    assert st is not None

    old_decoys = set(st.decoy_ids())
    old_correct = set(st.correct_ids())
    old_traps = set(st.trap_ids())

    rig.puzzle.advance(st.observe_ms)
    assert rig.puzzle.check_for_rule_inversion() is None
    rig.puzzle.advance(st.act_ms * 0.5 - 10.0)
    assert rig.puzzle.check_for_rule_inversion() is None
    rig.puzzle.advance(20.0)

    event = rig.puzzle.check_for_rule_inversion()
    assert event is not None
    assert event.message == RULE_SHIFT_MESSAGE
    assert st.inverted
    assert set(st.correct_ids()) == old_decoys
    assert set(st.trap_ids()) == old_traps
    assert rig.puzzle.check_for_rule_inversion() is None

    flipped = rig.puzzle.process_action(sorted(old_decoys)[0], st.phase_started_ms + 500.0)
    assert flipped.success
    stale = rig.puzzle.process_action(sorted(old_correct)[0], st.phase_started_ms + 1300.0)
    assert not stale.success


def test_locked_unlocks_suppress_inversion_and_temporal() -> None:
    rig = _rig(17)
    locked = PuzzleUnlocks(temporal_challenges=False, rule_inversion=False)
    for round_no in range(1, 40):
        st = rig.puzzle.generate_puzzle(round_no, 9.0, unlocks=locked)
        rig.temporal.record_temporal_state(round_no, st.elements)
        assert st.temporal is None
        assert not st.rule_inversion_pending


def test_reset_drops_the_round() -> None:
    rig = _rig(4)
    rig.puzzle.generate_puzzle(1, 3.0)
    rig.puzzle.reset()
    assert rig.puzzle.state is None
    assert rig.puzzle.process_action("slot-0", 1.0).failure is FailureReason.NO_ACTIVE_PUZZLE


@pytest.mark.parametrize("seed", [2, 19, 64])
def test_answer_flags_match_the_rule_after_traps_are_planted(seed: int) -> None:
    rig = _rig(seed)
    for round_no in range(1, 25):
        d = 1.0 + (round_no % 10)
        st = rig.puzzle.generate_puzzle(round_no, d)
        rig.temporal.record_temporal_state(round_no, st.elements)
        if st.temporal is not None or RULE_ATTRIBUTES[st.rule.kind] & {"history", "gaze"}:
            continue
        ctx = build_rule_context(st.elements, current_round=round_no, area=rig.area)
        for e in st.elements:
            if e.is_trap:
                assert not evaluate_rule(st.rule, e, ctx), (seed, round_no, st.rule.rule_id)
            else:
                assert e.is_correct == evaluate_rule(st.rule, e, ctx), (seed, round_no, st.rule.rule_id)


def test_gaze_rule_answer_follows_attention() -> None:
    rig = _rig(17, SYMMETRY_ONLY)
    st = rig.puzzle.generate_puzzle(1, 3.0)
    gaze_rule = rig.rules.activate(RULES_BY_KIND[RuleKind.HESITATION_TARGET])
    st.rule = gaze_rule
    first, second = st.decoy_ids()[:2]

    rig.puzzle.record_gaze(first, 700.0)
    assert st.correct_ids() == [first]
    rig.puzzle.record_gaze(second, 900.0)
    assert st.correct_ids() == [second]

    rig.puzzle.advance(st.observe_ms)
    result = rig.puzzle.process_action(second, st.phase_started_ms + 1000.0)
    assert result.success
    assert result.feedback is Feedback.VALID


def _fatigued_parameters() -> AdaptiveParameters:
    clock = FakeClock()
    ai = AdaptiveIntelligence(clock=clock, rng=SeededRng(4))
    clock.t = 19 * 60.0
    for n in range(1, 5):
        ai.record_performance(
            PerformanceSignal(
                timestamp_s=clock.t,
                round_number=n,
                accuracy=0.6,
                average_response_time_ms=3500.0,
                impulsive_action_rate=0.3,
                traps_fallen=0,
                rules_adapted=0,
            )
        )
    return ai.parameters()


def test_fatigue_slows_the_next_round_and_softens_it() -> None:
    fatigued = _fatigued_parameters()
    assert fatigued.temporal_pressure == pytest.approx(0.3)
    assert fatigued.relief_intensity == pytest.approx(1.0)

    baseline_rig = _rig(8, SYMMETRY_ONLY)
    tired_rig = _rig(8, SYMMETRY_ONLY)
    baseline = baseline_rig.puzzle.generate_puzzle(1, 3.0, tuning=AdaptiveParameters())
    tired = tired_rig.puzzle.generate_puzzle(1, 3.0, tuning=fatigued)
    assert tired.act_ms == pytest.approx(baseline.act_ms * 1.1)
    assert tired.correct_ids() == baseline.correct_ids()

    plain = baseline_rig.puzzle.process_action(baseline.correct_ids()[0], 1000.0)
    relieved = tired_rig.puzzle.process_action(tired.correct_ids()[0], 1000.0)
    assert plain.score_modifier == pytest.approx(1.0)
    assert relieved.score_modifier == pytest.approx(1.25)


def test_high_pressure_shortens_the_action_window() -> None:
    rig_calm = _rig(8, SYMMETRY_ONLY)
    rig_tense = _rig(8, SYMMETRY_ONLY)
    calm = rig_calm.puzzle.generate_puzzle(1, 3.0, tuning=AdaptiveParameters())
    tense = rig_tense.puzzle.generate_puzzle(1, 3.0, tuning=AdaptiveParameters(temporal_pressure=1.0))
    assert tense.act_ms == pytest.approx(calm.act_ms * 0.75)


def test_trap_density_sets_how_many_traps_are_planted() -> None:
    sparse = AdaptiveParameters(trap_density=0.05)
    dense = replace(sparse, trap_density=0.35)
    sparse_traps = 0
    dense_traps = 0
    for seed in range(1, 6):
        sparse_traps += len(_rig(seed, SYMMETRY_ONLY).puzzle.generate_puzzle(1, 8.0, tuning=sparse).trap_ids())
        dense_traps += len(_rig(seed, SYMMETRY_ONLY).puzzle.generate_puzzle(1, 8.0, tuning=dense).trap_ids())
    assert dense_traps > sparse_traps
