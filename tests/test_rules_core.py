from __future__ import annotations

import pytest

from cosmos_mind.cognitive_core import CognitiveDomain, SeededRng
from cosmos_mind.elements import GameElement, PlayArea, ShapeType
from cosmos_mind.rules import (
    HIDDEN_RULES,
    RULES_BY_KIND,
    RuleCategory,
    RuleEngine,
    RuleKind,
    RuleShaping,
    build_rule_context,
    conform,
    evaluate_rule,
)

AREA = PlayArea()


def _el(element_id: str, **kw: object) -> GameElement:
    c = AREA.center
    base: dict[str, object] = {"shape": ShapeType.CIRCLE, "color": "#00D4AA", "x": c.x, "y": c.y, "size": 50.0}
    base.update(kw)
    e = GameElement(element_id=element_id, **base)  # type: ignore[arg-type]
    e.move_to(e.position, center=c)
    return e


def _ctx(elements: list[GameElement], current_round: int = 3):
    return build_rule_context(elements, current_round=current_round, area=AREA)


def test_catalog_is_complete_and_unique() -> None:
    assert len(HIDDEN_RULES) == len(RuleKind)
    assert set(RULES_BY_KIND) == set(RuleKind)
    for rule in HIDDEN_RULES:
        for target in rule.mutates_to:
            assert target in RULES_BY_KIND


def test_movement_rules() -> None:
    still = _el("still")
    moved = _el("moved", has_moved=True, move_count=2)
    once = _el("once", has_moved=True, move_count=1)
    ctx = _ctx([still, moved, once])

    never = RULES_BY_KIND[RuleKind.NEVER_MOVED]
    most = RULES_BY_KIND[RuleKind.MOST_MOVED]
    assert evaluate_rule(never, still, ctx)
    assert not evaluate_rule(never, moved, ctx)
    assert evaluate_rule(most, moved, ctx)
    assert not evaluate_rule(most, once, ctx)


def test_most_moved_needs_some_movement() -> None:
    a, b = _el("a"), _el("b", x=AREA.center.x + 100.0)
    assert not evaluate_rule(RULES_BY_KIND[RuleKind.MOST_MOVED], a, _ctx([a, b]))


def test_spatial_rules_use_distance_from_center() -> None:
    c = AREA.center
    near = _el("near", x=c.x + 20.0)
    mid = _el("mid", x=c.x + 120.0)
    far = _el("far", x=c.x, y=c.y + 200.0)
    ctx = _ctx([near, mid, far])

    edge = RULES_BY_KIND[RuleKind.EDGE_DWELLER]
    core = RULES_BY_KIND[RuleKind.CENTER_DWELLER]
    not_center = RULES_BY_KIND[RuleKind.NOT_CENTER]
    assert [evaluate_rule(edge, e, ctx) for e in (near, mid, far)] == [False, False, True]
    assert [evaluate_rule(core, e, ctx) for e in (near, mid, far)] == [True, False, False]
    assert [evaluate_rule(not_center, e, ctx) for e in (near, mid, far)] == [False, True, True]


def test_shape_majority_and_minority() -> None:
    els = [
        _el("c1", shape=ShapeType.CIRCLE),
        _el("c2", shape=ShapeType.CIRCLE),
        _el("c3", shape=ShapeType.CIRCLE),
        _el("t1", shape=ShapeType.TRIANGLE),
    ]
    ctx = _ctx(els)
    assert evaluate_rule(RULES_BY_KIND[RuleKind.MAJORITY_SHAPE], els[0], ctx)
    assert not evaluate_rule(RULES_BY_KIND[RuleKind.MAJORITY_SHAPE], els[3], ctx)
    assert evaluate_rule(RULES_BY_KIND[RuleKind.MINORITY_SHAPE], els[3], ctx)


def test_not_brightest_excludes_objects_near_the_peak() -> None:
    bright = _el("bright", brightness=1.0)
    close = _el("close", brightness=0.85)
    dim = _el("dim", brightness=0.5)
    ctx = _ctx([bright, close, dim])
    rule = RULES_BY_KIND[RuleKind.NOT_BRIGHTEST]
    assert not evaluate_rule(rule, bright, ctx)
    assert not evaluate_rule(rule, close, ctx)
    assert evaluate_rule(rule, dim, ctx)


def test_isolated_and_hesitation_rules_pick_single_objects() -> None:
    c = AREA.center
    a = _el("a", x=c.x - 10.0)
    b = _el("b", x=c.x + 10.0)
    lone = _el("lone", x=c.x, y=c.y + 250.0, gaze_time_ms=900.0)
    ctx = _ctx([a, b, lone])
    assert evaluate_rule(RULES_BY_KIND[RuleKind.ISOLATED_ONE], lone, ctx)
    assert not evaluate_rule(RULES_BY_KIND[RuleKind.ISOLATED_ONE], a, ctx)
    assert evaluate_rule(RULES_BY_KIND[RuleKind.HESITATION_TARGET], lone, ctx)

    short = _el("short", gaze_time_ms=300.0)
    assert not evaluate_rule(RULES_BY_KIND[RuleKind.HESITATION_TARGET], short, _ctx([short]))


def test_history_rules() -> None:
    old = _el("old", appeared_round=1, was_relevant_last_round=True, was_selected_before=True)
    new = _el("new", appeared_round=3)
    ctx = _ctx([old, new], current_round=3)
    assert evaluate_rule(RULES_BY_KIND[RuleKind.FIRST_APPEARED], old, ctx)
    assert evaluate_rule(RULES_BY_KIND[RuleKind.NEWEST_ARRIVAL], new, ctx)
    assert evaluate_rule(RULES_BY_KIND[RuleKind.RELEVANT_LAST_ROUND], old, ctx)
    assert evaluate_rule(RULES_BY_KIND[RuleKind.IRRELEVANT_LAST_ROUND], new, ctx)
    assert evaluate_rule(RULES_BY_KIND[RuleKind.NEVER_SELECTED], new, ctx)
    assert not evaluate_rule(RULES_BY_KIND[RuleKind.NEVER_SELECTED], old, ctx)


def test_evaluation_does_not_touch_the_context() -> None:
    els = [_el("a", brightness=0.3), _el("b", brightness=0.9)]
    ctx = _ctx(els)
    before = [(e.element_id, e.brightness, e.is_correct) for e in ctx.elements]
    for rule in HIDDEN_RULES:
        for e in els:
            evaluate_rule(rule, e, ctx)
    assert [(e.element_id, e.brightness, e.is_correct) for e in ctx.elements] == before
    with pytest.raises(TypeError):
        ctx.selection_history[1] = ("x",)  # type: ignore[index]


def test_conform_makes_promotable_rules_true() -> None:
    rng = SeededRng(21)
    for rule in HIDDEN_RULES:
        if not rule.can_promote:
            continue
        e = _el("x", appeared_round=1, was_selected_before=True, brightness=1.0)
        other = _el("y", x=AREA.center.x + 90.0, brightness=1.0)
        shaping = RuleShaping(
            rng=rng, area=AREA, elements=[e, other], current_round=4, focus_shape=ShapeType.SQUARE
        )
        assert conform(rule, e, satisfy=True, shaping=shaping)
        assert evaluate_rule(rule, e, build_rule_context([e, other], current_round=4, area=AREA)), rule.kind


def test_conform_refuses_scene_level_rules() -> None:
    e = _el("x")
    shaping = RuleShaping(rng=SeededRng(1), area=AREA, elements=[e], current_round=2, focus_shape=ShapeType.CIRCLE)
    assert not conform(RULES_BY_KIND[RuleKind.ISOLATED_ONE], e, satisfy=True, shaping=shaping)
    assert not conform(RULES_BY_KIND[RuleKind.HESITATION_TARGET], e, satisfy=True, shaping=shaping)


def test_initialize_rule_honours_category_and_domain_filters() -> None:
    engine = RuleEngine(rng=SeededRng(4))
    for _ in range(30):
        rule = engine.initialize_rule(10.0, categories=[RuleCategory.TEMPORAL])
        assert rule.category is RuleCategory.TEMPORAL
    for _ in range(30):
        rule = engine.initialize_rule(10.0, domain=CognitiveDomain.SPATIAL)
        assert rule.domain is CognitiveDomain.SPATIAL
    for _ in range(30):
        assert engine.initialize_rule(0.0).complexity <= 2


def test_mutation_follows_the_declared_target() -> None:
    engine = RuleEngine(rng=SeededRng(9))
    engine.activate(RULES_BY_KIND[RuleKind.NEVER_MOVED])
    mutated = engine.mutate_rule()
    assert mutated is not None
    assert mutated.kind is RuleKind.MOST_MOVED
    assert engine.rounds_since_change == 0
    assert engine.rule_history()[-2:] == ["never_moved", "most_moved"]


def test_mutation_without_an_active_rule_is_a_no_op() -> None:
    engine = RuleEngine(rng=SeededRng(9))
    assert engine.mutate_rule() is None
    assert engine.active_rule is None


def test_rule_mutation_cadence_stays_between_four_and_six_rounds() -> None:
    engine = RuleEngine(rng=SeededRng(2024))
    engine.initialize_rule(3.0)
    e = _el("probe")
    ctx = _ctx([e])

    gaps: list[int] = []
    since = 0
    for _ in range(1000):
        since += 1
        result = engine.evaluate_selection(e, ctx)
        if result.should_mutate:
            assert engine.mutate_rule() is not None
            gaps.append(since)
            since = 0

    assert len(gaps) >= 150
    assert all(4 <= g <= 6 for g in gaps)


def test_threshold_is_rerolled_inside_its_window() -> None:
    engine = RuleEngine(rng=SeededRng(77))
    seen = set()
    for _ in range(200):
        engine.activate(RULES_BY_KIND[RuleKind.SYMMETRY_KEEPER])
        seen.add(engine.mutation_threshold)
    assert seen == {4, 5, 6}


def test_fallback_rule_is_always_promotable() -> None:
    engine = RuleEngine(rng=SeededRng(8))
    for _ in range(50):
        rule = engine.fallback_rule(1.0, exclude=RuleKind.EDGE_DWELLER)
        assert rule.can_promote
        assert rule.kind is not RuleKind.EDGE_DWELLER
