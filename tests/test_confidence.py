import pytest

from inference.confidence import (
    effective_confirm_threshold,
    evaluate,
    passes_coverage_gate,
    rank_candidates,
    tag_coverage,
)


def test_evaluate_reports_top_two_and_confidence():
    metrics = evaluate({"a": 0.1, "b": 0.6, "c": 0.3})
    assert metrics.top1_item_id == "b"
    assert metrics.top1_score == pytest.approx(0.6)
    assert metrics.top2_item_id == "c"
    assert metrics.confidence == metrics.top1_score
    assert metrics.active_count == 3


def test_ties_break_by_item_id():
    ranked = rank_candidates({"z": 0.25, "m": 0.25, "a": 0.25, "q": 0.25})
    assert [item_id for item_id, _ in ranked] == ["a", "m", "q", "z"]
    assert evaluate({"b": 0.5, "a": 0.5}).top1_item_id == "a"


def test_effective_candidates_ignores_negligible_weights():
    metrics = evaluate({"a": 0.9, "b": 0.095, "c": 0.005, "d": 1e-15}, effective_weight_floor=0.01)
    assert metrics.effective_candidates == 2
    assert metrics.active_count == 3


def test_tag_coverage_is_mass_of_carriers():
    weights = {"a": 0.5, "b": 0.3, "c": 0.2}
    assert tag_coverage(weights, {"a", "c"}) == pytest.approx(0.7)
    assert tag_coverage(weights, {"missing"}) == 0


def test_coverage_gate_modes():
    assert passes_coverage_gate(2, 100, "RATIO", 0.02, 5)
    assert not passes_coverage_gate(1, 100, "RATIO", 0.02, 5)
    assert passes_coverage_gate(5, 1000, "WORKS", 0.02, 5)
    assert not passes_coverage_gate(4, 1000, "WORKS", 0.02, 5)
    # AUTO takes the stricter requirement
    assert not passes_coverage_gate(5, 1000, "AUTO", 0.02, 5)
    assert passes_coverage_gate(20, 1000, "AUTO", 0.02, 5)
    assert not passes_coverage_gate(3, 10, "AUTO", 0.02, 5)
    assert passes_coverage_gate(5, 10, "AUTO", 0.02, 5)


def test_coverage_gate_upper_bound_and_empty_pool():
    assert not passes_coverage_gate(95, 100, "RATIO", 0.02, 1, max_ratio=0.9)
    assert passes_coverage_gate(90, 100, "RATIO", 0.02, 1, max_ratio=0.9)
    assert not passes_coverage_gate(0, 0, "AUTO", 0.02, 1)


def test_effective_confirm_threshold_clamps():
    assert effective_confirm_threshold(10, 3, 20, 50) == 3
    assert effective_confirm_threshold(500, 3, 20, 50) == 10
    assert effective_confirm_threshold(5000, 3, 20, 50) == 20
    assert effective_confirm_threshold(225, 3, 20, 50) == 5
