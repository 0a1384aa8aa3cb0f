import csv

import pytest

from evaluation import reporting


def _batch():
    steps = [
        {"index": 1, "kind": "EXPLORE_TAG", "tag_key": "sea", "item_id": None, "display_text": "", "answer": "YES",
         "was_noisy": False, "confidence_before": 0.2, "confidence_after": 0.5, "tag_coverage": 0.4,
         "top1_item_id": "a"},
        {"index": 2, "kind": "EXPLORE_TAG", "tag_key": "day", "item_id": None, "display_text": "", "answer": "NO",
         "was_noisy": True, "confidence_before": 0.5, "confidence_after": 0.6, "tag_coverage": 0.5,
         "top1_item_id": "a"},
        {"index": 3, "kind": "REVEAL", "tag_key": None, "item_id": "a", "display_text": "", "answer": "YES",
         "was_noisy": False, "confidence_before": 0.6, "confidence_after": 0.9, "tag_coverage": None,
         "top1_item_id": "a"},
    ]
    return {
        "trials": [
            {"target_id": "a", "trial_index": 0, "outcome": "SUCCESS", "questions": 3, "reveal_misses": 0,
             "final_item_id": "a", "failure_reason": None, "error_message": "", "steps": steps},
            {"target_id": "b", "trial_index": 0, "outcome": "FAIL_LIST", "questions": 5, "reveal_misses": 1,
             "final_item_id": None, "failure_reason": "MAX_QUESTIONS", "error_message": "", "steps": []},
            {"target_id": "c", "trial_index": 0, "outcome": "ERROR", "questions": 0, "reveal_misses": 0,
             "final_item_id": None, "failure_reason": None, "error_message": "boom", "steps": []},
        ]
    }


def test_mean_std_ci_single_value():
    mean, std, low, high = reporting.mean_std_ci([1.5])
    assert mean == 1.5
    assert std == 0.0
    assert low == 1.5
    assert high == 1.5


def test_convergence_step_and_slope():
    assert reporting.convergence_step(["a", "b", "b", "b"], window=3) == 4
    assert reporting.convergence_step(["a", "b"], window=3) is None
    assert reporting.linear_slope([0.1, 0.2, 0.3]) == pytest.approx(0.1)
    assert reporting.linear_slope([0.5]) == 0.0


def test_trial_and_step_rows():
    trials = reporting.trial_rows(_batch(), label="noisy")
    assert [row["success"] for row in trials] == [1, 0, 0]
    assert trials[0]["noisy_answers"] == 1
    assert trials[0]["convergence_step"] == 3
    assert trials[0]["final_confidence"] == 0.9
    assert trials[1]["final_confidence"] == ""

    steps = reporting.step_rows(_batch(), label="noisy")
    assert len(steps) == 3
    assert steps[1]["was_noisy"] == 1
    assert steps[2]["tag_coverage"] == ""


def test_aggregate_summary_skips_errors_and_produces_ci_fields():
    summary = reporting.aggregate_summary(reporting.trial_rows(_batch(), label="noisy"))
    assert len(summary) == 1
    item = summary[0]
    assert item["trials"] == 3
    assert item["errors"] == 1
    assert item["success_rate_mean"] == 0.5
    assert item["questions_mean"] == 4.0
    assert "questions_ci95_low" in item
    assert "questions_ci95_high" in item
    assert item["convergence_step_mean"] == 3.0


def test_write_csv_ignores_extra_keys(tmp_path):
    path = tmp_path / "steps.csv"
    reporting.write_csv(str(path), reporting.step_rows(_batch()), reporting.STEP_FIELDS)
    with open(path, newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 3
    assert "display_text" not in rows[0]
