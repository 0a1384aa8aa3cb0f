import csv
import math
import os
import statistics
from collections import defaultdict


TRIAL_FIELDS = [
    "label", "target_id", "trial_index", "outcome", "success", "questions", "reveal_misses",
    "final_item_id", "failure_reason", "noisy_answers", "convergence_step", "confidence_slope",
    "final_confidence", "error_message",
]

STEP_FIELDS = [
    "label", "target_id", "trial_index", "index", "kind", "tag_key", "item_id", "answer", "was_noisy",
    "confidence_before", "confidence_after", "tag_coverage", "top1_item_id",
]


def ensure_dir(path):
    os.makedirs(path, exist_ok=True)


def write_csv(path, rows, fieldnames):
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames, extrasaction="ignore")
        writer.writeheader()
        writer.writerows(rows)


CI95_Z = 1.96

SUMMARY_METRICS = [
    ("success", "success_rate"),
    ("questions", "questions"),
    ("reveal_misses", "reveal_misses"),
    ("convergence_step", "convergence_step"),
    ("confidence_slope", "confidence_slope"),
]


def linear_slope(values):
    """Least-squares slope of `values` against their step index."""
    values = list(values or [])
    n = len(values)
    if n < 2:
        return 0.0
    x_mean = (n - 1) / 2.0
    y_mean = sum(values) / n
    covariance = sum((index - x_mean) * (value - y_mean) for index, value in enumerate(values))
    spread = sum((index - x_mean) ** 2 for index in range(n))
    return covariance / spread


def convergence_step(leaders, window=3):
    """First step after which the leading item stayed the same for `window` consecutive steps."""
    run_length = 0
    previous = None
    for index, leader in enumerate(leaders):
        run_length = run_length + 1 if leader and leader == previous else 1
        previous = leader
        if leader and run_length >= window:
            return index + 1
    return None


def mean_std_ci(values):
    """(mean, population std, ci95 low, ci95 high); blanks for an empty sample."""
    if not values:
        return "", "", "", ""
    values = [float(value) for value in values]
    mean = statistics.mean(values)
    if len(values) == 1:
        return mean, 0.0, mean, mean

    margin = CI95_Z * statistics.stdev(values) / math.sqrt(len(values))
    return mean, statistics.pstdev(values), mean - margin, mean + margin


def trial_rows(batch, label="batch"):
    rows = []
    for trial in batch["trials"]:
        steps = trial.get("steps", [])
        confidences = [step["confidence_after"] for step in steps]
        convergence = convergence_step([step["top1_item_id"] for step in steps], window=3)
        rows.append({
            "label": label,
            "target_id": trial["target_id"],
            "trial_index": trial["trial_index"],
            "outcome": trial["outcome"],
            "success": int(trial["outcome"] == "SUCCESS"),
            "questions": trial["questions"],
            "reveal_misses": trial.get("reveal_misses", 0),
            "final_item_id": trial.get("final_item_id") or "",
            "failure_reason": trial.get("failure_reason") or "",
            "noisy_answers": sum(1 for step in steps if step["was_noisy"]),
            "convergence_step": convergence if convergence is not None else "",
            "confidence_slope": linear_slope(confidences),
            "final_confidence": confidences[-1] if confidences else "",
            "error_message": trial.get("error_message", ""),
        })
    return rows


def step_rows(batch, label="batch"):
    rows = []
    for trial in batch["trials"]:
        for step in trial.get("steps", []):
            row = {"label": label, "target_id": trial["target_id"], "trial_index": trial["trial_index"]}
            row.update(step)
            row["was_noisy"] = int(bool(step["was_noisy"]))
            if row.get("tag_coverage") is None:
                row["tag_coverage"] = ""
            rows.append(row)
    return rows


def aggregate_summary(per_trial_rows):
    """One row per label; ERROR trials are counted but kept out of every metric."""
    grouped = defaultdict(list)
    for row in per_trial_rows:
        grouped[row["label"]].append(row)

    summary = []
    for label, rows in grouped.items():
        completed = [row for row in rows if row["outcome"] != "ERROR"]
        entry = {"label": label, "trials": len(rows), "errors": len(rows) - len(completed)}
        for column, prefix in SUMMARY_METRICS:
            sample = [float(row[column]) for row in completed if row[column] not in ("", None)]
            stats = dict(zip(("mean", "std", "ci95_low", "ci95_high"), mean_std_ci(sample)))
            entry.update({f"{prefix}_{name}": value for name, value in stats.items()})
        summary.append(entry)
    return summary


def summary_fieldnames(summary_rows):
    fieldnames = []
    for row in summary_rows:
        for key in row:
            if key not in fieldnames:
                fieldnames.append(key)
    return fieldnames


def plot_metrics(out_dir, trial_rows_, step_rows_):
    try:
        import matplotlib.pyplot as plt
    except ImportError:
        print("[WARN] matplotlib not installed. Skipping plot generation.")
        return

    outcome_counts = defaultdict(int)
    for row in trial_rows_:
        outcome_counts[row["outcome"]] += 1
    if outcome_counts:
        names = sorted(outcome_counts)
        plt.figure(figsize=(8, 4))
        plt.bar(names, [outcome_counts[name] for name in names])
        plt.title("Trial outcomes")
        plt.xticks(rotation=20, ha="right")
        plt.tight_layout()
        plt.savefig(os.path.join(out_dir, "outcomes.png"), dpi=140)
        plt.close()

    questions = [row["questions"] for row in trial_rows_ if row["outcome"] != "ERROR"]
    if questions:
        plt.figure(figsize=(8, 4))
        plt.hist(questions, bins=max(1, min(30, len(set(questions)))))
        plt.title("Questions per trial")
        plt.xlabel("Questions")
        plt.tight_layout()
        plt.savefig(os.path.join(out_dir, "questions_histogram.png"), dpi=140)
        plt.close()

    by_index = defaultdict(list)
    for row in step_rows_:
        by_index[int(row["index"])].append(float(row["confidence_after"]))
    if by_index:
        indices = sorted(by_index)
        averaged = [sum(by_index[idx]) / len(by_index[idx]) for idx in indices]
        plt.figure(figsize=(10, 5))
        plt.plot(indices, averaged)
        plt.title("Confidence trend (mean across trials)")
        plt.xlabel("Question index")
        plt.ylabel("Top-1 confidence")
        plt.tight_layout()
        plt.savefig(os.path.join(out_dir, "confidence_trend.png"), dpi=140)
        plt.close()
