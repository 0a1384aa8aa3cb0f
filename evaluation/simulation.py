"""
Offline accuracy harness.

A simulated player holds one target item in mind, answers every question
truthfully from the catalog, and flips each tag answer to the opposite
polarity with a per-kind noise probability. Batch runs spread independent
trials over a bounded thread pool and report them in (target, trial) order
no matter which finished first.
"""

import json
import os
import random
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from catalog.snapshot import AiGateChoice
from elimination_engine import Outcome
from engine_errors import EngineError, ValidationError
from inference.confidence import tag_coverage
from inference.weight_update import OPPOSITE_ANSWER, Answer
from question_selector import FailReason, QuestionKind

MATCH_TARGET = "MATCH_TARGET"
DEFAULT_MAX_WORKERS = 8


class TrialOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAIL_LIST = "FAIL_LIST"
    MAX_QUESTIONS_EXCEEDED = "MAX_QUESTIONS_EXCEEDED"
    ERROR = "ERROR"


@dataclass(frozen=True)
class NoiseRates:
    explore: float = 0.0
    soft: float = 0.0
    hard: float = 0.0

    def __post_init__(self):
        for name in ("explore", "soft", "hard"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"noise rate {name} must be in [0, 1], got {value}")

    def for_kind(self, kind):
        if kind is QuestionKind.EXPLORE_TAG:
            return self.explore
        if kind is QuestionKind.SOFT_CONFIRM:
            return self.soft
        if kind is QuestionKind.HARD_CONFIRM:
            return self.hard
        return 0.0

    def as_dict(self):
        return {"explore": self.explore, "soft": self.soft, "hard": self.hard}


def resolve_ai_gate(catalog, target_id, ai_gate_choice):
    raw = str(getattr(ai_gate_choice, "value", ai_gate_choice)).strip().upper()
    if raw != MATCH_TARGET:
        # the engine validates the value
        return raw
    classification = catalog.item(target_id).classification
    if classification in (AiGateChoice.AI.value, AiGateChoice.HAND.value):
        return AiGateChoice(classification)
    return AiGateChoice.DONT_CARE


def truthful_answer(catalog, target_id, question, derived_confidence_threshold):
    if question.kind is QuestionKind.REVEAL:
        return Answer.YES if question.item_id == target_id else Answer.NO
    carriers = catalog.carrier_index(derived_confidence_threshold)[question.tag_key]
    return Answer.YES if target_id in carriers else Answer.NO


def _new_trial_result(target_id, trial_index):
    return {
        "target_id": target_id,
        "trial_index": trial_index,
        "outcome": None,
        "questions": 0,
        "reveal_misses": 0,
        "final_item_id": None,
        "failure_reason": None,
        "error_message": "",
        "steps": [],
    }


def run_trial(engine, target_id, noise=None, ai_gate_choice=AiGateChoice.DONT_CARE, seed=0, trial_index=0):
    noise = noise or NoiseRates()
    config = engine.config
    rng = random.Random(f"{seed}:{target_id}:{trial_index}")
    result = _new_trial_result(target_id, trial_index)
    session = engine.new_session(f"sim-{target_id}-{trial_index}")
    catalog = session.catalog

    # every answer bumps question_count, and max_questions always ends the session
    step_guard = config.max_questions + config.max_reveal_misses + 1

    try:
        if target_id not in catalog.items:
            raise ValidationError(f"Unknown target item: {target_id!r}")

        turn = engine.choose_ai_gate(session, resolve_ai_gate(catalog, target_id, ai_gate_choice))
        while not turn.is_terminal:
            if len(result["steps"]) >= step_guard:
                raise EngineError(f"Session did not terminate within {step_guard} steps")

            question = turn.question
            metrics_before = session.metrics
            coverage = None
            if question.tag_key is not None:
                carriers = catalog.carrier_index(config.derived_confidence_threshold)[question.tag_key]
                coverage = tag_coverage(session.pool.weights, carriers)

            answer = truthful_answer(catalog, target_id, question, config.derived_confidence_threshold)
            was_noisy = False
            rate = noise.for_kind(question.kind)
            if rate > 0 and rng.random() < rate:
                answer = OPPOSITE_ANSWER[answer]
                was_noisy = True

            key = QuestionKind.REVEAL if question.kind is QuestionKind.REVEAL else question.tag_key
            turn = engine.answer(session, key, answer)

            result["steps"].append(
                {
                    "index": len(result["steps"]) + 1,
                    "kind": question.kind.value,
                    "tag_key": question.tag_key,
                    "item_id": question.item_id,
                    "display_text": question.display_text,
                    "answer": answer.value,
                    "was_noisy": was_noisy,
                    "confidence_before": metrics_before.confidence,
                    "confidence_after": session.metrics.confidence,
                    "tag_coverage": coverage,
                    "top1_item_id": metrics_before.top1_item_id,
                }
            )
    except EngineError as exc:
        result["outcome"] = TrialOutcome.ERROR.value
        result["error_message"] = f"{type(exc).__name__}: {exc}"
        result["questions"] = session.question_count
        return result

    result["questions"] = session.question_count
    result["reveal_misses"] = session.reveal_miss_count
    result["final_item_id"] = turn.item_id
    result["failure_reason"] = turn.failure_reason.value if turn.failure_reason is not None else None
    if turn.outcome is Outcome.SUCCESS:
        result["outcome"] = TrialOutcome.SUCCESS.value
    elif turn.failure_reason is FailReason.MAX_QUESTIONS:
        result["outcome"] = TrialOutcome.MAX_QUESTIONS_EXCEEDED.value
    else:
        result["outcome"] = TrialOutcome.FAIL_LIST.value
    return result


def select_targets(catalog, target_ids=None, sample_size=None, seed=0):
    targets = list(target_ids) if target_ids else sorted(catalog.items)
    if sample_size and sample_size < len(targets):
        targets = random.Random(seed).sample(targets, sample_size)
    return targets


def _error_trial(target_id, trial_index, exc):
    result = _new_trial_result(target_id, trial_index)
    result["outcome"] = TrialOutcome.ERROR.value
    result["error_message"] = f"{type(exc).__name__}: {exc}"
    return result


def summarize_trials(trials):
    total = len(trials)
    outcome_counts = {outcome.value: 0 for outcome in TrialOutcome}
    for trial in trials:
        outcome_counts[trial["outcome"]] += 1
    completed = [trial for trial in trials if trial["outcome"] != TrialOutcome.ERROR.value]
    success_count = outcome_counts[TrialOutcome.SUCCESS.value]
    return {
        "total_trials": total,
        "success_count": success_count,
        "success_rate": (success_count / total) if total else 0.0,
        "avg_questions": (sum(trial["questions"] for trial in completed) / len(completed)) if completed else 0.0,
        "error_count": outcome_counts[TrialOutcome.ERROR.value],
        "outcome_counts": outcome_counts,
    }


def run_batch(
    engine,
    target_ids=None,
    sample_size=None,
    trials_per_work=1,
    noise=None,
    ai_gate_choice=AiGateChoice.DONT_CARE,
    seed=0,
    max_workers=None,
):
    if trials_per_work < 1:
        raise ValueError("trials_per_work must be >= 1")
    noise = noise or NoiseRates()
    targets = select_targets(engine.catalog, target_ids, sample_size, seed)
    workers = max(1, max_workers or min(DEFAULT_MAX_WORKERS, os.cpu_count() or 1))

    ordered = []
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {}
        for order, target_id in enumerate(targets):
            for trial_index in range(trials_per_work):
                future = executor.submit(run_trial, engine, target_id, noise, ai_gate_choice, seed, trial_index)
                futures[future] = (order, target_id, trial_index)

        for future in as_completed(futures):
            order, target_id, trial_index = futures[future]
            try:
                trial = future.result()
            except Exception as exc:
                # recorded as an ERROR trial; the batch carries on
                trial = _error_trial(target_id, trial_index, exc)
            ordered.append((order, trial_index, trial))

    ordered.sort(key=lambda entry: (entry[0], entry[1]))
    trials = [entry[2] for entry in ordered]

    batch = {
        "target_ids": targets,
        "sample_size": len(targets),
        "trials_per_work": trials_per_work,
        **summarize_trials(trials),
        "metadata": {
            "seed": seed,
            "noise": noise.as_dict(),
            "ai_gate_choice": str(getattr(ai_gate_choice, "value", ai_gate_choice)).upper(),
            "max_workers": workers,
            "catalog_version": engine.catalog.version,
            "created_at_utc": datetime.now(timezone.utc).isoformat(),
        },
        "trials": trials,
    }
    return batch


def save_batch_result(batch, out_dir):
    os.makedirs(out_dir, exist_ok=True)
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
    path = os.path.join(out_dir, f"sim-{timestamp}.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(batch, f, indent=2, ensure_ascii=False)
    return path
