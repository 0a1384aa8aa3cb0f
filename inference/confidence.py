import heapq
import math
from dataclasses import dataclass


@dataclass(frozen=True)
class ConfidenceMetrics:
    top1_item_id: str
    top1_score: float
    top2_item_id: str
    top2_score: float
    effective_candidates: int
    active_count: int

    @property
    def confidence(self):
        return self.top1_score

    def as_dict(self):
        return {
            "top1_item_id": self.top1_item_id,
            "top1_score": self.top1_score,
            "top2_item_id": self.top2_item_id,
            "top2_score": self.top2_score,
            "confidence": self.confidence,
            "effective_candidates": self.effective_candidates,
            "active_count": self.active_count,
        }


def _rank_key(entry):
    item_id, probability = entry
    return (-probability, item_id)


def rank_candidates(weights, limit=None):
    """(item_id, probability) pairs, highest first; equal weights fall back to id order."""
    if limit is None:
        return sorted(weights.items(), key=_rank_key)
    return heapq.nsmallest(limit, weights.items(), key=_rank_key)


def evaluate(weights, effective_weight_floor=0.01, prune_epsilon=1e-9):
    top = rank_candidates(weights, limit=2)
    top1_id, top1 = top[0] if top else (None, 0.0)
    top2_id, top2 = top[1] if len(top) > 1 else (None, 0.0)
    effective = sum(1 for p in weights.values() if p >= effective_weight_floor)
    active = sum(1 for p in weights.values() if p >= prune_epsilon)
    return ConfidenceMetrics(
        top1_item_id=top1_id,
        top1_score=top1,
        top2_item_id=top2_id,
        top2_score=top2,
        effective_candidates=effective,
        active_count=active,
    )


def tag_coverage(weights, carriers):
    """Probability mass currently held by items that carry the tag."""
    if len(carriers) < len(weights):
        return sum(weights[item_id] for item_id in carriers if item_id in weights)
    return sum(p for item_id, p in weights.items() if item_id in carriers)


def passes_coverage_gate(count, total, mode, min_ratio, min_works, max_ratio=None):
    if total <= 0:
        return False
    ratio = count / total
    if max_ratio is not None and ratio > max_ratio:
        return False

    mode = str(mode).upper()
    min_ratio = min_ratio or 0.0
    min_works = min_works or 0
    if mode == "RATIO":
        return ratio >= min_ratio
    if mode == "WORKS":
        return count >= min_works
    # AUTO: whichever requirement is stricter for this pool size
    works_ratio = min(min_works, total) / max(total, 1)
    return ratio >= max(min_ratio, works_ratio)


def effective_confirm_threshold(total, low, high, divisor):
    scaled = int(math.floor(total / divisor + 0.5))
    return min(high, max(low, scaled))
