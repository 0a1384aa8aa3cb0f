"""
Multiplicative likelihood updates over the candidate pool.

Every answer maps through ANSWER_STRENGTH to a signed strength s in [-1, 1].
One answer about a tag multiplies carriers by k = exp(beta * s * scale) and
non-carriers by 1/k, then renormalises. Because the factor only depends on
the sign and size of s, a YES followed by a NO on the same tag cancels out
exactly, and s = 0 (UNKNOWN, DONT_CARE) leaves the weights untouched.
"""

import math
from enum import Enum

from engine_errors import ValidationError


class Answer(str, Enum):
    YES = "YES"
    PROBABLY_YES = "PROBABLY_YES"
    UNKNOWN = "UNKNOWN"
    PROBABLY_NO = "PROBABLY_NO"
    NO = "NO"
    DONT_CARE = "DONT_CARE"


ANSWER_STRENGTH = {
    Answer.YES: 1.0,
    Answer.PROBABLY_YES: 0.6,
    Answer.UNKNOWN: 0.0,
    Answer.PROBABLY_NO: -0.6,
    Answer.NO: -1.0,
    Answer.DONT_CARE: 0.0,
}

OPPOSITE_ANSWER = {
    Answer.YES: Answer.NO,
    Answer.PROBABLY_YES: Answer.PROBABLY_NO,
    Answer.UNKNOWN: Answer.UNKNOWN,
    Answer.PROBABLY_NO: Answer.PROBABLY_YES,
    Answer.NO: Answer.YES,
    Answer.DONT_CARE: Answer.DONT_CARE,
}


def parse_answer(value):
    if isinstance(value, Answer):
        return value
    try:
        return Answer(str(value).strip().upper())
    except ValueError:
        raise ValidationError(f"Unknown answer value: {value!r}") from None


def normalize(weights):
    total = sum(weights.values())
    if not weights:
        return {}
    if total <= 0 or not math.isfinite(total):
        uniform = 1.0 / len(weights)
        return {item_id: uniform for item_id in weights}
    return {item_id: weight / total for item_id, weight in weights.items()}


def likelihood_factor(answer, beta, scale=1.0):
    return math.exp(beta * ANSWER_STRENGTH[answer] * scale)


def update_weights_for_tag(weights, carriers, answer, beta, scale=1.0):
    """Return renormalised weights after `answer` about a tag carried by the ids in `carriers`."""
    k = likelihood_factor(answer, beta, scale)
    if k == 1.0:
        return dict(weights)
    inverse = 1.0 / k
    updated = {
        item_id: weight * (k if item_id in carriers else inverse)
        for item_id, weight in weights.items()
    }
    return normalize(updated)


def apply_reveal_penalty(weights, item_id, penalty):
    if item_id not in weights:
        return dict(weights)
    updated = dict(weights)
    updated[item_id] = updated[item_id] * penalty
    return normalize(updated)
