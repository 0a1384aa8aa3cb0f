from dataclasses import dataclass, field
from enum import Enum

from catalog.snapshot import EvidenceClass, carries_tag, evidence_confidence
from engine_errors import DataQualityError
from inference.confidence import effective_confirm_threshold, passes_coverage_gate


class QuestionKind(str, Enum):
    EXPLORE_TAG = "EXPLORE_TAG"
    SOFT_CONFIRM = "SOFT_CONFIRM"
    HARD_CONFIRM = "HARD_CONFIRM"
    REVEAL = "REVEAL"


class FailReason(str, Enum):
    MAX_QUESTIONS = "MAX_QUESTIONS"
    REVEAL_MISSES = "REVEAL_MISSES"
    NO_USEFUL_QUESTIONS = "NO_USEFUL_QUESTIONS"
    EMPTY_POOL = "EMPTY_POOL"


# coverage distances closer than this count as a tie
TIE_PRECISION = 12


@dataclass(frozen=True)
class Question:
    kind: QuestionKind
    display_text: str
    tag_key: str = None
    item_id: str = None

    def as_dict(self):
        return {
            "kind": self.kind.value,
            "display_text": self.display_text,
            "tag_key": self.tag_key,
            "item_id": self.item_id,
        }


@dataclass(frozen=True)
class Decision:
    question: Question = None
    fail_reason: FailReason = None
    rationale: dict = field(default_factory=dict)

    @property
    def is_terminal(self):
        return self.question is None


@dataclass
class TagStats:
    tag: object
    count: int
    coverage: float
    discriminating_weight: float

    def ordering_key(self):
        return (
            round(abs(self.coverage - 0.5), TIE_PRECISION),
            self.tag.rank_order(),
            -self.discriminating_weight,
            self.tag.key,
        )


def tag_question_text(tag):
    if tag.question_text:
        return tag.question_text
    if tag.evidence_class is EvidenceClass.STRUCTURAL:
        return f"Does the character 「{tag.display_name}」 appear?"
    return f"Does 「{tag.display_name}」 appear?"


def reveal_question_text(item):
    return f"Is it 「{item.title}」?"


def reveal_question(item):
    return Question(kind=QuestionKind.REVEAL, display_text=reveal_question_text(item), item_id=item.item_id)


class QuestionSelector:
    """
    Decides the next step for a session, in priority order:
    question limit, reveal, confirm insertion, then explore.
    """

    def __init__(self, config):
        self.config = config

    def select(self, session):
        config = self.config
        active_ids = session.pool.active_ids()
        if not active_ids:
            return Decision(fail_reason=FailReason.EMPTY_POOL, rationale={"rule": "empty_pool"})

        if session.question_count >= config.max_questions:
            return Decision(
                fail_reason=FailReason.MAX_QUESTIONS,
                rationale={"rule": "max_questions", "question_count": session.question_count},
            )

        metrics = session.metrics
        leader_id = metrics.top1_item_id
        if metrics.confidence >= config.reveal_threshold and leader_id != session.blocked_reveal_item_id:
            return Decision(
                question=reveal_question(session.catalog.item(leader_id)),
                rationale={"rule": "reveal", "confidence": metrics.confidence, "item_id": leader_id},
            )

        stats = self.tag_stats(session, active_ids)
        subject_id = self.confirm_subject(session)
        if subject_id is None:
            return self.select_explore(session, stats, len(active_ids))

        if session.blocked_reveal_item_id is not None:
            # right after a reveal miss: pin down the runner-up before exploring again
            question = self.select_confirm(session, subject_id, stats, len(active_ids), hard_only=True)
            if question is not None:
                return Decision(
                    question=question,
                    rationale={"rule": "confirm_after_miss", "confidence": metrics.confidence, "item_id": subject_id},
                )

        if self.should_confirm(session):
            question = self.select_confirm(session, subject_id, stats, len(active_ids))
            if question is not None:
                return Decision(
                    question=question,
                    rationale={"rule": "confirm", "confidence": metrics.confidence, "item_id": subject_id},
                )

        return self.select_explore(session, stats, len(active_ids))

    def tag_stats(self, session, active_ids):
        catalog = session.catalog
        index = catalog.carrier_index(self.config.derived_confidence_threshold)
        weights = session.pool.weights
        active = set(active_ids)
        asked = set(session.asked_tag_keys)

        stats = {}
        for tag_key, carriers in index.items():
            if tag_key in asked:
                continue
            tag = catalog.tag(tag_key)
            active_carriers = active & carriers if len(carriers) > len(active) else carriers & active
            coverage = sum(weights[item_id] for item_id in active_carriers)
            discriminating = sum(evidence_confidence(catalog.item(item_id), tag) for item_id in active_carriers)
            stats[tag_key] = TagStats(
                tag=tag,
                count=len(active_carriers),
                coverage=coverage,
                discriminating_weight=discriminating,
            )
        return stats

    def confirm_subject(self, session):
        """Most probable item the player has not already rejected at a reveal."""
        rejected = set(session.rejected_item_ids)
        if session.blocked_reveal_item_id is not None:
            rejected.add(session.blocked_reveal_item_id)
        for item_id, _ in session.pool.ranked():
            if item_id not in rejected:
                return item_id
        return None

    def should_confirm(self, session):
        config = self.config
        if session.question_count + 1 in config.q_forced_indices:
            return True
        low, high = config.confidence_confirm_band
        confidence = session.metrics.confidence
        if not low <= confidence <= high:
            return False
        threshold = effective_confirm_threshold(len(session.pool), *config.effective_confirm_threshold_params)
        return session.metrics.effective_candidates <= threshold

    def select_confirm(self, session, subject_id, stats, active_count, hard_only=False):
        config = self.config
        subject = session.catalog.item(subject_id)
        floor = config.hard_confidence_min if hard_only else config.soft_confidence_min

        best = None
        best_key = None
        best_confidence = 0.0
        for tag_key in subject.tags:
            entry = stats.get(tag_key)
            if entry is None or entry.count >= active_count:
                continue
            if not carries_tag(subject, entry.tag, config.derived_confidence_threshold):
                continue
            confidence = evidence_confidence(subject, entry.tag)
            if confidence < floor:
                continue
            key = (round(abs(entry.coverage - 0.5), TIE_PRECISION), entry.tag.rank_order(), -confidence, tag_key)
            if best_key is None or key < best_key:
                best, best_key, best_confidence = entry, key, confidence

        if best is None:
            return None
        kind = QuestionKind.HARD_CONFIRM if best_confidence >= config.hard_confidence_min else QuestionKind.SOFT_CONFIRM
        return Question(kind=kind, display_text=tag_question_text(best.tag), tag_key=best.tag.key)

    def select_explore(self, session, stats, active_count):
        config = self.config
        splitting = [entry for entry in stats.values() if 0 < entry.count < active_count]

        eligible = [
            entry for entry in splitting
            if passes_coverage_gate(
                entry.count,
                active_count,
                config.min_coverage_mode,
                config.min_coverage_ratio,
                config.min_coverage_works,
                config.max_coverage_ratio,
            )
        ]
        if config.explore_p_value_band is not None:
            low, high = config.explore_p_value_band
            banded = [entry for entry in eligible if low <= entry.coverage <= high]
            if banded:
                eligible = banded

        prefer_high = (
            config.consecutive_no_for_high_p > 0
            and session.consecutive_no_count >= config.consecutive_no_for_high_p
        )
        if prefer_high:
            high_p = [entry for entry in eligible if entry.coverage >= 0.5]
            if high_p:
                eligible = high_p

        rule = "explore"
        if not eligible:
            eligible = splitting
            rule = "explore_fallback"
        if not eligible:
            raise DataQualityError(
                f"No untested tag splits the {active_count} active candidates "
                f"(confidence={session.metrics.confidence:.3f})"
            )

        best = min(eligible, key=TagStats.ordering_key)
        return Decision(
            question=Question(
                kind=QuestionKind.EXPLORE_TAG,
                display_text=tag_question_text(best.tag),
                tag_key=best.tag.key,
            ),
            rationale={
                "rule": rule,
                "tag_key": best.tag.key,
                "coverage": best.coverage,
                "eligible": len(eligible),
                "prefer_high_p": prefer_high,
            },
        )
