import math
import threading
from dataclasses import dataclass, field, replace
from enum import Enum


class EvidenceClass(str, Enum):
    OFFICIAL = "OFFICIAL"
    STRUCTURAL = "STRUCTURAL"
    DERIVED = "DERIVED"


class AiGateChoice(str, Enum):
    AI = "AI"
    HAND = "HAND"
    DONT_CARE = "DONT_CARE"


CERTAIN_CLASSES = {EvidenceClass.OFFICIAL, EvidenceClass.STRUCTURAL}
RANK_ORDER = {"A": 1, "B": 2, "C": 3}


@dataclass(frozen=True)
class Tag:
    key: str
    display_name: str
    evidence_class: EvidenceClass = EvidenceClass.OFFICIAL
    rank: str = None
    question_text: str = None

    @property
    def is_certain(self):
        return self.evidence_class in CERTAIN_CLASSES

    def rank_order(self):
        # certain tags outrank every derived rank; unranked derived tags come last
        if self.is_certain:
            return 0
        return RANK_ORDER.get(self.rank, len(RANK_ORDER) + 1)


@dataclass(frozen=True)
class Item:
    item_id: str
    title: str
    author: str = ""
    popularity_base: float = 0.0
    popularity_play_bonus: float = 0.0
    classification: str = "UNKNOWN"
    tags: dict = field(default_factory=dict)

    @property
    def popularity(self):
        return self.popularity_base + self.popularity_play_bonus


def carries_tag(item, tag, derived_confidence_threshold):
    if tag.key not in item.tags:
        return False
    if tag.is_certain:
        return True
    confidence = item.tags[tag.key]
    if confidence is None:
        return True
    return float(confidence) >= derived_confidence_threshold


def evidence_confidence(item, tag):
    """Confidence that `item` carries `tag`: 1.0 for certain evidence, the stored value for DERIVED."""
    if tag.key not in item.tags:
        return 0.0
    confidence = item.tags[tag.key]
    if tag.is_certain or confidence is None:
        return 1.0
    return float(confidence)


def matches_ai_gate(item, choice):
    choice = AiGateChoice(choice)
    if choice is AiGateChoice.DONT_CARE:
        return True
    return item.classification == choice.value


class CatalogSnapshot:
    """Immutable, shareable view of the catalog. Refreshed only between runs."""

    def __init__(self, items, tags, version=""):
        self.items = {item.item_id: item for item in items}
        self.tags = {tag.key: tag for tag in tags}
        self.version = version
        self._carrier_index = {}
        self._index_lock = threading.Lock()

        for item in self.items.values():
            for tag_key in item.tags:
                if tag_key not in self.tags:
                    raise ValueError(f"Item {item.item_id!r} references unknown tag {tag_key!r}")

    def __len__(self):
        return len(self.items)

    def item(self, item_id):
        return self.items[item_id]

    def tag(self, tag_key):
        return self.tags[tag_key]

    def carrier_index(self, derived_confidence_threshold):
        """tag_key -> frozenset of item ids that carry the tag at this threshold."""
        threshold = float(derived_confidence_threshold)
        with self._index_lock:
            index = self._carrier_index.get(threshold)
            if index is None:
                carriers = {key: set() for key in self.tags}
                for item in self.items.values():
                    for tag_key in item.tags:
                        if carries_tag(item, self.tags[tag_key], threshold):
                            carriers[tag_key].add(item.item_id)
                index = {key: frozenset(ids) for key, ids in carriers.items()}
                self._carrier_index[threshold] = index
        return index

    def load_candidate_pool(self, ai_gate_choice, alpha):
        """
        Initial (unnormalised) weights for every item passing the AI gate.

        Weights are exp(alpha * popularity) shifted by the largest exponent, so
        the leader sits at 1.0 and large popularity values cannot overflow.
        """
        log_priors = {
            item.item_id: alpha * item.popularity
            for item in self.items.values()
            if matches_ai_gate(item, ai_gate_choice)
        }
        if not log_priors:
            return {}
        peak = max(log_priors.values())
        return {item_id: math.exp(value - peak) for item_id, value in log_priors.items()}

    def with_play_bonuses(self, bonuses):
        items = []
        for item in self.items.values():
            bonus = bonuses.get(item.item_id, 0.0)
            if bonus:
                item = replace(item, popularity_play_bonus=item.popularity_play_bonus + bonus)
            items.append(item)
        return CatalogSnapshot(items, self.tags.values(), version=self.version)
