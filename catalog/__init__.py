from .backend import FakeCatalogBackend, fetch_snapshot, load_snapshot_file, parse_snapshot
from .persistence import InMemoryPersistence, JsonlPersistence, NullPersistence
from .snapshot import AiGateChoice, CatalogSnapshot, EvidenceClass, Item, Tag, carries_tag, evidence_confidence

__all__ = [
    "AiGateChoice",
    "CatalogSnapshot",
    "EvidenceClass",
    "FakeCatalogBackend",
    "InMemoryPersistence",
    "Item",
    "JsonlPersistence",
    "NullPersistence",
    "Tag",
    "carries_tag",
    "evidence_confidence",
    "fetch_snapshot",
    "load_snapshot_file",
    "parse_snapshot",
]
