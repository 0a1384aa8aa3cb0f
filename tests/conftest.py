import pytest

from catalog.snapshot import CatalogSnapshot, EvidenceClass, Item, Tag
from elimination_engine import EliminationEngine
from engine_config import EngineConfig


def _small_catalog(popularity=None):
    popularity = popularity or {}
    tags = [
        Tag("sea", "Sea"),
        Tag("night", "Night"),
        Tag("mountain", "Mountain"),
        Tag("day", "Daytime"),
        Tag("space", "Space"),
        Tag("robot", "Robo", evidence_class=EvidenceClass.STRUCTURAL),
        Tag("cat", "Cat", evidence_class=EvidenceClass.DERIVED, rank="A"),
        Tag("dog", "Dog", evidence_class=EvidenceClass.DERIVED, rank="B"),
    ]
    rows = [
        ("i1", "Moon Harbor", "Aki", "HAND", {"sea": None, "night": None, "cat": 0.9}),
        ("i2", "Sun Valley", "Aki", "HAND", {"mountain": None, "day": None, "dog": 0.7}),
        ("i3", "Star Drift", "Ben", "AI", {"space": None, "night": None, "robot": None}),
        ("i4", "River Song", "Cho", "HAND", {"sea": None, "day": None, "cat": 0.3}),
        ("i5", "Iron Garden", "Dee", "AI", {"mountain": None, "night": None, "robot": None}),
        ("i6", "Paper Bird", "", "UNKNOWN", {"day": None, "dog": 0.95, "space": None}),
    ]
    items = [
        Item(
            item_id=item_id,
            title=title,
            author=author,
            classification=classification,
            popularity_base=popularity.get(item_id, 0.0),
            tags=item_tags,
        )
        for item_id, title, author, classification, item_tags in rows
    ]
    return CatalogSnapshot(items, tags, version="small")


def _ghost_catalog(extra_tags=False):
    tags = [Tag("ghost", "Ghost"), Tag("common", "Common")]
    rows = {
        "A": {"ghost": None, "common": None},
        "B": {"common": None},
        "C": {"common": None},
        "D": {"common": None},
    }
    if extra_tags:
        tags.append(Tag("pale", "Pale"))
        rows["B"]["pale"] = None
        rows["C"]["pale"] = None
    items = [
        Item(item_id=item_id, title=f"Item {item_id}", author=f"author-{item_id}", tags=item_tags)
        for item_id, item_tags in rows.items()
    ]
    return CatalogSnapshot(items, tags, version="ghost")


def _binary_catalog(n_items=100, bits=7):
    tags = [Tag(f"bit{bit}", f"Bit {bit}") for bit in range(bits)]
    items = []
    for index in range(n_items):
        item_tags = {f"bit{bit}": None for bit in range(bits) if index & (1 << bit)}
        items.append(
            Item(
                item_id=f"w{index:03d}",
                title=f"Work {index}",
                author=f"author{index % 10}",
                classification="AI" if index % 2 else "HAND",
                tags=item_tags,
            )
        )
    return CatalogSnapshot(items, tags, version="binary")


@pytest.fixture
def small_catalog():
    return _small_catalog()


@pytest.fixture
def small_catalog_factory():
    return _small_catalog


@pytest.fixture
def ghost_catalog():
    return _ghost_catalog()


@pytest.fixture
def ghost_catalog_factory():
    return _ghost_catalog


@pytest.fixture
def binary_catalog():
    return _binary_catalog()


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def small_engine(small_catalog, config):
    return EliminationEngine(small_catalog, config=config)


@pytest.fixture
def ghost_engine(ghost_catalog, config):
    return EliminationEngine(ghost_catalog, config=config)
