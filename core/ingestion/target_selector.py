"""
Target selection.
Decides which targets of a catalogue snapshot still need processing.

Selection is a pure function of the snapshot: no I/O, no mutation, input order
preserved.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from config.constants import EMBEDDING_TABLES

from .slice_executor import ProcessingTarget


# Enrichment attributes counted per target by the catalogue
EMBEDDING = "embedding"
HIERARCHY = "hierarchy"
KEYWORDS = "keywords"


@dataclass
class TargetSnapshot:
    """
    Catalogue view of one target at selection time.

    ``total_items`` is the number of derived records (chunks, rows) the
    target currently owns; ``enriched`` counts how many of them carry each
    enrichment attribute.
    """
    target: ProcessingTarget
    total_items: int = 0
    enriched: Mapping[str, int] = field(default_factory=dict)
    category: Optional[str] = None

    def enriched_count(self, attribute: str) -> int:
        return int(self.enriched.get(attribute, 0))

    def missing(self, attribute: str) -> int:
        """Number of items lacking an attribute."""
        return max(0, self.total_items - self.enriched_count(attribute))

    def quality_score(self) -> int:
        """
        Weighted completeness score (0-100).

        Embeddings and hierarchy weigh 40 each, keywords 20.
        """
        if self.total_items <= 0:
            return 0
        weights = {EMBEDDING: 40, HIERARCHY: 40, KEYWORDS: 20}
        score = sum(
            weight * self.enriched_count(attr) / self.total_items
            for attr, weight in weights.items()
        )
        return int(round(score))


Predicate = Callable[[TargetSnapshot], bool]


def has_items() -> Predicate:
    return lambda snap: snap.total_items > 0


def has_no_items() -> Predicate:
    return lambda snap: snap.total_items <= 0


def lacks_enrichment(attribute: str) -> Predicate:
    """True when no item carries the attribute at all."""
    return lambda snap: snap.enriched_count(attribute) == 0


def missing_enrichment(attribute: str) -> Predicate:
    """True when at least one item lacks the attribute."""
    return lambda snap: snap.missing(attribute) > 0


def category_in(*categories: str) -> Predicate:
    wanted = set(categories)
    return lambda snap: (snap.category or snap.target.category) in wanted


def has_locator() -> Predicate:
    return lambda snap: bool(snap.target.locator)


def all_of(*predicates: Predicate) -> Predicate:
    return lambda snap: all(p(snap) for p in predicates)


def any_of(*predicates: Predicate) -> Predicate:
    return lambda snap: any(p(snap) for p in predicates)


class TargetSelector:
    """
    Filters a snapshot with a predicate.

    Usage:
        selector = TargetSelector(all_of(has_items(), lacks_enrichment(HIERARCHY)))
        targets = selector.select(snapshot)
    """

    def __init__(
        self,
        predicate: Predicate,
        prepare: Optional[Callable[[TargetSnapshot], ProcessingTarget]] = None,
    ):
        """
        Args:
            predicate: Inclusion test per snapshot entry
            prepare: Optional mapping from a selected entry to the target handed
                to the engine (defaults to the entry's own target)
        """
        self.predicate = predicate
        self.prepare = prepare

    def select(self, snapshot: Iterable[TargetSnapshot]) -> List[ProcessingTarget]:
        selected = []
        for entry in snapshot:
            if not self.predicate(entry):
                continue
            selected.append(self.prepare(entry) if self.prepare else entry.target)
        return selected

    def __call__(self, snapshot: Iterable[TargetSnapshot]) -> List[ProcessingTarget]:
        return self.select(snapshot)


def reingestion_selector(categories: Iterable[str] = ("law",)) -> TargetSelector:
    """Sources that were chunked but never got a structural hierarchy."""
    return TargetSelector(all_of(
        has_items(),
        lacks_enrichment(HIERARCHY),
        category_in(*categories),
    ))


def embedding_backfill_selector() -> TargetSelector:
    """Tables with rows still lacking an embedding; expected_units = rows left."""
    def prepare(entry: TargetSnapshot) -> ProcessingTarget:
        target = entry.target
        return replace(
            target,
            label=target.label or EMBEDDING_TABLES.get(target.target_id, ""),
            expected_units=entry.missing(EMBEDDING),
        )

    return TargetSelector(missing_enrichment(EMBEDDING), prepare=prepare)


def missing_chunks_selector(categories: Optional[Iterable[str]] = None) -> TargetSelector:
    """Documents stored somewhere but with no chunk at all."""
    predicates = [has_no_items(), has_locator()]
    if categories:
        predicates.append(category_in(*categories))
    return TargetSelector(all_of(*predicates))


def load_snapshot(rows: Iterable[Dict[str, Any]]) -> List[TargetSnapshot]:
    """
    Build a snapshot from plain dicts (JSON export of the catalogue).

    Expected keys: ``id``, and optionally ``locator``, ``label``, ``category``,
    ``total_items``, ``enriched`` (mapping) and ``metadata``.
    """
    snapshot = []
    for row in rows:
        category = row.get("category")
        target = ProcessingTarget(
            target_id=str(row["id"]),
            locator=row.get("locator"),
            label=row.get("label") or "",
            category=category,
            metadata=dict(row.get("metadata") or {}),
        )
        snapshot.append(TargetSnapshot(
            target=target,
            total_items=int(row.get("total_items") or 0),
            enriched=dict(row.get("enriched") or {}),
            category=category,
        ))
    return snapshot
