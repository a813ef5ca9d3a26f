"""In-memory projection of the three entity collections.

The store is the only owner of the collections. Readers get an immutable
ProjectionSnapshot; nothing outside the reconciler writes here.

Ordering:
- competitors keep their first-insertion position across updates; this order
  is the ranking tie-break key
- results move to the end every time they are applied, so iteration order is
  "least recently applied first"
- events keep first-insertion order (aggregate column order)
"""
from __future__ import annotations

import logging
from copy import deepcopy
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping

from .types import ENTITY_TYPES, CompetitorRecord, EventRecord, ResultRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectionSnapshot:
    """Point-in-time, read-only view of the projection."""

    competitors: Mapping[int, CompetitorRecord]
    events: Mapping[int, EventRecord]
    results: Mapping[int, ResultRecord]
    version: int = 0

    def competitor(self, competitor_id: int) -> CompetitorRecord | None:
        return self.competitors.get(competitor_id)

    def event(self, event_id: int) -> EventRecord | None:
        return self.events.get(event_id)

    def results_for_event(self, event_id: int) -> List[ResultRecord]:
        return [r for r in self.results.values() if r.get("event_id") == event_id]

    def results_for_competitor(self, competitor_id: int) -> List[ResultRecord]:
        return [r for r in self.results.values() if r.get("competitor_id") == competitor_id]

    def latest_results(self) -> Dict[tuple[int, int], ResultRecord]:
        """Map (competitor_id, event_id) → most recently applied result.

        Stale duplicates for the same pair (e.g. left behind by a failed delete)
        are shadowed by the later record.
        """
        latest: Dict[tuple[int, int], ResultRecord] = {}
        for record in self.results.values():
            latest[(record["competitor_id"], record["event_id"])] = record
        return latest


@dataclass
class ProjectionStore:
    """Identity-keyed collections for competitors, events and results."""

    _collections: Dict[str, Dict[int, Dict[str, Any]]] = field(
        default_factory=lambda: {entity_type: {} for entity_type in ENTITY_TYPES}
    )
    version: int = 0
    _snapshot: ProjectionSnapshot | None = field(default=None, repr=False)

    def _collection(self, entity_type: str) -> Dict[int, Dict[str, Any]]:
        try:
            return self._collections[entity_type]
        except KeyError:
            raise ValueError(f"unknown entity type: {entity_type!r}") from None

    def get(self, entity_type: str, identity: int) -> Dict[str, Any] | None:
        record = self._collection(entity_type).get(identity)
        return deepcopy(record) if record is not None else None

    def contains(self, entity_type: str, identity: int) -> bool:
        return identity in self._collection(entity_type)

    def ids(self, entity_type: str) -> List[int]:
        return list(self._collection(entity_type).keys())

    def count(self, entity_type: str) -> int:
        return len(self._collection(entity_type))

    def records(self, entity_type: str) -> Iterator[Dict[str, Any]]:
        for record in self._collection(entity_type).values():
            yield deepcopy(record)

    def put(self, entity_type: str, record: Dict[str, Any]) -> None:
        """Insert or replace the record with the same identity."""
        collection = self._collection(entity_type)
        identity = record["id"]
        if entity_type == "result":
            # most recently applied result goes last
            collection.pop(identity, None)
        collection[identity] = deepcopy(record)
        self._bump()

    def remove(self, entity_type: str, identity: int) -> bool:
        removed = self._collection(entity_type).pop(identity, None) is not None
        if removed:
            self._bump()
        return removed

    def replace_all(self, entity_type: str, records: Iterable[Dict[str, Any]]) -> None:
        """Swap a whole collection; later duplicates of an identity win."""
        fresh: Dict[int, Dict[str, Any]] = {}
        for record in records:
            identity = record["id"]
            if entity_type == "result":
                fresh.pop(identity, None)
            fresh[identity] = deepcopy(record)
        self._collections[entity_type] = fresh
        self._bump()

    def _bump(self) -> None:
        self.version += 1
        self._snapshot = None

    def snapshot(self) -> ProjectionSnapshot:
        """Return a consistent read-only copy; cached until the next write."""
        if self._snapshot is None:
            frozen = {
                entity_type: MappingProxyType(
                    {k: MappingProxyType(deepcopy(v)) for k, v in collection.items()}
                )
                for entity_type, collection in self._collections.items()
            }
            self._snapshot = ProjectionSnapshot(
                competitors=frozen["competitor"],
                events=frozen["event"],
                results=frozen["result"],
                version=self.version,
            )
            logger.debug(
                f"Projection snapshot v{self.version}: "
                f"{len(frozen['competitor'])} competitors, "
                f"{len(frozen['event'])} events, {len(frozen['result'])} results"
            )
        return self._snapshot
