"""State reconciliation for change notifications (pure core, no I/O).

This module keeps the in-memory projection correct while change notifications
arrive from the persistent store. Notifications are delivered at-least-once,
may be duplicated and are unordered across entity types, so every transition
is addressed by identity and is safe to repeat.

Architecture:
- A change event is a plain dict {kind, entity_type, payload}
- apply_change() validates it and applies it to a ProjectionStore,
  returning a ReconcileOutcome describing what happened
- StateReconciler wraps a store, remembers which identities the change stream
  has touched and merges full-collection fetches without clobbering them
- The async session (sync.py) is the only caller in production; it feeds
  one event at a time so no locking is needed here

Per-identity state machine (independently per entity type):
- insert: add, or overwrite an existing entry (redelivery, last write wins)
- update: merge payload over the existing entry; synthesize it if the identity
  is unknown (update delivered before its insert) and the payload is a complete
  record, otherwise hold the fields until the insert or fetched record arrives
- delete: remove if present, otherwise no-op
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Set

from .projection import ProjectionSnapshot, ProjectionStore
from .types import ENTITY_TYPES
from .validation import InputSanitizer, ValidatedChangeEvent, validate_record

logger = logging.getLogger(__name__)

# entity type -> identity -> fields from updates that arrived before the record
PendingFields = Dict[str, Dict[int, Dict[str, Any]]]


@dataclass
class ReconcileOutcome:
    """Result of applying one change event."""

    entity_type: str
    identity: int
    kind: str
    # 'inserted' | 'replaced' | 'synthesized' | 'deferred' | 'deleted' | 'noop'
    action: str
    version: int
    reinterpreted_results: int = 0

    @property
    def changed(self) -> bool:
        return self.action not in ("noop", "deferred")


def _fold_held(
    entity_type: str, record: Dict[str, Any], held: Dict[str, Any]
) -> Dict[str, Any]:
    """Apply held update fields over a newly arrived full record."""
    try:
        return validate_record(entity_type, {**record, **held, "id": record["id"]})
    except ValueError:
        logger.warning(f"Dropping unusable held update for {entity_type}#{record['id']}")
        return record


def _results_for_event(store: ProjectionStore, event_id: int) -> int:
    return sum(1 for r in store.records("result") if r.get("event_id") == event_id)


def _check_scoring_mode_change(
    store: ProjectionStore, previous: Dict[str, Any] | None, record: Dict[str, Any]
) -> int:
    """Count results whose interpretation changes with this event record."""
    if previous is None:
        return 0
    old_mode = previous.get("scoring_mode")
    new_mode = record.get("scoring_mode")
    if old_mode == new_mode:
        return 0
    affected = _results_for_event(store, record["id"])
    if affected:
        logger.warning(
            f"Event {record['id']} scoring mode changed {old_mode} → {new_mode}; "
            f"{affected} existing results will be reinterpreted"
        )
    return affected


def _apply_transition(
    store: ProjectionStore,
    change: ValidatedChangeEvent,
    pending: PendingFields | None = None,
) -> ReconcileOutcome:
    """Apply one validated change to the store.

    `pending` holds partial updates for identities not yet in the store. When
    given, an incomplete update for an unknown identity is held there and
    folded into the identity's insert; without it such an update raises.

    Returns:
        ReconcileOutcome with the action taken and the store version after it
    """
    entity_type = change.entity_type
    identity = change.identity
    kind = change.kind
    previous = store.get(entity_type, identity)
    held = pending.setdefault(entity_type, {}) if pending is not None else {}
    reinterpreted = 0

    if kind == "delete":
        held.pop(identity, None)
        if store.remove(entity_type, identity):
            action = "deleted"
        else:
            action = "noop"

    elif kind == "insert":
        record = change.payload
        if identity in held:
            record = _fold_held(entity_type, record, held.pop(identity))
        if entity_type == "event":
            reinterpreted = _check_scoring_mode_change(store, previous, record)
        if previous == record:
            # exact redelivery
            action = "noop"
        else:
            store.put(entity_type, record)
            action = "replaced" if previous is not None else "inserted"

    elif kind == "update":
        if previous is None:
            fields = {**held.get(identity, {}), **change.payload}
            try:
                record = validate_record(entity_type, fields)
            except ValueError:
                if pending is None:
                    raise
                held[identity] = fields
                logger.info(f"Holding partial update for unknown {entity_type}#{identity}")
                return ReconcileOutcome(
                    entity_type=entity_type,
                    identity=identity,
                    kind=kind,
                    action="deferred",
                    version=store.version,
                )
            held.pop(identity, None)
        else:
            record = validate_record(entity_type, {**previous, **change.payload})
        if entity_type == "event":
            reinterpreted = _check_scoring_mode_change(store, previous, record)
        if previous is None:
            store.put(entity_type, record)
            action = "synthesized"
        elif previous == record:
            action = "noop"
        else:
            store.put(entity_type, record)
            action = "replaced"

    else:  # pragma: no cover - rejected by ValidatedChangeEvent
        raise ValueError(f"unsupported change kind: {kind!r}")

    logger.debug(f"{kind} {entity_type}#{identity}: {action} (v{store.version})")
    return ReconcileOutcome(
        entity_type=entity_type,
        identity=identity,
        kind=kind,
        action=action,
        version=store.version,
        reinterpreted_results=reinterpreted,
    )


def apply_change(
    store: ProjectionStore, change: Dict[str, Any], pending: PendingFields | None = None
) -> ReconcileOutcome:
    """Validate and apply a change notification to the projection store.

    Args:
        store: Projection store (mutated in place)
        change: Dict with kind, entity_type and payload; realtime-shaped
            dicts ({eventType, table, new, old}) are accepted too
        pending: Partial updates awaiting their insert (mutated in place)

    Returns:
        ReconcileOutcome

    Raises:
        ValueError: malformed change event or record
    """
    validated = InputSanitizer.validate_and_sanitize_change(change)
    return _apply_transition(store, validated, pending)


@dataclass
class StateReconciler:
    """Owns a ProjectionStore and applies change events to it."""

    store: ProjectionStore = field(default_factory=ProjectionStore)
    # identities that received a streamed change (including deletes), per entity type
    _touched: Dict[str, Set[int]] = field(
        default_factory=lambda: {entity_type: set() for entity_type in ENTITY_TYPES}
    )
    # partial updates for identities the projection has not seen yet
    _pending: PendingFields = field(
        default_factory=lambda: {entity_type: {} for entity_type in ENTITY_TYPES}
    )

    def apply(self, change: Dict[str, Any]) -> ReconcileOutcome:
        outcome = apply_change(self.store, change, self._pending)
        if outcome.action != "deferred":
            self._touched[outcome.entity_type].add(outcome.identity)
        return outcome

    def apply_batch(self, changes: Iterable[Dict[str, Any]]) -> List[ReconcileOutcome]:
        """Apply changes in order. Stops at the first malformed change (ValueError)."""
        return [self.apply(change) for change in changes]

    def load_snapshot(self, entity_type: str, records: Iterable[Dict[str, Any]]) -> int:
        """Merge a full-collection fetch into the projection.

        Identities the change stream already touched keep their streamed state
        (a streamed delete stays deleted); everything else comes from the fetch.
        Collection order follows the fetch, with streamed-only entries appended
        (streamed results are always appended). Held partial updates are folded
        into their fetched record. The touched set is cleared afterwards.

        Returns:
            Number of fetched records taken from the snapshot
        """
        if entity_type not in ENTITY_TYPES:
            raise ValueError(f"unknown entity type: {entity_type!r}")
        touched = self._touched[entity_type]
        merged: Dict[int, Dict[str, Any]] = {}
        taken = 0
        for raw in records:
            try:
                record = validate_record(entity_type, raw)
            except ValueError:
                # already logged by validate_record
                continue
            identity = record["id"]
            if identity in touched:
                current = self.store.get(entity_type, identity)
                # streamed results count as the most recently applied; appended below
                if current is not None and entity_type != "result":
                    merged[identity] = current
                continue
            held = self._pending[entity_type].pop(identity, None)
            if held is not None:
                record = _fold_held(entity_type, record, held)
            merged[identity] = record
            taken += 1
        for identity in self.store.ids(entity_type):
            if identity in touched and identity not in merged:
                current = self.store.get(entity_type, identity)
                if current is not None:
                    merged[identity] = current
        self.store.replace_all(entity_type, merged.values())
        # later streamed changes are ordinary transitions over the loaded state
        touched.clear()
        logger.info(
            f"Loaded {entity_type} snapshot: {taken} fetched, "
            f"{len(merged) - taken} kept from change stream"
        )
        return taken

    def snapshot(self) -> ProjectionSnapshot:
        return self.store.snapshot()
