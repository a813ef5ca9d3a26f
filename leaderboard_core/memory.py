"""In-memory persistent store and change channel.

Reference collaborators for local runs and tests. The store behaves like the
hosted table store the leaderboard was built against: it assigns identities,
rejects invalid writes and publishes a change notification after every
successful write.
"""
from __future__ import annotations

import logging
from copy import deepcopy
from typing import Any, Callable, Dict, List, Set

from .errors import WriteFailure
from .settings import Settings, get_settings
from .sync import LeaderboardSession
from .types import ENTITY_TYPES, ChangeEvent
from .validation import canonical_fields, validate_draft, validate_record

logger = logging.getLogger(__name__)


class InMemorySubscription:
    def __init__(self, channel: "InMemoryChannel", entity_type: str, callback: Callable) -> None:
        self.channel = channel
        self.entity_type = entity_type
        self.callback = callback
        self.active = True

    def cancel(self) -> None:
        """Stop delivery. Idempotent."""
        if not self.active:
            return
        self.active = False
        self.channel._remove(self)


class InMemoryChannel:
    """Fan-out of change notifications per entity type."""

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[InMemorySubscription]] = {
            entity_type: [] for entity_type in ENTITY_TYPES
        }

    def subscribe(self, entity_type: str, callback: Callable[[ChangeEvent], None]) -> InMemorySubscription:
        if entity_type not in self._subscribers:
            raise ValueError(f"unknown entity type: {entity_type!r}")
        handle = InMemorySubscription(self, entity_type, callback)
        self._subscribers[entity_type].append(handle)
        return handle

    def _remove(self, handle: InMemorySubscription) -> None:
        subscribers = self._subscribers.get(handle.entity_type, [])
        if handle in subscribers:
            subscribers.remove(handle)

    def subscriber_count(self, entity_type: str) -> int:
        return len(self._subscribers.get(entity_type, []))

    def publish(self, change: ChangeEvent) -> int:
        """Deliver a change to every active subscriber of its entity type.

        Returns the number of deliveries.
        """
        entity_type = change.get("entity_type")
        delivered = 0
        for handle in list(self._subscribers.get(entity_type, [])):
            if not handle.active:
                continue
            handle.callback(deepcopy(change))
            delivered += 1
        return delivered


class InMemoryStore:
    """Three identity-keyed tables with change publication."""

    def __init__(self, channel: InMemoryChannel | None = None) -> None:
        self.channel = channel
        self._tables: Dict[str, Dict[int, Dict[str, Any]]] = {
            entity_type: {} for entity_type in ENTITY_TYPES
        }
        # entity types whose fetch_all raises, for degraded-load scenarios
        self.failing_fetches: Set[str] = set()

    def _table(self, entity_type: str) -> Dict[int, Dict[str, Any]]:
        if entity_type not in self._tables:
            raise WriteFailure("unknown_entity_type", entity_type)
        return self._tables[entity_type]

    def _publish(self, kind: str, entity_type: str, payload: Dict[str, Any]) -> None:
        if self.channel is None:
            return
        self.channel.publish({"kind": kind, "entity_type": entity_type, "payload": deepcopy(payload)})

    async def fetch_all(self, entity_type: str) -> List[Dict[str, Any]]:
        if entity_type in self.failing_fetches:
            raise ConnectionError(f"{entity_type} table unavailable")
        return [deepcopy(r) for r in self._table(entity_type).values()]

    async def insert(self, entity_type: str, draft: Dict[str, Any]) -> Dict[str, Any]:
        table = self._table(entity_type)
        try:
            clean = validate_draft(entity_type, draft)
        except ValueError as e:
            raise WriteFailure("invalid_draft", str(e), entity_type=entity_type) from e
        identity = max(table.keys(), default=0) + 1
        record = {**clean, "id": identity}
        table[identity] = record
        logger.debug(f"Inserted {entity_type}#{identity}")
        self._publish("insert", entity_type, record)
        return deepcopy(record)

    async def update(
        self, entity_type: str, identity: int, fields: Dict[str, Any]
    ) -> Dict[str, Any]:
        table = self._table(entity_type)
        current = table.get(identity)
        if current is None:
            raise WriteFailure("not_found", f"{entity_type} {identity}", entity_type=entity_type, identity=identity)
        changes = canonical_fields(entity_type, fields)
        changes.pop("id", None)
        try:
            record = validate_record(entity_type, {**current, **changes})
        except ValueError as e:
            raise WriteFailure("invalid_fields", str(e), entity_type=entity_type, identity=identity) from e
        table[identity] = record
        self._publish("update", entity_type, record)
        return deepcopy(record)

    async def delete(self, entity_type: str, identity: int) -> bool:
        table = self._table(entity_type)
        if table.pop(identity, None) is None:
            raise WriteFailure("not_found", f"{entity_type} {identity}", entity_type=entity_type, identity=identity)
        self._publish("delete", entity_type, {"id": identity})
        return True


SAMPLE_COMPETITORS = [
    {"name": "John Smith", "category": "RX", "gender": "M", "age": 28},
    {"name": "Sarah Johnson", "category": "RX", "gender": "F", "age": 32},
    {"name": "Mike Wilson", "category": "Scaled", "gender": "M", "age": 35},
    {"name": "Emily Chen", "category": "Scaled", "gender": "F", "age": 29},
    {"name": "Robert James", "category": "Masters", "gender": "M", "age": 47},
]

SAMPLE_EVENTS = [
    {
        "name": "Open 25.1",
        "description": "21-15-9 of Thrusters and Pull-ups",
        "scoring_mode": "time",
    },
    {
        "name": "Open 25.2",
        "description": "AMRAP 12: 5 Deadlifts, 10 Box Jumps, 15 Wall Balls",
        "scoring_mode": "reps",
    },
]

# per event, in competitor order
SAMPLE_VALUES = [
    ["7:32", "8:15", "9:45", "10:12", "11:30"],
    ["345", "326", "287", "273", "265"],
]


async def seed_sample_data(store: InMemoryStore) -> None:
    """Load the demo roster: five athletes, two workouts, ten results."""
    competitors = [await store.insert("competitor", c) for c in SAMPLE_COMPETITORS]
    events = [await store.insert("event", e) for e in SAMPLE_EVENTS]
    for event, values in zip(events, SAMPLE_VALUES):
        for competitor, value in zip(competitors, values):
            await store.insert(
                "result",
                {"competitor_id": competitor["id"], "event_id": event["id"], "value": value},
            )
    logger.info("Seeded sample leaderboard data")


async def create_local_session(settings: Settings | None = None) -> LeaderboardSession:
    """Build a session over a fresh in-memory store (seeded if configured)."""
    settings = settings or get_settings()
    channel = InMemoryChannel()
    store = InMemoryStore(channel)
    if settings.seed_sample_data:
        await seed_sample_data(store)
    return LeaderboardSession(store, channel, settings=settings)
