"""Live synchronization between the persistent store and the projection.

LeaderboardSession is the single writer of the projection:
- subscribes to change notifications for the three entity types
- fetches each collection once, as independent tasks
- funnels both into one asyncio.Queue consumed by a single apply task, so a
  "replace with fetched snapshot" never interleaves with an incremental change

Reads (snapshot(), rank()) never block the apply path and only ever see
completed applications.

Writes go to the store and never touch the projection directly: the store's
change notification is what updates the local state.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Protocol, Union

from .comparators import coerce_mode
from .errors import FetchFailure, WriteFailure
from .projection import ProjectionSnapshot
from .ranking import AggregateView, Leaderboard, RankingFilter, rank
from .reconciler import StateReconciler
from .settings import Settings, configure_logging, get_settings
from .types import ENTITY_TYPES, ChangeEvent
from .validation import canonical_fields, validate_draft, validate_record

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], None]
SnapshotListener = Callable[[ProjectionSnapshot], None]


class SubscriptionHandle(Protocol):
    def cancel(self) -> None:
        ...


class ChangeChannel(Protocol):
    def subscribe(self, entity_type: str, callback: ChangeCallback) -> SubscriptionHandle:
        ...


class PersistentStore(Protocol):
    async def fetch_all(self, entity_type: str) -> List[Dict[str, Any]]:
        ...

    async def insert(self, entity_type: str, draft: Dict[str, Any]) -> Dict[str, Any] | None:
        ...

    async def update(
        self, entity_type: str, identity: int, fields: Dict[str, Any]
    ) -> Dict[str, Any] | None:
        ...

    async def delete(self, entity_type: str, identity: int) -> bool:
        ...


class LeaderboardSession:
    """Owns the apply queue, subscriptions and fetch tasks for one projection."""

    def __init__(
        self,
        store: PersistentStore,
        channel: ChangeChannel,
        *,
        reconciler: StateReconciler | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.channel = channel
        self.reconciler = reconciler or StateReconciler()
        self.settings = settings or get_settings()
        self.fetch_failures: List[FetchFailure] = []
        self.skipped_changes = 0
        self._queue: asyncio.Queue | None = None
        # notifications that arrived while a bounded queue was full, in order
        self._backlog: Deque[tuple] = deque()
        self._backlog_task: asyncio.Task | None = None
        self._subscriptions: List[SubscriptionHandle] = []
        self._tasks: List[asyncio.Task] = []
        self._listeners: List[SnapshotListener] = []
        self._loaded_types: set[str] = set()
        self._loaded = asyncio.Event()
        self._started = False
        self._closed = False

    # ---------------------------------------------------------------- lifecycle

    async def start(self) -> None:
        """Subscribe to every entity type, then start the fetch and apply tasks."""
        if self._started:
            raise RuntimeError("session already started")
        if self._closed:
            raise RuntimeError("session is closed")
        self._started = True
        configure_logging(self.settings)
        self._queue = asyncio.Queue(maxsize=self.settings.queue_maxsize)

        # Subscribe before fetching so no change between fetch and subscribe is lost.
        for entity_type in ENTITY_TYPES:
            handle = self.channel.subscribe(entity_type, self._on_change)
            self._subscriptions.append(handle)

        self._tasks.append(asyncio.create_task(self._apply_loop(), name="leaderboard-apply"))
        for entity_type in ENTITY_TYPES:
            self._tasks.append(
                asyncio.create_task(self._fetch(entity_type), name=f"leaderboard-fetch-{entity_type}")
            )
        logger.info("Leaderboard session started")

    async def close(self) -> None:
        """Cancel subscriptions and background tasks. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        for handle in self._subscriptions:
            handle.cancel()
        self._subscriptions.clear()
        self._backlog.clear()
        tasks = list(self._tasks)
        if self._backlog_task is not None:
            tasks.append(self._backlog_task)
            self._backlog_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Leaderboard session closed")

    async def __aenter__(self) -> "LeaderboardSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def loaded(self) -> bool:
        return self._loaded.is_set()

    async def wait_until_loaded(self) -> None:
        """Wait until every collection's initial fetch has been applied (or degraded)."""
        await self._loaded.wait()

    async def drain(self) -> None:
        """Wait until every queued fetch result and change has been applied."""
        if self._queue is None:
            return
        while True:
            if self._backlog_task is not None and not self._backlog_task.done():
                await self._backlog_task
            await self._queue.join()
            if not self._backlog:
                return

    # ---------------------------------------------------------------- inbound

    def _on_change(self, change: ChangeEvent) -> None:
        # called by the transport; enqueue only, the apply task does the work
        if self._closed or self._queue is None:
            return
        item = ("change", change)
        if not self._backlog:
            try:
                self._queue.put_nowait(item)
                return
            except asyncio.QueueFull:
                logger.warning("Apply queue full, holding notifications in backlog")
        self._backlog.append(item)
        if self._backlog_task is None or self._backlog_task.done():
            self._backlog_task = asyncio.get_running_loop().create_task(
                self._flush_backlog(), name="leaderboard-backlog"
            )

    async def _flush_backlog(self) -> None:
        assert self._queue is not None
        while self._backlog:
            await self._queue.put(self._backlog[0])
            self._backlog.popleft()

    async def _fetch(self, entity_type: str) -> None:
        timeout = self.settings.fetch_timeout or None
        try:
            records = await asyncio.wait_for(self.store.fetch_all(entity_type), timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Initial fetch of {entity_type} failed, starting empty: {e!r}")
            self.fetch_failures.append(FetchFailure(entity_type=entity_type, message=str(e) or repr(e)))
            records = []
        assert self._queue is not None
        await self._queue.put(("snapshot", entity_type, list(records or [])))

    async def _apply_loop(self) -> None:
        assert self._queue is not None
        while True:
            item = await self._queue.get()
            try:
                self._handle(item)
            except ValueError as e:
                # malformed notification: already logged by validation, skip it
                self.skipped_changes += 1
                logger.warning(f"Skipping unusable {item[0]}: {e}")
            except Exception:
                # the apply task must outlive any single bad item
                self.skipped_changes += 1
                logger.exception(f"Unexpected error applying {item[0]}")
            finally:
                self._queue.task_done()

    def _handle(self, item: tuple) -> None:
        if item[0] == "change":
            outcome = self.reconciler.apply(item[1])
            changed = outcome.changed
        else:
            _, entity_type, records = item
            self.reconciler.load_snapshot(entity_type, records)
            self._loaded_types.add(entity_type)
            if self._loaded_types.issuperset(ENTITY_TYPES):
                self._loaded.set()
            changed = True
        if changed:
            self._notify()

    # ---------------------------------------------------------------- readers

    def add_listener(self, listener: SnapshotListener) -> Callable[[], None]:
        """Call `listener(snapshot)` after every applied change; returns an unsubscribe."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.reconciler.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Snapshot listener failed")

    def snapshot(self) -> ProjectionSnapshot:
        return self.reconciler.snapshot()

    def default_filter(self) -> RankingFilter:
        return RankingFilter(
            category=self.settings.default_category, gender=self.settings.default_gender
        )

    def rank(
        self, event_id: Union[int, str], ranking_filter: RankingFilter | None = None
    ) -> Leaderboard | AggregateView | None:
        return rank(self.snapshot(), event_id, ranking_filter or self.default_filter())

    # ---------------------------------------------------------------- writes

    async def _write(
        self,
        entity_type: str,
        op: Callable[[], Awaitable[Any]],
        *,
        identity: int | None = None,
    ) -> Any:
        try:
            written = await op()
        except WriteFailure:
            raise
        except Exception as e:
            logger.warning(f"Write to {entity_type} failed: {e!r}")
            raise WriteFailure(
                "store_error", str(e) or repr(e), entity_type=entity_type, identity=identity
            ) from e
        if written is None or written is False:
            raise WriteFailure(
                "rejected", "store returned no record", entity_type=entity_type, identity=identity
            )
        return written

    async def _insert(self, entity_type: str, draft: Dict[str, Any]) -> Dict[str, Any]:
        try:
            clean = validate_draft(entity_type, draft)
        except ValueError as e:
            raise WriteFailure("invalid_draft", str(e), entity_type=entity_type) from e
        return await self._write(entity_type, lambda: self.store.insert(entity_type, clean))

    async def _update(
        self, entity_type: str, identity: int, fields: Dict[str, Any]
    ) -> Dict[str, Any]:
        clean = canonical_fields(entity_type, fields)
        clean.pop("id", None)
        known = self.reconciler.store.get(entity_type, identity)
        if known is not None:
            try:
                merged = validate_record(entity_type, {**known, **clean})
            except ValueError as e:
                raise WriteFailure(
                    "invalid_fields", str(e), entity_type=entity_type, identity=identity
                ) from e
            clean = {k: merged[k] for k in clean if k in merged}
        return await self._write(
            entity_type, lambda: self.store.update(entity_type, identity, clean), identity=identity
        )

    async def add_competitor(self, draft: Dict[str, Any]) -> Dict[str, Any]:
        return await self._insert("competitor", draft)

    async def update_competitor(self, identity: int, fields: Dict[str, Any]) -> Dict[str, Any]:
        return await self._update("competitor", identity, fields)

    async def add_event(self, draft: Dict[str, Any]) -> Dict[str, Any]:
        return await self._insert("event", draft)

    async def update_event(self, identity: int, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Edit an event. Scoring-mode changes are refused once results exist
        (when `lock_scoring_mode` is set), since they would reinterpret them."""
        clean = canonical_fields("event", fields)
        if self.settings.lock_scoring_mode and "scoring_mode" in clean:
            snapshot = self.snapshot()
            event = snapshot.event(identity)
            try:
                new_mode = coerce_mode(clean["scoring_mode"])
            except ValueError as e:
                raise WriteFailure("invalid_fields", str(e), entity_type="event", identity=identity) from e
            if (
                event is not None
                and coerce_mode(event.get("scoring_mode")) is not new_mode
                and snapshot.results_for_event(identity)
            ):
                raise WriteFailure(
                    "scoring_mode_locked",
                    f"event {identity} already has results",
                    entity_type="event",
                    identity=identity,
                )
        return await self._update("event", identity, clean)

    async def record_result(
        self, competitor_id: int, event_id: int, value: Union[str, int]
    ) -> Dict[str, Any]:
        """Insert or update the competitor's result for an event."""
        existing = self.snapshot().latest_results().get((competitor_id, event_id))
        if existing is not None:
            return await self._update("result", existing["id"], {"value": value})
        return await self._insert(
            "result", {"competitor_id": competitor_id, "event_id": event_id, "value": value}
        )

    async def update_result(self, identity: int, fields: Dict[str, Any]) -> Dict[str, Any]:
        return await self._update("result", identity, fields)

    async def delete_result(self, identity: int) -> bool:
        return await self._write(
            "result", lambda: self.store.delete("result", identity), identity=identity
        )
