"""Leaderboard ranking engine.

Single source of truth for leaderboard ordering across API/UI/export:
- Single event: filtered competitors sorted by the event's scoring mode;
  missing/unparsable results last; positions are 1-based and never shared.
- Aggregate ("ALL"): side-by-side matrix of every competitor's raw value per
  event. Scoring modes are not commensurable, so no composite score exists.
- Ties keep competitor insertion order (stable sort, no secondary key).
- Results pointing at unknown competitors/events are skipped silently.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping, Sequence, Union

from .comparators import MISSING, coerce_mode, parse_value, sort_key
from .projection import ProjectionSnapshot
from .types import ALL, ALL_EVENTS, ScoringMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankingFilter:
    """Category/gender filter; the ALL sentinel matches every value."""

    category: str = ALL
    gender: str = ALL

    def matches(self, competitor: Mapping[str, Any]) -> bool:
        if not _is_all(self.category):
            category = competitor.get("category")
            if not isinstance(category, str) or category.lower() != self.category.strip().lower():
                return False
        if not _is_all(self.gender):
            gender = competitor.get("gender")
            if not isinstance(gender, str) or gender.upper() != self.gender.strip().upper():
                return False
        return True


def _is_all(value: str | None) -> bool:
    return value is None or not str(value).strip() or str(value).strip().lower() == ALL.lower()


@dataclass(frozen=True)
class LeaderboardRow:
    position: int
    competitor_id: int
    competitor_name: str
    category: str | None
    gender: str | None
    # raw value as entered, or MISSING when the competitor has no result
    value: Any
    # parsed value under the event's mode; None for missing or unparsable
    numeric_value: int | None
    result_id: int | None = None

    @property
    def is_missing(self) -> bool:
        return self.numeric_value is None


@dataclass(frozen=True)
class Leaderboard:
    event_id: int
    event_name: str
    scoring_mode: ScoringMode
    rows: tuple[LeaderboardRow, ...]
    filter: RankingFilter


@dataclass(frozen=True)
class AggregateRow:
    competitor_id: int
    competitor_name: str
    category: str | None
    gender: str | None
    # event_id -> raw value or MISSING
    cells: Mapping[int, Any]


@dataclass(frozen=True)
class AggregateView:
    event_ids: tuple[int, ...]
    event_names: Mapping[int, str]
    rows: tuple[AggregateRow, ...]
    filter: RankingFilter


def _filtered_competitors(
    snapshot: ProjectionSnapshot, ranking_filter: RankingFilter
) -> list[Mapping[str, Any]]:
    # Insertion order of the competitor collection is the tie-break key.
    return [c for c in snapshot.competitors.values() if ranking_filter.matches(c)]


def _count_dangling(snapshot: ProjectionSnapshot, results: Sequence[Mapping[str, Any]]) -> int:
    return sum(
        1
        for r in results
        if r.get("competitor_id") not in snapshot.competitors
        or r.get("event_id") not in snapshot.events
    )


def compute_event_ranking(
    snapshot: ProjectionSnapshot,
    event_id: int,
    ranking_filter: RankingFilter | None = None,
) -> Leaderboard | None:
    """
    Rank filtered competitors for one event.

    Args:
      snapshot: projection snapshot (read only).
      event_id: event identity.
      ranking_filter: category/gender filter (default: everyone).

    Returns None when the event is unknown.
    """
    ranking_filter = ranking_filter or RankingFilter()
    event = snapshot.event(event_id)
    if event is None:
        logger.debug(f"Ranking requested for unknown event {event_id}")
        return None
    mode = coerce_mode(event.get("scoring_mode"))
    latest = snapshot.latest_results()

    entries: list[tuple[Mapping[str, Any], Mapping[str, Any] | None]] = []
    for competitor in _filtered_competitors(snapshot, ranking_filter):
        entries.append((competitor, latest.get((competitor["id"], event_id))))

    # list.sort is stable: equal keys keep competitor insertion order
    entries.sort(key=lambda entry: sort_key(entry[1]["value"] if entry[1] else MISSING, mode))

    rows = []
    for position, (competitor, result) in enumerate(entries, start=1):
        raw = result["value"] if result is not None else MISSING
        rows.append(
            LeaderboardRow(
                position=position,
                competitor_id=competitor["id"],
                competitor_name=competitor.get("name", ""),
                category=competitor.get("category"),
                gender=competitor.get("gender"),
                value=raw,
                numeric_value=parse_value(raw, mode),
                result_id=result["id"] if result is not None else None,
            )
        )

    dangling = _count_dangling(snapshot, snapshot.results_for_event(event_id))
    if dangling:
        logger.debug(f"Event {event_id}: skipped {dangling} results with unknown references")

    return Leaderboard(
        event_id=event_id,
        event_name=event.get("name", ""),
        scoring_mode=mode,
        rows=tuple(rows),
        filter=ranking_filter,
    )


def compute_aggregate_view(
    snapshot: ProjectionSnapshot,
    ranking_filter: RankingFilter | None = None,
) -> AggregateView:
    """Side-by-side matrix of every filtered competitor across every event.

    Rows follow competitor insertion order; columns follow event insertion order.
    """
    ranking_filter = ranking_filter or RankingFilter()
    event_ids = tuple(snapshot.events.keys())
    latest = snapshot.latest_results()

    rows = []
    for competitor in _filtered_competitors(snapshot, ranking_filter):
        cells = {}
        for event_id in event_ids:
            result = latest.get((competitor["id"], event_id))
            cells[event_id] = result["value"] if result is not None else MISSING
        rows.append(
            AggregateRow(
                competitor_id=competitor["id"],
                competitor_name=competitor.get("name", ""),
                category=competitor.get("category"),
                gender=competitor.get("gender"),
                cells=MappingProxyType(cells),
            )
        )

    dangling = _count_dangling(snapshot, list(snapshot.results.values()))
    if dangling:
        logger.debug(f"Aggregate view: skipped {dangling} results with unknown references")

    return AggregateView(
        event_ids=event_ids,
        event_names=MappingProxyType(
            {eid: snapshot.events[eid].get("name", "") for eid in event_ids}
        ),
        rows=tuple(rows),
        filter=ranking_filter,
    )


def rank(
    projection: Any,
    event_id: Union[int, str],
    ranking_filter: RankingFilter | None = None,
) -> Leaderboard | AggregateView | None:
    """
    Build the leaderboard for one event, or the aggregate view for "ALL".

    Args:
      projection: ProjectionSnapshot, or anything exposing snapshot()
        (ProjectionStore, StateReconciler, LeaderboardSession).
      event_id: event identity or "ALL".
      ranking_filter: category/gender filter.
    """
    snapshot = projection if isinstance(projection, ProjectionSnapshot) else projection.snapshot()
    if isinstance(event_id, str):
        if event_id.strip().upper() == ALL_EVENTS:
            return compute_aggregate_view(snapshot, ranking_filter)
        if not event_id.strip().isdigit():
            raise ValueError(f"event_id must be an event identity or {ALL_EVENTS!r}")
        event_id = int(event_id)
    return compute_event_ranking(snapshot, event_id, ranking_filter)
