"""Type definitions for projected records and change notifications."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Literal, Optional, TypedDict


class ScoringMode(str, Enum):
    """How an event's raw result values are parsed and ordered."""

    TIME = "time"  # elapsed time, lower is better
    REPS = "reps"  # repetition count, higher is better
    WEIGHT = "weight"  # load lifted, higher is better


EntityType = Literal["competitor", "event", "result"]
ChangeKind = Literal["insert", "update", "delete"]

ENTITY_TYPES: tuple[EntityType, ...] = ("competitor", "event", "result")
CHANGE_KINDS: tuple[ChangeKind, ...] = ("insert", "update", "delete")

# Known categories; any other non-empty category string is accepted as-is.
CATEGORIES: tuple[str, ...] = ("RX", "Scaled", "Masters", "Teens")
GENDERS: tuple[str, ...] = ("M", "F")

# Filter sentinel matching every category/gender.
ALL = "All"
# Ranking sentinel selecting the aggregate (every event) view.
ALL_EVENTS = "ALL"


class CompetitorRecord(TypedDict, total=False):
    """A competitor entry in the projection."""
    id: int
    name: str
    category: str
    gender: Optional[str]
    age: Optional[int]


class EventRecord(TypedDict, total=False):
    """A scored event (workout)."""
    id: int
    name: str
    description: str
    scoring_mode: str  # ScoringMode value


class ResultRecord(TypedDict, total=False):
    """
    One competitor's raw result for one event.

    `value` keeps the raw string form ("7:32", "345"); parsing happens in
    the comparator library under the event's scoring mode.
    """
    id: int
    competitor_id: int
    event_id: int
    value: str


class ChangeEvent(TypedDict, total=False):
    """
    An out-of-band mutation notification from the persistent store.

    For deletes only `payload["id"]` is required.
    """
    kind: str  # 'insert' | 'update' | 'delete'
    entity_type: str  # 'competitor' | 'event' | 'result'
    payload: Dict[str, Any]

