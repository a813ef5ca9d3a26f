from .comparators import MISSING, coerce_mode, compare, parse_value, sort_key
from .errors import FetchFailure, WriteFailure
from .memory import InMemoryChannel, InMemoryStore, create_local_session, seed_sample_data
from .projection import ProjectionSnapshot, ProjectionStore
from .ranking import (
    AggregateRow,
    AggregateView,
    Leaderboard,
    LeaderboardRow,
    RankingFilter,
    compute_aggregate_view,
    compute_event_ranking,
    rank,
)
from .reconciler import ReconcileOutcome, StateReconciler, apply_change
from .settings import Settings, configure_logging, get_settings
from .sync import ChangeChannel, LeaderboardSession, PersistentStore, SubscriptionHandle
from .types import (
    ALL,
    ALL_EVENTS,
    ChangeEvent,
    CompetitorRecord,
    EventRecord,
    ResultRecord,
    ScoringMode,
)
from .validation import InputSanitizer, ValidatedChangeEvent

__all__ = [
    "ALL",
    "ALL_EVENTS",
    "MISSING",
    "ChangeEvent",
    "CompetitorRecord",
    "EventRecord",
    "ResultRecord",
    "ScoringMode",
    "coerce_mode",
    "compare",
    "parse_value",
    "sort_key",
    "FetchFailure",
    "WriteFailure",
    "ProjectionSnapshot",
    "ProjectionStore",
    "ReconcileOutcome",
    "StateReconciler",
    "apply_change",
    "AggregateRow",
    "AggregateView",
    "Leaderboard",
    "LeaderboardRow",
    "RankingFilter",
    "compute_aggregate_view",
    "compute_event_ranking",
    "rank",
    "ChangeChannel",
    "LeaderboardSession",
    "PersistentStore",
    "SubscriptionHandle",
    "InMemoryChannel",
    "InMemoryStore",
    "create_local_session",
    "seed_sample_data",
    "Settings",
    "configure_logging",
    "get_settings",
    "InputSanitizer",
    "ValidatedChangeEvent",
]
