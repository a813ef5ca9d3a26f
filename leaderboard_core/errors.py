"""Error taxonomy for the leaderboard core.

- FetchFailure: initial load of a collection failed; recorded, never raised
- WriteFailure: the store rejected an insert/update/delete; raised to the caller
- Malformed values and dangling references are not errors: the comparator
  treats unparsable values as missing and the ranking skips unknown references
"""
from __future__ import annotations

from dataclasses import dataclass


@dataclass
class FetchFailure:
    """A collection whose initial fetch failed and was degraded to empty."""

    entity_type: str
    message: str | None = None


class WriteFailure(Exception):
    """A write rejected by the store (or refused before reaching it)."""

    def __init__(
        self,
        kind: str,
        message: str | None = None,
        *,
        entity_type: str | None = None,
        identity: int | None = None,
    ) -> None:
        self.kind = kind
        self.message = message
        self.entity_type = entity_type
        self.identity = identity
        super().__init__(f"{kind}: {message}" if message else kind)


__all__ = ["FetchFailure", "WriteFailure"]
