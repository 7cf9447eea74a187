"""Activation tracking - which lorebook entries the model was recently shown.

The tracker is a per-story ledger keyed by entry id. Each retrieval that
injects an entry records it at the current story position; the entry's
weight then decays turn by turn so recently seen lore keeps surfacing for
continuity even when its keywords are no longer in the text window.
"""

import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

# How many turns an entry of each type stays "sticky" after being seen.
# Broad concepts linger longest; items and events fade quickly.
STICKINESS_BY_TYPE: dict[str, int] = {
    "concept": 5,
    "faction": 4,
    "character": 3,
    "location": 3,
    "event": 2,
    "item": 2,
}
DEFAULT_STICKINESS = 3


def stickiness_for(entry_type: str | None) -> int:
    """Return the stickiness window for an entry type."""
    if entry_type is None:
        return DEFAULT_STICKINESS
    return STICKINESS_BY_TYPE.get(entry_type, DEFAULT_STICKINESS)


def decay(turns_since: int, stickiness: int) -> float:
    """Linear decay from 1.0 at the turn seen to 0.0 after the window."""
    if turns_since <= 0:
        return 1.0
    return max(0.0, 1.0 - turns_since / (stickiness + 1))


@dataclass
class ActivationRecord:
    """When an entry was last injected and its weight at the current position."""

    last_seen_position: int
    decayed_weight: float = 1.0
    stickiness: int = DEFAULT_STICKINESS


class ActivationTracker:
    """Story-scoped decay/boost ledger for lorebook entries.

    ``current_position`` never moves backwards through ``set_position`` or
    ``record``; only ``restore`` and ``clear`` reset it, because rollback
    has to undo what the model was reminded about during a discarded turn.
    """

    def __init__(self, story_id: str | None = None) -> None:
        self.story_id = story_id
        self._records: dict[str, ActivationRecord] = {}
        self._position = 0

    @property
    def current_position(self) -> int:
        """Story position the weights are computed against."""
        return self._position

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._records

    def set_position(self, position: int) -> None:
        """Advance the tracker to a story position and refresh all weights.

        Positions lower than the current one are ignored.
        """
        if position < self._position:
            logger.warning(
                "Ignoring activation position regression (%d < %d)", position, self._position
            )
            return
        if position == self._position:
            return
        self._position = position
        for record in self._records.values():
            record.decayed_weight = decay(position - record.last_seen_position, record.stickiness)

    def record(self, entry_id: str, position: int, entry_type: str | None = None) -> None:
        """Mark an entry as seen at a position.

        Args:
            entry_id: Lorebook entry id.
            position: Story position (entry count) at which it was injected.
            entry_type: Lorebook entry type, used to pick the decay window.
        """
        self.set_position(position)
        seen_at = max(position, self._position)
        self._records[entry_id] = ActivationRecord(
            last_seen_position=seen_at,
            decayed_weight=1.0,
            stickiness=stickiness_for(entry_type),
        )
        logger.debug("Activation recorded: %s at position %d", entry_id, seen_at)

    def get(self, entry_id: str) -> ActivationRecord | None:
        """Return the raw record for an entry, if any."""
        return self._records.get(entry_id)

    def weight(self, entry_id: str) -> float:
        """Decayed activation weight of an entry at the current position."""
        record = self._records.get(entry_id)
        if record is None:
            return 0.0
        return decay(self._position - record.last_seen_position, record.stickiness)

    def active_entries(self, threshold: float) -> dict[str, float]:
        """Entry ids whose weight exceeds a threshold, mapped to their weight."""
        return {
            entry_id: weight
            for entry_id in self._records
            if (weight := self.weight(entry_id)) > threshold
        }

    def prune(self, max_age: int) -> int:
        """Drop records not seen within ``max_age`` positions.

        Returns:
            Number of records removed.
        """
        stale = [
            entry_id
            for entry_id, record in self._records.items()
            if self._position - record.last_seen_position > max_age
        ]
        for entry_id in stale:
            del self._records[entry_id]
        if stale:
            logger.debug("Pruned %d stale activation records", len(stale))
        return len(stale)

    def clear(self) -> None:
        """Forget every record and reset the position."""
        self._records.clear()
        self._position = 0

    def snapshot(self) -> dict[str, Any]:
        """Return a plain-data copy suitable for a retry backup."""
        return {
            "position": self._position,
            "records": {
                entry_id: {
                    "last_seen_position": record.last_seen_position,
                    "decayed_weight": record.decayed_weight,
                    "stickiness": record.stickiness,
                }
                for entry_id, record in self._records.items()
            },
        }

    def restore(self, data: dict[str, Any]) -> None:
        """Replace all state with a snapshot produced by ``snapshot()``.

        This is the only operation allowed to move the position backwards.
        """
        self._records = {
            entry_id: ActivationRecord(
                last_seen_position=int(raw["last_seen_position"]),
                decayed_weight=float(raw.get("decayed_weight", 1.0)),
                stickiness=int(raw.get("stickiness", DEFAULT_STICKINESS)),
            )
            for entry_id, raw in data.get("records", {}).items()
        }
        self._position = int(data.get("position", 0))
        logger.debug(
            "Activation state restored: %d records at position %d",
            len(self._records),
            self._position,
        )
