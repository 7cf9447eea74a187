"""Retry backups and rollback for a generation turn.

A backup is taken synchronously before the user action is persisted. Stop
and retry both restore it: entries created during the turn are deleted,
entities created during the turn are deleted, pre-existing entities get
their snapshotted field values back, pre-turn entries get their content
back, and the in-story clock and activation ledger are reset. The store's
retry lock is held throughout so that a late classification or translation
result is rejected instead of re-applied.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Protocol

from src.memory.activation import ActivationTracker
from src.memory.story_state import StoryEntry, TimeTracker
from src.memory.story_store import EntitySnapshots, StoryStore
from src.utils.cancellation import CancelToken

logger = logging.getLogger(__name__)


class StoreOps(Protocol):
    """Store operations used during a rollback."""

    @property
    def story_id(self) -> str: ...

    def delete_entries_from_position(self, position: int) -> int: ...

    def restore_entries(self, entries: tuple[StoryEntry, ...]) -> None: ...

    def delete_entities_not_in(self, kept_ids: dict[str, frozenset[str]]) -> int: ...

    def restore_entity_snapshots(self, snapshots: EntitySnapshots) -> None: ...

    def restore_time_tracker(self, time_tracker: TimeTracker) -> None: ...

    def lock_retry(self) -> None: ...

    def unlock_retry(self) -> None: ...


class UIOps(Protocol):
    """Reader-facing state cleared on stop and retry."""

    def clear_generation_error(self) -> None: ...

    def clear_suggestions(self) -> None: ...

    def clear_action_choices(self) -> None: ...


@dataclass(frozen=True)
class RetryBackup:
    """Everything needed to undo one turn.

    Attributes:
        story_id: Story the backup belongs to; restores into another story fail.
        story_position: Number of entries before the user action.
        timestamp: When the backup was taken.
        entries: Deep copies of the story log before the turn.
        snapshots: Deep copies of every world entity before the turn.
        entity_ids: Entity ids per kind; anything else was created by the turn.
        activation_data: ActivationTracker snapshot, when has_full_state.
        time_tracker: In-story clock before the turn.
        raw_input: What the reader typed, restored into the input box on retry.
        action_type: Input mode the reader used (do, say, think, story...).
        was_raw_action_choice: Whether the input came from an action choice.
        user_action_entry_id: Id of the user-action entry this backup guards.
        has_full_state: False for backups rebuilt from ids only, in which
            case the activation ledger is cleared instead of restored.
    """

    story_id: str
    story_position: int
    timestamp: datetime = field(default_factory=datetime.now)
    entries: tuple[StoryEntry, ...] = ()
    snapshots: EntitySnapshots = field(default_factory=EntitySnapshots)
    entity_ids: dict[str, frozenset[str]] = field(default_factory=dict)
    activation_data: dict[str, Any] | None = None
    time_tracker: TimeTracker | None = None
    raw_input: str = ""
    action_type: str = "do"
    was_raw_action_choice: bool = False
    user_action_entry_id: str | None = None
    has_full_state: bool = True


@dataclass(frozen=True)
class RestoreResult:
    """Outcome of a stop or retry."""

    success: bool
    error: str | None = None
    restored_raw_input: str | None = None
    restored_action_type: str | None = None
    restored_was_raw_action_choice: bool | None = None
    entries_deleted: int = 0
    entities_deleted: int = 0


class RetryManager:
    """Holds the current backup and performs rollbacks."""

    def __init__(self) -> None:
        self._backup: RetryBackup | None = None

    @property
    def backup(self) -> RetryBackup | None:
        """The most recent backup, if any."""
        return self._backup

    def create_backup(
        self,
        store: StoryStore,
        *,
        raw_input: str,
        action_type: str = "do",
        was_raw_action_choice: bool = False,
        user_action_entry_id: str | None = None,
        activation_tracker: ActivationTracker | None = None,
    ) -> RetryBackup:
        """Snapshot the store before a turn, replacing any previous backup.

        Must be called before the user action is persisted so that
        ``story_position`` points at the first entry the turn creates.
        """
        snapshots = store.snapshot_entities()
        backup = RetryBackup(
            story_id=store.story_id,
            story_position=store.entry_count,
            entries=store.snapshot_entries(),
            snapshots=snapshots,
            entity_ids=snapshots.ids(),
            activation_data=(
                activation_tracker.snapshot() if activation_tracker is not None else None
            ),
            time_tracker=store.time_tracker,
            raw_input=raw_input,
            action_type=action_type,
            was_raw_action_choice=was_raw_action_choice,
            user_action_entry_id=user_action_entry_id,
            has_full_state=activation_tracker is not None,
        )
        if self._backup is not None:
            logger.debug("Replacing retry backup from %s", self._backup.timestamp.isoformat())
        self._backup = backup
        logger.info(
            "Created retry backup for story %s at position %d (%d entities)",
            backup.story_id,
            backup.story_position,
            sum(len(ids) for ids in backup.entity_ids.values()),
        )
        return backup

    def attach_user_action(self, entry_id: str) -> RetryBackup | None:
        """Record the id of the user-action entry persisted after the backup."""
        if self._backup is None:
            return None
        self._backup = replace(self._backup, user_action_entry_id=entry_id)
        return self._backup

    def clear(self) -> None:
        """Drop the current backup."""
        self._backup = None

    def restore(
        self,
        backup: RetryBackup,
        store_ops: StoreOps,
        activation_tracker: ActivationTracker | None = None,
    ) -> RestoreResult:
        """Roll the store back to a backup.

        Idempotent: restoring the same backup twice leaves the store in the
        same state as restoring it once.

        Returns:
            A failed result if the backup belongs to another story (the store
            is left untouched) or if the store raises part way.
        """
        if backup.story_id != store_ops.story_id:
            logger.warning(
                "Ignoring retry backup for story %s while story %s is loaded",
                backup.story_id,
                store_ops.story_id,
            )
            return RestoreResult(
                success=False,
                error=f"Backup belongs to story {backup.story_id}, not {store_ops.story_id}",
            )

        store_ops.lock_retry()
        try:
            entries_deleted = store_ops.delete_entries_from_position(backup.story_position)
            if backup.entries:
                store_ops.restore_entries(backup.entries)
            entities_deleted = 0
            if backup.entity_ids:
                entities_deleted = store_ops.delete_entities_not_in(backup.entity_ids)
            store_ops.restore_entity_snapshots(backup.snapshots)
            if backup.time_tracker is not None:
                store_ops.restore_time_tracker(backup.time_tracker)
            if activation_tracker is not None:
                if backup.has_full_state and backup.activation_data is not None:
                    activation_tracker.restore(backup.activation_data)
                else:
                    activation_tracker.clear()
        except Exception as e:
            logger.error("Restoring retry backup failed: %s", e, exc_info=True)
            return RestoreResult(success=False, error=str(e) or type(e).__name__)
        finally:
            store_ops.unlock_retry()

        logger.info(
            "Restored story %s to position %d (%d entries, %d entities deleted)",
            backup.story_id,
            backup.story_position,
            entries_deleted,
            entities_deleted,
        )
        return RestoreResult(
            success=True,
            restored_raw_input=backup.raw_input,
            restored_action_type=backup.action_type,
            restored_was_raw_action_choice=backup.was_raw_action_choice,
            entries_deleted=entries_deleted,
            entities_deleted=entities_deleted,
        )

    def handle_stop_generation(
        self,
        backup: RetryBackup,
        store_ops: StoreOps,
        ui_ops: UIOps,
        *,
        cancel_token: CancelToken | None = None,
        activation_tracker: ActivationTracker | None = None,
    ) -> RestoreResult:
        """Cancel the in-flight turn and roll back everything it touched."""
        if cancel_token is not None:
            cancel_token.cancel("Stopped by user")
        _clear_ui(ui_ops)
        return self.restore(backup, store_ops, activation_tracker)

    def handle_retry_last_message(
        self,
        backup: RetryBackup,
        store_ops: StoreOps,
        ui_ops: UIOps,
        *,
        activation_tracker: ActivationTracker | None = None,
    ) -> RestoreResult:
        """Roll back the last turn so it can be generated again."""
        _clear_ui(ui_ops)
        return self.restore(backup, store_ops, activation_tracker)


def _clear_ui(ui_ops: UIOps) -> None:
    ui_ops.clear_generation_error()
    ui_ops.clear_suggestions()
    ui_ops.clear_action_choices()
