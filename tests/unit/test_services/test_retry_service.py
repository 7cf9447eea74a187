"""Tests for retry backups and rollback."""

from unittest.mock import MagicMock

import pytest

from src.memory.activation import ActivationTracker
from src.memory.generation_models import (
    CharacterChanges,
    CharacterUpdate,
    ClassificationResult,
    EntryUpdates,
    NewCharacter,
    NewItem,
    SceneInfo,
)
from src.memory.story_store import StoryStore
from src.services.retry_service import RestoreResult, RetryManager
from src.utils.cancellation import CancelToken


@pytest.fixture
def store(story, world, history) -> StoryStore:
    return StoryStore(story, world, history)


def _play_turn(store: StoryStore, tracker: ActivationTracker | None = None) -> None:
    """Persist a user action and narration and apply a classification."""
    store.add_entry("user_action", "I call for Ivo.")
    store.add_entry("narration", "Ivo arrives. Ren collapses.")
    store.apply_classification(
        ClassificationResult(
            entry_updates=EntryUpdates(
                character_updates=[
                    CharacterUpdate(name="Ren", changes=CharacterChanges(status="inactive"))
                ],
                new_characters=[NewCharacter(name="Ivo")],
                new_items=[NewItem(name="Rope")],
            ),
            scene=SceneInfo(time_progression="days"),
        )
    )
    if tracker is not None:
        tracker.record("lore-storm", 3, "event")


def _state(store: StoryStore):
    world = store.world_state()
    return (
        [(e.id, e.content) for e in store.entries],
        world.model_dump(exclude={"chapters", "lorebook_entries"}),
    )


class TestCreateBackup:
    def test_captures_position_entities_and_activation(self, store):
        tracker = ActivationTracker("story-1")
        tracker.record("lore-tower", 1, "location")
        manager = RetryManager()

        backup = manager.create_backup(
            store, raw_input="call ivo", action_type="say", activation_tracker=tracker
        )

        assert manager.backup is backup
        assert backup.story_id == "story-1"
        assert backup.story_position == 2
        assert [e.id for e in backup.entries] == ["e0", "e1"]
        assert backup.entity_ids["characters"] == frozenset({"char-ren"})
        assert backup.activation_data == tracker.snapshot()
        assert backup.has_full_state
        assert backup.action_type == "say"

    def test_empty_tracker_is_still_snapshotted(self, store):
        """A tracker with no records still yields activation data."""
        tracker = ActivationTracker("story-1")
        tracker.set_position(2)

        backup = RetryManager().create_backup(store, raw_input="x", activation_tracker=tracker)

        assert backup.activation_data == {"position": 2, "records": {}}
        assert backup.has_full_state

    def test_new_backup_replaces_old_one(self, store):
        manager = RetryManager()
        first = manager.create_backup(store, raw_input="a")
        second = manager.create_backup(store, raw_input="b")
        assert manager.backup is second
        assert manager.backup is not first

    def test_attach_user_action_and_clear(self, store):
        manager = RetryManager()
        assert manager.attach_user_action("u1") is None
        manager.create_backup(store, raw_input="a")
        assert manager.attach_user_action("u1").user_action_entry_id == "u1"
        manager.clear()
        assert manager.backup is None


class TestRestore:
    def test_rolls_back_entries_entities_time_and_activation(self, store):
        tracker = ActivationTracker("story-1")
        manager = RetryManager()
        before = _state(store)
        backup = manager.create_backup(store, raw_input="call ivo", activation_tracker=tracker)
        _play_turn(store, tracker)

        result = manager.restore(backup, store, tracker)

        assert result.success
        assert result.entries_deleted == 2
        assert result.entities_deleted == 2
        assert result.restored_raw_input == "call ivo"
        assert _state(store) == before
        assert store.world_state().characters[0].status == "active"
        assert "lore-storm" not in tracker
        assert tracker.current_position == 0

    def test_edited_pre_turn_entry_gets_its_content_back(self, store):
        manager = RetryManager()
        backup = manager.create_backup(store, raw_input="x")
        store.update_entry("e1", content="The sea is calm.")
        _play_turn(store)

        result = manager.restore(backup, store)

        assert result.success
        assert [(e.id, e.content) for e in store.entries] == [
            ("e0", "I walk to the shore."),
            ("e1", "Waves break on grey pebbles."),
        ]

    def test_backup_entries_are_detached_from_the_store(self, store):
        backup = RetryManager().create_backup(store, raw_input="x")
        store.update_entry("e1", content="The sea is calm.")
        assert backup.entries[1].content == "Waves break on grey pebbles."

    def test_empty_tracker_keeps_its_restored_position(self, store):
        tracker = ActivationTracker("story-1")
        tracker.set_position(5)
        manager = RetryManager()
        backup = manager.create_backup(store, raw_input="x", activation_tracker=tracker)
        tracker.record("lore-tower", 7, "location")

        manager.restore(backup, store, tracker)

        assert tracker.current_position == 5
        assert len(tracker) == 0

    def test_restore_is_idempotent(self, store):
        manager = RetryManager()
        backup = manager.create_backup(store, raw_input="x", activation_tracker=ActivationTracker())
        _play_turn(store)

        manager.restore(backup, store)
        once = _state(store)
        second = manager.restore(backup, store)

        assert second.success
        assert second.entries_deleted == 0
        assert _state(store) == once

    def test_nothing_persisted_still_resets_activation(self, store):
        tracker = ActivationTracker("story-1")
        manager = RetryManager()
        backup = manager.create_backup(store, raw_input="x", activation_tracker=tracker)
        tracker.record("lore-tower", 3, "location")

        result = manager.restore(backup, store, tracker)

        assert result.entries_deleted == 0
        assert len(tracker) == 0

    def test_backup_without_full_state_clears_activation(self, store):
        tracker = ActivationTracker("story-1")
        tracker.record("lore-tower", 1, "location")
        manager = RetryManager()
        backup = manager.create_backup(store, raw_input="x")

        manager.restore(backup, store, tracker)

        assert not backup.has_full_state
        assert len(tracker) == 0

    def test_story_mismatch_touches_nothing(self, store):
        manager = RetryManager()
        backup = manager.create_backup(store, raw_input="x")
        other = MagicMock()
        other.story_id = "story-2"

        result = manager.restore(backup, other)

        assert not result.success
        assert "story-1" in result.error
        other.lock_retry.assert_not_called()
        other.delete_entries_from_position.assert_not_called()

    def test_store_failure_releases_the_lock(self, store):
        manager = RetryManager()
        backup = manager.create_backup(store, raw_input="x")
        broken = MagicMock()
        broken.story_id = "story-1"
        broken.delete_entries_from_position.side_effect = RuntimeError("disk full")

        result = manager.restore(backup, broken)

        assert result == RestoreResult(success=False, error="disk full")
        broken.lock_retry.assert_called_once()
        broken.unlock_retry.assert_called_once()

    def test_late_classification_is_rejected_while_locked(self, store):
        manager = RetryManager()
        backup = manager.create_backup(store, raw_input="x")
        applied = []

        original = store.restore_entity_snapshots

        def restore_and_race(snapshots):
            original(snapshots)
            applied.append(
                store.apply_classification(
                    ClassificationResult(
                        entry_updates=EntryUpdates(new_characters=[NewCharacter(name="Late")])
                    )
                )
            )

        store.restore_entity_snapshots = restore_and_race

        manager.restore(backup, store)

        assert applied == [False]
        assert not store.retry_locked
        assert [c.name for c in store.world_state().characters] == ["Ren"]


class TestHandlers:
    def test_stop_cancels_clears_ui_and_restores(self, store):
        manager = RetryManager()
        backup = manager.create_backup(store, raw_input="x")
        store.add_entry("user_action", "x")
        token = CancelToken()
        ui = MagicMock()

        result = manager.handle_stop_generation(backup, store, ui, cancel_token=token)

        assert token.cancelled
        assert token.reason == "Stopped by user"
        ui.clear_generation_error.assert_called_once()
        ui.clear_suggestions.assert_called_once()
        ui.clear_action_choices.assert_called_once()
        assert result.entries_deleted == 1

    def test_retry_clears_ui_and_restores(self, store):
        manager = RetryManager()
        backup = manager.create_backup(store, raw_input="x", was_raw_action_choice=True)
        _play_turn(store)
        ui = MagicMock()

        result = manager.handle_retry_last_message(backup, store, ui)

        assert result.success
        assert result.restored_was_raw_action_choice is True
        ui.clear_suggestions.assert_called_once()
        assert store.entry_count == 2
