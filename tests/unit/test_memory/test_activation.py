"""Tests for the ActivationTracker ledger."""

import pytest

from src.memory.activation import ActivationTracker, decay, stickiness_for


class TestDecay:
    """Tests for the decay curve."""

    def test_full_weight_when_just_seen(self):
        assert decay(0, 3) == 1.0

    def test_linear_falloff(self):
        assert decay(1, 3) == pytest.approx(0.75)
        assert decay(2, 3) == pytest.approx(0.5)

    def test_zero_after_window(self):
        assert decay(4, 3) == 0.0
        assert decay(10, 3) == 0.0

    def test_stickiness_by_type(self):
        assert stickiness_for("concept") > stickiness_for("item")
        assert stickiness_for(None) == stickiness_for("unknown-type")


class TestActivationTracker:
    """Tests for recording, decay and snapshots."""

    def test_record_and_weight(self):
        tracker = ActivationTracker("s1")
        tracker.record("lore-a", 5, "character")
        assert "lore-a" in tracker
        assert tracker.current_position == 5
        assert tracker.weight("lore-a") == 1.0

    def test_weight_decays_as_position_advances(self):
        tracker = ActivationTracker()
        tracker.record("lore-a", 5, "character")
        tracker.set_position(7)
        assert tracker.weight("lore-a") == pytest.approx(0.5)
        assert tracker.get("lore-a").decayed_weight == pytest.approx(0.5)

    def test_unknown_entry_has_zero_weight(self):
        assert ActivationTracker().weight("missing") == 0.0

    def test_position_never_regresses(self):
        tracker = ActivationTracker()
        tracker.set_position(10)
        tracker.set_position(4)
        assert tracker.current_position == 10

    def test_record_at_older_position_uses_current(self):
        tracker = ActivationTracker()
        tracker.set_position(10)
        tracker.record("lore-a", 3)
        assert tracker.get("lore-a").last_seen_position == 10
        assert tracker.current_position == 10

    def test_active_entries_threshold(self):
        """Three turns on, a concept is still active and an item has expired."""
        tracker = ActivationTracker()
        tracker.record("concept", 0, "concept")
        tracker.record("item", 0, "item")
        tracker.set_position(3)
        assert tracker.weight("concept") == pytest.approx(0.5)
        assert tracker.weight("item") == 0.0
        active = tracker.active_entries(0.3)
        assert "concept" in active
        assert "item" not in active

    def test_prune(self):
        tracker = ActivationTracker()
        tracker.record("old", 0)
        tracker.record("new", 8)
        assert tracker.prune(5) == 1
        assert "old" not in tracker
        assert "new" in tracker

    def test_snapshot_restore_round_trip_moves_position_back(self):
        tracker = ActivationTracker()
        tracker.record("lore-a", 3, "concept")
        snapshot = tracker.snapshot()

        tracker.record("lore-b", 9, "event")
        tracker.restore(snapshot)

        assert tracker.current_position == 3
        assert "lore-b" not in tracker
        assert tracker.weight("lore-a") == 1.0

    def test_snapshot_is_detached(self):
        tracker = ActivationTracker()
        tracker.record("lore-a", 3)
        snapshot = tracker.snapshot()
        tracker.record("lore-a", 6)
        assert snapshot["records"]["lore-a"]["last_seen_position"] == 3

    def test_clear(self):
        tracker = ActivationTracker()
        tracker.record("lore-a", 3)
        tracker.clear()
        assert len(tracker) == 0
        assert tracker.current_position == 0
