"""In-memory story store - entries, world entities and the retry lock.

This is the persistence collaborator the turn service and the rollback
manager talk to. Every public method is atomic from the caller's point of
view; a database-backed store only has to provide the same methods.
"""

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TypeVar

from pydantic import BaseModel

from src.memory.generation_models import ClassificationResult, TranslatedEntity
from src.memory.story_state import (
    Character,
    EntryType,
    Item,
    Location,
    Story,
    StoryBeat,
    StoryEntry,
    TimeTracker,
    WorldState,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


@dataclass(frozen=True)
class EntitySnapshots:
    """Deep copies of every world entity at one point in time."""

    characters: tuple[Character, ...] = ()
    locations: tuple[Location, ...] = ()
    items: tuple[Item, ...] = ()
    story_beats: tuple[StoryBeat, ...] = ()

    def ids(self) -> dict[str, frozenset[str]]:
        """Entity ids per kind."""
        return {
            "characters": frozenset(c.id for c in self.characters),
            "locations": frozenset(loc.id for loc in self.locations),
            "items": frozenset(i.id for i in self.items),
            "story_beats": frozenset(b.id for b in self.story_beats),
        }


def _copy_all(models: Iterable[T]) -> tuple[T, ...]:
    """Deep-copy a sequence of pydantic models."""
    return tuple(m.model_copy(deep=True) for m in models)


def _find_by_name(entities: dict[str, T], name: str, attr: str = "name") -> T | None:
    """Case-insensitive lookup of an entity by its display name."""
    wanted = name.strip().lower()
    for entity in entities.values():
        if str(getattr(entity, attr)).strip().lower() == wanted:
            return entity
    return None


class StoryStore:
    """Owns the story log and world state for one loaded story."""

    def __init__(
        self,
        story: Story,
        world: WorldState | None = None,
        entries: Iterable[StoryEntry] = (),
    ) -> None:
        world = world or WorldState()
        self.story = story
        self._entries: list[StoryEntry] = []
        for entry in entries:
            self._entries.append(entry.model_copy(update={"position": len(self._entries)}))
        self._characters = {c.id: c.model_copy(deep=True) for c in world.characters}
        self._locations = {loc.id: loc.model_copy(deep=True) for loc in world.locations}
        self._items = {i.id: i.model_copy(deep=True) for i in world.items}
        self._story_beats = {b.id: b.model_copy(deep=True) for b in world.story_beats}
        self._chapters = list(world.chapters)
        self._lorebook = list(world.lorebook_entries)
        self._time_tracker = world.time_tracker.model_copy()
        self._retry_locked = False

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    @property
    def story_id(self) -> str:
        """Id of the loaded story."""
        return self.story.id

    @property
    def entries(self) -> list[StoryEntry]:
        """Story log in position order."""
        return list(self._entries)

    @property
    def entry_count(self) -> int:
        """Number of entries, i.e. the current story position."""
        return len(self._entries)

    def get_entry(self, entry_id: str) -> StoryEntry | None:
        """Return an entry by id."""
        return next((e for e in self._entries if e.id == entry_id), None)

    def add_entry(
        self,
        entry_type: EntryType,
        content: str,
        reasoning: str | None = None,
        entry_id: str | None = None,
        branch_id: str | None = None,
    ) -> StoryEntry:
        """Append an entry at the end of the log.

        Args:
            entry_type: user_action, narration or system.
            content: Entry text.
            reasoning: Model reasoning captured while streaming, if any.
            entry_id: Reuse a specific id (a retried user action keeps its id).
            branch_id: Branch the entry belongs to.

        Returns:
            The persisted entry.

        Raises:
            ValueError: If an entry with ``entry_id`` already exists.
        """
        fields = {
            "type": entry_type,
            "content": content,
            "reasoning": reasoning,
            "branch_id": branch_id,
            "position": len(self._entries),
        }
        if entry_id is not None:
            if self.get_entry(entry_id) is not None:
                raise ValueError(f"Entry {entry_id} already exists")
            fields["id"] = entry_id
        entry = StoryEntry(**fields)
        self._entries.append(entry)
        logger.debug("Added %s entry %s at position %d", entry_type, entry.id, entry.position)
        return entry

    def update_entry(
        self, entry_id: str, content: str | None = None, reasoning: str | None = None
    ) -> StoryEntry:
        """Replace an entry's content and/or reasoning.

        Raises:
            KeyError: If the entry does not exist.
        """
        for index, entry in enumerate(self._entries):
            if entry.id == entry_id:
                changes: dict[str, str] = {}
                if content is not None:
                    changes["content"] = content
                if reasoning is not None:
                    changes["reasoning"] = reasoning
                updated = entry.model_copy(update=changes)
                self._entries[index] = updated
                return updated
        raise KeyError(f"Entry {entry_id} not found")

    def snapshot_entries(self) -> tuple[StoryEntry, ...]:
        """Deep copies of the story log, for a retry backup."""
        return _copy_all(self._entries)

    def restore_entries(self, entries: Iterable[StoryEntry]) -> None:
        """Replace the story log with snapshotted entries, re-positioned in order."""
        self._entries = [
            entry.model_copy(update={"position": index}, deep=True)
            for index, entry in enumerate(entries)
        ]

    def delete_entries_from_position(self, position: int) -> int:
        """Delete every entry at or after a position.

        Returns:
            Number of entries deleted.
        """
        position = max(position, 0)
        deleted = len(self._entries) - position
        if deleted <= 0:
            return 0
        del self._entries[position:]
        logger.debug("Deleted %d entries from position %d", deleted, position)
        return deleted

    # ------------------------------------------------------------------
    # World state
    # ------------------------------------------------------------------

    @property
    def time_tracker(self) -> TimeTracker:
        """Copy of the in-story clock."""
        return self._time_tracker.model_copy()

    def world_state(self) -> WorldState:
        """Deep copy of the world for the pipeline to read."""
        return WorldState(
            characters=list(_copy_all(self._characters.values())),
            locations=list(_copy_all(self._locations.values())),
            items=list(_copy_all(self._items.values())),
            story_beats=list(_copy_all(self._story_beats.values())),
            chapters=list(self._chapters),
            lorebook_entries=list(self._lorebook),
            time_tracker=self._time_tracker.model_copy(),
        )

    def snapshot_entities(self) -> EntitySnapshots:
        """Deep copies of every tracked entity."""
        return EntitySnapshots(
            characters=_copy_all(self._characters.values()),
            locations=_copy_all(self._locations.values()),
            items=_copy_all(self._items.values()),
            story_beats=_copy_all(self._story_beats.values()),
        )

    def delete_entities_not_in(self, kept_ids: dict[str, frozenset[str]]) -> int:
        """Delete every entity whose id is not in the kept set for its kind.

        Entities created after a backup are exactly those absent from the
        backup's id sets.

        Returns:
            Number of entities deleted.
        """
        deleted = 0
        for kind, entities in self._entity_maps():
            kept = kept_ids.get(kind, frozenset())
            for entity_id in [eid for eid in entities if eid not in kept]:
                del entities[entity_id]
                deleted += 1
        if deleted:
            logger.debug("Deleted %d entities created after backup", deleted)
        return deleted

    def restore_entity_snapshots(self, snapshots: EntitySnapshots) -> None:
        """Put snapshotted entities back with their exact prior field values.

        Entities present in the snapshot are re-inserted in snapshot order;
        any other entities currently stored are kept after them.
        """
        for kind, entities in self._entity_maps():
            restored = {e.id: e.model_copy(deep=True) for e in getattr(snapshots, kind)}
            extras = {eid: e for eid, e in entities.items() if eid not in restored}
            entities.clear()
            entities.update(restored)
            entities.update(extras)

    def restore_time_tracker(self, time_tracker: TimeTracker) -> None:
        """Replace the in-story clock."""
        self._time_tracker = time_tracker.model_copy()

    def _entity_maps(self) -> Iterator[tuple[str, dict]]:
        yield "characters", self._characters
        yield "locations", self._locations
        yield "items", self._items
        yield "story_beats", self._story_beats

    # ------------------------------------------------------------------
    # Retry lock
    # ------------------------------------------------------------------

    @property
    def retry_locked(self) -> bool:
        """Whether a rollback is in progress."""
        return self._retry_locked

    def lock_retry(self) -> None:
        """Start rejecting world-state writes until unlock_retry()."""
        self._retry_locked = True

    def unlock_retry(self) -> None:
        """Accept world-state writes again."""
        self._retry_locked = False

    @contextmanager
    def retry_lock(self) -> Iterator[None]:
        """Hold the retry lock for the duration of a block."""
        self.lock_retry()
        try:
            yield
        finally:
            self.unlock_retry()

    # ------------------------------------------------------------------
    # Applying generation results
    # ------------------------------------------------------------------

    def apply_classification(self, result: ClassificationResult) -> bool:
        """Apply a classifier's world-state delta.

        Returns:
            False if the write was rejected because a rollback holds the lock.
        """
        if self._retry_locked:
            logger.warning("Rejected classification update while retry lock is held")
            return False

        updates = result.entry_updates
        for char_update in updates.character_updates:
            character = _find_by_name(self._characters, char_update.name)
            if character is None:
                logger.debug("Classifier updated unknown character %s", char_update.name)
                continue
            changes = char_update.changes
            if changes.status is not None:
                character.status = changes.status
            if changes.relationship is not None:
                character.relationship = changes.relationship
            removed = {t.lower() for t in changes.remove_traits}
            traits = [t for t in character.traits if t.lower() not in removed]
            traits.extend(t for t in changes.new_traits if t not in traits)
            character.traits = traits

        for loc_update in updates.location_updates:
            location = _find_by_name(self._locations, loc_update.name)
            if location is None:
                logger.debug("Classifier updated unknown location %s", loc_update.name)
                continue
            loc_changes = loc_update.changes
            if loc_changes.visited is not None:
                location.visited = loc_changes.visited
            if loc_changes.current is not None:
                location.current = loc_changes.current
            if loc_changes.description is not None:
                location.description = loc_changes.description
            if loc_changes.description_addition:
                location.description = (
                    f"{location.description} {loc_changes.description_addition}".strip()
                )

        for item_update in updates.item_updates:
            item = _find_by_name(self._items, item_update.name)
            if item is None:
                logger.debug("Classifier updated unknown item %s", item_update.name)
                continue
            item_changes = item_update.changes
            if item_changes.quantity is not None:
                item.quantity = item_changes.quantity
            if item_changes.location is not None:
                item.location = item_changes.location
            if item_changes.equipped is not None:
                item.equipped = item_changes.equipped

        for beat_update in updates.story_beat_updates:
            beat = _find_by_name(self._story_beats, beat_update.title, attr="title")
            if beat is None:
                logger.debug("Classifier updated unknown story beat %s", beat_update.title)
                continue
            if beat_update.changes.status is not None:
                beat.status = beat_update.changes.status
            if beat_update.changes.description is not None:
                beat.description = beat_update.changes.description

        for new_char in updates.new_characters:
            if _find_by_name(self._characters, new_char.name) is None:
                character = Character(**new_char.model_dump())
                self._characters[character.id] = character
        for new_loc in updates.new_locations:
            if _find_by_name(self._locations, new_loc.name) is None:
                location = Location(**new_loc.model_dump())
                self._locations[location.id] = location
        for new_item in updates.new_items:
            if _find_by_name(self._items, new_item.name) is None:
                item = Item(**new_item.model_dump())
                self._items[item.id] = item
        for new_beat in updates.new_story_beats:
            if _find_by_name(self._story_beats, new_beat.title, attr="title") is None:
                beat = StoryBeat(**new_beat.model_dump())
                self._story_beats[beat.id] = beat

        self._apply_scene(result)
        return True

    def _apply_scene(self, result: ClassificationResult) -> None:
        """Move the current location and advance the clock."""
        scene = result.scene
        if scene.current_location_name:
            target = _find_by_name(self._locations, scene.current_location_name)
            if target is None:
                target = Location(name=scene.current_location_name.strip())
                self._locations[target.id] = target
            for location in self._locations.values():
                location.current = location.id == target.id
            target.visited = True
        if scene.time_progression != "none":
            self._time_tracker = self._time_tracker.advance(scene.time_progression)

    def apply_entity_translations(self, translations: Iterable[TranslatedEntity]) -> bool:
        """Overwrite entity names and descriptions with translated text.

        Returns:
            False if the write was rejected because a rollback holds the lock.
        """
        if self._retry_locked:
            logger.warning("Rejected translation update while retry lock is held")
            return False
        for translated in translations:
            for _kind, entities in self._entity_maps():
                entity = entities.get(translated.id)
                if entity is None:
                    continue
                if isinstance(entity, StoryBeat):
                    entity.title = translated.name
                else:
                    entity.name = translated.name
                if translated.description:
                    entity.description = translated.description
                break
        return True
