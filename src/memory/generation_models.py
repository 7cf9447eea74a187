"""Structured-output schemas for the generation agents.

Every model here is passed to Ollama as ``format=Model.model_json_schema()``
and validated on the way back, so fields the model tends to omit carry
defaults.
"""

import logging
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from src.memory.story_state import TimeProgression

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class CharacterChanges(BaseModel):
    """Field changes for an existing character."""

    status: Literal["active", "inactive", "deceased"] | None = None
    relationship: str | None = None
    new_traits: list[str] = Field(default_factory=list)
    remove_traits: list[str] = Field(default_factory=list)


class CharacterUpdate(BaseModel):
    """Update to a character referenced by name."""

    name: str
    changes: CharacterChanges = Field(default_factory=CharacterChanges)


class LocationChanges(BaseModel):
    """Field changes for an existing location."""

    visited: bool | None = None
    current: bool | None = None
    description: str | None = None
    description_addition: str | None = None


class LocationUpdate(BaseModel):
    """Update to a location referenced by name."""

    name: str
    changes: LocationChanges = Field(default_factory=LocationChanges)


class ItemChanges(BaseModel):
    """Field changes for an existing item."""

    quantity: int | None = None
    location: str | None = None
    equipped: bool | None = None


class ItemUpdate(BaseModel):
    """Update to an item referenced by name."""

    name: str
    changes: ItemChanges = Field(default_factory=ItemChanges)


class StoryBeatChanges(BaseModel):
    """Field changes for an existing story beat."""

    status: Literal["pending", "active", "completed", "failed"] | None = None
    description: str | None = None


class StoryBeatUpdate(BaseModel):
    """Update to a story beat referenced by title."""

    title: str
    changes: StoryBeatChanges = Field(default_factory=StoryBeatChanges)


class NewCharacter(BaseModel):
    """A character introduced by the narration."""

    name: str
    description: str = ""
    relationship: str = ""
    traits: list[str] = Field(default_factory=list)


class NewLocation(BaseModel):
    """A location introduced by the narration."""

    name: str
    description: str = ""
    visited: bool = False
    current: bool = False


class NewItem(BaseModel):
    """An item introduced by the narration."""

    name: str
    description: str = ""
    quantity: int = 1
    location: str = "inventory"


class NewStoryBeat(BaseModel):
    """A quest or plot thread introduced by the narration."""

    title: str
    description: str = ""
    type: Literal["quest", "revelation", "milestone", "event", "plot_point"] = "plot_point"
    status: Literal["pending", "active", "completed", "failed"] = "active"


class EntryUpdates(BaseModel):
    """All entity changes proposed for one narration."""

    character_updates: list[CharacterUpdate] = Field(default_factory=list)
    location_updates: list[LocationUpdate] = Field(default_factory=list)
    item_updates: list[ItemUpdate] = Field(default_factory=list)
    story_beat_updates: list[StoryBeatUpdate] = Field(default_factory=list)
    new_characters: list[NewCharacter] = Field(default_factory=list)
    new_locations: list[NewLocation] = Field(default_factory=list)
    new_items: list[NewItem] = Field(default_factory=list)
    new_story_beats: list[NewStoryBeat] = Field(default_factory=list)

    def is_empty(self) -> bool:
        """Whether no change of any kind was proposed."""
        return not any(getattr(self, name) for name in type(self).model_fields)


class SceneInfo(BaseModel):
    """Scene metadata extracted alongside entity updates."""

    current_location_name: str | None = None
    present_character_names: list[str] = Field(default_factory=list)
    time_progression: TimeProgression = "none"


class ClassificationResult(BaseModel):
    """World-state delta and scene metadata for one narration."""

    entry_updates: EntryUpdates = Field(default_factory=EntryUpdates)
    scene: SceneInfo = Field(default_factory=SceneInfo)


# ---------------------------------------------------------------------------
# Post-generation
# ---------------------------------------------------------------------------


class Suggestion(BaseModel):
    """A plot direction offered in creative-writing mode."""

    text: str
    type: Literal["action", "dialogue", "revelation", "twist"] = "action"


class SuggestionList(BaseModel):
    """Structured output wrapper for suggestions."""

    suggestions: list[Suggestion] = Field(default_factory=list)

    @field_validator("suggestions")
    @classmethod
    def limit_suggestions(cls, v: list[Suggestion]) -> list[Suggestion]:
        """Keep at most three non-blank suggestions."""
        return [s for s in v if s.text.strip()][:3]


class ActionChoice(BaseModel):
    """A next action offered in adventure mode."""

    text: str
    type: Literal["action", "dialogue", "examine", "move"] = "action"


class ActionChoiceList(BaseModel):
    """Structured output wrapper for action choices."""

    choices: list[ActionChoice] = Field(default_factory=list)

    @field_validator("choices")
    @classmethod
    def limit_choices(cls, v: list[ActionChoice]) -> list[ActionChoice]:
        """Keep at most four non-blank choices."""
        return [c for c in v if c.text.strip()][:4]


# ---------------------------------------------------------------------------
# Retrieval and translation
# ---------------------------------------------------------------------------


class EntrySelection(BaseModel):
    """Lorebook entries picked by the selector model (ids or list indices)."""

    selected_ids: list[str] = Field(default_factory=list)
    reasoning: str | None = None

    @field_validator("selected_ids", mode="before")
    @classmethod
    def coerce_ids(cls, v: object) -> list[str]:
        """Models sometimes return integer indices; store them as strings."""
        if not isinstance(v, list):
            return []
        return [str(item) for item in v]


class TimelineQuery(BaseModel):
    """A single planned question, optionally spanning a chapter range."""

    question: str
    start_chapter: int
    end_chapter: int | None = None


class TimelineQueries(BaseModel):
    """Questions about earlier chapters planned by the timeline agent."""

    queries: list[TimelineQuery] = Field(default_factory=list)


class TranslatedText(BaseModel):
    """A translated block of text."""

    text: str


class TranslatedTexts(BaseModel):
    """A list of translated strings, index-aligned with the input."""

    texts: list[str] = Field(default_factory=list)


class TranslatedEntity(BaseModel):
    """Translated name and description for one world entity."""

    id: str
    name: str
    description: str = ""


class TranslatedEntities(BaseModel):
    """Structured output wrapper for translated world entities."""

    entities: list[TranslatedEntity] = Field(default_factory=list)

