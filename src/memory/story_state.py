"""Story state models - entries, world entities, chapters and lorebook."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

EntryType = Literal["user_action", "narration", "system"]
ActionType = Literal["do", "say", "think", "story", "free"]
StoryMode = Literal["adventure", "creative-writing"]
LoreEntryType = Literal["character", "location", "item", "faction", "concept", "event"]
InjectionMode = Literal["always", "keyword", "never"]
TimeProgression = Literal["none", "minutes", "hours", "days"]

# Minutes added to the in-story clock for each progression step
_PROGRESSION_MINUTES: dict[str, int] = {"none": 0, "minutes": 15, "hours": 120, "days": 1440}


def _new_id() -> str:
    """Generate a new entity id."""
    return str(uuid.uuid4())


class StoryEntry(BaseModel):
    """A single narrative unit in the story log.

    Entries are immutable once persisted; edits go through the store and
    produce a new entry object.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    type: EntryType
    content: str
    reasoning: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    branch_id: str | None = None
    position: int = 0  # Index in the story log, assigned by the store


class Character(BaseModel):
    """A character tracked in the world state."""

    id: str = Field(default_factory=_new_id)
    name: str
    description: str = ""
    relationship: str = ""  # Relationship to the protagonist
    traits: list[str] = Field(default_factory=list)
    status: Literal["active", "inactive", "deceased"] = "active"
    created_at: datetime = Field(default_factory=datetime.now)


class Location(BaseModel):
    """A location tracked in the world state."""

    id: str = Field(default_factory=_new_id)
    name: str
    description: str = ""
    visited: bool = False
    current: bool = False
    created_at: datetime = Field(default_factory=datetime.now)


class Item(BaseModel):
    """An item tracked in the world state."""

    id: str = Field(default_factory=_new_id)
    name: str
    description: str = ""
    quantity: int = 1
    location: str = "inventory"  # "inventory" or a location name
    equipped: bool = False
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def in_inventory(self) -> bool:
        """Whether the protagonist carries this item."""
        return self.location == "inventory"


class StoryBeat(BaseModel):
    """A quest, plot thread or milestone."""

    id: str = Field(default_factory=_new_id)
    title: str
    description: str = ""
    type: Literal["quest", "revelation", "milestone", "event", "plot_point"] = "plot_point"
    status: Literal["pending", "active", "completed", "failed"] = "active"
    created_at: datetime = Field(default_factory=datetime.now)


class TimeTracker(BaseModel):
    """In-story clock advanced by classified time progression."""

    years: int = 0
    days: int = 0
    hours: int = 0
    minutes: int = 0

    def advance(self, progression: TimeProgression) -> TimeTracker:
        """Return a new tracker advanced by one progression step.

        Args:
            progression: Time progression reported by the classifier.

        Returns:
            A normalized copy; the original is left untouched.
        """
        step = _PROGRESSION_MINUTES.get(progression, 0)
        total = self.total_minutes() + step
        days_total, rem = divmod(total, 1440)
        hours, minutes = divmod(rem, 60)
        years, days = divmod(days_total, 365)
        return TimeTracker(years=years, days=days, hours=hours, minutes=minutes)

    def total_minutes(self) -> int:
        """Elapsed in-story time in minutes."""
        return ((self.years * 365 + self.days) * 24 + self.hours) * 60 + self.minutes

    def describe(self) -> str:
        """Human-readable elapsed time."""
        parts = []
        if self.years:
            parts.append(f"Year {self.years + 1}")
        parts.append(f"Day {self.days + 1}")
        parts.append(f"{self.hours:02d}:{self.minutes:02d}")
        return ", ".join(parts)


class Chapter(BaseModel):
    """A summarized block of earlier story entries."""

    number: int
    title: str | None = None
    summary: str
    start_position: int = 0
    end_position: int = 0
    keywords: list[str] = Field(default_factory=list)
    characters: list[str] = Field(default_factory=list)
    locations: list[str] = Field(default_factory=list)
    plot_threads: list[str] = Field(default_factory=list)
    emotional_tone: str | None = None
    content: str = ""  # Full text of the chapter's entries, never listed to the model


class InjectionRule(BaseModel):
    """How a lorebook entry gets into the prompt."""

    mode: InjectionMode = "keyword"
    keywords: list[str] = Field(default_factory=list)
    priority: int = 0


class LorebookEntry(BaseModel):
    """A piece of lore that retrieval may inject into the prompt."""

    id: str = Field(default_factory=_new_id)
    name: str
    type: LoreEntryType = "concept"
    description: str = ""
    aliases: list[str] = Field(default_factory=list)
    injection: InjectionRule = Field(default_factory=InjectionRule)
    created_at: datetime = Field(default_factory=datetime.now)

    @field_validator("aliases", mode="before")
    @classmethod
    def clean_aliases(cls, v: object) -> list[str]:
        """Drop blank aliases and coerce a single string to a list."""
        if isinstance(v, str):
            v = [v]
        if not isinstance(v, list):
            return []
        return [str(a).strip() for a in v if str(a).strip()]

    def render(self) -> str:
        """Text used both for the prompt and for token estimation."""
        return f"{self.name}: {self.description}" if self.description else self.name


class WorldState(BaseModel):
    """Read-only view of the world handed to the pipeline for one turn."""

    characters: list[Character] = Field(default_factory=list)
    locations: list[Location] = Field(default_factory=list)
    items: list[Item] = Field(default_factory=list)
    story_beats: list[StoryBeat] = Field(default_factory=list)
    chapters: list[Chapter] = Field(default_factory=list)
    lorebook_entries: list[LorebookEntry] = Field(default_factory=list)
    time_tracker: TimeTracker = Field(default_factory=TimeTracker)

    @property
    def current_location(self) -> Location | None:
        """The location flagged as current, if any."""
        return next((loc for loc in self.locations if loc.current), None)

    @property
    def active_characters(self) -> list[Character]:
        """Characters whose status is active."""
        return [c for c in self.characters if c.status == "active"]

    @property
    def inventory(self) -> list[Item]:
        """Items carried by the protagonist."""
        return [i for i in self.items if i.in_inventory]


class Story(BaseModel):
    """Per-story configuration the pipeline reads."""

    id: str = Field(default_factory=_new_id)
    title: str = ""
    mode: StoryMode = "adventure"
    genre: str = ""
    pov: Literal["first", "second", "third"] = "second"
    tense: Literal["past", "present"] = "present"
    protagonist_name: str = "You"
    system_prompt: str = ""
