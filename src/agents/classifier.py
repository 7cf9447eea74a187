"""Classifier Agent - extracts world-state changes from a narration."""

import logging
from collections.abc import Sequence

from src.memory.generation_models import ClassificationResult
from src.memory.story_state import StoryEntry, WorldState
from src.settings import Settings
from src.utils.exceptions import ClassificationError, LLMError, summarize_llm_error
from src.utils.llm_client import StreamingProvider

from .base import BaseAgent

logger = logging.getLogger(__name__)

CLASSIFIER_SYSTEM_PROMPT = """You are the Classifier, a meticulous continuity clerk for an interactive story.

Read the latest narration and report ONLY what it changed in the world:
- Updates to existing characters, locations, items and story beats, referenced by exact name/title
- Characters, locations, items and story beats that appear for the first time
- The scene: where it now takes place, who is present, and how much time passed

Rules:
- Do not invent changes that the narration does not state or clearly imply
- Do not list an entity as new if it already appears in the world state
- Use "none" for time progression unless the narration moves time forward
- Leave lists empty when nothing changed

Respond with JSON matching the requested schema."""


def _format_known_entities(world: WorldState) -> str:
    """List existing entity names so the classifier can reference them exactly."""
    sections = [
        ("Characters", [f"{c.name} [{c.status}]" for c in world.characters]),
        ("Locations", [loc.name + (" (current)" if loc.current else "") for loc in world.locations]),
        ("Items", [f"{i.name} ({i.location}, qty {i.quantity})" for i in world.items]),
        ("Story beats", [f"{b.title} [{b.status}]" for b in world.story_beats]),
    ]
    return "\n".join(f"{title}: {', '.join(names) if names else 'none'}" for title, names in sections)


class ClassifierAgent(BaseAgent):
    """Agent that turns narration into a structured world-state delta."""

    def __init__(
        self,
        provider: StreamingProvider,
        model: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the Classifier agent.

        Args:
            provider: Streaming provider that executes requests.
            model: Override model to use. If None, uses settings-based model for classifier.
            settings: Engine settings. If None, loads default settings.
        """
        super().__init__(
            name="Classifier",
            role="World State Classifier",
            system_prompt=CLASSIFIER_SYSTEM_PROMPT,
            provider=provider,
            agent_role="classifier",
            model=model,
            settings=settings,
        )

    async def classify(
        self,
        narrative: str,
        user_action: str,
        world: WorldState,
        history: Sequence[StoryEntry] = (),
    ) -> ClassificationResult:
        """Classify a narration against the current world state.

        Args:
            narrative: The narration produced this turn.
            user_action: The reader's action that prompted it.
            world: World state before the narration.
            history: Recent entries for context, excluding this turn's narration.

        Returns:
            The proposed delta and scene metadata.

        Raises:
            ClassificationError: If the model call or validation fails.
        """
        window = self.settings.classification_history_entries
        recent = list(history)[-window:] if window else []
        recent_text = "\n\n".join(
            f"[{entry.type.upper()}] {entry.content}" for entry in recent if entry.type != "system"
        )

        prompt = f"""KNOWN WORLD:
{_format_known_entities(world)}

RECENT STORY:
{recent_text or "(story start)"}

READER ACTION:
{user_action}

NARRATION TO CLASSIFY:
{narrative}

Report the changes this narration makes to the world."""

        try:
            result = await self.generate_structured(prompt, ClassificationResult)
        except LLMError as e:
            logger.error("%s: Classification failed: %s", self.name, summarize_llm_error(e))
            raise ClassificationError(
                f"Classification failed: {summarize_llm_error(e)}",
                narrative_length=len(narrative),
            ) from e

        logger.info(
            "%s: Classified narration (new chars=%d, new locs=%d, location=%s, time=%s)",
            self.name,
            len(result.entry_updates.new_characters),
            len(result.entry_updates.new_locations),
            result.scene.current_location_name,
            result.scene.time_progression,
        )
        return result
