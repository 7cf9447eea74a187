"""Turn service - the caller side of the generation pipeline.

Owns one story's in-flight turn: takes the retry backup, persists the user
action, drives the pipeline, applies each event to the store, and exposes
stop and retry for the reader.
"""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import assert_never

from src.memory.activation import ActivationTracker
from src.memory.generation_models import ActionChoice, Suggestion
from src.memory.story_state import StoryEntry
from src.memory.story_store import StoryStore
from src.services.generation import (
    AbortedEvent,
    ClassificationCompleteEvent,
    ErrorEvent,
    GenerationContext,
    GenerationPipeline,
    NarrativeChunkEvent,
    NarrativeResult,
    PhaseCompleteEvent,
    PhaseStartEvent,
    PipelineConfig,
    PipelineEvent,
    PipelineResult,
    PostGenerationResult,
    TranslationResult,
)
from src.services.retry_service import RestoreResult, RetryBackup, RetryManager
from src.settings import Settings
from src.utils.cancellation import CancelToken
from src.utils.exceptions import TurnInProgressError
from src.utils.logging_config import log_context

logger = logging.getLogger(__name__)

EventListener = Callable[[PipelineEvent], None]


@dataclass(frozen=True)
class RetryableError:
    """A fatal turn error the reader can retry."""

    message: str
    user_action_entry_id: str


@dataclass
class TurnOutcome:
    """What a finished, failed or stopped turn left behind."""

    user_action_entry_id: str
    result: PipelineResult
    narration_entry_id: str | None = None
    streamed_content: str = ""
    streamed_reasoning: str = ""
    translated_narration: str | None = None
    classification_applied: bool = False
    error: RetryableError | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def aborted(self) -> bool:
        """Whether the turn was stopped."""
        return self.result.aborted


class TurnService:
    """Runs turns for one loaded story."""

    def __init__(
        self,
        store: StoryStore,
        pipeline: GenerationPipeline,
        settings: Settings | None = None,
        retry_manager: RetryManager | None = None,
        activation_tracker: ActivationTracker | None = None,
    ):
        """Create the service.

        Args:
            store: Story store for the loaded story.
            pipeline: Generation pipeline.
            settings: Engine settings. Loaded from the cache if not provided.
            retry_manager: Backup holder; a fresh one is created if omitted.
            activation_tracker: Activation ledger for the story.
        """
        self.store = store
        self.pipeline = pipeline
        self.settings = settings or Settings.load()
        self.retry_manager = retry_manager or RetryManager()
        if activation_tracker is None:
            activation_tracker = ActivationTracker(store.story_id)
        self.activation_tracker = activation_tracker
        self.suggestions: list[Suggestion] = []
        self.action_choices: list[ActionChoice] = []
        self.generation_error: RetryableError | None = None
        self._cancel_token: CancelToken | None = None
        self._generating = False
        self._last_user_action: StoryEntry | None = None

    @property
    def is_generating(self) -> bool:
        """Whether a turn is in flight."""
        return self._generating

    # UI state cleared by the retry manager

    def clear_generation_error(self) -> None:
        """Forget the last retryable error."""
        self.generation_error = None

    def clear_suggestions(self) -> None:
        """Forget the last suggestions."""
        self.suggestions = []

    def clear_action_choices(self) -> None:
        """Forget the last action choices."""
        self.action_choices = []

    async def submit_action(
        self,
        content: str,
        *,
        raw_input: str | None = None,
        action_type: str = "do",
        was_raw_action_choice: bool = False,
        on_event: EventListener | None = None,
    ) -> TurnOutcome:
        """Run a turn for a new reader action.

        Args:
            content: The formatted user action persisted to the log.
            raw_input: What the reader typed, restored on retry.
            action_type: Input mode the reader used.
            was_raw_action_choice: Whether the input came from an action choice.
            on_event: Called with every pipeline event, for live display.

        Returns:
            The turn outcome.

        Raises:
            TurnInProgressError: If a turn is already running for this story.
        """
        self._ensure_idle()
        self.clear_generation_error()
        self.clear_suggestions()
        self.clear_action_choices()
        self.retry_manager.create_backup(
            self.store,
            raw_input=raw_input if raw_input is not None else content,
            action_type=action_type,
            was_raw_action_choice=was_raw_action_choice,
            activation_tracker=self.activation_tracker,
        )
        user_entry = self.store.add_entry("user_action", content)
        self.retry_manager.attach_user_action(user_entry.id)
        return await self._run_turn(user_entry, on_event)

    async def stop(self) -> RestoreResult | None:
        """Cancel the in-flight turn and roll back what it wrote.

        Returns:
            The restore result, or None if no turn was running.
        """
        if not self._generating or self._cancel_token is None:
            logger.debug("Stop requested with no turn in flight, ignoring")
            return None
        backup = self.retry_manager.backup
        if backup is None:
            self._cancel_token.cancel("Stopped by user")
            return None
        return self.retry_manager.handle_stop_generation(
            backup,
            self.store,
            self,
            cancel_token=self._cancel_token,
            activation_tracker=self.activation_tracker,
        )

    async def retry_last(self, on_event: EventListener | None = None) -> TurnOutcome | None:
        """Roll back the last turn and generate it again.

        The user action is re-created with its original entry id.

        Returns:
            The new outcome, or None if a turn is running, there is no backup,
            or the restore failed.
        """
        backup = self.retry_manager.backup
        if self._generating or backup is None or backup.user_action_entry_id is None:
            logger.debug("Retry ignored (generating=%s, backup=%s)", self._generating, backup)
            return None
        restored = self.retry_manager.handle_retry_last_message(
            backup, self.store, self, activation_tracker=self.activation_tracker
        )
        if not restored.success:
            logger.warning("Retry aborted, restore failed: %s", restored.error)
            return None
        return await self._rerun(backup, on_event)

    async def _rerun(self, backup: RetryBackup, on_event: EventListener | None) -> TurnOutcome:
        user_action_id = backup.user_action_entry_id
        if user_action_id is None:
            raise ValueError("Backup has no user action to retry")
        last = self._last_user_action
        content = backup.raw_input
        if last is not None and last.id == user_action_id:
            content = last.content
        self.retry_manager.create_backup(
            self.store,
            raw_input=backup.raw_input,
            action_type=backup.action_type,
            was_raw_action_choice=backup.was_raw_action_choice,
            user_action_entry_id=user_action_id,
            activation_tracker=self.activation_tracker,
        )
        user_entry = self.store.add_entry("user_action", content, entry_id=user_action_id)
        return await self._run_turn(user_entry, on_event)

    def _ensure_idle(self) -> None:
        if self._generating:
            raise TurnInProgressError(
                f"A turn is already running for story {self.store.story_id}",
                story_id=self.store.story_id,
            )

    async def _run_turn(self, user_entry: StoryEntry, on_event: EventListener | None) -> TurnOutcome:
        self._generating = True
        self._last_user_action = user_entry
        token = CancelToken()
        self._cancel_token = token
        result = PipelineResult()
        outcome = TurnOutcome(user_action_entry_id=user_entry.id, result=result)

        history = tuple(e for e in self.store.entries if e.position < user_entry.position)
        ctx = GenerationContext(
            story=self.store.story,
            user_action=user_entry,
            history=history,
            world=self.store.world_state(),
            story_position=self.store.entry_count,
            cancel_token=token,
            current_world=self.store.world_state,
        )
        cfg = PipelineConfig.from_settings(self.settings, self.store.story, self.activation_tracker)

        with log_context(f"turn-{uuid.uuid4().hex[:8]}"):
            logger.info(
                "Turn started for story %s (user action %s)", self.store.story_id, user_entry.id
            )
            try:
                async for event in self.pipeline.execute(ctx, cfg, result):
                    if on_event is not None:
                        on_event(event)
                    self._dispatch(event, outcome, token)
            finally:
                self._generating = False
                self._cancel_token = None
            logger.info(
                "Turn finished for story %s: %s",
                self.store.story_id,
                "aborted" if outcome.aborted else "failed" if outcome.error else "ok",
            )
        return outcome

    def _dispatch(self, event: PipelineEvent, outcome: TurnOutcome, token: CancelToken) -> None:
        """Apply one pipeline event to the store and the reader-facing state."""
        if token.cancelled and not isinstance(event, AbortedEvent):
            logger.debug("Dropping %s event from a stopped turn", event.type)
            return

        match event:
            case PhaseStartEvent(phase=phase):
                logger.debug("Phase started: %s", phase)
            case NarrativeChunkEvent(content=content, reasoning=reasoning):
                outcome.streamed_content += content
                outcome.streamed_reasoning += reasoning
            case PhaseCompleteEvent(phase="narrative", result=NarrativeResult() as narrative):
                entry = self.store.add_entry(
                    "narration", narrative.content, reasoning=narrative.reasoning or None
                )
                outcome.narration_entry_id = entry.id
            case PhaseCompleteEvent(phase="translation", result=TranslationResult() as translation):
                outcome.translated_narration = translation.narrative
                if translation.entities and not self.store.apply_entity_translations(
                    translation.entities
                ):
                    logger.info("Entity translations rejected, rollback in progress")
            case PhaseCompleteEvent(phase="post", result=PostGenerationResult() as post):
                self.suggestions = list(post.suggestions)
                self.action_choices = list(post.action_choices)
            case PhaseCompleteEvent(phase=phase):
                logger.debug("Phase complete: %s", phase)
            case ClassificationCompleteEvent(result=classification):
                outcome.classification_applied = self.store.apply_classification(classification)
                if not outcome.classification_applied:
                    logger.info("Classification rejected, rollback in progress")
            case AbortedEvent(phase=phase):
                logger.info("Turn aborted during %s phase", phase)
            case ErrorEvent(fatal=True) as error:
                self._discard_narration(outcome)
                self.store.add_entry("system", f"Generation failed: {error.error}")
                outcome.error = RetryableError(error.error, outcome.user_action_entry_id)
                self.generation_error = outcome.error
            case ErrorEvent() as error:
                outcome.warnings.append(error.error)
            case _:
                assert_never(event)

    def _discard_narration(self, outcome: TurnOutcome) -> None:
        """Drop narration persisted before a fatal error; the user action stays for retry."""
        if outcome.narration_entry_id is None:
            return
        user_entry = self.store.get_entry(outcome.user_action_entry_id)
        if user_entry is not None:
            self.store.delete_entries_from_position(user_entry.position + 1)
        outcome.narration_entry_id = None
