"""Tiered lorebook retrieval.

Selects a bounded set of lorebook entries for the next prompt in three
tiers that share one entry/token budget:

1. Deterministic: entries injected "always" plus live world entities
   (active characters, the current location, carried items).
2. Keyword/activation: entries whose name, aliases or keywords appear in
   the recent text window, or whose activation weight is above threshold.
3. LLM-mediated (optional): a selector model picks from what is left.

Identical inputs (entries, text, activation state, budget) always produce
the same result.
"""

import logging
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from src.memory.activation import ActivationTracker
from src.memory.story_state import LorebookEntry, StoryEntry, WorldState
from src.settings import Settings
from src.utils.cancellation import CancelToken, await_cancellable, is_cancelled
from src.utils.exceptions import GenerationCancelledError, summarize_llm_error
from src.utils.llm_client import estimate_token_count

logger = logging.getLogger(__name__)

# (candidates, user_input, recent_text, limit) -> selected entry ids
EntrySelector = Callable[[Sequence[LorebookEntry], str, str, int], Awaitable[list[str]]]

LIVE_ID_PREFIX = "live-"

# Tier-1 priorities; higher is injected first when the tier cap binds
_PRIORITY_CURRENT_LOCATION = 100
_PRIORITY_ACTIVE_CHARACTER = 95
_PRIORITY_ALWAYS = 90
_PRIORITY_INVENTORY = 80

# Terms shorter than this never count as a keyword match
_MIN_TERM_LENGTH = 2

_TYPE_HEADINGS: dict[str, str] = {
    "character": "Characters",
    "location": "Locations",
    "item": "Items",
    "faction": "Factions",
    "concept": "Concepts",
    "event": "Events",
}


def text_matches(term: str, text: str) -> bool:
    """Case-insensitive whole-word match of a term inside lowercased text.

    Args:
        term: Name, alias or keyword.
        text: Already lowercased search window.

    Returns:
        True if the term appears on word boundaries.
    """
    term = term.strip().lower()
    if len(term) < _MIN_TERM_LENGTH or term not in text:
        return False
    return re.search(rf"(?<!\w){re.escape(term)}(?!\w)", text) is not None


def count_keyword_matches(entry: LorebookEntry, text: str) -> int:
    """Number of distinct terms of an entry found in the text window."""
    terms = {t.strip().lower() for t in [entry.name, *entry.aliases, *entry.injection.keywords]}
    return sum(1 for term in terms if term and text_matches(term, text))


def live_entity_entries(world: WorldState) -> list[tuple[LorebookEntry, int]]:
    """Synthetic lorebook entries for live-tracked world entities.

    Returns:
        (entry, tier-1 priority) pairs in world order.
    """
    live: list[tuple[LorebookEntry, int]] = []
    location = world.current_location
    if location is not None:
        live.append(
            (
                LorebookEntry(
                    id=f"{LIVE_ID_PREFIX}loc-{location.id}",
                    name=location.name,
                    type="location",
                    description=f"(current location) {location.description}".strip(),
                    created_at=location.created_at,
                ),
                _PRIORITY_CURRENT_LOCATION,
            )
        )
    for character in world.active_characters:
        details = [character.description]
        if character.relationship:
            details.append(f"Relationship: {character.relationship}.")
        if character.traits:
            details.append(f"Traits: {', '.join(character.traits)}.")
        live.append(
            (
                LorebookEntry(
                    id=f"{LIVE_ID_PREFIX}char-{character.id}",
                    name=character.name,
                    type="character",
                    description=" ".join(d for d in details if d),
                    created_at=character.created_at,
                ),
                _PRIORITY_ACTIVE_CHARACTER,
            )
        )
    for item in world.inventory:
        quantity = f" (x{item.quantity})" if item.quantity > 1 else ""
        equipped = " [equipped]" if item.equipped else ""
        live.append(
            (
                LorebookEntry(
                    id=f"{LIVE_ID_PREFIX}item-{item.id}",
                    name=item.name,
                    type="item",
                    description=f"Carried{quantity}{equipped}. {item.description}".strip(),
                    created_at=item.created_at,
                ),
                _PRIORITY_INVENTORY,
            )
        )
    return live


@dataclass(frozen=True)
class RetrievalResult:
    """Entries chosen for one prompt, by tier.

    Tiers are disjoint; ``all`` preserves tier order and then selection
    order within a tier.

    Attributes:
        tier1: Deterministic entries.
        tier2: Keyword/activation entries.
        tier3: LLM-selected entries.
        total_tokens: Estimated tokens of every selected entry.
        cancelled: True when cancellation cut retrieval short.
    """

    tier1: tuple[LorebookEntry, ...] = ()
    tier2: tuple[LorebookEntry, ...] = ()
    tier3: tuple[LorebookEntry, ...] = ()
    total_tokens: int = 0
    cancelled: bool = False

    def __post_init__(self) -> None:
        """Normalize tiers to tuples so results stay immutable."""
        object.__setattr__(self, "tier1", tuple(self.tier1))
        object.__setattr__(self, "tier2", tuple(self.tier2))
        object.__setattr__(self, "tier3", tuple(self.tier3))

    @property
    def all(self) -> tuple[LorebookEntry, ...]:
        """Every selected entry in tier order."""
        return self.tier1 + self.tier2 + self.tier3

    def __len__(self) -> int:
        return len(self.tier1) + len(self.tier2) + len(self.tier3)

    def format_for_prompt(self, max_words_per_entry: int = 0) -> str:
        """Render selected entries as a lorebook block grouped by type.

        Args:
            max_words_per_entry: Truncate descriptions to this many words (0 = no limit).

        Returns:
            Formatted block, or an empty string when nothing was selected.
        """
        if not len(self):
            return ""
        grouped: dict[str, list[LorebookEntry]] = {}
        for entry in self.all:
            grouped.setdefault(entry.type, []).append(entry)

        sections = []
        for entry_type, entries in grouped.items():
            lines = []
            for entry in entries:
                description = entry.description
                words = description.split()
                if max_words_per_entry and len(words) > max_words_per_entry:
                    description = " ".join(words[:max_words_per_entry]) + "..."
                lines.append(f"- {entry.name}: {description}" if description else f"- {entry.name}")
            heading = _TYPE_HEADINGS.get(entry_type, entry_type.title())
            sections.append(f"## {heading}\n" + "\n".join(lines))
        return "[LOREBOOK CONTEXT]\n" + "\n\n".join(sections)


class _Budget:
    """Cumulative entry/token budget shared by all tiers of one call."""

    def __init__(self, max_entries: int, max_tokens: int) -> None:
        self.max_entries = max_entries
        self.max_tokens = max_tokens
        self.entries = 0
        self.tokens = 0

    @property
    def remaining_entries(self) -> int:
        return max(0, self.max_entries - self.entries)

    def fits(self, tokens: int) -> bool:
        return self.entries < self.max_entries and self.tokens + tokens <= self.max_tokens

    def take(self, tokens: int) -> None:
        self.entries += 1
        self.tokens += tokens


class TieredRetrievalEngine:
    """Selects lorebook context for a turn across three budgeted tiers."""

    def __init__(self, settings: Settings, selector: EntrySelector | None = None) -> None:
        """Initialize the engine.

        Args:
            settings: Engine settings with retrieval caps and thresholds.
            selector: Async callable backing tier 3. Tier 3 is skipped when None.
        """
        self.settings = settings
        self.selector = selector

    def _fill_tier(
        self,
        ranked: Sequence[LorebookEntry],
        budget: _Budget,
        tier_name: str,
    ) -> list[LorebookEntry]:
        """Take entries in rank order while the tier cap and shared budget allow.

        Entries too large for the remaining token budget are skipped so a
        smaller, lower-ranked entry can still fit.
        """
        tier_cap = self.settings.retrieval_tier_max_entries
        selected: list[LorebookEntry] = []
        for entry in ranked:
            if len(selected) >= tier_cap or budget.remaining_entries == 0:
                break
            tokens = estimate_token_count(entry.render())
            if not budget.fits(tokens):
                logger.debug(
                    "%s: skipping %s (%d tokens, %d/%d used)",
                    tier_name,
                    entry.name,
                    tokens,
                    budget.tokens,
                    budget.max_tokens,
                )
                continue
            budget.take(tokens)
            selected.append(entry)
        return selected

    async def select_context(
        self,
        entries: Sequence[LorebookEntry],
        user_input: str,
        recent_story_entries: Sequence[StoryEntry],
        live_world_state: WorldState | None = None,
        activation_tracker: ActivationTracker | None = None,
        cancel_token: CancelToken | None = None,
        story_position: int | None = None,
    ) -> RetrievalResult:
        """Select lorebook entries for the next prompt.

        Args:
            entries: All lorebook entries of the story, in creation order.
            user_input: The reader's action for this turn.
            recent_story_entries: Story log, oldest first; the last
                ``retrieval_recent_entries`` form the keyword window.
            live_world_state: Tracked world state for live entities in tier 1.
            activation_tracker: Ledger used for tier-2 boosts. It is moved to the
                story position first; keyword hits are recorded and stale
                records pruned.
            cancel_token: Checked at every tier boundary.
            story_position: Position recorded for activations; defaults to the
                story length implied by ``recent_story_entries``.

        Returns:
            The selected entries. When cancelled, the tiers completed so far.
        """
        settings = self.settings
        budget = _Budget(settings.retrieval_max_entries, settings.retrieval_token_budget)
        order = {entry.id: index for index, entry in enumerate(entries)}

        if is_cancelled(cancel_token):
            return RetrievalResult(cancelled=True)

        # Tier 1
        tier1_candidates: list[tuple[LorebookEntry, int]] = []
        if live_world_state is not None:
            tier1_candidates.extend(live_entity_entries(live_world_state))
        tier1_candidates.extend(
            (entry, _PRIORITY_ALWAYS) for entry in entries if entry.injection.mode == "always"
        )
        # Stable sort keeps insertion order on equal priority
        tier1_ranked = [
            entry for entry, _ in sorted(tier1_candidates, key=lambda pair: -pair[1])
        ]
        tier1 = self._fill_tier(tier1_ranked, budget, "tier1")
        taken = {entry.id for entry in tier1}

        if is_cancelled(cancel_token):
            return RetrievalResult(tier1=tier1, total_tokens=budget.tokens, cancelled=True)

        # Tier 2
        window = settings.retrieval_recent_entries
        recent = list(recent_story_entries)[-window:] if window else []
        search_text = "\n".join([user_input, *(e.content for e in recent)]).lower()
        threshold = settings.retrieval_activation_threshold
        position = story_position if story_position is not None else len(recent_story_entries)
        if activation_tracker is not None:
            activation_tracker.set_position(position)

        keyword_hits: set[str] = set()
        scored: list[tuple[int, float, int, int, LorebookEntry]] = []
        for entry in entries:
            if entry.id in taken or entry.injection.mode == "never":
                continue
            matches = count_keyword_matches(entry, search_text)
            weight = (
                activation_tracker.weight(entry.id) if activation_tracker is not None else 0.0
            )
            if matches == 0 and weight <= threshold:
                continue
            if matches:
                keyword_hits.add(entry.id)
            scored.append((matches, weight, entry.injection.priority, order[entry.id], entry))
        scored.sort(key=lambda s: (-s[0], -s[1], -s[2], s[3]))
        tier2 = self._fill_tier([s[4] for s in scored], budget, "tier2")
        taken.update(entry.id for entry in tier2)

        # Sticky entries keep their original activation so they decay out
        if activation_tracker is not None:
            for entry in tier2:
                if entry.id in keyword_hits and not entry.id.startswith(LIVE_ID_PREFIX):
                    activation_tracker.record(entry.id, position, entry.type)
            activation_tracker.prune(settings.retrieval_activation_max_age)

        if is_cancelled(cancel_token):
            return RetrievalResult(
                tier1=tier1, tier2=tier2, total_tokens=budget.tokens, cancelled=True
            )

        # Tier 3
        tier3: list[LorebookEntry] = []
        cancelled = False
        if settings.retrieval_llm_selection_enabled and self.selector and budget.remaining_entries:
            remainder = [
                entry
                for entry in entries
                if entry.id not in taken and entry.injection.mode != "never"
            ]
            limit = min(
                settings.retrieval_max_tier3_entries,
                settings.retrieval_tier_max_entries,
                budget.remaining_entries,
            )
            if remainder and limit > 0:
                recent_text = "\n\n".join(e.content for e in recent)
                try:
                    selected_ids = await await_cancellable(
                        self.selector(remainder, user_input, recent_text, limit), cancel_token
                    )
                    by_id = {entry.id: entry for entry in remainder}
                    picked = [by_id[i] for i in dict.fromkeys(selected_ids) if i in by_id]
                    tier3 = self._fill_tier(picked[:limit], budget, "tier3")
                except GenerationCancelledError:
                    logger.info("Retrieval cancelled during LLM selection; keeping tiers 1-2")
                    cancelled = True
                except Exception as e:
                    logger.warning(
                        "LLM entry selection failed (non-fatal): %s",
                        summarize_llm_error(e),
                        exc_info=True,
                    )

        result = RetrievalResult(
            tier1=tier1,
            tier2=tier2,
            tier3=tier3,
            total_tokens=budget.tokens,
            cancelled=cancelled,
        )
        logger.info(
            "Lorebook retrieval: tier1=%d, tier2=%d, tier3=%d, tokens=%d/%d",
            len(result.tier1),
            len(result.tier2),
            len(result.tier3),
            result.total_tokens,
            settings.retrieval_token_budget,
        )
        return result
