"""Base agent class for all narrative engine agents."""

import logging
from collections.abc import AsyncIterator
from typing import Any, TypeVar

from pydantic import BaseModel

from src.settings import Settings
from src.utils.cancellation import CancelToken
from src.utils.llm_client import (
    AssistantTurn,
    ChatRequest,
    StreamChunk,
    StreamingProvider,
    collect_turn,
)
from src.utils.logging_config import log_performance
from src.utils.validation import validate_not_empty

T = TypeVar("T", bound=BaseModel)

logger = logging.getLogger(__name__)

# Temperature used for structured output unless a caller overrides it
STRUCTURED_TEMPERATURE = 0.1


class BaseAgent:
    """Base class for all agents in the narrative engine."""

    def __init__(
        self,
        name: str,
        role: str,
        system_prompt: str,
        provider: StreamingProvider,
        agent_role: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        settings: Settings | None = None,
    ):
        """Create an agent bound to a provider.

        Args:
            name: Display name for the agent.
            role: Human-readable role description for the agent.
            system_prompt: System prompt that guides the agent's behavior.
            provider: Streaming provider that executes requests.
            agent_role: Key into the per-agent settings dicts. Defaults to a
                normalized form of ``role``.
            model: Explicit model; resolved from settings when None.
            temperature: Explicit temperature; resolved from settings when None.
            settings: Engine settings; loaded when None.
        """
        validate_not_empty(name, "name")
        validate_not_empty(role, "role")
        validate_not_empty(system_prompt, "system_prompt")

        self.name = name
        self.role = role
        self.system_prompt = system_prompt
        self.agent_role = agent_role or role.lower().replace(" ", "_")
        self.provider = provider
        self.settings = settings or Settings.load()
        self.model = model or self.settings.get_model_for_agent(self.agent_role)
        self.temperature = (
            temperature
            if temperature is not None
            else self.settings.get_temperature_for_agent(self.agent_role)
        )

    def build_messages(
        self, prompt: str, context: str | None = None, system_prompt: str | None = None
    ) -> list[dict[str, Any]]:
        """System prompt, optional context block, then the user prompt."""
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": system_prompt or self.system_prompt}
        ]
        if context:
            messages.append({"role": "system", "content": f"CURRENT STORY CONTEXT:\n{context}"})
        messages.append({"role": "user", "content": prompt})
        return messages

    async def generate_structured(
        self,
        prompt: str,
        response_model: type[T],
        context: str | None = None,
        temperature: float | None = None,
        system_prompt: str | None = None,
    ) -> T:
        """Generate structured output validated against ``response_model``.

        Args:
            prompt: The user prompt to send.
            response_model: Pydantic model class defining the expected output structure.
            context: Optional context to include as a system message.
            temperature: Override temperature (defaults to a low value for structured output).
            system_prompt: Replace the agent's system prompt for this call.

        Returns:
            Instance of response_model with validated data.

        Raises:
            LLMError: If the provider fails after its retries.
        """
        validate_not_empty(prompt, "prompt")
        request = ChatRequest(
            model=self.model,
            messages=self.build_messages(prompt, context, system_prompt),
            temperature=temperature if temperature is not None else STRUCTURED_TEMPERATURE,
        )
        with log_performance(logger, f"{self.name} structured generation"):
            return await self.provider.generate_structured(request, response_model)

    def stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        think: bool | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Open a streaming request with this agent's model and temperature."""
        request = ChatRequest(
            model=self.model,
            messages=messages,
            temperature=self.temperature,
            tools=tools,
            think=think,
        )
        logger.debug(
            "%s: Streaming from %s (messages=%d, tools=%d)",
            self.name,
            self.model,
            len(messages),
            len(tools or []),
        )
        return self.provider.stream_with_tools(request)

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        cancel_token: CancelToken | None = None,
    ) -> AssistantTurn:
        """Run one streamed turn to completion and return what the model produced."""
        return await collect_turn(
            self.stream(messages, tools=tools),
            cancel_token=cancel_token,
            inter_chunk_timeout=self.settings.stream_inter_chunk_timeout,
            wall_clock_timeout=self.settings.stream_wall_clock_timeout,
        )

    async def generate(self, prompt: str, context: str | None = None) -> str:
        """Generate free text for a single prompt."""
        validate_not_empty(prompt, "prompt")
        turn = await self.complete(self.build_messages(prompt, context))
        return turn.content.strip()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, model={self.model!r})"
