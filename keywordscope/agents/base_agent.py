"""Base class for Pydantic AI agents."""

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Generic, TypeVar, cast

from pydantic import BaseModel
from pydantic_ai import Agent

from keywordscope.config import settings

logger = logging.getLogger(__name__)

InputT = TypeVar("InputT", bound=BaseModel)
OutputT = TypeVar("OutputT")


class BaseAgent(ABC, Generic[InputT, OutputT]):
    """Abstract base class for Pydantic AI agents.

    Each agent should:
    1. Define the system_prompt property
    2. Define the output_type property
    3. Implement _build_prompt to construct the user prompt
    """

    # Explicit model override at the class level (bypasses settings resolution)
    model: str | None = None
    temperature: float = 0.7
    max_retries: int = settings.llm_max_retries

    def __init__(self, model_override: str | None = None) -> None:
        """Initialize the agent.

        Model resolution priority:
        1. model_override parameter (explicit runtime override)
        2. model class attribute (if set by subclass)
        3. settings.get_clustering_model() (environment-aware fallback)
        """
        model_source = "settings"
        if model_override:
            self._model = model_override
            model_source = "runtime_override"
        elif self.model:
            self._model = self.model
            model_source = "class_override"
        else:
            self._model = settings.get_clustering_model()
        self._agent: Agent[None, OutputT] | None = None

        logger.info(
            "Agent initialized",
            extra={
                "agent": self.__class__.__name__,
                "model": self._model,
                "model_source": model_source,
                "temperature": self.temperature,
            },
        )

    @property
    def agent(self) -> Agent[None, OutputT]:
        """Lazily initialize and return the Pydantic AI agent."""
        if self._agent is None:
            self._agent = cast(
                Agent[None, OutputT],
                Agent(
                    model=self._model,
                    output_type=self.output_type,
                    system_prompt=self.system_prompt,
                    retries=self.max_retries,
                ),
            )
        return self._agent

    @property
    @abstractmethod
    def system_prompt(self) -> str:
        """System prompt for the agent."""
        pass

    @property
    @abstractmethod
    def output_type(self) -> type[OutputT]:
        """Output type for the agent."""
        pass

    @abstractmethod
    def _build_prompt(self, input_data: InputT) -> str:
        """Build the user prompt from input data."""
        pass

    async def stream_text(self, input_data: InputT) -> AsyncIterator[str]:
        """Stream text deltas from the model.

        Closing the generator early exits the streaming context, which releases
        the underlying HTTP response.
        """
        agent_name = self.__class__.__name__
        prompt = self._build_prompt(input_data)
        logger.info(
            "Agent stream started",
            extra={"agent": agent_name, "prompt_length": len(prompt), "model": self._model},
        )

        t0 = time.perf_counter()
        chunks = 0
        async with self.agent.run_stream(
            prompt,
            model_settings={"temperature": self.temperature},
        ) as result:
            async for delta in result.stream_text(delta=True):
                chunks += 1
                yield delta

        logger.info(
            "Agent stream completed",
            extra={
                "agent": agent_name,
                "duration_s": round(time.perf_counter() - t0, 2),
                "chunks": chunks,
            },
        )

