"""OpenAI-backed implementation of the inference port."""

import logging
import time
from typing import Dict, List, Optional

import tiktoken
from openai import AsyncOpenAI, APIError as OpenAIAPIError, RateLimitError as OpenAIRateLimitError

from .base import BaseBrain
from ..errors import InferenceError
from ..models.execution_models import BrainCost, BrainRequest, BrainResponse

logger = logging.getLogger(__name__)


class OpenAIBrain(BaseBrain):
    """
    Brain backed by the OpenAI chat completions API.

    PATTERN: Official OpenAI SDK with async client
    GOTCHA: Usage may be missing on some responses, fall back to tiktoken counts
    GOTCHA: A missing API key only fails on the first call
    """

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        cost_per_1k_input_cents: float = 0.015,
        cost_per_1k_output_cents: float = 0.06,
        max_tokens: Optional[int] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        """
        Initialize OpenAI brain.

        Args:
            api_key: OpenAI API key
            model: Chat model name
            cost_per_1k_input_cents: Price of 1k prompt tokens in cents
            cost_per_1k_output_cents: Price of 1k completion tokens in cents
            max_tokens: Completion token limit
            client: Pre-built client (tests)
        """
        self.api_key = api_key
        self.model = model
        self.cost_per_1k_input_cents = cost_per_1k_input_cents
        self.cost_per_1k_output_cents = cost_per_1k_output_cents
        self.max_tokens = max_tokens
        self._client = client
        self._tokenizer = None

    @property
    def client(self) -> AsyncOpenAI:
        # Created on first use so the system can be wired without credentials
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    @property
    def tokenizer(self):
        if self._tokenizer is None:
            try:
                self._tokenizer = tiktoken.encoding_for_model(self.model)
            except KeyError:
                # Fallback to cl100k_base for newer models
                self._tokenizer = tiktoken.get_encoding("cl100k_base")
        return self._tokenizer

    def count_tokens(self, text: str) -> int:
        return len(self.tokenizer.encode(text))

    def calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        """Total cost in cents for a call."""
        return (input_tokens / 1000) * self.cost_per_1k_input_cents + (
            output_tokens / 1000
        ) * self.cost_per_1k_output_cents

    def _build_messages(self, request: BrainRequest) -> List[Dict[str, str]]:
        messages = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.prompt})
        return messages

    async def execute(self, request: BrainRequest) -> BrainResponse:
        messages = self._build_messages(request)
        started = time.monotonic()

        try:
            kwargs = {"model": self.model, "messages": messages}
            if self.max_tokens:
                kwargs["max_tokens"] = self.max_tokens
            response = await self.client.chat.completions.create(**kwargs)
        except OpenAIRateLimitError as e:
            logger.warning(f"Rate limited: {e}")
            raise InferenceError(f"OpenAI rate limit: {str(e)}") from e
        except OpenAIAPIError as e:
            logger.error(f"OpenAI API error: {e}")
            raise InferenceError(f"OpenAI API error: {str(e)}") from e

        duration_ms = int((time.monotonic() - started) * 1000)
        output = response.choices[0].message.content or ""

        usage = getattr(response, "usage", None)
        if usage is not None:
            input_tokens = usage.prompt_tokens
            output_tokens = usage.completion_tokens
        else:
            input_tokens = sum(self.count_tokens(m["content"]) for m in messages)
            output_tokens = self.count_tokens(output)

        cost = BrainCost(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_cost_cents=self.calculate_cost(input_tokens, output_tokens),
        )

        logger.debug(
            f"OpenAI call finished in {duration_ms}ms "
            f"({input_tokens} in / {output_tokens} out, {cost.total_cost_cents:.4f}c)"
        )

        return BrainResponse(
            success=True,
            output=output,
            duration_ms=duration_ms,
            cost=cost,
        )
