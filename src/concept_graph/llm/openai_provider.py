"""Relation extractor for OpenAI-compatible APIs."""

from typing import Optional

import openai
from openai import AsyncOpenAI

from concept_graph.errors import (
    ConfigError,
    ContextOverflowError,
    ExtractionError,
    FatalExtractionError,
    MalformedResponseError,
    TransientExtractionError,
    is_context_overflow,
)
from concept_graph.graph.relation import RelationTriple

from .base import EXTRACTION_TEMPERATURE, MAX_RESPONSE_TOKENS, classify_http_error
from .parsing import parse_relations
from .prompts import system_prompt, user_prompt


class OpenAIExtractor:
    """Extractor for OpenAI and OpenAI-compatible chat completion APIs."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: Optional[str] = None,
        timeout: float = 120.0,
        client: Optional[AsyncOpenAI] = None,
    ):
        """Initialize the OpenAI extractor.

        Args:
            api_key: API key.
            model: Model name.
            base_url: Base URL for the API. Defaults to the OpenAI endpoint.
            timeout: Per-request timeout in seconds.
            client: Pre-built async client, mainly for tests.
        """
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self._client = client

    def _make_client(self) -> AsyncOpenAI:
        # Retries are owned by the orchestrator
        return AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=0,
        )

    async def preflight(self) -> None:
        if not self.api_key and self._client is None:
            raise ConfigError("OpenAI API key is required. Set CONCEPTGRAPH_OPENAI_API_KEY.")

    async def extract(
        self,
        chunk_text: str,
        domain_context: Optional[str] = None,
    ) -> list[RelationTriple]:
        """Extract relation triples from a chunk.

        Args:
            chunk_text: Chunk text.
            domain_context: Optional domain description for the prompt.

        Returns:
            List of RelationTriple objects.
        """
        messages = [
            {"role": "system", "content": system_prompt(domain_context)},
            {"role": "user", "content": user_prompt(chunk_text)},
        ]

        if self._client is not None:
            content = await self._complete(self._client, messages)
        else:
            async with self._make_client() as client:
                content = await self._complete(client, messages)

        if content is None:
            raise MalformedResponseError("No text content in OpenAI response")
        return parse_relations(content)

    async def _complete(self, client: AsyncOpenAI, messages: list[dict]) -> Optional[str]:
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=EXTRACTION_TEMPERATURE,
                max_tokens=MAX_RESPONSE_TOKENS,
            )
        except openai.APIError as e:
            raise self._classify(e) from e

        if not response.choices:
            raise MalformedResponseError("OpenAI response has no choices")
        return response.choices[0].message.content

    def _classify(self, error: openai.APIError) -> ExtractionError:
        if isinstance(error, openai.APITimeoutError):
            return TransientExtractionError(f"OpenAI request timed out: {error}")
        if isinstance(error, openai.APIConnectionError):
            return TransientExtractionError(f"Failed to reach OpenAI API: {error}")
        if isinstance(error, openai.APIResponseValidationError):
            return MalformedResponseError(f"Unexpected OpenAI response: {error}")
        if isinstance(error, openai.APIStatusError):
            code = getattr(error, "code", None)
            if code == "context_length_exceeded":
                return ContextOverflowError(str(error))
            return classify_http_error(self.name, error.status_code, str(error))
        if is_context_overflow(str(error)):
            return ContextOverflowError(str(error))
        return FatalExtractionError(f"OpenAI API error: {error}")
