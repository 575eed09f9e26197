"""Relation extractor for the Anthropic Messages API."""

from typing import Optional

import httpx

from concept_graph.errors import ConfigError, MalformedResponseError
from concept_graph.graph.relation import RelationTriple

from .base import EXTRACTION_TEMPERATURE, MAX_RESPONSE_TOKENS, post_json
from .parsing import parse_relations
from .prompts import system_prompt, user_prompt

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicExtractor:
    """Extractor for Anthropic Claude models."""

    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://api.anthropic.com",
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def preflight(self) -> None:
        if not self.api_key:
            raise ConfigError("Anthropic API key is required. Set CONCEPTGRAPH_ANTHROPIC_API_KEY.")

    async def extract(
        self,
        chunk_text: str,
        domain_context: Optional[str] = None,
    ) -> list[RelationTriple]:
        payload = {
            "model": self.model,
            "max_tokens": MAX_RESPONSE_TOKENS,
            "temperature": EXTRACTION_TEMPERATURE,
            "system": system_prompt(domain_context),
            "messages": [{"role": "user", "content": user_prompt(chunk_text)}],
        }
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

        data = await post_json(
            self.name,
            f"{self.base_url}/v1/messages",
            payload,
            headers=headers,
            timeout=self.timeout,
            transport=self.transport,
        )

        # Concatenate the text blocks of the reply
        blocks = data.get("content") if isinstance(data, dict) else None
        texts = [
            block["text"]
            for block in blocks or []
            if isinstance(block, dict) and isinstance(block.get("text"), str)
        ]
        if not texts:
            raise MalformedResponseError("No text content in Anthropic response")
        return parse_relations("".join(texts))
