"""Relation extractor for a self-hosted Ollama server."""

from typing import Optional

import httpx

from concept_graph.errors import MalformedResponseError, ProviderUnavailableError
from concept_graph.graph.chunker import context_window_for_model
from concept_graph.graph.relation import RelationTriple

from .base import EXTRACTION_TEMPERATURE, MAX_RESPONSE_TOKENS, post_json
from .parsing import parse_relations
from .prompts import system_prompt, user_prompt


class OllamaExtractor:
    """Extractor for models served by Ollama."""

    name = "ollama"

    def __init__(
        self,
        model: str,
        base_url: str = "http://localhost:11434",
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def preflight(self) -> None:
        """Check that the Ollama server answers before scheduling work."""
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self.transport) as client:
                response = await client.get(f"{self.base_url}/api/tags")
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(
                f"Failed to connect to Ollama at {self.base_url}. Is it running? ({e})"
            ) from e

        if response.status_code != 200:
            raise ProviderUnavailableError(f"Ollama error {response.status_code}: {response.text}")

    async def extract(
        self,
        chunk_text: str,
        domain_context: Optional[str] = None,
    ) -> list[RelationTriple]:
        payload = {
            "model": self.model,
            "system": system_prompt(domain_context),
            "prompt": user_prompt(chunk_text),
            "stream": False,
            "options": {
                "temperature": EXTRACTION_TEMPERATURE,
                "num_predict": MAX_RESPONSE_TOKENS,
                "num_ctx": context_window_for_model(self.model),
            },
        }

        data = await post_json(
            self.name,
            f"{self.base_url}/api/generate",
            payload,
            timeout=self.timeout,
            transport=self.transport,
        )

        content = data.get("response") if isinstance(data, dict) else None
        if not isinstance(content, str):
            raise MalformedResponseError(f"Unexpected Ollama response: {str(data)[:200]}")
        return parse_relations(content)
