"""Relation extractor for Google Gemini."""

from typing import Optional

import httpx

from concept_graph.errors import ConfigError, ContextOverflowError, MalformedResponseError
from concept_graph.graph.relation import RelationTriple

from .base import EXTRACTION_TEMPERATURE, MAX_RESPONSE_TOKENS, post_json
from .parsing import parse_relations
from .prompts import system_prompt, user_prompt


class GoogleExtractor:
    """Extractor for Gemini models through the generateContent endpoint."""

    name = "google"

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://generativelanguage.googleapis.com",
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
            raise ConfigError("Google API key is required. Set CONCEPTGRAPH_GOOGLE_API_KEY.")

    async def extract(
        self,
        chunk_text: str,
        domain_context: Optional[str] = None,
    ) -> list[RelationTriple]:
        payload = {
            "systemInstruction": {"parts": [{"text": system_prompt(domain_context)}]},
            "contents": [{"role": "user", "parts": [{"text": user_prompt(chunk_text)}]}],
            "generationConfig": {
                "temperature": EXTRACTION_TEMPERATURE,
                "maxOutputTokens": MAX_RESPONSE_TOKENS,
            },
        }

        data = await post_json(
            self.name,
            f"{self.base_url}/v1beta/models/{self.model}:generateContent",
            payload,
            headers={"x-goog-api-key": self.api_key},
            timeout=self.timeout,
            transport=self.transport,
        )

        candidates = data.get("candidates") if isinstance(data, dict) else None
        if not candidates:
            # Prompts over the input limit come back blocked, without candidates
            feedback = str(data.get("promptFeedback", "")) if isinstance(data, dict) else ""
            if "TOKEN" in feedback.upper():
                raise ContextOverflowError(f"Gemini rejected the prompt: {feedback}")
            raise MalformedResponseError("No candidates in Gemini response")

        parts = (candidates[0].get("content") or {}).get("parts") or []
        texts = [part["text"] for part in parts if isinstance(part.get("text"), str)]
        if not texts:
            raise MalformedResponseError("No text content in Gemini response")
        return parse_relations("".join(texts))
