"""Relation extractor capability shared by all provider variants."""

from typing import Any, Optional, Protocol, runtime_checkable

import httpx

from concept_graph.errors import (
    ContextOverflowError,
    ExtractionError,
    FatalExtractionError,
    MalformedResponseError,
    TransientExtractionError,
    is_context_overflow,
)
from concept_graph.graph.relation import RelationTriple

EXTRACTION_TEMPERATURE = 0.0
MAX_RESPONSE_TOKENS = 4096


@runtime_checkable
class RelationExtractor(Protocol):
    """Uniform extraction capability over one LLM provider.

    extract() returns the triples found in a chunk or raises one of the
    ExtractionError kinds. preflight() runs once before a batch and raises
    ConfigError or ProviderUnavailableError when the run cannot start.
    """

    name: str
    model: str

    async def extract(
        self,
        chunk_text: str,
        domain_context: Optional[str] = None,
    ) -> list[RelationTriple]: ...

    async def preflight(self) -> None: ...


def classify_http_error(provider: str, status_code: int, body: str) -> ExtractionError:
    """Map a non-2xx provider response to an extraction error kind.

    Args:
        provider: Provider name for the message.
        status_code: HTTP status code.
        body: Response body text.

    Returns:
        The ExtractionError to raise.
    """
    message = f"{provider} API error ({status_code}): {body[:500]}"

    if status_code in (401, 403):
        return FatalExtractionError(message)
    if status_code == 429:
        return TransientExtractionError(message)
    if is_context_overflow(body):
        return ContextOverflowError(message)
    if status_code >= 500 or status_code == 408:
        return TransientExtractionError(message)
    # Remaining 4xx: unknown model, bad endpoint or rejected request
    return FatalExtractionError(message)


async def post_json(
    provider: str,
    url: str,
    payload: dict[str, Any],
    *,
    headers: Optional[dict[str, str]] = None,
    timeout: float = 120.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Any:
    """POST a JSON request and decode the JSON response.

    Raises:
        TransientExtractionError: On timeouts and connection failures.
        ExtractionError: Kind chosen by classify_http_error on non-2xx.
        MalformedResponseError: If the body is not JSON.
    """
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.post(url, json=payload, headers=headers)
    except httpx.TimeoutException as e:
        raise TransientExtractionError(f"{provider} request timed out: {e}") from e
    except httpx.TransportError as e:
        raise TransientExtractionError(f"Failed to reach {provider} at {url}: {e}") from e

    if response.status_code >= 400:
        raise classify_http_error(provider, response.status_code, response.text)

    try:
        return response.json()
    except ValueError as e:
        raise MalformedResponseError(f"{provider} returned a non-JSON body: {response.text[:200]!r}") from e
