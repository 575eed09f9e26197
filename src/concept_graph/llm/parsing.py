"""Lenient parsing of relation triples from raw LLM output.

Models wrap JSON in markdown fences, add prose before or after it, or nest
the array under a key. The payload is located first and only declared
malformed when nothing in the response decodes.
"""

import json
import logging
from typing import Any, Optional

from concept_graph.errors import MalformedResponseError
from concept_graph.graph.relation import RelationTriple

logger = logging.getLogger(__name__)

_decoder = json.JSONDecoder()

SUBJECT_KEYS = ("node_1", "subject", "source", "head")
OBJECT_KEYS = ("node_2", "object", "target", "tail")
RELATION_KEYS = ("edge", "relation", "predicate", "label")
SUBJECT_TYPE_KEYS = ("node_1_type", "subject_type", "source_type")
OBJECT_TYPE_KEYS = ("node_2_type", "object_type", "target_type")
CONTAINER_KEYS = ("relations", "relationships", "triples", "edges")
DEFAULT_RELATION = "related to"


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ``` or ```json fence."""
    text = text.strip()
    if text.startswith("```"):
        first_newline = text.find("\n")
        if first_newline != -1:
            inner = text[first_newline + 1 :]
            closing = inner.rfind("```")
            if closing != -1:
                return inner[:closing].strip()
    return text


def _as_items(value: Any) -> Optional[list]:
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        for key in CONTAINER_KEYS:
            if isinstance(value.get(key), list):
                return value[key]
    return None


def extract_payload(response_text: str) -> list:
    """Locate the list of relation objects inside a response.

    Args:
        response_text: Raw LLM response.

    Returns:
        The decoded list (possibly empty).

    Raises:
        MalformedResponseError: If no JSON array or relations object decodes.
    """
    if not response_text or not response_text.strip():
        raise MalformedResponseError("Empty response")

    text = strip_code_fences(response_text)

    try:
        items = _as_items(json.loads(text))
        if items is not None:
            return items
    except json.JSONDecodeError:
        pass

    # Scan for the first decodable array or relations object in the prose
    for index, char in enumerate(text):
        if char not in "[{":
            continue
        try:
            value, _ = _decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            continue
        items = _as_items(value)
        if items is not None:
            return items

    raise MalformedResponseError(f"No JSON payload found in response: {response_text[:200]!r}")


def _first_string(item: dict, keys: tuple[str, ...]) -> Optional[str]:
    for key in keys:
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def parse_relations(response_text: str, chunk_id: Optional[str] = None) -> list[RelationTriple]:
    """Parse an LLM response into relation triples.

    Args:
        response_text: Raw LLM response.
        chunk_id: Chunk ID recorded on every triple.

    Returns:
        List of RelationTriple objects. Items missing a subject or an
        object are skipped.

    Raises:
        MalformedResponseError: If the response holds no parseable payload.
    """
    triples = []
    skipped = 0

    for item in extract_payload(response_text):
        if not isinstance(item, dict):
            skipped += 1
            continue

        subject = _first_string(item, SUBJECT_KEYS)
        obj = _first_string(item, OBJECT_KEYS)
        if not subject or not obj:
            skipped += 1
            continue

        triples.append(
            RelationTriple(
                subject=subject,
                object=obj,
                relation=_first_string(item, RELATION_KEYS) or DEFAULT_RELATION,
                subject_type=_first_string(item, SUBJECT_TYPE_KEYS),
                object_type=_first_string(item, OBJECT_TYPE_KEYS),
                source_chunk_id=chunk_id,
            )
        )

    if skipped:
        logger.debug("Skipped %d incomplete relation items", skipped)

    return triples
