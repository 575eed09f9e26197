"""Prompt templates for relation extraction."""

from typing import Optional

GRAPH_EXTRACTION_SYSTEM_PROMPT = """You are a network graph maker who extracts terms and their relations from a given context.
You are provided with a context chunk (delimited by ```). Your task is to extract the ontology of terms mentioned in the given context. These terms should represent the key concepts as per the context.

Thought 1: While traversing through each sentence, think about the key terms mentioned in it.
    Terms may include object, entity, location, organization, person, condition, acronym, documents, service, concept, etc.
    Terms should be as atomistic as possible.

Thought 2: Think about how these terms can have one on one relation with other terms.
    Terms that are mentioned in the same sentence or the same paragraph are typically related to each other.

Thought 3: Find out the relation between each such related pair of terms.

Thought 4: Classify each term with a short descriptive type (e.g. "programming language", "database", "company", "algorithm", "person").

Format your output as a JSON array. Each element contains a pair of terms and the relation between them:
[
    {
        "node_1": "A concept from extracted ontology",
        "node_1_type": "descriptive type for node_1",
        "node_2": "A related concept from extracted ontology",
        "node_2_type": "descriptive type for node_2",
        "edge": "relationship between node_1 and node_2 in one short sentence"
    }
]

Rules:
- Extract only the most important and meaningful relationships
- Keep node names concise (1-4 words)
- Entity types should be short (1-3 words) and lowercase
- Return an empty array [] if no meaningful relationships can be extracted
- Output ONLY valid JSON, no other text"""

DOMAIN_CONTEXT_TEMPLATE = """

Domain context:
{domain}
Prefer terms and relation names that are meaningful in this domain."""


def system_prompt(domain_context: Optional[str] = None) -> str:
    """Build the system prompt, optionally specialized for a domain."""
    if domain_context and domain_context.strip():
        return GRAPH_EXTRACTION_SYSTEM_PROMPT + DOMAIN_CONTEXT_TEMPLATE.format(
            domain=domain_context.strip()
        )
    return GRAPH_EXTRACTION_SYSTEM_PROMPT


def user_prompt(text: str) -> str:
    """Wrap a chunk for the user turn."""
    return f"context: ```{text}```\n\noutput: "
