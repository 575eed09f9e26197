"""Relation triples produced by LLM extraction."""

from dataclasses import asdict, dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class RelationTriple:
    """A (subject, relation, object) fact extracted from one chunk.

    Subject and object are surface strings as the model wrote them; the
    graph builder normalizes them.
    """

    subject: str
    object: str
    relation: str
    subject_type: Optional[str] = None
    object_type: Optional[str] = None
    source_chunk_id: Optional[str] = None

    def with_chunk(self, chunk_id: str) -> "RelationTriple":
        return RelationTriple(
            subject=self.subject,
            object=self.object,
            relation=self.relation,
            subject_type=self.subject_type,
            object_type=self.object_type,
            source_chunk_id=chunk_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def entity_names(triples: list[RelationTriple]) -> list[str]:
    """List the distinct subjects and objects of triples, first-seen order.

    Args:
        triples: Triples extracted from a single chunk.

    Returns:
        Surface names, deduplicated by normalized form.
    """
    seen = set()
    names = []

    for triple in triples:
        for name in (triple.subject, triple.object):
            normalized = name.strip().lower()
            if normalized and normalized not in seen:
                seen.add(normalized)
                names.append(name.strip())

    return names
