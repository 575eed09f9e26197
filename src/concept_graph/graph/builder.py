"""Graph builder folding relation triples into a weighted concept graph."""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Optional

from concept_graph.errors import GraphConsistencyError

from .relation import RelationTriple

logger = logging.getLogger(__name__)

RELATION_WEIGHT = 4.0
PROXIMITY_WEIGHT = 1.0
PROXIMITY_RELATION = "contextual proximity"


def normalize_id(name: Optional[str]) -> str:
    """Normalize a surface name to a node id (trimmed, lowercased)."""
    if name is None:
        return ""
    return name.strip().lower()


def edge_key(a: str, b: str) -> tuple[str, str]:
    """Unordered pair key for an edge."""
    return (a, b) if a <= b else (b, a)


@dataclass
class ConceptNode:
    """A concept in the graph, identified by its normalized name."""

    id: str
    label: str
    entity_type: Optional[str] = None
    degree: int = 0
    community: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "entity_type": self.entity_type,
            "degree": self.degree,
            "community": self.community,
        }


@dataclass
class ConceptEdge:
    """An undirected weighted edge between two concepts.

    source/target are the sorted endpoints; direction keeps the
    subject -> object orientation of the latest explicit relation.
    """

    source: str
    target: str
    relation: str
    weight: float = 0.0
    occurrence_count: int = 0
    direction: Optional[tuple[str, str]] = None
    chunk_ids: set[str] = field(default_factory=set)

    @property
    def key(self) -> tuple[str, str]:
        return (self.source, self.target)

    def other(self, node_id: str) -> str:
        return self.target if node_id == self.source else self.source

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "relation": self.relation,
            "weight": self.weight,
            "occurrence_count": self.occurrence_count,
            "direction": list(self.direction) if self.direction else None,
            "chunk_ids": sorted(self.chunk_ids),
        }


@dataclass
class KnowledgeGraph:
    """A finalized concept graph, handed to analytics, storage and export."""

    nodes: dict[str, ConceptNode] = field(default_factory=dict)
    edges: dict[tuple[str, str], ConceptEdge] = field(default_factory=dict)
    tenant: str = "default"

    def __post_init__(self):
        self._adjacency: Optional[dict[str, dict[str, float]]] = None

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def edge_count(self) -> int:
        return len(self.edges)

    def get_node(self, name: str) -> Optional[ConceptNode]:
        return self.nodes.get(normalize_id(name))

    def get_edge(self, a: str, b: str) -> Optional[ConceptEdge]:
        return self.edges.get(edge_key(normalize_id(a), normalize_id(b)))

    def neighbors(self, node_id: str) -> dict[str, float]:
        """Map each neighbor of a node to the connecting edge weight."""
        if self._adjacency is None:
            adjacency: dict[str, dict[str, float]] = {node: {} for node in self.nodes}
            for (a, b), edge in self.edges.items():
                adjacency.setdefault(a, {})[b] = edge.weight
                adjacency.setdefault(b, {})[a] = edge.weight
            self._adjacency = adjacency
        return self._adjacency.get(node_id, {})

    def to_dict(self) -> dict[str, Any]:
        """Convert the graph to plain structured data.

        Returns:
            Dictionary with sorted 'nodes' and 'edges' lists.
        """
        return {
            "tenant": self.tenant,
            "nodes": [self.nodes[k].to_dict() for k in sorted(self.nodes)],
            "edges": [self.edges[k].to_dict() for k in sorted(self.edges)],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "KnowledgeGraph":
        """Rebuild a graph from the output of to_dict()."""
        nodes = {}
        for item in data.get("nodes", []):
            node = ConceptNode(
                id=item["id"],
                label=item.get("label") or item["id"],
                entity_type=item.get("entity_type"),
                degree=int(item.get("degree") or 0),
                community=item.get("community"),
            )
            nodes[node.id] = node

        edges = {}
        for item in data.get("edges", []):
            source, target = edge_key(item["source"], item["target"])
            direction = item.get("direction")
            edges[(source, target)] = ConceptEdge(
                source=source,
                target=target,
                relation=item.get("relation") or PROXIMITY_RELATION,
                weight=float(item.get("weight") or 0.0),
                occurrence_count=int(item.get("occurrence_count") or 0),
                direction=tuple(direction) if direction else None,
                chunk_ids=set(item.get("chunk_ids") or []),
            )

        return cls(nodes=nodes, edges=edges, tenant=data.get("tenant") or "default")


class GraphBuilder:
    """Single-writer builder for the canonical node/edge model.

    Not thread-safe: feed it from one consumer only.
    """

    def __init__(self, tenant: str = "default"):
        """Initialize the graph builder.

        Args:
            tenant: Tenant label carried by the finalized graph.
        """
        self.tenant = tenant
        self._nodes: dict[str, ConceptNode] = {}
        self._edges: dict[tuple[str, str], ConceptEdge] = {}
        # chunk id -> node ids mentioned by explicit relations, first-seen order
        self._chunk_nodes: dict[str, dict[str, None]] = {}
        # (chunk id, edge key) pairs already credited with proximity weight
        self._proximity_credited: set[tuple[str, tuple[str, str]]] = set()
        self.dropped = 0

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def edge_count(self) -> int:
        return len(self._edges)

    def add_relation(self, triple: RelationTriple) -> bool:
        """Fold one extracted relation into the graph.

        Args:
            triple: The relation triple.

        Returns:
            True if the triple was applied, False if it was dropped.
        """
        try:
            subject_id, object_id = self._validate(triple)
        except GraphConsistencyError as e:
            self.dropped += 1
            logger.debug("Dropping triple %r: %s", triple, e)
            return False

        self._ensure_node(subject_id, triple.subject, triple.subject_type)
        self._ensure_node(object_id, triple.object, triple.object_type)

        edge = self._ensure_edge(subject_id, object_id, triple.relation)
        edge.weight += RELATION_WEIGHT
        edge.occurrence_count += 1
        edge.relation = triple.relation.strip() or edge.relation
        edge.direction = (subject_id, object_id)

        if triple.source_chunk_id:
            edge.chunk_ids.add(triple.source_chunk_id)
            seen = self._chunk_nodes.setdefault(triple.source_chunk_id, {})
            seen[subject_id] = None
            seen[object_id] = None

        return True

    def add_relations(self, triples: Iterable[RelationTriple]) -> int:
        """Fold many triples; returns the number applied."""
        return sum(1 for triple in triples if self.add_relation(triple))

    def add_proximity(self, chunk_id: str, entity_ids: Iterable[str]) -> int:
        """Credit every pair of entities that co-occurred in one chunk.

        Each pair gains PROXIMITY_WEIGHT once per chunk, however often its
        entities appear in that chunk or however often this is called for it.

        Args:
            chunk_id: Chunk the entities were seen in.
            entity_ids: Entity names or ids from that chunk.

        Returns:
            Number of pairs credited by this call.
        """
        ids: dict[str, None] = {}
        for name in entity_ids:
            node_id = normalize_id(name)
            if not node_id:
                continue
            self._ensure_node(node_id, name, None)
            ids[node_id] = None

        members = list(ids)
        credited = 0
        for i, a in enumerate(members):
            for b in members[i + 1 :]:
                key = edge_key(a, b)
                if (chunk_id, key) in self._proximity_credited:
                    continue
                self._proximity_credited.add((chunk_id, key))

                edge = self._ensure_edge(a, b, PROXIMITY_RELATION)
                edge.weight += PROXIMITY_WEIGHT
                edge.chunk_ids.add(chunk_id)
                credited += 1

        return credited

    def add_chunk_proximity(self) -> int:
        """Apply proximity for every chunk seen through add_relation."""
        return sum(
            self.add_proximity(chunk_id, list(node_ids))
            for chunk_id, node_ids in self._chunk_nodes.items()
        )

    def absorb(self, graph: KnowledgeGraph) -> None:
        """Fold a previously built graph into this one.

        Used to union a resumed or appended run with earlier output: weights
        and occurrence counts add up, chunk ids are united and the labels and
        types already in this builder are kept.
        """
        for node in graph.nodes.values():
            self._ensure_node(node.id, node.label, None)
            if node.entity_type and not self._nodes[node.id].entity_type:
                self._nodes[node.id].entity_type = node.entity_type

        for key, other in graph.edges.items():
            edge = self._edges.get(key)
            if edge is None:
                edge = self._ensure_edge(key[0], key[1], other.relation)
                edge.direction = other.direction
            elif edge.occurrence_count == 0 and other.occurrence_count > 0:
                # Proximity alone never replaces an explicit relation
                edge.relation = other.relation
                edge.direction = other.direction
            edge.weight += other.weight
            edge.occurrence_count += other.occurrence_count
            edge.chunk_ids.update(other.chunk_ids)

    def finalize(self) -> KnowledgeGraph:
        """Recompute derived fields and return a snapshot of the graph.

        Degree is the number of incident edges; community is reset so the
        analytics engine can assign it.
        """
        degrees = dict.fromkeys(self._nodes, 0)
        for a, b in self._edges:
            degrees[a] += 1
            degrees[b] += 1

        for node_id, node in self._nodes.items():
            node.degree = degrees[node_id]
            node.community = None

        return KnowledgeGraph(
            nodes={k: replace(n) for k, n in self._nodes.items()},
            edges={k: replace(e, chunk_ids=set(e.chunk_ids)) for k, e in self._edges.items()},
            tenant=self.tenant,
        )

    def _validate(self, triple: RelationTriple) -> tuple[str, str]:
        subject_id = normalize_id(triple.subject)
        object_id = normalize_id(triple.object)

        if not subject_id or not object_id:
            raise GraphConsistencyError("blank subject or object")
        if subject_id == object_id:
            raise GraphConsistencyError(f"self-loop on '{subject_id}'")
        return subject_id, object_id

    def _ensure_node(self, node_id: str, label: str, entity_type: Optional[str]) -> ConceptNode:
        node = self._nodes.get(node_id)
        if node is None:
            # First-seen casing is kept as the display label
            node = ConceptNode(id=node_id, label=label.strip())
            self._nodes[node_id] = node

        if entity_type and entity_type.strip():
            node.entity_type = entity_type.strip().lower()
        return node

    def _ensure_edge(self, a: str, b: str, relation: str) -> ConceptEdge:
        key = edge_key(a, b)
        edge = self._edges.get(key)
        if edge is None:
            edge = ConceptEdge(source=key[0], target=key[1], relation=relation)
            self._edges[key] = edge
        return edge
