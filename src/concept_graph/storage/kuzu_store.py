"""Kuzu graph database storage for concept graphs."""

import logging
from pathlib import Path
from typing import Any, Optional

import kuzu

from concept_graph.config import settings
from concept_graph.errors import StorageError
from concept_graph.graph.builder import ConceptEdge, ConceptNode, KnowledgeGraph, edge_key, normalize_id
from concept_graph.graph.community import detect_communities

logger = logging.getLogger(__name__)

NO_COMMUNITY = -1


def concept_uid(tenant: str, node_id: str) -> str:
    """Primary key of a concept: node ids are only unique within a tenant."""
    return f"{tenant}::{node_id}"


class KuzuStore:
    """Storage backend using Kuzu graph database.

    Every node and relationship carries the tenant it was written for, so
    several graphs can share one database.
    """

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize Kuzu store.

        Args:
            db_path: Path to the database directory.
        """
        self.db_path = Path(db_path or settings.kuzu_db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self.db = kuzu.Database(str(self.db_path))
            self.conn = kuzu.Connection(self.db)
        except RuntimeError as e:
            raise StorageError(f"Cannot open Kuzu database at {self.db_path}: {e}") from e

        self._initialize_schema()

    def _initialize_schema(self) -> None:
        """Create the graph schema if it doesn't exist."""
        schemas = [
            """
            CREATE NODE TABLE IF NOT EXISTS Concept(
                uid STRING PRIMARY KEY,
                id STRING,
                label STRING,
                entity_type STRING,
                degree INT64,
                community INT64,
                tenant STRING
            )
            """,
            """
            CREATE REL TABLE IF NOT EXISTS RELATES_TO(
                FROM Concept TO Concept,
                relation STRING,
                weight DOUBLE,
                occurrence_count INT64,
                tenant STRING,
                MANY_MANY
            )
            """,
        ]
        for schema in schemas:
            self._execute(schema)

    def _execute(self, query: str, parameters: Optional[dict[str, Any]] = None):
        try:
            return self.conn.execute(query, parameters or {})
        except RuntimeError as e:
            raise StorageError(f"Kuzu query failed: {e}") from e

    def _rows(self, query: str, parameters: Optional[dict[str, Any]] = None) -> list[list[Any]]:
        result = self._execute(query, parameters)
        rows = []
        while result.has_next():
            rows.append(result.get_next())
        return rows

    def store_graph(self, graph: KnowledgeGraph, tenant: Optional[str] = None) -> None:
        """Replace everything stored for a tenant with the given graph.

        Args:
            graph: Finalized graph to store.
            tenant: Tenant to write; defaults to the graph's tenant.
        """
        tenant = tenant or graph.tenant
        self.delete_tenant(tenant)

        for node in graph.nodes.values():
            self._upsert_concept(node, tenant)
        for edge in graph.edges.values():
            self._create_edge(edge, tenant)

        logger.info(
            "Stored %d concepts and %d relationships for tenant '%s'",
            graph.node_count,
            graph.edge_count,
            tenant,
        )

    def merge_graph(self, graph: KnowledgeGraph, tenant: Optional[str] = None) -> None:
        """Merge a graph into what is stored for a tenant.

        Stored labels are kept and a non-empty incoming entity type wins.
        Edge weights and occurrence counts are added to the stored values.
        The incoming relation label replaces the stored one only when the
        incoming edge carries explicit relations. Degrees and communities
        are then recomputed over the whole merged tenant graph.
        """
        tenant = tenant or graph.tenant

        for node in graph.nodes.values():
            self._merge_concept(node, tenant)

        query = """
        MATCH (a:Concept {uid: $source}), (b:Concept {uid: $target})
        MERGE (a)-[r:RELATES_TO]->(b)
        ON CREATE SET r.relation = $relation, r.weight = $weight,
            r.occurrence_count = $occurrence_count, r.tenant = $tenant
        ON MATCH SET
            r.relation = CASE WHEN $occurrence_count > 0 THEN $relation ELSE r.relation END,
            r.weight = r.weight + $weight,
            r.occurrence_count = r.occurrence_count + $occurrence_count
        """
        for edge in graph.edges.values():
            self._execute(query, self._edge_parameters(edge, tenant))

        self._refresh_annotations(tenant)
        logger.info("Merged %d concepts and %d relationships into tenant '%s'", graph.node_count, graph.edge_count, tenant)

    def _merge_concept(self, node: ConceptNode, tenant: str) -> None:
        query = """
        MERGE (c:Concept {uid: $uid})
        ON CREATE SET c.id = $id, c.label = $label, c.entity_type = $entity_type,
            c.degree = 0, c.community = $community, c.tenant = $tenant
        ON MATCH SET
            c.entity_type = CASE WHEN $entity_type <> '' THEN $entity_type ELSE c.entity_type END
        """
        self._execute(
            query,
            {
                "uid": concept_uid(tenant, node.id),
                "id": node.id,
                "label": node.label,
                "entity_type": node.entity_type or "",
                "community": NO_COMMUNITY,
                "tenant": tenant,
            },
        )

    def _upsert_concept(self, node: ConceptNode, tenant: str) -> None:
        query = """
        MERGE (c:Concept {uid: $uid})
        SET c.id = $id, c.label = $label, c.entity_type = $entity_type,
            c.degree = $degree, c.community = $community, c.tenant = $tenant
        """
        self._execute(
            query,
            {
                "uid": concept_uid(tenant, node.id),
                "id": node.id,
                "label": node.label,
                "entity_type": node.entity_type or "",
                "degree": node.degree,
                "community": NO_COMMUNITY if node.community is None else node.community,
                "tenant": tenant,
            },
        )

    def _create_edge(self, edge: ConceptEdge, tenant: str) -> None:
        query = """
        MATCH (a:Concept {uid: $source}), (b:Concept {uid: $target})
        CREATE (a)-[:RELATES_TO {relation: $relation, weight: $weight,
            occurrence_count: $occurrence_count, tenant: $tenant}]->(b)
        """
        self._execute(query, self._edge_parameters(edge, tenant))

    @staticmethod
    def _edge_parameters(edge: ConceptEdge, tenant: str) -> dict[str, Any]:
        # Stored in sorted endpoint order so merges find the same relationship
        source, target = edge_key(edge.source, edge.target)
        return {
            "source": concept_uid(tenant, source),
            "target": concept_uid(tenant, target),
            "relation": edge.relation,
            "weight": float(edge.weight),
            "occurrence_count": edge.occurrence_count,
            "tenant": tenant,
        }

    def _refresh_annotations(self, tenant: str) -> None:
        """Recompute degree and community of every concept of a tenant."""
        graph = self.load_graph(tenant)
        degrees = dict.fromkeys(graph.nodes, 0)
        for source, target in graph.edges:
            degrees[source] += 1
            degrees[target] += 1
        communities = detect_communities(graph)

        for node_id, degree in degrees.items():
            self._execute(
                "MATCH (c:Concept {uid: $uid}) SET c.degree = $degree, c.community = $community",
                {
                    "uid": concept_uid(tenant, node_id),
                    "degree": degree,
                    "community": communities.get(node_id, NO_COMMUNITY),
                },
            )

    def delete_tenant(self, tenant: str) -> None:
        """Remove all concepts and relationships of a tenant."""
        self._execute(
            "MATCH (c:Concept) WHERE c.tenant = $tenant DETACH DELETE c",
            {"tenant": tenant},
        )

    def load_graph(self, tenant: Optional[str] = None) -> KnowledgeGraph:
        """Read a tenant's graph back into memory.

        Args:
            tenant: Tenant to read; defaults to the configured tenant.

        Returns:
            KnowledgeGraph with the stored nodes and edges.
        """
        tenant = tenant or settings.tenant

        nodes = {}
        rows = self._rows(
            """
            MATCH (c:Concept)
            WHERE c.tenant = $tenant
            RETURN c.id, c.label, c.entity_type, c.degree, c.community
            """,
            {"tenant": tenant},
        )
        for node_id, label, entity_type, degree, community in rows:
            nodes[node_id] = ConceptNode(
                id=node_id,
                label=label or node_id,
                entity_type=entity_type or None,
                degree=degree or 0,
                community=None if community in (None, NO_COMMUNITY) else community,
            )

        edges = {}
        rows = self._rows(
            """
            MATCH (a:Concept)-[r:RELATES_TO]->(b:Concept)
            WHERE r.tenant = $tenant
            RETURN a.id, b.id, r.relation, r.weight, r.occurrence_count
            """,
            {"tenant": tenant},
        )
        for source, target, relation, weight, occurrence_count in rows:
            key = edge_key(source, target)
            edges[key] = ConceptEdge(
                source=key[0],
                target=key[1],
                relation=relation,
                weight=weight,
                occurrence_count=occurrence_count,
            )

        return KnowledgeGraph(nodes=nodes, edges=edges, tenant=tenant)

    def search_concepts(self, text: str, tenant: Optional[str] = None, limit: int = 10) -> list[dict]:
        """Search for concepts whose id contains the text, best connected first.

        Args:
            text: Search text, matched case-insensitively.
            tenant: Tenant to search.
            limit: Maximum number of results.

        Returns:
            List of concept dictionaries.
        """
        tenant = tenant or settings.tenant
        rows = self._rows(
            """
            MATCH (c:Concept)
            WHERE c.tenant = $tenant AND c.id CONTAINS $query
            RETURN c.id, c.label, c.entity_type, c.degree, c.community
            ORDER BY c.degree DESC, c.id
            LIMIT $limit
            """,
            {"tenant": tenant, "query": normalize_id(text), "limit": limit},
        )

        return [
            {
                "id": row[0],
                "label": row[1],
                "entity_type": row[2] or None,
                "degree": row[3],
                "community": None if row[4] in (None, NO_COMMUNITY) else row[4],
            }
            for row in rows
        ]

    def neighbors(self, node_id: str, tenant: Optional[str] = None, depth: int = 1) -> dict[str, Any]:
        """Get the subgraph within ``depth`` hops of a concept.

        Args:
            node_id: Concept name or id.
            tenant: Tenant to read.
            depth: Number of relationship hops to traverse.

        Returns:
            Dictionary with 'concepts' (id -> hop distance) and 'relations'.
        """
        tenant = tenant or settings.tenant
        start = normalize_id(node_id)

        query = """
        MATCH (a:Concept {uid: $uid})-[r:RELATES_TO]-(b:Concept)
        RETURN b.id, r.relation, r.weight
        """

        distances = {start: 0}
        relations = {}
        frontier = [start]
        for hop in range(1, depth + 1):
            next_frontier = []
            for current in frontier:
                for other, relation, weight in self._rows(query, {"uid": concept_uid(tenant, current)}):
                    relations[edge_key(current, other)] = {
                        "source": current,
                        "target": other,
                        "relation": relation,
                        "weight": weight,
                    }
                    if other not in distances:
                        distances[other] = hop
                        next_frontier.append(other)
            frontier = next_frontier

        if len(distances) == 1 and not self._rows(
            "MATCH (c:Concept {uid: $uid}) RETURN c.id", {"uid": concept_uid(tenant, start)}
        ):
            return {"concepts": {}, "relations": []}

        return {
            "concepts": distances,
            "relations": [relations[key] for key in sorted(relations)],
        }

    def get_stats(self, tenant: Optional[str] = None) -> dict[str, Any]:
        """Get node/edge counts and total weight for a tenant."""
        tenant = tenant or settings.tenant
        node_rows = self._rows(
            "MATCH (c:Concept) WHERE c.tenant = $tenant RETURN count(c)",
            {"tenant": tenant},
        )
        edge_rows = self._rows(
            """
            MATCH (a:Concept)-[r:RELATES_TO]->(b:Concept)
            WHERE r.tenant = $tenant
            RETURN count(r), sum(r.weight)
            """,
            {"tenant": tenant},
        )
        return {
            "tenant": tenant,
            "nodes": node_rows[0][0] if node_rows else 0,
            "edges": edge_rows[0][0] if edge_rows else 0,
            "total_weight": (edge_rows[0][1] or 0.0) if edge_rows else 0.0,
        }

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()
        self.db.close()
