"""Concept graph construction and analytics."""

from .analytics import (
    GraphStats,
    PathResult,
    compute_stats,
    connected_components,
    find_concepts,
    neighborhood,
    pagerank,
    rank_by_centrality,
    shortest_path,
)
from .builder import ConceptEdge, ConceptNode, GraphBuilder, KnowledgeGraph
from .chunker import Chunk, ChunkPlan, TextChunker, compute_chunk_plan, plan_for_model, split_at_midpoint
from .community import community_summary, detect_communities, label_propagation
from .relation import RelationTriple, entity_names

__all__ = [
    "Chunk",
    "ChunkPlan",
    "TextChunker",
    "compute_chunk_plan",
    "plan_for_model",
    "split_at_midpoint",
    "RelationTriple",
    "entity_names",
    "ConceptNode",
    "ConceptEdge",
    "KnowledgeGraph",
    "GraphBuilder",
    "GraphStats",
    "PathResult",
    "compute_stats",
    "connected_components",
    "find_concepts",
    "neighborhood",
    "pagerank",
    "rank_by_centrality",
    "shortest_path",
    "label_propagation",
    "detect_communities",
    "community_summary",
]
