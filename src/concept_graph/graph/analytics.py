"""Graph analytics: centrality ranking, shortest path and summary statistics."""

import heapq
from dataclasses import dataclass, field
from typing import Any, Optional

from .builder import KnowledgeGraph, edge_key, normalize_id
from .community import label_propagation


@dataclass(frozen=True)
class PathResult:
    """Shortest path between two concepts.

    cost is the sum of the raw weights of the traversed edges.
    """

    nodes: list[str]
    cost: float

    @property
    def hops(self) -> int:
        return len(self.nodes) - 1


@dataclass
class GraphStats:
    """Summary statistics of a concept graph."""

    node_count: int = 0
    edge_count: int = 0
    connected_components: int = 0
    density: float = 0.0
    avg_degree: float = 0.0
    max_degree: int = 0
    community_count: int = 0
    top_centrality: list[tuple[str, float]] = field(default_factory=list)
    top_degree: list[tuple[str, int]] = field(default_factory=list)


def pagerank(
    graph: KnowledgeGraph,
    damping: float = 0.85,
    tolerance: float = 1e-6,
    max_iterations: int = 100,
) -> dict[str, float]:
    """Compute weighted PageRank scores by power iteration.

    The graph is undirected; a node passes its score to each neighbor in
    proportion to the connecting edge weight. Nodes without edges spread
    their score uniformly.

    Args:
        graph: The concept graph.
        damping: Damping factor.
        tolerance: Stop when the L1 change between iterations drops below this.
        max_iterations: Iteration cap.

    Returns:
        Node id -> score; scores sum to 1.
    """
    node_ids = sorted(graph.nodes)
    n = len(node_ids)
    if n == 0:
        return {}

    strength = {
        node_id: sum(graph.neighbors(node_id).values())
        for node_id in node_ids
    }
    scores = dict.fromkeys(node_ids, 1.0 / n)

    for _ in range(max_iterations):
        dangling = sum(scores[node_id] for node_id in node_ids if strength[node_id] <= 0)
        base = (1.0 - damping) / n + damping * dangling / n
        new_scores = dict.fromkeys(node_ids, base)

        for node_id in node_ids:
            total = strength[node_id]
            if total <= 0:
                continue
            share = damping * scores[node_id] / total
            for neighbor, weight in graph.neighbors(node_id).items():
                new_scores[neighbor] += share * weight

        delta = sum(abs(new_scores[k] - scores[k]) for k in node_ids)
        scores = new_scores
        if delta < tolerance:
            break

    return scores


def rank_by_centrality(
    graph: KnowledgeGraph,
    limit: Optional[int] = None,
    **kwargs,
) -> list[tuple[str, float]]:
    """Nodes sorted by PageRank score, highest first, ties by id."""
    scores = pagerank(graph, **kwargs)
    ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
    return ranked[:limit] if limit is not None else ranked


def shortest_path(
    graph: KnowledgeGraph,
    source: str,
    target: str,
) -> Optional[PathResult]:
    """Find the lowest-cost path between two concepts with Dijkstra.

    Edge cost is the raw edge weight, so the path with the smallest summed
    weight wins.

    Args:
        graph: The concept graph.
        source: Source concept name (normalized before lookup).
        target: Target concept name (normalized before lookup).

    Returns:
        PathResult, or None if either node is unknown or no path exists.
    """
    source_id = normalize_id(source)
    target_id = normalize_id(target)
    if source_id not in graph.nodes or target_id not in graph.nodes:
        return None
    if source_id == target_id:
        return PathResult(nodes=[source_id], cost=0.0)

    distances = {source_id: 0.0}
    previous: dict[str, str] = {}
    visited = set()
    heap = [(0.0, source_id)]

    while heap:
        cost, node_id = heapq.heappop(heap)
        if node_id in visited:
            continue
        visited.add(node_id)
        if node_id == target_id:
            break

        for neighbor, weight in graph.neighbors(node_id).items():
            if neighbor in visited:
                continue
            candidate = cost + weight
            # Ties resolve to the lexicographically smaller predecessor
            known = distances.get(neighbor)
            if known is None or candidate < known or (
                candidate == known and node_id < previous.get(neighbor, node_id)
            ):
                distances[neighbor] = candidate
                previous[neighbor] = node_id
                heapq.heappush(heap, (candidate, neighbor))

    if target_id not in visited:
        return None

    path = [target_id]
    while path[-1] != source_id:
        path.append(previous[path[-1]])
    path.reverse()

    return PathResult(nodes=path, cost=distances[target_id])


def connected_components(graph: KnowledgeGraph) -> list[list[str]]:
    """Connected components, each sorted, largest first."""
    seen = set()
    components = []

    for start in sorted(graph.nodes):
        if start in seen:
            continue
        seen.add(start)
        stack = [start]
        members = []
        while stack:
            node_id = stack.pop()
            members.append(node_id)
            for neighbor in graph.neighbors(node_id):
                if neighbor not in seen:
                    seen.add(neighbor)
                    stack.append(neighbor)
        components.append(sorted(members))

    components.sort(key=lambda c: (-len(c), c[0]))
    return components


def compute_stats(graph: KnowledgeGraph, top: int = 10) -> GraphStats:
    """Compute summary statistics for a concept graph.

    Args:
        graph: The concept graph.
        top: Number of entries in the top-centrality and top-degree lists.

    Returns:
        GraphStats.
    """
    n = graph.node_count
    e = graph.edge_count
    if n == 0:
        return GraphStats()

    degrees = {node_id: len(graph.neighbors(node_id)) for node_id in graph.nodes}
    communities = label_propagation(graph)

    return GraphStats(
        node_count=n,
        edge_count=e,
        connected_components=len(connected_components(graph)),
        density=(2.0 * e / (n * (n - 1))) if n > 1 else 0.0,
        avg_degree=sum(degrees.values()) / n,
        max_degree=max(degrees.values()),
        community_count=len(set(communities.values())),
        top_centrality=rank_by_centrality(graph, limit=top),
        top_degree=sorted(degrees.items(), key=lambda item: (-item[1], item[0]))[:top],
    )


def find_concepts(graph: KnowledgeGraph, text: str, limit: int = 10) -> list[str]:
    """Ids of concepts containing the text, highest degree first."""
    query = normalize_id(text)
    matches = [node for node_id, node in graph.nodes.items() if query in node_id]
    matches.sort(key=lambda node: (-len(graph.neighbors(node.id)), node.id))
    return [node.id for node in matches[:limit]]


def neighborhood(graph: KnowledgeGraph, node_id: str, depth: int = 1) -> dict[str, Any]:
    """Concepts within ``depth`` hops of a concept and the edges between them.

    Returns:
        Dictionary with 'concepts' (id -> hop distance) and 'relations'.
    """
    start = normalize_id(node_id)
    if start not in graph.nodes:
        return {"concepts": {}, "relations": []}

    distances = {start: 0}
    relations = {}
    frontier = [start]
    for hop in range(1, depth + 1):
        next_frontier = []
        for current in frontier:
            for other, weight in sorted(graph.neighbors(current).items()):
                edge = graph.edges[edge_key(current, other)]
                relations[edge.key] = {
                    "source": current,
                    "target": other,
                    "relation": edge.relation,
                    "weight": weight,
                }
                if other not in distances:
                    distances[other] = hop
                    next_frontier.append(other)
        frontier = next_frontier

    return {
        "concepts": distances,
        "relations": [relations[key] for key in sorted(relations)],
    }
