"""Community detection by synchronous label propagation."""

import logging

from .builder import KnowledgeGraph

logger = logging.getLogger(__name__)


def label_propagation(graph: KnowledgeGraph, max_iterations: int = 50) -> dict[str, int]:
    """Detect communities using the Label Propagation Algorithm (LPA).

    Every node starts with its own label (its position in id order). Each
    round, all nodes simultaneously adopt the label with the largest summed
    edge weight among their neighbors, ties going to the lowest label. A
    node's current label also votes, weighted by its strongest edge, which
    keeps synchronous rounds from flip-flopping on two-node components.

    Args:
        graph: The concept graph.
        max_iterations: Round cap.

    Returns:
        Node id -> community id, numbered densely from 0.
    """
    node_ids = sorted(graph.nodes)
    if not node_ids:
        return {}

    labels = {node_id: i for i, node_id in enumerate(node_ids)}

    for iteration in range(max_iterations):
        new_labels = {}
        for node_id in node_ids:
            neighbors = graph.neighbors(node_id)
            if not neighbors:
                new_labels[node_id] = labels[node_id]
                continue

            votes = {labels[node_id]: max(neighbors.values())}
            for neighbor, weight in neighbors.items():
                label = labels[neighbor]
                votes[label] = votes.get(label, 0.0) + weight

            new_labels[node_id] = min(votes, key=lambda label: (-votes[label], label))

        changed = new_labels != labels
        labels = new_labels
        if not changed:
            logger.debug("Label propagation converged after %d rounds", iteration + 1)
            break
    else:
        logger.debug("Label propagation stopped at the %d round cap", max_iterations)

    # Renumber densely, in order of each community's smallest member id
    dense: dict[int, int] = {}
    for node_id in node_ids:
        dense.setdefault(labels[node_id], len(dense))
    return {node_id: dense[labels[node_id]] for node_id in node_ids}


def detect_communities(graph: KnowledgeGraph, max_iterations: int = 50) -> dict[str, int]:
    """Run label propagation and attach community ids to the graph's nodes."""
    communities = label_propagation(graph, max_iterations)
    for node_id, community in communities.items():
        graph.nodes[node_id].community = community
    return communities


def community_summary(graph: KnowledgeGraph) -> list[tuple[int, list[str]]]:
    """Group node ids by community, largest community first.

    Uses the community ids already attached to the nodes; nodes without one
    are ignored.
    """
    groups: dict[int, list[str]] = {}
    for node in graph.nodes.values():
        if node.community is not None:
            groups.setdefault(node.community, []).append(node.id)

    return sorted(
        ((community, sorted(members)) for community, members in groups.items()),
        key=lambda item: (-len(item[1]), item[0]),
    )
