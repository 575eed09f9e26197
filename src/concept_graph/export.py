"""Writers for plain-data graph exports (JSON, CSV, GraphML)."""

import csv
import json
import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Optional

from concept_graph.graph.builder import KnowledgeGraph

logger = logging.getLogger(__name__)

GRAPHML_NS = "http://graphml.graphdrawing.org/xmlns"

EXPORT_FORMATS = ("json", "csv", "graphml")


def export_json(graph: KnowledgeGraph, path: Path | str, analytics: Optional[dict[str, Any]] = None) -> Path:
    """Write the graph as JSON.

    Args:
        graph: Graph to export.
        path: Output file.
        analytics: Extra data (e.g. centrality scores) stored under 'analytics'.

    Returns:
        The written path.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    data = graph.to_dict()
    if analytics:
        data["analytics"] = analytics

    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    logger.info("Wrote JSON graph to %s", path)
    return path


def load_json(path: Path | str) -> KnowledgeGraph:
    """Read a graph written by export_json()."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return KnowledgeGraph.from_dict(data)


def export_csv(graph: KnowledgeGraph, nodes_path: Path | str, edges_path: Path | str) -> tuple[Path, Path]:
    """Write nodes and edges as two CSV files."""
    nodes_path, edges_path = Path(nodes_path), Path(edges_path)
    nodes_path.parent.mkdir(parents=True, exist_ok=True)
    edges_path.parent.mkdir(parents=True, exist_ok=True)

    with open(nodes_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["id", "label", "entity_type", "degree", "community"])
        for node_id in sorted(graph.nodes):
            node = graph.nodes[node_id]
            writer.writerow([
                node.id,
                node.label,
                node.entity_type or "",
                node.degree,
                "" if node.community is None else node.community,
            ])

    with open(edges_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["source", "target", "relation", "weight", "occurrence_count"])
        for key in sorted(graph.edges):
            edge = graph.edges[key]
            writer.writerow([edge.source, edge.target, edge.relation, edge.weight, edge.occurrence_count])

    logger.info("Wrote CSV graph to %s and %s", nodes_path, edges_path)
    return nodes_path, edges_path


def export_graphml(graph: KnowledgeGraph, path: Path | str) -> Path:
    """Write the graph as undirected GraphML."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    ET.register_namespace("", GRAPHML_NS)
    root = ET.Element(f"{{{GRAPHML_NS}}}graphml")

    keys = [
        ("label", "node", "string"),
        ("entity_type", "node", "string"),
        ("degree", "node", "int"),
        ("community", "node", "int"),
        ("relation", "edge", "string"),
        ("weight", "edge", "double"),
        ("occurrence_count", "edge", "int"),
    ]
    for name, target, attr_type in keys:
        ET.SubElement(
            root,
            f"{{{GRAPHML_NS}}}key",
            {"id": name, "for": target, "attr.name": name, "attr.type": attr_type},
        )

    graph_el = ET.SubElement(root, f"{{{GRAPHML_NS}}}graph", {"id": graph.tenant, "edgedefault": "undirected"})

    def add_data(parent: ET.Element, key: str, value: Any) -> None:
        if value is None:
            return
        data = ET.SubElement(parent, f"{{{GRAPHML_NS}}}data", {"key": key})
        data.text = str(value)

    for node_id in sorted(graph.nodes):
        node = graph.nodes[node_id]
        node_el = ET.SubElement(graph_el, f"{{{GRAPHML_NS}}}node", {"id": node.id})
        add_data(node_el, "label", node.label)
        add_data(node_el, "entity_type", node.entity_type)
        add_data(node_el, "degree", node.degree)
        add_data(node_el, "community", node.community)

    for i, key in enumerate(sorted(graph.edges)):
        edge = graph.edges[key]
        edge_el = ET.SubElement(
            graph_el,
            f"{{{GRAPHML_NS}}}edge",
            {"id": f"e{i}", "source": edge.source, "target": edge.target},
        )
        add_data(edge_el, "relation", edge.relation)
        add_data(edge_el, "weight", edge.weight)
        add_data(edge_el, "occurrence_count", edge.occurrence_count)

    tree = ET.ElementTree(root)
    ET.indent(tree)
    tree.write(path, encoding="utf-8", xml_declaration=True)
    logger.info("Wrote GraphML graph to %s", path)
    return path
