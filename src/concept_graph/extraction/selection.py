"""Representative document selection for large corpora."""

import logging
from pathlib import Path

from concept_graph.parsers.base import SourceDocument

logger = logging.getLogger(__name__)

SKIP_MARKERS = ("generated", "auto-generated", "broken-links", "source-reference-map")


def document_priority(path: str) -> int:
    """Score a document path; higher is more important."""
    lower = path.lower()
    score = 0

    # Index-like files describe the whole corpus
    if "readme" in lower or "skill" in lower or "toc" in lower:
        score += 100
    if "overview" in lower or "getting-started" in lower:
        score += 50
    if "example" in lower or "guide" in lower:
        score += 30

    if "generated" in lower or "auto" in lower:
        score -= 50

    if lower.endswith(".md"):
        score += 10

    return score


def should_skip(path: str, text: str, min_chars: int = 100) -> bool:
    """Check if a document is generated, a data file or too small."""
    lower = path.lower()
    if any(marker in lower for marker in SKIP_MARKERS):
        return True
    if lower.endswith(".json"):
        return True
    return len(text) < min_chars


def select_documents(
    documents: list[SourceDocument],
    *,
    threshold: int = 100,
    max_per_dir: int = 5,
    min_chars: int = 100,
) -> list[SourceDocument]:
    """Pick representative documents when a corpus is large.

    Corpora of at most ``threshold`` documents are returned unchanged. Larger
    ones are sorted by priority (stable, so ties keep enumeration order),
    filtered with should_skip() and capped at ``max_per_dir`` per directory.

    Args:
        documents: Documents in enumeration order.
        threshold: Corpus size above which selection applies.
        max_per_dir: Documents kept per parent directory.
        min_chars: Minimum text length of a kept document.

    Returns:
        Selected documents.
    """
    if len(documents) <= threshold:
        return list(documents)

    ranked = sorted(documents, key=lambda doc: document_priority(doc.source_path), reverse=True)

    selected = []
    dir_counts: dict[str, int] = {}
    for doc in ranked:
        if should_skip(doc.source_path, doc.text, min_chars):
            continue

        directory = str(Path(doc.source_path).parent)
        count = dir_counts.get(directory, 0)
        if count >= max_per_dir:
            continue

        dir_counts[directory] = count + 1
        selected.append(doc)

    logger.info("Selected %d representative documents from %d", len(selected), len(documents))
    return selected
