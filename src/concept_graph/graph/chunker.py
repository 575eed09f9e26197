"""Context-window aware text chunking."""

import hashlib
import math
import re
from dataclasses import dataclass
from typing import Optional

DEFAULT_CONTEXT_TOKENS = 4096
DEFAULT_RESERVED_TOKENS = 700
CHARS_PER_TOKEN = 4

# Substring -> context window (tokens). Checked in order, first match wins.
MODEL_CONTEXT_WINDOWS: list[tuple[str, int]] = [
    # Small local models (Ollama)
    ("llama3.2", 8192),
    ("llama-3.2", 8192),
    ("phi3:mini", 4096),
    ("phi-3-mini", 4096),
    ("mistral", 32768),
    ("qwen2.5:3b", 8192),
    ("qwen2.5:7b", 32768),
    ("gemma2:2b", 4096),
    ("gemma2:9b", 8192),
    # Larger local models
    ("llama3.3", 128000),
    ("llama-3.3", 128000),
    ("qwen2.5:72b", 32768),
    # Hosted models
    ("claude", 200000),
    ("gpt-4o", 128000),
    ("gpt-4", 8192),
    ("gpt-3.5", 16385),
    ("gemini", 1048576),
]


@dataclass(frozen=True)
class ChunkPlan:
    """Chunk length and overlap, in characters."""

    target_chars: int
    overlap_chars: int


@dataclass
class Chunk:
    """A bounded slice of a document's text, the unit of LLM extraction."""

    id: str
    text: str
    source_path: str
    sequence_index: int
    depth: int = 0  # Number of overflow splits that produced this chunk

    @property
    def key(self) -> str:
        """Stable identity used for resume matching.

        Split children share the key of the chunk they were split from.
        """
        return f"{self.source_path}#{self.sequence_index}"

    @property
    def estimated_tokens(self) -> int:
        return estimate_tokens(self.text)


def estimate_tokens(text: str) -> int:
    """Estimate tokens as ceil(chars / 4)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def context_window_for_model(model: Optional[str]) -> int:
    """Get the context window size for a known model.

    Args:
        model: Model name, e.g. 'llama3.2:3b' or 'gpt-4o-mini'.

    Returns:
        Context size in tokens, 4096 for unknown models.
    """
    if not model:
        return DEFAULT_CONTEXT_TOKENS

    lowered = model.lower()
    for fragment, size in MODEL_CONTEXT_WINDOWS:
        if fragment in lowered:
            return size
    return DEFAULT_CONTEXT_TOKENS


def compute_chunk_plan(
    model_context_tokens: Optional[int],
    reserved_tokens: int = DEFAULT_RESERVED_TOKENS,
) -> ChunkPlan:
    """Compute a safe chunk length for a context window.

    Half of what is left after the reserved prompt/response budget is used,
    converted to characters with the fixed 4 chars/token estimator.

    Args:
        model_context_tokens: Context window in tokens, None if unknown.
        reserved_tokens: Tokens reserved for system prompt and response.

    Returns:
        ChunkPlan with target length and overlap in characters.
    """
    context = DEFAULT_CONTEXT_TOKENS if model_context_tokens is None else model_context_tokens
    safe_tokens = max(1, (context - reserved_tokens) // 2)
    target_chars = safe_tokens * CHARS_PER_TOKEN
    return ChunkPlan(target_chars=target_chars, overlap_chars=target_chars // 10)


def plan_for_model(
    model: Optional[str],
    reserved_tokens: int = DEFAULT_RESERVED_TOKENS,
) -> ChunkPlan:
    """Compute the chunk plan for a model name."""
    return compute_chunk_plan(context_window_for_model(model), reserved_tokens)


def split_at_midpoint(chunk: Chunk) -> tuple[Chunk, Chunk]:
    """Split a chunk into two halves for an overflow retry.

    Args:
        chunk: Chunk that overflowed the model context.

    Returns:
        The two child chunks, one split level deeper.
    """
    if len(chunk.text) < 2:
        raise ValueError(f"Chunk {chunk.id} is too short to split")

    middle = len(chunk.text) // 2
    halves = (chunk.text[:middle], chunk.text[middle:])
    return tuple(
        Chunk(
            id=f"{chunk.id}.{i}",
            text=half,
            source_path=chunk.source_path,
            sequence_index=chunk.sequence_index,
            depth=chunk.depth + 1,
        )
        for i, half in enumerate(halves)
    )


class TextChunker:
    """Chunker that packs paragraphs into chunks sized by a ChunkPlan."""

    def __init__(self, plan: Optional[ChunkPlan] = None):
        """Initialize the text chunker.

        Args:
            plan: Chunk sizing. Defaults to the plan of an unknown model.
        """
        self.plan = plan or compute_chunk_plan(None)

    @classmethod
    def for_model(cls, model: Optional[str], reserved_tokens: int = DEFAULT_RESERVED_TOKENS) -> "TextChunker":
        return cls(plan_for_model(model, reserved_tokens))

    def chunk_document(
        self,
        text: str,
        source_path: str,
        doc_id: Optional[str] = None,
    ) -> list[Chunk]:
        """Split a document into chunks.

        Args:
            text: Full document text.
            source_path: Path the text was read from.
            doc_id: Optional document ID. Derived from source_path if omitted.

        Returns:
            List of Chunk objects numbered 0..n-1.
        """
        if not text.strip():
            return []

        doc_id = doc_id or hashlib.sha256(source_path.encode()).hexdigest()[:16]
        return [
            Chunk(
                id=f"{doc_id}_chunk_{i}",
                text=piece,
                source_path=source_path,
                sequence_index=i,
            )
            for i, piece in enumerate(self.split_text(text))
        ]

    def split_text(self, text: str) -> list[str]:
        """Split text into pieces no longer than the plan's target length."""
        target = self.plan.target_chars
        pieces = []
        current = ""

        for unit, separator in self._units(text):
            candidate = f"{current}{separator}{unit}" if current else unit
            if len(candidate) <= target:
                current = candidate
                continue

            if current:
                pieces.append(current)
                overlap = self._overlap_tail(current)
                if overlap and len(overlap) + 1 + len(unit) <= target:
                    current = f"{overlap} {unit}"
                    continue
            current = unit

        if current:
            pieces.append(current)

        return pieces

    def _units(self, text: str) -> list[tuple[str, str]]:
        """Break text into units that each fit the target length.

        Returns:
            (unit, separator) pairs; the separator joins the unit to the
            text before it inside one chunk.
        """
        target = self.plan.target_chars
        units = []

        for paragraph in self._split_into_paragraphs(text):
            if len(paragraph) <= target:
                units.append((paragraph, "\n\n"))
                continue

            # Large paragraph: fall back to sentences, words, then characters
            separator = "\n\n"
            for sentence in self._split_into_sentences(paragraph):
                for piece in self._fit(sentence, target):
                    units.append((piece, separator))
                    separator = " "

        return units

    def _fit(self, sentence: str, target: int) -> list[str]:
        if len(sentence) <= target:
            return [sentence]

        pieces = []
        current = ""
        for word in sentence.split():
            while len(word) > target:
                if current:
                    pieces.append(current)
                    current = ""
                pieces.append(word[:target])
                word = word[target:]
            if not word:
                continue
            candidate = f"{current} {word}" if current else word
            if len(candidate) <= target:
                current = candidate
            else:
                pieces.append(current)
                current = word
        if current:
            pieces.append(current)
        return pieces

    def _overlap_tail(self, text: str) -> str:
        """Return up to overlap_chars of trailing text, starting on a word."""
        size = self.plan.overlap_chars
        if size <= 0:
            return ""

        tail = text[-size:]
        if len(text) > size and not text[-size - 1].isspace():
            # Drop the partial leading word
            _, _, tail = tail.partition(" ")
        return tail.strip()

    def _split_into_paragraphs(self, text: str) -> list[str]:
        """Split text into paragraphs.

        Args:
            text: Text to split.

        Returns:
            List of paragraphs.
        """
        # Split by blank lines or markdown headers
        paragraphs = []
        current = []

        for line in text.split("\n"):
            stripped = line.strip()

            if not stripped:
                if current:
                    paragraphs.append("\n".join(current))
                    current = []
            # Markdown header starts a new paragraph
            elif stripped.startswith("#"):
                if current:
                    paragraphs.append("\n".join(current))
                    current = []
                paragraphs.append(stripped)
            else:
                current.append(line.rstrip())

        if current:
            paragraphs.append("\n".join(current))

        return [p.strip() for p in paragraphs if p.strip()]

    def _split_into_sentences(self, text: str) -> list[str]:
        sentences = re.split(r"(?<=[.!?;])\s+|\n+", text)
        return [s.strip() for s in sentences if s.strip()]
