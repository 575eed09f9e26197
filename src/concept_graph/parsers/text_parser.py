"""Text file parser for MD and TXT files."""

from pathlib import Path

from .base import BaseParser, SourceDocument


class TextParser(BaseParser):
    """Parser for plain text files (MD, TXT)."""

    supported_extensions = [".md", ".txt", ".markdown", ".text"]

    def parse(self, file_path: str | Path) -> SourceDocument:
        file_path = Path(file_path)
        # Undecodable bytes are replaced rather than failing the whole corpus
        content = file_path.read_text(encoding="utf-8", errors="replace")
        return SourceDocument(text=content, source_path=str(file_path))
