"""HTML parser using MarkItDown."""

from pathlib import Path
from typing import Optional

from markitdown import MarkItDown

from .base import BaseParser, SourceDocument


class MarkupParser(BaseParser):
    """Parser for HTML pages, converted to Markdown text by MarkItDown."""

    supported_extensions = [".html", ".htm"]

    def __init__(self, converter: Optional[MarkItDown] = None):
        self.md = converter or MarkItDown()

    def parse(self, file_path: str | Path) -> SourceDocument:
        file_path = Path(file_path)
        result = self.md.convert(str(file_path))
        return SourceDocument(text=result.text_content or "", source_path=str(file_path))
