"""Document text readers for the supported input formats."""

import logging
from pathlib import Path
from typing import Optional

from .base import BaseParser, SourceDocument
from .markup_parser import MarkupParser
from .pdf_parser import PDFParser
from .text_parser import TextParser

logger = logging.getLogger(__name__)

PARSERS: list[type[BaseParser]] = [TextParser, MarkupParser, PDFParser]

__all__ = [
    "BaseParser",
    "SourceDocument",
    "TextParser",
    "MarkupParser",
    "PDFParser",
    "supported_extensions",
    "get_parser",
    "collect_documents",
]


def supported_extensions() -> list[str]:
    return [ext for parser in PARSERS for ext in parser.supported_extensions]


def get_parser(file_path: str | Path) -> Optional[BaseParser]:
    """Get a parser instance for a file, or None if the format is unsupported."""
    for parser_class in PARSERS:
        if parser_class.can_parse(file_path):
            return parser_class()
    return None


def collect_documents(path: str | Path, recursive: bool = True) -> list[SourceDocument]:
    """Read every supported document under a path.

    Files are visited in sorted path order so runs over the same tree see the
    same sequence. Unreadable files are logged and skipped.

    Args:
        path: A single file or a directory.
        recursive: Descend into subdirectories.

    Returns:
        Documents in enumeration order.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Path not found: {path}")

    if path.is_file():
        files = [path]
    else:
        pattern = "**/*" if recursive else "*"
        files = sorted(p for p in path.glob(pattern) if p.is_file())

    documents = []
    for file_path in files:
        parser = get_parser(file_path)
        if parser is None:
            logger.debug("Skipping unsupported file %s", file_path)
            continue
        try:
            documents.append(parser.parse(file_path))
        except Exception as e:
            logger.warning("Failed to read %s: %s", file_path, e)

    logger.info("Read %d documents from %s", len(documents), path)
    return documents
