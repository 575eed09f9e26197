"""PDF parser reading the embedded text layer with PyMuPDF."""

from pathlib import Path

import fitz  # PyMuPDF

from .base import BaseParser, SourceDocument


class PDFParser(BaseParser):
    """Parser for PDF files with a text layer.

    Scanned PDFs without a text layer yield empty text and are later
    dropped by document selection.
    """

    supported_extensions = [".pdf"]

    def parse(self, file_path: str | Path) -> SourceDocument:
        """Parse a PDF file page by page.

        Args:
            file_path: Path to the PDF file.

        Returns:
            SourceDocument with pages joined by blank lines.
        """
        file_path = Path(file_path)

        pdf_doc = fitz.open(file_path)
        try:
            pages = [page.get_text("text").strip() for page in pdf_doc]
        finally:
            pdf_doc.close()

        content = "\n\n".join(page for page in pages if page)
        return SourceDocument(text=content, source_path=str(file_path))
