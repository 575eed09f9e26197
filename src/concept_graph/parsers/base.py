"""Base parser interface and the document record handed to the chunker."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path


@dataclass
class SourceDocument:
    """Raw text read from one input file."""

    text: str
    source_path: str

    @property
    def name(self) -> str:
        return Path(self.source_path).name

    @property
    def directory(self) -> str:
        return str(Path(self.source_path).parent)


class BaseParser(ABC):
    """Abstract base class for document text readers."""

    supported_extensions: list[str] = []

    @classmethod
    def can_parse(cls, file_path: str | Path) -> bool:
        """Check if this parser can handle the given file.

        Args:
            file_path: Path to the file.

        Returns:
            True if this parser supports the file extension.
        """
        path = Path(file_path)
        return path.suffix.lower() in cls.supported_extensions

    @abstractmethod
    def parse(self, file_path: str | Path) -> SourceDocument:
        """Read the text of a document file.

        Args:
            file_path: Path to the document file.

        Returns:
            SourceDocument with the extracted text.
        """
        pass
