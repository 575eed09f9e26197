"""Persistent graph storage."""

from .kuzu_store import KuzuStore, concept_uid

__all__ = ["KuzuStore", "concept_uid"]
