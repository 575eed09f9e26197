"""Concept Graph - LLM-driven concept graph extraction from document corpora."""

__version__ = "0.1.0"
