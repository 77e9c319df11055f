"""Track enrichment and semantic search core for AI playlist generation."""

__version__ = "0.4.0"
