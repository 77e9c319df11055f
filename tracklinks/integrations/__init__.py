"""Clients for the external services used during enrichment."""

from tracklinks.integrations.embedding_client import EmbeddingClient, render_track_text
from tracklinks.integrations.link_resolver import LinkResolution, PlatformLinkResolver
from tracklinks.integrations.platforms import PlatformLink

__all__ = [
    "EmbeddingClient",
    "LinkResolution",
    "PlatformLink",
    "PlatformLinkResolver",
    "render_track_text",
]
