"""HTTP API for the enrichment subsystem."""

from tracklinks.api.errors import setup_exception_handlers
from tracklinks.api.router import router

__all__ = ["router", "setup_exception_handlers"]
