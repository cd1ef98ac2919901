"""
Enrichment tools consumed by the tailoring pipeline.
"""

from .cache import ToolResultCache, generate_cache_key
from .client import ToolClient, ToolCallError, get_tool_client

__all__ = [
    "ToolResultCache",
    "generate_cache_key",
    "ToolClient",
    "ToolCallError",
    "get_tool_client",
]
