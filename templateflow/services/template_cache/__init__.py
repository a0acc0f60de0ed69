"""Local cache for remote templates."""

from .cache import TemplateCache
from .entry import CacheEntry, CacheMetadata, CacheStats, TemplateDescriptor, cache_identity

__all__ = [
    "TemplateCache",
    "CacheEntry",
    "CacheMetadata",
    "CacheStats",
    "TemplateDescriptor",
    "cache_identity",
]
