"""Per-pod metadata cache: in-pod extraction and on-disk persistence."""

from userpods.cache.extraction import EXISTING_POD_POLICY, NEW_POD_POLICY, RetryPolicy, TokenExtractor
from userpods.cache.metadata import PodMetadataCache
from userpods.cache.pod_cache import PodCacheStore

__all__ = [
    "EXISTING_POD_POLICY",
    "NEW_POD_POLICY",
    "PodCacheStore",
    "PodMetadataCache",
    "RetryPolicy",
    "TokenExtractor",
]
