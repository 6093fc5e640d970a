# =============================================================================
# ops_core/offline/__init__.py
# Local cache and storage-mode resolution
# =============================================================================
"""
Offline support for the sync core.

Components:
- LocalCacheStore: SQLite snapshot store, one JSON array per collection
- ModeSelector: resolves REMOTE vs CACHE_ONLY once per session

Usage:
    from ops_core.offline import LocalCacheStore, ModeSelector

    cache = LocalCacheStore(config.cache_path)
    selector = ModeSelector(config)
    if not selector.is_remote_mode_active():
        rows = cache.read_collection(config.storage_key("sops"))
"""

from .local_cache import LocalCacheStore, MEMORY_PATH
from .mode_selector import ModeSelector, ModeState, StorageMode

__all__ = [
    "LocalCacheStore",
    "MEMORY_PATH",
    "ModeSelector",
    "ModeState",
    "StorageMode",
]
