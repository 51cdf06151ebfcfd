"""
Storage factory – switch storage backend from config (lazy env version)
======================================================================

This module centralizes selection of the key-value backend so the rest of
the app can stay ignorant of where data lives.

- Reads environment **at call time** to avoid stale values in tests.
- Imports the Postgres or Redis backend **only if** it is selected.

Environment variables
---------------------
- LINKINDEX_STORAGE_BACKEND: "memory" (default), "postgres" or "redis"
- LINKINDEX_DB_DSN:          DSN string if backend=="postgres"
- LINKINDEX_REDIS_URL:       URL string if backend=="redis"
- LINKINDEX_BACKEND_TIMEOUT: seconds per backend call
"""

from typing import Optional
import logging
import os

# In-memory storage always available/lightweight
from linkindex.storage.storage import Storage

log = logging.getLogger(__name__)


def get_storage(backend: Optional[str] = None, **kwargs):
    """
    Return a BaseStorage instance based on configuration.

    Parameters
    ----------
    backend : str, optional
        "memory", "postgres" or "redis". If omitted, reads LINKINDEX_STORAGE_BACKEND.
    kwargs : dict
        Extra args for the backend: dsn="..." for postgres, url="..." for redis,
        timeout=<seconds> for either.
    """
    # Read env **now** to avoid capturing stale values at import time
    be = (backend or os.getenv("LINKINDEX_STORAGE_BACKEND", "memory")).lower()
    timeout = float(kwargs.get("timeout") or os.getenv("LINKINDEX_BACKEND_TIMEOUT", "10"))

    log.info("Selected storage backend: %r", be)

    if be == "memory":
        return Storage()

    if be == "postgres":
        dsn = kwargs.get("dsn") or os.getenv("LINKINDEX_DB_DSN", "")
        if not dsn:
            raise ValueError("DB_DSN is required for postgres backend (env LINKINDEX_DB_DSN)")
        # Local import to avoid hard dependency when not using postgres
        from linkindex.storage.db_storage import DBStorage
        return DBStorage(dsn=dsn, timeout=timeout)

    if be == "redis":
        url = kwargs.get("url") or os.getenv("LINKINDEX_REDIS_URL", "")
        if not url:
            raise ValueError("REDIS_URL is required for redis backend (env LINKINDEX_REDIS_URL)")
        from linkindex.storage.redis_storage import RedisStorage
        return RedisStorage.from_url(url, timeout=timeout)

    raise ValueError(f"Unknown storage backend: {be!r}")
