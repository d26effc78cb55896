"""Storage backend selection."""

from __future__ import annotations

import logging
from functools import lru_cache

from roledigest.config import get_settings
from roledigest.repositories.base import DigestRepository
from roledigest.repositories.sqlite_repo import SqliteDigestRepository
from roledigest.repositories.supabase_repo import SupabaseDigestRepository
from roledigest.supabase_client import get_supabase_client

logger = logging.getLogger(__name__)


@lru_cache
def get_repository() -> DigestRepository:
    """Return the cached repository for the configured ``storage_backend``."""
    settings = get_settings()
    if settings.storage_backend == "sqlite":
        logger.info("Using SQLite storage at %s", settings.sqlite_path)
        return SqliteDigestRepository(settings.sqlite_path)
    logger.info("Using Supabase storage")
    return SupabaseDigestRepository(get_supabase_client())
