"""Supabase database client and record store wiring."""

import logging

from supabase import create_client, Client
from donation_bridge.config import get_settings
from donation_bridge.store import MemoryRecordStore, RecordStore, SupabaseRecordStore

logger = logging.getLogger(__name__)

_supabase_client: Client | None = None
_memory_store: MemoryRecordStore | None = None


def get_supabase() -> Client:
    """Get Supabase client instance."""
    global _supabase_client

    if _supabase_client is None:
        settings = get_settings()
        _supabase_client = create_client(
            settings.supabase_url,
            settings.supabase_service_key or settings.supabase_key
        )

    return _supabase_client


def get_record_store() -> RecordStore:
    """
    Get the record store for donations and milestones.

    Falls back to a process-wide in-memory store when Supabase
    is not configured (local development).
    """
    global _memory_store
    settings = get_settings()

    if settings.supabase_url and (settings.supabase_service_key or settings.supabase_key):
        return SupabaseRecordStore(get_supabase())

    if _memory_store is None:
        logger.warning("Supabase not configured - using in-memory record store")
        _memory_store = MemoryRecordStore()
    return _memory_store
