"""Datastore access for car_sync."""

from .base import StagingStore
from .supabase import SupabaseStagingStore

__all__ = ["StagingStore", "SupabaseStagingStore"]
