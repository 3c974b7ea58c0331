"""Utility functions."""
from app.utils.auth import (
    SupabaseKeySet,
    create_access_token,
    supabase_keys,
    verify_legacy_token,
    verify_supabase_jwt,
)

__all__ = [
    "SupabaseKeySet",
    "create_access_token",
    "supabase_keys",
    "verify_legacy_token",
    "verify_supabase_jwt",
]
