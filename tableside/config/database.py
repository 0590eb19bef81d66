"""Supabase client configuration."""
from typing import Optional
import logging

from supabase import AsyncClient, acreate_client

from tableside.config.settings import Settings, settings as default_settings

# Global client instance
_supabase_client: Optional[AsyncClient] = None

logger = logging.getLogger(__name__)


async def get_supabase_client(config: Optional[Settings] = None) -> AsyncClient:
    """
    Get the Supabase client for user-authenticated requests.
    This client uses the anon key and relies on the persisted user session
    for authentication, so row-level security applies to every call.
    """
    global _supabase_client

    if _supabase_client is None:
        config = config or default_settings
        try:
            supabase_url = config.SUPABASE_URL
            # Use anon key for user-authenticated requests
            supabase_anon_key = config.SUPABASE_KEY or config.SUPABASE_API_KEY

            if not supabase_url or not supabase_anon_key:
                raise ValueError("Supabase credentials missing in .env file")

            # Create client with simple configuration (no complex options)
            _supabase_client = await acreate_client(supabase_url, supabase_anon_key)
            logger.info("Supabase client (anon) initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize Supabase client: {e}")
            raise

    return _supabase_client


def reset_supabase_client() -> None:
    """Forget the cached client, e.g. after switching projects in tests or tooling."""
    global _supabase_client
    _supabase_client = None
