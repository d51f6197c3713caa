"""Supabase client configuration for the persistence mirror."""
from typing import Optional
import logging

from supabase import Client, create_client

from order_coordinator.config.settings import settings

# Global client instance
_supabase_service_client: Optional[Client] = None

logger = logging.getLogger(__name__)


def get_supabase_service_client() -> Optional[Client]:
    """
    Get Supabase client with service role for mirror writes.
    This bypasses RLS and is only used by the coordinator itself.
    """
    global _supabase_service_client

    if _supabase_service_client is None:
        SUPABASE_URL = settings.SUPABASE_URL
        SUPABASE_SERVICE_KEY = settings.SUPABASE_SERVICE_ROLE_KEY

        if not SUPABASE_URL or not SUPABASE_SERVICE_KEY:
            logger.warning("Supabase credentials missing - persistence mirror disabled")
            return None

        try:
            _supabase_service_client = create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY)
            logger.info("Supabase service client initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize Supabase service client: {e}")
            return None

    return _supabase_service_client


def test_supabase_connection() -> bool:
    """
    Test Supabase connection.
    Returns True if connection is successful, False otherwise.
    """
    client = get_supabase_service_client()
    if client is None:
        return False
    try:
        client.table("orders").select("id").limit(1).execute()
        logger.info("Supabase connection test successful")
        return True
    except Exception as e:
        logger.error(f"Supabase connection test failed: {e}")
        return False
