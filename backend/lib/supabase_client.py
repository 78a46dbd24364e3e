"""
Supabase client for backend operations
"""
import logging
import os
from typing import Optional

from supabase import create_client, Client
from dotenv import load_dotenv

load_dotenv()
load_dotenv('../.env')  # Also try parent directory

logger = logging.getLogger(__name__)

_supabase_client: Optional[Client] = None


def supabase_configured() -> bool:
    return bool(os.getenv("SUPABASE_URL") and os.getenv("SUPABASE_SERVICE_KEY"))


def get_supabase_client() -> Optional[Client]:
    """
    Get or create the Supabase client singleton.

    Returns None when SUPABASE_URL / SUPABASE_SERVICE_KEY are not set; the
    stores then keep their data in process memory.
    """
    global _supabase_client

    if _supabase_client is None:
        if not supabase_configured():
            logger.warning("⚠️ SUPABASE_URL / SUPABASE_SERVICE_KEY not set, using in-memory stores")
            return None
        # Service role key: the backend filters by owner itself
        _supabase_client = create_client(os.getenv("SUPABASE_URL"), os.getenv("SUPABASE_SERVICE_KEY"))

    return _supabase_client
