"""Supabase client factory. Credentials come from .env."""
import logging
import os

from dotenv import load_dotenv
from supabase import create_client, Client

load_dotenv()

logger = logging.getLogger(__name__)


def get_credentials() -> tuple[str | None, str | None]:
    return os.environ.get("SUPABASE_URL"), os.environ.get("SUPABASE_KEY")


def get_supabase_client() -> Client:
    """Create a client from SUPABASE_URL / SUPABASE_KEY. Raises ValueError if either is unset."""
    url, key = get_credentials()
    if not url or not key:
        raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set")
    logger.debug(f"Connecting to Supabase at {url}")
    return create_client(url, key)
