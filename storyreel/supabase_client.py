"""
Lazy Supabase service-role client.

The ledger and the artifact store both talk to Supabase with the service
role key (bypasses RLS). The client is created on first use so the worker
can boot, and fall back to in-memory stores, without credentials.
"""

import os
import logging
from typing import Optional

from supabase import create_client, Client

logger = logging.getLogger(__name__)

_service_client: Optional[Client] = None


def _credentials() -> tuple[str, str]:
    url = os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL", "")
    key = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
    return url, key


def is_configured() -> bool:
    url, key = _credentials()
    return bool(url and key)


def get_supabase() -> Client:
    global _service_client
    if _service_client is None:
        url, key = _credentials()
        if not url or not key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
        _service_client = create_client(url, key)
        logger.info(f"Supabase client created for {url[:40]}")
    return _service_client
