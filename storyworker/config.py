"""
Environment configuration for the storyboard worker.

Values are read once at import (after load_dotenv) and exposed as module
constants, the same way the provider modules read their API keys.
"""

import os
from typing import Optional

from dotenv import load_dotenv
from supabase import create_client, Client

load_dotenv()

# ── Persistence ──────────────────────────────────────────────────────────────
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

# ── Providers ────────────────────────────────────────────────────────────────
LUMA_API_KEY = os.getenv("LUMA_API_KEY", "")
FAL_KEY = os.getenv("FAL_KEY", "")
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-3-5-sonnet-20240620")
IMAGE_PROVIDER = os.getenv("IMAGE_PROVIDER", "luma")  # luma | fal

# ── Webhooks ─────────────────────────────────────────────────────────────────
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "")
WEBHOOK_SECRET = os.getenv("WEBHOOK_SECRET", "")
WEBHOOK_ONLY = os.getenv("WEBHOOK_ONLY", "false").lower() in ("1", "true", "yes")

# ── API auth ─────────────────────────────────────────────────────────────────
WORKER_API_TOKEN = os.getenv("WORKER_API_TOKEN", "")

# ── Polling ──────────────────────────────────────────────────────────────────
POLL_MAX_ATTEMPTS = int(os.getenv("POLL_MAX_ATTEMPTS", "30"))
POLL_INTERVAL_SECONDS = float(os.getenv("POLL_INTERVAL_SECONDS", "3"))
POLL_MAX_INTERVAL_SECONDS = float(os.getenv("POLL_MAX_INTERVAL_SECONDS", "10"))

# ── Runtime ──────────────────────────────────────────────────────────────────
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", "8080"))


def webhook_url(provider: str) -> Optional[str]:
    """Callback URL handed to a provider, or None when webhooks are not exposed."""
    if not PUBLIC_BASE_URL:
        return None
    url = f"{PUBLIC_BASE_URL.rstrip('/')}/webhooks/{provider}"
    if WEBHOOK_SECRET:
        url += f"?token={WEBHOOK_SECRET}"
    return url


# ── Lazy Supabase client ─────────────────────────────────────────────────────
_supabase_client: Optional[Client] = None


def get_supabase() -> Client:
    global _supabase_client
    if _supabase_client is None:
        if not SUPABASE_URL or not SUPABASE_SERVICE_ROLE_KEY:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
        _supabase_client = create_client(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)
    return _supabase_client
