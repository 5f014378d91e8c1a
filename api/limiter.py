"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted as middleware) and api/routes/v1/auth.py
(per-route limits on the credential endpoints via @limiter.limit()).

A single shared instance means every route counts against the same in-memory
store. One limiter per module would give each its own counters and the limits
would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")

# Applied to login, signup, verify, and the code/reset request endpoints.
CREDENTIAL_LIMIT = get_settings().login_rate_limit
