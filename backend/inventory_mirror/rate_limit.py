"""Shared slowapi rate limiter."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from inventory_mirror.config import get_settings

settings = get_settings()

limiter = Limiter(key_func=get_remote_address)

QUERY_RATE_LIMIT = f"{settings.rate_limit_per_minute}/minute"
SYNC_CONTROL_RATE_LIMIT = "10/minute"
