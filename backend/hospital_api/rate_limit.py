from slowapi import Limiter
from slowapi.util import get_remote_address

from hospital_api.config import get_settings

settings = get_settings()

# Keyed by client IP. Only /identity/resolve is limited (RESOLVE_RATE_LIMIT).
limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)
