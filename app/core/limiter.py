from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import settings

# Generation calls are paid model calls; keep them bounded per client.
limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)
