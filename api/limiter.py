"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

This is the coarse request-volume cap. The per-action budgets (5 logins per
15 minutes, 3 registrations per hour) live in core.ratelimit.RateLimiter and
are enforced by the orchestrator. Both are keyed by auth.dependencies.client_key.
"""

from slowapi import Limiter

from auth.dependencies import client_key

AUTH_ROUTE_LIMIT = "30/minute"

limiter = Limiter(key_func=client_key, storage_uri="memory://")
