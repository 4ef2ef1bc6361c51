"""
rate_limit.py — Global rate limiter instance.

Uses slowapi (a Starlette-compatible wrapper around the `limits` library).
Requests are keyed by client IP address.

Usage in routes:
    from fastapi import Request
    from safehaven.core.rate_limit import limiter

    @router.post("/api/v1/sos")
    @limiter.limit("10/minute")
    async def trigger(request: Request, payload: TriggerSOSRequest):
        ...

Limits in use:
  POST /api/v1/sos                    10/minute  (double-tap / shake storms)
  GET  /api/v1/places/nearby          20/minute  (public Overpass servers are shared)
  POST /api/v1/places/{id}/feedback   30/minute
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)
