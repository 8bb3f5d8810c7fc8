"""Rate limiting adapters.

The pipeline talks to ``AbstractRateLimiter`` only, so the in-memory
fixed-window limiter can later be replaced by a shared store (e.g., Redis)
without touching the HTTP layer.
"""
