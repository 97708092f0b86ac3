"""
Cache Infrastructure
Redis-backed shared state
"""
from .redis_rate_limit_state import RedisRateLimitState

__all__ = ["RedisRateLimitState"]
