"""
aiohttp middlewares.

- errors.py: ledger errors to JSON responses
- auth.py: caller identity (WebApp initData) and internal API key
"""
from server.middlewares.auth import actor_middleware, internal_api_key_middleware
from server.middlewares.errors import error_middleware

# Outermost first
MIDDLEWARES = [
    error_middleware,
    internal_api_key_middleware,
    actor_middleware,
]

__all__ = [
    'MIDDLEWARES',
    'actor_middleware',
    'internal_api_key_middleware',
    'error_middleware',
]
