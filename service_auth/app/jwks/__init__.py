"""
JWKS client package.

Contains the cache of Azure AD signing keys used to verify token
signatures, together with the records it holds.

Key points:
- A key set is a snapshot; refresh replaces it wholesale.
- Freshness is computed from the caller's clock on every check.
- An unknown kid may trigger at most one refresh per hour.
"""

from .client import JWKSClient, RetryBudget
from .models import KeyRecord, KeySet

__all__ = [
    "JWKSClient",
    "KeyRecord",
    "KeySet",
    "RetryBudget",
]
