"""
Discovery package.

Resolves the signing key endpoint (``jwks_uri``) from the identity
provider's OpenID Connect discovery document. Construction of an online
validator depends on this lookup succeeding.
"""

from .resolver import DiscoveryResolver

__all__ = [
    "DiscoveryResolver",
]
