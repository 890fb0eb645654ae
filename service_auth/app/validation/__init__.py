"""
Token validation package.

Validates Azure AD tokens issued by the upstream identity provider:

- header: unverified header parsing, algorithm pinning, key matching.
- claims: the ``AzureJwtClaims`` payload model and ``ClaimsPolicy``.
- verifier: signature plus claims verification behind a ``Verifier``
  interface, implemented with python-jose.
- token_validator: the orchestrator tying the key cache to the checks.
"""

from .claims import AzureJwtClaims, ClaimsPolicy
from .header import PINNED_ALGORITHM, TokenHeader, decode_header, match_key
from .token_validator import TokenValidator, TokenVerificationRequest, TokenVerificationResponse
from .verifier import JoseVerifier, Verifier

__all__ = [
    "AzureJwtClaims",
    "ClaimsPolicy",
    "JoseVerifier",
    "PINNED_ALGORITHM",
    "TokenHeader",
    "TokenValidator",
    "TokenVerificationRequest",
    "TokenVerificationResponse",
    "Verifier",
    "decode_header",
    "match_key",
]
