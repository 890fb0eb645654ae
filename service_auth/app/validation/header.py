"""
Unverified token header parsing and key matching.

Nothing here makes a trust decision. The header only tells us which key and
algorithm the token claims to use.
"""

from dataclasses import dataclass
from typing import Optional

from jose import jwt
from jose.exceptions import JWTError

from shared.errors import AlgorithmMismatchError, KeyNotFoundError, MalformedTokenError
from ..jwks.models import KeyRecord, KeySet


# Azure AD signs id and access tokens with RS256. Needs updating if
# Microsoft changes its documented algorithm.
PINNED_ALGORITHM = "RS256"


@dataclass(frozen=True)
class TokenHeader:
    algorithm: str
    key_id: str


def decode_header(token: str) -> TokenHeader:
    """Read ``alg`` and ``kid`` from the token without verifying it."""
    if not isinstance(token, str) or token.count(".") != 2:
        raise MalformedTokenError("Token must have three dot-separated segments")

    try:
        header = jwt.get_unverified_header(token)
    except JWTError as exc:
        raise MalformedTokenError("Token header could not be decoded", details={"error": str(exc)}) from exc

    algorithm = header.get("alg")
    if not isinstance(algorithm, str) or not algorithm:
        raise MalformedTokenError("No `alg` in token header")

    key_id = header.get("kid")
    if not isinstance(key_id, str) or not key_id:
        raise MalformedTokenError("No `kid` in token header")

    return TokenHeader(algorithm=algorithm, key_id=key_id)


def check_algorithm(header: TokenHeader, pinned: str = PINNED_ALGORITHM) -> None:
    """Reject tokens declaring anything but the pinned algorithm."""
    if header.algorithm != pinned:
        raise AlgorithmMismatchError(
            details={"declared": header.algorithm, "expected": pinned},
        )


def find_key(key_id: str, key_set: Optional[KeySet]) -> Optional[KeyRecord]:
    if key_set is None:
        return None
    return key_set.find(key_id)


def match_key(key_id: str, key_set: Optional[KeySet]) -> KeyRecord:
    """Return the record whose thumbprint equals ``key_id``."""
    record = find_key(key_id, key_set)
    if record is None:
        raise KeyNotFoundError(details={"kid": key_id})
    return record
