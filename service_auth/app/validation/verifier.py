"""
Signature and claims verification capability.

The orchestrator never touches cryptography directly; it hands the matched
key, the pinned algorithm and a ``ClaimsPolicy`` to a ``Verifier``. Tests
substitute a fake to exercise the policy logic without real keys.
"""

import base64
import binascii
import json
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, Protocol

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from jose import jws
from jose.exceptions import JOSEError

from shared.errors import AuthenticityFailedError, MalformedTokenError
from .claims import ClaimsPolicy


class Verifier(Protocol):
    def verify(
        self,
        token: str,
        algorithm: str,
        key_material: str,
        policy: ClaimsPolicy,
        now: datetime,
    ) -> Dict[str, Any]:
        """Return the payload if signature and claims hold, else raise.

        Raises ``AuthenticityFailedError`` for a bad signature and
        ``ClaimsInvalidError`` for a failed claim check.
        """
        ...


@lru_cache(maxsize=32)
def load_public_key_pem(key_material: str) -> str:
    """Turn the base64 DER ``x5c`` entry into a PEM public key.

    Accepts an X.509 certificate or a bare RSA public key.
    """
    try:
        der = base64.b64decode(key_material, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise AuthenticityFailedError(
            "Signing key material is not valid base64",
            details={"error": str(exc)},
        ) from exc

    try:
        public_key = x509.load_der_x509_certificate(der).public_key()
    except ValueError:
        try:
            public_key = serialization.load_der_public_key(der)
        except ValueError as exc:
            raise AuthenticityFailedError(
                "Signing key material could not be loaded",
                details={"error": str(exc)},
            ) from exc

    return public_key.public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


class JoseVerifier:
    """``Verifier`` backed by python-jose.

    The signature is checked with ``jose.jws`` restricted to the single
    algorithm passed in; claims are then checked against the policy using
    the caller's clock.
    """

    def verify(
        self,
        token: str,
        algorithm: str,
        key_material: str,
        policy: ClaimsPolicy,
        now: datetime,
    ) -> Dict[str, Any]:
        public_key = load_public_key_pem(key_material)

        try:
            payload = jws.verify(token, public_key, algorithms=[algorithm])
        except JOSEError as exc:
            raise AuthenticityFailedError(details={"error": str(exc)}) from exc

        try:
            claims = json.loads(payload)
        except ValueError as exc:
            raise MalformedTokenError("Token payload is not valid JSON") from exc
        if not isinstance(claims, dict):
            raise MalformedTokenError("Token payload must be a JSON object")

        policy.check(claims, now)
        return claims
