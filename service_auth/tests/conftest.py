"""
Shared fixtures for Auth service tests.

Tokens are signed with freshly generated RSA keys whose self-signed
certificates are published by a fake identity provider served through
``httpx.MockTransport``.
"""

import asyncio
import base64
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from jose import jwt

from service_auth.app.jwks.models import KeyRecord


AUDIENCE = "6e74172b-be56-4843-9ff4-e66a39bb12e3"
TENANT_ID = "72f988bf-86f1-41af-91ab-2d7cd011db47"
ISSUER = f"https://login.microsoftonline.com/{TENANT_ID}/v2.0"
KID = "i6lGk3FZzxRcUb2C3nEQ7syHJlY"
ROTATED_KID = "nOo3ZDrODXEK1jKWhXslHR_KXEg"
DISCOVERY_URL = "https://login.microsoftonline.com/common/.well-known/openid-configuration"
JWKS_URI = "https://login.microsoftonline.com/common/discovery/v2.0/keys"
NOW = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock whose time only moves when a test says so."""

    def __init__(self, now: datetime = NOW):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class SigningKey:
    """RSA key pair plus the certificate an Azure JWKS would publish."""

    def __init__(self, kid: str):
        self.kid = kid
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        self.private_pem = private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption(),
        ).decode("ascii")

        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "accounts.accesscontrol.windows.net")])
        certificate = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(private_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(NOW - timedelta(days=30))
            .not_valid_after(NOW + timedelta(days=365))
            .sign(private_key, hashes.SHA256())
        )
        self.certificate_b64 = base64.b64encode(
            certificate.public_bytes(serialization.Encoding.DER)
        ).decode("ascii")
        self.public_key_b64 = base64.b64encode(
            private_key.public_key().public_bytes(
                serialization.Encoding.DER,
                serialization.PublicFormat.PKCS1,
            )
        ).decode("ascii")

    def record(self) -> KeyRecord:
        return KeyRecord(x5t=self.kid, x5c=[self.certificate_b64])

    def jwk(self) -> Dict[str, Any]:
        return {
            "kty": "RSA",
            "use": "sig",
            "kid": self.kid,
            "x5t": self.kid,
            "e": "AQAB",
            "x5c": [self.certificate_b64],
            "issuer": "https://login.microsoftonline.com/{tenantid}/v2.0",
        }

    def sign(self, claims: Dict[str, Any], headers: Optional[Dict[str, Any]] = None) -> str:
        return jwt.encode(
            claims,
            self.private_pem,
            algorithm="RS256",
            headers={"kid": self.kid, **(headers or {})},
        )


def make_claims(now: datetime = NOW, **overrides) -> Dict[str, Any]:
    """Claims of the v2.0 example id token, relative to ``now``."""
    timestamp = int(now.timestamp())
    claims = {
        "aud": AUDIENCE,
        "iss": ISSUER,
        "iat": timestamp - 1000,
        "nbf": timestamp - 2000,
        "exp": timestamp + 1000,
        "azp": AUDIENCE,
        "azpacr": "0",
        "name": "Abe Lincoln",
        "oid": "690222be-ff1a-4d56-abd1-7e4f7d38e474",
        "preferred_username": "abeli@microsoft.com",
        "rh": "I",
        "roles": ["Reader"],
        "scp": "access_as_user",
        "sub": "HKZpfaHyWadeOouYlitjrI-KffTm222X5rrV3xDqfKQ",
        "tid": TENANT_ID,
        "uti": "fqiBqXLPj0eQa82S-IYFAA",
        "ver": "2.0",
    }
    claims.update(overrides)
    return {key: value for key, value in claims.items() if value is not None}


def b64url(data: Dict[str, Any]) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode("ascii")


def unsigned_token(header: Dict[str, Any], claims: Dict[str, Any], signature: str = "") -> str:
    return f"{b64url(header)}.{b64url(claims)}.{signature}"


class FakeIdentityProvider:
    """Serves the discovery document and JWKS, counting requests."""

    def __init__(self, keys: List[SigningKey]):
        self.keys = list(keys)
        self.requests: List[str] = []
        self.discovery_status = 200
        self.jwks_status = 200
        self.jwks_body: Optional[Any] = None
        self.latency = 0.0

    async def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if self.latency:
            await asyncio.sleep(self.latency)

        if url == DISCOVERY_URL:
            if self.discovery_status != 200:
                return httpx.Response(self.discovery_status)
            return httpx.Response(200, json={
                "issuer": "https://login.microsoftonline.com/{tenantid}/v2.0",
                "jwks_uri": JWKS_URI,
            })

        if url == JWKS_URI:
            if self.jwks_status != 200:
                return httpx.Response(self.jwks_status)
            body = self.jwks_body if self.jwks_body is not None else {
                "keys": [key.jwk() for key in self.keys]
            }
            return httpx.Response(200, json=body)

        return httpx.Response(404)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    @property
    def discovery_fetches(self) -> int:
        return self.requests.count(DISCOVERY_URL)

    @property
    def jwks_fetches(self) -> int:
        return self.requests.count(JWKS_URI)


class FakeVerifier:
    """Verifier that skips cryptography and records what it was asked."""

    def __init__(self, claims: Optional[Dict[str, Any]] = None, error: Optional[Exception] = None):
        self.claims = claims if claims is not None else make_claims()
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def verify(self, token, algorithm, key_material, policy, now):
        self.calls.append({
            "token": token,
            "algorithm": algorithm,
            "key_material": key_material,
            "policy": policy,
            "now": now,
        })
        if self.error is not None:
            raise self.error
        policy.check(self.claims, now)
        return dict(self.claims)


@pytest.fixture(scope="session")
def signing_key() -> SigningKey:
    """Key the provider currently signs with."""
    return SigningKey(KID)


@pytest.fixture(scope="session")
def rotated_key() -> SigningKey:
    """Key the provider rotates to."""
    return SigningKey(ROTATED_KID)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider(signing_key) -> FakeIdentityProvider:
    return FakeIdentityProvider([signing_key])


@pytest.fixture
def valid_token(signing_key) -> str:
    return signing_key.sign(make_claims())
