"""
Token validation service for Auth service.

``TokenValidator`` validates Azure AD tokens against the cached signing keys.
Default validation checks that the token:

1. is signed by one of the provider's current keys and not tampered with,
2. was issued for the configured audience,
3. is not expired,
4. is not used before it is valid,
5. is not issued in the future,
6. declares the algorithm we pin (RS256).

The algorithm used for verification never comes from the token header; a
header declaring anything else is rejected before key lookup. Timestamps get
60 seconds of leeway for clock skew between servers.

Keys are cached for 24 hours by default. When a token names a key we do not
hold, the keys are refreshed and the lookup retried once, at most once per
hour. Offline validators never refresh; their owner supplies keys through
``set_keys``.
"""

from datetime import timedelta
from typing import Any, Dict, Iterable, Optional, Type, TypeVar, Union

import httpx
from pydantic import BaseModel, ValidationError

from shared.config import BaseConfig
from shared.errors import (
    AccessLayerException,
    ClaimsInvalidError,
    ErrorResponse,
    InternalInvariantError,
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..clock import Clock, system_clock
from ..discovery import DiscoveryResolver
from ..jwks.client import JWKSClient, RetryBudget
from ..jwks.models import KeyRecord
from .claims import AzureJwtClaims, ClaimsPolicy, claims_summary
from .header import PINNED_ALGORITHM, check_algorithm, decode_header, find_key, match_key
from .verifier import JoseVerifier, Verifier


ClaimsModel = TypeVar("ClaimsModel", bound=BaseModel)


class TokenVerificationRequest(BaseModel):
    """Request model for token verification."""
    token: str


class TokenVerificationResponse(BaseModel):
    """Response model for token verification."""
    valid: bool
    claims: Optional[Dict[str, Any]] = None
    error: Optional[ErrorResponse] = None


class TokenValidator:
    """Validates Azure AD tokens for one audience.

    Build it with ``await TokenValidator.create(audience)``; construction
    resolves the signing key endpoint, which is an expensive network call.
    Keep the instance alive, or ``clone()`` it for high fan-out use.
    """

    def __init__(
        self,
        audience: str,
        key_cache: JWKSClient,
        *,
        discovery: Optional[DiscoveryResolver] = None,
        clock: Optional[Clock] = None,
        verifier: Optional[Verifier] = None,
        leeway: int = 60,
        metrics: Optional[MetricsCollector] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.audience = audience
        self.key_cache = key_cache
        self.discovery = discovery
        self.clock = clock or system_clock
        self.verifier = verifier or JoseVerifier()
        self.algorithm = PINNED_ALGORITHM
        self.default_policy = ClaimsPolicy.default(audience, leeway=leeway)
        self.metrics = metrics
        self.logger = get_logger("auth.validator")

        # Only set when this instance created the client and must close it.
        self._owned_client = http_client

    @classmethod
    async def create(
        cls,
        audience: str,
        *,
        offline_keys: Optional[Iterable[KeyRecord]] = None,
        settings: Optional[BaseConfig] = None,
        clock: Optional[Clock] = None,
        verifier: Optional[Verifier] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> "TokenValidator":
        """Build a validator.

        Online validators fetch the discovery document now and raise
        ``DiscoveryFetchFailed`` if it is unavailable. Passing
        ``offline_keys`` yields an offline validator that never performs a
        network request.
        """
        settings = settings or BaseConfig()
        clock = clock or system_clock
        budget = RetryBudget(
            enabled=settings.jwks_retry_enabled,
            window=timedelta(seconds=settings.jwks_retry_window_seconds),
        )
        expiration_window = timedelta(hours=settings.jwks_cache_hours)

        if offline_keys is not None:
            key_cache = JWKSClient(
                None,
                offline=True,
                expiration_window=expiration_window,
                retry_budget=budget,
                metrics=metrics,
            )
            key_cache.set_keys(offline_keys, clock.now())
            return cls(
                audience,
                key_cache,
                clock=clock,
                verifier=verifier,
                leeway=settings.token_leeway_seconds,
                metrics=metrics,
            )

        owned_client = None
        if http_client is None:
            http_client = owned_client = httpx.AsyncClient(timeout=settings.http_timeout)

        discovery = DiscoveryResolver(http_client, settings.discovery_url)
        try:
            jwks_uri = await discovery.resolve_keys_endpoint()
        except AccessLayerException:
            if owned_client is not None:
                await owned_client.aclose()
            raise

        key_cache = JWKSClient(
            jwks_uri,
            http_client,
            expiration_window=expiration_window,
            retry_budget=budget,
            metrics=metrics,
        )
        return cls(
            audience,
            key_cache,
            discovery=discovery,
            clock=clock,
            verifier=verifier,
            leeway=settings.token_leeway_seconds,
            metrics=metrics,
            http_client=owned_client,
        )

    @property
    def offline(self) -> bool:
        return self.key_cache.offline

    async def validate(self, token: str) -> AzureJwtClaims:
        """Validate with the default policy and map the payload to ``AzureJwtClaims``."""
        claims = await self._validate(token, self.default_policy)
        return self._shape(claims, AzureJwtClaims)

    async def validate_custom(
        self,
        token: str,
        policy: ClaimsPolicy,
        claims_model: Optional[Type[ClaimsModel]] = None,
    ) -> Union[Dict[str, Any], ClaimsModel]:
        """Validate with a caller-supplied claims policy and claims shape.

        Algorithm pinning, key matching and retry-on-miss apply exactly as in
        ``validate``; only the claim checks and the result type change. For
        example, to allow two minutes of skew::

            policy = ClaimsPolicy(audience=client_id, leeway=120)
            claims = await validator.validate_custom(token, policy, MyClaims)
        """
        claims = await self._validate(token, policy)
        if claims_model is None:
            return claims
        return self._shape(claims, claims_model)

    async def verify_token(self, token: str) -> TokenVerificationResponse:
        """Validate and report the outcome instead of raising."""
        try:
            claims = await self.validate(token)
        except AccessLayerException as e:
            return TokenVerificationResponse(valid=False, error=e.to_response())

        return TokenVerificationResponse(valid=True, claims=claims.model_dump())

    def set_expiration_window(self, hours: int) -> None:
        """How long fetched keys are trusted. Azure rotates them roughly every 24h."""
        self.key_cache.set_expiration_window(hours)

    def disable_retry(self) -> None:
        self.key_cache.disable_retry()

    def set_keys(self, records: Iterable[KeyRecord]) -> None:
        """Replace the cached keys; the way offline validators receive updates."""
        self.key_cache.set_keys(records, self.clock.now())

    async def refresh_jwks_uri(self) -> str:
        """Re-run discovery and point the key cache at the returned endpoint."""
        if self.discovery is None:
            raise InternalInvariantError("Offline validator has no discovery endpoint")
        self.key_cache.jwks_uri = await self.discovery.resolve_keys_endpoint()
        return self.key_cache.jwks_uri

    def clone(self) -> "TokenValidator":
        """Cheap copy sharing the current key snapshot and HTTP client."""
        return TokenValidator(
            self.audience,
            self.key_cache.clone(),
            discovery=self.discovery,
            clock=self.clock,
            verifier=self.verifier,
            leeway=self.default_policy.leeway,
            metrics=self.metrics,
        )

    async def close(self) -> None:
        """Close the HTTP client if this validator created it."""
        if self._owned_client is not None:
            await self._owned_client.aclose()
            self._owned_client = None

    async def __aenter__(self) -> "TokenValidator":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _validate(self, token: str, policy: ClaimsPolicy) -> Dict[str, Any]:
        try:
            claims = await self._validate_authenticity(token, policy)
        except AccessLayerException as e:
            self.logger.warning("Token verification failed", code=e.code, error=e.message, details=e.details)
            if self.metrics:
                self.metrics.record_validation(e.code)
            raise

        self.logger.info("Token verified successfully", **claims_summary(claims))
        if self.metrics:
            self.metrics.record_validation("valid")
        return claims

    async def _validate_authenticity(self, token: str, policy: ClaimsPolicy) -> Dict[str, Any]:
        if token.startswith("Bearer "):
            token = token[7:]

        now = self.clock.now()

        # Offline validators never refresh; their owner manages the keys.
        key_set = await self.key_cache.ensure_fresh(now)
        if key_set is None:
            raise InternalInvariantError("Internal err. No public keys found.")

        # Does not validate the token.
        header = decode_header(token)
        check_algorithm(header, self.algorithm)

        record = find_key(header.key_id, key_set)
        if record is None:
            # The provider may have rotated its keys since our last fetch.
            refreshed = await self.key_cache.refresh_on_miss(key_set, now)
            record = match_key(header.key_id, refreshed)

        return self.verifier.verify(token, self.algorithm, record.public_key_material, policy, now)

    @staticmethod
    def _shape(claims: Dict[str, Any], model: Type[ClaimsModel]) -> ClaimsModel:
        try:
            return model.model_validate(claims)
        except ValidationError as exc:
            raise ClaimsInvalidError(
                "format",
                "Token claims do not match the expected shape",
                details={"fields": sorted({".".join(map(str, err["loc"])) for err in exc.errors()})},
            ) from exc
