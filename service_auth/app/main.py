"""
Auth service for the Access Layer.
"""

from typing import Any, Dict, Optional

from fastapi import Header

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import AuthenticationError, InternalInvariantError
from shared.logging import set_token_context
from .validation.claims import AzureJwtClaims
from .validation.token_validator import TokenValidator, TokenVerificationRequest


class AuthService(BaseService):
    """Auth service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None, validator: Optional[TokenValidator] = None):
        self.token_validator = validator
        self._owns_validator = validator is None
        super().__init__("auth", 8010, config)
        self._setup_auth_routes()

    async def startup(self) -> None:
        if self.token_validator is not None:
            return
        if not self.config.audience:
            raise InternalInvariantError("ACCESS_AUDIENCE must be set to validate tokens")
        self.token_validator = await TokenValidator.create(
            self.config.audience,
            settings=self.config,
            metrics=self.metrics,
        )

    async def shutdown(self) -> None:
        if self._owns_validator and self.token_validator is not None:
            await self.token_validator.close()
            self.token_validator = None

    def _setup_auth_routes(self):
        """Set up auth-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "auth",
                "message": "Access Layer - Auth Service",
                "version": "1.0.0"
            }

        @self.app.post("/auth/verify")
        async def verify_token(request: TokenVerificationRequest):
            """Token verification endpoint; reports failures in the body."""
            response = await self._validator().verify_token(request.token)
            if response.valid:
                set_token_context(response.claims.get("sub"), response.claims.get("tid"))
            return response.model_dump()

        @self.app.get("/auth/userinfo")
        async def user_info(authorization: Optional[str] = Header(default=None)):
            """Identity of the caller's bearer token; 401 when it is not valid."""
            if not authorization or not authorization.startswith("Bearer "):
                raise AuthenticationError("Missing or invalid Authorization header")

            claims = await self._validator().validate(authorization)
            set_token_context(claims.sub, claims.tid)
            return get_user_info(claims)

    def _validator(self) -> TokenValidator:
        if self.token_validator is None:
            raise InternalInvariantError("Token validator is not initialised")
        return self.token_validator

    async def _check_dependencies(self) -> Dict[str, str]:
        """Report the state of the signing key cache without fetching."""
        if self.token_validator is None:
            return {"jwks": "uninitialised"}

        key_cache = self.token_validator.key_cache
        if key_cache.key_set is None:
            return {"jwks": "empty"}
        if key_cache.offline:
            return {"jwks": "offline"}
        fresh = key_cache.is_fresh(self.token_validator.clock.now())
        return {"jwks": "fresh" if fresh else "stale"}


def get_user_info(claims: AzureJwtClaims) -> Dict[str, Any]:
    """Shape validated claims into the user info returned to callers."""
    return {
        "user_id": claims.oid or claims.sub,
        "subject": claims.sub,
        "tenant_id": claims.tid,
        "username": claims.preferred_username or claims.unique_name,
        "name": claims.name,
        "roles": claims.roles or [],
        "scopes": claims.scp.split() if claims.scp else [],
        "exp": claims.exp,
        "iat": claims.iat,
    }


def create_app(config: Optional[ServiceConfig] = None, validator: Optional[TokenValidator] = None):
    """Create FastAPI application."""
    service = AuthService(config or get_config("auth", 8010), validator)
    return service.app


if __name__ == "__main__":
    service = AuthService()
    service.run()
