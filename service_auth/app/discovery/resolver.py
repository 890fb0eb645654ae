"""
OpenID discovery for the signing key endpoint.
"""

import httpx
from pydantic import ValidationError

from shared.config import AZURE_COMMON_DISCOVERY_URL
from shared.errors import DiscoveryFetchFailed
from shared.logging import get_logger
from ..jwks.models import OpenIdConfiguration


class DiscoveryResolver:
    """Reads ``jwks_uri`` from the provider's discovery document.

    One request per call: no retry and no caching. Callers that need a
    current value call ``resolve_keys_endpoint`` again.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        discovery_url: str = AZURE_COMMON_DISCOVERY_URL,
    ) -> None:
        self.discovery_url = discovery_url
        self._client = http_client
        self.logger = get_logger("auth.discovery")

    async def resolve_keys_endpoint(self) -> str:
        """Fetch the discovery document and return its ``jwks_uri``."""
        try:
            response = await self._client.get(self.discovery_url)
            response.raise_for_status()
            document = OpenIdConfiguration.model_validate(response.json())
        except (httpx.HTTPError, ValueError, ValidationError) as exc:
            self.logger.error(
                "Failed to resolve JWKS endpoint",
                url=self.discovery_url,
                error=str(exc),
            )
            raise DiscoveryFetchFailed(
                "Could not resolve signing key endpoint",
                url=self.discovery_url,
                cause=exc,
            ) from exc

        self.logger.info("Resolved JWKS endpoint", jwks_uri=document.jwks_uri)
        return document.jwks_uri
