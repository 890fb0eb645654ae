"""
Auth Service package for the Access Layer.

Validates identity tokens issued by Azure AD against a locally cached set
of the provider's public signing keys.

- app.discovery: resolves the signing key endpoint from OpenID discovery.
- app.jwks: key records and the refresh/retry policy of the key cache.
- app.validation: header parsing, claims policy and the token validator.
- app.main: FastAPI application exposing token verification.

Design notes:
- Package import must not perform network calls. Discovery happens in
  ``TokenValidator.create`` or the application's startup hook.
- Use the shared/ utilities for logging, metrics, config and errors.
"""
