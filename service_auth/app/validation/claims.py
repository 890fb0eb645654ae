"""
Claims models and the claims-validation policy.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict

from shared.errors import ClaimsInvalidError


DEFAULT_LEEWAY_SECONDS = 60
STANDARD_CLAIMS: Tuple[str, ...] = ("aud", "iss", "iat", "nbf", "exp")


class AzureJwtClaims(BaseModel):
    """Payload of an Azure AD id/access token.

    See https://docs.microsoft.com/en-us/azure/active-directory/develop/id-tokens
    for the meaning of each claim. Claims not listed here are kept as extra
    attributes.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    # Intended recipient; the application (client) id for id tokens. RFC 7519
    # also allows a list of recipients.
    aud: Union[str, List[str]]
    # Security token service that issued the token, including the tenant.
    iss: str
    iat: int
    nbf: int
    exp: int

    azp: Optional[str] = None
    azpacr: Optional[str] = None
    idp: Optional[str] = None
    c_hash: Optional[str] = None
    at_hash: Optional[str] = None
    preferred_username: Optional[str] = None
    name: Optional[str] = None
    nonce: Optional[str] = None
    # Immutable object id of the user across applications.
    oid: Optional[str] = None
    roles: Optional[List[str]] = None
    scp: Optional[str] = None
    # Pairwise subject, unique per application id.
    sub: Optional[str] = None
    # Tenant the user belongs to.
    tid: Optional[str] = None
    unique_name: Optional[str] = None
    ver: Optional[str] = None


@dataclass(frozen=True)
class ClaimsPolicy:
    """What a verified payload must satisfy to be accepted.

    Time checks accept ``now`` within ``[nbf - leeway, exp + leeway]`` and
    ``iat <= now + leeway``.
    """

    audience: Optional[str] = None
    issuer: Optional[str] = None
    leeway: int = DEFAULT_LEEWAY_SECONDS
    verify_exp: bool = True
    verify_nbf: bool = True
    verify_iat: bool = True
    required_claims: Tuple[str, ...] = STANDARD_CLAIMS

    @classmethod
    def default(cls, audience: str, leeway: int = DEFAULT_LEEWAY_SECONDS) -> "ClaimsPolicy":
        return cls(audience=audience, leeway=leeway)

    def check(self, claims: Mapping[str, Any], now: datetime) -> None:
        """Raise ``ClaimsInvalidError`` for the first check the claims fail."""
        for name in self.required_claims:
            if name not in claims:
                raise ClaimsInvalidError(
                    "required",
                    f"Token is missing the '{name}' claim",
                    details={"claim": name},
                )

        if self.audience is not None:
            self._check_audience(claims.get("aud"))

        if self.issuer is not None and claims.get("iss") != self.issuer:
            raise ClaimsInvalidError(
                "issuer",
                "Token was issued by an unexpected issuer",
                details={"expected": self.issuer, "actual": claims.get("iss")},
            )

        timestamp = now.timestamp()

        if self.verify_exp and "exp" in claims:
            exp = _numeric(claims, "exp")
            if timestamp > exp + self.leeway:
                raise ClaimsInvalidError("expired", "Token has expired", details={"exp": exp})

        if self.verify_nbf and "nbf" in claims:
            nbf = _numeric(claims, "nbf")
            if timestamp < nbf - self.leeway:
                raise ClaimsInvalidError("not_before", "Token is not yet valid", details={"nbf": nbf})

        if self.verify_iat and "iat" in claims:
            iat = _numeric(claims, "iat")
            if iat > timestamp + self.leeway:
                raise ClaimsInvalidError("issued_at", "Token is issued in the future", details={"iat": iat})

    def _check_audience(self, aud: Any) -> None:
        if isinstance(aud, str):
            accepted = aud == self.audience
        elif isinstance(aud, list):
            accepted = self.audience in aud
        else:
            accepted = False

        if not accepted:
            raise ClaimsInvalidError(
                "audience",
                "Token was not issued for this audience",
                details={"expected": self.audience, "actual": aud},
            )


def _numeric(claims: Mapping[str, Any], name: str) -> float:
    value = claims.get(name)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ClaimsInvalidError(
            "format",
            f"The '{name}' claim must be a numeric date",
            details={"claim": name},
        )
    return float(value)


def claims_summary(claims: Dict[str, Any]) -> Dict[str, Any]:
    """Non-sensitive subset of claims suitable for audit logs."""
    return {key: claims.get(key) for key in ("sub", "oid", "tid", "iss") if claims.get(key) is not None}
