"""
Signing key records and key set snapshots.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shared.errors import InternalInvariantError


class KeyRecord(BaseModel):
    """One entry of the provider's JWKS.

    ``x5t`` is the thumbprint the token header refers to as ``kid``;
    ``x5c[0]`` holds the base64 DER certificate used for verification.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    x5t: str = Field(min_length=1)
    x5c: Tuple[str, ...] = Field(min_length=1)

    @property
    def public_key_material(self) -> str:
        return self.x5c[0]


class KeySet:
    """Immutable snapshot of the provider's signing keys.

    A refresh builds a new ``KeySet``; an existing one is never mutated.
    """

    __slots__ = ("_records", "_fetched_at")

    def __init__(self, records: Iterable[KeyRecord], fetched_at: datetime):
        records = tuple(records)
        seen = set()
        for record in records:
            if record.x5t in seen:
                raise InternalInvariantError(
                    "Duplicate thumbprint in key set",
                    details={"x5t": record.x5t},
                )
            seen.add(record.x5t)
        self._records = records
        self._fetched_at = fetched_at

    @classmethod
    def from_jwks(cls, document: Dict[str, Any], fetched_at: datetime) -> "KeySet":
        """Build a key set from a JWKS document.

        Entries without a usable ``x5t``/``x5c`` pair cannot be matched
        against Azure tokens and are skipped. Raises ``ValueError`` when ``keys`` is absent.
        """
        keys = document.get("keys") if isinstance(document, dict) else None
        if not isinstance(keys, list):
            raise ValueError("JWKS response missing 'keys' array")

        records: List[KeyRecord] = []
        for entry in keys:
            if not isinstance(entry, dict) or not entry.get("x5t") or not entry.get("x5c"):
                continue
            try:
                records.append(KeyRecord.model_validate(entry))
            except ValidationError:
                continue
        return cls(records, fetched_at)

    @property
    def records(self) -> Tuple[KeyRecord, ...]:
        return self._records

    @property
    def fetched_at(self) -> datetime:
        return self._fetched_at

    @property
    def thumbprints(self) -> List[str]:
        return [record.x5t for record in self._records]

    def find(self, key_id: str) -> Optional[KeyRecord]:
        """First record whose thumbprint equals ``key_id``."""
        return next((record for record in self._records if record.x5t == key_id), None)

    def __len__(self) -> int:
        return len(self._records)

    def __repr__(self) -> str:
        return f"KeySet(thumbprints={self.thumbprints!r}, fetched_at={self._fetched_at.isoformat()})"


class OpenIdConfiguration(BaseModel):
    """The only field of the discovery document this service consumes."""

    model_config = ConfigDict(extra="ignore")

    jwks_uri: str = Field(min_length=1)
