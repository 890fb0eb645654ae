"""
Unit tests for token header decoding and key matching.
"""

import pytest

from service_auth.app.jwks.models import KeySet
from service_auth.app.validation.header import (
    PINNED_ALGORITHM,
    TokenHeader,
    check_algorithm,
    decode_header,
    match_key,
)
from shared.errors import AlgorithmMismatchError, KeyNotFoundError, MalformedTokenError

from conftest import KID, NOW, ROTATED_KID, make_claims, unsigned_token


class TestDecodeHeader:
    """Test cases for decode_header."""

    def test_reads_alg_and_kid(self, valid_token):
        """Algorithm and key id come from the unverified header."""
        header = decode_header(valid_token)

        assert header == TokenHeader(algorithm="RS256", key_id=KID)

    @pytest.mark.parametrize("token", [
        "",
        "not-a-token",
        "only.two",
        "a.b.c.d",
        "%%%.payload.signature",
    ])
    def test_malformed_tokens(self, token):
        """Anything that is not a three-segment JWT is rejected."""
        with pytest.raises(MalformedTokenError):
            decode_header(token)

    def test_missing_kid(self):
        """Tokens must name their signing key."""
        token = unsigned_token({"alg": "RS256", "typ": "JWT"}, make_claims(), "c2ln")

        with pytest.raises(MalformedTokenError) as exc_info:
            decode_header(token)

        assert "kid" in exc_info.value.message

    def test_missing_alg(self):
        """Tokens must declare an algorithm."""
        token = unsigned_token({"kid": KID}, make_claims(), "c2ln")

        with pytest.raises(MalformedTokenError):
            decode_header(token)


class TestCheckAlgorithm:
    """Test cases for check_algorithm."""

    def test_pinned_algorithm_accepted(self):
        """RS256 is the pinned algorithm."""
        assert PINNED_ALGORITHM == "RS256"
        check_algorithm(TokenHeader(algorithm="RS256", key_id=KID))

    @pytest.mark.parametrize("algorithm", ["none", "HS256", "RS512", "ES256", "rs256"])
    def test_other_algorithms_rejected(self, algorithm):
        """Any other declared algorithm is rejected."""
        with pytest.raises(AlgorithmMismatchError) as exc_info:
            check_algorithm(TokenHeader(algorithm=algorithm, key_id=KID))

        assert exc_info.value.code == "ALGORITHM_MISMATCH"
        assert exc_info.value.details == {"declared": algorithm, "expected": "RS256"}


class TestMatchKey:
    """Test cases for match_key."""

    def test_match(self, signing_key, rotated_key):
        """The record with the same thumbprint is returned."""
        key_set = KeySet([rotated_key.record(), signing_key.record()], NOW)

        assert match_key(KID, key_set).x5c[0] == signing_key.certificate_b64

    def test_no_match(self, signing_key):
        """Unknown key ids raise KeyNotFoundError with the kid for auditing."""
        key_set = KeySet([signing_key.record()], NOW)

        with pytest.raises(KeyNotFoundError) as exc_info:
            match_key(ROTATED_KID, key_set)

        assert exc_info.value.details == {"kid": ROTATED_KID}

    def test_no_key_set(self):
        """No key set means no match."""
        with pytest.raises(KeyNotFoundError):
            match_key(KID, None)
