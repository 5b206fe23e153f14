"""
tests/test_federated.py -- Unit tests for auth/federated.py (decode-only tier).

Tokens are built with jose.jwt.encode using an arbitrary key: the parser
never checks signatures, which is exactly why its output is unverified.
"""

from __future__ import annotations

from jose import jwt

from auth.federated import FederatedTokenParser
from auth.models import FederatedIdentity, TokenClaims
from tests.conftest import FakeClock

ISSUER = "https://securetoken.google.com/passgate-test"
AUDIENCE = "passgate-test"
NOW = 1_700_000_000


def _token(**overrides) -> str:
    claims = {
        "iss": ISSUER,
        "aud": AUDIENCE,
        "sub": "fb-uid-1",
        "email": "Carol@Example.com",
        "name": "Carol",
        "exp": NOW + 3600,
    }
    claims.update(overrides)
    claims = {k: v for k, v in claims.items() if v is not None}
    return jwt.encode(claims, "any-key-at-all", algorithm="HS256")


def _parser(**kwargs) -> FederatedTokenParser:
    kwargs.setdefault("expected_audience", AUDIENCE)
    return FederatedTokenParser(ISSUER, clock=FakeClock(start=NOW), **kwargs)


class TestParse:
    def test_valid_token_yields_unverified_identity(self) -> None:
        identity = _parser().parse(_token())
        assert isinstance(identity, FederatedIdentity)
        assert not isinstance(identity, TokenClaims), "Federated output must never be TokenClaims"
        assert identity.trust == "unverified"
        assert identity.id == "fb-uid-1"
        assert identity.email == "carol@example.com"
        assert identity.issuer == ISSUER
        assert identity.role == "user"

    def test_user_id_claim_used_when_sub_missing(self) -> None:
        identity = _parser().parse(_token(sub=None, user_id="legacy-uid"))
        assert identity is not None and identity.id == "legacy-uid"

    def test_expired_token_rejected(self) -> None:
        assert _parser().parse(_token(exp=NOW - 1)) is None
        assert _parser().parse(_token(exp=NOW)) is None, "exp == now counts as expired"

    def test_wrong_issuer_rejected(self) -> None:
        assert _parser().parse(_token(iss="https://evil.example.com")) is None

    def test_wrong_audience_rejected(self) -> None:
        assert _parser().parse(_token(aud="someone-else")) is None

    def test_audience_list_accepted(self) -> None:
        assert _parser().parse(_token(aud=["other", AUDIENCE])) is not None

    def test_audience_ignored_when_not_configured(self) -> None:
        assert _parser(expected_audience="").parse(_token(aud="anything")) is not None

    def test_missing_email_rejected(self) -> None:
        assert _parser().parse(_token(email=None)) is None

    def test_non_string_identity_claims_rejected(self) -> None:
        parser = _parser()
        assert parser.parse(_token(name=123)) is None
        assert parser.parse(_token(email=["carol@example.com"])) is None
        assert parser.parse(_token(sub=42)) is None
        assert parser.parse(_token(name={"first": "Carol"})) is None

    def test_garbage_rejected(self) -> None:
        parser = _parser()
        assert parser.parse(None) is None
        assert parser.parse("") is None
        assert parser.parse("definitely-not-a-jwt") is None

    def test_empty_issuer_disables_parser(self) -> None:
        parser = FederatedTokenParser("", clock=FakeClock(start=NOW))
        assert parser.enabled is False
        assert parser.parse(_token(iss="")) is None


class TestRoleResolution:
    def test_explicit_known_role_wins(self) -> None:
        identity = _parser().parse(_token(role="admin"))
        assert identity.role == "admin"

    def test_unknown_role_claim_falls_through(self) -> None:
        identity = _parser().parse(_token(role="superuser"))
        assert identity.role == "user"

    def test_role_map_applies_case_insensitively(self) -> None:
        parser = _parser(role_map={"CAROL@example.com": "admin"})
        assert parser.parse(_token()).role == "admin"

    def test_role_map_ignores_unknown_roles(self) -> None:
        parser = _parser(role_map={"carol@example.com": "root"})
        assert parser.parse(_token()).role == "user"

    def test_default_role(self) -> None:
        assert _parser().resolve_role({"email": "nobody@example.com"}) == "user"
