# SPDX-License-Identifier: Apache-2.0

"""
Tests for JWT issuance, validation and password hashing.
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from sentinela.services.auth import AuthService, AuthenticationError, TokenValidationError
from sentinela.tests.factories import ORG_ID, AGENT_ID


@pytest.fixture
def auth_service(jwt_keys):
    private_key, public_key = jwt_keys
    return AuthService(private_key, public_key)


@pytest.fixture
def agent(make_user):
    return make_user("tatico", AGENT_ID)


class TestPasswords:

    def test_hash_and_verify(self, auth_service):
        hashed = auth_service.hash_password("Ronda2024")

        assert hashed != "Ronda2024"
        assert hashed.startswith("$2b$12$")
        assert auth_service.verify_password("Ronda2024", hashed)
        assert not auth_service.verify_password("ronda2024", hashed)

    def test_malformed_hash(self, auth_service):
        assert auth_service.verify_password("Ronda2024", "not-a-bcrypt-hash") is False


class TestTokens:

    def test_access_token_claims(self, auth_service, agent):
        tokens = auth_service.generate_tokens(agent)

        payload = auth_service.validate_token(tokens['access_token'])

        assert payload['sub'] == AGENT_ID
        assert payload['org_id'] == ORG_ID
        assert payload['role'] == "tatico"
        assert payload['type'] == "access"
        assert "round:execute" in payload['permissions']
        assert tokens['expires_in'] == 900
        assert jwt.get_unverified_header(tokens['access_token'])['alg'] == "RS256"

    def test_token_ids_are_unique(self, auth_service, agent):
        first = auth_service.generate_tokens(agent)
        second = auth_service.generate_tokens(agent)

        assert auth_service.extract_token_id(first['access_token']) != \
            auth_service.extract_token_id(second['access_token'])

    def test_wrong_type(self, auth_service, agent):
        tokens = auth_service.generate_tokens(agent)

        with pytest.raises(TokenValidationError):
            auth_service.validate_token(tokens['refresh_token'], "access")

    def test_expired_token(self, auth_service, agent):
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        token = jwt.encode(
            {"sub": AGENT_ID, "org_id": ORG_ID, "type": "access", "iat": past, "exp": past + timedelta(minutes=15)},
            auth_service.private_key, algorithm="RS256"
        )

        with pytest.raises(TokenValidationError) as exc_info:
            auth_service.validate_token(token)

        assert str(exc_info.value) == "Token has expired"

    def test_token_signed_by_another_key(self, auth_service, agent):
        other = AuthService()

        with pytest.raises(TokenValidationError):
            auth_service.validate_token(other.generate_tokens(agent)['access_token'])

    def test_inactive_user_has_no_permissions(self, auth_service, make_user):
        tokens = auth_service.generate_tokens(make_user("admin", active=False))

        assert auth_service.validate_token(tokens['access_token'])['permissions'] == []


class TestRefresh:

    def test_refresh_issues_access_token(self, auth_service, agent):
        tokens = auth_service.generate_tokens(agent)

        result = auth_service.refresh_access_token(tokens['refresh_token'], agent)

        assert auth_service.validate_token(result['access_token'])['sub'] == AGENT_ID

    def test_subject_mismatch(self, auth_service, agent, make_user):
        tokens = auth_service.generate_tokens(agent)

        with pytest.raises(TokenValidationError):
            auth_service.refresh_access_token(tokens['refresh_token'], make_user("admin"))

    def test_deactivated_user(self, auth_service, agent, make_user):
        tokens = auth_service.generate_tokens(agent)

        with pytest.raises(AuthenticationError):
            auth_service.refresh_access_token(tokens['refresh_token'], make_user("tatico", AGENT_ID, active=False))


class TestTokenLifetime:

    def test_remaining_ttl(self):
        exp = int(datetime.now(timezone.utc).timestamp()) + 600

        assert 595 <= AuthService.remaining_ttl_seconds({"exp": exp}) <= 600

    def test_expired_or_missing(self):
        assert AuthService.remaining_ttl_seconds({"exp": 0}) == 0
        assert AuthService.remaining_ttl_seconds({}) == 0

    def test_extract_token_id_from_garbage(self, auth_service):
        with pytest.raises(TokenValidationError):
            auth_service.extract_token_id("garbage")
