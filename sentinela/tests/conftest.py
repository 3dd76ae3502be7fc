# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Pytest configuration and fixtures.

Route tests run against the real application factory with MongoDB, Redis
and the audit service replaced by mocks. Access tokens are real RS256
tokens signed with a per-session development key pair.
"""

import os
import pytest
from typing import Dict
from unittest.mock import MagicMock
from bson import ObjectId

os.environ['ENVIRONMENT'] = 'testing'
os.environ['OTEL_ENABLED'] = 'false'
os.environ['EVENTS_ENABLED'] = 'false'

from sentinela.app import create_app
from sentinela.models.entities import User
from sentinela.services.auth import generate_dev_key_pair
from sentinela.services.mongodb import PaginationResult
from sentinela.tests.factories import ORG_ID, ADMIN_ID, OPERATOR_ID, AGENT_ID


@pytest.fixture(scope="session")
def jwt_keys():
    """One RSA key pair for the whole test session."""
    return generate_dev_key_pair()


@pytest.fixture
def app(jwt_keys):
    """Application with mocked persistence."""
    private_key, public_key = jwt_keys
    application = create_app({
        'ENVIRONMENT': 'testing',
        'BASE_URL': 'http://localhost:5000',
        'OTEL_ENABLED': False,
        'EVENTS_ENABLED': False,
        'JWT_PRIVATE_KEY': private_key,
        'JWT_PUBLIC_KEY': public_key,
        'CORS_ORIGINS': 'http://localhost:5173',
        'REDIS_URL': None
    })
    application.config['TESTING'] = True

    mongo = MagicMock()
    mongo.create.side_effect = lambda collection, document, user_id: str(document.get("_id", ObjectId()))
    mongo.create_many.return_value = []
    mongo.find_by_org.return_value = []
    mongo.find_by_ids.return_value = []
    mongo.find_one_by_org.return_value = None
    mongo.find_one_by_filters.return_value = None
    mongo.find_user_by_email.return_value = None
    mongo.update_by_org.return_value = True
    mongo.soft_delete_by_org.return_value = True
    mongo.count_by_org.return_value = 0
    mongo.aggregate_by_org.return_value = []
    mongo.paginate_by_org.return_value = PaginationResult([], 0, 1, 20)

    redis = MagicMock()
    redis.is_token_blocked.return_value = False
    redis.block_token.return_value = True
    redis.get_cached_dashboard_stats.return_value = None

    audit = MagicMock()
    audit.log_action.return_value = str(ObjectId())

    application.mongodb_service = mongo
    application.redis_service = redis
    application.audit_service = audit
    application.auth_middleware.redis_service = redis

    return application


@pytest.fixture
def client(app):
    """Create test client."""
    with app.test_client() as test_client:
        yield test_client


@pytest.fixture
def mongo(app):
    return app.mongodb_service


@pytest.fixture
def make_user():
    """Factory for users of the test organization."""
    def factory(role: str = "admin", user_id: str = ADMIN_ID, **overrides) -> User:
        values = dict(
            id=user_id,
            organization_id=ORG_ID,
            email=f"{role}@sentinela.test",
            name=f"Test {role.title()}",
            password_hash="not-a-real-hash",
            role=role,
            created_by=ADMIN_ID,
            updated_by=ADMIN_ID
        )
        values.update(overrides)
        return User(**values)
    return factory


@pytest.fixture
def headers_for(app, make_user):
    """Bearer headers carrying a real access token for the given role."""
    def factory(role: str = "admin", user_id: str = None) -> Dict[str, str]:
        user_id = user_id or {"admin": ADMIN_ID, "operador": OPERATOR_ID, "tatico": AGENT_ID}[role]
        tokens = app.auth_service.generate_tokens(make_user(role, user_id))
        return {
            'Authorization': f"Bearer {tokens['access_token']}",
            'Content-Type': 'application/json'
        }
    return factory


@pytest.fixture
def admin_headers(headers_for):
    return headers_for("admin")


@pytest.fixture
def operator_headers(headers_for):
    return headers_for("operador")


@pytest.fixture
def agent_headers(headers_for):
    return headers_for("tatico")

