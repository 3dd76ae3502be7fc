# SPDX-License-Identifier: Apache-2.0

"""
Endpoint tests for authentication and user management.
"""

import json

import pytest

from sentinela.services.mongodb import USERS
from sentinela.tests.factories import ORG_ID, ADMIN_ID, OPERATOR_ID, AGENT_ID, document

PASSWORD = "Ronda2024"


def user_doc(role="tatico", user_id=AGENT_ID, **fields):
    values = dict(
        id=user_id, email=f"{role}@sentinela.test", name=f"Test {role.title()}",
        passwordHash="not-a-real-hash", role=role, phone=None, active=True, lastLogin=None, permissions=[]
    )
    values.update(fields)
    return document(**values)


@pytest.fixture
def stored_agent(app, mongo):
    """Agent whose stored hash matches PASSWORD."""
    existing = user_doc(passwordHash=app.auth_service.hash_password(PASSWORD))
    mongo.find_user_by_email.return_value = existing
    return existing


class TestLogin:

    def test_login_issues_tokens(self, client, mongo, app, stored_agent):
        response = client.post(
            '/api/auth/login',
            data=json.dumps({"email": " Tatico@Sentinela.test ", "password": PASSWORD}),
            content_type='application/json'
        )

        assert response.status_code == 200
        data = response.get_json()
        assert data['token_type'] == "Bearer"
        assert data['user']['id'] == AGENT_ID
        assert 'password_hash' not in data['user']

        payload = app.auth_service.validate_token(data['access_token'])
        assert payload['org_id'] == ORG_ID
        assert 'round:execute' in payload['permissions']

        mongo.find_user_by_email.assert_called_once_with("tatico@sentinela.test")
        assert mongo.update_by_org.call_args.args[0] == USERS
        assert 'lastLogin' in mongo.update_by_org.call_args.args[3]
        assert app.audit_service.log_action.call_args.kwargs['action'] == "login"

    def test_wrong_password(self, client, stored_agent):
        response = client.post(
            '/api/auth/login',
            data=json.dumps({"email": "tatico@sentinela.test", "password": "wrong"}),
            content_type='application/json'
        )
        assert response.status_code == 401
        assert response.get_json()['detail'] == "Invalid email or password"

    def test_unknown_email(self, client):
        response = client.post(
            '/api/auth/login',
            data=json.dumps({"email": "nobody@sentinela.test", "password": PASSWORD}),
            content_type='application/json'
        )
        assert response.status_code == 401

    def test_inactive_account(self, client, mongo, stored_agent):
        stored_agent['active'] = False

        response = client.post(
            '/api/auth/login',
            data=json.dumps({"email": "tatico@sentinela.test", "password": PASSWORD}),
            content_type='application/json'
        )

        assert response.status_code == 401
        assert response.get_json()['detail'] == "User account is inactive"
        mongo.update_by_org.assert_not_called()

    def test_missing_password(self, client):
        response = client.post(
            '/api/auth/login', data=json.dumps({"email": "a@b.co"}), content_type='application/json'
        )
        assert response.status_code == 400


class TestTokens:

    def test_me(self, client, agent_headers):
        response = client.get('/api/auth/me', headers=agent_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data['user_id'] == AGENT_ID
        assert data['role'] == "tatico"
        assert 'round:manage' not in data['permissions']

    def test_me_requires_token(self, client):
        assert client.get('/api/auth/me').status_code == 401

    def test_logout_blocks_tokens(self, client, app, make_user):
        tokens = app.auth_service.generate_tokens(make_user("tatico", AGENT_ID))
        headers = {'Authorization': f"Bearer {tokens['access_token']}", 'Content-Type': 'application/json'}

        response = client.post(
            '/api/auth/logout', data=json.dumps({"refresh_token": tokens['refresh_token']}), headers=headers
        )

        assert response.status_code == 200
        assert response.get_json()['token_revoked'] is True
        blocked = [call.args[0] for call in app.redis_service.block_token.call_args_list]
        assert blocked == [
            app.auth_service.extract_token_id(tokens['access_token']),
            app.auth_service.extract_token_id(tokens['refresh_token'])
        ]

    def test_revoked_token_is_rejected(self, client, app, agent_headers):
        app.redis_service.is_token_blocked.return_value = True
        response = client.get('/api/auth/me', headers=agent_headers)
        assert response.status_code == 401

    def test_refresh(self, client, mongo, app, make_user):
        tokens = app.auth_service.generate_tokens(make_user("tatico", AGENT_ID))
        mongo.find_one_by_org.return_value = user_doc(role="operador")

        response = client.post(
            '/api/auth/refresh',
            data=json.dumps({"refresh_token": tokens['refresh_token']}),
            content_type='application/json'
        )

        assert response.status_code == 200
        payload = app.auth_service.validate_token(response.get_json()['access_token'])
        assert payload['role'] == "operador"
        assert mongo.find_one_by_org.call_args.args == (USERS, ORG_ID, AGENT_ID)

    def test_refresh_rejects_access_token(self, client, app, make_user):
        tokens = app.auth_service.generate_tokens(make_user("tatico", AGENT_ID))

        response = client.post(
            '/api/auth/refresh',
            data=json.dumps({"refresh_token": tokens['access_token']}),
            content_type='application/json'
        )

        assert response.status_code == 401

    def test_refresh_for_deactivated_user(self, client, mongo, app, make_user):
        tokens = app.auth_service.generate_tokens(make_user("tatico", AGENT_ID))
        mongo.find_one_by_org.return_value = user_doc(active=False)

        response = client.post(
            '/api/auth/refresh',
            data=json.dumps({"refresh_token": tokens['refresh_token']}),
            content_type='application/json'
        )

        assert response.status_code == 401


class TestUserEndpoints:

    def test_list_users_by_role(self, client, mongo, operator_headers):
        response = client.get('/api/users?role=tatico&active=true', headers=operator_headers)

        assert response.status_code == 200
        assert mongo.paginate_by_org.call_args.kwargs['filters'] == {"role": "tatico", "active": True}

    def test_create_agent(self, client, mongo, app, admin_headers):
        payload = {"email": "novo@sentinela.test", "name": "Novo Tatico", "password": PASSWORD}

        response = client.post('/api/users', data=json.dumps(payload), headers=admin_headers)

        assert response.status_code == 201
        data = response.get_json()
        assert data['role'] == "tatico"
        assert 'password_hash' not in data

        stored = mongo.create.call_args.args[1]
        assert stored['organizationId'] == ORG_ID
        assert app.auth_service.verify_password(PASSWORD, stored['passwordHash'])
        assert 'round:execute' in stored['permissions']

    def test_weak_password(self, client, admin_headers):
        payload = {"email": "novo@sentinela.test", "name": "Novo", "password": "short"}
        response = client.post('/api/users', data=json.dumps(payload), headers=admin_headers)
        assert response.status_code == 400
        assert response.get_json()['errors'][0]['field'] == 'password'

    def test_operator_cannot_create_users(self, client, operator_headers):
        payload = {"email": "chefe@sentinela.test", "name": "Chefe", "password": PASSWORD, "role": "admin"}
        response = client.post('/api/users', data=json.dumps(payload), headers=operator_headers)
        assert response.status_code == 403

    def test_duplicate_email(self, client, mongo, admin_headers):
        mongo.find_user_by_email.return_value = user_doc()
        payload = {"email": "tatico@sentinela.test", "name": "Outro", "password": PASSWORD}

        response = client.post('/api/users', data=json.dumps(payload), headers=admin_headers)

        assert response.status_code == 409

    def test_agent_reads_own_account_only(self, client, mongo, agent_headers):
        mongo.find_one_by_org.return_value = user_doc()

        assert client.get(f"/api/users/{AGENT_ID}", headers=agent_headers).status_code == 200
        assert client.get(f"/api/users/{OPERATOR_ID}", headers=agent_headers).status_code == 403

    def test_role_change_updates_permissions(self, client, mongo, admin_headers):
        mongo.find_one_by_org.return_value = user_doc()

        response = client.put(
            f"/api/users/{AGENT_ID}", data=json.dumps({"role": "operador"}), headers=admin_headers
        )

        assert response.status_code == 200
        updates = mongo.update_by_org.call_args.args[3]
        assert updates['role'] == "operador"
        assert 'round:manage' in updates['permissions']

    def test_deactivate_user(self, client, mongo, app, admin_headers):
        mongo.find_one_by_org.return_value = user_doc()

        response = client.delete(f"/api/users/{AGENT_ID}", headers=admin_headers)

        assert response.status_code == 204
        assert mongo.update_by_org.call_args.args[3] == {"active": False}
        assert app.audit_service.log_action.call_args.kwargs['action'] == "deactivate"

    def test_admin_cannot_deactivate_self(self, client, mongo, admin_headers):
        mongo.find_one_by_org.return_value = user_doc(role="admin", user_id=ADMIN_ID)

        response = client.delete(f"/api/users/{ADMIN_ID}", headers=admin_headers)

        assert response.status_code == 403
        assert response.get_json()['detail'] == "Users cannot deactivate their own account"

    def test_deactivate_inactive_user(self, client, mongo, admin_headers):
        mongo.find_one_by_org.return_value = user_doc(active=False)

        response = client.delete(f"/api/users/{AGENT_ID}", headers=admin_headers)

        assert response.status_code == 422
        assert response.get_json()['code'] == "USER_INACTIVE"

    def test_operator_cannot_delete_users(self, client, operator_headers):
        assert client.delete(f"/api/users/{AGENT_ID}", headers=operator_headers).status_code == 403

    def test_reset_password(self, client, mongo, app, admin_headers):
        mongo.find_one_by_org.return_value = user_doc()

        response = client.post(
            f"/api/users/{AGENT_ID}/reset-password",
            data=json.dumps({"new_password": "NovaSenha1"}),
            headers=admin_headers
        )

        assert response.status_code == 200
        stored_hash = mongo.update_by_org.call_args.args[3]['passwordHash']
        assert app.auth_service.verify_password("NovaSenha1", stored_hash)
