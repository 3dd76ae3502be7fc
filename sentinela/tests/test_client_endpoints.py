# SPDX-License-Identifier: Apache-2.0

"""
Endpoint tests for clients and checkpoints.
"""

import json

from sentinela.services.mongodb import PaginationResult, DuplicateDocumentError
from sentinela.tests.factories import ORG_ID, document, new_id


def client_doc(**fields):
    values = dict(name="Condominio Azul", address="Rua das Flores, 100", lat=-23.55, lng=-46.63, active=True)
    values.update(fields)
    return document(**values)


def checkpoint_doc(client_id, **fields):
    values = dict(
        clientId=client_id, name="Main gate", qrCode="QR-AZUL-1", manualCode="AZUL01",
        lat=-23.55, lng=-46.63, geofenceRadius=50, orderIndex=0, active=True
    )
    values.update(fields)
    return document(**values)


class TestClientEndpoints:
    """Client CRUD."""

    def test_list_clients(self, client, mongo, operator_headers):
        docs = [client_doc(), client_doc(name="Shopping Norte")]
        mongo.paginate_by_org.return_value = PaginationResult(docs, 2, 1, 20)

        response = client.get('/api/clients?active=true&q=azul', headers=operator_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data['total'] == 2
        assert [item['name'] for item in data['_embedded']['items']] == ["Condominio Azul", "Shopping Norte"]
        assert 'edit' in data['_embedded']['items'][0]['_links']
        assert 'delete' not in data['_embedded']['items'][0]['_links']

        filters = mongo.paginate_by_org.call_args.kwargs['filters']
        assert filters['active'] is True
        assert filters['name'] == {"$regex": "azul", "$options": "i"}

    def test_list_requires_token(self, client):
        response = client.get('/api/clients')
        assert response.status_code == 401

    def test_invalid_active_filter(self, client, operator_headers):
        response = client.get('/api/clients?active=maybe', headers=operator_headers)
        assert response.status_code == 400
        assert response.get_json()['errors'][0]['field'] == 'active'

    def test_create_client_with_maps_url(self, client, mongo, operator_headers, app):
        payload = {
            "name": "Shopping Norte",
            "address": "Av. Norte, 500",
            "maps_url": "https://www.google.com/maps/place/Shopping+Norte/@-23.4812,-46.6101,17z"
        }

        response = client.post('/api/clients', data=json.dumps(payload), headers=operator_headers)

        assert response.status_code == 201
        data = response.get_json()
        assert data['lat'] == -23.4812
        assert data['lng'] == -46.6101
        assert data['organization_id'] == ORG_ID

        collection, stored, _ = mongo.create.call_args.args
        assert collection == "clients"
        assert stored['contactName'] is None
        app.audit_service.log_action.assert_called_once()
        assert app.audit_service.log_action.call_args.kwargs['action'] == "create"

    def test_create_client_with_unparseable_maps_url(self, client, operator_headers):
        payload = {"name": "X", "address": "Y", "maps_url": "https://example.com/nothing"}

        response = client.post('/api/clients', data=json.dumps(payload), headers=operator_headers)

        assert response.status_code == 400
        assert response.get_json()['errors'][0]['field'] == 'maps_url'

    def test_create_client_validation(self, client, operator_headers):
        response = client.post('/api/clients', data=json.dumps({"name": ""}), headers=operator_headers)
        assert response.status_code == 400
        fields = {error['field'] for error in response.get_json()['errors']}
        assert {'name', 'address'} <= fields

    def test_agent_cannot_create_client(self, client, agent_headers):
        response = client.post('/api/clients', data=json.dumps({"name": "X", "address": "Y"}), headers=agent_headers)
        assert response.status_code == 403

    def test_parse_maps_url(self, client, agent_headers):
        response = client.post(
            '/api/clients/parse-maps-url',
            data=json.dumps({"url": "https://www.google.com/maps/@-22.9068,-43.1729,15z"}),
            headers=agent_headers
        )
        assert response.status_code == 200
        assert response.get_json() == {"name": "", "address": "", "lat": -22.9068, "lng": -43.1729}

    def test_get_missing_client(self, client, operator_headers):
        response = client.get(f'/api/clients/{new_id()}', headers=operator_headers)
        assert response.status_code == 404

    def test_deactivate_client_is_audited(self, client, mongo, operator_headers, app):
        existing = client_doc()
        mongo.find_one_by_org.return_value = existing

        response = client.put(
            f"/api/clients/{existing['id']}", data=json.dumps({"active": False}), headers=operator_headers
        )

        assert response.status_code == 200
        assert response.get_json()['active'] is False
        assert mongo.update_by_org.call_args.args[3] == {"active": False}
        assert app.audit_service.log_action.call_args.kwargs['action'] == "deactivate"

    def test_delete_blocked_by_active_round(self, client, mongo, admin_headers):
        existing = client_doc()
        mongo.find_one_by_org.return_value = existing
        mongo.count_by_org.return_value = 1

        response = client.delete(f"/api/clients/{existing['id']}", headers=admin_headers)

        assert response.status_code == 422
        assert response.get_json()['code'] == "CLIENT_HAS_ACTIVE_ROUNDS"
        mongo.soft_delete_by_org.assert_not_called()

    def test_delete_client(self, client, mongo, admin_headers):
        existing = client_doc()
        mongo.find_one_by_org.return_value = existing

        response = client.delete(f"/api/clients/{existing['id']}", headers=admin_headers)

        assert response.status_code == 204
        mongo.soft_delete_by_org.assert_called_once()


class TestCheckpointEndpoints:
    """Checkpoints under a client and direct checkpoint access."""

    def test_list_client_checkpoints(self, client, mongo, agent_headers):
        owner = client_doc()
        mongo.find_one_by_org.return_value = owner
        mongo.find_by_org.return_value = [
            checkpoint_doc(owner['id']), checkpoint_doc(owner['id'], name="Garage", qrCode="QR-2", orderIndex=1)
        ]

        response = client.get(f"/api/clients/{owner['id']}/checkpoints", headers=agent_headers)

        assert response.status_code == 200
        items = response.get_json()['_embedded']['items']
        assert [item['name'] for item in items] == ["Main gate", "Garage"]
        assert mongo.find_by_org.call_args.args[2] == {"clientId": owner['id'], "active": True}

    def test_create_checkpoint(self, client, mongo, operator_headers):
        owner = client_doc()
        mongo.find_one_by_org.return_value = owner
        payload = {"name": "Garage", "qr_code": "QR-NEW", "manual_code": "GAR01", "order_index": 2}

        response = client.post(
            f"/api/clients/{owner['id']}/checkpoints", data=json.dumps(payload), headers=operator_headers
        )

        assert response.status_code == 201
        data = response.get_json()
        assert data['client_id'] == owner['id']
        assert data['geofence_radius'] == 50
        assert data['_links']['client']['href'].endswith(f"/api/clients/{owner['id']}")

    def test_duplicate_qr_code(self, client, mongo, operator_headers):
        owner = client_doc()
        mongo.find_one_by_org.return_value = owner
        mongo.find_one_by_filters.return_value = checkpoint_doc(owner['id'])

        response = client.post(
            f"/api/clients/{owner['id']}/checkpoints",
            data=json.dumps({"name": "Copy", "qr_code": "QR-AZUL-1"}),
            headers=operator_headers
        )

        assert response.status_code == 409

    def test_duplicate_key_from_database(self, client, mongo, operator_headers):
        owner = client_doc()
        mongo.find_one_by_org.return_value = owner
        mongo.create.side_effect = DuplicateDocumentError("duplicate")

        response = client.post(
            f"/api/clients/{owner['id']}/checkpoints",
            data=json.dumps({"name": "Copy", "qr_code": "QR-RACE"}),
            headers=operator_headers
        )

        assert response.status_code == 409

    def test_lookup_by_manual_code(self, client, mongo, agent_headers):
        owner = client_doc()
        mongo.find_by_org.return_value = [checkpoint_doc(owner['id'])]
        mongo.find_one_by_org.return_value = owner

        response = client.get('/api/checkpoints/lookup?code=azul01', headers=agent_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data['qr_code'] == "QR-AZUL-1"
        assert data['client_name'] == "Condominio Azul"

    def test_lookup_without_match(self, client, agent_headers):
        response = client.get('/api/checkpoints/lookup?code=UNKNOWN', headers=agent_headers)
        assert response.status_code == 404

    def test_lookup_requires_code(self, client, agent_headers):
        response = client.get('/api/checkpoints/lookup', headers=agent_headers)
        assert response.status_code == 400

    def test_update_checkpoint(self, client, mongo, operator_headers):
        existing = checkpoint_doc(new_id())
        mongo.find_one_by_org.return_value = existing

        response = client.put(
            f"/api/checkpoints/{existing['id']}",
            data=json.dumps({"geofence_radius": 80}),
            headers=operator_headers
        )

        assert response.status_code == 200
        assert response.get_json()['geofence_radius'] == 80
        assert mongo.update_by_org.call_args.args[3] == {"geofenceRadius": 80}

    def test_operator_cannot_delete_checkpoint(self, client, mongo, operator_headers):
        response = client.delete(f"/api/checkpoints/{new_id()}", headers=operator_headers)
        assert response.status_code == 403
