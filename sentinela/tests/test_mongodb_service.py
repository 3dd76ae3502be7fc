# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for the MongoDB service layer.

Collections are MagicMocks so the tests check the queries the service
sends: organization scoping, soft-delete exclusion and audit stamps.
"""

import pytest
from collections import defaultdict
from datetime import datetime
from unittest.mock import MagicMock
from bson import ObjectId
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from sentinela.services.mongodb import (
    MongoDBService, PaginationResult, DuplicateDocumentError,
    CLIENTS, ROUNDS, USERS, CHECKPOINTS, VEHICLES
)
from sentinela.tests.factories import ORG_ID, ADMIN_ID


@pytest.fixture
def collections():
    return defaultdict(MagicMock)


@pytest.fixture
def mongodb_service(collections):
    """Service whose database hands out mocked collections."""
    service = MongoDBService("mongodb://localhost:27017/sentinela_test", "sentinela_test")
    database = MagicMock()
    database.__getitem__.side_effect = lambda name: collections[name]
    service._database = database
    return service


class TestQueries:

    def test_find_by_org_scopes_and_sorts(self, mongodb_service, collections):
        object_id = ObjectId()
        cursor = collections[ROUNDS].find.return_value
        cursor.sort.return_value = [{"_id": object_id, "status": "active"}]

        documents = mongodb_service.find_by_org(
            ROUNDS, ORG_ID, {"status": "active"}, sort_by="startTime", sort_order=DESCENDING
        )

        collections[ROUNDS].find.assert_called_once_with(
            {"organizationId": ORG_ID, "deletedAt": None, "status": "active"}
        )
        cursor.sort.assert_called_once_with("startTime", DESCENDING)
        assert documents == [{"id": str(object_id), "status": "active"}]

    def test_include_deleted(self, mongodb_service, collections):
        collections[CLIENTS].find.return_value = []

        mongodb_service.find_by_org(CLIENTS, ORG_ID, include_deleted=True)

        assert collections[CLIENTS].find.call_args.args[0] == {"organizationId": ORG_ID}

    def test_find_one_with_invalid_id(self, mongodb_service, collections):
        assert mongodb_service.find_one_by_org(CLIENTS, ORG_ID, "not-an-id") is None
        collections[CLIENTS].find_one.assert_not_called()

    def test_find_one(self, mongodb_service, collections):
        object_id = ObjectId()
        collections[CLIENTS].find_one.return_value = {"_id": object_id, "name": "Condominio Azul"}

        document = mongodb_service.find_one_by_org(CLIENTS, ORG_ID, str(object_id))

        assert document['id'] == str(object_id)
        assert collections[CLIENTS].find_one.call_args.args[0]['_id'] == object_id

    def test_find_by_ids_skips_invalid(self, mongodb_service, collections):
        valid = ObjectId()
        collections[CLIENTS].find.return_value = []

        mongodb_service.find_by_ids(CLIENTS, ORG_ID, [str(valid), "bogus"])

        query = collections[CLIENTS].find.call_args.args[0]
        assert query['_id'] == {"$in": [valid]}

    def test_find_by_ids_without_valid_ids(self, mongodb_service, collections):
        assert mongodb_service.find_by_ids(CLIENTS, ORG_ID, ["bogus"]) == []
        collections[CLIENTS].find.assert_not_called()

    def test_find_user_by_email_is_case_insensitive(self, mongodb_service, collections):
        collections[USERS].find_one.return_value = None

        mongodb_service.find_user_by_email("Admin@Sentinela.test")

        collections[USERS].find_one.assert_called_once_with({"email": "admin@sentinela.test", "deletedAt": None})

    def test_paginate(self, mongodb_service, collections):
        rounds = collections[ROUNDS]
        rounds.count_documents.return_value = 45
        rounds.find.return_value.sort.return_value.skip.return_value.limit.return_value = [{"_id": ObjectId()}]

        result = mongodb_service.paginate_by_org(ROUNDS, ORG_ID, page=2, page_size=20)

        assert isinstance(result, PaginationResult)
        assert result.total_pages == 3
        assert result.has_next and result.has_prev
        rounds.find.return_value.sort.assert_called_once_with("createdAt", DESCENDING)
        rounds.find.return_value.sort.return_value.skip.assert_called_once_with(20)

    def test_aggregate_prefixes_org_match(self, mongodb_service, collections):
        collections[ROUNDS].aggregate.return_value = iter([{"_id": "active", "count": 2}])

        results = mongodb_service.aggregate_by_org(ROUNDS, ORG_ID, [{"$group": {"_id": "$status"}}])

        pipeline = collections[ROUNDS].aggregate.call_args.args[0]
        assert pipeline[0] == {"$match": {"organizationId": ORG_ID, "deletedAt": None}}
        assert results == [{"_id": "active", "count": 2}]


class TestWrites:

    def test_create_stamps_document(self, mongodb_service, collections):
        collections[CLIENTS].insert_one.side_effect = lambda doc: MagicMock(inserted_id=doc["_id"])

        doc_id = mongodb_service.create(CLIENTS, {"organizationId": ORG_ID, "name": "Azul"}, ADMIN_ID)

        stored = collections[CLIENTS].insert_one.call_args.args[0]
        assert ObjectId.is_valid(doc_id)
        assert stored['createdBy'] == ADMIN_ID
        assert stored['updatedBy'] == ADMIN_ID
        assert isinstance(stored['createdAt'], datetime)
        assert stored['deletedAt'] is None

    def test_duplicate_key(self, mongodb_service, collections):
        collections[CHECKPOINTS].insert_one.side_effect = DuplicateKeyError("E11000 duplicate key")

        with pytest.raises(DuplicateDocumentError):
            mongodb_service.create(CHECKPOINTS, {"qrCode": "QR-1"}, ADMIN_ID)

    def test_create_many_empty(self, mongodb_service, collections):
        assert mongodb_service.create_many(ROUNDS, [], ADMIN_ID) == []

    def test_update_uses_set(self, mongodb_service, collections):
        object_id = ObjectId()
        collections[ROUNDS].update_one.return_value = MagicMock(modified_count=1)

        assert mongodb_service.update_by_org(ROUNDS, ORG_ID, str(object_id), {"status": "active"}, ADMIN_ID)

        query, update = collections[ROUNDS].update_one.call_args.args
        assert query == {"organizationId": ORG_ID, "deletedAt": None, "_id": object_id}
        assert update['$set']['status'] == "active"
        assert update['$set']['updatedBy'] == ADMIN_ID
        assert 'createdBy' not in update['$set']

    def test_update_nothing_modified(self, mongodb_service, collections):
        collections[ROUNDS].update_one.return_value = MagicMock(modified_count=0)

        assert mongodb_service.update_by_org(ROUNDS, ORG_ID, str(ObjectId()), {"status": "x"}, ADMIN_ID) is False

    def test_soft_delete(self, mongodb_service, collections):
        collections[CLIENTS].update_one.return_value = MagicMock(modified_count=1)

        assert mongodb_service.soft_delete_by_org(CLIENTS, ORG_ID, str(ObjectId()), ADMIN_ID) is True
        assert isinstance(collections[CLIENTS].update_one.call_args.args[1]['$set']['deletedAt'], datetime)

    def test_soft_delete_invalid_id(self, mongodb_service):
        assert mongodb_service.soft_delete_by_org(CLIENTS, ORG_ID, "bogus", ADMIN_ID) is False


class TestIndexes:

    def test_unique_indexes(self, mongodb_service, collections):
        mongodb_service.create_indexes()

        collections[USERS].create_index.assert_any_call("email", unique=True)
        unique_checkpoint = [
            call for call in collections[CHECKPOINTS].create_index.call_args_list
            if call.kwargs.get('unique')
        ]
        assert unique_checkpoint[0].args[0] == [("organizationId", ASCENDING), ("qrCode", ASCENDING)]
        assert unique_checkpoint[0].kwargs["partialFilterExpression"] == {
            "qrCode": {"$type": "string"}, "deletedAt": {"$type": "null"}
        }

    def test_deleted_vehicles_release_their_plate(self, mongodb_service, collections):
        mongodb_service.create_indexes()

        collections[VEHICLES].create_index.assert_any_call(
            [("organizationId", ASCENDING), ("licensePlate", ASCENDING)],
            unique=True, partialFilterExpression={"deletedAt": {"$type": "null"}}
        )


class TestPaginationResult:

    def test_single_page(self):
        result = PaginationResult([], 0, 1, 20)

        assert result.total_pages == 0
        assert result.has_next is False
        assert result.has_prev is False
