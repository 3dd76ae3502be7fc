# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
MongoDB service layer with organization-scoped operations and connection pooling.

Every document carries an ``organizationId`` and a ``deletedAt`` marker;
all reads exclude soft-deleted documents unless asked otherwise.
"""

import os
import logging
from datetime import datetime
from typing import List, Dict, Optional, Any, Iterable
from pymongo import MongoClient, ASCENDING, DESCENDING
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import (
    ConnectionFailure,
    ServerSelectionTimeoutError,
    DuplicateKeyError
)
from bson import ObjectId
from bson.errors import InvalidId

logger = logging.getLogger(__name__)


# Collection names
USERS = "users"
CLIENTS = "clients"
CHECKPOINTS = "checkpoints"
ROUND_TEMPLATES = "round_templates"
ROUNDS = "rounds"
ROUTE_POINTS = "route_points"
CHECKPOINT_VISITS = "checkpoint_visits"
INCIDENTS = "incidents"
VEHICLES = "vehicles"
FUEL_LOGS = "fuel_logs"
MAINTENANCE_LOGS = "maintenance_logs"
MAINTENANCE_SCHEDULES = "maintenance_schedules"
ODOMETER_RECORDS = "odometer_records"
FUEL_PRICES = "fuel_prices"
COST_CALCULATIONS = "cost_calculations"
AUDIT_LOGS = "audit_logs"

# Partial index filter for documents that are not soft-deleted
NOT_DELETED = {"deletedAt": {"$type": "null"}}


class DuplicateDocumentError(ValueError):
    """Raised when an insert violates a unique index."""


class PaginationResult:
    """Result container for paginated queries."""

    def __init__(self, items: List[Dict], total: int, page: int, page_size: int):
        self.items = items
        self.total = total
        self.page = page
        self.page_size = page_size
        self.total_pages = (total + page_size - 1) // page_size
        self.has_next = page < self.total_pages
        self.has_prev = page > 1


def _with_string_id(document: Dict) -> Dict:
    if "_id" in document:
        document["id"] = str(document.pop("_id"))
    return document


class MongoDBService:
    """MongoDB service with organization-scoped operations and connection pooling."""

    def __init__(self, connection_string: str = None, database_name: str = None):
        self.connection_string = connection_string or os.getenv(
            'MONGODB_URI',
            'mongodb://localhost:27017/sentinela_dev'
        )
        self.database_name = database_name or os.getenv('MONGODB_DATABASE', 'sentinela_dev')
        self._client: Optional[MongoClient] = None
        self._database: Optional[Database] = None

        # Connection pool settings
        self.max_pool_size = int(os.getenv('MONGODB_MAX_POOL_SIZE', '10'))
        self.min_pool_size = int(os.getenv('MONGODB_MIN_POOL_SIZE', '1'))
        self.max_idle_time_ms = int(os.getenv('MONGODB_MAX_IDLE_TIME_MS', '30000'))
        self.server_selection_timeout_ms = int(os.getenv('MONGODB_SERVER_SELECTION_TIMEOUT_MS', '5000'))

        logger.info("MongoDB service initialized", extra={"database": self.database_name})

    @property
    def client(self) -> MongoClient:
        """Lazily connected MongoDB client."""
        if self._client is None:
            try:
                self._client = MongoClient(
                    self.connection_string,
                    maxPoolSize=self.max_pool_size,
                    minPoolSize=self.min_pool_size,
                    maxIdleTimeMS=self.max_idle_time_ms,
                    serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                    retryWrites=True,
                    retryReads=True,
                    tz_aware=False
                )
                self._client.admin.command('ping')
                logger.info("MongoDB connection established")
            except (ConnectionFailure, ServerSelectionTimeoutError) as e:
                logger.error(f"Failed to connect to MongoDB: {e}")
                self._client = None
                raise

        return self._client

    @property
    def database(self) -> Database:
        if self._database is None:
            self._database = self.client[self.database_name]
        return self._database

    def get_collection(self, collection_name: str) -> Collection:
        return self.database[collection_name]

    def close_connection(self) -> None:
        """Close MongoDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._database = None
            logger.info("MongoDB connection closed")

    def health_check(self) -> Dict[str, Any]:
        """Ping the server and report its version."""
        try:
            result = self.client.admin.command('ping')
            server_info = self.client.server_info()

            return {
                'status': 'healthy',
                'ping': result.get('ok') == 1,
                'version': server_info.get('version'),
                'database': self.database_name,
                'connection_pool_size': self.max_pool_size
            }
        except Exception as e:
            logger.error(f"MongoDB health check failed: {e}")
            return {
                'status': 'unhealthy',
                'error': str(e),
                'database': self.database_name
            }

    def _validate_object_id(self, doc_id: str) -> ObjectId:
        try:
            return ObjectId(doc_id)
        except (InvalidId, TypeError):
            raise ValueError(f"Invalid ObjectId format: {doc_id}")

    def _build_org_query(self, org_id: str, filters: Dict = None, include_deleted: bool = False) -> Dict:
        """Organization-scoped query; soft-deleted documents are excluded by default."""
        query = {"organizationId": org_id}

        if not include_deleted:
            query["deletedAt"] = None

        if filters:
            query.update(filters)

        return query

    def _add_timestamps(self, document: Dict, user_id: str, is_update: bool = False) -> Dict:
        now = datetime.utcnow()

        if not is_update:
            document.setdefault("createdAt", now)
            document["createdBy"] = user_id
            document.setdefault("deletedAt", None)

        document["updatedAt"] = now
        document["updatedBy"] = user_id

        return document

    # Organization-scoped CRUD

    def create(self, collection: str, document: Dict, user_id: str) -> str:
        """
        Insert a document.

        Returns:
            The inserted id as a string

        Raises:
            DuplicateDocumentError: On a unique index violation
        """
        try:
            document = self._add_timestamps(document, user_id)
            if "_id" not in document:
                document["_id"] = ObjectId()

            result = self.get_collection(collection).insert_one(document)

            logger.info(f"Created document in {collection}", extra={"document_id": str(result.inserted_id)})
            return str(result.inserted_id)

        except DuplicateKeyError as e:
            logger.warning(f"Duplicate key in {collection}: {e}")
            raise DuplicateDocumentError("Document with this identifier already exists")

    def create_many(self, collection: str, documents: List[Dict], user_id: str) -> List[str]:
        """Insert several documents in one round trip (route points)."""
        if not documents:
            return []
        for document in documents:
            self._add_timestamps(document, user_id)
            document.setdefault("_id", ObjectId())

        result = self.get_collection(collection).insert_many(documents, ordered=False)
        logger.info(f"Created {len(result.inserted_ids)} documents in {collection}")
        return [str(inserted_id) for inserted_id in result.inserted_ids]

    def find_by_org(self, collection: str, org_id: str, filters: Dict = None,
                    include_deleted: bool = False, sort_by: str = None,
                    sort_order: int = ASCENDING, limit: int = 0) -> List[Dict]:
        """Find documents of an organization with optional filters and sorting."""
        query = self._build_org_query(org_id, filters, include_deleted)
        cursor = self.get_collection(collection).find(query)
        if sort_by:
            cursor = cursor.sort(sort_by, sort_order)
        if limit:
            cursor = cursor.limit(limit)

        documents = [_with_string_id(doc) for doc in cursor]
        logger.debug(f"Found {len(documents)} documents in {collection} for org {org_id}")
        return documents

    def find_by_ids(self, collection: str, org_id: str, doc_ids: Iterable[str]) -> List[Dict]:
        """Find documents by id; invalid ids are ignored."""
        object_ids = []
        for doc_id in set(doc_ids):
            try:
                object_ids.append(self._validate_object_id(doc_id))
            except ValueError:
                logger.debug(f"Ignoring invalid id {doc_id}")
        if not object_ids:
            return []
        return self.find_by_org(collection, org_id, {"_id": {"$in": object_ids}})

    def find_one_by_org(self, collection: str, org_id: str, doc_id: str,
                        include_deleted: bool = False) -> Optional[Dict]:
        """Find a single document by organization and id; None when absent or id invalid."""
        try:
            object_id = self._validate_object_id(doc_id)
        except ValueError as e:
            logger.debug(f"Invalid document id {doc_id}: {e}")
            return None

        query = self._build_org_query(org_id, {"_id": object_id}, include_deleted)
        document = self.get_collection(collection).find_one(query)

        if document:
            return _with_string_id(document)

        logger.debug(f"Document {doc_id} not found in {collection} for org {org_id}")
        return None

    def find_one_by_filters(self, collection: str, org_id: str, filters: Dict) -> Optional[Dict]:
        """First document of an organization matching the filters."""
        query = self._build_org_query(org_id, filters)
        document = self.get_collection(collection).find_one(query)
        return _with_string_id(document) if document else None

    def find_user_by_email(self, email: str) -> Optional[Dict]:
        """Look up a user account across organizations (login)."""
        document = self.get_collection(USERS).find_one({"email": email.lower(), "deletedAt": None})
        return _with_string_id(document) if document else None

    def update_by_org(self, collection: str, org_id: str, doc_id: str,
                      updates: Dict, user_id: str) -> bool:
        """Apply ``$set`` updates to a document; True when it was modified."""
        try:
            object_id = self._validate_object_id(doc_id)
        except ValueError as e:
            logger.warning(f"Invalid document id {doc_id}: {e}")
            return False

        query = self._build_org_query(org_id, {"_id": object_id})
        updates = self._add_timestamps(dict(updates), user_id, is_update=True)

        result = self.get_collection(collection).update_one(query, {"$set": updates})

        if result.modified_count > 0:
            logger.info(f"Updated document {doc_id} in {collection}")
            return True

        logger.warning(f"No document updated for {doc_id} in {collection}")
        return False

    def soft_delete_by_org(self, collection: str, org_id: str, doc_id: str, user_id: str) -> bool:
        """Soft delete a document by setting its deletedAt timestamp."""
        try:
            object_id = self._validate_object_id(doc_id)
        except ValueError as e:
            logger.warning(f"Invalid document id {doc_id}: {e}")
            return False

        query = self._build_org_query(org_id, {"_id": object_id})
        now = datetime.utcnow()
        updates = {
            "deletedAt": now,
            "updatedAt": now,
            "updatedBy": user_id
        }

        result = self.get_collection(collection).update_one(query, {"$set": updates})

        if result.modified_count > 0:
            logger.info(f"Soft deleted document {doc_id} in {collection}")
            return True

        logger.warning(f"No document soft deleted for {doc_id} in {collection}")
        return False

    def paginate_by_org(self, collection: str, org_id: str, page: int = 1, page_size: int = 20,
                        filters: Dict = None, sort_by: str = "createdAt", sort_order: int = DESCENDING,
                        include_deleted: bool = False) -> PaginationResult:
        """Paginate documents of an organization with sorting and filtering."""
        query = self._build_org_query(org_id, filters, include_deleted)
        collection_obj = self.get_collection(collection)

        skip = (page - 1) * page_size
        total = collection_obj.count_documents(query)
        cursor = collection_obj.find(query).sort(sort_by, sort_order).skip(skip).limit(page_size)
        documents = [_with_string_id(doc) for doc in cursor]

        logger.debug(f"Paginated {len(documents)} documents from {collection} (page {page})")
        return PaginationResult(documents, total, page, page_size)

    def count_by_org(self, collection: str, org_id: str, filters: Dict = None,
                     include_deleted: bool = False) -> int:
        query = self._build_org_query(org_id, filters, include_deleted)
        return self.get_collection(collection).count_documents(query)

    def aggregate_by_org(self, collection: str, org_id: str, pipeline: List[Dict]) -> List[Dict]:
        """Run an aggregation pipeline prefixed with the organization match stage."""
        org_match = {"$match": {"organizationId": org_id, "deletedAt": None}}
        results = list(self.get_collection(collection).aggregate([org_match] + list(pipeline)))

        logger.debug(f"Aggregation returned {len(results)} results from {collection}")
        return results

    # Index management

    def create_indexes(self) -> None:
        """Create unique and query indexes for all collections."""
        logger.info("Creating MongoDB indexes...")

        def org_index(name: str, *fields, **kwargs):
            keys = [("organizationId", ASCENDING)] + list(fields)
            self.get_collection(name).create_index(keys, **kwargs)

        self.get_collection(USERS).create_index("email", unique=True)
        org_index(USERS, ("role", ASCENDING), ("active", ASCENDING))

        org_index(CLIENTS, ("deletedAt", ASCENDING), ("name", ASCENDING))

        org_index(CHECKPOINTS, ("clientId", ASCENDING), ("orderIndex", ASCENDING))
        org_index(CHECKPOINTS, ("qrCode", ASCENDING), unique=True,
                  partialFilterExpression={"qrCode": {"$type": "string"}, **NOT_DELETED})
        org_index(CHECKPOINTS, ("manualCode", ASCENDING))

        org_index(ROUND_TEMPLATES, ("active", ASCENDING))

        org_index(ROUNDS, ("status", ASCENDING), ("createdAt", DESCENDING))
        org_index(ROUNDS, ("userId", ASCENDING), ("status", ASCENDING))
        org_index(ROUNDS, ("vehicleId", ASCENDING))

        org_index(ROUTE_POINTS, ("roundId", ASCENDING), ("recordedAt", ASCENDING))
        org_index(CHECKPOINT_VISITS, ("roundId", ASCENDING), ("checkpointId", ASCENDING))
        org_index(CHECKPOINT_VISITS, ("visitTime", DESCENDING))

        org_index(INCIDENTS, ("status", ASCENDING), ("priority", ASCENDING))
        org_index(INCIDENTS, ("roundId", ASCENDING))
        org_index(INCIDENTS, ("reportedAt", DESCENDING))

        org_index(VEHICLES, ("licensePlate", ASCENDING), unique=True, partialFilterExpression=NOT_DELETED)
        for name in (FUEL_LOGS, MAINTENANCE_LOGS, ODOMETER_RECORDS, MAINTENANCE_SCHEDULES):
            org_index(name, ("vehicleId", ASCENDING))

        org_index(FUEL_PRICES, ("fuelType", ASCENDING))
        org_index(COST_CALCULATIONS, ("clientId", ASCENDING), ("status", ASCENDING))

        org_index(AUDIT_LOGS, ("timestamp", DESCENDING))
        org_index(AUDIT_LOGS, ("userId", ASCENDING), ("timestamp", DESCENDING))
        org_index(AUDIT_LOGS, ("entity", ASCENDING), ("timestamp", DESCENDING))
        self.get_collection(AUDIT_LOGS).create_index("traceId")

        logger.info("MongoDB indexes created successfully")


# Singleton instance for application use
_mongodb_service: Optional[MongoDBService] = None


def get_mongodb_service() -> MongoDBService:
    """Get singleton MongoDB service instance."""
    global _mongodb_service
    if _mongodb_service is None:
        _mongodb_service = MongoDBService()
    return _mongodb_service


def close_mongodb_connection() -> None:
    """Close MongoDB connection (for cleanup)."""
    global _mongodb_service
    if _mongodb_service:
        _mongodb_service.close_connection()
        _mongodb_service = None
