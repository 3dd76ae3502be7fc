# SPDX-License-Identifier: Apache-2.0

"""
Shared identifiers and document builders for route tests.
"""

from datetime import datetime
from typing import Dict, Any
from bson import ObjectId

ORG_ID = "64f000000000000000000001"
ADMIN_ID = "64f0000000000000000000a1"
OPERATOR_ID = "64f0000000000000000000b1"
AGENT_ID = "64f0000000000000000000c1"


def new_id() -> str:
    return str(ObjectId())


def document(**fields) -> Dict[str, Any]:
    """Document as returned by MongoDBService: string id, camelCase keys."""
    now = datetime(2024, 5, 1, 8, 0)
    base = {
        "id": new_id(),
        "organizationId": ORG_ID,
        "createdAt": now,
        "updatedAt": now,
        "deletedAt": None,
        "createdBy": ADMIN_ID,
        "updatedBy": ADMIN_ID,
        "schemaVersion": 1
    }
    base.update(fields)
    return base


def by_collection(results: Dict[str, Any], default: Any = None):
    """Side effect answering MongoDBService lookups per collection."""
    def lookup(collection, *args, **kwargs):
        return results.get(collection, default)
    return lookup
