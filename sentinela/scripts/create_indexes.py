#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Create MongoDB indexes for every collection.

Usage: python -m sentinela.scripts.create_indexes
"""

import sys
import logging

from pymongo.errors import PyMongoError

from sentinela.services.mongodb import get_mongodb_service, close_mongodb_connection

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main() -> int:
    """Create MongoDB indexes."""
    mongodb_service = get_mongodb_service()

    health = mongodb_service.health_check()
    if health['status'] != 'healthy':
        logger.error(f"MongoDB is not healthy: {health}")
        return 1

    logger.info(f"Connected to MongoDB {health['version']} - Database: {health['database']}")

    try:
        mongodb_service.create_indexes()
    except PyMongoError as e:
        logger.error(f"Failed to create indexes: {e}")
        return 1
    finally:
        close_mongodb_connection()

    logger.info("MongoDB indexes created successfully")
    return 0


if __name__ == "__main__":
    sys.exit(main())
