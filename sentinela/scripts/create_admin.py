#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Create the first admin account of an organization.

Usage:
    python -m sentinela.scripts.create_admin --email chefe@empresa.com.br \
        --name "Chefe de Operações" [--org-id <ObjectId>]

The password is read from SENTINELA_ADMIN_PASSWORD or prompted for.
"""

import argparse
import getpass
import logging
import os
import sys
from typing import Optional

from bson import ObjectId

from sentinela.domain.authorization import permissions_for_role
from sentinela.models.entities import User
from sentinela.models.enums import UserRole
from sentinela.models.requests import CreateUserRequest
from sentinela.services.auth import AuthService
from sentinela.services.mongodb import MongoDBService, USERS, DuplicateDocumentError, get_mongodb_service

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)

SYSTEM_USER = "system"


def create_admin(mongodb_service: MongoDBService, auth_service: AuthService,
                 email: str, name: str, password: str, org_id: Optional[str] = None) -> User:
    """
    Insert an admin user; a new organization id is generated when none is given.

    Raises:
        pydantic.ValidationError: Invalid email, name or weak password
        DuplicateDocumentError: Email already registered
    """
    request = CreateUserRequest(email=email, name=name, password=password, role=UserRole.ADMIN)

    if mongodb_service.find_user_by_email(request.email):
        raise DuplicateDocumentError(f"A user with email {request.email} already exists")

    admin = User(
        organization_id=org_id or str(ObjectId()),
        email=request.email,
        name=request.name,
        password_hash=auth_service.hash_password(request.password),
        role=UserRole.ADMIN,
        permissions=permissions_for_role(UserRole.ADMIN.value),
        created_by=SYSTEM_USER,
        updated_by=SYSTEM_USER
    )
    mongodb_service.create(USERS, admin.to_document(), SYSTEM_USER)
    return admin


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create an organization admin")
    parser.add_argument("--email", required=True)
    parser.add_argument("--name", required=True)
    parser.add_argument("--org-id", help="Existing organization id; omitted to start a new organization")
    args = parser.parse_args(argv)

    password = os.getenv("SENTINELA_ADMIN_PASSWORD") or getpass.getpass("Password: ")

    try:
        admin = create_admin(get_mongodb_service(), AuthService(), args.email, args.name, password, args.org_id)
    except (ValueError, DuplicateDocumentError) as e:
        logger.error(f"Admin not created: {e}")
        return 1

    logger.info("Admin created", extra={"user_id": admin.id, "organization_id": admin.organization_id})
    print(f"user_id={admin.id}")
    print(f"organization_id={admin.organization_id}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
