# SPDX-License-Identifier: Apache-2.0

"""
Authorization domain logic for role-based access control.

Each user has exactly one role (admin, operador or tatico) and each role
maps to a fixed list of ``resource:action`` permissions. Permissions are
computed at login and carried in the access token.
"""

from typing import List, Dict, Optional
from dataclasses import dataclass
from ..models.entities import User, UserContext
from ..models.enums import UserRole


_ALL_ACTIONS = ("create", "read", "update", "delete")

ROLE_PERMISSIONS: Dict[str, List[str]] = {
    UserRole.ADMIN.value: sorted(
        [f"{resource}:{action}"
         for resource in ("user", "client", "checkpoint", "template", "round",
                          "incident", "vehicle", "cost")
         for action in _ALL_ACTIONS]
        + [
            "user:manage", "round:execute", "round:manage", "vehicle:execute",
            "report:read", "audit_log:read"
        ]
    ),
    UserRole.OPERADOR.value: sorted([
        "user:read",
        "client:create", "client:read", "client:update",
        "checkpoint:create", "checkpoint:read", "checkpoint:update",
        "template:create", "template:read", "template:update",
        "round:create", "round:read", "round:update", "round:manage",
        "incident:create", "incident:read", "incident:update",
        "vehicle:create", "vehicle:read", "vehicle:update", "vehicle:execute",
        "cost:create", "cost:read", "cost:update",
        "report:read"
    ]),
    UserRole.TATICO.value: sorted([
        "client:read",
        "checkpoint:read",
        "template:read",
        "round:read", "round:execute",
        "incident:create", "incident:read",
        "vehicle:read", "vehicle:execute"
    ])
}


@dataclass
class AuthorizationResult:
    """Result of an authorization check."""
    allowed: bool
    reason: Optional[str] = None
    missing_permissions: List[str] = None


def permissions_for_role(role: str) -> List[str]:
    """
    Permission list granted by a role.

    Args:
        role: Role name

    Returns:
        Sorted permission strings; empty for unknown roles
    """
    return list(ROLE_PERMISSIONS.get(role, []))


def build_user_permissions(user: User) -> List[str]:
    """Effective permissions of a user; inactive users get none."""
    if not user.is_active():
        return []
    return permissions_for_role(user.role)


def check_permission(user_context: UserContext, required_permission: str) -> AuthorizationResult:
    """
    Check if user has a specific permission.

    Args:
        user_context: User context with permissions
        required_permission: Permission string to check

    Returns:
        AuthorizationResult indicating if permission is granted
    """
    if required_permission in user_context.permissions:
        return AuthorizationResult(allowed=True)

    return AuthorizationResult(
        allowed=False,
        reason=f"Missing required permission: {required_permission}",
        missing_permissions=[required_permission]
    )


def check_permissions(user_context: UserContext, required_permissions: List[str], require_all: bool = True) -> AuthorizationResult:
    """
    Check if user has required permissions.

    Args:
        user_context: User context with permissions
        required_permissions: List of permission strings to check
        require_all: If True, user must have all permissions. If False, any permission is sufficient.

    Returns:
        AuthorizationResult indicating if permissions are granted
    """
    user_permissions = set(user_context.permissions)
    required_set = set(required_permissions)

    if require_all:
        missing = required_set - user_permissions
        if not missing:
            return AuthorizationResult(allowed=True)

        return AuthorizationResult(
            allowed=False,
            reason=f"Missing required permissions: {', '.join(sorted(missing))}",
            missing_permissions=sorted(missing)
        )

    if user_permissions & required_set:
        return AuthorizationResult(allowed=True)

    return AuthorizationResult(
        allowed=False,
        reason=f"Missing any of required permissions: {', '.join(sorted(required_permissions))}",
        missing_permissions=list(required_permissions)
    )


def check_organization_access(user_context: UserContext, target_org_id: str) -> AuthorizationResult:
    """Check if user belongs to the organization owning a resource."""
    if user_context.org_id == target_org_id:
        return AuthorizationResult(allowed=True)

    return AuthorizationResult(
        allowed=False,
        reason=f"Access denied to organization {target_org_id}"
    )


def can_manage_user(manager_context: UserContext, target_user: User, deactivating: bool = False) -> AuthorizationResult:
    """
    Check if a user can manage another user account.

    Admins cannot deactivate or delete their own account.
    """
    org_check = check_organization_access(manager_context, target_user.organization_id)
    if not org_check.allowed:
        return org_check

    perm_check = check_permission(manager_context, "user:manage")
    if not perm_check.allowed:
        return perm_check

    if deactivating and target_user.id == manager_context.user_id:
        return AuthorizationResult(
            allowed=False,
            reason="Users cannot deactivate their own account"
        )

    return AuthorizationResult(allowed=True)


def can_access_round(user_context: UserContext, round_user_id: str) -> AuthorizationResult:
    """Tactical agents only see their own rounds; operators and admins see all."""
    if check_permission(user_context, "round:manage").allowed:
        return AuthorizationResult(allowed=True)
    if round_user_id == user_context.user_id:
        return AuthorizationResult(allowed=True)
    return AuthorizationResult(
        allowed=False,
        reason="Round belongs to another agent"
    )


def get_permission_description(permission: str) -> str:
    """
    Get human-readable description for a permission.

    Args:
        permission: Permission string (e.g., "round:execute")

    Returns:
        Human-readable description
    """
    permission_descriptions = {
        "user:manage": "Manage user accounts and reset passwords",
        "round:execute": "Start, complete and register visits on own rounds",
        "round:manage": "Manage rounds of any agent",
        "vehicle:execute": "Register fuel, maintenance and odometer readings",
        "report:read": "View dashboard and reports",
        "audit_log:read": "View audit logs"
    }
    if permission in permission_descriptions:
        return permission_descriptions[permission]

    resource, _, action = permission.partition(":")
    return f"{action.capitalize()} {resource.replace('_', ' ')}".strip()
