"""
Access gate — role-based authorization for workflow mutations.

Evaluated once per batch, before any item is read. A caller without
permission gets a single AuthorizationError, never N per-item failures.

Roles come from the identity provider as given (see middleware/jwt_auth.py).

Usage:
    from tracker.services.access_gate import check_operation, can_rework

    check_operation(actor.role, "rework")   # raises AuthorizationError
    if can_forward(role):
        ...
"""

from tracker.core.exceptions import AuthorizationError

ROLE_OWNER = "Owner"
ROLE_WORKER = "Worker"

PERMISSION_MATRIX = {
    "forward": frozenset({ROLE_OWNER, ROLE_WORKER}),
    "forward_to": frozenset({ROLE_OWNER, ROLE_WORKER}),
    "rework": frozenset({ROLE_OWNER}),
    "configure_workflow": frozenset({ROLE_OWNER}),
    "view_integrity": frozenset({ROLE_OWNER}),
}


def has_permission(role: str | None, action: str) -> bool:
    return role in PERMISSION_MATRIX.get(action, frozenset())


def can_forward(role: str | None) -> bool:
    return has_permission(role, "forward")


def can_rework(role: str | None) -> bool:
    return has_permission(role, "rework")


def can_configure(role: str | None) -> bool:
    return has_permission(role, "configure_workflow")


def check_operation(role: str | None, action: str) -> None:
    """Assert ``role`` may perform ``action``.

    Raises:
        AuthorizationError: role lacks the permission (unknown actions are
            denied).
    """
    if not has_permission(role, action):
        raise AuthorizationError(role, action)
