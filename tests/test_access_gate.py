"""Access gate — permission matrix."""

import pytest

from tracker.core.exceptions import AuthorizationError
from tracker.services.access_gate import (
    ROLE_OWNER,
    ROLE_WORKER,
    can_configure,
    can_forward,
    can_rework,
    check_operation,
    has_permission,
)


@pytest.mark.parametrize("role, action, allowed", [
    (ROLE_OWNER, "forward", True),
    (ROLE_OWNER, "forward_to", True),
    (ROLE_OWNER, "rework", True),
    (ROLE_OWNER, "configure_workflow", True),
    (ROLE_OWNER, "view_integrity", True),
    (ROLE_WORKER, "forward", True),
    (ROLE_WORKER, "forward_to", True),
    (ROLE_WORKER, "rework", False),
    (ROLE_WORKER, "configure_workflow", False),
    (ROLE_WORKER, "view_integrity", False),
    ("Viewer", "forward", False),
    (None, "forward", False),
])
def test_permission_matrix(role, action, allowed):
    assert has_permission(role, action) is allowed


def test_unknown_action_is_denied():
    assert not has_permission(ROLE_OWNER, "delete_everything")


def test_helpers():
    assert can_forward(ROLE_WORKER)
    assert not can_rework(ROLE_WORKER)
    assert can_rework(ROLE_OWNER)
    assert not can_configure(ROLE_WORKER)


def test_check_operation_raises_with_context():
    with pytest.raises(AuthorizationError) as exc_info:
        check_operation(ROLE_WORKER, "rework")
    assert exc_info.value.role == ROLE_WORKER
    assert exc_info.value.operation == "rework"
    assert exc_info.value.reason == "forbidden"


def test_check_operation_allows():
    check_operation(ROLE_OWNER, "rework")
