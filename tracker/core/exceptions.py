"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Two families live here:

  * Generic service errors (NotFoundError, ValidationError, ConflictError)
    used by configuration and read paths.
  * The workflow family rooted at WorkflowError. Each carries a ``reason``
    code that the transition executor copies into per-item failures, so the
    same string serves user display and automated tests.

Batch-level vs per-item:
    ConfigurationError and AuthorizationError abort a whole batch before any
    item is touched. Everything else is caught per item by the executor and
    reported next to its item id.

Usage:
    from tracker.core.exceptions import NotFoundError, InvalidTargetError

    raise NotFoundError(resource="Item", resource_id=item_id)
    raise InvalidTargetError("Target stage is not after the current position")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for BOTH genuinely missing records AND cross-organization access
    attempts. A 403 would confirm the resource exists; a 404 does not.

    Args:
        resource: Human-readable model/entity name (e.g. "Item", "WorkflowStage").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        organization_id: Optional — the scope that was enforced. For debug logging only.
    """

    reason = "not_found"

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        organization_id: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.organization_id = organization_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 400 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation conflicts with current state (occupied stage,
    duplicate sequence order). Maps to HTTP 409.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


# ── Workflow engine ─────────────────────────────────────────────────────────


class WorkflowError(Exception):
    """Base class for stage-transition failures."""

    reason = "workflow_error"


class ConfigurationError(WorkflowError):
    """The organization's workflow graph cannot be used for transitions.

    Raised for an empty workflow and for colliding sequence_order values.
    Fatal for the whole batch.
    """

    reason = "configuration_error"


class AuthorizationError(WorkflowError):
    """The caller's role may not perform the requested operation.

    Fatal for the whole batch; raised before any item is loaded.
    """

    reason = "forbidden"

    def __init__(self, role: str | None, operation: str) -> None:
        self.role = role
        self.operation = operation
        super().__init__(f"Role '{role}' is not permitted to perform '{operation}'")


class NoValidTransitionError(WorkflowError):
    """No legal destination exists from the item's current position."""

    reason = "no_valid_transition"


class InvalidTargetError(NoValidTransitionError):
    """An explicit forward target is unknown or not strictly after current."""

    reason = "no_valid_transition"


class LedgerInconsistencyError(WorkflowError):
    """The item's history ledger is corrupt (e.g. more than one open entry).

    Indicates an earlier atomicity violation. Surfaced, never auto-healed.
    """

    reason = "ledger_inconsistency"

    def __init__(self, item_id: str, message: str, open_entry_ids: list[str] | None = None) -> None:
        self.item_id = item_id
        self.open_entry_ids = open_entry_ids or []
        super().__init__(message)


class PersistenceError(WorkflowError):
    """The atomic close-history/update-position/open-history unit failed."""

    reason = "persistence_error"
