"""
Typed Exception Hierarchy for the Manufacturing Kernel.

Every error raised by a lifecycle manager is a typed exception with a
machine-readable ``code`` class attribute and structured attributes, so
callers catch by type and APIs report by code:

    try:
        mo_service.advance_stage(mo_id, actor_id=user)
    except InvalidTransitionError as e:
        respond(409, code=e.code, stage=e.current_state)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ManufacturingError (base)
    |
    +-- NotFoundError
    |   +-- ManufacturingOrderNotFoundError
    |   +-- PurchaseOrderNotFoundError
    |   +-- RequirementNotFoundError
    |   +-- ApprovalRequestNotFoundError
    |
    +-- InvalidStateError
    |   +-- InvalidRequirementStatusError
    |
    +-- InvalidTransitionError
    +-- ValidationError
    +-- SupplierMismatchError
    |
    +-- ApprovalError
    |   +-- UnauthorizedApproverError
    |   +-- NoApprovalThresholdError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- InventoryOperationError
    +-- ConfigurationError

Shortages during MO approval and per-item failures in bulk operations are
NOT exceptions. They are reported through result objects.
"""

from typing import Any


class ManufacturingError(Exception):
    """
    Base exception for all manufacturing kernel errors.

    All subclasses must have a ``code`` class attribute.
    """

    code: str = "MANUFACTURING_ERROR"


# Lookup failures


class NotFoundError(ManufacturingError):
    """An entity with the given id does not exist."""

    code: str = "NOT_FOUND"
    entity_type: str = "entity"

    def __init__(self, entity_id: Any):
        self.entity_id = str(entity_id)
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class ManufacturingOrderNotFoundError(NotFoundError):
    code: str = "MANUFACTURING_ORDER_NOT_FOUND"
    entity_type: str = "ManufacturingOrder"


class PurchaseOrderNotFoundError(NotFoundError):
    code: str = "PURCHASE_ORDER_NOT_FOUND"
    entity_type: str = "PurchaseOrder"


class RequirementNotFoundError(NotFoundError):
    code: str = "REQUIREMENT_NOT_FOUND"
    entity_type: str = "ProcurementRequirement"


class ApprovalRequestNotFoundError(NotFoundError):
    code: str = "APPROVAL_REQUEST_NOT_FOUND"
    entity_type: str = "ApprovalRequest"


# Lifecycle errors


class InvalidStateError(ManufacturingError):
    """Operation attempted from a status that does not allow it."""

    code: str = "INVALID_STATE"

    def __init__(
        self,
        entity_type: str,
        entity_id: Any,
        current_state: str,
        action: str,
        allowed_states: tuple[str, ...] = (),
    ):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.current_state = current_state
        self.action = action
        self.allowed_states = allowed_states
        detail = f" (allowed from: {', '.join(allowed_states)})" if allowed_states else ""
        super().__init__(
            f"Cannot {action} {entity_type} {entity_id} in state "
            f"'{current_state}'{detail}"
        )


class InvalidRequirementStatusError(InvalidStateError):
    """A procurement requirement is not in the status the operation needs."""

    code: str = "INVALID_REQUIREMENT_STATUS"

    def __init__(self, requirement_id: Any, current_state: str, action: str):
        super().__init__(
            "ProcurementRequirement",
            requirement_id,
            current_state,
            action,
            allowed_states=("pending",),
        )


class InvalidTransitionError(ManufacturingError):
    """A stage transition is impossible, e.g. advancing past the terminal stage."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity_id: Any, current_state: str, reason: str):
        self.entity_id = str(entity_id)
        self.current_state = current_state
        self.reason = reason
        super().__init__(f"Invalid transition for {entity_id} at '{current_state}': {reason}")


class ValidationError(ManufacturingError):
    """Input rejected before any state change (empty lines, bad quantity)."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class SupplierMismatchError(ManufacturingError):
    """Requirements in a consolidation batch target a different supplier."""

    code: str = "SUPPLIER_MISMATCH"

    def __init__(self, supplier_id: str, mismatched: dict[str, str]):
        self.supplier_id = supplier_id
        self.mismatched = mismatched
        super().__init__(
            f"{len(mismatched)} requirement(s) are assigned to a supplier "
            f"other than {supplier_id}"
        )


# Approval errors


class ApprovalError(ManufacturingError):
    code: str = "APPROVAL_ERROR"


class UnauthorizedApproverError(ApprovalError):
    """The acting role does not match the current approval level."""

    code: str = "UNAUTHORIZED_APPROVER"

    def __init__(self, request_id: Any, actor_role: str, required_role: str):
        self.request_id = str(request_id)
        self.actor_role = actor_role
        self.required_role = required_role
        super().__init__(
            f"Role {actor_role} cannot act on approval {request_id}; "
            f"requires {required_role}"
        )


class NoApprovalThresholdError(ApprovalError):
    """No configured threshold band covers the order amount."""

    code: str = "NO_APPROVAL_THRESHOLD"

    def __init__(self, amount: Any, currency: str):
        self.amount = str(amount)
        self.currency = currency
        super().__init__(f"No approval threshold configured for {amount} {currency}")


# Concurrency


class ConcurrencyError(ManufacturingError):
    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_FAILED"

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Collaborators and configuration


class InventoryOperationError(ManufacturingError):
    """An inventory adapter call failed on a path where failure is fatal."""

    code: str = "INVENTORY_OPERATION_FAILED"

    def __init__(self, operation: str, item_id: str, reason: str):
        self.operation = operation
        self.item_id = item_id
        self.reason = reason
        super().__init__(f"Inventory {operation} failed for item {item_id}: {reason}")


class ConfigurationError(ManufacturingError):
    code: str = "CONFIGURATION_ERROR"
