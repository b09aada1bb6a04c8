"""
mfg_services.bulk_operations -- Batch operations over manufacturing orders.

Responsibility:
    Applies one single-order operation (approve, start, advance, hold,
    resume, cancel, reprioritize, generate procurement) to a list of MO ids
    and reports a per-item outcome for each.

Architecture position:
    Services -- orchestration over ``ManufacturingOrderService``,
    ``RequirementService`` and ``InventoryIntegrationService``.  Every item
    is its own unit of work: a failed item rolls back only its own writes.

Invariants enforced:
    - Items are processed sequentially in input order.
    - One bad item never aborts the batch; precondition failures, missing
      orders and unexpected errors all become failed item results.
    - ``success_count + failure_count == total_processed``.

Usage:
    result = bulk.bulk_put_on_hold(mo_ids, "Supplier delay", actor_id="u-1")
    for item in result.failures:
        print(item.mo_number, item.error)
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from mfg_kernel.exceptions import ManufacturingError
from mfg_kernel.logging_config import LogContext, get_logger
from mfg_modules.manufacturing.models import ManufacturingOrder, MOPriority, MOStatus
from mfg_modules.manufacturing.service import ManufacturingOrderService
from mfg_modules.procurement.requirements import RequirementService
from mfg_services.inventory_integration import (
    InventoryIntegrationService,
    OverallAvailability,
)

logger = get_logger("services.bulk_operations")

NOT_FOUND = "Manufacturing order not found"
UNKNOWN_NUMBER = "N/A"


@dataclass(frozen=True)
class BulkItemResult:
    mo_id: str
    mo_number: str
    success: bool
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BulkOperationResult:
    total_processed: int
    success_count: int
    failure_count: int
    results: tuple[BulkItemResult, ...]

    @property
    def failures(self) -> tuple[BulkItemResult, ...]:
        return tuple(r for r in self.results if not r.success)


@dataclass(frozen=True)
class _Outcome:
    success: bool = True
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


class BulkOperationsService:
    """Sequential, failure-isolated batch operations on MOs."""

    def __init__(
        self,
        manufacturing: ManufacturingOrderService,
        requirements: RequirementService,
        integration: InventoryIntegrationService,
    ):
        self._manufacturing = manufacturing
        self._requirements = requirements
        self._integration = integration

    def _run(
        self,
        operation: str,
        mo_ids: Sequence[UUID | str],
        actor_id: str,
        apply: Callable[[ManufacturingOrder], _Outcome],
    ) -> BulkOperationResult:
        results: list[BulkItemResult] = []
        with LogContext.bind(actor_id=actor_id, operation=operation):
            logger.info("bulk_operation_started", extra={"item_count": len(mo_ids)})
            for mo_id in mo_ids:
                results.append(self._run_one(operation, mo_id, apply))

            success_count = sum(1 for r in results if r.success)
            result = BulkOperationResult(
                total_processed=len(mo_ids),
                success_count=success_count,
                failure_count=len(results) - success_count,
                results=tuple(results),
            )
            logger.info(
                "bulk_operation_completed",
                extra={
                    "item_count": result.total_processed,
                    "success_count": result.success_count,
                    "failure_count": result.failure_count,
                },
            )
            return result

    def _run_one(
        self,
        operation: str,
        mo_id: UUID | str,
        apply: Callable[[ManufacturingOrder], _Outcome],
    ) -> BulkItemResult:
        order = None
        try:
            order = self._manufacturing.find_order(mo_id)
            if order is None:
                return BulkItemResult(str(mo_id), UNKNOWN_NUMBER, False, NOT_FOUND)
            outcome = apply(order)
        except ManufacturingError as exc:
            logger.info(
                "bulk_item_failed",
                extra={"mo_id": str(mo_id), "error_code": exc.code, "error": str(exc)},
            )
            outcome = _Outcome(success=False, error=str(exc))
        except Exception as exc:
            logger.warning(
                "bulk_item_unexpected_error",
                extra={"mo_id": str(mo_id), "bulk_operation": operation},
                exc_info=True,
            )
            outcome = _Outcome(success=False, error=f"Unexpected error: {exc}")
        return BulkItemResult(
            mo_id=str(mo_id),
            mo_number=order.mo_number if order is not None else UNKNOWN_NUMBER,
            success=outcome.success,
            error=outcome.error,
            details=outcome.details,
        )

    # ------------------------------------------------------------------
    # Approval
    # ------------------------------------------------------------------

    def bulk_approve(
        self,
        mo_ids: Sequence[UUID | str],
        *,
        actor_id: str,
        default_warehouse_id: str | None = None,
        auto_procure_shortages: bool = False,
        continue_on_shortage: bool = False,
    ) -> BulkOperationResult:
        """Reserve and approve draft orders.

        A blocked order (some material unavailable or not stocked at all)
        fails without reserving unless ``continue_on_shortage``; with
        ``auto_procure_shortages`` its shortfalls become requirements first.
        Reservation shortages found while approving fail the item as a
        partial shortage, or approve it anyway under ``continue_on_shortage``.
        """

        def apply(order: ManufacturingOrder) -> _Outcome:
            if order.status != MOStatus.DRAFT:
                return _Outcome(
                    False, f"MO must be in draft status (current: {order.status.value})",
                )

            availability = self._integration.check_material_availability(order.id)
            if (
                availability.overall_status == OverallAvailability.BLOCKED
                and not continue_on_shortage
            ):
                if auto_procure_shortages:
                    self._integration.generate_procurement_from_shortages(
                        order.id, actor_id=actor_id, availability=availability,
                    )
                return _Outcome(
                    False,
                    "Insufficient materials",
                    {
                        "shortage_count": len(availability.shortages),
                        "estimated_shortage_value": availability.estimated_shortage_value,
                        "procurement_generated": auto_procure_shortages,
                    },
                )

            outcome = self._manufacturing.approve(
                order.id, actor_id=actor_id, warehouse_id=default_warehouse_id,
            )
            if outcome.success:
                return _Outcome(details={
                    "reservations_created": outcome.reservations_created,
                    "shortage_count": 0,
                })
            if continue_on_shortage:
                self._manufacturing.approve_with_shortages(order.id, actor_id=actor_id)
                return _Outcome(details={
                    "reservations_created": outcome.reservations_created,
                    "shortage_count": len(outcome.shortages),
                })
            return _Outcome(
                False,
                "Partial shortage",
                {
                    "reservations_created": outcome.reservations_created,
                    "shortages": [
                        {
                            "item_name": s.item_name,
                            "required": s.required,
                            "available": s.available,
                        }
                        for s in outcome.shortages
                    ],
                },
            )

        return self._run("bulk_approve", mo_ids, actor_id, apply)

    # ------------------------------------------------------------------
    # Production
    # ------------------------------------------------------------------

    def bulk_start_production(
        self, mo_ids: Sequence[UUID | str], *, actor_id: str,
    ) -> BulkOperationResult:
        def apply(order: ManufacturingOrder) -> _Outcome:
            started = self._manufacturing.start_production(order.id, actor_id=actor_id)
            return _Outcome(details={"stage": started.current_stage.value})

        return self._run("bulk_start_production", mo_ids, actor_id, apply)

    def bulk_advance_stage(
        self,
        mo_ids: Sequence[UUID | str],
        *,
        actor_id: str,
        notes: str | None = None,
    ) -> BulkOperationResult:
        def apply(order: ManufacturingOrder) -> _Outcome:
            if order.status != MOStatus.IN_PROGRESS:
                return _Outcome(False, f"MO must be in-progress (current: {order.status.value})")
            advanced = self._manufacturing.advance_stage(
                order.id, actor_id=actor_id, notes=notes or "Bulk stage advancement",
            )
            return _Outcome(details={
                "from_stage": order.current_stage.value,
                "to_stage": advanced.current_stage.value,
                "completed": advanced.status == MOStatus.COMPLETED,
            })

        return self._run("bulk_advance_stage", mo_ids, actor_id, apply)

    # ------------------------------------------------------------------
    # Status changes
    # ------------------------------------------------------------------

    def bulk_put_on_hold(
        self, mo_ids: Sequence[UUID | str], reason: str, *, actor_id: str,
    ) -> BulkOperationResult:
        def apply(order: ManufacturingOrder) -> _Outcome:
            self._manufacturing.put_on_hold(order.id, reason, actor_id=actor_id)
            return _Outcome(details={"reason": reason})

        return self._run("bulk_put_on_hold", mo_ids, actor_id, apply)

    def bulk_resume(self, mo_ids: Sequence[UUID | str], *, actor_id: str) -> BulkOperationResult:
        def apply(order: ManufacturingOrder) -> _Outcome:
            resumed = self._manufacturing.resume(order.id, actor_id=actor_id)
            return _Outcome(details={"status": resumed.status.value})

        return self._run("bulk_resume", mo_ids, actor_id, apply)

    def bulk_cancel(
        self, mo_ids: Sequence[UUID | str], reason: str, *, actor_id: str,
    ) -> BulkOperationResult:
        """Cancel orders, releasing their reservations best-effort."""

        def apply(order: ManufacturingOrder) -> _Outcome:
            outcome = self._manufacturing.cancel(order.id, reason, actor_id=actor_id)
            return _Outcome(details={
                "reservations_released": outcome.reservations_released,
                "release_failures": outcome.release_failures,
                "reason": reason,
            })

        return self._run("bulk_cancel", mo_ids, actor_id, apply)

    def bulk_update_priority(
        self, mo_ids: Sequence[UUID | str], priority: MOPriority, *, actor_id: str,
    ) -> BulkOperationResult:
        def apply(order: ManufacturingOrder) -> _Outcome:
            self._manufacturing.update_priority(order.id, priority, actor_id=actor_id)
            return _Outcome(details={
                "previous_priority": order.priority.value,
                "new_priority": priority.value,
            })

        return self._run("bulk_update_priority", mo_ids, actor_id, apply)

    # ------------------------------------------------------------------
    # Procurement
    # ------------------------------------------------------------------

    def bulk_generate_procurement(
        self, mo_ids: Sequence[UUID | str], *, actor_id: str,
    ) -> BulkOperationResult:
        """Requirements for the outsourced BOM entries of each order."""

        def apply(order: ManufacturingOrder) -> _Outcome:
            created = self._requirements.generate_from_mo(order.id, actor_id=actor_id)
            return _Outcome(details={"total_requirements": len(created)})

        return self._run("bulk_generate_procurement", mo_ids, actor_id, apply)
