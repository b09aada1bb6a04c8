"""
Tests for BulkOperationsService.

Tests cover:
- Per-item isolation: missing and ineligible orders fail without aborting
- Bulk approval branches: blocked, partial shortage, shortage override
- Shortage-driven requirement generation during bulk approval
- Production, hold, resume, cancel, priority and procurement batches
"""

from decimal import Decimal
from uuid import uuid4

from mfg_modules.manufacturing.models import MOPriority, MOStage, MOStatus
from mfg_modules.procurement.models import RequirementSource
from tests.conftest import WAREHOUSE, outsourced_entry, stocked_entry


def stock(inventory, **quantities):
    for item_id, qty in quantities.items():
        inventory.stock[item_id] = Decimal(qty)


class TestBulkApprove:

    def test_partial_success(self, create_order, approved_order, inventory, services, test_actor_id):
        ready = create_order()
        done = approved_order()
        stock(inventory, **{"ITEM-OAK": "10", "ITEM-GLUE": "2"})
        missing = uuid4()

        result = services.bulk.bulk_approve(
            [ready.id, missing, done.id], actor_id=test_actor_id, default_warehouse_id=WAREHOUSE,
        )

        assert result.total_processed == 3
        assert result.success_count == 1
        assert result.failure_count == 2
        ok, not_found, wrong_state = result.results
        assert ok.success
        assert ok.details["reservations_created"] == 2
        assert not_found.mo_number == "N/A"
        assert not_found.error == "Manufacturing order not found"
        assert wrong_state.error == "MO must be in draft status (current: approved)"
        assert services.manufacturing.get_order(ready.id).status == MOStatus.APPROVED

    def test_results_in_input_order(self, create_order, inventory, services, test_actor_id):
        first = create_order()
        second = create_order()
        stock(inventory, **{"ITEM-OAK": "20", "ITEM-GLUE": "4"})

        result = services.bulk.bulk_approve(
            [second.id, first.id], actor_id=test_actor_id, default_warehouse_id=WAREHOUSE,
        )

        assert [r.mo_number for r in result.results] == [second.mo_number, first.mo_number]

    def test_blocked_order_not_reserved(self, create_order, inventory, services, test_actor_id):
        order = create_order()

        result = services.bulk.bulk_approve(
            [order.id], actor_id=test_actor_id, default_warehouse_id=WAREHOUSE,
        )

        item = result.results[0]
        assert not item.success
        assert item.error == "Insufficient materials"
        assert item.details["shortage_count"] == 2
        assert item.details["estimated_shortage_value"] == Decimal("11000.00")
        assert item.details["procurement_generated"] is False
        assert inventory.calls_for("reserve") == []
        assert services.manufacturing.get_order(order.id).status == MOStatus.DRAFT

    def test_blocked_order_procures_shortfall(self, create_order, inventory, services, test_actor_id):
        order = create_order()
        stock(inventory, **{"ITEM-OAK": "4"})

        result = services.bulk.bulk_approve(
            [order.id],
            actor_id=test_actor_id,
            default_warehouse_id=WAREHOUSE,
            auto_procure_shortages=True,
        )

        assert result.results[0].details["procurement_generated"] is True
        requirements = services.requirements.list_requirements(mo_id=order.id)
        quantities = {r.inventory_item_id: r.quantity for r in requirements}
        assert quantities == {"ITEM-OAK": Decimal("6"), "ITEM-GLUE": Decimal("2")}
        assert all(r.source == RequirementSource.SHORTAGE_AUTO for r in requirements)

    def test_partial_shortage_fails_item(self, create_order, inventory, services, test_actor_id):
        order = create_order()
        stock(inventory, **{"ITEM-OAK": "5", "ITEM-GLUE": "2"})

        result = services.bulk.bulk_approve(
            [order.id], actor_id=test_actor_id, default_warehouse_id=WAREHOUSE,
        )

        item = result.results[0]
        assert item.error == "Partial shortage"
        assert item.details["reservations_created"] == 1
        assert item.details["shortages"][0]["item_name"] == "Item ITEM-OAK"
        assert item.details["shortages"][0]["available"] == Decimal("5")
        assert services.manufacturing.get_order(order.id).status == MOStatus.DRAFT

    def test_continue_on_shortage_approves(self, create_order, inventory, services, test_actor_id):
        order = create_order()
        stock(inventory, **{"ITEM-OAK": "5", "ITEM-GLUE": "2"})

        result = services.bulk.bulk_approve(
            [order.id],
            actor_id=test_actor_id,
            default_warehouse_id=WAREHOUSE,
            continue_on_shortage=True,
        )

        item = result.results[0]
        assert item.success
        assert item.details == {"reservations_created": 1, "shortage_count": 1}
        approved = services.manufacturing.get_order(order.id)
        assert approved.status == MOStatus.APPROVED
        assert len(approved.material_reservations) == 1

    def test_continue_on_shortage_with_nothing_in_stock(
        self, create_order, services, test_actor_id,
    ):
        order = create_order()

        result = services.bulk.bulk_approve(
            [order.id],
            actor_id=test_actor_id,
            default_warehouse_id=WAREHOUSE,
            continue_on_shortage=True,
        )

        assert result.success_count == 1
        assert result.results[0].details["shortage_count"] == 2
        assert services.manufacturing.get_order(order.id).status == MOStatus.APPROVED

    def test_batch_logged(self, create_order, services, test_actor_id, captured_logs):
        services.bulk.bulk_approve([create_order().id, "bogus"], actor_id=test_actor_id)

        completed = [r for r in captured_logs() if r["message"] == "bulk_operation_completed"]
        assert len(completed) == 1
        assert completed[0]["failure_count"] == 2


class TestBulkProduction:

    def test_start_production(self, create_order, approved_order, services, test_actor_id):
        ready = approved_order()
        draft = create_order()

        result = services.bulk.bulk_start_production([ready.id, draft.id], actor_id=test_actor_id)

        assert result.success_count == 1
        assert result.results[0].details == {"stage": "queued"}
        assert "draft" in result.results[1].error
        assert services.manufacturing.get_order(ready.id).status == MOStatus.IN_PROGRESS

    def test_advance_stage(self, approved_order, services, test_actor_id):
        running = approved_order()
        waiting = approved_order()
        services.manufacturing.start_production(running.id, actor_id=test_actor_id)

        result = services.bulk.bulk_advance_stage([running.id, waiting.id], actor_id=test_actor_id)

        advanced, refused = result.results
        assert advanced.details == {"from_stage": "queued", "to_stage": "cutting", "completed": False}
        assert refused.error == "MO must be in-progress (current: approved)"
        reloaded = services.manufacturing.get_order(running.id)
        assert reloaded.current_stage == MOStage.CUTTING
        assert reloaded.stage_history[-1].notes == "Bulk stage advancement"


class TestBulkStatusChanges:

    def test_hold_and_resume(self, approved_order, services, test_actor_id):
        running = approved_order()
        idle = approved_order()
        services.manufacturing.start_production(running.id, actor_id=test_actor_id)

        held = services.bulk.bulk_put_on_hold(
            [running.id, idle.id], "Supplier delay", actor_id=test_actor_id,
        )
        assert held.success_count == 1
        assert held.results[0].details == {"reason": "Supplier delay"}
        assert not held.results[1].success

        resumed = services.bulk.bulk_resume([running.id, idle.id], actor_id=test_actor_id)
        assert resumed.results[0].details == {"status": "in-progress"}
        assert not resumed.results[1].success

    def test_cancel_releases_reservations(self, approved_order, inventory, services, test_actor_id):
        order = approved_order()

        result = services.bulk.bulk_cancel([order.id], "Customer withdrew", actor_id=test_actor_id)

        details = result.results[0].details
        assert details["reservations_released"] == 2
        assert details["release_failures"] == 0
        assert len(inventory.calls_for("release")) == 2
        assert services.manufacturing.get_order(order.id).status == MOStatus.CANCELLED

    def test_cancelled_order_fails_second_cancel(self, approved_order, services, test_actor_id):
        order = approved_order()
        services.bulk.bulk_cancel([order.id], "First", actor_id=test_actor_id)

        result = services.bulk.bulk_cancel([order.id], "Second", actor_id=test_actor_id)

        assert result.failure_count == 1

    def test_update_priority(self, create_order, services, test_actor_id):
        order = create_order()

        result = services.bulk.bulk_update_priority(
            [order.id], MOPriority.URGENT, actor_id=test_actor_id,
        )

        assert result.results[0].details == {"previous_priority": "normal", "new_priority": "urgent"}
        assert services.manufacturing.get_order(order.id).priority == MOPriority.URGENT


class TestBulkProcurement:

    def test_generate_requirements(self, create_order, services, test_actor_id):
        outsourced = create_order(bom=[stocked_entry("ITEM-OAK"), outsourced_entry("Seat cushion")])
        stocked_only = create_order(bom=[stocked_entry("ITEM-OAK")])

        result = services.bulk.bulk_generate_procurement(
            [outsourced.id, stocked_only.id], actor_id=test_actor_id,
        )

        assert [r.details["total_requirements"] for r in result.results] == [1, 0]
        assert result.success_count == 2

    def test_repeat_creates_nothing(self, create_order, services, test_actor_id):
        order = create_order(bom=[outsourced_entry("Seat cushion")])
        services.bulk.bulk_generate_procurement([order.id], actor_id=test_actor_id)

        again = services.bulk.bulk_generate_procurement([order.id], actor_id=test_actor_id)

        assert again.results[0].details["total_requirements"] == 0
        assert len(services.requirements.list_requirements(mo_id=order.id)) == 1
