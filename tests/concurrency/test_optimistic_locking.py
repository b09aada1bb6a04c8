"""
Tests for optimistic locking on versioned aggregates.

A write committed by another transaction after an entity was read makes the
stale writer fail with OptimisticLockError, leaving no partial write.
"""

from decimal import Decimal

import pytest
from sqlalchemy import update

from mfg_kernel.db.engine import get_session
from mfg_kernel.exceptions import OptimisticLockError
from mfg_modules.manufacturing.models import MOPriority
from mfg_modules.manufacturing.orm import ManufacturingOrderModel
from mfg_modules.procurement.orm import PurchaseOrderModel


def bump_in_other_transaction(model, entity_id, version: int) -> None:
    other = get_session()
    try:
        other.execute(
            update(model)
            .where(model.id == entity_id)
            .values(version=version)
            .execution_options(synchronize_session=False)
        )
        other.commit()
    finally:
        other.close()


class TestOptimisticLocking:
    """Stale writers lose."""

    def test_version_increments_on_each_write(self, services, create_order, test_actor_id):
        order = create_order()
        assert order.version == 1

        updated = services.manufacturing.update_priority(
            order.id, MOPriority.HIGH, actor_id=test_actor_id,
        )

        assert updated.version == 2

    def test_stale_order_write_fails(self, services, create_order, test_actor_id, events):
        order = create_order()
        bump_in_other_transaction(ManufacturingOrderModel, order.id, 5)
        events.clear()

        with pytest.raises(OptimisticLockError) as exc_info:
            services.manufacturing.update_priority(
                order.id, MOPriority.URGENT, actor_id=test_actor_id,
            )

        assert exc_info.value.entity_type == "ManufacturingOrder"
        assert exc_info.value.entity_id == str(order.id)
        reloaded = services.manufacturing.get_order(order.id)
        assert reloaded.version == 5
        assert reloaded.priority == MOPriority.NORMAL
        assert events.events == []

    def test_retry_after_conflict_succeeds(self, services, create_order, test_actor_id):
        order = create_order()
        bump_in_other_transaction(ManufacturingOrderModel, order.id, 5)
        with pytest.raises(OptimisticLockError):
            services.manufacturing.update_priority(order.id, MOPriority.LOW, actor_id=test_actor_id)

        cancelled = services.manufacturing.cancel(order.id, "Client withdrew", actor_id=test_actor_id)

        assert cancelled.order.version == 6

    def test_stale_purchase_order_write_fails(self, services, create_po, test_actor_id):
        po = create_po()
        bump_in_other_transaction(PurchaseOrderModel, po.id, 3)

        with pytest.raises(OptimisticLockError):
            services.purchase_orders.submit_for_approval(po.id, actor_id=test_actor_id)

        reloaded = services.purchase_orders.get_purchase_order(po.id)
        assert reloaded.status.value == "draft"
        assert reloaded.approvals == ()
        assert reloaded.totals.grand_total == Decimal("2000.00")
