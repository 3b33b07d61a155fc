"""Order lines, totals, and the fulfillment state machine."""

import uuid
from decimal import Decimal

import pytest

from core.errors import ConcurrentModificationError, InsufficientStockError, NotFoundError, ValidationError
from services import orders
from services.ledger import list_movements
from services.movements import submit_movement
from services.orders import (
    OrderKind,
    OrderStatus,
    add_line,
    can_transition,
    cancel,
    create_order,
    fulfill,
    get_order,
    list_orders,
    remove_line,
)
from services.stock import get_stock_level


async def _sales_order(db, refs, stock_in, lines):
    for product, qty in lines:
        await stock_in(product, refs.wh1, qty + 5)
    order = await create_order(db, kind="SALES", warehouse_id=refs.wh1.id)
    for product, qty in lines:
        await add_line(db, order_id=order.id, product_id=product.id, quantity=qty, unit_price="10.00")
    return order


class TestTransitionTable:
    def test_open_reaches_fulfilled_or_cancelled(self):
        assert can_transition(OrderKind.PURCHASE, OrderStatus.OPEN, OrderStatus.RECEIVED)
        assert can_transition(OrderKind.SALES, OrderStatus.OPEN, OrderStatus.COMPLETED)
        assert can_transition("SALES", "OPEN", "CANCELLED")

    def test_kind_decides_the_fulfilled_status(self):
        assert not can_transition(OrderKind.PURCHASE, OrderStatus.OPEN, OrderStatus.COMPLETED)
        assert not can_transition(OrderKind.SALES, OrderStatus.OPEN, OrderStatus.RECEIVED)

    @pytest.mark.parametrize("terminal", ["RECEIVED", "CANCELLED"])
    def test_terminal_states_have_no_exits(self, terminal):
        for target in OrderStatus:
            assert not can_transition("PURCHASE", terminal, target)


class TestOrderLines:
    async def test_create_starts_open_with_zero_totals(self, db, refs):
        order = await create_order(db, kind="purchase", warehouse_id=refs.wh1.id)
        assert order.status == "OPEN"
        assert order.kind == "PURCHASE"
        assert order.currency == "MXN"
        assert order.total == Decimal("0")

    async def test_counterparty_is_optional_and_filterable(self, db, refs):
        bought = await create_order(db, kind="PURCHASE", warehouse_id=refs.wh1.id, counterparty="  ACME Supplies ")
        await create_order(db, kind="SALES", warehouse_id=refs.wh1.id)
        assert bought.counterparty == "ACME Supplies"

        found = await list_orders(db, counterparty="ACME Supplies")
        assert [o.id for o in found] == [bought.id]
        assert len(await list_orders(db)) == 2

    async def test_unknown_warehouse(self, db, refs):
        with pytest.raises(ValidationError):
            await create_order(db, kind="SALES", warehouse_id=uuid.uuid4())

    async def test_totals_recomputed_from_all_lines(self, db, refs):
        order = await create_order(db, kind="PURCHASE", warehouse_id=refs.wh1.id)
        await add_line(db, order_id=order.id, product_id=refs.p1.id, quantity=3, unit_price="10.00", tax_rate="0.16")
        line = await add_line(db, order_id=order.id, product_id=refs.p2.id, quantity=2, unit_price="2.50")

        order = await get_order(db, order.id)
        assert order.subtotal == Decimal("35.00")
        assert order.tax == Decimal("4.80")
        assert order.total == Decimal("39.80")
        assert [ln.position for ln in order.lines] == [0, 1]

        order = await remove_line(db, order_id=order.id, line_id=line.id)
        assert order.subtotal == Decimal("30.00")
        assert order.total == Decimal("34.80")
        assert len(order.lines) == 1

    async def test_sales_line_reserves_and_removal_releases(self, db, refs, stock_in):
        await stock_in(refs.p1, refs.wh1, 10)
        order = await create_order(db, kind="SALES", warehouse_id=refs.wh1.id)
        line = await add_line(db, order_id=order.id, product_id=refs.p1.id, quantity=6)
        assert (await get_stock_level(db, refs.p1.id, refs.wh1.id)).reserved_quantity == 6

        await remove_line(db, order_id=order.id, line_id=line.id)
        assert (await get_stock_level(db, refs.p1.id, refs.wh1.id)).reserved_quantity == 0

    async def test_sales_line_beyond_availability_is_not_added(self, db, refs, stock_in):
        await stock_in(refs.p1, refs.wh1, 4)
        order = await create_order(db, kind="SALES", warehouse_id=refs.wh1.id)
        order_id = order.id
        with pytest.raises(InsufficientStockError):
            await add_line(db, order_id=order_id, product_id=refs.p1.id, quantity=5)
        assert (await get_order(db, order_id)).lines == []

    async def test_purchase_line_needs_no_stock(self, db, refs):
        order = await create_order(db, kind="PURCHASE", warehouse_id=refs.wh1.id)
        await add_line(db, order_id=order.id, product_id=refs.p1.id, quantity=50)
        assert await get_stock_level(db, refs.p1.id, refs.wh1.id) is None

    async def test_product_can_appear_once_per_order(self, db, refs):
        order = await create_order(db, kind="PURCHASE", warehouse_id=refs.wh1.id)
        await add_line(db, order_id=order.id, product_id=refs.p1.id, quantity=1)
        with pytest.raises(ValidationError):
            await add_line(db, order_id=order.id, product_id=refs.p1.id, quantity=1)

    async def test_invalid_line_values(self, db, refs):
        order = await create_order(db, kind="PURCHASE", warehouse_id=refs.wh1.id)
        order_id = order.id
        with pytest.raises(ValidationError):
            await add_line(db, order_id=order_id, product_id=refs.p1.id, quantity=0)
        with pytest.raises(ValidationError):
            await add_line(db, order_id=order_id, product_id=refs.p1.id, quantity=1, unit_price="-1")
        with pytest.raises(ValidationError):
            await add_line(db, order_id=order_id, product_id=refs.p1.id, quantity=1, tax_rate="1.5")

    async def test_unknown_order_and_line(self, db, refs):
        with pytest.raises(NotFoundError):
            await get_order(db, uuid.uuid4())
        order = await create_order(db, kind="PURCHASE", warehouse_id=refs.wh1.id)
        with pytest.raises(NotFoundError):
            await remove_line(db, order_id=order.id, line_id=uuid.uuid4())


class TestFulfillPurchase:
    async def test_receive_emits_in_movements(self, db, refs):
        order = await create_order(db, kind="PURCHASE", warehouse_id=refs.wh1.id)
        await add_line(db, order_id=order.id, product_id=refs.p1.id, quantity=3)
        await add_line(db, order_id=order.id, product_id=refs.p2.id, quantity=4)

        order = await fulfill(db, order.id)
        assert order.status == "RECEIVED"
        assert order.fulfilled_at is not None

        mvs = await list_movements(db, reference_id=order.id)
        assert sorted((m.movement_type, m.reason_code, m.quantity) for m in mvs) == [
            ("IN", "PURCHASE", 3),
            ("IN", "PURCHASE", 4),
        ]
        assert {m.reference_table for m in mvs} == {"PURCHASE"}
        assert (await get_stock_level(db, refs.p1.id, refs.wh1.id)).quantity == 3

    async def test_order_without_lines_cannot_be_fulfilled(self, db, refs):
        order = await create_order(db, kind="PURCHASE", warehouse_id=refs.wh1.id)
        order_id = order.id
        with pytest.raises(ValidationError):
            await fulfill(db, order_id)
        assert (await get_order(db, order_id)).status == "OPEN"

    async def test_stock_rows_are_locked_before_any_movement(self, db, refs, monkeypatch):
        order = await create_order(db, kind="PURCHASE", warehouse_id=refs.wh1.id)
        await add_line(db, order_id=order.id, product_id=refs.p1.id, quantity=3)
        await add_line(db, order_id=order.id, product_id=refs.p2.id, quantity=4)

        calls = []
        real_lock, real_append = orders.lock_stock_rows, orders.append_movement

        async def recording_lock(session, pairs):
            pairs = list(pairs)
            calls.append(("lock", sorted(pairs)))
            return await real_lock(session, pairs)

        async def recording_append(session, **kwargs):
            calls.append(("append", kwargs["product_id"]))
            return await real_append(session, **kwargs)

        monkeypatch.setattr(orders, "lock_stock_rows", recording_lock)
        monkeypatch.setattr(orders, "append_movement", recording_append)

        await fulfill(db, order.id)
        assert calls[0] == ("lock", sorted([(refs.p1.id, refs.wh1.id), (refs.p2.id, refs.wh1.id)]))
        assert [c[0] for c in calls[1:]] == ["append", "append"]


class TestFulfillSales:
    async def test_deliver_emits_out_movements_and_releases(self, db, refs, stock_in):
        order = await _sales_order(db, refs, stock_in, [(refs.p1, 2), (refs.p2, 3)])

        order = await fulfill(db, order.id)
        assert order.status == "COMPLETED"

        mvs = await list_movements(db, reference_id=order.id)
        assert sorted((m.movement_type, m.reason_code, m.quantity) for m in mvs) == [
            ("OUT", "SALE", 2),
            ("OUT", "SALE", 3),
        ]
        s1 = await get_stock_level(db, refs.p1.id, refs.wh1.id)
        s2 = await get_stock_level(db, refs.p2.id, refs.wh1.id)
        assert (s1.quantity, s1.reserved_quantity) == (5, 0)
        assert (s2.quantity, s2.reserved_quantity) == (5, 0)

    async def test_second_fulfill_fails_and_emits_nothing(self, db, refs, stock_in):
        order = await _sales_order(db, refs, stock_in, [(refs.p1, 2), (refs.p2, 3)])
        order_id = order.id
        await fulfill(db, order_id)

        with pytest.raises(ConcurrentModificationError):
            await fulfill(db, order_id)
        assert len(await list_movements(db, reference_id=order_id)) == 2
        assert (await get_stock_level(db, refs.p1.id, refs.wh1.id)).quantity == 5

    async def test_racing_fulfill_loses_at_compare_and_set(self, db, refs, stock_in, session_maker, monkeypatch):
        """Both requests read the order as OPEN; only the first status update wins."""
        order = await _sales_order(db, refs, stock_in, [(refs.p1, 2), (refs.p2, 3)])

        real_lock_stock_rows = orders.lock_stock_rows
        state = {"raced": False}

        async def let_other_request_win(session, *args, **kwargs):
            # Runs inside the losing request after its OPEN check, before it writes.
            if not state["raced"]:
                state["raced"] = True
                async with session_maker() as other:
                    await fulfill(other, order.id)
            return await real_lock_stock_rows(session, *args, **kwargs)

        monkeypatch.setattr(orders, "lock_stock_rows", let_other_request_win)

        async with session_maker() as loser:
            with pytest.raises(ConcurrentModificationError):
                await fulfill(loser, order.id)

        assert state["raced"]
        assert (await get_order(db, order.id)).status == "COMPLETED"
        assert len(await list_movements(db, reference_id=order.id)) == 2
        s1 = await get_stock_level(db, refs.p1.id, refs.wh1.id)
        assert (s1.quantity, s1.reserved_quantity) == (5, 0)

    async def test_shortfall_aborts_everything(self, db, refs, stock_in):
        order = await _sales_order(db, refs, stock_in, [(refs.p1, 2), (refs.p2, 3)])
        # A count finds fewer units than were reserved.
        await submit_movement(
            db,
            product_id=refs.p2.id,
            warehouse_id=refs.wh1.id,
            movement_type="ADJUSTMENT",
            quantity=1,
            reason_code="COUNT",
        )

        order_id = order.id
        with pytest.raises(InsufficientStockError) as exc:
            await fulfill(db, order_id)
        assert (exc.value.available, exc.value.requested) == (1, 3)

        assert (await get_order(db, order_id)).status == "OPEN"
        assert await list_movements(db, reference_id=order_id) == []
        assert (await get_stock_level(db, refs.p1.id, refs.wh1.id)).quantity == 7

    async def test_lines_are_frozen_after_fulfillment(self, db, refs, stock_in):
        order = await _sales_order(db, refs, stock_in, [(refs.p1, 2)])
        order = await fulfill(db, order.id)
        order_id, line_id = order.id, order.lines[0].id
        with pytest.raises(ValidationError):
            await add_line(db, order_id=order_id, product_id=refs.p2.id, quantity=1)
        with pytest.raises(ValidationError):
            await remove_line(db, order_id=order_id, line_id=line_id)


class TestCancel:
    async def test_cancel_releases_reservations_without_movements(self, db, refs, stock_in):
        order = await _sales_order(db, refs, stock_in, [(refs.p1, 2)])
        order = await cancel(db, order.id)
        assert order.status == "CANCELLED"
        assert order.cancelled_at is not None
        assert await list_movements(db, reference_id=order.id) == []
        assert (await get_stock_level(db, refs.p1.id, refs.wh1.id)).reserved_quantity == 0

    async def test_cancelled_order_cannot_be_fulfilled(self, db, refs, stock_in):
        order = await _sales_order(db, refs, stock_in, [(refs.p1, 2)])
        await cancel(db, order.id)
        with pytest.raises(ConcurrentModificationError):
            await fulfill(db, order.id)

    async def test_fulfilled_order_cannot_be_cancelled(self, db, refs):
        order = await create_order(db, kind="PURCHASE", warehouse_id=refs.wh1.id)
        await add_line(db, order_id=order.id, product_id=refs.p1.id, quantity=1)
        await fulfill(db, order.id)
        with pytest.raises(ConcurrentModificationError):
            await cancel(db, order.id)
