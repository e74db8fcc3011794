# Allocation lifecycle: allocate, edit, delete and their ledger effects.

import random
from datetime import timedelta

import pytest

from salesdesk.models import ALLOCATION_STATUS_ALLOCATED, ALLOCATION_STATUS_SOLD
from salesdesk.services import allocation_service, end_of_day_service, item_service, salesperson_service
from salesdesk.time_utils import utcnow
from salesdesk.validation import (
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)


pytestmark = pytest.mark.allocations


def _stock(item):
    return item_service.get_item(item.id).stock


def _allocated(person):
    return salesperson_service.get_salesperson(person.id).items_allocated


class TestAllocate:
    @pytest.mark.smoke
    def test_allocate_moves_stock_to_salesperson(self, make_item, make_salesperson, make_allocation):
        """
        SCENARIO: 20 of 50 units handed to a salesperson
        EXPECTED: stock 30, itemsAllocated 20, ALLOCATED row with snapshot
        """
        item = make_item(stock=50, price_cents=1000, name="Water")
        person = make_salesperson()

        allocation = make_allocation(person, item, 20)

        assert _stock(item) == 30
        assert _allocated(person) == 20
        assert allocation.status == ALLOCATION_STATUS_ALLOCATED
        assert allocation.sold_quantity == 0
        assert allocation.payment_received_cents == 0
        assert allocation.item_name == "Water"
        assert allocation.item_price_cents == 1000

    def test_insufficient_stock_changes_nothing(self, make_item, make_salesperson, make_allocation):
        item = make_item(stock=5)
        person = make_salesperson()

        with pytest.raises(InsufficientStockError) as exc:
            make_allocation(person, item, 6)

        assert exc.value.context["available"] == 5
        assert _stock(item) == 5
        assert _allocated(person) == 0
        assert allocation_service.list_allocations() == []

    def test_allocate_entire_stock(self, make_item, make_salesperson, make_allocation):
        item = make_item(stock=7)
        make_allocation(make_salesperson(), item, 7)
        assert _stock(item) == 0

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_non_positive_quantity(self, make_item, make_salesperson, make_allocation, quantity):
        with pytest.raises(ValidationError):
            make_allocation(make_salesperson(), make_item(), quantity)

    def test_unknown_references(self, make_item, make_salesperson):
        item = make_item()
        person = make_salesperson()
        with pytest.raises(NotFoundError):
            allocation_service.allocate(salesperson_id=999, item_id=item.id, quantity=1)
        with pytest.raises(NotFoundError):
            allocation_service.allocate(salesperson_id=person.id, item_id=999, quantity=1)
        assert _stock(item) == 50

    def test_inactive_item_refused(self, make_item, make_salesperson, make_allocation):
        item = make_item()
        item_service.delete_item(item_id=item.id)
        with pytest.raises(InvalidStateError):
            make_allocation(make_salesperson(), item, 1)

    def test_future_date_refused(self, make_item, make_salesperson, make_allocation):
        with pytest.raises(ValidationError):
            make_allocation(
                make_salesperson(), make_item(), 1, allocation_date=utcnow() + timedelta(days=1)
            )

    def test_snapshot_survives_price_change(self, make_item, make_salesperson, make_allocation):
        item = make_item(price_cents=1000)
        allocation = make_allocation(make_salesperson(), item, 2)

        item_service.update_item(item_id=item.id, patch={"price_cents": 1200})

        assert allocation_service.get_allocation(allocation.id).item_price_cents == 1000


class TestEditQuantity:
    def test_increase_draws_more_stock(self, make_item, make_salesperson, make_allocation):
        item = make_item(stock=50)
        person = make_salesperson()
        allocation = make_allocation(person, item, 20)

        allocation_service.edit_quantity(allocation_id=allocation.id, new_quantity=25)

        assert _stock(item) == 25
        assert _allocated(person) == 25

    def test_decrease_returns_stock(self, make_item, make_salesperson, make_allocation):
        item = make_item(stock=50)
        person = make_salesperson()
        allocation = make_allocation(person, item, 20)

        allocation_service.edit_quantity(allocation_id=allocation.id, new_quantity=12)

        assert _stock(item) == 38
        assert _allocated(person) == 12

    def test_increase_beyond_stock_is_refused(self, make_item, make_salesperson, make_allocation):
        item = make_item(stock=10)
        person = make_salesperson()
        allocation = make_allocation(person, item, 8)

        with pytest.raises(InsufficientStockError):
            allocation_service.edit_quantity(allocation_id=allocation.id, new_quantity=11)

        assert allocation_service.get_allocation(allocation.id).quantity == 8
        assert _stock(item) == 2
        assert _allocated(person) == 8

    def test_decrease_clamps_staged_sold_quantity(self, make_item, make_salesperson, make_allocation):
        """
        SCENARIO: staged soldQuantity 15, quantity edited down to 10
        EXPECTED: soldQuantity clamped to 10, staged payment reset to 10 x price
        """
        item = make_item(stock=50, price_cents=1000)
        allocation = make_allocation(make_salesperson(), item, 20)
        allocation_service.update_allocation(
            allocation_id=allocation.id, sold_quantity=15, payment_received_cents=14000
        )

        allocation_service.edit_quantity(allocation_id=allocation.id, new_quantity=10)

        allocation = allocation_service.get_allocation(allocation.id)
        assert allocation.quantity == 10
        assert allocation.sold_quantity == 10
        assert allocation.payment_received_cents == 10000
        assert allocation.status == ALLOCATION_STATUS_ALLOCATED

    def test_settled_allocation_is_frozen(self, make_item, make_salesperson, make_allocation):
        person = make_salesperson()
        allocation = make_allocation(person, make_item(), 5)
        end_of_day_service.settle_allocation(
            salesperson_id=person.id, allocation_id=allocation.id,
            sold_quantity=5, payment_received_cents=5000,
        )

        with pytest.raises(InvalidStateError):
            allocation_service.edit_quantity(allocation_id=allocation.id, new_quantity=3)


class TestUpdateAllocation:
    def test_status_cannot_be_set_to_sold(self, make_item, make_salesperson, make_allocation):
        allocation = make_allocation(make_salesperson(), make_item(), 5)
        with pytest.raises(InvalidStateError):
            allocation_service.update_allocation(allocation_id=allocation.id, status=ALLOCATION_STATUS_SOLD)

    def test_staged_sold_over_quantity_rejected(self, make_item, make_salesperson, make_allocation):
        allocation = make_allocation(make_salesperson(), make_item(), 5)
        with pytest.raises(ValidationError):
            allocation_service.update_allocation(allocation_id=allocation.id, sold_quantity=6)

    def test_quantity_and_staged_sold_together(self, make_item, make_salesperson, make_allocation):
        item = make_item(stock=50)
        allocation = make_allocation(make_salesperson(), item, 5)

        updated = allocation_service.update_allocation(
            allocation_id=allocation.id, quantity=10, sold_quantity=8
        )

        assert updated.quantity == 10
        assert updated.sold_quantity == 8
        assert _stock(item) == 40


class TestDeleteAllocation:
    def test_delete_outstanding_restores_ledgers(self, make_item, make_salesperson, make_allocation):
        item = make_item(stock=50)
        person = make_salesperson()
        allocation = make_allocation(person, item, 20)

        summary = allocation_service.delete_allocation(allocation_id=allocation.id)

        assert summary["stockReturned"] == 20
        assert _stock(item) == 50
        assert _allocated(person) == 0
        with pytest.raises(NotFoundError):
            allocation_service.get_allocation(allocation.id)

    def test_delete_settled_reverses_settlement(self, make_item, make_salesperson, make_allocation):
        item = make_item(stock=50)
        person = make_salesperson()
        allocation = make_allocation(person, item, 20)
        end_of_day_service.settle_allocation(
            salesperson_id=person.id, allocation_id=allocation.id,
            sold_quantity=15, payment_received_cents=15000,
        )

        summary = allocation_service.delete_allocation(allocation_id=allocation.id)

        assert summary["settlementReversed"] is True
        assert _stock(item) == 50
        person = salesperson_service.get_salesperson(person.id)
        assert person.total_sales_cents == 0
        assert person.items_allocated == 0

    def test_delete_settled_without_reversal(self, app, make_item, make_salesperson, make_allocation):
        app.config["ALLOCATION_DELETE_REVERSES_SETTLEMENT"] = False
        item = make_item(stock=50)
        person = make_salesperson()
        allocation = make_allocation(person, item, 20)
        end_of_day_service.settle_allocation(
            salesperson_id=person.id, allocation_id=allocation.id,
            sold_quantity=15, payment_received_cents=15000,
        )

        summary = allocation_service.delete_allocation(allocation_id=allocation.id)

        assert summary["settlementReversed"] is False
        assert _stock(item) == 35
        assert salesperson_service.get_salesperson(person.id).total_sales_cents == 15000

    def test_reversals_in_any_order_return_total_to_zero(self, make_item, make_salesperson, make_allocation):
        """
        SCENARIO: six settlements with 2-decimal payments, deleted in shuffled order
        EXPECTED: every reversal is accepted and totalSales ends at exactly 0
        """
        item = make_item(stock=50, price_cents=100)
        person = make_salesperson()
        payments = [0.27, 0.13, 0.63, 0.04, 0.5, 0.56]
        allocations = [make_allocation(person, item, 1) for _ in payments]
        end_of_day_service.process_end_of_day(
            salesperson_id=person.id,
            entries=[
                {"allocationId": a.id, "soldQuantity": 1, "paymentReceived": p}
                for a, p in zip(allocations, payments)
            ],
        )
        assert salesperson_service.get_salesperson(person.id).total_sales_cents == 213

        ids = [a.id for a in allocations]
        random.Random(7).shuffle(ids)
        for allocation_id in ids:
            allocation_service.delete_allocation(allocation_id=allocation_id)

        person = salesperson_service.get_salesperson(person.id)
        assert person.total_sales_cents == 0
        assert person.to_dict()["totalSales"] == 0.0
        assert _stock(item) == 50


def test_list_filters(make_item, make_salesperson, make_allocation):
    a, b = make_salesperson(), make_salesperson()
    water, chips = make_item(), make_item()
    first = make_allocation(a, water, 1)
    make_allocation(a, chips, 1)
    make_allocation(b, water, 1)

    assert len(allocation_service.list_allocations(salesperson_id=a.id)) == 2
    assert len(allocation_service.list_allocations(item_id=water.id)) == 2
    assert allocation_service.list_allocations(salesperson_id=a.id, item_id=water.id) == [first]
    with pytest.raises(ValidationError):
        allocation_service.list_allocations(status="LOST")


def _assert_ledgers_balance(item, people, initial_stock, step):
    """stock + units out + units sold == initial stock; each salesperson matches their rows."""
    stock = _stock(item)
    allocations = allocation_service.list_allocations(item_id=item.id)
    outstanding = [a for a in allocations if a.status == ALLOCATION_STATUS_ALLOCATED]
    settled = [a for a in allocations if a.status != ALLOCATION_STATUS_ALLOCATED]

    assert stock >= 0, f"step {step}: stock went negative ({stock})"
    assert stock + sum(a.quantity for a in outstanding) + sum(a.sold_quantity for a in settled) == initial_stock, (
        f"step {step}: units do not balance"
    )
    for person in people:
        current = salesperson_service.get_salesperson(person.id)
        assert current.items_allocated == sum(
            a.quantity for a in outstanding if a.salesperson_id == person.id
        ), f"step {step}: itemsAllocated drifted for salesperson {person.id}"
        assert current.total_sales_cents == sum(
            a.payment_received_cents for a in settled if a.salesperson_id == person.id
        ), f"step {step}: totalSales drifted for salesperson {person.id}"


def test_random_operation_sequence_keeps_ledgers_consistent(make_item, make_salesperson, make_allocation):
    """
    SCENARIO: 200 seeded allocate / edit / settle / delete operations on one item
    EXPECTED: stock never negative, and units and cash balance after every step
    """
    rng = random.Random(20261019)
    item = make_item(stock=100, price_cents=125)
    people = [make_salesperson(), make_salesperson()]

    for step in range(200):
        allocations = allocation_service.list_allocations(item_id=item.id)
        outstanding = [a for a in allocations if a.status == ALLOCATION_STATUS_ALLOCATED]
        action = rng.choice(("allocate", "allocate", "edit", "settle", "delete"))

        try:
            if action == "allocate" or not allocations:
                make_allocation(rng.choice(people), item, rng.randint(1, 30))
            elif action == "edit" and outstanding:
                allocation_service.edit_quantity(
                    allocation_id=rng.choice(outstanding).id, new_quantity=rng.randint(1, 40)
                )
            elif action == "settle" and outstanding:
                target = rng.choice(outstanding)
                end_of_day_service.settle_allocation(
                    salesperson_id=target.salesperson_id,
                    allocation_id=target.id,
                    sold_quantity=rng.randint(0, target.quantity),
                    payment_received_cents=rng.randint(0, 5000),
                )
            elif action == "delete":
                allocation_service.delete_allocation(allocation_id=rng.choice(allocations).id)
        except InsufficientStockError:
            pass

        _assert_ledgers_balance(item, people, 100, step)
