# Reporting: aggregates over allocations by salesperson, item and day.

from datetime import datetime

import pytest

from salesdesk.services import end_of_day_service, reporting_service
from salesdesk.validation import NotFoundError, ValidationError


pytestmark = pytest.mark.reports

DAY_ONE = datetime(2024, 3, 1, 9, 30)
DAY_TWO = datetime(2024, 3, 2, 16, 0)


@pytest.fixture()
def sales_day(make_item, make_salesperson, make_allocation):
    """
    Ama: 20 water on day one, 15 sold for 150; 10 chips on day two, outstanding.
    Kofi: 5 water on day two, none sold.
    """
    water = make_item(name="Water", price_cents=1000, stock=100)
    chips = make_item(name="Chips", price_cents=400, stock=100)
    ama = make_salesperson(name="Ama")
    kofi = make_salesperson(name="Kofi")

    a1 = make_allocation(ama, water, 20, allocation_date=DAY_ONE)
    make_allocation(ama, chips, 10, allocation_date=DAY_TWO)
    k1 = make_allocation(kofi, water, 5, allocation_date=DAY_TWO)

    end_of_day_service.process_end_of_day(
        salesperson_id=ama.id,
        entries=[{"allocationId": a1.id, "soldQuantity": 15, "paymentReceived": 150}],
    )
    end_of_day_service.process_end_of_day(
        salesperson_id=kofi.id,
        entries=[{"allocationId": k1.id, "soldQuantity": 0, "paymentReceived": 0}],
    )
    return {"water": water, "chips": chips, "ama": ama, "kofi": kofi}


def test_salesperson_performance(sales_day):
    report = reporting_service.salesperson_performance()

    rows = {r["salespersonName"]: r for r in report["rows"]}
    ama = rows["Ama"]
    assert ama["totalAllocated"] == 30
    assert ama["totalSold"] == 15
    assert ama["totalReturned"] == 5
    assert ama["outstanding"] == 10
    assert ama["totalRevenue"] == 150.0
    assert ama["conversionRate"] == 50.0
    assert ama["statusCounts"] == {"ALLOCATED": 1, "SOLD": 1, "RETURNED": 0}

    assert rows["Kofi"]["totalReturned"] == 5
    assert rows["Kofi"]["conversionRate"] == 0.0
    assert report["totals"]["totalAllocated"] == 35


def test_salesperson_performance_date_filter(sales_day):
    report = reporting_service.salesperson_performance(start="2024-03-02", end="2024-03-02")

    rows = {r["salespersonName"]: r for r in report["rows"]}
    assert rows["Ama"]["totalAllocated"] == 10
    assert rows["Ama"]["totalSold"] == 0
    assert report["totals"]["totalAllocated"] == 15


def test_item_performance(sales_day):
    rows = {r["itemName"]: r for r in reporting_service.item_performance()["rows"]}

    assert rows["Water"]["totalAllocated"] == 25
    assert rows["Water"]["totalSold"] == 15
    assert rows["Water"]["expectedRevenue"] == 150.0
    assert rows["Chips"]["outstanding"] == 10


def test_daily_summary(sales_day):
    summary = reporting_service.daily_summary(day="2024-03-01")

    assert summary["date"] == "2024-03-01"
    assert summary["totalAllocated"] == 20
    assert summary["totalRevenue"] == 150.0
    assert [r["salespersonName"] for r in summary["bySalesperson"]] == ["Ama"]


def test_date_range_summary(sales_day):
    summary = reporting_service.date_range_summary(start="2024-03-01", end="2024-03-31")

    assert [d["date"] for d in summary["days"]] == ["2024-03-01", "2024-03-02"]
    assert summary["days"][1]["totalAllocated"] == 15
    assert summary["totals"]["totalSold"] == 15


def test_item_quantity_sold(sales_day):
    report = reporting_service.item_quantity_sold(item_id=sales_day["water"].id)

    assert report["quantitySold"] == 15
    by_person = {r["salespersonName"]: r for r in report["bySalesperson"]}
    assert by_person["Ama"]["quantitySold"] == 15
    assert by_person["Kofi"]["quantitySold"] == 0


def test_salesperson_revenue(sales_day):
    ama = sales_day["ama"]

    report = reporting_service.salesperson_revenue(salesperson_id=ama.id)
    assert report["salespersonName"] == "Ama"
    assert report["revenue"] == 150.0
    assert report["itemsSold"] == 15
    assert report["dateRange"] == {"startDate": None, "endDate": None}

    day_two = reporting_service.salesperson_revenue(
        salesperson_id=ama.id, start="2024-03-02", end="2024-03-02"
    )
    assert day_two["revenue"] == 0.0
    assert day_two["itemsSold"] == 0
    assert day_two["outstanding"] == 10


def test_dashboard_summary(sales_day):
    dashboard = reporting_service.dashboard_summary()

    assert dashboard["totalSales"] == 150.0
    assert dashboard["averageSalesPerSalesperson"] == 75.0
    assert dashboard["activeSalespeople"] == 2
    assert dashboard["outstandingAllocations"] == 1
    assert dashboard["outstandingUnits"] == 10


@pytest.mark.parametrize("start,end", [
    ("2024-03-05", "2024-03-01"),
    ("yesterday", None),
    (None, None),
])
def test_date_range_validation(app, start, end):
    with pytest.raises(ValidationError):
        reporting_service.date_range_summary(start=start, end=end)


def test_unknown_item(app):
    with pytest.raises(NotFoundError):
        reporting_service.item_quantity_sold(item_id=404)


def test_unknown_salesperson_revenue(app):
    with pytest.raises(NotFoundError):
        reporting_service.salesperson_revenue(salesperson_id=404)


def test_dashboard_average_rounds_to_whole_cents(make_item, make_salesperson, make_allocation):
    item = make_item(price_cents=100)
    people = [make_salesperson() for _ in range(3)]
    allocation = make_allocation(people[0], item, 1)
    end_of_day_service.process_end_of_day(
        salesperson_id=people[0].id,
        entries=[{"allocationId": allocation.id, "soldQuantity": 1, "paymentReceived": 1}],
    )

    dashboard = reporting_service.dashboard_summary()

    assert dashboard["totalSales"] == 1.0
    assert dashboard["averageSalesPerSalesperson"] == 0.33
