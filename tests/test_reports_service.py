from datetime import date, timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import VendorType
from periods import Period, local_today
from reporting import Granularity, GroupKey, ReportScope, Totals
from schemas import CategoryIn, TransactionIn, VendorIn
from services import CategoryService, ReportService, TransactionService, VendorService


def _days_ago(days: int) -> date:
    return local_today() - timedelta(days=days)


def _seed(session: Session) -> None:
    vendors = VendorService(session)
    salary = vendors.create(VendorIn(name="Careem", type=VendorType.salary))
    aldi = vendors.create(VendorIn(name="Aldi", type=VendorType.food_store))
    lidl = vendors.create(VendorIn(name="Lidl", type=VendorType.food_store))
    rent = vendors.create(VendorIn(name="Flat Rent", type=VendorType.living))
    food = CategoryService(session).create(CategoryIn(name="Food", color="#22AA22"))

    txns = TransactionService(session)
    txns.create(TransactionIn(date=_days_ago(40), amount_cents=500000, vendor_id=salary.id))
    txns.create(TransactionIn(date=_days_ago(20), amount_cents=200000, vendor_id=salary.id))
    txns.create(
        TransactionIn(
            date=_days_ago(15), amount_cents=4000, vendor_id=aldi.id, category_id=food.id
        )
    )
    txns.create(
        TransactionIn(
            date=_days_ago(12),
            amount_cents=6000,
            vendor_id=lidl.id,
            category_id=food.id,
            paid_by_card=False,
        )
    )
    txns.create(TransactionIn(date=_days_ago(10), amount_cents=90000, vendor_id=rent.id))
    txns.create(TransactionIn(date=_days_ago(5), amount_cents=1000, vendor_id=aldi.id))


def test_balance_summary_over_window() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        report = ReportService(session)

        everything = report.balance_summary(Period("all", None, None))
        assert everything.total_earnings_cents == 700000
        assert everything.total_expenses_cents == 101000
        assert everything.balance_cents == 599000
        assert everything.cash.amount_cents == 6000

        recent = report.balance_summary(Period("custom", _days_ago(20), _days_ago(10)))
        assert recent.total_earnings_cents == 200000
        assert recent.total_expenses_cents == 100000
        assert recent.savings_rate == 50.0


def test_insights_classify_spending() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)

        summary, insights = ReportService(session).insights(Period("all", None, None))

        assert summary.expenses_count == 4
        assert insights.average_expense_cents == 25250
        assert insights.spending_pattern == "high_value"
        assert insights.savings_health == "excellent"
        assert insights.payment_preference == "card"


def test_breakdown_by_key_and_scope() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        report = ReportService(session)
        period = Period("all", None, None)

        by_category = report.breakdown(period, by=GroupKey.category)
        assert by_category == {
            "Food": Totals(10000, 2),
            "Unknown": Totals(91000, 2),
        }

        earnings = report.breakdown(period, by=GroupKey.vendor, scope=ReportScope.earnings)
        assert earnings == {"Careem": Totals(700000, 2)}

        by_type = report.breakdown(period, by=GroupKey.vendor_type, scope=ReportScope.all)
        assert sum(t.amount_cents for t in by_type.values()) == 801000


def test_top_vendors_and_vendor_types() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        report = ReportService(session)
        period = Period("all", None, None)

        top = report.top_vendors(period, 2)
        assert top == [("Flat Rent", Totals(90000, 1)), ("Lidl", Totals(6000, 1))]

        groups = report.vendor_type_breakdown(period)
        assert [g.label for g in groups] == ["living", "food_store"]
        assert groups[1].vendors[0] == ("Lidl", Totals(6000, 1))
        assert groups[1].vendors[1] == ("Aldi", Totals(5000, 2))


def test_trend_buckets_expenses_by_day() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        report = ReportService(session)
        period = Period("all", None, None)

        daily = report.trend(period, Granularity.daily)
        assert daily == [
            (_days_ago(15).isoformat(), Totals(4000, 1)),
            (_days_ago(12).isoformat(), Totals(6000, 1)),
            (_days_ago(10).isoformat(), Totals(90000, 1)),
            (_days_ago(5).isoformat(), Totals(1000, 1)),
        ]

        earnings = report.trend(period, Granularity.monthly, ReportScope.earnings)
        assert sum(t.amount_cents for _, t in earnings) == 700000
        assert [label for label, _ in earnings] == sorted(label for label, _ in earnings)

        empty = report.trend(Period("custom", _days_ago(4), _days_ago(1)))
        assert empty == []
