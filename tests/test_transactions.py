from datetime import date, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import AddedBy, TransactionKind, VendorType
from periods import Period, local_today
from schemas import CategoryIn, TagIn, TransactionIn, TransactionUpdate, VendorIn
from services import (
    CategoryService,
    NotFoundError,
    TagService,
    TransactionFilters,
    TransactionService,
    VendorService,
    validate_transaction_date,
)

ALL_TIME = Period("all", None, None)


def _days_ago(days: int) -> date:
    return local_today() - timedelta(days=days)


def test_create_applies_defaults_and_tags() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        tag = TagService(session).create(TagIn(name="Weekly", color="#123456"))
        txn = TransactionService(session).create(
            TransactionIn(
                date=_days_ago(2),
                amount_cents=2599,
                comment="  groceries ",
                tag_ids=[tag.id, tag.id],
            )
        )

        assert txn.kind == TransactionKind.expense
        assert txn.paid_by_card is True
        assert txn.added_by == AddedBy.he
        assert txn.comment == "groceries"
        assert [t.name for t in txn.tags] == ["Weekly"]


def test_create_rejects_future_and_ancient_dates() -> None:
    today = date(2025, 6, 15)
    with pytest.raises(ValueError, match="future"):
        validate_transaction_date(date(2025, 6, 16), today=today)
    with pytest.raises(ValueError, match="10 years"):
        validate_transaction_date(date(2015, 6, 14), today=today)
    validate_transaction_date(date(2015, 6, 15), today=today)
    # leap day rolls back to Feb 28
    validate_transaction_date(date(2014, 2, 28), today=date(2024, 2, 29))

    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        with pytest.raises(ValueError, match="future"):
            TransactionService(session).create(
                TransactionIn(date=local_today() + timedelta(days=2), amount_cents=100)
            )


def test_create_rejects_unknown_references() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = TransactionService(session)
        with pytest.raises(ValueError, match="Category 42 not found"):
            service.create(
                TransactionIn(date=_days_ago(1), amount_cents=100, category_id=42)
            )
        with pytest.raises(ValueError, match="Tag 7 not found"):
            service.create(TransactionIn(date=_days_ago(1), amount_cents=100, tag_ids=[7]))
        assert service.list(ALL_TIME) == []


def test_partial_update_only_touches_given_fields() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        category = CategoryService(session).create(CategoryIn(name="Food", color="#00AA00"))
        tag = TagService(session).create(TagIn(name="Shared", color="#AA0000"))
        service = TransactionService(session)
        txn = service.create(
            TransactionIn(
                date=_days_ago(4),
                amount_cents=1500,
                category_id=category.id,
                comment="Bakery",
                tag_ids=[tag.id],
            )
        )

        updated = service.update(txn.id, TransactionUpdate(amount_cents=1750))
        assert updated.amount_cents == 1750
        assert updated.category.name == "Food"
        assert updated.comment == "Bakery"
        assert [t.name for t in updated.tags] == ["Shared"]

        cleared = service.update(
            txn.id,
            TransactionUpdate.model_validate(
                {"category_id": None, "comment": None, "tag_ids": []}
            ),
        )
        assert cleared.category is None
        assert cleared.comment is None
        assert cleared.tags == []
        assert cleared.amount_cents == 1750

        with pytest.raises(ValueError, match="amount_cents cannot be empty"):
            service.update(
                txn.id, TransactionUpdate.model_validate({"amount_cents": None})
            )


def test_delete_removes_transaction() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = TransactionService(session)
        txn = service.create(TransactionIn(date=_days_ago(1), amount_cents=300))

        service.delete(txn.id)

        with pytest.raises(NotFoundError):
            service.get(txn.id)
        with pytest.raises(NotFoundError):
            service.delete(txn.id)


def test_in_range_bounds_are_inclusive_and_optional() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = TransactionService(session)
        for days, amount in ((30, 100), (20, 200), (10, 300), (10, 350)):
            service.create(TransactionIn(date=_days_ago(days), amount_cents=amount))

        assert [t.amount_cents for t in service.in_range()] == [100, 200, 300, 350]
        assert [
            t.amount_cents for t in service.in_range(_days_ago(20), _days_ago(10))
        ] == [200, 300, 350]
        assert [t.amount_cents for t in service.in_range(start=_days_ago(15))] == [
            300,
            350,
        ]
        assert [t.amount_cents for t in service.in_range(end=_days_ago(30))] == [100]


def test_list_filters_and_newest_first() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        vendor = VendorService(session).create(
            VendorIn(name="Kaufland", type=VendorType.food_store)
        )
        tag = TagService(session).create(TagIn(name="Party", color="#FFAA00"))
        service = TransactionService(session)
        older = service.create(
            TransactionIn(date=_days_ago(9), amount_cents=1000, vendor_id=vendor.id)
        )
        newer = service.create(
            TransactionIn(
                date=_days_ago(3),
                amount_cents=2000,
                paid_by_card=False,
                added_by=AddedBy.she,
                tag_ids=[tag.id],
            )
        )
        refund = service.create(
            TransactionIn(date=_days_ago(1), amount_cents=500, kind=TransactionKind.income)
        )

        assert [t.id for t in service.list(ALL_TIME)] == [refund.id, newer.id, older.id]
        assert [
            t.id for t in service.list(ALL_TIME, TransactionFilters(vendor_id=vendor.id))
        ] == [older.id]
        assert [
            t.id for t in service.list(ALL_TIME, TransactionFilters(paid_by_card=False))
        ] == [newer.id]
        assert [
            t.id for t in service.list(ALL_TIME, TransactionFilters(tag_id=tag.id))
        ] == [newer.id]
        assert [
            t.id for t in service.list(ALL_TIME, TransactionFilters(added_by=AddedBy.she))
        ] == [newer.id]
        assert [
            t.id
            for t in service.list(ALL_TIME, TransactionFilters(kind=TransactionKind.income))
        ] == [refund.id]


def test_earnings_follow_salary_vendors() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        employer = VendorService(session).create(
            VendorIn(name="Moka", type=VendorType.salary)
        )
        shop = VendorService(session).create(VendorIn(name="DM", type=VendorType.household))
        service = TransactionService(session)
        pay = service.create(
            TransactionIn(date=_days_ago(5), amount_cents=300000, vendor_id=employer.id)
        )
        spend = service.create(
            TransactionIn(date=_days_ago(4), amount_cents=1200, vendor_id=shop.id)
        )
        loose = service.create(TransactionIn(date=_days_ago(3), amount_cents=800))

        assert [t.id for t in service.earnings(ALL_TIME)] == [pay.id]
        assert [t.id for t in service.actual_expenses(ALL_TIME)] == [spend.id, loose.id]


def test_tag_assignment_roundtrip() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        tags = TagService(session)
        beta = tags.create(TagIn(name="Beta", color="#000001"))
        alpha = tags.create(TagIn(name="Alpha", color="#000002"))
        service = TransactionService(session)
        txn = service.create(TransactionIn(date=_days_ago(1), amount_cents=100))

        service.add_tag(txn.id, beta.id)
        service.add_tag(txn.id, alpha.id)
        assert [t.name for t in service.tags_for(txn.id)] == ["Alpha", "Beta"]

        with pytest.raises(ValueError, match="already assigned"):
            service.add_tag(txn.id, beta.id)
        with pytest.raises(NotFoundError):
            service.add_tag(txn.id, 999)

        service.remove_tag(txn.id, beta.id)
        assert [t.name for t in service.tags_for(txn.id)] == ["Alpha"]
        with pytest.raises(NotFoundError):
            service.remove_tag(txn.id, beta.id)
