from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Optional

from rapidfuzz.distance import Levenshtein
from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, joinedload

from csv_utils import export_transactions, parse_csv
from models import (
    AddedBy,
    Category,
    Tag,
    Transaction,
    TransactionKind,
    Vendor,
    VendorType,
    transaction_tags,
)
from periods import Period, local_today
from reporting import (
    KEY_SELECTORS,
    BalanceSummary,
    Granularity,
    GroupKey,
    ReportScope,
    SpendingInsights,
    Totals,
    VendorTypeGroup,
    balance_summary,
    group_sums,
    select_scope,
    spending_insights,
    split_earnings,
    top_n,
    trend,
    vendor_key,
    vendor_type_breakdown,
)
from schemas import (
    CategoryIn,
    CategoryUpdate,
    TagIn,
    TagUpdate,
    TransactionIn,
    TransactionUpdate,
    VendorIn,
    VendorUpdate,
)

logger = logging.getLogger(__name__)

HEX_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")
DEFAULT_TAG_COLOR = "#9CA3AF"
MAX_TRANSACTION_AGE_YEARS = 10


class NotFoundError(ValueError):
    pass


def _clean_color(value: str, what: str) -> str:
    clean = (value or "").strip()
    if not clean:
        raise ValueError(f"{what} color cannot be empty")
    if not HEX_COLOR_RE.match(clean):
        raise ValueError(
            f"{what} color must be a valid hex color code (e.g., #FF0000)"
        )
    return clean


def _clean_name(value: str, what: str) -> str:
    clean = (value or "").strip()
    if not clean:
        raise ValueError(f"{what} name cannot be empty")
    return clean


def _years_before(d: date, years: int) -> date:
    try:
        return d.replace(year=d.year - years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return d.replace(year=d.year - years, day=28)


def validate_transaction_date(value: date, *, today: Optional[date] = None) -> None:
    today = today or local_today()
    if value > today:
        raise ValueError("Transaction date cannot be in the future")
    if value < _years_before(today, MAX_TRANSACTION_AGE_YEARS):
        raise ValueError(
            f"Transaction date cannot be more than {MAX_TRANSACTION_AGE_YEARS} years ago"
        )


class VendorService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self, vendor_type: Optional[VendorType] = None) -> list[Vendor]:
        stmt = select(Vendor).order_by(Vendor.type, Vendor.name)
        if vendor_type is not None:
            stmt = stmt.where(Vendor.type == vendor_type)
        return self.session.scalars(stmt).all()

    def get(self, vendor_id: int) -> Vendor:
        vendor = self.session.get(Vendor, vendor_id)
        if not vendor:
            raise NotFoundError("Vendor not found")
        return vendor

    def _ensure_unique(
        self, name: str, vendor_type: VendorType, exclude_id: Optional[int] = None
    ) -> None:
        stmt = select(Vendor).where(
            func.lower(Vendor.name) == name.lower(), Vendor.type == vendor_type
        )
        if exclude_id is not None:
            stmt = stmt.where(Vendor.id != exclude_id)
        if self.session.scalar(stmt):
            raise ValueError("Vendor with this name and type already exists")

    def create(self, data: VendorIn) -> Vendor:
        name = _clean_name(data.name, "Vendor")
        self._ensure_unique(name, data.type)
        vendor = Vendor(name=name, type=data.type)
        self.session.add(vendor)
        self.session.commit()
        self.session.refresh(vendor)
        logger.info(f"vendor_created: id={vendor.id} type={vendor.type.value}")
        return vendor

    def update(self, vendor_id: int, data: VendorUpdate) -> Vendor:
        vendor = self.get(vendor_id)
        changes = data.model_dump(exclude_unset=True)
        name = vendor.name
        vendor_type = vendor.type
        if "name" in changes:
            name = _clean_name(changes["name"], "Vendor")
        if "type" in changes:
            if changes["type"] is None:
                raise ValueError("Vendor type cannot be empty")
            vendor_type = changes["type"]
        self._ensure_unique(name, vendor_type, exclude_id=vendor.id)

        vendor.name = name
        vendor.type = vendor_type
        self.session.commit()
        self.session.refresh(vendor)
        logger.info(f"vendor_updated: id={vendor.id}")
        return vendor

    def delete(self, vendor_id: int) -> None:
        vendor = self.get(vendor_id)
        self.session.execute(
            update(Transaction)
            .where(Transaction.vendor_id == vendor.id)
            .values(vendor_id=None)
        )
        self.session.delete(vendor)
        self.session.commit()
        logger.info(f"vendor_deleted: id={vendor_id}")


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Category]:
        return self.session.scalars(select(Category).order_by(Category.name)).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFoundError("Category not found")
        return category

    def _ensure_unique(self, name: str, exclude_id: Optional[int] = None) -> None:
        stmt = select(Category).where(func.lower(Category.name) == name.lower())
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt):
            raise ValueError("Category with this name already exists")

    def create(self, data: CategoryIn) -> Category:
        name = _clean_name(data.name, "Category")
        self._ensure_unique(name)
        category = Category(
            name=name,
            color=_clean_color(data.color, "Category"),
            icon=(data.icon or "").strip() or None,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        logger.info(f"category_created: id={category.id}")
        return category

    def update(self, category_id: int, data: CategoryUpdate) -> Category:
        category = self.get(category_id)
        changes = data.model_dump(exclude_unset=True)
        if "name" in changes:
            name = _clean_name(changes["name"], "Category")
            self._ensure_unique(name, exclude_id=category.id)
            category.name = name
        if "color" in changes:
            category.color = _clean_color(changes["color"], "Category")
        if "icon" in changes:
            category.icon = (changes["icon"] or "").strip() or None
        self.session.commit()
        self.session.refresh(category)
        logger.info(f"category_updated: id={category.id}")
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        self.session.execute(
            update(Transaction)
            .where(Transaction.category_id == category.id)
            .values(category_id=None)
        )
        self.session.delete(category)
        self.session.commit()
        logger.info(f"category_deleted: id={category_id}")


class TagService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Tag]:
        return self.session.scalars(select(Tag).order_by(Tag.name)).all()

    def get(self, tag_id: int) -> Tag:
        tag = self.session.get(Tag, tag_id)
        if not tag:
            raise NotFoundError("Tag not found")
        return tag

    def _find_by_name(self, name: str, exclude_id: Optional[int] = None) -> Optional[Tag]:
        stmt = select(Tag).where(func.lower(Tag.name) == name.lower())
        if exclude_id is not None:
            stmt = stmt.where(Tag.id != exclude_id)
        return self.session.scalar(stmt)

    def get_or_create(self, name: str, color: str = DEFAULT_TAG_COLOR) -> Tag:
        clean_name = _clean_name(name, "Tag")
        existing = self._find_by_name(clean_name)
        if existing:
            return existing

        tag = Tag(name=clean_name, color=_clean_color(color, "Tag"))
        self.session.add(tag)
        self.session.flush()
        return tag

    def create(self, data: TagIn) -> Tag:
        name = _clean_name(data.name, "Tag")
        if self._find_by_name(name):
            raise ValueError("Tag already exists")

        tag = Tag(name=name, color=_clean_color(data.color, "Tag"))
        self.session.add(tag)
        self.session.commit()
        self.session.refresh(tag)
        logger.info(f"tag_created: id={tag.id}")
        return tag

    def update(self, tag_id: int, data: TagUpdate) -> Tag:
        tag = self.get(tag_id)
        changes = data.model_dump(exclude_unset=True)
        if "name" in changes:
            name = _clean_name(changes["name"], "Tag")
            if self._find_by_name(name, exclude_id=tag.id):
                raise ValueError("Tag with this name already exists")
            tag.name = name
        if "color" in changes:
            tag.color = _clean_color(changes["color"], "Tag")
        self.session.commit()
        self.session.refresh(tag)
        logger.info(f"tag_updated: id={tag.id}")
        return tag

    def delete(self, tag_id: int) -> None:
        tag = self.get(tag_id)
        self.session.execute(
            delete(transaction_tags).where(transaction_tags.c.tag_id == tag.id)
        )
        self.session.expire(tag, ["transactions"])
        self.session.delete(tag)
        self.session.commit()
        logger.info(f"tag_deleted: id={tag_id}")


@dataclass
class TransactionFilters:
    kind: Optional[TransactionKind] = None
    category_id: Optional[int] = None
    vendor_id: Optional[int] = None
    tag_id: Optional[int] = None
    paid_by_card: Optional[bool] = None
    added_by: Optional[AddedBy] = None


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _base_query(self):
        return select(Transaction).options(
            joinedload(Transaction.vendor),
            joinedload(Transaction.category),
            joinedload(Transaction.tags),
        )

    def _resolve_category(self, category_id: Optional[int]) -> Optional[Category]:
        if category_id is None:
            return None
        category = self.session.get(Category, category_id)
        if not category:
            raise ValueError(f"Category {category_id} not found")
        return category

    def _resolve_vendor(self, vendor_id: Optional[int]) -> Optional[Vendor]:
        if vendor_id is None:
            return None
        vendor = self.session.get(Vendor, vendor_id)
        if not vendor:
            raise ValueError(f"Vendor {vendor_id} not found")
        return vendor

    def _resolve_tags(self, tag_ids: list[int]) -> list[Tag]:
        tags: list[Tag] = []
        seen: set[int] = set()
        for tag_id in tag_ids:
            if tag_id in seen:
                continue
            tag = self.session.get(Tag, tag_id)
            if not tag:
                raise ValueError(f"Tag {tag_id} not found")
            tags.append(tag)
            seen.add(tag_id)
        return tags

    def get(self, transaction_id: int) -> Transaction:
        stmt = self._base_query().where(Transaction.id == transaction_id)
        txn = self.session.scalars(stmt).unique().first()
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        validate_transaction_date(data.date)
        category = self._resolve_category(data.category_id)
        vendor = self._resolve_vendor(data.vendor_id)
        tags = self._resolve_tags(data.tag_ids)

        txn = Transaction(
            date=data.date,
            kind=data.kind,
            amount_cents=data.amount_cents,
            category=category,
            vendor=vendor,
            comment=(data.comment or "").strip() or None,
            paid_by_card=data.paid_by_card,
            added_by=data.added_by,
            tags=tags,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: id={txn.id} kind={txn.kind.value} "
            f"amount_cents={txn.amount_cents}"
        )
        return txn

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        changes = data.model_dump(exclude_unset=True)

        for required in ("amount_cents", "date", "kind", "paid_by_card", "added_by"):
            if required in changes and changes[required] is None:
                raise ValueError(f"{required} cannot be empty")
        if "date" in changes:
            validate_transaction_date(changes["date"])

        # Resolve everything up front so a bad reference leaves txn untouched
        if "category_id" in changes:
            changes["category"] = self._resolve_category(changes.pop("category_id"))
        if "vendor_id" in changes:
            changes["vendor"] = self._resolve_vendor(changes.pop("vendor_id"))
        tag_ids = changes.pop("tag_ids", None)
        if tag_ids is not None:
            changes["tags"] = self._resolve_tags(tag_ids)
        if "comment" in changes:
            changes["comment"] = (changes["comment"] or "").strip() or None

        for field_name, value in changes.items():
            setattr(txn, field_name, value)

        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"transaction_updated: id={txn.id} fields={','.join(sorted(changes))}"
        )
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()
        logger.info(f"transaction_deleted: id={transaction_id}")

    def in_range(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[Transaction]:
        """Fully hydrated transactions dated within ``[start, end]``.

        A missing bound is unbounded on that side. Rows come back oldest first.
        """
        stmt = self._base_query().order_by(Transaction.date.asc(), Transaction.id.asc())
        if start is not None:
            stmt = stmt.where(Transaction.date >= start)
        if end is not None:
            stmt = stmt.where(Transaction.date <= end)
        return self.session.scalars(stmt).unique().all()

    def list(
        self, period: Period, filters: Optional[TransactionFilters] = None
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = self._base_query().order_by(
            Transaction.date.desc(), Transaction.id.desc()
        )
        if period.start is not None:
            stmt = stmt.where(Transaction.date >= period.start)
        if period.end is not None:
            stmt = stmt.where(Transaction.date <= period.end)
        if filters.kind:
            stmt = stmt.where(Transaction.kind == filters.kind)
        if filters.category_id:
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        if filters.vendor_id:
            stmt = stmt.where(Transaction.vendor_id == filters.vendor_id)
        if filters.tag_id:
            stmt = stmt.where(Transaction.tags.any(Tag.id == filters.tag_id))
        if filters.paid_by_card is not None:
            stmt = stmt.where(Transaction.paid_by_card == filters.paid_by_card)
        if filters.added_by:
            stmt = stmt.where(Transaction.added_by == filters.added_by)
        return self.session.scalars(stmt).unique().all()

    def earnings(self, period: Period) -> list[Transaction]:
        earnings, _ = split_earnings(self.in_range(period.start, period.end))
        return earnings

    def actual_expenses(self, period: Period) -> list[Transaction]:
        _, expenses = split_earnings(self.in_range(period.start, period.end))
        return expenses

    def tags_for(self, transaction_id: int) -> list[Tag]:
        return sorted(self.get(transaction_id).tags, key=lambda tag: tag.name)

    def add_tag(self, transaction_id: int, tag_id: int) -> Transaction:
        txn = self.get(transaction_id)
        tag = TagService(self.session).get(tag_id)
        if any(existing.id == tag.id for existing in txn.tags):
            raise ValueError("Tag already assigned to this transaction")
        txn.tags.append(tag)
        self.session.commit()
        return txn

    def remove_tag(self, transaction_id: int, tag_id: int) -> Transaction:
        txn = self.get(transaction_id)
        remaining = [tag for tag in txn.tags if tag.id != tag_id]
        if len(remaining) == len(txn.tags):
            raise NotFoundError("Tag not assigned to this transaction")
        txn.tags = remaining
        self.session.commit()
        return txn


class ReportService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.txn_service = TransactionService(session)

    def _fetch(self, period: Period) -> list[Transaction]:
        return self.txn_service.in_range(period.start, period.end)

    def balance_summary(self, period: Period) -> BalanceSummary:
        earnings, expenses = split_earnings(self._fetch(period))
        return balance_summary(earnings, expenses)

    def insights(self, period: Period) -> tuple[BalanceSummary, SpendingInsights]:
        summary = self.balance_summary(period)
        return summary, spending_insights(summary)

    def breakdown(
        self,
        period: Period,
        by: GroupKey = GroupKey.category,
        scope: ReportScope = ReportScope.expenses,
    ) -> dict[str, Totals]:
        selected = select_scope(self._fetch(period), scope)
        return group_sums(selected, KEY_SELECTORS[by])

    def top_vendors(self, period: Period, limit: int) -> list[tuple[str, Totals]]:
        _, expenses = split_earnings(self._fetch(period))
        return top_n(group_sums(expenses, vendor_key), limit)

    def vendor_type_breakdown(self, period: Period) -> list[VendorTypeGroup]:
        _, expenses = split_earnings(self._fetch(period))
        return vendor_type_breakdown(expenses)

    def trend(
        self,
        period: Period,
        granularity: Granularity = Granularity.monthly,
        scope: ReportScope = ReportScope.expenses,
    ) -> list[tuple[str, Totals]]:
        return trend(select_scope(self._fetch(period), scope), granularity)


class CSVService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _match_category(
        self, name: str, categories: list[Category]
    ) -> tuple[Optional[int], Optional[str]]:
        input_lower = name.lower()
        for category in categories:
            if category.name.lower() == input_lower:
                return category.id, None

        best_distance: Optional[int] = None
        best: list[Category] = []
        for category in categories:
            dist = int(Levenshtein.distance(input_lower, category.name.lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [category]
            elif dist == best_distance:
                best.append(category)

        if best_distance is not None and best_distance <= 1:
            if len(best) > 1:
                options = ", ".join(sorted(c.name for c in best))
                return None, f"Category '{name}' is ambiguous; matches: {options}"
            return best[0].id, None
        return None, f"Unknown category '{name}'"

    def _match_vendor(
        self, name: str, vendor_type: Optional[VendorType], vendors: list[Vendor]
    ) -> tuple[Optional[int], Optional[str]]:
        candidates = [v for v in vendors if v.name.lower() == name.lower()]
        if vendor_type is not None:
            candidates = [v for v in candidates if v.type == vendor_type]
        if not candidates:
            suffix = f" ({vendor_type.value})" if vendor_type else ""
            return None, f"Unknown vendor '{name}'{suffix}"
        if len(candidates) > 1:
            types = ", ".join(sorted(v.type.value for v in candidates))
            return None, f"Vendor '{name}' is ambiguous; set VendorType to one of: {types}"
        return candidates[0].id, None

    def preview(self, content: str) -> tuple[list[dict[str, object]], list[str]]:
        rows, errors = parse_csv(content)
        categories = CategoryService(self.session).list_all()
        vendors = VendorService(self.session).list_all()
        today = local_today()
        preview_rows: list[dict[str, object]] = []
        for row in rows:
            problems: list[str] = []
            try:
                validate_transaction_date(row.date, today=today)
            except ValueError as exc:
                problems.append(str(exc))

            category_id = None
            if row.category:
                category_id, problem = self._match_category(row.category, categories)
                if problem:
                    problems.append(problem)

            vendor_id = None
            if row.vendor:
                vendor_id, problem = self._match_vendor(
                    row.vendor, row.vendor_type, vendors
                )
                if problem:
                    problems.append(problem)

            errors.extend(f"Row {row.row}: {problem}" for problem in problems)
            preview_rows.append(
                {
                    "row": row.row,
                    "date": row.date,
                    "kind": row.kind.value,
                    "amount_cents": row.amount_cents,
                    "category": row.category,
                    "category_id": category_id,
                    "vendor": row.vendor,
                    "vendor_id": vendor_id,
                    "paid_by_card": row.paid_by_card,
                    "added_by": row.added_by.value,
                    "tags": row.tags,
                    "comment": row.comment,
                }
            )
        return preview_rows, errors

    def commit(self, content: str) -> int:
        preview_rows, errors = self.preview(content)
        if errors:
            raise ValueError("; ".join(errors))
        tag_service = TagService(self.session)
        for row in preview_rows:
            txn = Transaction(
                date=row["date"],
                kind=TransactionKind(row["kind"]),
                amount_cents=row["amount_cents"],
                category_id=row["category_id"],
                vendor_id=row["vendor_id"],
                comment=row["comment"],
                paid_by_card=row["paid_by_card"],
                added_by=AddedBy(row["added_by"]),
            )
            tags: list[Tag] = []
            for name in row["tags"]:
                tag = tag_service.get_or_create(name)
                if tag not in tags:
                    tags.append(tag)
            txn.tags = tags
            self.session.add(txn)
        self.session.commit()
        logger.info(f"csv_import: rows={len(preview_rows)}")
        return len(preview_rows)

    def export(self, transactions: list[Transaction]) -> str:
        return export_transactions(transactions)
