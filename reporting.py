"""Pure aggregation over already-fetched transactions.

Nothing in here touches the database: callers hand in a materialised list
(date filtering happens in the data-access layer) and get fresh result
objects back. Inputs are never mutated and empty inputs yield zeroed output.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Callable, Iterable, Optional, Sequence

from models import Transaction, Vendor, VendorType

UNKNOWN_KEY = "Unknown"

HIGH_VALUE_AVERAGE_CENTS = 10_000
SMALL_PURCHASE_AVERAGE_CENTS = 2_500
DOMINANT_PAYMENT_PERCENT = 70.0

KeySelector = Callable[[Transaction], Optional[str]]


@dataclass(frozen=True)
class Totals:
    amount_cents: int = 0
    count: int = 0


@dataclass(frozen=True)
class PaymentMethodShare:
    count: int
    amount_cents: int
    percentage: float


@dataclass(frozen=True)
class BalanceSummary:
    total_earnings_cents: int
    total_expenses_cents: int
    balance_cents: int
    earnings_count: int
    expenses_count: int
    savings_rate: float
    card: PaymentMethodShare
    cash: PaymentMethodShare


@dataclass(frozen=True)
class SpendingInsights:
    average_expense_cents: float
    spending_pattern: Optional[str]
    savings_health: Optional[str]
    payment_preference: str


@dataclass(frozen=True)
class VendorTypeGroup:
    label: str
    totals: Totals
    vendors: list[tuple[str, Totals]] = field(default_factory=list)


def is_salary_vendor(vendor: Optional[Vendor]) -> bool:
    return vendor is not None and vendor.type == VendorType.salary


def is_earning(txn: Transaction) -> bool:
    return is_salary_vendor(txn.vendor)


def split_earnings(
    transactions: Iterable[Transaction],
) -> tuple[list[Transaction], list[Transaction]]:
    """Partition into (earnings, actual expenses), keeping encounter order."""
    earnings: list[Transaction] = []
    expenses: list[Transaction] = []
    for txn in transactions:
        if is_earning(txn):
            earnings.append(txn)
        else:
            expenses.append(txn)
    return earnings, expenses


class ReportScope(str, Enum):
    expenses = "expenses"
    earnings = "earnings"
    all = "all"


def select_scope(
    transactions: Sequence[Transaction], scope: ReportScope
) -> list[Transaction]:
    if scope == ReportScope.all:
        return list(transactions)
    earnings, expenses = split_earnings(transactions)
    return earnings if scope == ReportScope.earnings else expenses


def sum_and_count(transactions: Iterable[Transaction]) -> Totals:
    amount = 0
    count = 0
    for txn in transactions:
        amount += txn.amount_cents
        count += 1
    return Totals(amount_cents=amount, count=count)


def category_key(txn: Transaction) -> Optional[str]:
    return txn.category.name if txn.category else None


def vendor_key(txn: Transaction) -> Optional[str]:
    return txn.vendor.name if txn.vendor else None


def vendor_type_key(txn: Transaction) -> Optional[str]:
    return txn.vendor.type.value if txn.vendor else None


class GroupKey(str, Enum):
    category = "category"
    vendor = "vendor"
    vendor_type = "vendor_type"


KEY_SELECTORS: dict[GroupKey, KeySelector] = {
    GroupKey.category: category_key,
    GroupKey.vendor: vendor_key,
    GroupKey.vendor_type: vendor_type_key,
}


def group_sums(
    transactions: Iterable[Transaction], key: KeySelector
) -> dict[str, Totals]:
    """Sum and count per label; missing or blank labels land in ``"Unknown"``.

    The mapping is in first-encounter order of its labels.
    """
    sums: dict[str, int] = {}
    counts: dict[str, int] = {}
    for txn in transactions:
        label = (key(txn) or "").strip() or UNKNOWN_KEY
        sums[label] = sums.get(label, 0) + txn.amount_cents
        counts[label] = counts.get(label, 0) + 1
    return {
        label: Totals(amount_cents=amount, count=counts[label])
        for label, amount in sums.items()
    }


def top_n(groups: dict[str, Totals], n: int) -> list[tuple[str, Totals]]:
    if n <= 0:
        return []
    # sorted() is stable, so equal sums keep their encounter order
    ranked = sorted(groups.items(), key=lambda item: item[1].amount_cents, reverse=True)
    return ranked[:n]


def _ranked(groups: dict[str, Totals]) -> list[tuple[str, Totals]]:
    return top_n(groups, len(groups))


def vendor_type_breakdown(transactions: Sequence[Transaction]) -> list[VendorTypeGroup]:
    """Per vendor type totals with the vendors inside each type, largest first."""
    by_type: dict[str, list[Transaction]] = {}
    for txn in transactions:
        label = vendor_type_key(txn) or UNKNOWN_KEY
        by_type.setdefault(label, []).append(txn)

    groups = [
        VendorTypeGroup(
            label=label,
            totals=sum_and_count(txns),
            vendors=_ranked(group_sums(txns, vendor_key)),
        )
        for label, txns in by_type.items()
    ]
    groups.sort(key=lambda group: group.totals.amount_cents, reverse=True)
    return groups


class Granularity(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"


def bucket_key(day: date, granularity: Granularity) -> str:
    if granularity == Granularity.weekly:
        # weeks start on Sunday
        return (day - timedelta(days=(day.weekday() + 1) % 7)).isoformat()
    if granularity == Granularity.monthly:
        return f"{day.year:04d}-{day.month:02d}"
    return day.isoformat()


def trend(
    transactions: Iterable[Transaction], granularity: Granularity
) -> list[tuple[str, Totals]]:
    """Sum and count per date bucket, oldest bucket first."""
    groups = group_sums(transactions, lambda txn: bucket_key(txn.date, granularity))
    return sorted(groups.items())


def _percent(part: int, whole: int) -> float:
    return (part / whole * 100) if whole else 0.0


def savings_rate(total_earnings_cents: int, balance_cents: int) -> float:
    if total_earnings_cents <= 0:
        return 0.0
    return max(0.0, balance_cents / total_earnings_cents * 100)


def payment_method_split(
    expenses: Sequence[Transaction], total_expenses_cents: int
) -> tuple[PaymentMethodShare, PaymentMethodShare]:
    card = sum_and_count(txn for txn in expenses if txn.paid_by_card)
    cash = sum_and_count(txn for txn in expenses if not txn.paid_by_card)
    return (
        PaymentMethodShare(
            count=card.count,
            amount_cents=card.amount_cents,
            percentage=_percent(card.amount_cents, total_expenses_cents),
        ),
        PaymentMethodShare(
            count=cash.count,
            amount_cents=cash.amount_cents,
            percentage=_percent(cash.amount_cents, total_expenses_cents),
        ),
    )


def balance_summary(
    earnings: Sequence[Transaction], expenses: Sequence[Transaction]
) -> BalanceSummary:
    earned = sum_and_count(earnings)
    spent = sum_and_count(expenses)
    balance = earned.amount_cents - spent.amount_cents
    card, cash = payment_method_split(expenses, spent.amount_cents)
    return BalanceSummary(
        total_earnings_cents=earned.amount_cents,
        total_expenses_cents=spent.amount_cents,
        balance_cents=balance,
        earnings_count=earned.count,
        expenses_count=spent.count,
        savings_rate=savings_rate(earned.amount_cents, balance),
        card=card,
        cash=cash,
    )


def spending_insights(summary: BalanceSummary) -> SpendingInsights:
    average = (
        summary.total_expenses_cents / summary.expenses_count
        if summary.expenses_count
        else 0.0
    )

    pattern: Optional[str] = None
    if summary.expenses_count:
        if average > HIGH_VALUE_AVERAGE_CENTS:
            pattern = "high_value"
        elif average < SMALL_PURCHASE_AVERAGE_CENTS:
            pattern = "small_frequent"
        else:
            pattern = "mixed"

    health: Optional[str] = None
    if summary.total_earnings_cents > 0:
        if summary.savings_rate > 20:
            health = "excellent"
        elif summary.savings_rate > 10:
            health = "good"
        elif summary.balance_cents > 0:
            health = "low"
        else:
            health = "negative"

    if summary.card.percentage > DOMINANT_PAYMENT_PERCENT:
        preference = "card"
    elif summary.cash.percentage > DOMINANT_PAYMENT_PERCENT:
        preference = "cash"
    else:
        preference = "balanced"

    return SpendingInsights(
        average_expense_cents=average,
        spending_pattern=pattern,
        savings_health=health,
        payment_preference=preference,
    )
