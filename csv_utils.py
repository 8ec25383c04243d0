import csv
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Sequence

from models import AddedBy, Transaction, TransactionKind, VendorType
from schemas import MAX_AMOUNT_CENTS, CSVRow

CSV_HEADER = [
    "Date",
    "Kind",
    "Amount",
    "Category",
    "Vendor",
    "VendorType",
    "PaidByCard",
    "AddedBy",
    "Tags",
    "Comment",
]
TAG_SEPARATOR = "|"
TRUTHY = {"1", "true", "yes", "y", "on"}


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def parse_date(value: str):
    value = value.strip()
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        return datetime.strptime(value, "%d.%m.%Y").date()


def parse_amount(value: str) -> int:
    clean = value.strip().replace("€", "").replace("$", "").replace(" ", "")
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    if amount * 100 > MAX_AMOUNT_CENTS:
        raise ValueError(f"Amount must not exceed {MAX_AMOUNT_CENTS // 100}")
    cents = int((amount * 100).quantize(Decimal("1")))
    if cents <= 0:
        raise ValueError("Amount must be greater than zero")
    return cents


def parse_flag(value: str, *, default: bool) -> bool:
    clean = value.strip().lower()
    if not clean:
        return default
    return clean in TRUTHY


def parse_csv(content: str) -> tuple[list[CSVRow], list[str]]:
    reader = csv.DictReader(StringIO(content))
    rows: list[CSVRow] = []
    errors: list[str] = []
    for idx, raw in enumerate(reader, start=1):
        try:
            date_value = parse_date(raw.get("Date") or "")
            kind_raw = (raw.get("Kind") or "").strip().lower()
            kind = TransactionKind(kind_raw) if kind_raw else TransactionKind.expense
            amount_value = parse_amount(raw.get("Amount") or "0")
            vendor_type_raw = (raw.get("VendorType") or "").strip().lower()
            added_by_raw = (raw.get("AddedBy") or "").strip().lower()
            tags = [
                name.strip()
                for name in (raw.get("Tags") or "").split(TAG_SEPARATOR)
                if name.strip()
            ]
            rows.append(
                CSVRow(
                    row=idx,
                    date=date_value,
                    kind=kind,
                    amount_cents=amount_value,
                    category=(raw.get("Category") or "").strip() or None,
                    vendor=(raw.get("Vendor") or "").strip() or None,
                    vendor_type=VendorType(vendor_type_raw) if vendor_type_raw else None,
                    paid_by_card=parse_flag(raw.get("PaidByCard") or "", default=True),
                    added_by=AddedBy(added_by_raw) if added_by_raw else AddedBy.he,
                    tags=tags,
                    comment=(raw.get("Comment") or "").strip() or None,
                )
            )
        except Exception as exc:
            errors.append(f"Row {idx}: {exc}")
    return rows, errors


def export_transactions(transactions: Sequence[Transaction]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_HEADER)
    for txn in transactions:
        writer.writerow(
            [
                txn.date.isoformat(),
                txn.kind.value,
                f"{txn.amount_cents / 100:.2f}",
                sanitize_csv_value(txn.category.name if txn.category else ""),
                sanitize_csv_value(txn.vendor.name if txn.vendor else ""),
                txn.vendor.type.value if txn.vendor else "",
                "1" if txn.paid_by_card else "0",
                txn.added_by.value,
                sanitize_csv_value(TAG_SEPARATOR.join(tag.name for tag in txn.tags)),
                sanitize_csv_value(txn.comment or ""),
            ]
        )
    return output.getvalue()
