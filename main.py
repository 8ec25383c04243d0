import logging
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response, StreamingResponse
from sqlalchemy.orm import Session

from config import get_settings
from database import session_scope
from models import AddedBy, Category, Tag, Transaction, TransactionKind, Vendor, VendorType
from periods import Period, local_today, resolve_period
from reporting import BalanceSummary, Granularity, GroupKey, ReportScope, Totals
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
from services import (
    CSVService,
    CategoryService,
    NotFoundError,
    ReportService,
    TagService,
    TransactionFilters,
    TransactionService,
    VendorService,
)

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Expenso")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
api = APIRouter(prefix="/api/v1")


def get_db():
    with session_scope() as db:
        yield db


def period_from_request(request: Request) -> Period:
    period_slug = request.query_params.get("period")
    start = request.query_params.get("start_date")
    end = request.query_params.get("end_date")
    try:
        return resolve_period(period_slug, start, end, today=local_today())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _optional_int(request: Request, name: str) -> Optional[int]:
    raw = request.query_params.get(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {name}") from exc


def filters_from_request(request: Request) -> TransactionFilters:
    kind_param = request.query_params.get("kind")
    added_by_param = request.query_params.get("added_by")
    card_param = request.query_params.get("paid_by_card")
    try:
        kind = TransactionKind(kind_param) if kind_param else None
        added_by = AddedBy(added_by_param) if added_by_param else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    paid_by_card = None
    if card_param:
        if card_param.lower() not in ("true", "false", "1", "0"):
            raise HTTPException(status_code=400, detail="Invalid paid_by_card")
        paid_by_card = card_param.lower() in ("true", "1")

    return TransactionFilters(
        kind=kind,
        category_id=_optional_int(request, "category_id"),
        vendor_id=_optional_int(request, "vendor_id"),
        tag_id=_optional_int(request, "tag_id"),
        paid_by_card=paid_by_card,
        added_by=added_by,
    )


async def read_csv_upload(file: UploadFile) -> str:
    try:
        return (await file.read()).decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise HTTPException(
            status_code=400, detail="File must be UTF-8 encoded CSV"
        ) from exc


def http_error(exc: ValueError) -> HTTPException:
    status = 404 if isinstance(exc, NotFoundError) else 400
    return HTTPException(status_code=status, detail=str(exc))


def vendor_to_dict(vendor: Vendor) -> dict:
    return {"id": vendor.id, "name": vendor.name, "type": vendor.type.value}


def category_to_dict(category: Category) -> dict:
    return {
        "id": category.id,
        "name": category.name,
        "color": category.color,
        "icon": category.icon,
    }


def tag_to_dict(tag: Tag) -> dict:
    return {"id": tag.id, "name": tag.name, "color": tag.color}


def transaction_to_dict(txn: Transaction) -> dict:
    return {
        "id": txn.id,
        "date": txn.date.isoformat(),
        "kind": txn.kind.value,
        "amount_cents": txn.amount_cents,
        "category": category_to_dict(txn.category) if txn.category else None,
        "vendor": vendor_to_dict(txn.vendor) if txn.vendor else None,
        "comment": txn.comment,
        "paid_by_card": txn.paid_by_card,
        "added_by": txn.added_by.value,
        "tags": [tag_to_dict(tag) for tag in sorted(txn.tags, key=lambda t: t.name)],
    }


def totals_to_dict(label: str, totals: Totals) -> dict:
    return {"label": label, "amount_cents": totals.amount_cents, "count": totals.count}


def summary_to_dict(summary: BalanceSummary) -> dict:
    return {
        "total_earnings_cents": summary.total_earnings_cents,
        "total_expenses_cents": summary.total_expenses_cents,
        "balance_cents": summary.balance_cents,
        "earnings_count": summary.earnings_count,
        "expenses_count": summary.expenses_count,
        "savings_rate": summary.savings_rate,
        "payment_methods": {
            "card": {
                "count": summary.card.count,
                "amount_cents": summary.card.amount_cents,
                "percentage": summary.card.percentage,
            },
            "cash": {
                "count": summary.cash.count,
                "amount_cents": summary.cash.amount_cents,
                "percentage": summary.cash.percentage,
            },
        },
    }


def period_to_dict(period: Period) -> dict:
    return {
        "period": period.slug,
        "start_date": period.start.isoformat() if period.start else None,
        "end_date": period.end.isoformat() if period.end else None,
    }


@app.get("/health")
def health():
    return {"status": "ok"}


# Vendors


@api.get("/vendors")
def list_vendors(type: Optional[VendorType] = None, db: Session = Depends(get_db)):
    return [vendor_to_dict(v) for v in VendorService(db).list_all(type)]


@api.get("/vendors/type/{vendor_type}")
def list_vendors_by_type(vendor_type: VendorType, db: Session = Depends(get_db)):
    return [vendor_to_dict(v) for v in VendorService(db).list_all(vendor_type)]


@api.post("/vendors", status_code=201)
def create_vendor(payload: VendorIn, db: Session = Depends(get_db)):
    try:
        vendor = VendorService(db).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return vendor_to_dict(vendor)


@api.get("/vendors/{vendor_id}")
def get_vendor(vendor_id: int, db: Session = Depends(get_db)):
    try:
        vendor = VendorService(db).get(vendor_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return vendor_to_dict(vendor)


@api.put("/vendors/{vendor_id}")
def update_vendor(vendor_id: int, payload: VendorUpdate, db: Session = Depends(get_db)):
    try:
        vendor = VendorService(db).update(vendor_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return vendor_to_dict(vendor)


@api.delete("/vendors/{vendor_id}", status_code=204)
def delete_vendor(vendor_id: int, db: Session = Depends(get_db)):
    try:
        VendorService(db).delete(vendor_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Categories


@api.get("/categories")
def list_categories(db: Session = Depends(get_db)):
    return [category_to_dict(c) for c in CategoryService(db).list_all()]


@api.post("/categories", status_code=201)
def create_category(payload: CategoryIn, db: Session = Depends(get_db)):
    try:
        category = CategoryService(db).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return category_to_dict(category)


@api.get("/categories/{category_id}")
def get_category(category_id: int, db: Session = Depends(get_db)):
    try:
        category = CategoryService(db).get(category_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return category_to_dict(category)


@api.put("/categories/{category_id}")
def update_category(
    category_id: int, payload: CategoryUpdate, db: Session = Depends(get_db)
):
    try:
        category = CategoryService(db).update(category_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return category_to_dict(category)


@api.delete("/categories/{category_id}", status_code=204)
def delete_category(category_id: int, db: Session = Depends(get_db)):
    try:
        CategoryService(db).delete(category_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Tags


@api.get("/tags")
def list_tags(db: Session = Depends(get_db)):
    return [tag_to_dict(t) for t in TagService(db).list_all()]


@api.post("/tags", status_code=201)
def create_tag(payload: TagIn, db: Session = Depends(get_db)):
    try:
        tag = TagService(db).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return tag_to_dict(tag)


@api.get("/tags/{tag_id}")
def get_tag(tag_id: int, db: Session = Depends(get_db)):
    try:
        tag = TagService(db).get(tag_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return tag_to_dict(tag)


@api.put("/tags/{tag_id}")
def update_tag(tag_id: int, payload: TagUpdate, db: Session = Depends(get_db)):
    try:
        tag = TagService(db).update(tag_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return tag_to_dict(tag)


@api.delete("/tags/{tag_id}", status_code=204)
def delete_tag(tag_id: int, db: Session = Depends(get_db)):
    try:
        TagService(db).delete(tag_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Transactions. Fixed paths are registered before "/transactions/{transaction_id}".


@api.get("/transactions")
def list_transactions(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    filters = filters_from_request(request)
    items = TransactionService(db).list(period, filters)
    return {
        **period_to_dict(period),
        "items": [transaction_to_dict(txn) for txn in items],
    }


@api.get("/transactions/earnings")
def list_earnings(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    items = TransactionService(db).earnings(period)
    return {
        **period_to_dict(period),
        "items": [transaction_to_dict(txn) for txn in items],
    }


@api.get("/transactions/actual-expenses")
def list_actual_expenses(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    items = TransactionService(db).actual_expenses(period)
    return {
        **period_to_dict(period),
        "items": [transaction_to_dict(txn) for txn in items],
    }


@api.get("/transactions/export.csv")
def export_transactions_endpoint(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    filters = filters_from_request(request)
    transactions = TransactionService(db).list(period, filters)
    csv_text = CSVService(db).export(transactions)
    logger.info(f"csv_export: rows={len(transactions)} period={period.slug}")
    filename = f"transactions_{period.start or 'all'}_{period.end or 'all'}.csv"
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@api.post("/transactions/import/preview")
async def import_preview(file: UploadFile = File(...), db: Session = Depends(get_db)):
    content = await read_csv_upload(file)
    rows, errors = CSVService(db).preview(content)
    return {
        "rows": [{**row, "date": row["date"].isoformat()} for row in rows],
        "errors": errors,
    }


@api.post("/transactions/import/commit")
async def import_commit(file: UploadFile = File(...), db: Session = Depends(get_db)):
    content = await read_csv_upload(file)
    try:
        count = CSVService(db).commit(content)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"imported": count}


@api.post("/transactions", status_code=201)
def create_transaction(payload: TransactionIn, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_to_dict(txn)


@api.get("/transactions/{transaction_id}")
def get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).get(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_to_dict(txn)


@api.put("/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int, payload: TransactionUpdate, db: Session = Depends(get_db)
):
    try:
        txn = TransactionService(db).update(transaction_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_to_dict(txn)


@api.delete("/transactions/{transaction_id}", status_code=204)
def delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        TransactionService(db).delete(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@api.get("/transactions/{transaction_id}/tags")
def get_transaction_tags(transaction_id: int, db: Session = Depends(get_db)):
    try:
        tags = TransactionService(db).tags_for(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return [tag_to_dict(tag) for tag in tags]


@api.post("/transactions/{transaction_id}/tags/{tag_id}")
def add_transaction_tag(transaction_id: int, tag_id: int, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).add_tag(transaction_id, tag_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_to_dict(txn)


@api.delete("/transactions/{transaction_id}/tags/{tag_id}")
def remove_transaction_tag(
    transaction_id: int, tag_id: int, db: Session = Depends(get_db)
):
    try:
        txn = TransactionService(db).remove_tag(transaction_id, tag_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_to_dict(txn)


# Reports


@api.get("/reports/balance-summary")
def report_balance_summary(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    summary = ReportService(db).balance_summary(period)
    return {**period_to_dict(period), **summary_to_dict(summary)}


@api.get("/reports/insights")
def report_insights(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    summary, insights = ReportService(db).insights(period)
    return {
        **period_to_dict(period),
        **summary_to_dict(summary),
        "insights": {
            "average_expense_cents": insights.average_expense_cents,
            "spending_pattern": insights.spending_pattern,
            "savings_health": insights.savings_health,
            "payment_preference": insights.payment_preference,
        },
    }


@api.get("/reports/breakdown")
def report_breakdown(
    request: Request,
    by: GroupKey = GroupKey.category,
    scope: ReportScope = ReportScope.expenses,
    db: Session = Depends(get_db),
):
    period = period_from_request(request)
    groups = ReportService(db).breakdown(period, by=by, scope=scope)
    return {
        **period_to_dict(period),
        "by": by.value,
        "scope": scope.value,
        "groups": [totals_to_dict(label, totals) for label, totals in groups.items()],
    }


@api.get("/reports/top-vendors")
def report_top_vendors(
    request: Request, limit: Optional[int] = None, db: Session = Depends(get_db)
):
    period = period_from_request(request)
    if limit is None:
        limit = settings.top_vendors_limit
    ranked = ReportService(db).top_vendors(period, limit)
    return {
        **period_to_dict(period),
        "limit": limit,
        "vendors": [totals_to_dict(label, totals) for label, totals in ranked],
    }


@api.get("/reports/vendor-types")
def report_vendor_types(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    groups = ReportService(db).vendor_type_breakdown(period)
    return {
        **period_to_dict(period),
        "groups": [
            {
                **totals_to_dict(group.label, group.totals),
                "vendors": [
                    totals_to_dict(label, totals) for label, totals in group.vendors
                ],
            }
            for group in groups
        ],
    }


@api.get("/reports/trend")
def report_trend(
    request: Request,
    granularity: Granularity = Granularity.monthly,
    scope: ReportScope = ReportScope.expenses,
    db: Session = Depends(get_db),
):
    period = period_from_request(request)
    buckets = ReportService(db).trend(period, granularity=granularity, scope=scope)
    return {
        **period_to_dict(period),
        "granularity": granularity.value,
        "scope": scope.value,
        "buckets": [totals_to_dict(label, totals) for label, totals in buckets],
    }


app.include_router(api)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
