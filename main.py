import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal
from errors import NotFoundError, StoreError, ValidationError
from models import Transaction
from schemas import BulkDeleteIn
from services import (
    MetricsService,
    PageRequest,
    TransactionService,
    TransactionSort,
    build_filters,
    category_vocabulary,
    parse_transaction_input,
)

logging.basicConfig(level=get_settings().log_level)


def _load_app_version() -> str:
    import tomllib

    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
    except OSError:
        return "unknown"
    return str(data.get("project", {}).get("version", "unknown"))


APP_VERSION = _load_app_version()

app = FastAPI(title="Ledger", version=APP_VERSION)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    # Details were logged where the failure happened.
    return JSONResponse(status_code=500, content={"error": str(exc)})


def validation_failed(exc: ValidationError) -> HTTPException:
    return HTTPException(
        status_code=400, detail={"error": exc.message, "field": exc.field}
    )


def not_found(exc: NotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail={"error": str(exc)})


def int_param(request: Request, name: str, default: Optional[int]) -> Optional[int]:
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer", field=name) from exc


def transaction_json(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "type": txn.type.value,
        "amount": float(txn.amount),
        "category": txn.category,
        "description": txn.description,
        "date": txn.date.isoformat() + "Z",
        "createdAt": txn.created_at.isoformat() + "Z",
        "updatedAt": txn.updated_at.isoformat() + "Z",
    }


async def json_body(request: Request) -> object:
    try:
        return await request.json()
    except ValueError as exc:
        raise ValidationError("Request body must be valid JSON") from exc


@app.get("/api/categories")
def api_categories():
    return category_vocabulary()


@app.get("/api/transactions")
def api_transactions(request: Request, db: Session = Depends(get_db)):
    q = request.query_params
    try:
        filters = build_filters(
            type=q.get("type"),
            category=q.get("category"),
            start_date=q.get("startDate"),
            end_date=q.get("endDate"),
            description=q.get("description"),
        )
        sort = TransactionSort(
            field=q.get("sortBy") or "date", order=q.get("sortOrder") or "desc"
        )
        page = PageRequest(
            number=int_param(request, "page", 1),
            size=int_param(request, "limit", None),
        )
        result = TransactionService(db).list(filters, sort, page)
    except ValidationError as exc:
        raise validation_failed(exc) from exc
    return {
        "transactions": [transaction_json(txn) for txn in result.items],
        "total": result.total,
        "page": result.page,
        "totalPages": result.total_pages,
    }


@app.post("/api/transactions", status_code=201)
async def create_transaction(request: Request, db: Session = Depends(get_db)):
    try:
        data = parse_transaction_input(await json_body(request))
    except ValidationError as exc:
        raise validation_failed(exc) from exc
    txn = TransactionService(db).create(data)
    return {"success": True, "transaction": transaction_json(txn)}


@app.get("/api/transactions/stats")
def api_stats(request: Request, db: Session = Depends(get_db)):
    q = request.query_params
    try:
        summary = MetricsService(db).summarize_range(
            q.get("startDate"), q.get("endDate")
        )
    except ValidationError as exc:
        raise validation_failed(exc) from exc
    totals = summary.totals
    return {
        "totals": {
            "totalIncome": float(totals.total_income),
            "totalExpenses": float(totals.total_expenses),
            "net": float(totals.net),
            "transactionCount": totals.transaction_count,
        },
        "byCategory": [
            {"category": row.category, "sum": float(row.total)}
            for row in summary.by_category
        ],
        "trend": [
            {
                "date": point.day.isoformat(),
                "income": float(point.income),
                "expense": float(point.expense),
            }
            for point in summary.trend
        ],
        "start": summary.window.start.isoformat() + "Z",
        "end": summary.window.end.isoformat() + "Z",
    }


@app.post("/api/transactions/bulk-delete")
async def bulk_delete_transactions(request: Request, db: Session = Depends(get_db)):
    try:
        body = await json_body(request)
        payload = BulkDeleteIn.model_validate(body)
    except ValidationError as exc:
        raise validation_failed(exc) from exc
    except ValueError as exc:
        raise HTTPException(
            status_code=400, detail={"error": "ids must be a non-empty list"}
        ) from exc
    result = TransactionService(db).delete_many(payload.ids)
    return {
        "success": not result.failed,
        "deleted": result.deleted,
        "missing": result.missing,
        "failed": result.failed,
    }


@app.get("/api/transactions/{transaction_id}")
def get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).get(transaction_id)
    except NotFoundError as exc:
        raise not_found(exc) from exc
    return transaction_json(txn)


@app.put("/api/transactions/{transaction_id}")
async def update_transaction(
    transaction_id: int, request: Request, db: Session = Depends(get_db)
):
    try:
        data = parse_transaction_input(await json_body(request))
    except ValidationError as exc:
        raise validation_failed(exc) from exc
    try:
        txn = TransactionService(db).update(transaction_id, data)
    except NotFoundError as exc:
        raise not_found(exc) from exc
    return {"success": True, "transaction": transaction_json(txn)}


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        TransactionService(db).delete(transaction_id)
    except NotFoundError as exc:
        raise not_found(exc) from exc
    return {"success": True, "message": "Deleted"}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
