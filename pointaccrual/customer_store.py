"""Customer storage in a MongoDB collection."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone
from decimal import Decimal, DecimalException
from typing import Any

from bson.decimal128 import Decimal128
from pymongo import UpdateOne
from pymongo.errors import PyMongoError

from .entity import Customer, Record, UpdateCustomer
from .errors import INTERNAL, INVALID_ARGUMENT, AppError

logger = logging.getLogger(__name__)

CUSTOMER_COLLECTION = "customers"


def _to_decimal(value: Any) -> Decimal:
    """Convert a stored amount to a finite Decimal."""
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal128):
        result = value.to_decimal()
    else:
        try:
            result = Decimal(str(value))
        except DecimalException as exc:
            raise ValueError(f"can't convert {value!r} to decimal") from exc
    if not result.is_finite():
        raise ValueError(f"can't convert {value!r} to decimal")
    return result


def customer_from_document(document: Mapping[str, Any]) -> Customer:
    """Build a Customer from a stored document."""
    records = []
    for item in document.get("records") or []:
        try:
            amount = _to_decimal(item.get("amount"))
        except ValueError as exc:
            raise INTERNAL.wrap(exc) from exc
        records.append(
            Record(
                product_id=item.get("product_id", ""),
                branch_id=item.get("branch_id", ""),
                amount=amount,
                purchase_date=item.get("purchase_date"),
            )
        )

    return Customer(
        customer_id=document.get("customer_id", ""),
        points=int(document.get("points") or 0),
        last_purchase_date=document.get("last_purchase_date"),
        created_at=document.get("created_at"),
        updated_at=document.get("updated_at"),
        records=records,
        points_by_date={
            date: int(value) for date, value in (document.get("points_by_date") or {}).items()
        },
    )


def customers_from_documents(documents: Iterable[Mapping[str, Any]]) -> list[Customer]:
    """Build customers from stored documents, logging and skipping any that are malformed."""
    customers = []
    for document in documents:
        try:
            customers.append(customer_from_document(document))
        except AppError as exc:
            logger.warning("skipping customer document: %s", exc)
    return customers


def records_to_documents(records: Iterable[Record]) -> list[dict[str, Any]]:
    """Turn purchase records into documents with exact decimal amounts."""
    documents = []
    for record in records:
        try:
            amount = Decimal128(str(record.amount))
        except (DecimalException, ValueError, TypeError) as exc:
            raise INVALID_ARGUMENT.wrap(exc) from exc
        documents.append(
            {
                "product_id": record.product_id,
                "branch_id": record.branch_id,
                "amount": amount,
                "purchase_date": record.purchase_date,
            }
        )
    return documents


def filter_customer_ids(customer_ids: Sequence[str]) -> dict[str, Any]:
    """Return a query for these customers, or one matching every customer."""
    if not customer_ids:
        return {}
    return {"customer_id": {"$in": list(customer_ids)}}


def _update_document(
    update: UpdateCustomer, records: list[dict[str, Any]], now: datetime
) -> dict[str, Any]:
    increments: dict[str, int] = {"points": update.points_to_add}
    for date, value in update.points_by_date.items():
        increments[f"points_by_date.{date}"] = value
    return {
        "$inc": increments,
        "$set": {
            "last_purchase_date": update.last_purchase_date,
            "updated_at": now,
        },
        "$push": {"records": {"$each": records}},
        "$setOnInsert": {
            "customer_id": update.customer_id,
            "created_at": now,
        },
    }


def update_customer_operations(updates: Sequence[UpdateCustomer]) -> list[UpdateOne]:
    """Return one upserting update per customer that adds points and records."""
    if not updates:
        raise INVALID_ARGUMENT.wrap(ValueError("updates is empty"))

    now = datetime.now(timezone.utc)
    operations = []
    for update in updates:
        records = records_to_documents(update.records)
        operations.append(
            UpdateOne(
                {"customer_id": update.customer_id},
                _update_document(update, records, now),
                upsert=True,
            )
        )
    return operations


class MongoCustomerRepository:
    """Customer repository backed by the ``customers`` collection."""

    def __init__(self, database: Any) -> None:
        self._collection = database[CUSTOMER_COLLECTION]

    def get_customers(self, customer_ids: Sequence[str]) -> list[Customer]:
        """Return the customers with these ids, or every customer for an empty list."""
        try:
            documents = list(self._collection.find(filter_customer_ids(customer_ids)))
        except PyMongoError as exc:
            raise INTERNAL.wrap(exc) from exc
        return customers_from_documents(documents)

    def update_bulk_customers(self, updates: Sequence[UpdateCustomer]) -> None:
        """Apply all updates in one unordered bulk write."""
        operations = update_customer_operations(updates)
        try:
            self._collection.bulk_write(operations, ordered=False)
        except PyMongoError as exc:
            raise INTERNAL.wrap(exc) from exc