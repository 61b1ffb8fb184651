"""Records read from purchase files and written to point summaries."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import IO, Any

from .entity import Customer


@dataclass
class PurchaseRecord:
    """One row of a purchase file; ``purchase_date`` comes from the file name."""

    customer_id: str = field(default="", metadata={"csv": "customer_id"})
    product_id: str = field(default="", metadata={"csv": "product_id"})
    category_id: str = field(default="", metadata={"csv": "category_id"})
    category_name: str = field(default="", metadata={"csv": "category_name"})
    branch_id: str = field(default="", metadata={"csv": "branch_id"})
    purchased_amount: Decimal = field(default=Decimal(0), metadata={"csv": "purchased_amount"})
    currency: str = field(default="", metadata={"csv": "currency"})
    purchase_date: datetime | None = None


@dataclass
class FileInput:
    """An uploaded purchase file and the date its purchases were made."""

    purchased_date: datetime
    reader: IO[Any]


@dataclass
class CustomerPointRecord:
    """One row of a point summary file."""

    customer_id: str = field(default="", metadata={"csv": "customer_id"})
    points: int = field(default=0, metadata={"csv": "points"})
    last_purchase_date: str = field(default="", metadata={"csv": "last_purchase_date"})


def sum_values_on_or_before_date(data: dict[str, int] | None, target_date: str) -> tuple[int, str]:
    """Sum the values dated on or before ``target_date``; return the sum and latest such date."""
    dates = [d for d in (data or {}) if d <= target_date]
    if not dates:
        return 0, ""
    return sum(data[d] for d in dates), max(dates)


def entity_to_customer_point_records(
    customers: Iterable[Customer], target_date: str
) -> list[CustomerPointRecord]:
    """Summarise each customer's points up to ``target_date``, skipping those with none dated."""
    result = []
    for customer in customers:
        points, last_date = sum_values_on_or_before_date(customer.points_by_date, target_date)
        if last_date:
            result.append(CustomerPointRecord(customer.customer_id, points, last_date))
    return result


def unique_customer_ids(records: Iterable[PurchaseRecord]) -> list[str]:
    """Return each customer id once, in order of first appearance."""
    return list(dict.fromkeys(record.customer_id for record in records))


def unique_records(records: Iterable[PurchaseRecord]) -> list[PurchaseRecord]:
    """Drop repeated purchases, keeping the first of each."""
    seen: set[tuple[Any, ...]] = set()
    result = []
    for record in records:
        key = (
            record.customer_id,
            record.product_id,
            record.branch_id,
            record.purchased_amount,
            record.purchase_date,
        )
        if key not in seen:
            seen.add(key)
            result.append(record)
    return result


def map_records_to_branch_categories(records: Iterable[PurchaseRecord]) -> dict[str, list[str]]:
    """Map each branch to the distinct categories bought there."""
    mapping: dict[str, dict[str, None]] = {}
    for record in records:
        mapping.setdefault(record.branch_id, {})[record.category_id] = None
    return {branch: list(categories) for branch, categories in mapping.items()}