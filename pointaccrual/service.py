"""Point accrual: read purchase files, apply rules and write point summaries."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Protocol

from .config import Config
from .csvio import CsvError, read_with_header_validation, write_records
from .entity import Customer, Record, Rule, RuleType, UpdateCustomer, find_customer
from .errors import INTERNAL, INVALID_ARGUMENT
from .models import (
    CustomerPointRecord,
    FileInput,
    PurchaseRecord,
    entity_to_customer_point_records,
    map_records_to_branch_categories,
    unique_customer_ids,
    unique_records,
)

logger = logging.getLogger(__name__)

_DATE_FORMAT = "%Y-%m-%d"


class RuleRepository(Protocol):
    """Source of accrual rules."""

    def get_active_rules(self, branch_categories: dict[str, list[str]]) -> list[Rule]:
        """Return active rules for the given branches and their categories."""


class CustomerRepository(Protocol):
    """Store of customers and their points."""

    def get_customers(self, customer_ids: Sequence[str]) -> list[Customer]:
        """Return the customers with these ids, or every customer for an empty list."""

    def update_bulk_customers(self, updates: Sequence[UpdateCustomer]) -> None:
        """Add points and records to customers, creating those that do not exist."""


def _date_key(moment: datetime) -> str:
    return moment.strftime(_DATE_FORMAT)


def _floor_div(dividend: Decimal, divisor: Decimal) -> Decimal:
    """Exact floor division for a positive divisor."""
    quotient = dividend // divisor
    if dividend % divisor != 0 and dividend < 0:
        quotient -= 1
    return quotient


class AccumulatePointService:
    """Turns purchase files into customer points and daily summary files."""

    def __init__(
        self,
        rule_repo: RuleRepository,
        customer_repo: CustomerRepository,
        config: Config,
    ) -> None:
        self.rule_repo = rule_repo
        self.customer_repo = customer_repo
        self.config = config

    def execute_multiple_files(self, files: Sequence[FileInput]) -> None:
        """Accrue points for every purchase in ``files`` and write a summary per date."""
        if not files:
            raise INVALID_ARGUMENT.with_message("no files")

        all_records: list[PurchaseRecord] = []
        purchased_dates: dict[datetime, None] = {}
        for file in files:
            try:
                records = read_with_header_validation(file.reader, PurchaseRecord)
            except CsvError as exc:
                raise INVALID_ARGUMENT.wrap(exc) from exc

            purchased_dates[file.purchased_date] = None
            for record in records:
                record.purchase_date = file.purchased_date
                all_records.append(record)

        all_records = unique_records(all_records)

        rules = self.rule_repo.get_active_rules(map_records_to_branch_categories(all_records))
        customers = self.customer_repo.get_customers(unique_customer_ids(all_records))

        updates = calculate_batch_points(rules, all_records, customers)
        if updates:
            self.customer_repo.update_bulk_customers(updates)

        updated_customers = self.customer_repo.get_customers([])

        for date in sorted(purchased_dates):
            save_file(updated_customers, self.config.file_path, _date_key(date))


def save_file(customers: Iterable[Customer], file_path: str, date_string: str) -> None:
    """Write the point summary for ``date_string`` to ``file_path`` filled with that date."""
    try:
        full_path = Path(file_path % date_string)
    except (TypeError, ValueError) as exc:
        raise INTERNAL.wrap(exc) from exc

    directory = full_path.parent
    try:
        directory.mkdir(mode=0o755, parents=True, exist_ok=True)
    except OSError as exc:
        cause = OSError(f"failed to create directory {directory}: {exc}")
        raise INTERNAL.wrap(cause) from exc

    records = entity_to_customer_point_records(customers, date_string)
    records.sort(key=lambda r: r.last_purchase_date, reverse=True)
    records.sort(key=lambda r: r.points, reverse=True)

    try:
        with full_path.open("w", encoding="utf-8", newline="") as stream:
            write_records(stream, records, CustomerPointRecord)
    except OSError as exc:
        raise INTERNAL.wrap(exc) from exc


def calculate_batch_points(
    rules: Sequence[Rule],
    records: Iterable[PurchaseRecord],
    customers: Sequence[Customer],
) -> list[UpdateCustomer]:
    """Apply every rule to every record and group the earned points per customer."""
    updates: dict[str, UpdateCustomer] = {}

    for record in records:
        for rule in rules:
            points, applied = validate_and_calculate_points(rule, record, customers)
            if not applied:
                continue

            entry = Record(
                product_id=record.product_id,
                branch_id=record.branch_id,
                amount=record.purchased_amount,
                purchase_date=record.purchase_date,
            )
            date_key = _date_key(record.purchase_date)
            update = updates.get(record.customer_id)
            if update is None:
                updates[record.customer_id] = UpdateCustomer(
                    customer_id=record.customer_id,
                    points_to_add=points,
                    last_purchase_date=record.purchase_date,
                    records=[entry],
                    points_by_date={date_key: points},
                )
                continue

            update.points_to_add += points
            update.records.append(entry)
            if update.last_purchase_date is None or record.purchase_date > update.last_purchase_date:
                update.last_purchase_date = record.purchase_date
            update.points_by_date[date_key] = update.points_by_date.get(date_key, 0) + points

    return list(updates.values())


def _is_known_purchase(record: PurchaseRecord, customers: Sequence[Customer]) -> bool:
    customer = find_customer(customers, record.customer_id)
    if customer is None:
        return False
    return any(
        known.purchase_date == record.purchase_date
        and known.branch_id == record.branch_id
        and known.product_id == record.product_id
        and known.amount == record.purchased_amount
        for known in customer.records
    )


def validate_and_calculate_points(
    rule: Rule, record: PurchaseRecord, customers: Sequence[Customer]
) -> tuple[int, bool]:
    """Return the points ``rule`` grants for ``record`` and whether the rule applied."""
    if _is_known_purchase(record, customers):
        return 0, False

    conditions = rule.conditions
    amount = record.purchased_amount
    if amount < conditions.min_amount:
        return 0, False
    if conditions.branch_id and conditions.branch_id != record.branch_id:
        return 0, False
    if conditions.category_ids and record.category_id not in conditions.category_ids:
        return 0, False

    reward = rule.reward
    if rule.rule_type == RuleType.FIXED_POINT:
        return reward.value, True

    if rule.rule_type == RuleType.PERCENTAGE:
        return int((amount * reward.value) // 100), True

    if rule.rule_type == RuleType.RATIO:
        if reward.ratio_unit is not None and reward.ratio_unit > 0:
            unit = Decimal(repr(float(reward.ratio_unit)))
            return int(_floor_div(amount, unit) * reward.value), True

    return 0, False