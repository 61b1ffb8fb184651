"""Domain entities: customers, their purchase records and accrual rules."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum


class RuleType(str, Enum):
    """The ways a rule can turn a purchase into points."""

    PERCENTAGE = "PERCENTAGE"
    FIXED_POINT = "FIXED_POINT"
    RATIO = "RATIO"


@dataclass
class Record:
    """A purchase that has already earned points for a customer."""

    product_id: str = ""
    branch_id: str = ""
    amount: Decimal = Decimal(0)
    purchase_date: datetime | None = None


@dataclass
class Customer:
    """A customer with their point balance and history."""

    customer_id: str
    points: int = 0
    last_purchase_date: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    records: list[Record] = field(default_factory=list)
    points_by_date: dict[str, int] = field(default_factory=dict)


@dataclass
class UpdateCustomer:
    """Points and records to add to one customer."""

    customer_id: str
    points_to_add: int = 0
    last_purchase_date: datetime | None = None
    records: list[Record] = field(default_factory=list)
    points_by_date: dict[str, int] = field(default_factory=dict)


@dataclass
class Reward:
    """What a rule grants: a value and, for ratio rules, the spending unit."""

    value: int = 0
    ratio_unit: float | None = None


@dataclass
class Conditions:
    """When a rule applies; an empty branch or category list matches anything."""

    min_amount: Decimal = Decimal(0)
    branch_id: str = ""
    category_ids: list[str] = field(default_factory=list)


@dataclass
class Rule:
    """A point accrual rule."""

    rule_type: RuleType | str
    id: str = ""
    name: str = ""
    conditions: Conditions = field(default_factory=Conditions)
    reward: Reward = field(default_factory=Reward)
    status: str = ""


def find_customer(customers: Iterable[Customer], customer_id: str) -> Customer | None:
    """Return the first customer with ``customer_id``, or None."""
    return next((c for c in customers if c.customer_id == customer_id), None)