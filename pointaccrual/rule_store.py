"""Accrual rule storage in a MongoDB collection."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from decimal import Decimal, DecimalException
from typing import Any

from bson.decimal128 import Decimal128
from pymongo.errors import PyMongoError

from .entity import Conditions, Reward, Rule, RuleType
from .errors import INTERNAL, INVALID_ARGUMENT, AppError

logger = logging.getLogger(__name__)

RULE_COLLECTION = "rules"

_EMPTY_OBJECT_ID = "0" * 24


def _to_decimal(value: Any) -> Decimal:
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


def _rule_type(value: Any) -> RuleType | str:
    try:
        return RuleType(value)
    except ValueError:
        return value


def rule_from_document(document: Mapping[str, Any]) -> Rule:
    """Build a Rule from a stored document."""
    conditions = document.get("conditions") or {}
    reward = document.get("reward") or {}
    try:
        min_amount = _to_decimal(conditions.get("min_amount"))
    except ValueError as exc:
        raise INTERNAL.wrap(exc) from exc

    ratio_unit = reward.get("ratio_unit")
    object_id = document.get("_id")
    return Rule(
        rule_type=_rule_type(document.get("rule_type", "")),
        id=_EMPTY_OBJECT_ID if object_id is None else str(object_id),
        name=document.get("name", ""),
        conditions=Conditions(
            min_amount=min_amount,
            branch_id=conditions.get("branch_id", ""),
            category_ids=list(conditions.get("category_ids") or []),
        ),
        reward=Reward(
            value=int(reward.get("value") or 0),
            ratio_unit=None if ratio_unit is None else float(ratio_unit),
        ),
        status=document.get("status", ""),
    )


def rules_from_documents(documents: Iterable[Mapping[str, Any]]) -> list[Rule]:
    """Build rules from stored documents, logging and skipping any that are malformed."""
    rules = []
    for document in documents:
        try:
            rules.append(rule_from_document(document))
        except AppError as exc:
            logger.warning("skipping rule document: %s", exc)
    return rules


def filter_active_rules(branch_categories: Mapping[str, Sequence[str]]) -> dict[str, Any]:
    """Return a query for active rules of these branches and categories."""
    if not branch_categories:
        raise INVALID_ARGUMENT.with_message("branch categories is empty")

    alternatives = []
    for branch_id, category_ids in branch_categories.items():
        clause: dict[str, Any] = {"conditions.branch_id": branch_id}
        if category_ids:
            clause["conditions.category_ids"] = {"$in": list(category_ids)}
        alternatives.append(clause)

    return {"status": "ACTIVE", "$or": alternatives}


class MongoRuleRepository:
    """Rule repository backed by the ``rules`` collection."""

    def __init__(self, database: Any) -> None:
        self._collection = database[RULE_COLLECTION]

    def get_active_rules(self, branch_categories: Mapping[str, Sequence[str]]) -> list[Rule]:
        """Return active rules for the given branches and their categories."""
        query = filter_active_rules(branch_categories)
        try:
            documents = list(self._collection.find(query))
        except PyMongoError as exc:
            raise INTERNAL.wrap(exc) from exc
        return rules_from_documents(documents)