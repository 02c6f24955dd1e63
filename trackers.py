import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

from database import BILL_GROUPS, BUDGET_TRACKERS, serialize, utcnow
from schemas import BUDGET_CATEGORIES, SPLIT_TYPES

logger = logging.getLogger(__name__)

DEFAULT_GROUP = {"groupName": "My Group", "people": [], "expenses": []}

DEFAULT_TOTAL_BUDGET = 1000.0
DEFAULT_CATEGORY_BUDGETS = {
    "Food": 300.0,
    "Transportation": 200.0,
    "Entertainment": 100.0,
    "Other": 100.0,
}


def bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


def parse_float(value: Any) -> Optional[float]:
    """Lenient number parsing for loosely typed bodies; None when not a finite number"""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value.strip() if isinstance(value, str) else value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def parse_date(value: Any) -> datetime:
    if not value:
        return utcnow()
    if not isinstance(value, str):
        raise bad_request("Invalid date")
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        raise bad_request("Invalid date")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


class BillGroupService:
    """One bill-splitting group per user, created on first touch.

    Settlement is not computed here; the group only stores people and the
    inputs of each shared expense.
    """

    def __init__(self, store):
        self.store = store

    def _get_or_create(self, user: dict) -> dict:
        return self.store.find_or_create(BILL_GROUPS, {"userId": user["userId"]}, DEFAULT_GROUP)

    def get(self, user: dict) -> dict:
        return serialize(self._get_or_create(user))

    def add_person(self, user: dict, name: Any, note: Any = None, initial_balance: Any = None) -> dict:
        name = _text(name)
        if not name:
            raise bad_request("Person name is required")

        self._get_or_create(user)
        group = self.store.push(BILL_GROUPS, {"userId": user["userId"]}, "people", {
            "name": name,
            "note": _text(note) or f"Hello, My name is {name}",
            "initialBalance": parse_float(initial_balance) or 0.0,
        })
        return serialize(group)

    def remove_person(self, user: dict, person_id: str) -> dict:
        self._get_or_create(user)
        return serialize(self.store.pull(BILL_GROUPS, {"userId": user["userId"]}, "people", person_id))

    def add_expense(
        self,
        user: dict,
        description: Any,
        amount: Any,
        payer: Any,
        date: Any = None,
        split_type: Any = None,
        shares: Any = None,
    ) -> dict:
        description = _text(description)
        payer = _text(payer)
        if not description or amount in (None, "", 0) or not payer:
            raise bad_request("Description, amount, and payer are required")

        value = parse_float(amount)
        if value is None or value <= 0:
            raise bad_request("Amount must be greater than 0")

        split_type = split_type or "equal"
        if split_type not in SPLIT_TYPES:
            raise bad_request("Split type must be equal or shares")

        weights: Dict[str, float] = {}
        if shares:
            if not isinstance(shares, dict):
                raise bad_request("Shares must map each person to a weight")
            for person, weight in shares.items():
                parsed = parse_float(weight)
                if parsed is None or parsed < 0:
                    raise bad_request(f"Invalid share for {person}")
                weights[str(person)] = parsed

        entry = {
            "description": description,
            "amount": value,
            "payer": payer,
            "date": parse_date(date),
            "splitType": split_type,
            "shares": weights,
        }
        self._get_or_create(user)
        group = self.store.push(BILL_GROUPS, {"userId": user["userId"]}, "expenses", entry)
        return serialize(group)

    def remove_expense(self, user: dict, expense_id: str) -> dict:
        self._get_or_create(user)
        return serialize(self.store.pull(BILL_GROUPS, {"userId": user["userId"]}, "expenses", expense_id))

    def reset(self, user: dict):
        self.store.delete_one(BILL_GROUPS, {"userId": user["userId"]})
        logger.info(f"Bill group reset for {user['userId']}")


class BudgetService:
    """One budget tracker per user over the four fixed categories"""

    def __init__(self, store):
        self.store = store

    def _get_or_create(self, user: dict) -> dict:
        return self.store.find_or_create(BUDGET_TRACKERS, {"userId": user["userId"]}, {
            "totalBudget": DEFAULT_TOTAL_BUDGET,
            "categoryBudgets": dict(DEFAULT_CATEGORY_BUDGETS),
            "expenses": [],
        })

    def get(self, user: dict) -> dict:
        return serialize(self._get_or_create(user))

    def update_settings(
        self,
        user: dict,
        total_budget: Optional[float] = None,
        category_budgets: Optional[Dict[str, float]] = None,
    ) -> dict:
        """Partial patch; a field left out keeps its current (or default) value"""
        tracker = self._get_or_create(user)
        fields: Dict[str, Any] = {}
        if total_budget is not None:
            fields["totalBudget"] = total_budget
        for category, amount in (category_budgets or {}).items():
            fields[f"categoryBudgets.{category}"] = amount
        if fields:
            tracker = self.store.update_one(BUDGET_TRACKERS, {"userId": user["userId"]}, fields)
        return serialize(tracker)

    def add_expense(self, user: dict, category: Any, amount: Any, description: Any = None) -> dict:
        if not category or amount in (None, "", 0):
            raise bad_request("Category and amount are required")

        value = parse_float(amount)
        if value is None or value <= 0:
            raise bad_request("Amount must be greater than 0")

        if category not in BUDGET_CATEGORIES:
            raise bad_request("Invalid category")

        self._get_or_create(user)
        tracker = self.store.push(BUDGET_TRACKERS, {"userId": user["userId"]}, "expenses", {
            "category": category,
            "amount": value,
            "description": _text(description) or "No description",
            "date": utcnow(),
        })
        return serialize(tracker)

    def remove_expense(self, user: dict, expense_id: str) -> dict:
        self._get_or_create(user)
        return serialize(self.store.pull(BUDGET_TRACKERS, {"userId": user["userId"]}, "expenses", expense_id))
