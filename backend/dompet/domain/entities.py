from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..clock import as_utc
from ..models import (
    AccountModel,
    AccountType,
    BudgetModel,
    CategoryKind,
    CategoryModel,
    GoalModel,
    TransactionKind,
    TransactionModel,
)


@dataclass(slots=True)
class Account:
    id: int
    name: str
    type: AccountType
    balance: float
    icon: str


@dataclass(slots=True)
class Transaction:
    """A recorded movement of money on one account (two for transfers)."""

    id: int
    account_id: int
    amount: float
    kind: TransactionKind
    category: str
    occurred_at: datetime
    note: str
    to_account_id: int | None = None


@dataclass(slots=True)
class TransactionDraft:
    """Everything needed to record a transaction, before it has an id."""

    account_id: int
    amount: float
    kind: TransactionKind
    category: str
    occurred_at: datetime
    note: str
    to_account_id: int | None = None


@dataclass(slots=True)
class Goal:
    id: int
    name: str
    target_amount: float
    current_amount: float
    icon: str
    color: str
    deadline: datetime | None = None

    @property
    def progress_percent(self) -> int:
        if self.target_amount <= 0:
            return 0
        return round(self.current_amount / self.target_amount * 100)


@dataclass(slots=True)
class Budget:
    id: int
    category: str
    limit: float
    spent: float

    @property
    def usage_percent(self) -> int:
        if self.limit <= 0:
            return 0
        return round(self.spent / self.limit * 100)


@dataclass(slots=True)
class Category:
    id: int
    name: str
    icon: str
    keywords: tuple[str, ...]
    kind: CategoryKind


def normalise_keywords(raw: str | list[str] | tuple[str, ...]) -> tuple[str, ...]:
    """Split, lower-case and de-duplicate keywords, keeping first-seen order."""
    items = raw.split(",") if isinstance(raw, str) else raw
    seen: dict[str, None] = {}
    for item in items:
        keyword = item.strip().lower()
        if keyword:
            seen.setdefault(keyword, None)
    return tuple(seen)


def account_from_model(model: AccountModel) -> Account:
    return Account(
        id=model.id,
        name=model.name,
        type=AccountType(model.type),
        balance=float(model.balance),
        icon=model.icon,
    )


def transaction_from_model(model: TransactionModel) -> Transaction:
    return Transaction(
        id=model.id,
        account_id=model.account_id,
        to_account_id=model.to_account_id,
        amount=float(model.amount),
        kind=TransactionKind(model.kind),
        category=model.category,
        occurred_at=as_utc(model.occurred_at),
        note=model.note or "",
    )


def goal_from_model(model: GoalModel) -> Goal:
    return Goal(
        id=model.id,
        name=model.name,
        target_amount=float(model.target_amount),
        current_amount=float(model.current_amount),
        icon=model.icon,
        color=model.color,
        deadline=as_utc(model.deadline) if model.deadline else None,
    )


def budget_from_model(model: BudgetModel) -> Budget:
    return Budget(id=model.id, category=model.category, limit=float(model.limit), spent=float(model.spent))


def category_from_model(model: CategoryModel) -> Category:
    return Category(
        id=model.id,
        name=model.name,
        icon=model.icon,
        keywords=normalise_keywords(model.keywords or ""),
        kind=CategoryKind(model.kind),
    )
