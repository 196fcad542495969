"""Multi-step conversation flows.

Each flow is a frozen dataclass holding only the fields it has collected so
far; ``step`` is derived from which of them are still missing. Advancing a flow
means building a new value with :func:`dataclasses.replace`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Union

from ..models import AccountType, CategoryKind


@dataclass(frozen=True, slots=True)
class AddGoal:
    name: str | None = None
    target_amount: float | None = None
    icon: str | None = None

    @property
    def step(self) -> int:
        if self.name is None:
            return 1
        if self.target_amount is None:
            return 2
        if self.icon is None:
            return 3
        return 4


@dataclass(frozen=True, slots=True)
class EditGoal:
    goal_id: int
    step = 1


@dataclass(frozen=True, slots=True)
class AddToGoal:
    goal_id: int
    step = 1


@dataclass(frozen=True, slots=True)
class DeleteGoal:
    goal_id: int
    step = 1


@dataclass(frozen=True, slots=True)
class AddBudget:
    category: str
    step = 1


@dataclass(frozen=True, slots=True)
class EditBudget:
    budget_id: int
    step = 1


@dataclass(frozen=True, slots=True)
class DeleteBudget:
    budget_id: int
    step = 1


@dataclass(frozen=True, slots=True)
class AddAccount:
    name: str | None = None
    type: AccountType | None = None

    @property
    def step(self) -> int:
        if self.name is None:
            return 1
        if self.type is None:
            return 2
        return 3


@dataclass(frozen=True, slots=True)
class EditAccountBalance:
    account_id: int
    step = 1


@dataclass(frozen=True, slots=True)
class DeleteAccount:
    account_id: int
    step = 1


@dataclass(frozen=True, slots=True)
class AddCategory:
    name: str | None = None
    kind: CategoryKind | None = None
    icon: str | None = None

    @property
    def step(self) -> int:
        if self.name is None:
            return 1
        if self.kind is None:
            return 2
        if self.icon is None:
            return 3
        return 4


@dataclass(frozen=True, slots=True)
class EditCategoryName:
    category_id: int
    step = 1


@dataclass(frozen=True, slots=True)
class EditCategoryKeywords:
    category_id: int
    step = 1


@dataclass(frozen=True, slots=True)
class DeleteCategory:
    category_id: int
    step = 1


@dataclass(frozen=True, slots=True)
class ReportByDate:
    step = 1


@dataclass(frozen=True, slots=True)
class ReportByRange:
    start: date | None = None

    @property
    def step(self) -> int:
        return 1 if self.start is None else 2


Flow = Union[
    AddGoal,
    EditGoal,
    AddToGoal,
    DeleteGoal,
    AddBudget,
    EditBudget,
    DeleteBudget,
    AddAccount,
    EditAccountBalance,
    DeleteAccount,
    AddCategory,
    EditCategoryName,
    EditCategoryKeywords,
    DeleteCategory,
    ReportByDate,
    ReportByRange,
]


@dataclass(slots=True)
class ConversationState:
    """Per-identity state; never persisted."""

    flow: Flow | None = None
    last_message_id: int | None = None

    def clear_flow(self) -> None:
        # The live message survives so the next turn keeps editing it.
        self.flow = None
