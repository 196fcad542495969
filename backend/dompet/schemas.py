from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .models import AccountType, CategoryKind, TransactionKind


class ParsedTransaction(BaseModel):
    """What the transaction parser extracted from one chat message."""

    kind: TransactionKind
    amount: float = Field(gt=0)
    account_name: str = Field(min_length=1, max_length=120)
    to_account_name: Optional[str] = Field(default=None, max_length=120)
    category: str = Field(default="Other", min_length=1, max_length=120)
    note: str = Field(default="", max_length=255)

    @field_validator("account_name", "to_account_name", "category", "note", mode="before")
    @classmethod
    def strip_text(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value


class OtpRequest(BaseModel):
    username: str = Field(min_length=1, max_length=64)

    @field_validator("username")
    @classmethod
    def normalise_username(cls, value: str) -> str:
        return value.strip().lstrip("@").lower()


class OtpVerifyRequest(OtpRequest):
    code: str = Field(min_length=4, max_length=8)


class OtpRequestOut(BaseModel):
    expires_at: datetime
    is_existing: bool
    remaining_daily: int


class SessionToken(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime


class AccountOut(BaseModel):
    id: int
    name: str
    type: AccountType
    balance: float
    icon: str

    class Config:
        from_attributes = True


class TransactionOut(BaseModel):
    id: int
    account_id: int
    to_account_id: Optional[int] = None
    amount: float
    kind: TransactionKind
    category: str
    occurred_at: datetime
    note: str

    class Config:
        from_attributes = True


class GoalOut(BaseModel):
    id: int
    name: str
    target_amount: float
    current_amount: float
    deadline: Optional[datetime] = None
    icon: str
    color: str

    class Config:
        from_attributes = True


class BudgetOut(BaseModel):
    id: int
    category: str
    limit: float
    spent: float

    class Config:
        from_attributes = True


class CategoryOut(BaseModel):
    id: int
    name: str
    icon: str
    keywords: list[str]
    kind: CategoryKind

    class Config:
        from_attributes = True


class StateOut(BaseModel):
    accounts: list[AccountOut]
    transactions: list[TransactionOut]
    goals: list[GoalOut]
    budgets: list[BudgetOut]
    categories: list[CategoryOut]


class ClearAllOut(BaseModel):
    cleared: bool = True


class ClearTransactionsOut(BaseModel):
    removed: int


class ChatCommandIn(BaseModel):
    message: str = Field(min_length=1, max_length=500)


class ChatCommandOut(BaseModel):
    parsed: ParsedTransaction
    transaction: TransactionOut
    accounts: list[AccountOut]
    budgets: list[BudgetOut]
