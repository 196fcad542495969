from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


class TransactionKind(str, PyEnum):
    INCOME = "Income"
    EXPENSE = "Expense"
    TRANSFER = "Transfer"


class CategoryKind(str, PyEnum):
    INCOME = "Income"
    EXPENSE = "Expense"


class AccountType(str, PyEnum):
    BANK = "Bank"
    E_WALLET = "E-Wallet"
    CASH = "Cash"
    CREDIT = "Credit"


def _enum_values(enum_cls: type[PyEnum]) -> list[str]:
    return [member.value for member in enum_cls]


class AccountModel(Base):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    type: Mapped[AccountType] = mapped_column(
        Enum(AccountType, name="account_type", values_callable=_enum_values), nullable=False
    )
    balance: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    icon: Mapped[str] = mapped_column(String(16), nullable=False)

    transactions: Mapped[list["TransactionModel"]] = relationship(
        "TransactionModel",
        back_populates="account",
        cascade="all, delete-orphan",
        foreign_keys="TransactionModel.account_id",
    )


class TransactionModel(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    to_account_id: Mapped[int | None] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True
    )
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    kind: Mapped[TransactionKind] = mapped_column(
        Enum(TransactionKind, name="transaction_kind", values_callable=_enum_values), nullable=False
    )
    category: Mapped[str] = mapped_column(String(120), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    note: Mapped[str] = mapped_column(Text, nullable=False, default="")

    account: Mapped[AccountModel] = relationship(
        "AccountModel", back_populates="transactions", foreign_keys=[account_id]
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )


class GoalModel(Base):
    __tablename__ = "goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    target_amount: Mapped[float] = mapped_column(Float, nullable=False)
    current_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    icon: Mapped[str] = mapped_column(String(16), nullable=False)
    color: Mapped[str] = mapped_column(String(16), nullable=False)


class BudgetModel(Base):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    category: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    limit: Mapped[float] = mapped_column("budget_limit", Float, nullable=False)
    spent: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)


class CategoryModel(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    icon: Mapped[str] = mapped_column(String(16), nullable=False)
    keywords: Mapped[str] = mapped_column(Text, nullable=False, default="")
    kind: Mapped[CategoryKind] = mapped_column(
        Enum(CategoryKind, name="category_kind", values_callable=_enum_values),
        nullable=False,
        default=CategoryKind.EXPENSE,
    )


class OtpCodeModel(Base):
    __tablename__ = "otp_codes"

    identity: Mapped[str] = mapped_column(String(64), primary_key=True)
    code: Mapped[str] = mapped_column(String(8), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class OtpRateLimitModel(Base):
    __tablename__ = "otp_rate_limits"

    identity: Mapped[str] = mapped_column(String(64), primary_key=True)
    window_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    daily_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    daily_reset_date: Mapped[str] = mapped_column(String(10), nullable=False)


class ChatSessionModel(Base):
    __tablename__ = "sessions"

    identity: Mapped[str] = mapped_column(String(64), primary_key=True)
    authenticated_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class TelegramProfileModel(Base):
    __tablename__ = "telegram_profiles"

    username: Mapped[str] = mapped_column(String(64), primary_key=True)
    chat_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    first_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (UniqueConstraint("username", name="uq_telegram_profiles_username"),)
