"""Record store used by the conversation engine.

Thin, synchronous facade over :mod:`dompet.crud`. Each call opens its own
session, commits before returning and hands back plain domain entities, so
writes are visible to the very next call. Any SQLAlchemy failure surfaces as
:class:`~dompet.errors.RecordStoreError`; mutating a missing record raises
:class:`~dompet.errors.NotFoundError`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from . import crud
from .classifier import classify
from .db import SessionLocal
from .domain.entities import (
    Account,
    Budget,
    Category,
    Goal,
    Transaction,
    TransactionDraft,
    account_from_model,
    budget_from_model,
    category_from_model,
    goal_from_model,
    transaction_from_model,
)
from .errors import NotFoundError, RecordStoreError
from .models import AccountType, CategoryKind, TransactionKind

logger = logging.getLogger(__name__)


class RecordStore:
    def __init__(self, session_factory: sessionmaker[Session] = SessionLocal) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Record store operation failed")
            raise RecordStoreError(str(exc)) from exc
        finally:
            db.close()

    # Accounts

    def get_accounts(self) -> list[Account]:
        with self._session() as db:
            return [account_from_model(row) for row in crud.list_accounts(db)]

    def get_account(self, account_id: int) -> Account | None:
        with self._session() as db:
            row = crud.get_account(db, account_id)
            return account_from_model(row) if row else None

    def get_account_by_name(self, name: str) -> Account | None:
        with self._session() as db:
            row = crud.get_account_by_name(db, name)
            return account_from_model(row) if row else None

    def add_account(self, name: str, type_: AccountType, balance: float, icon: str) -> Account:
        with self._session() as db:
            return account_from_model(crud.create_account(db, name, type_, balance, icon))

    def update_account_balance(self, account_id: int, balance: float) -> Account:
        with self._session() as db:
            row = crud.get_account(db, account_id)
            if row is None:
                raise NotFoundError("account", account_id)
            return account_from_model(crud.update_account_balance(db, row, balance))

    def update_account(self, account_id: int, **changes: object) -> Account:
        with self._session() as db:
            row = crud.get_account(db, account_id)
            if row is None:
                raise NotFoundError("account", account_id)
            return account_from_model(crud.update_account(db, row, **changes))

    def delete_account(self, account_id: int) -> int:
        """Delete the account and its transactions; returns how many transactions went with it."""
        with self._session() as db:
            row = crud.get_account(db, account_id)
            if row is None:
                raise NotFoundError("account", account_id)
            return crud.delete_account(db, row)

    # Transactions

    def get_transactions(self, limit: int | None = None) -> list[Transaction]:
        with self._session() as db:
            return [transaction_from_model(row) for row in crud.list_transactions(db, limit=limit)]

    def get_transaction(self, transaction_id: int) -> Transaction | None:
        with self._session() as db:
            row = crud.get_transaction(db, transaction_id)
            return transaction_from_model(row) if row else None

    def search_transactions(self, text: str, limit: int = 10) -> list[Transaction]:
        with self._session() as db:
            return [transaction_from_model(row) for row in crud.search_transactions(db, text, limit)]

    def get_transactions_between(self, start: datetime, end: datetime) -> list[Transaction]:
        with self._session() as db:
            rows = crud.list_transactions(db, start=start, end=end)
            return [transaction_from_model(row) for row in rows]

    def record_transaction(self, draft: TransactionDraft) -> Transaction:
        with self._session() as db:
            try:
                row = crud.record_transaction(db, draft)
            except LookupError as exc:
                raise NotFoundError("account", draft.account_id) from exc
            return transaction_from_model(row)

    def delete_transaction(self, transaction_id: int) -> Transaction:
        with self._session() as db:
            row = crud.get_transaction(db, transaction_id)
            if row is None:
                raise NotFoundError("transaction", transaction_id)
            removed = transaction_from_model(row)
            crud.delete_transaction(db, row)
            return removed

    # Goals

    def get_goals(self) -> list[Goal]:
        with self._session() as db:
            return [goal_from_model(row) for row in crud.list_goals(db)]

    def get_goal(self, goal_id: int) -> Goal | None:
        with self._session() as db:
            row = crud.get_goal(db, goal_id)
            return goal_from_model(row) if row else None

    def add_goal(self, name: str, target_amount: float, icon: str, color: str) -> Goal:
        with self._session() as db:
            return goal_from_model(crud.create_goal(db, name, target_amount, icon, color))

    def update_goal(self, goal_id: int, **changes: object) -> Goal:
        with self._session() as db:
            row = crud.get_goal(db, goal_id)
            if row is None:
                raise NotFoundError("goal", goal_id)
            return goal_from_model(crud.update_goal(db, row, **changes))

    def add_to_goal(self, goal_id: int, amount: float) -> Goal:
        with self._session() as db:
            row = crud.get_goal(db, goal_id)
            if row is None:
                raise NotFoundError("goal", goal_id)
            return goal_from_model(crud.add_to_goal(db, row, amount))

    def delete_goal(self, goal_id: int) -> None:
        with self._session() as db:
            row = crud.get_goal(db, goal_id)
            if row is None:
                raise NotFoundError("goal", goal_id)
            crud.delete_goal(db, row)

    # Budgets

    def get_budgets(self) -> list[Budget]:
        with self._session() as db:
            return [budget_from_model(row) for row in crud.list_budgets(db)]

    def get_budget(self, budget_id: int) -> Budget | None:
        with self._session() as db:
            row = crud.get_budget(db, budget_id)
            return budget_from_model(row) if row else None

    def get_budget_by_category(self, category: str) -> Budget | None:
        with self._session() as db:
            row = crud.get_budget_by_category(db, category)
            return budget_from_model(row) if row else None

    def add_budget(self, category: str, limit: float) -> Budget:
        with self._session() as db:
            return budget_from_model(crud.create_budget(db, category, limit))

    def update_budget_limit(self, budget_id: int, limit: float) -> Budget:
        with self._session() as db:
            row = crud.get_budget(db, budget_id)
            if row is None:
                raise NotFoundError("budget", budget_id)
            return budget_from_model(crud.update_budget(db, row, limit=limit))

    def update_spent(self, budget_id: int, spent: float) -> Budget:
        with self._session() as db:
            row = crud.get_budget(db, budget_id)
            if row is None:
                raise NotFoundError("budget", budget_id)
            return budget_from_model(crud.update_budget(db, row, spent=spent))

    def reset_spent(self, budget_id: int) -> Budget:
        return self.update_spent(budget_id, 0.0)

    def reset_all_budgets(self) -> int:
        with self._session() as db:
            return crud.reset_all_budgets(db)

    def delete_budget(self, budget_id: int) -> None:
        with self._session() as db:
            row = crud.get_budget(db, budget_id)
            if row is None:
                raise NotFoundError("budget", budget_id)
            crud.delete_budget(db, row)

    # Categories

    def get_categories(self) -> list[Category]:
        with self._session() as db:
            return [category_from_model(row) for row in crud.list_categories(db)]

    def get_category(self, category_id: int) -> Category | None:
        with self._session() as db:
            row = crud.get_category(db, category_id)
            return category_from_model(row) if row else None

    def get_category_by_name(self, name: str) -> Category | None:
        with self._session() as db:
            row = crud.get_category_by_name(db, name)
            return category_from_model(row) if row else None

    def add_category(
        self,
        name: str,
        icon: str,
        keywords: tuple[str, ...] | list[str] | str,
        kind: CategoryKind,
    ) -> Category:
        with self._session() as db:
            return category_from_model(crud.create_category(db, name, icon, keywords, kind))

    def update_category(self, category_id: int, **changes: object) -> Category:
        with self._session() as db:
            row = crud.get_category(db, category_id)
            if row is None:
                raise NotFoundError("category", category_id)
            return category_from_model(crud.update_category(db, row, **changes))

    def delete_category(self, category_id: int) -> None:
        with self._session() as db:
            row = crud.get_category(db, category_id)
            if row is None:
                raise NotFoundError("category", category_id)
            crud.delete_category(db, row)

    def classify(self, text: str, kind: TransactionKind) -> str:
        return classify(text, kind, self.get_categories())

    # Housekeeping

    def clear_transactions(self) -> int:
        with self._session() as db:
            removed = crud.clear_transactions(db)
        logger.warning("Cleared %d transactions", removed)
        return removed

    def clear_all_data(self) -> None:
        with self._session() as db:
            crud.clear_all_data(db)
        logger.warning("All accounts, transactions, goals and budgets were cleared")

    def register_profile(self, username: str, chat_id: str, first_name: str | None = None) -> None:
        with self._session() as db:
            crud.upsert_telegram_profile(db, username, chat_id, first_name)

    def get_chat_id_by_username(self, username: str) -> str | None:
        with self._session() as db:
            return crud.get_chat_id_by_username(db, username)
