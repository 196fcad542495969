from datetime import datetime

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from .domain.entities import TransactionDraft, normalise_keywords
from .models import (
    AccountModel,
    AccountType,
    BudgetModel,
    CategoryKind,
    CategoryModel,
    GoalModel,
    TelegramProfileModel,
    TransactionKind,
    TransactionModel,
)


def list_accounts(db: Session) -> list[AccountModel]:
    return list(db.scalars(select(AccountModel).order_by(AccountModel.id)))


def get_account(db: Session, account_id: int) -> AccountModel | None:
    return db.get(AccountModel, account_id)


def get_account_by_name(db: Session, name: str) -> AccountModel | None:
    """Exact case-insensitive match first, then the first account containing ``name``."""
    lowered = name.strip().lower()
    if not lowered:
        return None
    exact = db.scalar(select(AccountModel).where(func.lower(AccountModel.name) == lowered))
    if exact:
        return exact
    stmt = (
        select(AccountModel)
        .where(func.lower(AccountModel.name).like(f"%{lowered}%"))
        .order_by(AccountModel.id)
    )
    return db.scalars(stmt).first()


def create_account(db: Session, name: str, type_: AccountType, balance: float, icon: str) -> AccountModel:
    account = AccountModel(name=name, type=type_, balance=balance, icon=icon)
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def update_account_balance(db: Session, account: AccountModel, balance: float) -> AccountModel:
    account.balance = balance
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def update_account(db: Session, account: AccountModel, **changes: object) -> AccountModel:
    for key, value in changes.items():
        if hasattr(account, key) and value is not None:
            setattr(account, key, value)
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def delete_account(db: Session, account: AccountModel) -> int:
    """Delete an account and every transaction booked on it. Returns removed transactions."""
    removed = db.execute(
        delete(TransactionModel).where(TransactionModel.account_id == account.id)
    ).rowcount or 0
    db.execute(
        update(TransactionModel)
        .where(TransactionModel.to_account_id == account.id)
        .values(to_account_id=None)
    )
    db.execute(delete(AccountModel).where(AccountModel.id == account.id))
    db.commit()
    return removed


def list_transactions(
    db: Session,
    limit: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    account_id: int | None = None,
) -> list[TransactionModel]:
    stmt = select(TransactionModel)
    if start:
        stmt = stmt.where(TransactionModel.occurred_at >= start)
    if end:
        stmt = stmt.where(TransactionModel.occurred_at <= end)
    if account_id is not None:
        stmt = stmt.where(TransactionModel.account_id == account_id)
    stmt = stmt.order_by(TransactionModel.occurred_at.desc(), TransactionModel.id.desc())
    if limit:
        stmt = stmt.limit(limit)
    return list(db.scalars(stmt))


def get_transaction(db: Session, transaction_id: int) -> TransactionModel | None:
    return db.get(TransactionModel, transaction_id)


def search_transactions(db: Session, query: str, limit: int = 10) -> list[TransactionModel]:
    pattern = f"%{query.strip().lower()}%"
    stmt = (
        select(TransactionModel)
        .where(
            or_(
                func.lower(TransactionModel.note).like(pattern),
                func.lower(TransactionModel.category).like(pattern),
            )
        )
        .order_by(TransactionModel.occurred_at.desc(), TransactionModel.id.desc())
        .limit(limit)
    )
    return list(db.scalars(stmt))


def record_transaction(db: Session, draft: TransactionDraft) -> TransactionModel:
    """Insert a transaction, move the balances and charge the matching budget in one commit."""
    source = db.get(AccountModel, draft.account_id)
    if source is None:
        raise LookupError(f"account {draft.account_id} does not exist")

    to_account_id: int | None = None
    if draft.kind == TransactionKind.EXPENSE:
        source.balance -= draft.amount
    elif draft.kind == TransactionKind.INCOME:
        source.balance += draft.amount
    elif draft.kind == TransactionKind.TRANSFER and draft.to_account_id is not None:
        target = db.get(AccountModel, draft.to_account_id)
        if target is not None:
            source.balance -= draft.amount
            target.balance += draft.amount
            to_account_id = target.id

    if draft.kind == TransactionKind.EXPENSE:
        budget = get_budget_by_category(db, draft.category)
        if budget is not None:
            budget.spent += draft.amount

    transaction = TransactionModel(
        account_id=source.id,
        to_account_id=to_account_id,
        amount=draft.amount,
        kind=draft.kind,
        category=draft.category,
        occurred_at=draft.occurred_at,
        note=draft.note,
    )
    db.add(transaction)
    db.commit()
    db.refresh(transaction)
    return transaction


def delete_transaction(db: Session, transaction: TransactionModel) -> None:
    """Remove a transaction and revert its effect on account balances."""
    source = db.get(AccountModel, transaction.account_id)
    if source is not None:
        if transaction.kind == TransactionKind.EXPENSE:
            source.balance += transaction.amount
        elif transaction.kind == TransactionKind.INCOME:
            source.balance -= transaction.amount
        elif transaction.kind == TransactionKind.TRANSFER and transaction.to_account_id is not None:
            target = db.get(AccountModel, transaction.to_account_id)
            if target is not None:
                source.balance += transaction.amount
                target.balance -= transaction.amount
    db.delete(transaction)
    db.commit()


def list_goals(db: Session) -> list[GoalModel]:
    return list(db.scalars(select(GoalModel).order_by(GoalModel.id)))


def get_goal(db: Session, goal_id: int) -> GoalModel | None:
    return db.get(GoalModel, goal_id)


def create_goal(db: Session, name: str, target_amount: float, icon: str, color: str) -> GoalModel:
    goal = GoalModel(name=name, target_amount=target_amount, current_amount=0.0, icon=icon, color=color)
    db.add(goal)
    db.commit()
    db.refresh(goal)
    return goal


def update_goal(db: Session, goal: GoalModel, **changes: object) -> GoalModel:
    for key, value in changes.items():
        if hasattr(goal, key) and value is not None:
            setattr(goal, key, value)
    db.add(goal)
    db.commit()
    db.refresh(goal)
    return goal


def add_to_goal(db: Session, goal: GoalModel, amount: float) -> GoalModel:
    goal.current_amount += amount
    db.add(goal)
    db.commit()
    db.refresh(goal)
    return goal


def delete_goal(db: Session, goal: GoalModel) -> None:
    db.delete(goal)
    db.commit()


def list_budgets(db: Session) -> list[BudgetModel]:
    return list(db.scalars(select(BudgetModel).order_by(BudgetModel.id)))


def get_budget(db: Session, budget_id: int) -> BudgetModel | None:
    return db.get(BudgetModel, budget_id)


def get_budget_by_category(db: Session, category: str) -> BudgetModel | None:
    return db.scalar(
        select(BudgetModel).where(func.lower(BudgetModel.category) == category.strip().lower())
    )


def create_budget(db: Session, category: str, limit: float) -> BudgetModel:
    budget = BudgetModel(category=category, limit=limit, spent=0.0)
    db.add(budget)
    db.commit()
    db.refresh(budget)
    return budget


def update_budget(
    db: Session,
    budget: BudgetModel,
    limit: float | None = None,
    spent: float | None = None,
) -> BudgetModel:
    if limit is not None:
        budget.limit = limit
    if spent is not None:
        budget.spent = spent
    db.add(budget)
    db.commit()
    db.refresh(budget)
    return budget


def reset_all_budgets(db: Session) -> int:
    count = db.execute(update(BudgetModel).values(spent=0.0)).rowcount or 0
    db.commit()
    return count


def delete_budget(db: Session, budget: BudgetModel) -> None:
    db.delete(budget)
    db.commit()


def list_categories(db: Session) -> list[CategoryModel]:
    return list(db.scalars(select(CategoryModel).order_by(CategoryModel.name)))


def get_category(db: Session, category_id: int) -> CategoryModel | None:
    return db.get(CategoryModel, category_id)


def get_category_by_name(db: Session, name: str) -> CategoryModel | None:
    return db.scalar(
        select(CategoryModel).where(func.lower(CategoryModel.name) == name.strip().lower())
    )


def create_category(
    db: Session,
    name: str,
    icon: str,
    keywords: tuple[str, ...] | list[str] | str,
    kind: CategoryKind,
) -> CategoryModel:
    category = CategoryModel(
        name=name,
        icon=icon,
        keywords=",".join(normalise_keywords(keywords)),
        kind=kind,
    )
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


def update_category(db: Session, category: CategoryModel, **changes: object) -> CategoryModel:
    if "keywords" in changes and changes["keywords"] is not None:
        changes["keywords"] = ",".join(normalise_keywords(changes["keywords"]))  # type: ignore[arg-type]
    for key, value in changes.items():
        if hasattr(category, key) and value is not None:
            setattr(category, key, value)
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


def delete_category(db: Session, category: CategoryModel) -> None:
    db.delete(category)
    db.commit()


def clear_transactions(db: Session) -> int:
    """Delete every transaction. Balances and budgets are left as they are."""
    removed = db.execute(delete(TransactionModel)).rowcount
    db.commit()
    return removed


def clear_all_data(db: Session) -> None:
    """Wipe accounts, transactions, goals and budgets. Categories are kept."""
    db.execute(delete(TransactionModel))
    db.execute(delete(AccountModel))
    db.execute(delete(GoalModel))
    db.execute(delete(BudgetModel))
    db.commit()


def upsert_telegram_profile(
    db: Session,
    username: str,
    chat_id: str,
    first_name: str | None,
) -> TelegramProfileModel:
    key = username.lower()
    profile = db.get(TelegramProfileModel, key)
    if profile is None:
        profile = TelegramProfileModel(username=key, chat_id=chat_id, first_name=first_name)
    else:
        profile.chat_id = chat_id
        if first_name is not None:
            profile.first_name = first_name
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return profile


def get_chat_id_by_username(db: Session, username: str) -> str | None:
    profile = db.get(TelegramProfileModel, username.lstrip("@").lower())
    return profile.chat_id if profile else None
