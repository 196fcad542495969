import logging

from fastapi import APIRouter, Depends

from ..schemas import (
    AccountOut,
    BudgetOut,
    CategoryOut,
    ClearAllOut,
    ClearTransactionsOut,
    GoalOut,
    StateOut,
    TransactionOut,
)
from ..security import get_current_identity, get_services
from ..services import Services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["data"])


@router.get("/state", response_model=StateOut)
def read_state(
    services: Services = Depends(get_services),
    identity: str = Depends(get_current_identity),
) -> StateOut:
    store = services.store
    return StateOut(
        accounts=[AccountOut.model_validate(account) for account in store.get_accounts()],
        transactions=[TransactionOut.model_validate(tx) for tx in store.get_transactions()],
        goals=[GoalOut.model_validate(goal) for goal in store.get_goals()],
        budgets=[BudgetOut.model_validate(budget) for budget in store.get_budgets()],
        categories=[CategoryOut.model_validate(category) for category in store.get_categories()],
    )


@router.post("/data/clear-all", response_model=ClearAllOut)
def clear_all(
    services: Services = Depends(get_services),
    identity: str = Depends(get_current_identity),
) -> ClearAllOut:
    logger.warning("Clear-all requested over HTTP by %s", identity)
    services.store.clear_all_data()
    return ClearAllOut()


@router.post("/data/clear-transactions", response_model=ClearTransactionsOut)
def clear_transactions(
    services: Services = Depends(get_services),
    identity: str = Depends(get_current_identity),
) -> ClearTransactionsOut:
    logger.warning("Clear-transactions requested over HTTP by %s", identity)
    return ClearTransactionsOut(removed=services.store.clear_transactions())
