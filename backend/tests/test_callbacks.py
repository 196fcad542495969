import pytest

from dompet.domain.callbacks import (
    Action,
    Choose,
    Command,
    Field,
    Menu,
    Navigate,
    Select,
    Target,
    back,
    parse_callback,
)


@pytest.mark.parametrize(
    ("token", "expected"),
    [
        ("menu_goals", Navigate(Menu.GOALS)),
        ("back_accounts", Navigate(Menu.ACCOUNTS, back=True)),
        ("menu_list", Navigate(Menu.HISTORY)),
        ("menu_clear_all", Navigate(Menu.CLEAR_ALL)),
        ("goal_add", Command(Action.GOAL_ADD)),
        ("goal_add_amount", Command(Action.GOAL_DEPOSIT)),
        ("bconfirm_reset_all", Command(Action.BUDGET_CONFIRM_RESET_ALL)),
        ("gedit_12", Select(Target.GOAL_EDIT, 12)),
        ("gconfirm_del_3", Select(Target.GOAL_CONFIRM_DELETE, 3)),
        ("confirm_del_7", Select(Target.ACCOUNT_CONFIRM_DELETE, 7)),
        ("bcat_5", Select(Target.BUDGET_CATEGORY, 5)),
        ("type_E-Wallet", Choose(Field.ACCOUNT_TYPE, "E-Wallet")),
        ("gicon_🎯", Choose(Field.GOAL_ICON, "🎯")),
        ("gcolor_#10b981", Choose(Field.GOAL_COLOR, "#10b981")),
        ("cattype_Income", Choose(Field.CATEGORY_KIND, "Income")),
    ],
)
def test_parse_callback(token, expected):
    assert parse_callback(token) == expected


@pytest.mark.parametrize(
    "token",
    ["", "menu_nowhere", "gedit_", "gedit_abc", "gedit_١٢", "cicon_", "something_else"],
)
def test_unknown_tokens_parse_to_none(token):
    assert parse_callback(token) is None


@pytest.mark.parametrize(
    "callback",
    [
        Navigate(Menu.BUDGETS),
        back(Menu.REPORT),
        Command(Action.CATEGORY_KEYWORDS),
        Select(Target.CATEGORY_CONFIRM_DELETE, 99),
        Choose(Field.CATEGORY_ICON, "🍔"),
    ],
)
def test_token_parses_back_to_same_variant(callback):
    assert parse_callback(callback.token) == callback


def test_tokens_fit_telegram_limit():
    longest = max([*Action, *Target], key=lambda item: len(item.value))
    assert len(f"{longest.value}_{2**31}".encode()) <= 64
