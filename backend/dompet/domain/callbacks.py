"""Inline-button callback tokens.

Buttons carry short string tokens (Telegram limits them to 64 bytes). They are
parsed exactly once, at the transport boundary, into one of four variants:

* :class:`Navigate` opens a menu (``menu_goals``) or goes back to one
  (``back_goals``);
* :class:`Command` is a fixed action without arguments (``goal_add``);
* :class:`Select` picks an entity by id (``gedit_12``);
* :class:`Choose` picks a value while a flow is collecting it (``gicon_🎯``).

Every variant renders back to its token through ``.token``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class Menu(str, Enum):
    MAIN = "main"
    BALANCE = "balance"
    HISTORY = "list"
    ACCOUNTS = "accounts"
    REPORT = "report"
    GOALS = "goals"
    BUDGETS = "budgets"
    CATEGORIES = "categories"
    HELP = "help"
    OTP = "otp"
    CLEAR_ALL = "clear_all"


class Action(str, Enum):
    ACCOUNT_LIST = "acc_list"
    ACCOUNT_ADD = "acc_add"
    ACCOUNT_EDIT_BALANCE = "acc_edit_balance"
    ACCOUNT_DELETE = "acc_delete"

    REPORT_TODAY = "report_today"
    REPORT_YESTERDAY = "report_yesterday"
    REPORT_WEEK = "report_week"
    REPORT_MONTH = "report_month"
    REPORT_DATE = "report_date"
    REPORT_RANGE = "report_range"

    GOAL_LIST = "goal_list"
    GOAL_ADD = "goal_add"
    GOAL_EDIT = "goal_edit"
    GOAL_DELETE = "goal_delete"
    GOAL_DEPOSIT = "goal_add_amount"

    BUDGET_LIST = "budget_list"
    BUDGET_ADD = "budget_add"
    BUDGET_EDIT = "budget_edit"
    BUDGET_DELETE = "budget_delete"
    BUDGET_RESET_ALL = "budget_reset_all"
    BUDGET_CONFIRM_RESET_ALL = "bconfirm_reset_all"

    CATEGORY_LIST = "cat_list"
    CATEGORY_ADD = "cat_add"
    CATEGORY_EDIT = "cat_edit"
    CATEGORY_DELETE = "cat_delete"
    CATEGORY_KEYWORDS = "cat_keywords"

    CONFIRM_CLEAR_ALL = "confirm_clear_all"


class Target(str, Enum):
    ACCOUNT_EDIT = "sel_edit"
    ACCOUNT_DELETE = "sel_del"
    ACCOUNT_CONFIRM_DELETE = "confirm_del"
    GOAL_EDIT = "gedit"
    GOAL_DELETE = "gdel"
    GOAL_CONFIRM_DELETE = "gconfirm_del"
    GOAL_DEPOSIT = "gadd"
    BUDGET_CATEGORY = "bcat"
    BUDGET_EDIT = "bedit"
    BUDGET_DELETE = "bdel"
    BUDGET_CONFIRM_DELETE = "bconfirm_del"
    CATEGORY_EDIT = "cedit"
    CATEGORY_DELETE = "cdel"
    CATEGORY_CONFIRM_DELETE = "cconfirm_del"
    CATEGORY_KEYWORDS = "ckw"


class Field(str, Enum):
    ACCOUNT_TYPE = "type"
    GOAL_ICON = "gicon"
    GOAL_COLOR = "gcolor"
    CATEGORY_KIND = "cattype"
    CATEGORY_ICON = "cicon"


@dataclass(frozen=True, slots=True)
class Navigate:
    menu: Menu
    back: bool = False

    @property
    def token(self) -> str:
        return f"{'back' if self.back else 'menu'}_{self.menu.value}"


@dataclass(frozen=True, slots=True)
class Command:
    action: Action

    @property
    def token(self) -> str:
        return self.action.value


@dataclass(frozen=True, slots=True)
class Select:
    target: Target
    entity_id: int

    @property
    def token(self) -> str:
        return f"{self.target.value}_{self.entity_id}"


@dataclass(frozen=True, slots=True)
class Choose:
    field: Field
    value: str

    @property
    def token(self) -> str:
        return f"{self.field.value}_{self.value}"


Callback = Union[Navigate, Command, Select, Choose]

_ACTIONS = {action.value: action for action in Action}
_MENUS = {menu.value: menu for menu in Menu}
# Longest prefix first so that e.g. ``gconfirm_del`` is never read as a shorter one.
_TARGETS = sorted(Target, key=lambda target: len(target.value), reverse=True)
_FIELDS = sorted(Field, key=lambda field: len(field.value), reverse=True)


def parse_callback(token: str) -> Callback | None:
    """Map a raw token to its variant, or ``None`` when nothing matches."""
    token = token.strip()
    if token in _ACTIONS:
        return Command(_ACTIONS[token])

    head, sep, rest = token.partition("_")
    if sep and head in ("menu", "back") and rest in _MENUS:
        return Navigate(_MENUS[rest], back=head == "back")

    for target in _TARGETS:
        prefix = f"{target.value}_"
        if token.startswith(prefix):
            entity_id = token[len(prefix):]
            if entity_id.isascii() and entity_id.isdigit():
                return Select(target, int(entity_id))
            return None

    for field in _FIELDS:
        prefix = f"{field.value}_"
        if token.startswith(prefix) and len(token) > len(prefix):
            return Choose(field, token[len(prefix):])
    return None


def back(menu: Menu) -> Navigate:
    return Navigate(menu, back=True)
