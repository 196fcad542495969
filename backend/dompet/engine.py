"""The conversation state machine.

:class:`ConversationEngine` is synchronous. Each call takes the identity's
current flow and one inbound event, performs any record-store side effects and
returns a :class:`Turn`: the single render to show plus the flow that should
be active afterwards. It never touches the chat transport; delivering the
render and remembering the flow is the dispatcher's job.

Routing order for callbacks: parse the token into a variant, then
``Navigate`` (which always drops the flow), ``Command``, ``Select`` and
``Choose``. For text: an active flow consumes it as the next field; otherwise
the command table is tried, then the transaction parser.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta, timezone

from .clock import Clock, reference_zone, utcnow
from .domain.callbacks import (
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
from .domain.entities import Transaction, TransactionDraft
from .domain.flows import (
    AddAccount,
    AddBudget,
    AddCategory,
    AddGoal,
    AddToGoal,
    DeleteAccount,
    DeleteBudget,
    DeleteCategory,
    DeleteGoal,
    EditAccountBalance,
    EditBudget,
    EditCategoryKeywords,
    EditCategoryName,
    EditGoal,
    Flow,
    ReportByDate,
    ReportByRange,
)
from .errors import NotFoundError, RecordStoreError, ValidationError
from .models import AccountType, CategoryKind, TransactionKind
from .otp import OtpAuthority, OtpFailure, OtpInvalid, OtpValid, RateLimited
from .parsing import parse_amount, parse_date, parse_keywords
from .rate_limit import DenialReason
from .render import (
    ACCOUNT_ICONS,
    CATEGORY_ICONS,
    GOAL_COLORS,
    GOAL_ICONS,
    KIND_ICONS,
    Render,
    account_select_keyboard,
    account_type_keyboard,
    accounts_menu_keyboard,
    accounts_text,
    back_only,
    balance_text,
    budget_category_keyboard,
    budget_select_keyboard,
    budgets_menu_keyboard,
    budgets_text,
    categories_menu_keyboard,
    categories_text,
    category_icon_keyboard,
    category_kind_keyboard,
    category_select_keyboard,
    confirm_keyboard,
    format_currency,
    format_local_time,
    goal_color_keyboard,
    goal_icon_keyboard,
    goal_select_keyboard,
    goals_menu_keyboard,
    goals_text,
    help_text,
    history_text,
    keywords_preview,
    main_menu_keyboard,
    main_menu_text,
    md,
    not_found,
    not_understood,
    report_menu_keyboard,
    report_text,
    session_ended,
    store_failure,
    unrecognized_menu,
    welcome_text,
)
from .schemas import ParsedTransaction
from .sessions import SessionStore
from .store import RecordStore
from .transaction_parser import TransactionParser

logger = logging.getLogger(__name__)

INVALID_AMOUNT = "Format nominal tidak valid (contoh: 25rb, 1.5jt)."
INVALID_DATE = "Format tanggal tidak valid. Gunakan DD-MM-YYYY."
USE_BUTTONS = "Silakan pilih salah satu tombol di bawah."

_COMMAND_RE = re.compile(r"^/?(?P<name>[a-zA-Z]+)(?:@\w+)?(?:\s+(?P<arg>.+))?$", re.DOTALL)
HISTORY_SIZE = 5


@dataclass(frozen=True, slots=True)
class Turn:
    render: Render
    flow: Flow | None = None


def _amount(text: str, allow_zero: bool = False) -> float:
    value = parse_amount(text)
    if value is None or value < 0 or (value == 0 and not allow_zero):
        raise ValidationError(INVALID_AMOUNT)
    return value


def _name(text: str) -> str:
    name = text.strip()
    if not name:
        raise ValidationError("Nama tidak boleh kosong.")
    if len(name) > 120:
        raise ValidationError("Nama terlalu panjang (maksimal 120 karakter).")
    return name


def _date(text: str) -> date:
    value = parse_date(text)
    if value is None:
        raise ValidationError(INVALID_DATE)
    return value


class ConversationEngine:
    def __init__(
        self,
        store: RecordStore,
        otp: OtpAuthority,
        sessions: SessionStore,
        parser: TransactionParser,
        clock: Clock = utcnow,
        timezone_name: str = "Asia/Jakarta",
        web_base_url: str | None = None,
    ) -> None:
        self.store = store
        self.otp = otp
        self.sessions = sessions
        self.parser = parser
        self._clock = clock
        self._zone = reference_zone(timezone_name)
        self._web_base_url = web_base_url

        self._text_steps: dict[type, Callable[[str, Flow, str], Turn]] = {
            AddGoal: self._text_add_goal,
            EditGoal: self._text_edit_goal,
            AddToGoal: self._text_add_to_goal,
            AddBudget: self._text_add_budget,
            EditBudget: self._text_edit_budget,
            AddAccount: self._text_add_account,
            EditAccountBalance: self._text_edit_balance,
            AddCategory: self._text_add_category,
            EditCategoryName: self._text_edit_category_name,
            EditCategoryKeywords: self._text_edit_category_keywords,
            ReportByDate: self._text_report_date,
            ReportByRange: self._text_report_range,
        }
        self._commands: dict[Action, Callable[[str, Flow | None], Turn]] = {
            Action.ACCOUNT_LIST: lambda identity, flow: Turn(
                Render(accounts_text(self.store.get_accounts()), back_only(Menu.ACCOUNTS))
            ),
            Action.ACCOUNT_ADD: lambda identity, flow: self._enter(AddAccount()),
            Action.ACCOUNT_EDIT_BALANCE: lambda identity, flow: self._pick_account(
                Target.ACCOUNT_EDIT, "💰 *Edit Saldo*\n\nPilih akun yang ingin diedit:"
            ),
            Action.ACCOUNT_DELETE: lambda identity, flow: self._pick_account(
                Target.ACCOUNT_DELETE, "🗑️ *Hapus Akun*\n\n⚠️ Semua transaksi akun akan dihapus!\n\nPilih akun:"
            ),
            Action.REPORT_TODAY: lambda identity, flow: self._report_days(0, "Laporan Hari Ini"),
            Action.REPORT_YESTERDAY: lambda identity, flow: self._report_days(1, "Laporan Kemarin"),
            Action.REPORT_WEEK: lambda identity, flow: self._report_week(),
            Action.REPORT_MONTH: lambda identity, flow: self._report_month(),
            Action.REPORT_DATE: lambda identity, flow: self._enter(ReportByDate()),
            Action.REPORT_RANGE: lambda identity, flow: self._enter(ReportByRange()),
            Action.GOAL_LIST: lambda identity, flow: Turn(
                Render(goals_text(self.store.get_goals()), back_only(Menu.GOALS))
            ),
            Action.GOAL_ADD: lambda identity, flow: self._enter(AddGoal()),
            Action.GOAL_EDIT: lambda identity, flow: self._pick_goal(
                Target.GOAL_EDIT, "✏️ *Edit Goal*\n\nPilih goal yang ingin diedit:"
            ),
            Action.GOAL_DELETE: lambda identity, flow: self._pick_goal(
                Target.GOAL_DELETE, "🗑️ *Hapus Goal*\n\nPilih goal yang ingin dihapus:"
            ),
            Action.GOAL_DEPOSIT: lambda identity, flow: self._pick_goal(
                Target.GOAL_DEPOSIT, "💰 *Tambah Tabungan*\n\nPilih goal:"
            ),
            Action.BUDGET_LIST: lambda identity, flow: Turn(
                Render(budgets_text(self.store.get_budgets()), back_only(Menu.BUDGETS))
            ),
            Action.BUDGET_ADD: lambda identity, flow: self._pick_budget_category(),
            Action.BUDGET_EDIT: lambda identity, flow: self._pick_budget(
                Target.BUDGET_EDIT, "✏️ *Edit Budget*\n\nPilih budget yang ingin diedit:"
            ),
            Action.BUDGET_DELETE: lambda identity, flow: self._pick_budget(
                Target.BUDGET_DELETE, "🗑️ *Hapus Budget*\n\nPilih budget yang ingin dihapus:"
            ),
            Action.BUDGET_RESET_ALL: lambda identity, flow: Turn(
                Render(
                    "🔄 *Reset Semua Budget*\n\n⚠️ Semua pengeluaran akan direset ke 0!\n\nYakin?",
                    confirm_keyboard(Command(Action.BUDGET_CONFIRM_RESET_ALL), back(Menu.BUDGETS)),
                )
            ),
            Action.BUDGET_CONFIRM_RESET_ALL: lambda identity, flow: self._reset_all_budgets(),
            Action.CATEGORY_LIST: lambda identity, flow: Turn(
                Render(categories_text(self.store.get_categories()), back_only(Menu.CATEGORIES))
            ),
            Action.CATEGORY_ADD: lambda identity, flow: self._enter(AddCategory()),
            Action.CATEGORY_EDIT: lambda identity, flow: self._pick_category(
                Target.CATEGORY_EDIT, "✏️ *Edit Kategori*\n\nPilih kategori yang ingin diedit:"
            ),
            Action.CATEGORY_DELETE: lambda identity, flow: self._pick_category(
                Target.CATEGORY_DELETE, "🗑️ *Hapus Kategori*\n\nPilih kategori yang ingin dihapus:"
            ),
            Action.CATEGORY_KEYWORDS: lambda identity, flow: self._pick_category(
                Target.CATEGORY_KEYWORDS, "🔑 *Edit Keywords*\n\nPilih kategori:"
            ),
            Action.CONFIRM_CLEAR_ALL: self._confirm_clear_all,
        }
        self._selections: dict[Target, Callable[[int], Turn]] = {
            Target.ACCOUNT_EDIT: self._select_account_edit,
            Target.ACCOUNT_DELETE: self._select_account_delete,
            Target.ACCOUNT_CONFIRM_DELETE: self._confirm_account_delete,
            Target.GOAL_EDIT: lambda goal_id: self._enter_existing(EditGoal(goal_id)),
            Target.GOAL_DELETE: lambda goal_id: self._enter_existing(DeleteGoal(goal_id)),
            Target.GOAL_CONFIRM_DELETE: self._confirm_goal_delete,
            Target.GOAL_DEPOSIT: lambda goal_id: self._enter_existing(AddToGoal(goal_id)),
            Target.BUDGET_CATEGORY: self._select_budget_category,
            Target.BUDGET_EDIT: lambda budget_id: self._enter_existing(EditBudget(budget_id)),
            Target.BUDGET_DELETE: lambda budget_id: self._enter_existing(DeleteBudget(budget_id)),
            Target.BUDGET_CONFIRM_DELETE: self._confirm_budget_delete,
            Target.CATEGORY_EDIT: lambda category_id: self._enter_existing(EditCategoryName(category_id)),
            Target.CATEGORY_DELETE: lambda category_id: self._enter_existing(DeleteCategory(category_id)),
            Target.CATEGORY_CONFIRM_DELETE: self._confirm_category_delete,
            Target.CATEGORY_KEYWORDS: lambda category_id: self._enter_existing(EditCategoryKeywords(category_id)),
        }

    # Entry points

    def handle_text(self, identity: str, text: str, flow: Flow | None = None) -> Turn:
        try:
            if flow is not None:
                return self._continue_flow(identity, flow, text)
            return self._run_command(identity, text)
        except NotFoundError as exc:
            logger.info("Turn for %s hit a missing record: %s", identity, exc)
            return Turn(not_found(exc.resource), None)
        except RecordStoreError:
            return Turn(store_failure(), flow)

    def handle_callback(self, identity: str, token: str, flow: Flow | None = None) -> Turn:
        callback = parse_callback(token)
        if callback is None:
            logger.warning("Unrecognised callback token from %s: %r", identity, token)
            return Turn(unrecognized_menu(), flow)
        try:
            if isinstance(callback, Navigate):
                return self._navigate(identity, callback)
            if isinstance(callback, Command):
                return self._commands[callback.action](identity, flow)
            if isinstance(callback, Select):
                return self._selections[callback.target](callback.entity_id)
            return self._choose(flow, callback)
        except NotFoundError as exc:
            logger.info("Callback for %s hit a missing record: %s", identity, exc)
            return Turn(not_found(exc.resource), None)
        except RecordStoreError:
            return Turn(store_failure(), flow)

    # Flow plumbing

    def _enter(self, flow: Flow) -> Turn:
        return Turn(self._prompt(flow), flow)

    def _enter_existing(self, flow: Flow) -> Turn:
        # Prompts for flows bound to an id look the record up and raise NotFoundError.
        return Turn(self._prompt(flow), flow)

    def _continue_flow(self, identity: str, flow: Flow, text: str) -> Turn:
        handler = self._text_steps.get(type(flow))
        try:
            if handler is None:
                raise ValidationError(USE_BUTTONS)
            return handler(identity, flow, text.strip())
        except ValidationError as exc:
            prompt = self._prompt(flow)
            return Turn(Render(f"❌ {exc}\n\n{prompt.text}", prompt.keyboard), flow)

    def _prompt(self, flow: Flow) -> Render:
        """The render asking for whatever ``flow`` needs next."""
        if isinstance(flow, AddGoal):
            back_goals = back_only(Menu.GOALS)
            if flow.step == 1:
                return Render("➕ *Tambah Goal Baru*\n\nMasukkan nama goal:", back_goals)
            summary = f"📝 Nama: *{md(flow.name)}*"
            if flow.step == 2:
                return Render(f"{summary}\n\nMasukkan target nominal:", back_goals)
            summary += f"\n💰 Target: {format_currency(flow.target_amount or 0)}"
            if flow.step == 3:
                return Render(f"{summary}\n\nPilih icon:", goal_icon_keyboard())
            return Render(f"{summary}\n{flow.icon} Icon: {flow.icon}\n\nPilih warna:", goal_color_keyboard())

        if isinstance(flow, EditGoal):
            goal = self._goal(flow.goal_id)
            return Render(
                f"✏️ *Edit Goal*\n\n{goal.icon} {md(goal.name)}\n"
                f"Target saat ini: {format_currency(goal.target_amount)}\n\nMasukkan target baru:",
                back_only(Menu.GOALS),
            )
        if isinstance(flow, AddToGoal):
            goal = self._goal(flow.goal_id)
            return Render(
                f"💰 *Tambah Tabungan*\n\n{goal.icon} {md(goal.name)}\n"
                f"Progress: {format_currency(goal.current_amount)} / {format_currency(goal.target_amount)}\n\n"
                "Masukkan jumlah yang ingin ditambahkan:",
                back_only(Menu.GOALS),
            )
        if isinstance(flow, DeleteGoal):
            goal = self._goal(flow.goal_id)
            return Render(
                f"🗑️ *Hapus Goal*\n\n{goal.icon} {md(goal.name)}\n\n⚠️ Yakin ingin menghapus?",
                confirm_keyboard(Select(Target.GOAL_CONFIRM_DELETE, goal.id), back(Menu.GOALS)),
            )

        if isinstance(flow, AddBudget):
            return Render(
                f"➕ *Tambah Budget*\n\n📂 Kategori: {md(flow.category)}\n\nMasukkan limit budget:",
                back_only(Menu.BUDGETS),
            )
        if isinstance(flow, EditBudget):
            budget = self._budget(flow.budget_id)
            return Render(
                f"✏️ *Edit Budget*\n\n📂 {md(budget.category)}\n"
                f"Limit saat ini: {format_currency(budget.limit)}\n\nMasukkan limit baru:",
                back_only(Menu.BUDGETS),
            )
        if isinstance(flow, DeleteBudget):
            budget = self._budget(flow.budget_id)
            return Render(
                f"🗑️ *Hapus Budget*\n\n📂 {md(budget.category)}\n\n⚠️ Yakin ingin menghapus?",
                confirm_keyboard(Select(Target.BUDGET_CONFIRM_DELETE, budget.id), back(Menu.BUDGETS)),
            )

        if isinstance(flow, AddAccount):
            if flow.step == 1:
                return Render("➕ *Tambah Akun Baru*\n\nMasukkan nama akun:", back_only(Menu.ACCOUNTS))
            if flow.step == 2:
                return Render(f"📝 Nama: *{md(flow.name)}*\n\nPilih tipe akun:", account_type_keyboard())
            return Render(
                f"📝 Nama: *{md(flow.name)}*\n📂 Tipe: *{flow.type.value}*\n\nMasukkan saldo awal:",
                back_only(Menu.ACCOUNTS),
            )
        if isinstance(flow, EditAccountBalance):
            account = self._account(flow.account_id)
            return Render(
                f"💰 *Edit Saldo*\n\n{account.icon} {md(account.name)}\n"
                f"Saldo saat ini: {format_currency(account.balance)}\n\nMasukkan saldo baru:",
                back_only(Menu.ACCOUNTS),
            )
        if isinstance(flow, DeleteAccount):
            account = self._account(flow.account_id)
            return Render(
                f"🗑️ *Hapus Akun*\n\n{account.icon} {md(account.name)}\n"
                f"Saldo: {format_currency(account.balance)}\n\n"
                "⚠️ Semua transaksi akun ini ikut dihapus. Yakin ingin menghapus?",
                confirm_keyboard(Select(Target.ACCOUNT_CONFIRM_DELETE, account.id), back(Menu.ACCOUNTS)),
            )

        if isinstance(flow, AddCategory):
            if flow.step == 1:
                return Render("➕ *Tambah Kategori Baru*\n\nMasukkan nama kategori:", back_only(Menu.CATEGORIES))
            summary = f"📝 Nama: *{md(flow.name)}*"
            if flow.step == 2:
                return Render(f"{summary}\n\nPilih tipe kategori:", category_kind_keyboard())
            summary += f"\n📝 Tipe: *{flow.kind.value}*"
            if flow.step == 3:
                return Render(f"{summary}\n\nPilih icon:", category_icon_keyboard())
            return Render(
                f"{summary}\n{flow.icon} Icon: {flow.icon}\n\n"
                "Masukkan keywords (pisahkan dengan koma):\n\nContoh: _makan, bakso, nasi goreng, ayam_",
                back_only(Menu.CATEGORIES),
            )
        if isinstance(flow, EditCategoryName):
            category = self._category(flow.category_id)
            return Render(
                f"✏️ *Edit Kategori*\n\n{category.icon} {md(category.name)}\n\nMasukkan nama baru:",
                back_only(Menu.CATEGORIES),
            )
        if isinstance(flow, EditCategoryKeywords):
            category = self._category(flow.category_id)
            return Render(
                f"🔑 *Edit Keywords*\n\n{category.icon} {md(category.name)}\n\n"
                f"*Keywords saat ini:*\n{keywords_preview(category.keywords)}\n\n"
                "Masukkan keywords baru (pisahkan dengan koma):",
                back_only(Menu.CATEGORIES),
            )
        if isinstance(flow, DeleteCategory):
            category = self._category(flow.category_id)
            return Render(
                f"🗑️ *Hapus Kategori*\n\n{category.icon} {md(category.name)}\n\n⚠️ Yakin ingin menghapus?",
                confirm_keyboard(Select(Target.CATEGORY_CONFIRM_DELETE, category.id), back(Menu.CATEGORIES)),
            )

        if isinstance(flow, ReportByDate):
            return Render("🗓️ *Laporan Tanggal Tertentu*\n\nMasukkan tanggal (DD-MM-YYYY):", back_only(Menu.REPORT))
        if flow.step == 1:
            return Render("📉 *Laporan Range Tanggal*\n\nMasukkan tanggal mulai (DD-MM-YYYY):", back_only(Menu.REPORT))
        return Render(
            f"📅 Mulai: {flow.start:%d-%m-%Y}\n\nMasukkan tanggal akhir (DD-MM-YYYY):", back_only(Menu.REPORT)
        )

    # Record lookups that must succeed

    def _account(self, account_id: int):
        account = self.store.get_account(account_id)
        if account is None:
            raise NotFoundError("account", account_id)
        return account

    def _goal(self, goal_id: int):
        goal = self.store.get_goal(goal_id)
        if goal is None:
            raise NotFoundError("goal", goal_id)
        return goal

    def _budget(self, budget_id: int):
        budget = self.store.get_budget(budget_id)
        if budget is None:
            raise NotFoundError("budget", budget_id)
        return budget

    def _category(self, category_id: int):
        category = self.store.get_category(category_id)
        if category is None:
            raise NotFoundError("category", category_id)
        return category

    # Text steps

    def _text_add_goal(self, identity: str, flow: AddGoal, text: str) -> Turn:
        if flow.step == 1:
            return self._enter(replace(flow, name=_name(text)))
        if flow.step == 2:
            return self._enter(replace(flow, target_amount=_amount(text)))
        raise ValidationError(USE_BUTTONS)

    def _text_edit_goal(self, identity: str, flow: EditGoal, text: str) -> Turn:
        amount = _amount(text)
        goal = self.store.update_goal(flow.goal_id, target_amount=amount)
        return Turn(
            Render(
                f"✅ *Goal Diperbarui*\n\n{goal.icon} {md(goal.name)}\n💰 Target baru: {format_currency(amount)}",
                back_only(Menu.GOALS),
            )
        )

    def _text_add_to_goal(self, identity: str, flow: AddToGoal, text: str) -> Turn:
        amount = _amount(text)
        goal = self.store.add_to_goal(flow.goal_id, amount)
        return Turn(
            Render(
                f"✅ *Tabungan Ditambahkan*\n\n{goal.icon} {md(goal.name)}\n"
                f"➕ Ditambah: {format_currency(amount)}\n"
                f"💰 Total: {format_currency(goal.current_amount)}/{format_currency(goal.target_amount)}",
                back_only(Menu.GOALS),
            )
        )

    def _text_add_budget(self, identity: str, flow: AddBudget, text: str) -> Turn:
        limit = _amount(text)
        if self.store.get_budget_by_category(flow.category) is not None:
            return Turn(Render(f"⚠️ Budget untuk {md(flow.category)} sudah ada.", back_only(Menu.BUDGETS)))
        budget = self.store.add_budget(flow.category, limit)
        return Turn(
            Render(
                f"✅ *Budget Ditambahkan*\n\n📂 {md(budget.category)}\n💰 Limit: {format_currency(budget.limit)}",
                back_only(Menu.BUDGETS),
            )
        )

    def _text_edit_budget(self, identity: str, flow: EditBudget, text: str) -> Turn:
        limit = _amount(text)
        budget = self.store.update_budget_limit(flow.budget_id, limit)
        return Turn(
            Render(
                f"✅ *Budget Diperbarui*\n\n📂 {md(budget.category)}\n💰 Limit baru: {format_currency(limit)}",
                back_only(Menu.BUDGETS),
            )
        )

    def _text_add_account(self, identity: str, flow: AddAccount, text: str) -> Turn:
        if flow.step == 1:
            name = _name(text)
            if any(account.name.lower() == name.lower() for account in self.store.get_accounts()):
                raise ValidationError(f"Akun {md(name)} sudah ada.")
            return self._enter(replace(flow, name=name))
        if flow.step == 2:
            raise ValidationError(USE_BUTTONS)
        balance = _amount(text, allow_zero=True)
        account = self.store.add_account(flow.name, flow.type, balance, ACCOUNT_ICONS[flow.type])
        return Turn(
            Render(
                f"✅ *Akun Ditambahkan*\n\n{account.icon} {md(account.name)}\n"
                f"📂 Tipe: {account.type.value}\n💰 Saldo: {format_currency(account.balance)}",
                back_only(Menu.ACCOUNTS),
            )
        )

    def _text_edit_balance(self, identity: str, flow: EditAccountBalance, text: str) -> Turn:
        balance = _amount(text, allow_zero=True)
        account = self.store.update_account_balance(flow.account_id, balance)
        return Turn(
            Render(
                f"✅ *Saldo Diperbarui*\n\n{account.icon} {md(account.name)}\n"
                f"💰 Saldo baru: {format_currency(account.balance)}",
                back_only(Menu.ACCOUNTS),
            )
        )

    def _text_add_category(self, identity: str, flow: AddCategory, text: str) -> Turn:
        if flow.step == 1:
            name = _name(text)
            if self.store.get_category_by_name(name) is not None:
                raise ValidationError(f"Kategori {md(name)} sudah ada.")
            return self._enter(replace(flow, name=name))
        if flow.step in (2, 3):
            raise ValidationError(USE_BUTTONS)
        keywords = parse_keywords(text)
        if not keywords:
            raise ValidationError("Masukkan minimal satu keyword.")
        category = self.store.add_category(flow.name, flow.icon, keywords, flow.kind)
        return Turn(
            Render(
                f"✅ *Kategori Ditambahkan*\n\n{category.icon} {md(category.name)}\n"
                f"📝 Tipe: {category.kind.value}\n🔑 Keywords: {keywords_preview(category.keywords)}",
                back_only(Menu.CATEGORIES),
            )
        )

    def _text_edit_category_name(self, identity: str, flow: EditCategoryName, text: str) -> Turn:
        name = _name(text)
        existing = self.store.get_category_by_name(name)
        if existing is not None and existing.id != flow.category_id:
            raise ValidationError(f"Kategori {md(name)} sudah ada.")
        category = self.store.update_category(flow.category_id, name=name)
        return Turn(
            Render(f"✅ *Kategori Diperbarui*\n\n{category.icon} {md(category.name)}", back_only(Menu.CATEGORIES))
        )

    def _text_edit_category_keywords(self, identity: str, flow: EditCategoryKeywords, text: str) -> Turn:
        keywords = parse_keywords(text)
        if not keywords:
            raise ValidationError("Masukkan minimal satu keyword.")
        category = self.store.update_category(flow.category_id, keywords=keywords)
        return Turn(
            Render(
                f"✅ *Keywords Diperbarui*\n\n{category.icon} {md(category.name)}\n"
                f"🔑 Keywords baru:\n{keywords_preview(category.keywords, limit=10)}",
                back_only(Menu.CATEGORIES),
            )
        )

    def _text_report_date(self, identity: str, flow: ReportByDate, text: str) -> Turn:
        day = _date(text)
        return self._report_between(day, day, f"Laporan {day:%d-%m-%Y}")

    def _text_report_range(self, identity: str, flow: ReportByRange, text: str) -> Turn:
        value = _date(text)
        if flow.start is None:
            return self._enter(replace(flow, start=value))
        if value < flow.start:
            raise ValidationError("Tanggal akhir tidak boleh sebelum tanggal mulai.")
        return self._report_between(flow.start, value, f"Laporan {flow.start:%d-%m-%Y} s/d {value:%d-%m-%Y}")

    # Choices

    def _choose(self, flow: Flow | None, choice: Choose) -> Turn:
        if choice.field == Field.ACCOUNT_TYPE and isinstance(flow, AddAccount) and flow.step == 2:
            try:
                type_ = AccountType(choice.value)
            except ValueError:
                return Turn(unrecognized_menu(), flow)
            return self._enter(replace(flow, type=type_))

        if choice.field == Field.GOAL_ICON and isinstance(flow, AddGoal) and flow.step == 3:
            if choice.value not in GOAL_ICONS:
                return Turn(unrecognized_menu(), flow)
            return self._enter(replace(flow, icon=choice.value))

        if choice.field == Field.GOAL_COLOR and isinstance(flow, AddGoal) and flow.step == 4:
            if choice.value not in GOAL_COLORS:
                return Turn(unrecognized_menu(), flow)
            goal = self.store.add_goal(flow.name, flow.target_amount, flow.icon, choice.value)
            return Turn(
                Render(
                    f"✅ *Goal Ditambahkan*\n\n{goal.icon} {md(goal.name)}\n"
                    f"💰 Target: {format_currency(goal.target_amount)}",
                    back_only(Menu.GOALS),
                )
            )

        if choice.field == Field.CATEGORY_KIND and isinstance(flow, AddCategory) and flow.step == 2:
            try:
                kind = CategoryKind(choice.value)
            except ValueError:
                return Turn(unrecognized_menu(), flow)
            return self._enter(replace(flow, kind=kind))

        if choice.field == Field.CATEGORY_ICON and isinstance(flow, AddCategory) and flow.step == 3:
            if choice.value not in CATEGORY_ICONS:
                return Turn(unrecognized_menu(), flow)
            return self._enter(replace(flow, icon=choice.value))

        return Turn(session_ended(), flow)

    # Navigation

    def _navigate(self, identity: str, navigate: Navigate) -> Turn:
        menu = navigate.menu
        if menu == Menu.MAIN:
            return Turn(Render(main_menu_text(), main_menu_keyboard(self._web_base_url)))
        if menu == Menu.BALANCE:
            return Turn(Render(balance_text(self.store.get_accounts()), back_only(Menu.MAIN)))
        if menu == Menu.HISTORY:
            return Turn(self._history())
        if menu == Menu.ACCOUNTS:
            return Turn(Render("🏦 *Kelola Akun*\n\nPilih aksi:", accounts_menu_keyboard()))
        if menu == Menu.REPORT:
            return Turn(Render("📊 *Laporan Keuangan*\n\nPilih periode:", report_menu_keyboard()))
        if menu == Menu.GOALS:
            return Turn(Render("🎯 *Kelola Goals*\n\nPilih aksi:", goals_menu_keyboard()))
        if menu == Menu.BUDGETS:
            return Turn(Render("💸 *Kelola Budget*\n\nPilih aksi:", budgets_menu_keyboard()))
        if menu == Menu.CATEGORIES:
            return Turn(
                Render(
                    "🏷️ *Kelola Kategori*\n\nKategori digunakan untuk klasifikasi otomatis transaksi "
                    "berdasarkan keywords.\n\nPilih aksi:",
                    categories_menu_keyboard(),
                )
            )
        if menu == Menu.HELP:
            return Turn(Render(help_text(), back_only(Menu.MAIN)))
        if menu == Menu.OTP:
            return Turn(self._issue_otp(identity))
        return Turn(
            Render(
                "🗑️ *Hapus Semua Data*\n\n⚠️ *PERINGATAN!*\n\nSemua data berikut akan dihapus:\n"
                "• Akun dan saldo\n• Transaksi\n• Goals\n• Budget\n\n"
                "*Tindakan ini tidak dapat dibatalkan!*\n\n"
                "Butuh sesi OTP aktif (/otp lalu /verify [kode]).\n\nYakin ingin menghapus?",
                confirm_keyboard(Command(Action.CONFIRM_CLEAR_ALL), back(Menu.MAIN)),
            )
        )

    def _history(self) -> Render:
        transactions = self.store.get_transactions(limit=HISTORY_SIZE)
        names = {account.id: account.name for account in self.store.get_accounts()}
        return Render(history_text(transactions, names, self._zone), back_only(Menu.MAIN))

    # Pickers

    def _pick_account(self, target: Target, title: str) -> Turn:
        accounts = self.store.get_accounts()
        if not accounts:
            return Turn(Render("📭 Belum ada akun.", back_only(Menu.ACCOUNTS)))
        return Turn(Render(title, account_select_keyboard(accounts, target)))

    def _pick_goal(self, target: Target, title: str) -> Turn:
        goals = self.store.get_goals()
        if not goals:
            return Turn(Render("📭 Belum ada goals.", back_only(Menu.GOALS)))
        return Turn(Render(title, goal_select_keyboard(goals, target)))

    def _pick_budget(self, target: Target, title: str) -> Turn:
        budgets = self.store.get_budgets()
        if not budgets:
            return Turn(Render("📭 Belum ada budget.", back_only(Menu.BUDGETS)))
        return Turn(Render(title, budget_select_keyboard(budgets, target)))

    def _pick_budget_category(self) -> Turn:
        taken = {budget.category.lower() for budget in self.store.get_budgets()}
        available = [
            category
            for category in self.store.get_categories()
            if category.kind == CategoryKind.EXPENSE and category.name.lower() not in taken
        ]
        if not available:
            return Turn(Render("📭 Semua kategori pengeluaran sudah punya budget.", back_only(Menu.BUDGETS)))
        return Turn(Render("➕ *Tambah Budget*\n\nPilih kategori:", budget_category_keyboard(available)))

    def _pick_category(self, target: Target, title: str) -> Turn:
        categories = self.store.get_categories()
        if not categories:
            return Turn(Render("📭 Belum ada kategori.", back_only(Menu.CATEGORIES)))
        return Turn(Render(title, category_select_keyboard(categories, target)))

    # Selections

    def _select_account_edit(self, account_id: int) -> Turn:
        return self._enter_existing(EditAccountBalance(account_id))

    def _select_account_delete(self, account_id: int) -> Turn:
        return self._enter_existing(DeleteAccount(account_id))

    def _select_budget_category(self, category_id: int) -> Turn:
        category = self._category(category_id)
        if self.store.get_budget_by_category(category.name) is not None:
            return Turn(Render(f"⚠️ Budget untuk {md(category.name)} sudah ada.", back_only(Menu.BUDGETS)))
        return self._enter(AddBudget(category.name))

    def _confirm_account_delete(self, account_id: int) -> Turn:
        account = self._account(account_id)
        removed = self.store.delete_account(account_id)
        return Turn(
            Render(
                f"✅ *Akun Dihapus*\n\n{account.icon} {md(account.name)} berhasil dihapus.\n"
                f"🧾 {removed} transaksi ikut dihapus.",
                back_only(Menu.ACCOUNTS),
            )
        )

    def _confirm_goal_delete(self, goal_id: int) -> Turn:
        goal = self._goal(goal_id)
        self.store.delete_goal(goal_id)
        return Turn(Render(f'✅ Goal "{md(goal.name)}" berhasil dihapus.', back_only(Menu.GOALS)))

    def _confirm_budget_delete(self, budget_id: int) -> Turn:
        budget = self._budget(budget_id)
        self.store.delete_budget(budget_id)
        return Turn(Render(f'✅ Budget "{md(budget.category)}" berhasil dihapus.', back_only(Menu.BUDGETS)))

    def _confirm_category_delete(self, category_id: int) -> Turn:
        category = self._category(category_id)
        self.store.delete_category(category_id)
        return Turn(Render(f'✅ Kategori "{md(category.name)}" berhasil dihapus.', back_only(Menu.CATEGORIES)))

    def _reset_all_budgets(self) -> Turn:
        count = self.store.reset_all_budgets()
        return Turn(Render(f"✅ {count} budget berhasil direset.", back_only(Menu.BUDGETS)))

    def _confirm_clear_all(self, identity: str, flow: Flow | None) -> Turn:
        if not self.sessions.is_valid(identity):
            logger.warning("Clear-all refused for %s: no active session", identity)
            return Turn(
                Render(
                    "🔒 *Butuh Verifikasi*\n\nKirim /otp untuk meminta kode, lalu /verify [kode].",
                    back_only(Menu.MAIN),
                ),
                flow,
            )
        self.store.clear_all_data()
        return Turn(
            Render(
                "✅ *Data Berhasil Dihapus*\n\nSemua akun, transaksi, goals, dan budget telah dihapus.",
                back_only(Menu.MAIN),
            )
        )

    # Reports

    def _local_day_bounds(self, start: date, end: date) -> tuple[datetime, datetime]:
        begin = datetime.combine(start, time.min, tzinfo=self._zone)
        finish = datetime.combine(end + timedelta(days=1), time.min, tzinfo=self._zone) - timedelta(microseconds=1)
        return begin.astimezone(timezone.utc), finish.astimezone(timezone.utc)

    def _report(self, start: datetime, end: datetime, title: str) -> Turn:
        transactions = self.store.get_transactions_between(start, end)
        names = {account.id: account.name for account in self.store.get_accounts()}
        return Turn(Render(report_text(title, transactions, names, self._zone), back_only(Menu.REPORT)))

    def _report_between(self, start: date, end: date, title: str) -> Turn:
        return self._report(*self._local_day_bounds(start, end), title)

    def _report_days(self, days_ago: int, title: str) -> Turn:
        day = self._clock().astimezone(self._zone).date() - timedelta(days=days_ago)
        return self._report_between(day, day, title)

    def _report_week(self) -> Turn:
        now = self._clock().astimezone(timezone.utc)
        return self._report(now - timedelta(days=7), now, "Laporan 7 Hari Terakhir")

    def _report_month(self) -> Turn:
        today = self._clock().astimezone(self._zone).date()
        start, end = self._local_day_bounds(today.replace(day=1), today)
        return self._report(start, end, "Laporan Bulan Ini")

    # OTP and sessions

    def _issue_otp(self, identity: str) -> Render:
        result = self.otp.issue(identity)
        if isinstance(result, RateLimited):
            if result.denial.reason == DenialReason.DAILY_CAP:
                text = "⛔ Batas harian permintaan OTP tercapai. Coba lagi besok."
            else:
                minutes = max(1, -(-(result.retry_after_seconds or 60) // 60))
                text = (
                    f"⏳ Terlalu banyak permintaan OTP. Coba lagi dalam {minutes} menit.\n"
                    f"Sisa kuota hari ini: {result.remaining_daily}"
                )
            return Render(text, back_only(Menu.MAIN))
        note = "\n♻️ Kode sebelumnya masih berlaku." if result.is_existing else ""
        return Render(
            f"🔐 *Kode OTP Anda:*\n\n`{result.code}`\n\n"
            f"⏰ Berlaku sampai {format_local_time(result.expires_at, self._zone)}{note}\n"
            f"Sisa kuota hari ini: {result.remaining_daily}",
            back_only(Menu.MAIN),
        )

    def _verify_otp(self, identity: str, code: str) -> Render:
        result = self.otp.verify(identity, code)
        if isinstance(result, OtpValid):
            expires_at = self.sessions.authenticate(identity)
            return Render(
                f"✅ Verifikasi berhasil! Sesi aktif sampai {format_local_time(expires_at, self._zone)}.",
                back_only(Menu.MAIN),
            )
        return Render(self._otp_failure_text(result), back_only(Menu.MAIN))

    @staticmethod
    def _otp_failure_text(result: OtpInvalid) -> str:
        if result.reason == OtpFailure.NOT_FOUND:
            return "❌ Tidak ada kode OTP aktif. Minta kode baru dengan /otp."
        if result.reason == OtpFailure.EXPIRED:
            return "⌛ Kode OTP sudah kadaluarsa. Minta kode baru dengan /otp."
        if result.reason == OtpFailure.WRONG_CODE:
            return f"❌ Kode OTP salah. Sisa percobaan: {result.attempts_left}."
        return "⛔ Terlalu banyak percobaan. Kode dibatalkan, minta kode baru dengan /otp."

    # Free text without a flow

    def _run_command(self, identity: str, text: str) -> Turn:
        match = _COMMAND_RE.match(text.strip())
        if match:
            name = match.group("name").lower()
            arg = (match.group("arg") or "").strip()
            turn = self._command(identity, name, arg)
            if turn is not None:
                return turn
        return self._record_from_text(text)

    def _command(self, identity: str, name: str, arg: str) -> Turn | None:
        if name == "verify":
            if not arg:
                return Turn(Render("Gunakan: /verify [kode]", back_only(Menu.MAIN)))
            return Turn(self._verify_otp(identity, arg))
        if name == "hapus":
            if not arg:
                return Turn(Render("Gunakan: /hapus [id]", back_only(Menu.MAIN)))
            return Turn(self._delete_transaction(arg))
        if arg:
            return None
        if name in ("start", "help", "bantuan"):
            return Turn(Render(welcome_text(), main_menu_keyboard(self._web_base_url)))
        if name == "otp":
            return Turn(self._issue_otp(identity))
        if name in ("saldo", "balance"):
            return self._navigate(identity, Navigate(Menu.BALANCE))
        if name in ("riwayat", "list"):
            return self._navigate(identity, Navigate(Menu.HISTORY))
        if name in ("akun", "accounts"):
            return self._navigate(identity, Navigate(Menu.ACCOUNTS))
        if name in ("laporan", "report"):
            return self._navigate(identity, Navigate(Menu.REPORT))
        if name == "goals":
            return self._navigate(identity, Navigate(Menu.GOALS))
        if name in ("budget", "budgets"):
            return self._navigate(identity, Navigate(Menu.BUDGETS))
        if name in ("kategori", "categories"):
            return self._navigate(identity, Navigate(Menu.CATEGORIES))
        return None

    def _delete_transaction(self, query: str) -> Render:
        target: Transaction | None = None
        if query.isascii() and query.isdigit():
            target = self.store.get_transaction(int(query))
        if target is None:
            matches = self.store.search_transactions(query)
            if not matches:
                return Render(f'❌ Transaksi "{md(query)}" tidak ditemukan.', back_only(Menu.MAIN))
            if len(matches) > 1:
                lines = [f"⚠️ Ditemukan {len(matches)} transaksi:", ""]
                lines.extend(
                    f"• `{tx.id}` - {md(tx.note)} ({format_currency(tx.amount)})" for tx in matches[:5]
                )
                lines.extend(["", "Gunakan: /hapus [id]"])
                return Render("\n".join(lines), back_only(Menu.MAIN))
            target = matches[0]

        removed = self.store.delete_transaction(target.id)
        account = self.store.get_account(removed.account_id)
        account_name = md(account.name) if account else "-"
        return Render(
            f"🗑️ *Transaksi Dihapus:*\n\n{md(removed.note)}\n{format_currency(removed.amount)}\n\n"
            f"_Saldo {account_name} disesuaikan._",
            back_only(Menu.MAIN),
        )

    def _record_from_text(self, text: str) -> Turn:
        parsed = self.parser.parse(text)
        if parsed is None:
            return Turn(not_understood(self._web_base_url))
        return Turn(self._record_parsed(parsed))

    def record(self, parsed: ParsedTransaction) -> Transaction:
        """Write a parsed transaction: classify it, move balances, charge budgets.

        Raises :class:`NotFoundError` when the source account does not exist. A
        transfer whose target account is unknown is stored without moving money.
        """
        source = self.store.get_account_by_name(parsed.account_name)
        if source is None:
            raise NotFoundError("account", parsed.account_name)

        to_account_id: int | None = None
        if parsed.kind == TransactionKind.TRANSFER and parsed.to_account_name:
            target = self.store.get_account_by_name(parsed.to_account_name)
            if target is not None and target.id != source.id:
                to_account_id = target.id

        # Transfers are classified like expenses.
        classify_as = TransactionKind.EXPENSE if parsed.kind == TransactionKind.TRANSFER else parsed.kind
        auto_category = self.store.classify(parsed.note, classify_as)
        category = auto_category if auto_category != "Other" else parsed.category

        transaction = self.store.record_transaction(
            TransactionDraft(
                account_id=source.id,
                amount=parsed.amount,
                kind=parsed.kind,
                category=category,
                occurred_at=self._clock(),
                note=parsed.note or category,
                to_account_id=to_account_id,
            )
        )
        logger.info(
            "Recorded %s of %.2f on account %s (category %s)",
            transaction.kind.value,
            transaction.amount,
            source.id,
            category,
        )
        return transaction

    def _record_parsed(self, parsed: ParsedTransaction) -> Render:
        try:
            transaction = self.record(parsed)
        except NotFoundError:
            names = ", ".join(md(account.name) for account in self.store.get_accounts()) or "-"
            return Render(
                f'❌ Akun "{md(parsed.account_name)}" tidak ditemukan.\n\nAkun tersedia: {names}',
                back_only(Menu.MAIN),
            )

        source = self.store.get_account(transaction.account_id)
        category = transaction.category
        category_info = self.store.get_category_by_name(category)
        category_line = f"{category_info.icon} {md(category)}" if category_info else f"🏷️ {md(category)}"
        if category != parsed.category:
            category_line += " _(auto)_"
        lines = [
            f"{KIND_ICONS[transaction.kind]} *{transaction.kind.value} Tercatat!*",
            "",
            f"💵 {format_currency(transaction.amount)}",
            f"📝 {md(transaction.note)}",
            f"🏦 {md(source.name if source else parsed.account_name)}",
        ]
        if transaction.to_account_id is not None:
            lines.append(f"➡️ {md(parsed.to_account_name)}")
        elif parsed.kind == TransactionKind.TRANSFER:
            lines.append("⚠️ Akun tujuan tidak ditemukan, saldo tidak dipindahkan.")
        lines.extend([category_line, f"🆔 `{transaction.id}`"])
        if source is not None:
            lines.extend(["", f"_Saldo: {format_currency(source.balance)}_"])
        return Render("\n".join(lines), back_only(Menu.MAIN))
