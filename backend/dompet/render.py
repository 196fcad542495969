"""Transport-neutral renders: one message text plus an inline keyboard.

Texts use Telegram's legacy Markdown. Anything typed by the user goes through
:func:`md` before it is embedded.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, tzinfo

from telegram.helpers import escape_markdown

from .domain.callbacks import (
    Action,
    Callback,
    Choose,
    Command,
    Field,
    Menu,
    Navigate,
    Select,
    Target,
    back,
)
from .domain.entities import Account, Budget, Category, Goal, Transaction
from .models import AccountType, CategoryKind, TransactionKind

GOAL_ICONS = ("🎯", "🛡️", "🏠", "🚗", "✈️", "💻", "📱", "💰", "🎓", "💍")
GOAL_COLORS = {
    "#10b981": "🟢",
    "#3b82f6": "🔵",
    "#8b5cf6": "🟣",
    "#f59e0b": "🟠",
    "#ef4444": "🔴",
    "#ec4899": "🩷",
}
CATEGORY_ICONS = (
    "🍔", "🚗", "🛍️", "📄", "🏥", "🎬", "📚", "📈",
    "💼", "🎁", "💻", "🏠", "✈️", "🎮", "💰", "📦",
)
ACCOUNT_ICONS = {
    AccountType.BANK: "🏦",
    AccountType.E_WALLET: "📱",
    AccountType.CASH: "💵",
    AccountType.CREDIT: "💳",
}
KIND_ICONS = {
    TransactionKind.INCOME: "📈",
    TransactionKind.EXPENSE: "📉",
    TransactionKind.TRANSFER: "🔄",
}
RESOURCE_LABELS = {
    "account": "Akun",
    "goal": "Goal",
    "budget": "Budget",
    "category": "Kategori",
    "transaction": "Transaksi",
}
DIVIDER = "━━━━━━━━━━━━━━━"


@dataclass(frozen=True, slots=True)
class Button:
    label: str
    callback: Callback | None = None
    url: str | None = None


Keyboard = tuple[tuple[Button, ...], ...]


@dataclass(frozen=True, slots=True)
class Render:
    text: str
    keyboard: Keyboard = field(default_factory=tuple)


def md(value: object) -> str:
    return escape_markdown(str(value), version=1)


def format_currency(amount: float) -> str:
    sign = "-" if amount < 0 else ""
    whole = f"{abs(amount):,.0f}".replace(",", ".")
    return f"{sign}Rp {whole}"


def budget_status(percent: int) -> str:
    if percent >= 100:
        return "🔴"
    if percent >= 85:
        return "🟠"
    return "🟢"


def _chunk(buttons: Sequence[Button], size: int) -> Keyboard:
    return tuple(tuple(buttons[i:i + size]) for i in range(0, len(buttons), size))


def back_row(menu: Menu) -> tuple[Button, ...]:
    return (Button("⬅️ Kembali", back(menu)),)


def back_only(menu: Menu) -> Keyboard:
    return (back_row(menu),)


def confirm_keyboard(yes: Callback, no: Callback) -> Keyboard:
    return ((Button("✅ Ya", yes), Button("❌ Tidak", no)),)


# Menus


def main_menu_keyboard(web_base_url: str | None = None) -> Keyboard:
    rows: list[tuple[Button, ...]] = [
        (Button("💰 Cek Saldo", Navigate(Menu.BALANCE)), Button("📜 Riwayat", Navigate(Menu.HISTORY))),
        (Button("🏦 Akun", Navigate(Menu.ACCOUNTS)), Button("📊 Laporan", Navigate(Menu.REPORT))),
        (Button("🎯 Goals", Navigate(Menu.GOALS)), Button("💸 Budget", Navigate(Menu.BUDGETS))),
        (Button("🏷️ Kategori", Navigate(Menu.CATEGORIES)), Button("📖 Bantuan", Navigate(Menu.HELP))),
        (Button("🔐 Kode OTP", Navigate(Menu.OTP)), Button("🗑️ Hapus Semua Data", Navigate(Menu.CLEAR_ALL))),
    ]
    if web_base_url:
        rows.append((Button("🌐 Buka Dashboard Web", url=web_base_url),))
    return tuple(rows)


def accounts_menu_keyboard() -> Keyboard:
    return (
        (Button("💰 Edit Saldo", Command(Action.ACCOUNT_EDIT_BALANCE)), Button("➕ Tambah Akun", Command(Action.ACCOUNT_ADD))),
        (Button("🗑️ Hapus Akun", Command(Action.ACCOUNT_DELETE)), Button("📋 List Akun", Command(Action.ACCOUNT_LIST))),
        back_row(Menu.MAIN),
    )


def report_menu_keyboard() -> Keyboard:
    return (
        (Button("📅 Hari Ini", Command(Action.REPORT_TODAY)), Button("📆 Kemarin", Command(Action.REPORT_YESTERDAY))),
        (Button("📊 7 Hari Terakhir", Command(Action.REPORT_WEEK)), Button("📈 Bulan Ini", Command(Action.REPORT_MONTH))),
        (Button("🗓️ Tanggal Tertentu", Command(Action.REPORT_DATE)), Button("📉 Range Tanggal", Command(Action.REPORT_RANGE))),
        back_row(Menu.MAIN),
    )


def goals_menu_keyboard() -> Keyboard:
    return (
        (Button("➕ Tambah Goal", Command(Action.GOAL_ADD)), Button("📋 List Goals", Command(Action.GOAL_LIST))),
        (Button("✏️ Edit Goal", Command(Action.GOAL_EDIT)), Button("🗑️ Hapus Goal", Command(Action.GOAL_DELETE))),
        (Button("💰 Tambah Tabungan", Command(Action.GOAL_DEPOSIT)),),
        back_row(Menu.MAIN),
    )


def budgets_menu_keyboard() -> Keyboard:
    return (
        (Button("➕ Tambah Budget", Command(Action.BUDGET_ADD)), Button("📋 List Budgets", Command(Action.BUDGET_LIST))),
        (Button("✏️ Edit Budget", Command(Action.BUDGET_EDIT)), Button("🗑️ Hapus Budget", Command(Action.BUDGET_DELETE))),
        (Button("🔄 Reset Semua", Command(Action.BUDGET_RESET_ALL)),),
        back_row(Menu.MAIN),
    )


def categories_menu_keyboard() -> Keyboard:
    return (
        (Button("➕ Tambah Kategori", Command(Action.CATEGORY_ADD)), Button("📋 List Kategori", Command(Action.CATEGORY_LIST))),
        (Button("✏️ Edit Kategori", Command(Action.CATEGORY_EDIT)), Button("🗑️ Hapus Kategori", Command(Action.CATEGORY_DELETE))),
        (Button("🔑 Edit Keywords", Command(Action.CATEGORY_KEYWORDS)),),
        back_row(Menu.MAIN),
    )


# Pickers


def account_select_keyboard(accounts: Iterable[Account], target: Target) -> Keyboard:
    buttons = [Button(f"{account.icon} {account.name}", Select(target, account.id)) for account in accounts]
    return _chunk(buttons, 2) + back_only(Menu.ACCOUNTS)


def goal_select_keyboard(goals: Iterable[Goal], target: Target) -> Keyboard:
    rows = tuple(
        (Button(f"{goal.icon} {goal.name} ({goal.progress_percent}%)", Select(target, goal.id)),)
        for goal in goals
    )
    return rows + back_only(Menu.GOALS)


def budget_select_keyboard(budgets: Iterable[Budget], target: Target) -> Keyboard:
    rows = tuple(
        (
            Button(
                f"{budget_status(budget.usage_percent)} {budget.category} ({budget.usage_percent}%)",
                Select(target, budget.id),
            ),
        )
        for budget in budgets
    )
    return rows + back_only(Menu.BUDGETS)


def budget_category_keyboard(categories: Iterable[Category]) -> Keyboard:
    buttons = [
        Button(f"{category.icon} {category.name}", Select(Target.BUDGET_CATEGORY, category.id))
        for category in categories
    ]
    return _chunk(buttons, 2) + back_only(Menu.BUDGETS)


def category_select_keyboard(categories: Iterable[Category], target: Target) -> Keyboard:
    buttons = [Button(f"{category.icon} {category.name}", Select(target, category.id)) for category in categories]
    return _chunk(buttons, 2) + back_only(Menu.CATEGORIES)


def account_type_keyboard() -> Keyboard:
    buttons = [
        Button(f"{ACCOUNT_ICONS[type_]} {type_.value}", Choose(Field.ACCOUNT_TYPE, type_.value))
        for type_ in AccountType
    ]
    return _chunk(buttons, 2) + back_only(Menu.ACCOUNTS)


def goal_icon_keyboard() -> Keyboard:
    buttons = [Button(icon, Choose(Field.GOAL_ICON, icon)) for icon in GOAL_ICONS]
    return _chunk(buttons, 5) + back_only(Menu.GOALS)


def goal_color_keyboard() -> Keyboard:
    row = tuple(Button(dot, Choose(Field.GOAL_COLOR, color)) for color, dot in GOAL_COLORS.items())
    return (row,) + back_only(Menu.GOALS)


def category_kind_keyboard() -> Keyboard:
    return (
        (Button("📉 Expense (Pengeluaran)", Choose(Field.CATEGORY_KIND, CategoryKind.EXPENSE.value)),),
        (Button("📈 Income (Pemasukan)", Choose(Field.CATEGORY_KIND, CategoryKind.INCOME.value)),),
        back_row(Menu.CATEGORIES),
    )


def category_icon_keyboard() -> Keyboard:
    buttons = [Button(icon, Choose(Field.CATEGORY_ICON, icon)) for icon in CATEGORY_ICONS]
    return _chunk(buttons, 4) + back_only(Menu.CATEGORIES)


# Texts


def welcome_text() -> str:
    return (
        f"{DIVIDER}\n"
        "    🤖 *DOMPET*\n"
        "    _Smart Finance Manager_\n"
        f"{DIVIDER}\n\n"
        "Selamat datang! 👋\n\n"
        "*📝 Cara Catat Transaksi:*\n"
        '• _"Beli kopi 25rb BCA"_\n'
        '• _"Gaji 10jt ke Mandiri"_\n'
        '• _"Transfer 500rb BCA ke Gopay"_\n\n'
        "*⚡ Quick Commands:*\n"
        "/saldo • /riwayat • /otp"
    )


def main_menu_text() -> str:
    return f"{DIVIDER}\n    🤖 *DOMPET*\n{DIVIDER}\n\nPilih menu di bawah:"


def help_text() -> str:
    return (
        f"{DIVIDER}\n"
        "       📖 *PANDUAN*\n"
        f"{DIVIDER}\n\n"
        "*💬 Catat Transaksi:*\n"
        '• _"Beli kopi 25rb BCA"_\n'
        '• _"Gaji 10jt ke BCA"_\n'
        '• _"Transfer 500rb BCA ke Gopay"_\n\n'
        "*⌨️ Perintah:*\n"
        "• /saldo - Cek semua saldo\n"
        "• /riwayat - 5 transaksi terakhir\n"
        "• /akun • /laporan • /goals • /budget • /kategori\n"
        "• /hapus [id] - Hapus transaksi\n"
        "• /otp - Minta kode OTP\n"
        "• /verify [kode] - Aktifkan sesi"
    )


def balance_text(accounts: Sequence[Account]) -> str:
    if not accounts:
        return "📭 Belum ada akun."
    lines = ["💰 *Saldo Akun:*", ""]
    lines.extend(f"{account.icon} {md(account.name)}: {format_currency(account.balance)}" for account in accounts)
    total = sum(account.balance for account in accounts)
    lines.extend(["", DIVIDER, f"📊 *Total:* {format_currency(total)}"])
    return "\n".join(lines)


def history_text(transactions: Sequence[Transaction], account_names: dict[int, str], zone: tzinfo) -> str:
    if not transactions:
        return "📭 Belum ada transaksi."
    lines = [f"📋 *{len(transactions)} Transaksi Terakhir:*", ""]
    for tx in transactions:
        when = tx.occurred_at.astimezone(zone).strftime("%d %b")
        lines.append(f"{KIND_ICONS[tx.kind]} `{tx.id}`")
        lines.append(f"   {md(tx.note)} - {format_currency(tx.amount)}")
        lines.append(f"   _{md(account_names.get(tx.account_id, '-'))} • {when}_")
        lines.append("")
    return "\n".join(lines).rstrip()


def report_text(
    title: str,
    transactions: Sequence[Transaction],
    account_names: dict[int, str],
    zone: tzinfo,
) -> str:
    if not transactions:
        return f"📊 *{title}*\n\n📭 Tidak ada transaksi."
    income = expense = 0.0
    lines = [f"📊 *{title}*", ""]
    for tx in transactions:
        when = tx.occurred_at.astimezone(zone).strftime("%d %b %H:%M")
        lines.append(f"{KIND_ICONS[tx.kind]} {md(tx.note)}")
        lines.append(f"   {format_currency(tx.amount)} • {md(account_names.get(tx.account_id, '-'))}")
        lines.append(f"   _{when}_")
        lines.append("")
        if tx.kind == TransactionKind.INCOME:
            income += tx.amount
        elif tx.kind == TransactionKind.EXPENSE:
            expense += tx.amount
    lines.append(DIVIDER)
    lines.append(f"📈 Pemasukan: {format_currency(income)}")
    lines.append(f"📉 Pengeluaran: {format_currency(expense)}")
    lines.append(f"💰 Selisih: {format_currency(income - expense)}")
    return "\n".join(lines)


def accounts_text(accounts: Sequence[Account]) -> str:
    if not accounts:
        return "📭 Belum ada akun."
    lines = ["📋 *Daftar Akun:*", ""]
    for account in accounts:
        lines.append(f"{account.icon} *{md(account.name)}*")
        lines.append(f"   Tipe: {account.type.value}")
        lines.append(f"   Saldo: {format_currency(account.balance)}")
        lines.append("")
    return "\n".join(lines).rstrip()


def goals_text(goals: Sequence[Goal]) -> str:
    if not goals:
        return "📭 Belum ada goals."
    lines = ["🎯 *Daftar Goals:*", ""]
    for goal in goals:
        lines.append(f"{goal.icon} *{md(goal.name)}*")
        lines.append(f"   Progress: {goal.progress_percent}%")
        lines.append(f"   {format_currency(goal.current_amount)} / {format_currency(goal.target_amount)}")
        lines.append(f"   Sisa: {format_currency(goal.target_amount - goal.current_amount)}")
        lines.append("")
    return "\n".join(lines).rstrip()


def budgets_text(budgets: Sequence[Budget]) -> str:
    if not budgets:
        return "📭 Belum ada budget."
    lines = ["💸 *Daftar Budget:*", ""]
    for budget in budgets:
        percent = budget.usage_percent
        lines.append(f"{budget_status(percent)} *{md(budget.category)}*")
        lines.append(f"   {format_currency(budget.spent)} / {format_currency(budget.limit)} ({percent}%)")
        lines.append(f"   Sisa: {format_currency(budget.limit - budget.spent)}")
        lines.append("")
    return "\n".join(lines).rstrip()


def categories_text(categories: Sequence[Category]) -> str:
    if not categories:
        return "📭 Belum ada kategori."
    lines = ["🏷️ *Daftar Kategori:*", ""]
    for kind, heading in ((CategoryKind.EXPENSE, "*📉 Pengeluaran:*"), (CategoryKind.INCOME, "*📈 Pemasukan:*")):
        group = [category for category in categories if category.kind == kind]
        if not group:
            continue
        lines.append(heading)
        lines.extend(
            f"{category.icon} {md(category.name)} _({len(category.keywords)} keywords)_" for category in group
        )
        lines.append("")
    return "\n".join(lines).rstrip()


def keywords_preview(keywords: Sequence[str], limit: int = 15) -> str:
    shown = ", ".join(keywords[:limit])
    return md(shown + ("..." if len(keywords) > limit else ""))


def format_local_time(moment: datetime, zone: tzinfo) -> str:
    return moment.astimezone(zone).strftime("%d-%m-%Y %H:%M")


def otp_delivery(code: str, expires_at: datetime, zone: tzinfo) -> Render:
    """The message carrying a code requested from the web dashboard."""
    return Render(
        "🔐 *Kode Login Dashboard*\n\n"
        f"`{code}`\n\n"
        f"⏰ Berlaku sampai {format_local_time(expires_at, zone)}\n"
        "_Jangan bagikan kode ini ke siapa pun._"
    )


# Failures


def not_found(resource: str) -> Render:
    label = RESOURCE_LABELS.get(resource, resource.capitalize())
    return Render(f"❌ {label} tidak ditemukan.", back_only(Menu.MAIN))


def store_failure() -> Render:
    return Render("⚠️ Gagal menyimpan data. Silakan coba lagi.", back_only(Menu.MAIN))


def unexpected_error(web_base_url: str | None = None) -> Render:
    return Render("⚠️ Terjadi kesalahan. Silakan coba lagi.", main_menu_keyboard(web_base_url))


def unrecognized_menu() -> Render:
    return Render("❓ Menu tidak dikenali.", back_only(Menu.MAIN))


def session_ended() -> Render:
    return Render("❓ Sesi berakhir. Silakan mulai ulang.", back_only(Menu.MAIN))


def not_understood(web_base_url: str | None = None) -> Render:
    return Render("❓ Tidak dikenali. Ketik /help untuk bantuan.", main_menu_keyboard(web_base_url))


def access_denied() -> Render:
    return Render("🚫 Akses ditolak. Bot ini bersifat pribadi.")
