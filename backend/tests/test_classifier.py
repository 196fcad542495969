from dompet.classifier import classify, score
from dompet.domain.entities import Category
from dompet.migrations import seed_default_categories
from dompet.models import CategoryKind, TransactionKind

CATEGORIES = [
    Category(1, "Food", "🍔", ("makan", "kopi", "makan siang"), CategoryKind.EXPENSE),
    Category(2, "Shopping", "🛍️", ("beli", "baju"), CategoryKind.EXPENSE),
    Category(3, "Salary", "💼", ("gaji", "bonus"), CategoryKind.INCOME),
    Category(4, "Coffee", "☕", ("kopi",), CategoryKind.EXPENSE),
]


def test_score_sums_keyword_lengths():
    assert score("Makan siang di kantor", ("makan", "makan siang", "kopi")) == len("makan") + len("makan siang")


def test_longer_keywords_weigh_more():
    assert classify("makan siang", TransactionKind.EXPENSE, CATEGORIES) == "Food"


def test_tie_goes_to_first_category():
    # "beli kopi": Food scores 4 (kopi), Shopping scores 4 (beli), Coffee scores 4.
    assert classify("beli kopi", TransactionKind.EXPENSE, CATEGORIES) == "Food"
    assert classify("beli kopi", TransactionKind.EXPENSE, CATEGORIES[1:]) == "Shopping"


def test_no_match_falls_back_to_other():
    assert classify("sewa rumah", TransactionKind.EXPENSE, CATEGORIES) == "Other"


def test_income_only_considers_income_categories():
    assert classify("bonus kopi", TransactionKind.INCOME, CATEGORIES) == "Salary"
    assert classify("kopi", TransactionKind.INCOME, CATEGORIES) == "Other"


def test_expense_considers_every_category():
    assert classify("gaji", TransactionKind.EXPENSE, CATEGORIES) == "Salary"


def test_classification_is_deterministic():
    results = {classify("Beli baju dan kopi", TransactionKind.EXPENSE, CATEGORIES) for _ in range(5)}
    assert results == {"Shopping"}


def test_default_keyword_set_picks_food_for_coffee_shop(db_engine, store):
    seed_default_categories(db_engine)
    categories = store.get_categories()
    assert classify("beli kopi susu di starbucks", TransactionKind.EXPENSE, categories) == "Food"
    assert store.classify("beli kopi susu di starbucks", TransactionKind.EXPENSE) == "Food"
    assert store.classify("gajian bulan ini", TransactionKind.INCOME) == "Salary"
    assert store.classify("sewa kos", TransactionKind.EXPENSE) == "Other"
