import pytest
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dompet.migrations import DEFAULT_CATEGORIES, run_migrations, seed_default_categories
from dompet.models import CategoryKind
from dompet.store import RecordStore


@pytest.fixture()
def legacy_engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    with engine.begin() as connection:
        connection.execute(
            text(
                "CREATE TABLE accounts (id INTEGER PRIMARY KEY, name VARCHAR(120) NOT NULL UNIQUE, "
                "type VARCHAR(8) NOT NULL, balance FLOAT NOT NULL, icon VARCHAR(16) NOT NULL)"
            )
        )
        connection.execute(
            text(
                "CREATE TABLE categories (id INTEGER PRIMARY KEY, name VARCHAR(120) NOT NULL UNIQUE, "
                "icon VARCHAR(16) NOT NULL, keywords TEXT NOT NULL DEFAULT '')"
            )
        )
        connection.execute(
            text(
                "CREATE TABLE transactions (id INTEGER PRIMARY KEY, account_id INTEGER NOT NULL, "
                "amount FLOAT NOT NULL, kind VARCHAR(8) NOT NULL, category VARCHAR(120) NOT NULL, "
                "occurred_at DATETIME NOT NULL, note TEXT NOT NULL DEFAULT '')"
            )
        )
        connection.execute(text("INSERT INTO categories (name, icon, keywords) VALUES ('Kopi', '☕', 'kopi')"))
    yield engine
    engine.dispose()


def test_seed_fills_empty_table_once(db_engine):
    assert seed_default_categories(db_engine) == len(DEFAULT_CATEGORIES) == 12
    assert seed_default_categories(db_engine) == 0


def test_seeded_categories_split_by_kind(db_engine):
    run_migrations(db_engine)
    store = RecordStore(sessionmaker(bind=db_engine, expire_on_commit=False))
    income = {category.name for category in store.get_categories() if category.kind == CategoryKind.INCOME}
    assert income == {"Salary", "Freelance", "Gift"}


def test_legacy_tables_gain_missing_columns(legacy_engine):
    run_migrations(legacy_engine)
    inspector = inspect(legacy_engine)
    assert "kind" in {column["name"] for column in inspector.get_columns("categories")}
    assert "to_account_id" in {column["name"] for column in inspector.get_columns("transactions")}
    with legacy_engine.connect() as connection:
        kind = connection.execute(text("SELECT kind FROM categories WHERE name = 'Kopi'")).scalar_one()
    assert kind == "Expense"


def test_existing_categories_block_seeding(legacy_engine):
    run_migrations(legacy_engine)
    with legacy_engine.connect() as connection:
        assert connection.execute(text("SELECT COUNT(*) FROM categories")).scalar_one() == 1


def test_migrations_are_idempotent(db_engine):
    run_migrations(db_engine)
    run_migrations(db_engine)
    with db_engine.connect() as connection:
        assert connection.execute(text("SELECT COUNT(*) FROM categories")).scalar_one() == 12
