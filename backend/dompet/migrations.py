from __future__ import annotations

import logging

from sqlalchemy import func, inspect, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import CategoryKind, CategoryModel

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: tuple[tuple[str, str, CategoryKind, str], ...] = (
    (
        "Food",
        "🍔",
        CategoryKind.EXPENSE,
        "makan,makanan,food,bakso,mie,nasi,ayam,sate,gorengan,jajan,snack,kopi,coffee,starbucks,mcd,kfc,"
        "pizza,burger,resto,restaurant,warung,kantin,cafe,breakfast,lunch,dinner,sarapan,makan siang,"
        "makan malam,es,minuman,drink,boba,bubble tea,martabak,roti,bread,indomie,gofood,grabfood,shopeefood",
    ),
    (
        "Transport",
        "🚗",
        CategoryKind.EXPENSE,
        "transport,transportasi,gojek,grab,ojek,taxi,taksi,bus,kereta,train,mrt,lrt,transjakarta,tj,bensin,"
        "bbm,fuel,parkir,parking,tol,toll,uber,angkot,bajaj,ojol,motor,mobil,car,bike",
    ),
    (
        "Shopping",
        "🛍️",
        CategoryKind.EXPENSE,
        "shopping,belanja,beli,shop,mall,tokopedia,shopee,lazada,bukalapak,blibli,zalora,fashion,baju,"
        "celana,sepatu,shoes,tas,bag,jam,watch,aksesoris,accessories,elektronik,electronic,gadget,hp,phone,"
        "laptop,komputer,computer",
    ),
    (
        "Bills",
        "📄",
        CategoryKind.EXPENSE,
        "bills,tagihan,listrik,electricity,pln,air,pdam,gas,internet,wifi,indihome,telkom,pulsa,paket data,"
        "kuota,telepon,phone bill,tv kabel,netflix,spotify,subscription,langganan,iuran,cicilan,kredit,"
        "pinjaman,loan,asuransi,insurance,pajak,tax",
    ),
    (
        "Health",
        "🏥",
        CategoryKind.EXPENSE,
        "health,kesehatan,dokter,doctor,rumah sakit,hospital,klinik,clinic,obat,medicine,apotek,pharmacy,"
        "vitamin,suplemen,supplement,gym,fitness,olahraga,sport,medical,medis,sakit,sick,checkup,dental,"
        "gigi,mata,eye",
    ),
    (
        "Entertainment",
        "🎬",
        CategoryKind.EXPENSE,
        "entertainment,hiburan,nonton,bioskop,cinema,movie,film,konser,concert,game,gaming,steam,"
        "playstation,xbox,nintendo,karaoke,bar,club,party,pesta,liburan,vacation,holiday,travel,wisata,"
        "hotel,tiket,ticket,spotify,netflix,youtube,disney",
    ),
    (
        "Education",
        "📚",
        CategoryKind.EXPENSE,
        "education,pendidikan,sekolah,school,kuliah,university,kampus,buku,book,kursus,course,les,tutor,"
        "training,pelatihan,sertifikasi,certification,udemy,coursera,skillshare,workshop,seminar,webinar",
    ),
    (
        "Investment",
        "📈",
        CategoryKind.EXPENSE,
        "investment,investasi,saham,stock,reksadana,mutual fund,crypto,bitcoin,deposito,deposit,obligasi,"
        "bond,emas,gold,properti,property,trading,forex,bibit,ajaib,stockbit,pluang,bareksa",
    ),
    ("Other", "📦", CategoryKind.EXPENSE, "other,lainnya,lain,misc,miscellaneous"),
    (
        "Salary",
        "💼",
        CategoryKind.INCOME,
        "salary,gaji,gajian,payroll,income,pendapatan,upah,honor,honorarium,bonus,thr,tunjangan,allowance",
    ),
    (
        "Freelance",
        "💻",
        CategoryKind.INCOME,
        "freelance,freelancer,project,proyek,jasa,service,fee,bayaran,client,klien,side job,sampingan",
    ),
    (
        "Gift",
        "🎁",
        CategoryKind.INCOME,
        "gift,hadiah,kado,angpao,angpau,thr,bonus,reward,cashback,refund,pengembalian",
    ),
)


def _columns(engine: Engine, table: str) -> set[str] | None:
    try:
        return {column["name"] for column in inspect(engine).get_columns(table)}
    except SQLAlchemyError as exc:
        logger.error("Failed to inspect %s table: %s", table, exc)
        return None


def _ensure_category_kind_column(engine: Engine) -> None:
    columns = _columns(engine, "categories")
    if columns is None or "kind" in columns:
        return

    logger.info("Adding kind column to categories table (default Expense).")

    try:
        with engine.begin() as connection:
            if engine.dialect.name.lower() == "postgresql":
                connection.execute(
                    text(
                        "DO $$ BEGIN CREATE TYPE category_kind AS ENUM ('Expense', 'Income'); "
                        "EXCEPTION WHEN duplicate_object THEN NULL; END $$;"
                    )
                )
                connection.execute(
                    text("ALTER TABLE categories ADD COLUMN kind category_kind NOT NULL DEFAULT 'Expense'")
                )
            else:
                connection.execute(
                    text("ALTER TABLE categories ADD COLUMN kind VARCHAR(7) NOT NULL DEFAULT 'Expense'")
                )
    except SQLAlchemyError as exc:
        logger.error("Failed to add kind column: %s", exc)


def _ensure_transfer_column(engine: Engine) -> None:
    columns = _columns(engine, "transactions")
    if columns is None or "to_account_id" in columns:
        return

    logger.info("Adding to_account_id column to transactions table.")

    try:
        with engine.begin() as connection:
            connection.execute(
                text(
                    "ALTER TABLE transactions ADD COLUMN to_account_id INTEGER "
                    "REFERENCES accounts(id) ON DELETE SET NULL"
                )
            )
    except SQLAlchemyError as exc:
        logger.error("Failed to add to_account_id column: %s", exc)


def seed_default_categories(engine: Engine) -> int:
    """Insert the default categories when the table is empty; returns how many were added."""
    try:
        with Session(engine) as db:
            if db.scalar(select(func.count()).select_from(CategoryModel)):
                return 0
            db.add_all(
                CategoryModel(name=name, icon=icon, kind=kind, keywords=keywords)
                for name, icon, kind, keywords in DEFAULT_CATEGORIES
            )
            db.commit()
    except SQLAlchemyError as exc:
        logger.error("Failed to seed default categories: %s", exc)
        return 0
    logger.info("Seeded %d default categories.", len(DEFAULT_CATEGORIES))
    return len(DEFAULT_CATEGORIES)


def run_migrations(engine: Engine) -> None:
    """Execute lightweight, idempotent migrations on application start."""
    _ensure_category_kind_column(engine)
    _ensure_transfer_column(engine)
    seed_default_categories(engine)
