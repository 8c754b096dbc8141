import os
import logging
import datetime as dt
import threading

from dotenv import load_dotenv
from sqlalchemy import create_engine, event, text

# Ensure local .env is loaded for dev runs (Alembic already does this)
load_dotenv()

DB_ECHO = os.getenv("DB_ECHO") == "1"
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///data/vibestack.db")

_INIT_LOCK = threading.Lock()


def _ensure_dir_for_sqlite(url: str) -> None:
    if not url.startswith("sqlite:///"):
        return
    path = url.replace("sqlite:///", "", 1)
    if path == ":memory:":
        return
    d = os.path.dirname(path)
    if d:
        os.makedirs(d, exist_ok=True)


def _build_engine():
    if DATABASE_URL.startswith("sqlite:"):
        _ensure_dir_for_sqlite(DATABASE_URL)
        eng = create_engine(
            DATABASE_URL,
            future=True,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False},
            echo=DB_ECHO,
        )

        @event.listens_for(eng, "connect")
        def _sqlite_pragmas(dbapi_conn, _):
            cur = dbapi_conn.cursor()
            try:
                cur.execute("PRAGMA journal_mode=WAL")
                cur.execute("PRAGMA synchronous=NORMAL")
                cur.execute("PRAGMA busy_timeout=5000")
            finally:
                cur.close()

        return eng

    # Postgres / others
    pool_size = int(os.getenv("DB_POOL_SIZE", "5"))
    max_overflow = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    pool_recycle = int(os.getenv("DB_POOL_RECYCLE_S", "300"))
    return create_engine(
        DATABASE_URL,
        future=True,
        pool_pre_ping=True,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_recycle=pool_recycle,
        echo=DB_ECHO,
    )


engine = _build_engine()


def dialect() -> str:
    return engine.dialect.name


def is_sqlite() -> bool:
    return engine.dialect.name == "sqlite"


def is_postgres() -> bool:
    return engine.dialect.name == "postgresql"


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def utc_iso(d: dt.datetime | None = None) -> str:
    """UTC timestamp, second precision, with trailing 'Z'."""
    d = d or utc_now()
    if d.tzinfo is None:
        d = d.replace(tzinfo=dt.timezone.utc)
    return d.astimezone(dt.timezone.utc).replace(microsecond=0, tzinfo=None).isoformat() + "Z"


TABLES = ("users", "subscribers", "ai_daily_usage", "posts")


def init_db() -> None:
    """Create the tables and unique keys the ledger and meter depend on.

    Mirrors the Alembic revision so dev and test databases work without a
    migration step. Safe to call repeatedly.
    """
    serial_pk = "SERIAL PRIMARY KEY" if is_postgres() else "INTEGER PRIMARY KEY AUTOINCREMENT"
    with _INIT_LOCK:
        with engine.begin() as conn:
            conn.execute(
                text(
                    """
                CREATE TABLE IF NOT EXISTS users(
                    id TEXT PRIMARY KEY,
                    handle TEXT NOT NULL UNIQUE,
                    email TEXT NOT NULL UNIQUE,
                    bio TEXT,
                    plan TEXT NOT NULL DEFAULT 'hobby',
                    plan_subscription_id TEXT,
                    created_at TEXT NOT NULL
                )
                """
                )
            )
            conn.execute(
                text(
                    "CREATE INDEX IF NOT EXISTS idx_users_plan_sub ON users(plan_subscription_id)"
                )
            )
            conn.execute(
                text(
                    f"""
                CREATE TABLE IF NOT EXISTS subscribers(
                    id {serial_pk},
                    author_id TEXT NOT NULL REFERENCES users(id),
                    subscriber_user_id TEXT,
                    email TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'active',
                    stripe_subscription_id TEXT,
                    unsubscribe_token TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL
                )
                """
                )
            )
            # The ledger's concurrency primitive: one row per (author, normalized email)
            conn.execute(
                text(
                    "CREATE UNIQUE INDEX IF NOT EXISTS uq_subscribers_author_email "
                    "ON subscribers(author_id, email)"
                )
            )
            conn.execute(
                text(
                    "CREATE INDEX IF NOT EXISTS idx_subscribers_stripe_sub "
                    "ON subscribers(stripe_subscription_id)"
                )
            )
            conn.execute(
                text(
                    """
                CREATE TABLE IF NOT EXISTS ai_daily_usage(
                    user_id TEXT NOT NULL,
                    usage_date TEXT NOT NULL,
                    calls INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY(user_id, usage_date)
                )
                """
                )
            )
            conn.execute(
                text(
                    f"""
                CREATE TABLE IF NOT EXISTS posts(
                    id {serial_pk},
                    author_id TEXT NOT NULL REFERENCES users(id),
                    title TEXT NOT NULL,
                    slug TEXT NOT NULL UNIQUE,
                    content TEXT,
                    vibe_theme TEXT DEFAULT 'default',
                    status TEXT NOT NULL DEFAULT 'draft',
                    is_paid INTEGER NOT NULL DEFAULT 0,
                    published_at TEXT,
                    created_at TEXT NOT NULL
                )
                """
                )
            )
            conn.execute(
                text(
                    "CREATE INDEX IF NOT EXISTS idx_posts_author_published "
                    "ON posts(author_id, status, published_at)"
                )
            )


# Optional one-line startup log (non-fatal if logging not configured)
logging.getLogger(__name__).info(
    "DB engine ready", extra={"dialect": dialect(), "url": engine.url.render_as_string(hide_password=True)}
)
