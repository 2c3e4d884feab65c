import logging

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from .config import settings

log = logging.getLogger("marketplace.db")


def _normalized_database_url(raw_url: str) -> str:
    """
    DATABASE_URL normalization:
    - postgres:// and postgresql:// are rewritten to the psycopg3 dialect.
    - Anything else (SQLite etc.) is left untouched.
    """
    if not raw_url:
        return "sqlite:///./marketplace.db"
    raw_url = raw_url.strip()
    if raw_url.startswith("postgres://"):
        return "postgresql+psycopg://" + raw_url[len("postgres://") :]
    if raw_url.startswith("postgresql://") and "+psycopg" not in raw_url.split("://", 1)[0]:
        return "postgresql+psycopg://" + raw_url[len("postgresql://") :]
    return raw_url


DATABASE_URL = _normalized_database_url(settings.database_url)

# In-memory SQLite: single shared connection so tables created by init_db are visible to every request
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
_use_static_pool = DATABASE_URL.startswith("sqlite") and ":memory:" in DATABASE_URL
engine = create_engine(
    DATABASE_URL,
    connect_args=_connect_args,
    poolclass=StaticPool if _use_static_pool else None,
)


def get_db():
    with Session(engine) as session:
        yield session


def init_db(bind: Engine | None = None) -> list[str]:
    """Create missing payment tables and indexes; returns the names that were created."""
    import marketplace.models  # noqa: F401  registers the tables

    bind = bind or engine
    existing = set(inspect(bind).get_table_names())
    SQLModel.metadata.create_all(bind)
    created = sorted(set(SQLModel.metadata.tables) - existing)
    if created:
        log.info("created tables %s", ",".join(created))
    return created


def check_db() -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
