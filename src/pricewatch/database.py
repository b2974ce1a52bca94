from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import settings


def build_engine(url: str) -> Engine:
    """Create an engine; SQLite gets WAL mode and a busy timeout.

    In-memory SQLite URLs share one connection so that every session sees
    the same database.
    """
    kwargs: dict = {}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url:
            kwargs["poolclass"] = StaticPool

    new_engine = create_engine(url, **kwargs)

    if url.startswith("sqlite") and ":memory:" not in url:
        @event.listens_for(new_engine, "connect")
        def _set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=30000")
            cursor.close()

    return new_engine


def build_session_factory(bind: Engine) -> sessionmaker[Session]:
    # Store methods hand ORM rows back after commit; keep them readable.
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = build_engine(settings.database_url)
SessionLocal = build_session_factory(engine)


class Base(DeclarativeBase):
    pass


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def run_migrations() -> None:
    """Run Alembic migrations to bring the database up to date."""
    project_root = Path(__file__).resolve().parents[2]
    if not (project_root / "alembic").exists():
        # pip install in Docker: __file__ is in site-packages, fallback to WORKDIR
        project_root = Path("/app")
    alembic_cfg = Config(str(project_root / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(project_root / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.database_url)
    alembic_cfg.attributes["configure_logger"] = False
    command.upgrade(alembic_cfg, "head")


def init_db(bind: Engine | None = None) -> None:
    """Create tables directly, without Alembic (used by tests)."""
    Base.metadata.create_all(bind=bind or engine)
