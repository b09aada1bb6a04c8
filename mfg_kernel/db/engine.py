"""
Module: mfg_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory
    management and table creation.
Architecture position: Kernel > DB.  May import from db/base.py.
    create_tables/drop_tables import every module's ORM so that
    Base.metadata is complete.

Invariants enforced:
    - Sessions are created with expire_on_commit=False so DTOs built after
      commit never trigger lazy reloads.
    - Server backends (PostgreSQL) use a pre-pinged QueuePool at READ
      COMMITTED; SQLite uses the dialect's default pool.

Failure modes:
    - RuntimeError if get_engine/get_session is called before
      init_engine_from_url().
"""

import atexit

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from mfg_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
) -> Engine:
    """
    Initialize the module-level engine and session factory.

    Second calls replace the previous engine (call reset_engine() first to
    dispose pooled connections).
    """
    global _engine, _SessionFactory

    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        _engine = create_engine(url, echo=echo)
    else:
        _engine = create_engine(
            url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            isolation_level="READ COMMITTED",
        )

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    logger.info(
        "engine_initialized",
        extra={"dialect": url.get_backend_name(), "echo": echo},
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory()


def _import_all_models() -> None:
    # Registers every table on Base.metadata.
    import mfg_modules.approval.orm  # noqa: F401
    import mfg_modules.costing.orm  # noqa: F401
    import mfg_modules.manufacturing.orm  # noqa: F401
    import mfg_modules.procurement.orm  # noqa: F401


def create_tables() -> None:
    """Create all tables for every module."""
    from mfg_kernel.db.base import Base

    _import_all_models()
    engine = get_engine()
    Base.metadata.create_all(engine)
    logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})


def drop_tables() -> None:
    """Drop all tables. Primarily for testing."""
    from mfg_kernel.db.base import Base

    _import_all_models()
    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None
    _SessionFactory = None


def _atexit_dispose():
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)
