from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from meditrack.config import settings


class Base(DeclarativeBase):
    pass


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite leaves FK enforcement off per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(url: str, echo: bool = False, connect_args=None, **engine_kwargs) -> Engine:
    connect_args = dict(connect_args or {})
    is_sqlite = url.startswith("sqlite")
    if is_sqlite:
        # FastAPI runs sync handlers in a threadpool
        connect_args.setdefault("check_same_thread", False)

    engine = create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        connect_args=connect_args,
        future=True,
        **engine_kwargs,
    )

    if is_sqlite:
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


engine: Engine = make_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    future=True,
)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def import_models():
    """Import every model module so Base.metadata is complete for create_all()."""
    from meditrack.clinics import models as clinic_models  # noqa: F401
    from meditrack.stock.items import models as item_models  # noqa: F401
    from meditrack.stock.batches import models as batch_models  # noqa: F401
    from meditrack.stock.adjustments import models as adjustment_models  # noqa: F401
    from meditrack.alerts import models as alert_models  # noqa: F401
