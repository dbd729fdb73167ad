"""Database engine and request-scoped sessions for the billing store"""
import logging
from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker
from app.models.base import Base
from app.core.config import settings

logger = logging.getLogger(__name__)


def engine_options(database_url: str) -> dict:
    """Keyword arguments for create_engine.

    Postgres connections are recycled hourly and pinged before use. SQLite has no
    server side to drop connections, but needs cross-thread access because
    FastAPI runs sync routes in a threadpool.
    """
    if make_url(database_url).get_backend_name() == "sqlite":
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_recycle": 3600}


engine = create_engine(settings.DATABASE_URL, **engine_options(settings.DATABASE_URL))

# Webhook handlers commit explicitly after each snapshot merge
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Dependency: one session per request, closed when the response is sent"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create the users and billing_events tables when migrations have not run"""
    import app.models  # noqa: F401  registers every model on Base.metadata
    Base.metadata.create_all(bind=engine)
    logger.info(f"Billing tables ready: {', '.join(sorted(Base.metadata.tables))}")
