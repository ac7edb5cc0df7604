from typing import Any, Dict

from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy import create_engine
from .config import Settings, settings


def engine_options(config: Settings) -> Dict[str, Any]:
    """create_engine keyword arguments for the configured database."""
    if config.database_url.startswith("sqlite"):
        # Store reads run on worker threads
        return {"connect_args": {"check_same_thread": False}}
    # One pooled connection per concurrent store read, plus request sessions as overflow
    return {
        "pool_pre_ping": True,
        "pool_size": config.db_pool_size,
        "max_overflow": config.db_max_overflow,
        "pool_recycle": config.db_pool_recycle_seconds,
    }


engine = create_engine(settings.database_url, future=True, **engine_options(settings))

# One Session per request or per store read; never shared across threads
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
