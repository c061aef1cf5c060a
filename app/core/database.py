from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from app.core.config import settings


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Local development and tests
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": 20,
        "max_overflow": 10,
        "pool_pre_ping": True,  # Detect stale connections before using them
        "pool_recycle": 3600,
        "pool_timeout": settings.DATABASE_POOL_TIMEOUT,
        # Webhook deliveries must answer in time, so no statement may hang
        "connect_args": {"options": f"-c statement_timeout={settings.DATABASE_STATEMENT_TIMEOUT_MS}"},
    }


engine = create_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()
