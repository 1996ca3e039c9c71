from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ..config import settings


def _engine_kwargs(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        # TestClient and the sweep scheduler touch the engine from worker threads
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(settings.database_url, **_engine_kwargs(settings.database_url))
# one Session per unit of work; request handlers and the sweep thread never share one
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_engine():
    return engine
