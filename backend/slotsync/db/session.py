from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
import threading

from ..config import get_settings

"""Database session / engine configuration.

NOTE: In-memory SQLite (":memory:") creates a new database per connection which
breaks the sync worker threads (each opens its own session). We use a
file-based SQLite database unless DATABASE_URL is provided; PostgreSQL URLs
work unchanged in real deployments.
"""

DATABASE_URL = get_settings().database_url

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    DATABASE_URL,
    echo=False,
    future=True,
    connect_args=_connect_args,
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

class Base(DeclarativeBase):
    pass

_init_lock = threading.Lock()
_tables_created = False

def ensure_tables():
    global _tables_created
    if _tables_created:
        return
    with _init_lock:
        if not _tables_created:
            from . import models  # noqa: F401 register metadata
            Base.metadata.create_all(bind=engine)
            _tables_created = True

# Dependency
def get_db():
    ensure_tables()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
