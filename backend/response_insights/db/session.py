from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from response_insights.core.config import settings

# `check_same_thread` is SQLite specific. FastAPI runs sync routes in a
# threadpool, so the connection must be usable from other threads.
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=connect_args,
    pool_pre_ping=True
)

# Create a configured "Session" class.
# This is not a session instance, but a factory for creating them.
SessionLocal = sessionmaker(autoflush=False, bind=engine)

# Create a Base class for our SQLAlchemy models to inherit from.
Base = declarative_base()

# --- Dependency for getting a DB session ---
def get_db():
    """
    A dependency function that creates and yields a new database session
    for each request. It ensures the session is always closed, even if
    an error occurs.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
