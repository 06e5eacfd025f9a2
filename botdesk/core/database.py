from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from botdesk.core.config import settings

# pool_pre_ping keeps long-idle pooled connections usable
engine = create_engine(settings.database_url, pool_pre_ping=True, echo=False)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency yielding one database session per request"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
