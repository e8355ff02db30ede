"""
Database engine and session factory.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


def create_db(database_url: str, echo: bool = False):
    """
    Create the SQLAlchemy engine and session factory for `database_url`.

    Returns:
        Tuple of (engine, SessionLocal)
    """
    engine = create_engine(database_url, pool_pre_ping=True, future=True, echo=echo)
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    return engine, SessionLocal
