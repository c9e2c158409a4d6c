"""
Database schema and connection management.

Uses SQLite with SQLAlchemy for subsidy candidates and the classical
baseline cache.
"""

from datetime import datetime
from pathlib import Path
from sqlalchemy import create_engine, Column, String, DateTime, Float, Integer, JSON
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


class Subsidy(Base):
    """Subsidy program offered as a matching candidate."""

    __tablename__ = "subsidies"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    industry = Column(String, nullable=True)  # canonical or raw label, see normalize.py
    scale = Column(Float, nullable=True)
    needs = Column(JSON, nullable=False, default=list)
    max_amount = Column(Integer, nullable=True)
    status = Column(String, nullable=False, default="active")  # active, closed
    embedding = Column(JSON, nullable=True)  # pre-computed vector for similarity search
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    def to_record(self) -> dict:
        """Plain dict in the shape the feature encoder consumes."""
        return {
            "id": self.id,
            "name": self.name,
            "industry": self.industry,
            "scale": self.scale,
            "needs": list(self.needs or []),
            "max_amount": self.max_amount,
            "status": self.status,
            "embedding": list(self.embedding) if self.embedding is not None else None,
        }


class BaselineScore(Base):
    """Cached classical baseline score, one float per state identifier."""

    __tablename__ = "baseline_scores"

    key = Column(String, primary_key=True)  # classical:state_<digest>
    score = Column(Float, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)


def _engine(db_path: Path):
    # Sessions may be opened from worker threads
    return create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )


def init_database(db_path: Path) -> None:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(_engine(db_path))


def get_sessionmaker(db_path: Path) -> sessionmaker:
    """Session factory bound to a single engine, for callers opening many sessions."""
    return sessionmaker(bind=_engine(db_path))


def get_session(db_path: Path):
    """
    Get database session.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy session
    """
    Session = get_sessionmaker(db_path)
    return Session()
