"""
SQLAlchemy database session setup using a Singleton connection.
"""
from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from typing import Optional
from campusmarket.config import get_settings


class DatabaseConnection:
    """
    Singleton for the database connection.
    Guarantees a single engine and sessionmaker.
    """
    _instance: Optional['DatabaseConnection'] = None
    _engine: Optional[Engine] = None
    _session_factory: Optional[sessionmaker] = None

    def __new__(cls):
        """Singleton pattern."""
        if cls._instance is None:
            cls._instance = super(DatabaseConnection, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        """Initialize the connection only once."""
        if self._engine is None:
            settings = get_settings()

            if settings.DATABASE_URL.startswith("sqlite"):
                # SQLite shares one connection across threads
                self._engine = create_engine(
                    settings.DATABASE_URL,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                    echo=settings.DEBUG,
                )
            else:
                self._engine = create_engine(
                    settings.DATABASE_URL,
                    pool_pre_ping=True,      # Check connections before use
                    pool_recycle=3600,        # Recycle connections every hour
                    pool_size=5,
                    max_overflow=10,
                    echo=settings.DEBUG,      # Log SQL in debug mode
                )

            self._session_factory = sessionmaker(
                autocommit=False,
                autoflush=False,
                bind=self._engine
            )

    @property
    def engine(self) -> Engine:
        """SQLAlchemy engine."""
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        """Session factory."""
        return self._session_factory


# Singleton instance
_db = DatabaseConnection()

engine = _db.engine
SessionLocal = _db.session_factory
