import logging
from typing import Optional
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool
from config import Settings, get_settings
from models import Base

logger = logging.getLogger(__name__)

class DatabaseService:
    """Database service owning the SQLAlchemy engine and session factory"""

    def __init__(self, database_url: Optional[str] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.database_url = database_url or self.settings.database_url

        self.pool_size = self.settings.db_pool_size
        self.max_overflow = self.settings.db_max_overflow
        self.pool_timeout = self.settings.db_pool_timeout
        self.pool_recycle = self.settings.db_pool_recycle

        self.engine = None
        self._setup_engine()
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    def _setup_engine(self):
        """Setup SQLAlchemy engine with connection pooling"""
        try:
            if self.database_url.startswith("sqlite"):
                self.engine = create_engine(
                    self.database_url,
                    connect_args={"check_same_thread": False},
                    echo=False
                )
                event.listen(self.engine, "connect", self._set_sqlite_pragma)
            else:
                self.engine = create_engine(
                    self.database_url,
                    poolclass=QueuePool,
                    pool_size=self.pool_size,
                    max_overflow=self.max_overflow,
                    pool_timeout=self.pool_timeout,
                    pool_recycle=self.pool_recycle,
                    pool_pre_ping=True,
                    echo=False
                )

            logger.info(f"Database engine created for dialect {self.engine.dialect.name}")

            try:
                Base.metadata.create_all(self.engine)
                logger.info("Database tables ensured via SQLAlchemy metadata")
            except Exception as table_error:
                logger.error(f"Failed to create database tables: {table_error}")
                raise

        except Exception as e:
            logger.error(f"Failed to create database engine: {e}")
            raise

    @staticmethod
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        """Set SQLite pragmas (used for local runs and tests)"""
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    def get_engine(self) -> Engine:
        """Get the SQLAlchemy engine"""
        return self.engine

    def get_connection_info(self) -> dict:
        """Get database connection pool information"""
        if not self.engine:
            return {"status": "disconnected"}

        pool = self.engine.pool
        if not isinstance(pool, QueuePool):
            return {"status": "connected", "pool": type(pool).__name__}

        return {
            "status": "connected",
            "pool_size": pool.size(),
            "checked_in_connections": pool.checkedin(),
            "checked_out_connections": pool.checkedout(),
            "overflow_connections": pool.overflow(),
            "pool_timeout": self.pool_timeout,
            "pool_recycle": self.pool_recycle
        }

    def test_connection(self) -> bool:
        """Test database connectivity"""
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1")).fetchone()
                return True
        except Exception as e:
            logger.error(f"Database connection test failed: {e}")
            return False

db_service = None

def get_database_service() -> DatabaseService:
    """Get or create the global database service instance"""
    global db_service
    if db_service is None:
        db_service = DatabaseService()
    return db_service
