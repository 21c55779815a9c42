# core/database.py
"""
Database Module - SQLite and PostgreSQL compatible
"""

import logging
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from settleup.models.base import Base
from settleup.core.config import settings

logger = logging.getLogger(__name__)

class Database:
    """Database connection and schema manager"""

    def __init__(self, database_url: Optional[str] = None, echo: Optional[bool] = None):
        """Initialize database connection"""
        self.database_url = database_url or settings.DATABASE_URL
        echo = settings.DEBUG if echo is None else echo

        # Determine database type
        is_sqlite = 'sqlite' in self.database_url.lower()

        # Create engine with appropriate parameters
        if is_sqlite:
            # SQLite doesn't support pool_size and max_overflow
            self.engine = create_async_engine(
                self.database_url,
                echo=echo,  # Log SQL queries in debug mode
                pool_pre_ping=True,  # Check connections before using
            )
        else:
            # PostgreSQL, MySQL, etc. support pooling
            self.engine = create_async_engine(
                self.database_url,
                echo=echo,
                pool_pre_ping=True,
                pool_size=5,
                max_overflow=10
            )

        # Create session factory
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        logger.info(f"Database initialized: {'SQLite' if is_sqlite else 'PostgreSQL/Other'}")

    async def create_tables(self):
        """Create all database tables"""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables created successfully")
        except Exception as e:
            logger.error(f"Error creating database tables: {e}")
            raise

    async def drop_tables(self):
        """Drop all database tables (use with caution!)"""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.drop_all)
            logger.warning("All database tables dropped")
        except Exception as e:
            logger.error(f"Error dropping database tables: {e}")
            raise

    async def close(self):
        """Close database connection"""
        await self.engine.dispose()
        logger.info("Database connection closed")
