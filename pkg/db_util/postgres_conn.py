from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager
import urllib.parse
import asyncio
import logging
from pkg.db_util.types import PostgresConfig
from pkg.db_util.sql_alchemy.declarative_base import Base
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, AsyncEngine, async_sessionmaker
from sqlalchemy.exc import SQLAlchemyError


class PostgresConnection:
    """Owns one async engine and sessionmaker for the chat history database."""

    def __init__(self, db_config: PostgresConfig, logger: logging.Logger):
        self.logger = logger
        self.db_config = db_config
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker] = None
        self._engine_lock = asyncio.Lock()

    def get_db_url(self) -> str:
        """Build the asyncpg database URL from config."""
        cfg = self.db_config
        if not cfg.host:
            raise ValueError("Database host configuration is missing.")
        # URL encode the password if it exists
        encoded_password = urllib.parse.quote_plus(cfg.password) if cfg.password else ""
        return f"postgresql+asyncpg://{cfg.username}:{encoded_password}@{cfg.host}:{cfg.port}/{cfg.database}"

    async def get_engine(self, max_retries: int = 3, initial_delay: float = 2.0) -> AsyncEngine:
        """Get or create the engine, retrying the first connection with exponential backoff."""
        if self._engine is not None:
            return self._engine

        async with self._engine_lock:
            if self._engine is not None:
                return self._engine

            db_url = self.get_db_url()
            last_error = None
            for attempt in range(max_retries):
                engine = create_async_engine(
                    db_url,
                    echo=False,
                    pool_size=self.db_config.pool_size,
                    max_overflow=self.db_config.max_overflow,
                    pool_timeout=self.db_config.pool_timeout,
                    pool_recycle=self.db_config.pool_recycle,
                    pool_pre_ping=True,
                    connect_args={
                        "timeout": 15,
                        "command_timeout": 15,
                        "server_settings": {"application_name": "room-chat-relay"},
                    },
                )
                try:
                    self.logger.info(f"Testing database connection (attempt {attempt + 1}/{max_retries})...")
                    async with engine.connect() as conn:
                        await conn.exec_driver_sql("SELECT 1")
                except (SQLAlchemyError, OSError, ConnectionError) as e:
                    last_error = e
                    await engine.dispose()
                    delay = initial_delay * (2 ** attempt)  # Exponential backoff
                    if attempt < max_retries - 1:
                        self.logger.warning(
                            f"Database connection attempt {attempt + 1}/{max_retries} failed: {e}. "
                            f"Retrying in {delay:.1f}s..."
                        )
                        await asyncio.sleep(delay)
                    continue

                self._engine = engine
                self._sessionmaker = async_sessionmaker(
                    bind=engine,
                    class_=AsyncSession,
                    expire_on_commit=False,
                    autoflush=False,
                )
                self.logger.info("Async engine and sessionmaker created successfully.")
                return engine

        self.logger.error(f"Failed to create database engine after {max_retries} attempts: {last_error}")
        raise ConnectionError(f"Could not create database engine after {max_retries} attempts: {last_error}") from last_error

    async def create_tables(self) -> None:
        """Create all registered tables if they do not exist yet. Models must be imported first."""
        engine = await self.get_engine()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.logger.info(f"Tables ensured: {', '.join(Base.metadata.tables)}")

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Provides an asynchronous SQLAlchemy session, rolled back on error and always closed."""
        await self.get_engine()
        session: AsyncSession = self._sessionmaker()
        try:
            yield session
            if session.in_transaction():
                await session.commit()
        except Exception as e:
            self.logger.error(f"Error in database session: {e}. Rolling back.")
            if session.in_transaction():
                await session.rollback()
            raise
        finally:
            await session.close()

    async def close_engine(self):
        """Dispose of the engine and its connection pool."""
        if self._engine is None:
            self.logger.info("Database engine was not initialized, no need to close.")
            return
        self.logger.info("Closing database engine and connection pool...")
        await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None
        self.logger.info("Database engine closed.")
