"""
Credential store.

Only SHA-256 digests of API keys and session tokens are persisted. Every
lookup and the last-used touch is a single statement keyed by the digest,
so concurrent requests never race on a read-modify-write.

The store is created in the app lifespan and handed to handlers through
``app.state.store``; nothing here holds a process-wide connection.
"""
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from sqlalchemy import DateTime, String, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class Base(DeclarativeBase):
    pass


class ApiKeyRecord(Base):
    """An issued API key. The raw key is shown once at creation and never kept."""

    __tablename__ = "api_keys"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    agent_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    key_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class SessionRecord(Base):
    """A browser session, looked up by the digest of its cookie value."""

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    agent_id: Mapped[str] = mapped_column(String, nullable=False)
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class CredentialStore(Protocol):
    """What the authenticator needs from persistence."""

    async def get_api_key(self, key_hash: str) -> Optional[ApiKeyRecord]:
        """Point lookup of an API key by its digest."""
        ...

    async def touch_api_key(self, key_hash: str, when: datetime) -> None:
        """Set ``last_used_at`` on the key with this digest."""
        ...

    async def put_api_key(self, agent_id: str, key_hash: str) -> ApiKeyRecord:
        """Persist a new key digest for an agent."""
        ...

    async def get_session(self, token_hash: str, now: datetime) -> Optional[SessionRecord]:
        """Point lookup of a session that has not expired at ``now``."""
        ...

    async def put_session(self, agent_id: str, token_hash: str, expires_at: datetime) -> SessionRecord:
        """Persist a session digest for an agent."""
        ...


class SqlCredentialStore:
    """CredentialStore backed by an async SQLAlchemy engine (SQLite by default)."""

    def __init__(self, engine: AsyncEngine):
        self._engine = engine
        self._sessions = async_sessionmaker(engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, url: str, **engine_kwargs) -> "SqlCredentialStore":
        return cls(create_async_engine(url, **engine_kwargs))

    async def init(self) -> None:
        """Create tables that do not exist yet."""
        url = self._engine.url
        if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Credential store ready (%s)", self._engine.url.render_as_string(hide_password=True))

    async def close(self) -> None:
        await self._engine.dispose()

    # ── API keys ─────────────────────────────────────────────────────────────

    async def get_api_key(self, key_hash: str) -> Optional[ApiKeyRecord]:
        async with self._sessions() as session:
            result = await session.execute(
                select(ApiKeyRecord).where(ApiKeyRecord.key_hash == key_hash)
            )
            return result.scalar_one_or_none()

    async def touch_api_key(self, key_hash: str, when: datetime) -> None:
        async with self._sessions.begin() as session:
            await session.execute(
                update(ApiKeyRecord)
                .where(ApiKeyRecord.key_hash == key_hash)
                .values(last_used_at=when)
            )

    async def put_api_key(self, agent_id: str, key_hash: str) -> ApiKeyRecord:
        record = ApiKeyRecord(agent_id=agent_id, key_hash=key_hash)
        async with self._sessions.begin() as session:
            session.add(record)
        return record

    # ── Sessions ─────────────────────────────────────────────────────────────

    async def get_session(self, token_hash: str, now: datetime) -> Optional[SessionRecord]:
        async with self._sessions() as session:
            result = await session.execute(
                select(SessionRecord).where(
                    (SessionRecord.token_hash == token_hash) & (SessionRecord.expires_at > now)
                )
            )
            return result.scalar_one_or_none()

    async def put_session(self, agent_id: str, token_hash: str, expires_at: datetime) -> SessionRecord:
        record = SessionRecord(agent_id=agent_id, token_hash=token_hash, expires_at=expires_at)
        async with self._sessions.begin() as session:
            session.add(record)
        return record
