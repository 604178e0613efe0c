import json
import os
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import anyio
from pydantic import BaseModel
from sqlalchemy import Column, DateTime, Index, MetaData, String, Table, Text, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from paillier_client.crypto.paillier import PublicKey
from paillier_client.errors import KeyValidationError, StorageError, StorageUnavailableError
from paillier_client.logger import get_logger

logger = get_logger("keystore")

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


def get_database_url() -> str:
    """
    Retrieve the key store URL from environment.
    Defaults to a SQLite file in the working directory.
    """
    return os.getenv("KEYSTORE_DATABASE_URL", "sqlite+aiosqlite:///./paillier_keys.db")


def get_engine(url: Optional[str] = None) -> AsyncEngine:
    """Return a new async engine using NullPool to avoid pool/loop issues."""
    return create_async_engine(url or get_database_url(), future=True, poolclass=NullPool)


metadata = MetaData()

keys_table = Table(
    "keys",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(256), nullable=False),
    Column("n_hex", Text, nullable=False),
    Column("g_hex", Text, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("last_used", DateTime(timezone=True), nullable=False),
    Index("ix_keys_name", "name"),
    Index("ix_keys_created_at", "created_at"),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_hex(value: str, label: str) -> int:
    if not isinstance(value, str) or not _HEX_RE.match(value):
        raise KeyValidationError(f"{label} is not a hex string")
    return int(value, 16)


class StoredPublicKey(BaseModel):
    n: str
    g: str


class StoredKeyRecord(BaseModel):
    id: str
    name: str
    public_key: StoredPublicKey
    created_at: datetime
    last_used: datetime

    @classmethod
    def from_row(cls, row) -> "StoredKeyRecord":
        return cls(
            id=row["id"],
            name=row["name"],
            public_key=StoredPublicKey(n=row["n_hex"], g=row["g_hex"]),
            created_at=_as_utc(row["created_at"]),
            last_used=_as_utc(row["last_used"]),
        )

    def to_public_key(self) -> PublicKey:
        """n_squared is not stored; PublicKey recomputes it."""
        return PublicKey(n=int(self.public_key.n, 16), g=int(self.public_key.g, 16))


class KeyStore:
    """
    Persistent store of named public keys.

    Every operation runs in its own transaction. The schema is created on
    first use, so no explicit ``init`` call is required.
    """

    def __init__(self, engine: Optional[AsyncEngine] = None, url: Optional[str] = None):
        self._engine = engine
        self._url = url
        self._ready = False
        self._lock: Optional[anyio.Lock] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = get_engine(self._url)
        return self._engine

    async def init(self) -> None:
        """Open the store and create the keys table if it does not exist (idempotent)."""
        if self._ready:
            return
        if self._lock is None:
            self._lock = anyio.Lock()
        async with self._lock:
            if self._ready:
                return
            self._check_sqlite_location()
            try:
                async with self.engine.begin() as conn:
                    await conn.run_sync(metadata.create_all)
            except (SQLAlchemyError, OSError) as exc:
                raise StorageUnavailableError("key store unavailable") from exc
            self._ready = True

    def _check_sqlite_location(self) -> None:
        # aiosqlite leaves its worker thread behind when the file cannot be opened
        url = self.engine.url
        if url.get_backend_name() != "sqlite":
            return
        database = url.database
        if not database or database == ":memory:" or database.startswith("file:"):
            return
        parent = Path(database).resolve().parent
        if not parent.is_dir():
            raise StorageUnavailableError(f"key store directory {parent} does not exist")

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._ready = False

    async def store_key(self, name: str, public_key: PublicKey) -> str:
        await self.init()
        key_id = str(uuid.uuid4())
        now = _utcnow()
        try:
            async with self.engine.begin() as conn:
                await conn.execute(
                    keys_table.insert().values(
                        id=key_id,
                        name=name,
                        n_hex=format(public_key.n, "x"),
                        g_hex=format(public_key.g, "x"),
                        created_at=now,
                        last_used=now,
                    )
                )
        except IntegrityError as exc:
            raise StorageError(f"key id collision for {key_id}") from exc
        except (SQLAlchemyError, OSError) as exc:
            raise StorageError("store_key transaction failed") from exc
        logger.info("stored key %s (%s)", key_id, name)
        return key_id

    async def get_key(self, key_id: str) -> Optional[StoredKeyRecord]:
        """Return the record or None; refreshes ``last_used`` on a best-effort basis."""
        await self.init()
        try:
            async with self.engine.connect() as conn:
                row = (
                    await conn.execute(select(keys_table).where(keys_table.c.id == key_id))
                ).mappings().first()
        except (SQLAlchemyError, OSError) as exc:
            raise StorageError("get_key transaction failed") from exc
        if row is None:
            return None
        record = StoredKeyRecord.from_row(row)
        await self._touch(key_id)
        return record

    async def _touch(self, key_id: str) -> None:
        try:
            async with self.engine.begin() as conn:
                await conn.execute(
                    keys_table.update().where(keys_table.c.id == key_id).values(last_used=_utcnow())
                )
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("could not update last_used for %s: %s", key_id, exc)

    async def get_all_keys(self) -> list[StoredKeyRecord]:
        await self.init()
        try:
            async with self.engine.connect() as conn:
                rows = (
                    await conn.execute(select(keys_table).order_by(keys_table.c.created_at))
                ).mappings().all()
        except (SQLAlchemyError, OSError) as exc:
            raise StorageError("get_all_keys transaction failed") from exc
        return [StoredKeyRecord.from_row(r) for r in rows]

    async def find_by_name(self, name: str) -> list[StoredKeyRecord]:
        await self.init()
        try:
            async with self.engine.connect() as conn:
                rows = (
                    await conn.execute(
                        select(keys_table)
                        .where(keys_table.c.name == name)
                        .order_by(keys_table.c.created_at)
                    )
                ).mappings().all()
        except (SQLAlchemyError, OSError) as exc:
            raise StorageError("find_by_name transaction failed") from exc
        return [StoredKeyRecord.from_row(r) for r in rows]

    async def delete_key(self, key_id: str) -> None:
        """Delete a key by ID. Deleting an unknown ID is not an error."""
        await self.init()
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(keys_table.delete().where(keys_table.c.id == key_id))
        except (SQLAlchemyError, OSError) as exc:
            raise StorageError("delete_key transaction failed") from exc
        if result.rowcount:
            logger.info("deleted key %s", key_id)

    async def import_key(self, name: str, n_hex: str, g_hex: str) -> str:
        public_key = PublicKey(n=parse_hex(n_hex, "n"), g=parse_hex(g_hex, "g"))
        return await self.store_key(name, public_key)

    async def export_key(self, key_id: str) -> Optional[str]:
        """JSON export of a stored key, or None if the ID is unknown."""
        record = await self.get_key(key_id)
        if record is None:
            return None
        return json.dumps(
            {
                "name": record.name,
                "publicKey": record.public_key.model_dump(),
                "createdAt": record.created_at.isoformat(),
            },
            indent=2,
        )
