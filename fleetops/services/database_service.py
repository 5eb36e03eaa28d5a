"""
SQLite-backed document store.
Persists every collection as JSON documents in a single table, with the
tenant id lifted into its own indexed column.
"""

import asyncio
import json
import logging
import sqlite3
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import aiosqlite
import pytz

from fleetops.core.config import ApplicationConfig
from fleetops.data.errors import TransientStoreError
from fleetops.data.repositories.document_store import DocumentStore

logger = logging.getLogger(__name__)

DATE_TAG = "$date"


def _encode_default(value):
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = pytz.utc.localize(value)
        return {DATE_TAG: value.astimezone(pytz.utc).isoformat()}
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _decode_hook(obj: dict):
    if len(obj) == 1 and DATE_TAG in obj:
        return datetime.fromisoformat(obj[DATE_TAG])
    return obj


def encode_document(data: dict) -> str:
    return json.dumps(data, default=_encode_default)


def decode_document(text: str) -> dict:
    return json.loads(text, object_hook=_decode_hook)


class SqliteDocumentStore(DocumentStore):
    """Handle all document reads and writes with SQLite"""

    def __init__(self, config: ApplicationConfig, clock=None):
        super().__init__(clock)
        self.config = config
        self.db_path = config.db_path
        self._conn: Optional[aiosqlite.Connection] = None
        self._conn_lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self):
        """Initialize database schema and the shared connection"""
        if self._initialized:
            return

        # Ensure the directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = await aiosqlite.connect(str(self.db_path))
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA synchronous=NORMAL")
            await self._conn.execute("PRAGMA busy_timeout=500")

            await self._conn.execute('''
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    company_id TEXT,
                    data TEXT NOT NULL,
                    PRIMARY KEY (collection, id)
                )
            ''')

            await self._conn.execute('''
                CREATE INDEX IF NOT EXISTS idx_documents_collection_company
                ON documents(collection, company_id)
            ''')
            await self._conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize database at {self.db_path}: {e}")
            raise TransientStoreError(str(e)) from e

        self._initialized = True
        logger.info(f"Document store initialized at {self.db_path} (WAL mode enabled)")

    async def start(self):
        """Start method for application lifecycle (alias for initialize)"""
        await self.initialize()

    async def stop(self):
        """Stop method for application lifecycle (alias for close)"""
        await self.close()

    async def close(self):
        await super().close()
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
        self._initialized = False
        logger.info("Document store closed")

    async def _connection(self) -> aiosqlite.Connection:
        if not self._initialized:
            await self.initialize()
        return self._conn

    async def _load_collection(self, collection: str, company_id: Optional[str] = None) -> List[Tuple[str, dict]]:
        conn = await self._connection()
        try:
            if company_id is not None:
                cursor = await conn.execute(
                    "SELECT id, data FROM documents WHERE collection = ? AND company_id = ?",
                    (collection, company_id)
                )
            else:
                cursor = await conn.execute(
                    "SELECT id, data FROM documents WHERE collection = ?", (collection,)
                )
            rows = await cursor.fetchall()
            await cursor.close()
        except sqlite3.Error as e:
            logger.error(f"Query on {collection} failed: {e}")
            raise TransientStoreError(str(e)) from e
        return [(doc_id, decode_document(data)) for doc_id, data in rows]

    async def _load_one(self, collection: str, doc_id: str) -> Optional[dict]:
        conn = await self._connection()
        try:
            cursor = await conn.execute(
                "SELECT data FROM documents WHERE collection = ? AND id = ?", (collection, doc_id)
            )
            row = await cursor.fetchone()
            await cursor.close()
        except sqlite3.Error as e:
            logger.error(f"Lookup of {collection}/{doc_id} failed: {e}")
            raise TransientStoreError(str(e)) from e
        return decode_document(row[0]) if row else None

    async def _insert(self, collection: str, doc_id: str, data: dict) -> None:
        conn = await self._connection()
        async with self._conn_lock:
            try:
                await conn.execute(
                    "INSERT INTO documents (collection, id, company_id, data) VALUES (?, ?, ?, ?)",
                    (collection, doc_id, data.get("companyId"), encode_document(data))
                )
                await conn.commit()
            except sqlite3.Error as e:
                logger.error(f"Insert into {collection} failed: {e}")
                raise TransientStoreError(str(e)) from e

    async def _patch(self, collection: str, doc_id: str, fields: dict) -> bool:
        conn = await self._connection()
        async with self._conn_lock:
            try:
                cursor = await conn.execute(
                    "SELECT data FROM documents WHERE collection = ? AND id = ?", (collection, doc_id)
                )
                row = await cursor.fetchone()
                await cursor.close()
                if row is None:
                    return False
                data = decode_document(row[0])
                data.update(fields)
                await conn.execute(
                    "UPDATE documents SET data = ?, company_id = ? WHERE collection = ? AND id = ?",
                    (encode_document(data), data.get("companyId"), collection, doc_id)
                )
                await conn.commit()
            except sqlite3.Error as e:
                logger.error(f"Update of {collection}/{doc_id} failed: {e}")
                raise TransientStoreError(str(e)) from e
        return True

    async def _remove(self, collection: str, doc_id: str) -> bool:
        conn = await self._connection()
        async with self._conn_lock:
            try:
                cursor = await conn.execute(
                    "DELETE FROM documents WHERE collection = ? AND id = ?", (collection, doc_id)
                )
                deleted = cursor.rowcount
                await cursor.close()
                await conn.commit()
            except sqlite3.Error as e:
                logger.error(f"Delete of {collection}/{doc_id} failed: {e}")
                raise TransientStoreError(str(e)) from e
        return deleted > 0

    async def put(self, collection: str, doc_id: str, data: dict):
        """Seed or replace a document under a known id"""
        conn = await self._connection()
        async with self._conn_lock:
            try:
                await conn.execute(
                    "INSERT OR REPLACE INTO documents (collection, id, company_id, data) VALUES (?, ?, ?, ?)",
                    (collection, doc_id, data.get("companyId"), encode_document(data))
                )
                await conn.commit()
            except sqlite3.Error as e:
                raise TransientStoreError(str(e)) from e
        await self._notify(collection)

    async def get_statistics(self) -> Dict[str, int]:
        """Document counts per collection"""
        conn = await self._connection()
        try:
            cursor = await conn.execute("SELECT collection, COUNT(*) FROM documents GROUP BY collection")
            rows = await cursor.fetchall()
            await cursor.close()
        except sqlite3.Error as e:
            raise TransientStoreError(str(e)) from e
        return {collection: count for collection, count in rows}
