##########################################################################################
#
# Script name: storage.py
#
# Description: execute/batch storage contract, its aiosqlite implementation, and schema.
#
##########################################################################################

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Sequence

import aiosqlite


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)

Statement = tuple[str, Sequence[Any]]

SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS discovered_domains (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        domain TEXT UNIQUE NOT NULL,
        feed_url TEXT,
        feed_title TEXT,
        feed_description TEXT,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'suggested', 'subscribed', 'dismissed', 'no_feed')),
        current_score INTEGER NOT NULL DEFAULT 0,
        first_seen TEXT NOT NULL,
        last_seen TEXT NOT NULL,
        categories TEXT NOT NULL DEFAULT ''
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS domain_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        domain_id INTEGER NOT NULL REFERENCES discovered_domains(id),
        source TEXT NOT NULL,
        story_url TEXT NOT NULL,
        story_title TEXT NOT NULL,
        points INTEGER NOT NULL DEFAULT 0,
        position INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS discovery_runs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        started_at TEXT NOT NULL,
        completed_at TEXT,
        stories_collected INTEGER NOT NULL DEFAULT 0,
        new_domains_found INTEGER NOT NULL DEFAULT 0,
        feeds_discovered INTEGER NOT NULL DEFAULT 0,
        new_suggestions INTEGER NOT NULL DEFAULT 0,
        errors TEXT
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_domains_status ON discovered_domains(status)',
    'CREATE INDEX IF NOT EXISTS idx_domains_score ON discovered_domains(current_score DESC)',
    'CREATE INDEX IF NOT EXISTS idx_events_domain ON domain_events(domain_id)',
]


# ****************************************************************************************
# Classes
# ****************************************************************************************


@dataclass
class QueryResult:
    rows: list[dict] = field(default_factory=list)
    rows_affected: int = 0
    last_insert_id: int | None = None

    def first(self) -> dict | None:
        return self.rows[0] if self.rows else None


class Storage(ABC):
    @abstractmethod
    async def execute(self, sql: str, args: Sequence[Any] = ()) -> QueryResult: ...

    @abstractmethod
    async def batch(self, statements: list[Statement]) -> None: ...


class SqliteStorage(Storage):
    '''
    Storage backed by a single aiosqlite connection.

    Open it with ``await storage.open()`` or ``async with SqliteStorage(path)``.
    ``batch`` applies every statement in one transaction and rolls back on the
    first failure.
    '''

    def __init__(self, path: str):
        self.path = path
        self._conn: aiosqlite.Connection | None = None

    async def open(self) -> SqliteStorage:
        if self._conn is None:
            self._conn = await aiosqlite.connect(self.path)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute('PRAGMA foreign_keys = ON')
        return self

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> SqliteStorage:
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError(f'Storage at {self.path} is not open')
        return self._conn

    async def execute(self, sql: str, args: Sequence[Any] = ()) -> QueryResult:
        cursor = await self.conn.execute(sql, tuple(args))
        try:
            rows = [dict(row) for row in await cursor.fetchall()]
            result = QueryResult(rows=rows, rows_affected=cursor.rowcount, last_insert_id=cursor.lastrowid)
        finally:
            await cursor.close()
        await self.conn.commit()
        return result

    async def batch(self, statements: list[Statement]) -> None:
        if not statements:
            return
        try:
            for sql, args in statements:
                await self.conn.execute(sql, tuple(args))
        except Exception:
            await self.conn.rollback()
            raise
        await self.conn.commit()


# ****************************************************************************************
# Functions
# ****************************************************************************************


async def init_schema(storage: Storage) -> None:
    await storage.batch([(statement, ()) for statement in SCHEMA])
