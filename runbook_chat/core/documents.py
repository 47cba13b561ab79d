"""
JSON document store.

Each table is a single JSON array stored at ``<data_dir>/<table>.json`` and is
read and written wholesale. Writes land in a temporary sibling file that is
renamed over the target, so readers never observe a half-written table.

``transaction()`` serializes read-modify-write cycles per table with
``asyncio.Lock`` and restores already-written tables if a later write in the
same transaction fails.
"""

from __future__ import annotations

import asyncio
import copy
import json
import os
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import aiofiles
import aiofiles.os
import structlog

from runbook_chat.core.errors import PersistenceFailure

log = structlog.get_logger()

Row = dict[str, Any]


class DocumentStore:
    """Reads and writes whole JSON collections under one directory."""

    def __init__(self, data_dir: str):
        self._data_dir = data_dir
        self._locks: dict[str, asyncio.Lock] = {}
        self._initialized = False

    @property
    def data_dir(self) -> str:
        return self._data_dir

    def path_for(self, table: str) -> str:
        return os.path.join(self._data_dir, f"{table}.json")

    def _lock_for(self, table: str) -> asyncio.Lock:
        lock = self._locks.get(table)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[table] = lock
        return lock

    async def _ensure_dir(self) -> None:
        if not self._initialized:
            await aiofiles.os.makedirs(self._data_dir, exist_ok=True)
            self._initialized = True

    async def read(self, table: str) -> list[Row]:
        """Return every row of ``table``; a missing file is an empty table."""
        path = self.path_for(table)
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                content = await f.read()
        except FileNotFoundError:
            return []
        except OSError as exc:
            log.error("store.read_failed", table=table, error=str(exc))
            raise PersistenceFailure(f"Failed to read {table}") from exc

        if not content.strip():
            return []
        try:
            rows = json.loads(content)
        except ValueError as exc:
            log.error("store.corrupt_table", table=table, error=str(exc))
            raise PersistenceFailure(f"Table {table} is not valid JSON") from exc
        if not isinstance(rows, list):
            log.error("store.corrupt_table", table=table, error="not a JSON array")
            raise PersistenceFailure(f"Table {table} is not a JSON array")
        return rows

    async def write(self, table: str, rows: list[Row]) -> None:
        """Replace the contents of ``table``."""
        async with self._lock_for(table):
            await self._write_unlocked(table, rows)

    async def _write_unlocked(self, table: str, rows: list[Row]) -> None:
        await self._ensure_dir()
        path = self.path_for(table)
        tmp_path = f"{path}.{uuid.uuid4().hex}.tmp"
        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(rows, ensure_ascii=False, indent=2))
            await aiofiles.os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as exc:
            log.error("store.write_failed", table=table, error=str(exc))
            try:
                await aiofiles.os.remove(tmp_path)
            except OSError:
                pass
            raise PersistenceFailure(f"Failed to write {table}") from exc

    @asynccontextmanager
    async def transaction(self, *tables: str) -> AsyncIterator[dict[str, list[Row]]]:
        """
        Lock ``tables``, yield their rows, and write them back on clean exit.

        The yielded lists may be mutated in place. If the body raises nothing
        is written. If writing one table fails, tables already written in this
        transaction are restored before ``PersistenceFailure`` propagates.
        """
        names = sorted(set(tables))
        locks = [self._lock_for(name) for name in names]
        for lock in locks:
            await lock.acquire()
        try:
            originals = {name: await self.read(name) for name in names}
            working = {name: copy.deepcopy(rows) for name, rows in originals.items()}
            yield working

            written: list[str] = []
            try:
                for name in names:
                    if working[name] == originals[name]:
                        continue
                    await self._write_unlocked(name, working[name])
                    written.append(name)
            except PersistenceFailure:
                for name in written:
                    try:
                        await self._write_unlocked(name, originals[name])
                    except PersistenceFailure:
                        log.error("store.rollback_failed", table=name)
                raise
        finally:
            for lock in reversed(locks):
                lock.release()
