from __future__ import annotations

import sqlite3
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from threading import Lock

from ..errors import CorruptCacheError
from ..logging import logger
from ..models import SRSRecord
from .common import decode_records, encode_records, now_iso

_MEMORY_PATH = ":memory:"


class LocalCache:
    """SQLite-backed key-value cache for anonymous learners.

    - 1 名前空間 = 1 行。値はレコード配列を丸ごと JSON 化したもの
    - 読み込みも保存も名前空間単位で丸ごと行う
    - `:memory:` の場合は単一接続を保持し、プロセス内でのみ有効
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._lock = Lock()
        self._shared_conn: sqlite3.Connection | None = None
        if db_path == _MEMORY_PATH:
            self._shared_conn = self._open()
        else:
            self._ensure_dirs()
        self._init_db()

    # --- low-level helpers ---
    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=10.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            if self._shared_conn is not None:
                yield self._shared_conn
                return
            conn = self._open()
            try:
                yield conn
            finally:
                conn.close()

    def _ensure_dirs(self) -> None:
        p = Path(self.db_path)
        if p.parent and not p.parent.exists():
            p.parent.mkdir(parents=True, exist_ok=True)

    def _init_db(self) -> None:
        with self._connect() as conn:
            with conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS kv (
                        namespace TEXT PRIMARY KEY,
                        payload TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    );
                    """
                )

    # --- public API ---
    def get(self, namespace: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT payload FROM kv WHERE namespace = ?;",
                (namespace,),
            ).fetchone()
        if row is None:
            return None
        return str(row["payload"])

    def set(self, namespace: str, payload: str) -> None:
        with self._connect() as conn:
            with conn:
                conn.execute(
                    """
                    INSERT INTO kv (namespace, payload, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(namespace) DO UPDATE SET
                        payload = excluded.payload,
                        updated_at = excluded.updated_at;
                    """,
                    (namespace, payload, now_iso()),
                )

    def delete(self, namespace: str) -> None:
        with self._connect() as conn:
            with conn:
                conn.execute("DELETE FROM kv WHERE namespace = ?;", (namespace,))

    def close(self) -> None:
        with self._lock:
            if self._shared_conn is not None:
                self._shared_conn.close()
                self._shared_conn = None


class LocalRecordBackend:
    """Record backend that keeps a whole domain collection in one cache entry."""

    def __init__(self, cache: LocalCache, namespace: str) -> None:
        self._cache = cache
        self.namespace = namespace

    def read_records(self) -> dict[str, SRSRecord]:
        """キャッシュ内容を同期的に読み込む。壊れたペイロードは CorruptCacheError。"""

        return decode_records(self._cache.get(self.namespace))

    async def load(self) -> dict[str, SRSRecord]:
        try:
            return self.read_records()
        except CorruptCacheError as exc:
            logger.warning(
                "srs_local_cache_corrupt",
                namespace=self.namespace,
                error=str(exc),
            )
            return {}

    async def write(self, record: SRSRecord, records: Mapping[str, SRSRecord]) -> None:
        self._cache.set(self.namespace, encode_records(records.values()))

    async def clear(self) -> None:
        self._cache.delete(self.namespace)
