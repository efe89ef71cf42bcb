from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Generic, Protocol, TypeVar

import anyio

from ..config import settings
from ..logging import logger
from ..models import Difficulty, ReviewableItem, ReviewDomain, ReviewStats, SRSRecord
from ..srs import (
    create_initial,
    difficulty_for,
    is_due,
    next_state,
    priority,
    quality_from_outcome,
    summarize,
)

ItemT = TypeVar("ItemT", bound=ReviewableItem)


class RecordBackend(Protocol):
    """Durable storage behind a review store."""

    async def load(self) -> dict[str, SRSRecord]: ...

    async def write(self, record: SRSRecord, records: Mapping[str, SRSRecord]) -> None: ...

    async def clear(self) -> None: ...


@dataclass(frozen=True)
class RetryPolicy:
    """How often a failed durable write is retried before it is dropped.

    attempts=0 は再試行なし。待機時間は backoff_ms × 試行回数で線形に伸ばす。
    """

    attempts: int = 0
    backoff_ms: int = 100

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            attempts=settings.write_retry_attempts,
            backoff_ms=settings.write_retry_backoff_ms,
        )

    @property
    def max_attempts(self) -> int:
        return 1 + max(0, self.attempts)

    def delay_for(self, attempt: int) -> float:
        return max(0, self.backoff_ms) / 1000.0 * attempt


class ReviewStore(Generic[ItemT]):
    """In-memory map of item -> SRSRecord for one learner and one domain.

    - 読み取りはすべてメモリ上のマップに対して同期的に行う
    - 更新はマップへ即時反映し、永続化はバックグラウンドタスクで後追いする
    - 永続化タスクは投入順にバックエンドへ適用される
    - 永続化の失敗はログに残すのみで、呼び出し側へは送出しない
    """

    def __init__(
        self,
        domain: ReviewDomain,
        catalog: Sequence[ItemT],
        backend: RecordBackend,
        *,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.domain = domain
        self._catalog: list[ItemT] = list(catalog)
        self._backend = backend
        self._retry_policy = retry_policy or RetryPolicy.from_settings()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._records: dict[str, SRSRecord] = {}
        self._loaded = False
        self._pending: set[asyncio.Task[None]] = set()
        self._write_lock: asyncio.Lock | None = None

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def pending_writes(self) -> int:
        return sum(1 for task in self._pending if not task.done())

    @property
    def backend(self) -> RecordBackend:
        return self._backend

    @property
    def catalog(self) -> list[ItemT]:
        return list(self._catalog)

    def snapshot(self) -> dict[str, SRSRecord]:
        """Copy of the in-memory map."""

        return dict(self._records)

    # --- loading ---
    async def load(self) -> None:
        """Hydrate the map from the backend and fill in records for unseen catalog items."""

        try:
            records = await self._backend.load()
        except Exception as exc:
            logger.warning(
                "srs_load_failed",
                domain=self.domain.value,
                backend=type(self._backend).__name__,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            records = {}
        self._records = dict(records)
        self._materialize_catalog()
        self._loaded = True
        logger.info(
            "srs_store_loaded",
            domain=self.domain.value,
            backend=type(self._backend).__name__,
            records=len(self._records),
        )

    def _materialize_catalog(self) -> None:
        now = self._clock()
        for item in self._catalog:
            if item.id not in self._records:
                self._records[item.id] = create_initial(item.id, now)

    # --- reads ---
    def get_record(self, item_id: str) -> SRSRecord:
        record = self._records.get(item_id)
        if record is not None:
            return record
        return create_initial(item_id, self._clock())

    def _items(self, category: str | None) -> list[ItemT]:
        if not category:
            return list(self._catalog)
        return [item for item in self._catalog if item.category == category]

    def select_next(self, count: int, category: str | None = None) -> list[ItemT]:
        """Return up to `count` items to review next.

        期限到来済みのアイテムを必ず先に並べ、その中は priority の降順
        （同点は入力順）、未到来のアイテムは next_review の昇順で並べる。
        """

        if count <= 0:
            return []
        now = self._clock()
        due: list[tuple[ItemT, SRSRecord]] = []
        upcoming: list[tuple[ItemT, SRSRecord]] = []
        for item in self._items(category):
            record = self.get_record(item.id)
            if is_due(record, now):
                due.append((item, record))
            else:
                upcoming.append((item, record))
        due.sort(key=lambda pair: priority(pair[1], now), reverse=True)
        upcoming.sort(key=lambda pair: pair[1].next_review)
        return [item for item, _ in (due + upcoming)[:count]]

    def select_due(self, category: str | None = None) -> list[ItemT]:
        now = self._clock()
        return [item for item in self._items(category) if is_due(self.get_record(item.id), now)]

    def stats(self, category: str | None = None) -> ReviewStats:
        return summarize(
            (self.get_record(item.id) for item in self._items(category)),
            self._clock(),
        )

    def difficulty(self, item_id: str) -> Difficulty:
        return difficulty_for(self.get_record(item_id))

    # --- writes ---
    async def record_outcome(
        self,
        item_id: str,
        is_correct: bool,
        response_time_ms: float | None = None,
    ) -> SRSRecord:
        """正誤（と回答時間）から quality を求めて復習結果を記録する。"""

        return await self.record_quality(item_id, quality_from_outcome(is_correct, response_time_ms))

    async def record_quality(self, item_id: str, quality: float) -> SRSRecord:
        """Apply an explicit 0..5 grade; the durable write happens in the background."""

        updated = next_state(self.get_record(item_id), quality, self._clock())
        self._records[item_id] = updated
        logger.info(
            "srs_review_recorded",
            domain=self.domain.value,
            item_id=item_id,
            quality=quality,
            interval=updated.interval,
            repetitions=updated.repetitions,
        )
        self._schedule_write(updated)
        return updated

    async def reset_all(self) -> None:
        """Forget every record of this learner in this domain, in memory and in the backend."""

        await self.flush()
        self._records = {}
        try:
            await self._backend.clear()
        except Exception as exc:
            logger.warning(
                "srs_reset_failed",
                domain=self.domain.value,
                backend=type(self._backend).__name__,
                error_type=type(exc).__name__,
                error=str(exc),
            )
        self._materialize_catalog()
        logger.info("srs_progress_reset", domain=self.domain.value)

    async def flush(self) -> None:
        """Wait until every scheduled durable write has finished."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # --- write-behind ---
    def _set_backend(self, backend: RecordBackend) -> None:
        self._backend = backend

    def _schedule_write(self, record: SRSRecord) -> None:
        # バックエンドとスナップショットは投入時点のものを固定する。
        task = asyncio.get_running_loop().create_task(
            self._write(self._backend, record, dict(self._records))
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _lock(self) -> asyncio.Lock:
        if self._write_lock is None:
            self._write_lock = asyncio.Lock()
        return self._write_lock

    async def _write(
        self,
        backend: RecordBackend,
        record: SRSRecord,
        records: Mapping[str, SRSRecord],
    ) -> None:
        max_attempts = self._retry_policy.max_attempts
        last_exc: Exception | None = None
        try:
            async with self._lock():
                for attempt in range(1, max_attempts + 1):
                    try:
                        await backend.write(record, records)
                        return
                    except Exception as exc:
                        last_exc = exc
                        logger.warning(
                            "srs_write_error",
                            domain=self.domain.value,
                            item_id=record.item_id,
                            attempt=attempt,
                            retries=self._retry_policy.attempts,
                            error_type=type(exc).__name__,
                            error=str(exc),
                        )
                        if attempt >= max_attempts:
                            break
                        await anyio.sleep(self._retry_policy.delay_for(attempt))
        except Exception as exc:
            last_exc = exc
        logger.error(
            "srs_write_failed",
            domain=self.domain.value,
            item_id=record.item_id,
            backend=type(backend).__name__,
            error_type=type(last_exc).__name__ if last_exc else None,
            error=str(last_exc) if last_exc else None,
        )
