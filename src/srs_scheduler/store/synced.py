from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime
from enum import Enum
from functools import partial

import anyio

from ..errors import CorruptCacheError, SyncStateError
from ..logging import logger
from ..models import ReviewDomain, SRSRecord
from .local_cache import LocalCache, LocalRecordBackend
from .remote import FirestoreRecordStore, RemoteRecordBackend
from .review_store import ItemT, RetryPolicy, ReviewStore


class SyncState(str, Enum):
    """Which backend currently owns the learner's records."""

    anonymous = "anonymous"
    migrating = "migrating"
    authenticated = "authenticated"


class SyncedReviewStore(ReviewStore[ItemT]):
    """Review store whose backend follows the learner's sign-in state.

    状態遷移:
    - anonymous: ローカルキャッシュ（ドメインごとの名前空間）を読み書きする
    - migrating: サインイン直後、ローカルのレコードをリモートへ upsert している最中
    - authenticated: Firestore 上の (learner_id, domain, item_id) を読み書きする

    サインアウトするとメモリ上のマップを破棄し、anonymous に戻る。
    """

    def __init__(
        self,
        domain: ReviewDomain,
        catalog: Sequence[ItemT],
        cache: LocalCache,
        *,
        remote: FirestoreRecordStore | None = None,
        remote_factory: Callable[[], FirestoreRecordStore] | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if remote is None and remote_factory is None:
            raise ValueError("either remote or remote_factory is required")
        self._local = LocalRecordBackend(cache, domain.namespace)
        super().__init__(domain, catalog, self._local, retry_policy=retry_policy, clock=clock)
        self._remote = remote
        self._remote_factory = remote_factory
        self._state = SyncState.anonymous
        self._learner_id: str | None = None
        self._migration_pending = False
        self._deferred: list[SRSRecord] = []
        self._unmigrated: dict[str, SRSRecord] = {}

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def learner_id(self) -> str | None:
        return self._learner_id

    @property
    def is_syncing(self) -> bool:
        return self._state is SyncState.migrating

    @property
    def migration_pending(self) -> bool:
        return self._migration_pending

    def _remote_store(self) -> FirestoreRecordStore:
        if self._remote is None:
            if self._remote_factory is None:
                raise SyncStateError("no remote store configured")
            self._remote = self._remote_factory()
        return self._remote

    # --- transitions ---
    async def sign_in(self, learner_id: str) -> None:
        """Move an anonymous session to `learner_id`, migrating local records first."""

        learner_id = (learner_id or "").strip()
        if not learner_id:
            raise SyncStateError("learner_id must be a non-empty string")
        if self._state is SyncState.authenticated:
            if learner_id == self._learner_id:
                return
            raise SyncStateError("already signed in as another learner; sign out first")
        if self._state is SyncState.migrating:
            raise SyncStateError("sign-in already in progress")

        await self.flush()
        self._learner_id = learner_id
        self._state = SyncState.migrating
        logger.info("srs_sign_in_started", domain=self.domain.value, learner_id=learner_id)

        try:
            await self.migrate()
            self._set_backend(
                RemoteRecordBackend(self._remote_store(), learner_id, self.domain.value)
            )
            await self.load()
        except Exception as exc:
            logger.error(
                "srs_sign_in_failed",
                domain=self.domain.value,
                learner_id=learner_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            self._abort_sign_in()
            return

        self._state = SyncState.authenticated
        if self._migration_pending:
            self._merge_unmigrated()
        self._replay_deferred()
        logger.info(
            "srs_sign_in_completed",
            domain=self.domain.value,
            learner_id=learner_id,
            migration_pending=self._migration_pending,
        )

    async def migrate(self) -> int:
        """Upsert locally cached records to the remote store, then clear the local cache.

        何度実行しても結果は同じ（キー単位の upsert で後勝ち）。途中で失敗した場合は
        ローカルキャッシュを残したまま migration_pending を立て、件数を返す。
        """

        learner_id = self._learner_id
        if learner_id is None:
            raise SyncStateError("migration requires a signed-in learner")

        local_records: dict[str, SRSRecord] = {}
        migrated = 0
        skipped = 0
        try:
            try:
                local_records = self._local.read_records()
            except CorruptCacheError as exc:
                logger.warning(
                    "srs_local_cache_corrupt",
                    namespace=self._local.namespace,
                    error=str(exc),
                )
                await self._local.clear()
            if not local_records:
                self._migration_pending = False
                self._unmigrated = {}
                return 0

            remote = self._remote_store()
            for record in local_records.values():
                if self._reviewed_since_sign_in(record):
                    skipped += 1
                    continue
                await anyio.to_thread.run_sync(
                    partial(remote.upsert, learner_id, self.domain.value, record)
                )
                migrated += 1
            await self._local.clear()
        except Exception as exc:
            self._migration_pending = True
            self._unmigrated = dict(local_records)
            logger.warning(
                "srs_migration_failed",
                domain=self.domain.value,
                learner_id=learner_id,
                migrated=migrated,
                total=len(local_records),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return migrated

        self._migration_pending = False
        self._unmigrated = {}
        logger.info(
            "srs_migration_completed",
            domain=self.domain.value,
            learner_id=learner_id,
            migrated=migrated,
            skipped=skipped,
        )
        if self._state is SyncState.authenticated:
            # 再試行で移行したレコードをメモリ上のマップへ取り込む。
            await self.flush()
            await self.load()
        return migrated

    async def sign_out(self) -> None:
        """Drop the learner's in-memory records and return to an anonymous session."""

        if self._state is SyncState.anonymous:
            return
        if self._state is SyncState.migrating:
            raise SyncStateError("cannot sign out while migration is in progress")

        await self.flush()
        logger.info("srs_sign_out", domain=self.domain.value, learner_id=self._learner_id)
        if self._migration_pending:
            # 未移行のレコードは次にサインインする別の学習者へ移行させない。
            await self._drop_unmigrated()
        self._learner_id = None
        self._migration_pending = False
        self._records = {}
        self._set_backend(self._local)
        self._state = SyncState.anonymous
        await self.load()

    async def reset_all(self) -> None:
        await super().reset_all()
        if self._state is SyncState.authenticated:
            await self._local.clear()

    # --- write-behind ---
    def _schedule_write(self, record: SRSRecord) -> None:
        if self._state is SyncState.migrating:
            # 移行中の更新は移行の成否が決まってから書き込む。
            self._deferred.append(record)
            return
        super()._schedule_write(record)

    # --- migration bookkeeping ---
    def _reviewed_since_sign_in(self, record: SRSRecord) -> bool:
        """True when the in-memory copy of `record` has been reviewed after it was merged."""

        if self._state is not SyncState.authenticated:
            return False
        current = self._records.get(record.item_id)
        return current is not None and current.last_review is not None and current != record

    def _merge_unmigrated(self) -> None:
        """未移行のローカルレコードをメモリへ取り込み、以降の復習がその上に積まれるようにする。"""

        for item_id, record in self._unmigrated.items():
            current = self._records.get(item_id)
            if current is None or _reviewed_before(current, record):
                self._records[item_id] = record

    async def _drop_unmigrated(self) -> None:
        try:
            await self._local.clear()
        except Exception as exc:
            logger.error(
                "srs_local_clear_failed",
                namespace=self._local.namespace,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return
        logger.warning(
            "srs_unmigrated_records_dropped",
            domain=self.domain.value,
            learner_id=self._learner_id,
            records=len(self._unmigrated),
        )
        self._unmigrated = {}

    def _abort_sign_in(self) -> None:
        self._learner_id = None
        self._migration_pending = False
        self._unmigrated = {}
        self._set_backend(self._local)
        self._state = SyncState.anonymous
        self._replay_deferred()

    def _replay_deferred(self) -> None:
        deferred, self._deferred = self._deferred, []
        for record in deferred:
            self._records[record.item_id] = record
            self._schedule_write(record)


def _reviewed_before(current: SRSRecord, candidate: SRSRecord) -> bool:
    if current.last_review is None:
        return True
    return candidate.last_review is not None and current.last_review < candidate.last_review
