from __future__ import annotations

from collections.abc import Sequence
from functools import lru_cache

from ..config import settings
from ..models import ReviewDomain
from .local_cache import LocalCache, LocalRecordBackend
from .remote import FirestoreRecordStore, RemoteRecordBackend, build_firestore_client
from .review_store import ItemT, RecordBackend, RetryPolicy, ReviewStore
from .synced import SyncedReviewStore, SyncState


@lru_cache(maxsize=1)
def get_local_cache() -> LocalCache:
    """プロセス全体で共有するローカルキャッシュを返す。"""

    return LocalCache(settings.local_cache_path)


def _create_remote_store() -> FirestoreRecordStore:
    """Firestore ベースのリモートストアを初期化する。"""

    return FirestoreRecordStore(client=build_firestore_client())


def create_review_store(
    domain: ReviewDomain,
    catalog: Sequence[ItemT],
    *,
    cache: LocalCache | None = None,
    retry_policy: RetryPolicy | None = None,
) -> ReviewStore[ItemT]:
    """Local-only store for one domain (anonymous learner, no sync)."""

    backend = LocalRecordBackend(cache or get_local_cache(), domain.namespace)
    return ReviewStore(domain, catalog, backend, retry_policy=retry_policy)


def create_synced_store(
    domain: ReviewDomain,
    catalog: Sequence[ItemT],
    *,
    cache: LocalCache | None = None,
    remote: FirestoreRecordStore | None = None,
    retry_policy: RetryPolicy | None = None,
) -> SyncedReviewStore[ItemT]:
    """Store that starts anonymous and moves to Firestore on sign-in.

    remote を省略した場合、Firestore クライアントは最初のサインイン時に生成する。
    """

    return SyncedReviewStore(
        domain,
        catalog,
        cache or get_local_cache(),
        remote=remote,
        remote_factory=None if remote is not None else _create_remote_store,
        retry_policy=retry_policy,
    )


__all__ = [
    "FirestoreRecordStore",
    "LocalCache",
    "LocalRecordBackend",
    "RecordBackend",
    "RemoteRecordBackend",
    "RetryPolicy",
    "ReviewStore",
    "SyncState",
    "SyncedReviewStore",
    "build_firestore_client",
    "create_review_store",
    "create_synced_store",
    "get_local_cache",
]
