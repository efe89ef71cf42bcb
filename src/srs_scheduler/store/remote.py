from __future__ import annotations

import os
from collections.abc import Mapping
from functools import partial
from urllib.parse import quote

import anyio
from google.cloud import firestore
from pydantic import ValidationError

from ..config import settings
from ..logging import logger
from ..models import SRSRecord
from .common import record_from_document, record_to_document

_DEFAULT_EMULATOR_HOST = "127.0.0.1:8080"


def _normalize_emulator_host(raw_host: str | None) -> str | None:
    """FIRESTORE_EMULATOR_HOST で受け取ったホスト文字列を正規化する。

    スキームなしの `localhost:8080` でもクライアントオプションに渡せるよう、
    http:// を自動付与する。空文字や None は未設定として扱う。
    """

    host = (raw_host or "").strip()
    if not host:
        return None
    if host.startswith(("http://", "https://")):
        return host
    return f"http://{host}"


def build_firestore_client() -> firestore.Client:
    """Firestore クライアントを構築する。

    - FIRESTORE_EMULATOR_HOST が指定されていればエミュレータ向けのエンドポイントを使用。
    - 開発モードではホスト未指定でも 127.0.0.1:8080 のエミュレータを優先。
    - それ以外は Cloud Firestore へ接続する。
    """

    environment_name = (settings.environment or "").strip().lower()
    emulator_host = _normalize_emulator_host(
        settings.firestore_emulator_host
        or os.environ.get("FIRESTORE_EMULATOR_HOST")
        or (_DEFAULT_EMULATOR_HOST if environment_name != "production" else None)
    )
    project_id = settings.firestore_project_id or settings.gcp_project_id
    if emulator_host:
        # google-cloud-firestore は FIRESTORE_EMULATOR_HOST を検知して匿名認証へ切り替える。
        os.environ.setdefault(
            "FIRESTORE_EMULATOR_HOST",
            emulator_host.replace("http://", "").replace("https://", ""),
        )
        return firestore.Client(project=project_id, client_options={"api_endpoint": emulator_host})
    return firestore.Client(project=project_id)


def _document_id(learner_id: str, domain: str, item_id: str) -> str:
    # Firestore のドキュメント ID に "/" は使えないため各要素を URL エンコードする。
    return ":".join(quote(part, safe="") for part in (learner_id, domain, item_id))


class FirestoreRecordStore:
    """Firestore 上の学習者ごとの SRS レコードを管理する。

    ドキュメントは (learner_id, domain, item_id) ごとに 1 件。書き込みは常に
    全フィールドの set（upsert）で、同一キーへの再書き込みは後勝ちになる。
    """

    _DELETE_BATCH_SIZE = 450

    def __init__(self, client: firestore.Client, collection: str | None = None):
        self._client = client
        self._records = client.collection(collection or settings.remote_collection)

    def upsert(self, learner_id: str, domain: str, record: SRSRecord) -> None:
        doc_ref = self._records.document(_document_id(learner_id, domain, record.item_id))
        doc_ref.set(record_to_document(learner_id, domain, record))

    def fetch_all(self, learner_id: str, domain: str) -> dict[str, SRSRecord]:
        query = self._records.where("learner_id", "==", learner_id).where("domain", "==", domain)
        records: dict[str, SRSRecord] = {}
        for snapshot in query.stream():
            data = snapshot.to_dict() or {}
            try:
                record = record_from_document(data)
            except ValidationError:
                logger.warning(
                    "srs_remote_record_skipped",
                    learner_id=learner_id,
                    domain=domain,
                    document_id=snapshot.id,
                )
                continue
            if not record.item_id:
                continue
            records[record.item_id] = record
        return records

    def delete_all(self, learner_id: str, domain: str) -> int:
        """対象学習者・ドメインのレコードをページングしながら削除する。

        Firestore のバッチ上限（500件）に合わせて limit 付きクエリを繰り返す。
        削除件数を返す。
        """

        batch_size = max(1, int(self._DELETE_BATCH_SIZE))
        base_query = (
            self._records.where("learner_id", "==", learner_id)
            .where("domain", "==", domain)
            .order_by("__name__")
        )
        query = base_query.limit(batch_size)
        deleted = 0

        while True:
            snapshots = list(query.stream())
            if not snapshots:
                break

            batch = self._client.batch()
            for snapshot in snapshots:
                batch.delete(snapshot.reference)
            batch.commit()
            deleted += len(snapshots)

            if len(snapshots) < batch_size:
                break
            query = base_query.start_after(snapshots[-1]).limit(batch_size)
        return deleted


class RemoteRecordBackend:
    """Async record backend for one authenticated learner and domain.

    Firestore クライアントはブロッキング API のため、呼び出しは
    anyio.to_thread.run_sync でワーカースレッドへオフロードする。
    """

    def __init__(self, store: FirestoreRecordStore, learner_id: str, domain: str) -> None:
        self._store = store
        self.learner_id = learner_id
        self.domain = domain

    async def load(self) -> dict[str, SRSRecord]:
        return await anyio.to_thread.run_sync(
            partial(self._store.fetch_all, self.learner_id, self.domain)
        )

    async def write(self, record: SRSRecord, records: Mapping[str, SRSRecord]) -> None:
        await anyio.to_thread.run_sync(
            partial(self._store.upsert, self.learner_id, self.domain, record)
        )

    async def clear(self) -> None:
        await anyio.to_thread.run_sync(
            partial(self._store.delete_all, self.learner_id, self.domain)
        )
