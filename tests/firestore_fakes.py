"""Firestore をテストで再現するための簡易フェイク実装。"""

from __future__ import annotations

from typing import Any

from google.cloud import firestore


class FakeFirestoreError(RuntimeError):
    """Injected failure standing in for a network/store error."""


class FakeDocumentSnapshot:
    def __init__(self, collection: str, doc_id: str, data: dict[str, Any] | None, client: "FakeFirestoreClient") -> None:
        self._collection = collection
        self.id = doc_id
        self._data = data
        self._client = client

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> dict[str, Any] | None:
        return None if self._data is None else dict(self._data)

    @property
    def reference(self) -> "FakeDocumentReference":
        return FakeDocumentReference(self._client, self._collection, self.id)


class FakeDocumentReference:
    def __init__(self, client: "FakeFirestoreClient", collection: str, doc_id: str) -> None:
        self._client = client
        self._collection = collection
        self.id = doc_id

    def set(self, data: dict[str, Any], merge: bool = False) -> None:
        self._client._before_write(self._collection, self.id)
        bucket = self._client._data.setdefault(self._collection, {})
        if merge and self.id in bucket:
            bucket[self.id].update(data)
        else:
            bucket[self.id] = dict(data)

    def get(self) -> FakeDocumentSnapshot:
        bucket = self._client._data.setdefault(self._collection, {})
        payload = dict(bucket[self.id]) if self.id in bucket else None
        return FakeDocumentSnapshot(self._collection, self.id, payload, self._client)

    def delete(self) -> None:
        bucket = self._client._data.setdefault(self._collection, {})
        bucket.pop(self.id, None)


class FakeCollectionReference:
    def __init__(self, client: "FakeFirestoreClient", name: str) -> None:
        self._client = client
        self._name = name

    def document(self, doc_id: str) -> FakeDocumentReference:
        return FakeDocumentReference(self._client, self._name, doc_id)

    def _all_snapshots(self) -> list[FakeDocumentSnapshot]:
        bucket = self._client._data.setdefault(self._name, {})
        return [
            FakeDocumentSnapshot(self._name, doc_id, dict(data), self._client)
            for doc_id, data in bucket.items()
        ]

    def stream(self):  # pragma: no cover - simple iterator
        return FakeQuery(self).stream()

    def order_by(self, field_path: str, direction=firestore.Query.ASCENDING):
        return FakeQuery(self).order_by(field_path, direction)

    def where(self, field_path: str, op_string: str, value: Any):
        return FakeQuery(self).where(field_path, op_string, value)


class FakeQuery:
    def __init__(
        self,
        collection: FakeCollectionReference,
        *,
        orderings: list[tuple[str, bool]] | None = None,
        filters: list[tuple[str, str, Any]] | None = None,
        limit: int | None = None,
        start_after_id: str | None = None,
    ) -> None:
        self._collection = collection
        self._orderings: list[tuple[str, bool]] = list(orderings or [])
        self._filters: list[tuple[str, str, Any]] = list(filters or [])
        self._limit: int | None = limit
        self._start_after_id = start_after_id

    def _clone(self, **kwargs: Any) -> "FakeQuery":
        params = {
            "collection": self._collection,
            "orderings": kwargs.pop("orderings", self._orderings),
            "filters": kwargs.pop("filters", self._filters),
            "limit": kwargs.pop("limit", self._limit),
            "start_after_id": kwargs.pop("start_after_id", self._start_after_id),
        }
        return FakeQuery(**params)

    def order_by(self, field_path: str, direction=firestore.Query.ASCENDING) -> "FakeQuery":
        updated = list(self._orderings)
        updated.append((field_path, direction == firestore.Query.DESCENDING))
        return self._clone(orderings=updated)

    def where(self, field_path: str, op_string: str, value: Any) -> "FakeQuery":
        updated = list(self._filters)
        updated.append((field_path, op_string, value))
        return self._clone(filters=updated)

    def limit(self, value: int) -> "FakeQuery":
        return self._clone(limit=max(0, int(value)))

    def start_after(self, snapshot: FakeDocumentSnapshot) -> "FakeQuery":
        return self._clone(start_after_id=snapshot.id)

    def _matching_snapshots(self) -> list[FakeDocumentSnapshot]:
        docs = self._collection._all_snapshots()
        for field_path, op_string, expected in self._filters:
            if op_string != "==":
                raise NotImplementedError(f"unsupported operator: {op_string}")
            docs = [doc for doc in docs if (doc.to_dict() or {}).get(field_path) == expected]
        for field_path, descending in reversed(self._orderings):
            docs.sort(
                key=lambda snap, fp=field_path: snap.id if fp == "__name__" else str((snap.to_dict() or {}).get(fp) or ""),
                reverse=descending,
            )
        if self._start_after_id:
            ids = [snap.id for snap in docs]
            if self._start_after_id in ids:
                docs = docs[ids.index(self._start_after_id) + 1 :]
        if self._limit is not None:
            docs = docs[: self._limit]
        return docs

    def stream(self):  # pragma: no cover - passthrough iterator
        self._collection._client.query_count += 1
        if self._collection._client.fail_reads:
            raise FakeFirestoreError("injected read failure")
        for snapshot in self._matching_snapshots():
            yield snapshot


class FakeWriteBatch:
    """Firestore の WriteBatch API を模した簡易フェイク。"""

    def __init__(self, client: "FakeFirestoreClient") -> None:
        self._client = client
        self._operations: list[FakeDocumentReference] = []

    def delete(self, doc_ref: FakeDocumentReference) -> None:
        self._operations.append(doc_ref)

    def commit(self) -> None:
        self._client.batch_sizes.append(len(self._operations))
        for ref in list(self._operations):
            ref.delete()


class FakeFirestoreClient:
    """google.cloud.firestore.Client 互換の最小フェイク。

    - collection/batch だけを実装し、FirestoreRecordStore が依存する upsert/検索/削除を網羅する。
    - fail_writes_after: 指定回数の書き込み成功後、以降の set を失敗させる
    - fail_reads: True の間、クエリの stream を失敗させる
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, dict[str, Any]]] = {}
        self.write_count = 0
        self.query_count = 0
        self.fail_writes_after: int | None = None
        self.fail_reads = False
        self.batch_sizes: list[int] = []

    def _before_write(self, collection: str, doc_id: str) -> None:
        if self.fail_writes_after is not None and self.write_count >= self.fail_writes_after:
            raise FakeFirestoreError(f"injected write failure for {collection}/{doc_id}")
        self.write_count += 1

    def collection(self, name: str) -> FakeCollectionReference:
        return FakeCollectionReference(self, name)

    def batch(self) -> FakeWriteBatch:
        return FakeWriteBatch(self)

    def documents(self, collection: str) -> dict[str, dict[str, Any]]:
        return {doc_id: dict(data) for doc_id, data in self._data.get(collection, {}).items()}
