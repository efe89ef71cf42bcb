from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from ..errors import CorruptCacheError
from ..logging import logger
from ..models import DEFAULT_EASE_FACTOR, SRSRecord


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


def normalize_non_negative_int(value: Any) -> int:
    """与えられた値を非負整数に正規化する。

    Firestore 上の進捗カウンタが欠損・不正値でも、ゼロ以上の整数として
    読み込めるようにする。"""

    try:
        ivalue = int(value)
    except (TypeError, ValueError):
        return 0
    return ivalue if ivalue >= 0 else 0


def encode_records(records: Iterable[SRSRecord]) -> str:
    """レコード群をローカルキャッシュ用の JSON 配列へ変換する。"""

    return json.dumps([record.to_cache_dict() for record in records], ensure_ascii=False)


def decode_records(payload: str | None) -> dict[str, SRSRecord]:
    """Decode a cached JSON array into an item_id -> record map.

    ペイロード全体が壊れている場合は CorruptCacheError を送出する。
    配列内の個別レコードが不正な場合はそのレコードだけを読み飛ばす。
    """

    if not payload:
        return {}
    try:
        parsed = json.loads(payload)
    except (TypeError, ValueError) as exc:
        raise CorruptCacheError(f"cache payload is not valid JSON: {exc}") from exc
    if not isinstance(parsed, list):
        raise CorruptCacheError("cache payload must be a JSON array")

    records: dict[str, SRSRecord] = {}
    for position, raw in enumerate(parsed):
        try:
            record = SRSRecord.model_validate(raw)
        except ValidationError as exc:
            logger.warning(
                "srs_cached_record_skipped",
                position=position,
                error_count=exc.error_count(),
            )
            continue
        records[record.item_id] = record
    return records


def record_to_document(learner_id: str, domain: str, record: SRSRecord) -> dict[str, Any]:
    """Firestore ドキュメント用の snake_case フィールドへ変換する。"""

    return {
        "learner_id": learner_id,
        "domain": domain,
        "item_id": record.item_id,
        "ease_factor": float(record.ease_factor),
        "interval": record.interval,
        "repetitions": record.repetitions,
        "last_reviewed": record.last_review.isoformat() if record.last_review else None,
        "next_review": record.next_review.isoformat(),
        "correct_count": record.correct_count,
        "incorrect_count": record.incorrect_count,
        "updated_at": now_iso(),
    }


def record_from_document(data: Mapping[str, Any]) -> SRSRecord:
    """Firestore ドキュメントから SRSRecord を復元する。

    ease_factor が欠損していれば既定値、カウンタは非負整数へ矯正する。
    next_review が無い/不正な場合は ValidationError が送出される。
    """

    raw_ease = data.get("ease_factor")
    try:
        ease = float(raw_ease) if raw_ease is not None else DEFAULT_EASE_FACTOR
    except (TypeError, ValueError):
        ease = DEFAULT_EASE_FACTOR
    return SRSRecord(
        item_id=str(data.get("item_id") or ""),
        ease_factor=ease,
        interval=normalize_non_negative_int(data.get("interval")),
        repetitions=normalize_non_negative_int(data.get("repetitions")),
        last_review=data.get("last_reviewed") or None,
        next_review=data.get("next_review"),
        correct_count=normalize_non_negative_int(data.get("correct_count")),
        incorrect_count=normalize_non_negative_int(data.get("incorrect_count")),
    )
