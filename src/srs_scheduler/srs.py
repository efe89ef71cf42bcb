"""SM-2 based scheduling core.

I/O を持たない純粋関数のみを置く。現在時刻が必要な関数はすべて `now` を
受け取り、省略時は UTC の現在時刻を使う。

- quality: 0..5（3 未満は想起失敗、5 が最良）
- ease_factor は 1.3 未満にならない
- interval=0 のカードは 10 分後に同一セッション内で再出題する
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta

from .logging import logger
from .models import (
    DEFAULT_EASE_FACTOR,
    MIN_EASE_FACTOR,
    Difficulty,
    ReviewStats,
    SRSRecord,
)

MIN_QUALITY = 0
MAX_QUALITY = 5
PASSING_QUALITY = 3
SAME_SESSION_DELAY = timedelta(minutes=10)
MASTERED_REPETITIONS = 5
MASTERED_EASE_FACTOR = 2.0
FAST_RESPONSE_MS = 2000
NORMAL_RESPONSE_MS = 4000

_ONE_DAY_SECONDS = 24 * 60 * 60


def _now(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(UTC)
    if now.tzinfo is None:
        return now.replace(tzinfo=UTC)
    return now


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_quality(quality: float) -> int:
    """Clamp a review grade into 0..5, rounding non-integral values."""

    q = _round_half_up(float(quality))
    if q < MIN_QUALITY or q > MAX_QUALITY or q != quality:
        logger.warning("srs_quality_clamped", quality=quality)
    return max(MIN_QUALITY, min(MAX_QUALITY, q))


def create_initial(item_id: str, now: datetime | None = None) -> SRSRecord:
    """未学習アイテムの初期状態を返す。即座に復習対象（due）になる。"""

    return SRSRecord(
        item_id=item_id,
        ease_factor=DEFAULT_EASE_FACTOR,
        interval=0,
        repetitions=0,
        last_review=None,
        next_review=_now(now),
        correct_count=0,
        incorrect_count=0,
    )


def next_state(record: SRSRecord, quality: float, now: datetime | None = None) -> SRSRecord:
    """Apply one review outcome and return the resulting record.

    失敗（quality < 3）で連続正解数と間隔をリセットし、成功時は
    1日 → 3日 → 前回間隔×ease と伸ばす。ease の更新は SM-2 の式に従う。
    """

    reviewed_at = _now(now)
    q = clamp_quality(quality)
    ease = record.ease_factor
    interval = record.interval
    repetitions = record.repetitions
    correct = record.correct_count
    incorrect = record.incorrect_count

    if q >= PASSING_QUALITY:
        correct += 1
    else:
        incorrect += 1

    if q < PASSING_QUALITY:
        repetitions = 0
        interval = 0
    else:
        if repetitions == 0:
            interval = 1
        elif repetitions == 1:
            interval = 3
        else:
            interval = _round_half_up(interval * ease)
        repetitions += 1

    miss = MAX_QUALITY - q
    ease = max(MIN_EASE_FACTOR, ease + (0.1 - miss * (0.08 + miss * 0.02)))

    if interval == 0:
        next_review = reviewed_at + SAME_SESSION_DELAY
    else:
        next_review = reviewed_at + timedelta(days=interval)

    return record.model_copy(
        update={
            "ease_factor": ease,
            "interval": interval,
            "repetitions": repetitions,
            "last_review": reviewed_at,
            "next_review": next_review,
            "correct_count": correct,
            "incorrect_count": incorrect,
        }
    )


def is_due(record: SRSRecord, now: datetime | None = None) -> bool:
    return _now(now) >= record.next_review


def priority(record: SRSRecord, now: datetime | None = None) -> float:
    """Ordering score for due records; higher means review sooner.

    期限超過日数・難しさ（ease の低さ）・練習回数の少なさ・誤答率を加算する。
    並び替え専用の値で、永続化はしない。
    """

    overdue_days = (_now(now) - record.next_review).total_seconds() / _ONE_DAY_SECONDS
    score = max(0.0, overdue_days) * 10
    score += (DEFAULT_EASE_FACTOR - record.ease_factor) * 5
    score += max(0, MASTERED_REPETITIONS - record.repetitions) * 2
    attempts = record.correct_count + record.incorrect_count
    score += record.incorrect_count / max(1, attempts) * 10
    return score


def sort_by_priority(records: Iterable[SRSRecord], now: datetime | None = None) -> list[SRSRecord]:
    """Sort by descending priority; equal scores keep their input order."""

    at = _now(now)
    return sorted(records, key=lambda record: priority(record, at), reverse=True)


def quality_from_outcome(is_correct: bool, response_time_ms: float | None = None) -> int:
    """正誤（と任意の回答時間）を 0..5 の quality に変換する。"""

    if not is_correct:
        return 1
    if response_time_ms is None:
        return 4
    if response_time_ms < FAST_RESPONSE_MS:
        return 5
    if response_time_ms < NORMAL_RESPONSE_MS:
        return 4
    return 3


def select_due(records: Iterable[SRSRecord], now: datetime | None = None) -> list[SRSRecord]:
    at = _now(now)
    return [record for record in records if is_due(record, at)]


def summarize(records: Iterable[SRSRecord], now: datetime | None = None) -> ReviewStats:
    at = _now(now)
    total = 0
    due_now = 0
    mastered = 0
    for record in records:
        total += 1
        if is_due(record, at):
            due_now += 1
        if record.repetitions >= MASTERED_REPETITIONS and record.ease_factor >= MASTERED_EASE_FACTOR:
            mastered += 1
    return ReviewStats(due_now=due_now, learning=total - mastered, mastered=mastered)


def difficulty_for(record: SRSRecord) -> Difficulty:
    if record.ease_factor >= 2.3:
        return Difficulty.easy
    if record.ease_factor >= 1.8:
        return Difficulty.medium
    return Difficulty.hard
