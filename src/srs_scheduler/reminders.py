from __future__ import annotations

from datetime import UTC, datetime, timedelta

from .config import settings
from .logging import logger


class ReviewReminder:
    """Throttle for "N items due" reminders.

    期限到来アイテムが 0 件、または無効化されている場合は通知しない。
    通知は min_interval に一度まで。表示方法（トーストやブラウザ通知）は
    呼び出し側に任せる。
    """

    def __init__(self, *, enabled: bool = True, min_interval: timedelta | None = None) -> None:
        self.enabled = enabled
        self.min_interval = min_interval or timedelta(seconds=settings.reminder_min_interval_seconds)
        self._last_sent_at: datetime | None = None

    @property
    def last_sent_at(self) -> datetime | None:
        return self._last_sent_at

    def should_notify(self, due_count: int, now: datetime | None = None) -> bool:
        """Return True and remember the time when a reminder may be shown now."""

        if not self.enabled or due_count <= 0:
            return False
        at = now or datetime.now(UTC)
        if self._last_sent_at is not None and at - self._last_sent_at < self.min_interval:
            return False
        self._last_sent_at = at
        logger.info("srs_reminder_due", due_count=due_count)
        return True

    @staticmethod
    def message(due_count: int) -> str:
        noun = "item" if due_count == 1 else "items"
        return f"{due_count} {noun} due for review."
