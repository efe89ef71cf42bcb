from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .config import settings


MIN_EASE_FACTOR = 1.3
DEFAULT_EASE_FACTOR = 2.5


class ReviewDomain(str, Enum):
    """Kind of learnable item a review store is responsible for."""

    words = "words"
    phrases = "phrases"
    verbs = "verbs"

    @property
    def namespace(self) -> str:
        """ローカルキャッシュ上の名前空間。設定値から都度解決する。"""

        return getattr(settings, f"{self.value}_namespace")


class Difficulty(str, Enum):
    """Presentation bucket derived from the ease factor."""

    easy = "easy"
    medium = "medium"
    hard = "hard"


class ReviewableItem(Protocol):
    """Anything a review store can schedule: it only needs an id and a category."""

    @property
    def id(self) -> str: ...

    @property
    def category(self) -> str: ...


class CatalogItem(BaseModel):
    """Static catalog entry handed to a store by the consumer."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    domain: ReviewDomain = ReviewDomain.words
    category: str = ""
    level: str | None = None


class ReviewStats(BaseModel):
    """Aggregate counts over a set of records."""

    due_now: int = 0
    learning: int = 0
    mastered: int = 0


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class SRSRecord(BaseModel):
    """Scheduling state of one item for one learner.

    ローカルキャッシュには camelCase のキーで保存する（`itemId`, `easeFactor` ...）。
    旧フォーマットの `wordId` も読み込み時に受け付ける。
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    item_id: str = Field(
        serialization_alias="itemId",
        validation_alias=AliasChoices("item_id", "itemId", "wordId"),
    )
    ease_factor: float = Field(
        default=DEFAULT_EASE_FACTOR,
        serialization_alias="easeFactor",
        validation_alias=AliasChoices("ease_factor", "easeFactor"),
    )
    interval: int = 0
    repetitions: int = 0
    last_review: datetime | None = Field(
        default=None,
        serialization_alias="lastReview",
        validation_alias=AliasChoices("last_review", "lastReview"),
    )
    next_review: datetime = Field(
        serialization_alias="nextReview",
        validation_alias=AliasChoices("next_review", "nextReview"),
    )
    correct_count: int = Field(
        default=0,
        serialization_alias="correctCount",
        validation_alias=AliasChoices("correct_count", "correctCount"),
    )
    incorrect_count: int = Field(
        default=0,
        serialization_alias="incorrectCount",
        validation_alias=AliasChoices("incorrect_count", "incorrectCount"),
    )

    @field_validator("ease_factor", mode="after")
    @classmethod
    def _floor_ease(cls, value: float) -> float:
        return max(MIN_EASE_FACTOR, value)

    @field_validator("interval", "repetitions", "correct_count", "incorrect_count", mode="after")
    @classmethod
    def _floor_counts(cls, value: int) -> int:
        return value if value >= 0 else 0

    @field_validator("last_review", "next_review", mode="after")
    @classmethod
    def _normalise_timestamp(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    def to_cache_dict(self) -> dict[str, Any]:
        """Serialise with camelCase keys and ISO-8601 timestamps."""

        return self.model_dump(mode="json", by_alias=True)
