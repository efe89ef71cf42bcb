import logging

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CACHE_PATH = ".data/srs_cache.sqlite3"
_VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


class Settings(BaseSettings):
    """Scheduler settings loaded from environment variables.

    環境変数から読み込まれる SRS スケジューラの設定。
    - environment: 実行環境（development/staging/production など）
    - *_namespace: ドメインごとのローカルキャッシュ名前空間
    - remote_collection: 認証済み学習者のレコードを保存する Firestore コレクション
    """

    environment: str = Field(
        default="development",
        description="Runtime environment / 実行環境",
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level / ルートロガーのログレベル",
    )
    sentry_dsn: str | None = Field(
        default=None, description="Sentry DSN (enable if set)"
    )

    # --- ローカルキャッシュ（匿名学習者） ---
    local_cache_path: str = Field(
        default=DEFAULT_CACHE_PATH,
        description="Path to SQLite key-value cache / ローカルキャッシュ用SQLite DBパス",
    )
    words_namespace: str = Field(
        default="german-srs-data",
        description="Cache namespace for single words / 単語用キャッシュ名前空間",
    )
    phrases_namespace: str = Field(
        default="german-phrase-srs-data",
        description="Cache namespace for phrases / フレーズ用キャッシュ名前空間",
    )
    verbs_namespace: str = Field(
        default="german-verb-srs-data",
        description="Cache namespace for verb conjugations / 動詞活用用キャッシュ名前空間",
    )

    # --- リモートストア（認証済み学習者） ---
    remote_collection: str = Field(
        default="user_srs_data",
        description="Firestore collection for SRS records / SRSレコードを保存するコレクション",
    )
    firestore_project_id: str | None = Field(
        default=None,
        description="Firestore project ID / Firestore のプロジェクトID",
    )
    gcp_project_id: str | None = Field(
        default=None,
        description="Fallback GCP project ID / フォールバック用 GCP プロジェクトID",
    )
    firestore_emulator_host: str | None = Field(
        default=None,
        description="Firestore emulator host (host:port) / Firestore エミュレータのホスト",
    )

    # --- 永続化の再試行 ---
    write_retry_attempts: int = Field(
        default=0,
        description=(
            "Extra attempts for a failed durable write (0 disables retry) / "
            "永続化失敗時の追加試行回数（0で再試行しない）"
        ),
    )
    write_retry_backoff_ms: int = Field(
        default=100,
        description="Linear backoff step between write retries (ms) / 再試行間隔の増分(ms)",
    )

    reminder_min_interval_seconds: int = Field(
        default=5 * 60,
        description=(
            "Minimum seconds between due-review reminders / "
            "復習リマインダーを出す最小間隔（秒）"
        ),
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, raw_level: object) -> object:
        """Upper-case the level name and reject anything stdlib logging does not know."""

        if raw_level is None:
            return "INFO"
        level = str(raw_level).strip().upper() or "INFO"
        if level not in _VALID_LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {sorted(_VALID_LOG_LEVELS)}")
        return level

    @field_validator("words_namespace", "phrases_namespace", "verbs_namespace", "remote_collection")
    @classmethod
    def _require_non_blank(cls, value: str) -> str:
        trimmed = (value or "").strip()
        if not trimmed:
            raise ValueError("storage names must be non-empty")
        return trimmed

    @field_validator(
        "write_retry_attempts",
        "write_retry_backoff_ms",
        "reminder_min_interval_seconds",
    )
    @classmethod
    def _require_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("value must be zero or greater")
        return value

    @model_validator(mode="after")
    def _check_distinct_namespaces(self) -> "Settings":
        """各ドメインのキャッシュ名前空間が重複していないことを保証する。

        同じ名前空間を共有すると、単語とフレーズの進捗が互いに上書きされる。
        """

        namespaces = (self.words_namespace, self.phrases_namespace, self.verbs_namespace)
        if len(set(namespaces)) != len(namespaces):
            raise ValueError("words/phrases/verbs namespaces must be distinct")
        return self

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level)


settings = Settings()
