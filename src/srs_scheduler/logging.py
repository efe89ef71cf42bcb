"""Logging utilities and sanitisation helpers.

構造化ログの初期化と、機密情報を含むイベントを安全にマスクする
ヘルパーをまとめて提供する。学習者 ID やアイテム ID はそのまま出力するが、
Firestore の認証情報や Sentry DSN などはここで一元的にフィルタリングする。
"""

from typing import Any

import logging
import structlog
from structlog import contextvars as structlog_contextvars
from .config import settings


_SENSITIVE_KEYWORDS = ("api_key", "token", "secret", "authorization", "password", "credential", "dsn")
_MASK_PLACEHOLDER = "***"


def _mask_secret_value(raw: object) -> str:
    """Return a masked representation of a secret-like value.

    短い値は `***` に、一定長以上は先頭4文字+末尾4文字だけを残し中間を隠す。
    """

    if raw is None:
        return _MASK_PLACEHOLDER
    text = str(raw).strip()
    if not text:
        return _MASK_PLACEHOLDER
    if len(text) <= 8:
        return _MASK_PLACEHOLDER
    return f"{text[:4]}…{text[-4:]}"


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(keyword in lowered for keyword in _SENSITIVE_KEYWORDS)


def _sanitize_event_dict(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Sanitize sensitive fields before rendering a log event.

    キー名に `token`/`secret` 等が含まれる場合は値をマスクし、設定済みの
    Sentry DSN が文字列内に紛れ込んでいれば置換する。ネストした dict も
    同様に再帰的に処理する。
    """

    known_secrets = tuple(secret for secret in (settings.sentry_dsn,) if secret)

    def _sanitize_value(value: Any, key_hint: str | None = None) -> Any:
        if isinstance(value, dict):
            return {k: _sanitize_value(v, k) for k, v in value.items()}
        if isinstance(value, str):
            cleaned = value
            for secret in known_secrets:
                cleaned = cleaned.replace(secret, _mask_secret_value(secret))
            if key_hint and _is_sensitive_key(key_hint):
                return _mask_secret_value(cleaned)
            return cleaned
        if key_hint and _is_sensitive_key(key_hint):
            return _mask_secret_value(value)
        return value

    for key, value in list(event_dict.items()):
        event_dict[key] = _sanitize_value(value, str(key))
    return event_dict


def configure_logging() -> None:
    """Configure structlog for application-wide logging.

    標準 logging を設定値のレベルで初期化し、structlog で ISO タイムスタンプと
    JSON 形式の出力を有効化する。消費側（UI プロセス）の起動時に一度だけ呼ぶ。
    """
    # stdlib 側の出力はメッセージのみ(%(message)s)に固定する。
    logging.basicConfig(
        level=settings.log_level_number,
        format="%(message)s",
        handlers=[logging.StreamHandler()],
        force=True,
    )
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog_contextvars.merge_contextvars,
            _sanitize_event_dict,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
    )

    if settings.sentry_dsn:
        try:
            import sentry_sdk  # type: ignore
            from sentry_sdk.integrations.logging import LoggingIntegration  # type: ignore
        except ImportError:
            logger.warning("sentry_sdk_not_installed")
            return
        sentry_logging = LoggingIntegration(
            level=logging.INFO,
            event_level=logging.ERROR,
        )
        sentry_sdk.init(dsn=settings.sentry_dsn, integrations=[sentry_logging])


logger = structlog.get_logger()
