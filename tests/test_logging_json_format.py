import json

import pytest
import structlog

from srs_scheduler import config as srs_config
from srs_scheduler.logging import configure_logging, logger


@pytest.fixture()
def json_logging(monkeypatch, capsys):
    monkeypatch.setattr(srs_config.settings, "sentry_dsn", None)
    configure_logging()
    yield
    structlog.reset_defaults()


def _last_event(captured_text: str) -> dict:
    lines = [ln for ln in captured_text.splitlines() if ln.strip().startswith("{")]
    assert lines, captured_text
    return json.loads(lines[-1])


def test_events_are_rendered_as_json(json_logging, capsys):
    logger.info("srs_review_recorded", domain="words", item_id="haus", interval=3)

    event = _last_event(capsys.readouterr().err)

    assert event["event"] == "srs_review_recorded"
    assert event["level"] == "info"
    assert event["item_id"] == "haus"
    assert event["interval"] == 3
    assert "timestamp" in event


def test_sensitive_keys_are_masked(json_logging, capsys):
    logger.warning(
        "srs_remote_auth",
        id_token="eyJhbGciOiJSUzI1NiIsImtpZCI6",
        password="short",
        nested={"client_secret": "abcdefghijklmnop", "learner_id": "learner-1"},
    )

    event = _last_event(capsys.readouterr().err)

    assert event["id_token"] == "eyJh…ZCI6"
    assert event["password"] == "***"
    assert event["nested"]["client_secret"] == "abcd…mnop"
    assert event["nested"]["learner_id"] == "learner-1"


def test_contextvars_are_merged(json_logging, capsys):
    structlog.contextvars.bind_contextvars(learner_id="learner-9")
    try:
        logger.info("srs_sign_in_started")
    finally:
        structlog.contextvars.clear_contextvars()

    event = _last_event(capsys.readouterr().err)

    assert event["learner_id"] == "learner-9"
