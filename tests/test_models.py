from __future__ import annotations

from datetime import UTC, datetime

from srs_scheduler.models import CatalogItem, ReviewDomain, SRSRecord


def test_cache_dict_uses_camel_case_keys():
    record = SRSRecord(
        item_id="haus",
        next_review=datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC),
        last_review=datetime(2024, 1, 1, tzinfo=UTC),
        correct_count=2,
    )

    payload = record.to_cache_dict()

    assert payload == {
        "itemId": "haus",
        "easeFactor": 2.5,
        "interval": 0,
        "repetitions": 0,
        "lastReview": "2024-01-01T00:00:00Z",
        "nextReview": "2024-01-02T03:04:05Z",
        "correctCount": 2,
        "incorrectCount": 0,
    }


def test_legacy_word_id_key_is_accepted():
    record = SRSRecord.model_validate(
        {
            "wordId": "katze",
            "easeFactor": 2.2,
            "interval": 3,
            "repetitions": 2,
            "lastReview": None,
            "nextReview": "2024-05-01T10:00:00.000Z",
            "correctCount": 2,
            "incorrectCount": 1,
        }
    )

    assert record.item_id == "katze"
    assert record.ease_factor == 2.2
    assert record.next_review == datetime(2024, 5, 1, 10, 0, tzinfo=UTC)


def test_naive_timestamps_are_read_as_utc():
    record = SRSRecord.model_validate({"itemId": "a", "nextReview": "2024-05-01T10:00:00"})

    assert record.next_review.tzinfo is not None
    assert record.next_review == datetime(2024, 5, 1, 10, 0, tzinfo=UTC)


def test_persisted_values_are_normalised():
    record = SRSRecord.model_validate(
        {
            "itemId": "a",
            "nextReview": "2024-05-01T10:00:00Z",
            "easeFactor": 0.4,
            "correctCount": -2,
            "repetitions": -1,
        }
    )

    assert record.ease_factor == 1.3
    assert record.correct_count == 0
    assert record.repetitions == 0


def test_domains_map_to_distinct_namespaces():
    namespaces = {domain.namespace for domain in ReviewDomain}

    assert ReviewDomain.words.namespace == "german-srs-data"
    assert ReviewDomain.phrases.namespace == "german-phrase-srs-data"
    assert ReviewDomain.verbs.namespace == "german-verb-srs-data"
    assert len(namespaces) == 3


def test_catalog_item_ignores_unknown_fields():
    item = CatalogItem.model_validate(
        {"id": "sein", "domain": "verbs", "category": "irregular", "level": "A1", "english": "to be"}
    )

    assert item.domain is ReviewDomain.verbs
    assert item.category == "irregular"
