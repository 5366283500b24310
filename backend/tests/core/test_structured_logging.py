"""Tests for the JSON log formatter and request path labels."""

import json
import logging
import sys

import pytest

from securehls.core.logging import (
    StructuredFormatter,
    clear_correlation_id,
    set_correlation_id,
)
from securehls.core.middleware import normalize_path


def make_record(msg: str = "Encryption key delivered", **extra) -> logging.LogRecord:
    record = logging.LogRecord("securehls.test", logging.INFO, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def correlation_id():
    set_correlation_id("req-123")
    yield
    clear_correlation_id()


class TestStructuredFormatter:
    """JSON documents produced per record."""

    def test_core_fields(self) -> None:
        document = json.loads(StructuredFormatter().format(make_record()))

        assert document["message"] == "Encryption key delivered"
        assert document["level"] == "INFO"
        assert document["correlation_id"] == "req-123"

    def test_ids_are_top_level_and_rest_is_extra(self) -> None:
        record = make_record(lesson_id=42, user_id=5, key_size=16)

        document = json.loads(StructuredFormatter().format(record))

        assert document["lesson_id"] == 42
        assert document["user_id"] == 5
        assert document["extra"] == {"key_size": 16}

    def test_tokens_are_redacted(self) -> None:
        token = "eyJsZXNzb25faWQiOjQyLCJzZWdtZW50IjoiMzYwcF9zZWdtZW50XzAwMC50cyJ9"

        document = json.loads(StructuredFormatter().format(make_record(token=token)))

        assert document["extra"]["token"] == token[:20] + "..."
        assert token not in json.dumps(document)

    def test_unserializable_extra_becomes_string(self) -> None:
        document = json.loads(StructuredFormatter().format(make_record(path=object())))

        assert isinstance(document["extra"]["path"], str)

    def test_exception_is_included(self) -> None:
        try:
            raise RuntimeError("ffmpeg exploded")
        except RuntimeError:
            record = logging.LogRecord(
                "securehls.test", logging.ERROR, __file__, 10, "failed", None, sys.exc_info()
            )

        document = json.loads(StructuredFormatter().format(record))

        assert document["exception"]["type"] == "RuntimeError"
        assert document["exception"]["message"] == "ffmpeg exploded"
        assert document["exception"]["stack_trace"]


@pytest.mark.parametrize(
    "path,expected",
    [
        ("/api/v1/lessons/42/playlist", "/api/v1/lessons/{id}/playlist"),
        ("/api/v1/lessons/42/playlist/720p.m3u8", "/api/v1/lessons/{id}/playlist/{variant}"),
        ("/api/v1/lessons/7/segments/360p_segment_004.ts", "/api/v1/lessons/{id}/segments/{segment}"),
        ("/api/v1/lessons/7/key", "/api/v1/lessons/{id}/key"),
        ("/health", "/health"),
    ],
)
def test_normalize_path(path: str, expected: str) -> None:
    assert normalize_path(path) == expected
