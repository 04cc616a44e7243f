"""Dead-letter publisher and JSON log formatting."""

from __future__ import annotations

import json
import logging
import sys
from concurrent.futures import Future
from unittest.mock import MagicMock, patch

import structlog
from google.auth.exceptions import DefaultCredentialsError

from lib.logging import json_formatter, setup_logging
from lib.publisher import Publisher


class TestPublisher:
    def test_no_topic_is_disconnected(self, monkeypatch):
        monkeypatch.delenv("PUBSUB_DEAD_LETTER_TOPIC", raising=False)
        with patch("lib.publisher.PublisherClient") as client_cls:
            publisher = Publisher()
        assert publisher.is_connected is False
        client_cls.assert_not_called()

    def test_missing_credentials_is_disconnected(self):
        with patch("lib.publisher.PublisherClient", side_effect=DefaultCredentialsError("no creds")):
            publisher = Publisher("projects/p/topics/dead-letters")
        assert publisher.is_connected is False

    async def test_publish_encodes_json_and_returns_message_id(self, monkeypatch):
        monkeypatch.setenv("PUBSUB_DEAD_LETTER_TOPIC", "projects/p/topics/dead-letters")
        future: Future = Future()
        future.set_result("msg-42")
        client = MagicMock()
        client.publish.return_value = future

        with patch("lib.publisher.PublisherClient", return_value=client):
            publisher = Publisher()

        assert publisher.is_connected is True
        assert await publisher.publish({"reason": "failed", "payment_id": "pay_1"}) == "msg-42"
        topic, data = client.publish.call_args.args
        assert topic == "projects/p/topics/dead-letters"
        assert json.loads(data) == {"reason": "failed", "payment_id": "pay_1"}


class TestJsonFormatter:
    def test_includes_extras(self):
        record = logging.LogRecord("context", logging.WARNING, __file__, 1, "Escalated %s", ("x",), None)
        record.payment_id = "pay_1"
        record.verification = "skipped"

        entry = json.loads(json_formatter().format(record))

        assert entry["level"] == "warning"
        assert entry["logger"] == "context"
        assert entry["message"] == "Escalated x"
        assert entry["payment_id"] == "pay_1"
        assert entry["verification"] == "skipped"
        assert "args" not in entry
        assert entry["timestamp"].endswith("Z")

    def test_includes_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("app", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())

        entry = json.loads(json_formatter().format(record))
        assert "RuntimeError: boom" in entry["exception"]

    def test_setup_logging_is_idempotent(self):
        root = logging.getLogger()
        before = list(root.handlers)
        level = root.level
        try:
            setup_logging("warning")
            setup_logging("warning")
            ours = [h for h in root.handlers if isinstance(h.formatter, structlog.stdlib.ProcessorFormatter)]
            assert len(ours) == 1
            assert root.level == logging.WARNING
        finally:
            root.handlers = before
            root.setLevel(level)
