"""
Tests for batik_api/audit_logging.py: the JSON formatter, the per-request
audit hooks and the helper functions used by the handlers.
"""

import json
import logging

import pytest

from batik_api.audit_logging import JSONFormatter, audit_event, db_audit, security_alert


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def audit_records():
    handler = _ListHandler()
    logger = logging.getLogger("audit")
    previous = logger.level
    logger.setLevel(logging.INFO)
    logger.addHandler(handler)
    yield handler.records
    logger.removeHandler(handler)
    logger.setLevel(previous)


class TestJSONFormatter:
    def test_includes_extras(self):
        record = logging.LogRecord("audit", logging.INFO, __file__, 1, "batik_created", (), None)
        record.user_id = 7
        record.batik_id = 3
        record.path = "batik_images/1_a.jpg"

        payload = json.loads(JSONFormatter().format(record))

        assert payload["message"] == "batik_created"
        assert payload["level"] == "INFO"
        assert payload["user_id"] == 7
        assert payload["batik_id"] == 3
        assert payload["path"] == "batik_images/1_a.jpg"

    def test_unserializable_extras_become_strings(self):
        record = logging.LogRecord("audit", logging.INFO, __file__, 1, "x", (), None)
        record.when = object()

        payload = json.loads(JSONFormatter().format(record))

        assert isinstance(payload["when"], str)


class TestHelpers:
    def test_audit_event(self, audit_records):
        audit_event("comment_created", user_id=1, comment_id=9)

        record = audit_records[-1]
        assert record.getMessage() == "comment_created"
        assert record.comment_id == 9

    def test_security_alert_is_flagged(self, audit_records):
        security_alert("login_failed", reason="invalid_credentials")

        record = audit_records[-1]
        assert record.levelno == logging.WARNING
        assert record.alert is True

    def test_db_audit_carries_operation(self, audit_records):
        db_audit("batik_insert", duration_ms=3)

        assert audit_records[-1].operation == "batik_insert"


@pytest.mark.integration
class TestRequestHooks:
    def test_request_is_audited_with_caller(self, client, owner_token, auth_header, audit_records):
        client.get("/my-batiks", headers=auth_header(owner_token))

        requests = [r for r in audit_records if r.getMessage() == "http_request"]
        assert requests[-1].path == "/my-batiks"
        assert requests[-1].status_code == 200
        assert requests[-1].token_present is True
        assert requests[-1].user_id is not None

    def test_unauthorized_raises_security_alert(self, client, audit_records):
        client.get("/my-batiks")

        alerts = [r for r in audit_records if r.getMessage() == "security_alert"]
        assert alerts and alerts[-1].status_code == 401
