from surplus_api.core.logging import _RESERVED_LOG_RECORD_ATTRS, _redact


def test_redact_masks_gateway_secrets_and_payer_pii() -> None:
    extras = {
        "order_id": "abc",
        "access_token": "APP_USR-123",
        "headers": {"X-Signature": "ts=1,v1=deadbeef", "x-request-id": "req-1"},
        "payer_email": "ana@example.com",
    }

    redacted = _redact(extras)

    assert redacted["order_id"] == "abc"
    assert redacted["access_token"] == "***"
    assert redacted["payer_email"] == "***"
    assert redacted["headers"] == {"X-Signature": "***", "x-request-id": "req-1"}
    assert extras["access_token"] == "APP_USR-123"


def test_reserved_attrs_cover_standard_log_record_fields() -> None:
    for name in ("msg", "args", "levelname", "exc_info", "funcName", "message"):
        assert name in _RESERVED_LOG_RECORD_ATTRS
