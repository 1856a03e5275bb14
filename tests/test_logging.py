from customer_auth.logging import _redact_pii, get_correlation_id, set_correlation_id


def test_credentials_are_fully_redacted():
    event = _redact_pii(None, "info", {"event": "login", "password": "secret123", "otp": "123456"})

    assert event["password"] == "[redacted]"
    assert event["otp"] == "[redacted]"
    assert event["event"] == "login"


def test_phone_keeps_last_four_digits():
    event = _redact_pii(None, "info", {"event": "otp_issued", "phone": "998901234567"})

    assert event["phone"] == "***4567"


def test_unrelated_keys_untouched():
    event = _redact_pii(None, "info", {"event": "service_error", "error_code": "wrong_otp", "status_code": 401})

    assert event["error_code"] == "wrong_otp"
    assert event["status_code"] == 401


def test_correlation_id_generated_when_missing():
    cid = set_correlation_id()

    assert get_correlation_id() == cid
    assert set_correlation_id("req-1") == "req-1"
