from app.core.logging_config import redact_secrets


def test_credentials_are_redacted_from_log_events():
    event = redact_secrets(
        None,
        "info",
        {"event": "login_failed", "password": "StrongPass1!", "refresh_token": "eyJ...", "user_id": 7},
    )

    assert event["password"] == "[redacted]"
    assert event["refresh_token"] == "[redacted]"
    assert event["user_id"] == 7
