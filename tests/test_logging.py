import structlog

from fetchbrain.logging import logging_context, redact_fields


def test_redact_fields_drops_payloads_and_credentials():
    event = {
        "event": "Taught data",
        "url": "https://a.test",
        "data": {"title": "X"},
        "api_key": "fb_secret",
        "learned": 1,
    }

    assert redact_fields(None, "info", event) == {
        "event": "Taught data",
        "url": "https://a.test",
        "learned": 1,
    }


def test_logging_context_keeps_existing_bindings():
    with structlog.contextvars.bound_contextvars(url="https://outer.test"):
        with logging_context(url="https://inner.test", command="query"):
            assert structlog.contextvars.get_contextvars() == {
                "url": "https://outer.test",
                "command": "query",
            }
        assert structlog.contextvars.get_contextvars() == {"url": "https://outer.test"}
