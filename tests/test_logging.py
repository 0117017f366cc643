import logging

from crewhub import logging as crewhub_logging
from crewhub.config import settings


def test_log_level_comes_from_settings(monkeypatch):
    calls = []
    monkeypatch.setattr(settings, "log_level", "debug")
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

    crewhub_logging.setup_logging()

    assert calls[0]["level"] == logging.DEBUG


def test_request_id_is_echoed(client):
    res = client.get("/healthz", headers={"X-Request-ID": "req-42"})
    assert res.headers["X-Request-ID"] == "req-42"
