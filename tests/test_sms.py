import pytest
import requests

from smartlias.sms import SmsClient, normalize_ph_number


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("09171234567", "+639171234567"),
        ("9171234567", "+639171234567"),
        ("639171234567", "+639171234567"),
        ("+63 917-123-4567", "+639171234567"),
        ("0817123456", None),
        ("", None),
        (None, None),
    ],
)
def test_normalize_ph_number(raw, expected):
    assert normalize_ph_number(raw) == expected


class FakeResponse:
    def __init__(self, status_code, body=None, text=""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


def test_console_provider_only_logs(caplog):
    caplog.set_level("INFO", logger="smartlias.sms")
    result = SmsClient("console").send("09171234567", "Hello")
    assert result.success
    assert "+639171234567" in caplog.text


def test_invalid_number_is_not_sent(monkeypatch):
    monkeypatch.setattr(requests, "post", lambda *a, **k: pytest.fail("should not post"))
    result = SmsClient("http", api_url="https://sms.example/send").send("12345", "Hello")
    assert not result.success
    assert result.error == "Invalid mobile number"


def test_http_provider_posts_json(monkeypatch):
    calls = {}

    def fake_post(url, headers=None, json=None, timeout=None):
        calls.update(url=url, headers=headers, json=json, timeout=timeout)
        return FakeResponse(201, {"data": {"smsBatchId": "abc123"}})

    monkeypatch.setattr(requests, "post", fake_post)
    client = SmsClient("http", api_url="https://sms.example/send", api_key="k3y", timeout=5)
    result = client.send("09171234567", "Hello")

    assert result.success
    assert result.message_id == "abc123"
    assert calls["headers"]["x-api-key"] == "k3y"
    assert calls["json"]["recipients"] == ["+639171234567"]
    assert calls["timeout"] == 5


def test_http_error_status_is_reported(monkeypatch):
    monkeypatch.setattr(requests, "post", lambda *a, **k: FakeResponse(500, text="boom"))
    result = SmsClient("http", api_url="https://sms.example/send").send("09171234567", "Hello")
    assert not result.success
    assert result.error == "HTTP 500"


def test_network_error_is_reported(monkeypatch):
    def fake_post(*args, **kwargs):
        raise requests.ConnectionError("gateway unreachable")

    monkeypatch.setattr(requests, "post", fake_post)
    result = SmsClient("http", api_url="https://sms.example/send").send("09171234567", "Hello")
    assert not result.success
    assert "unreachable" in result.error


def test_unconfigured_http_provider():
    result = SmsClient("http").send("09171234567", "Hello")
    assert not result.success


def test_from_config(app):
    app.config.update(SMS_PROVIDER="http", SMS_API_URL="https://sms.example/send", SMS_TIMEOUT_SECONDS="3")
    client = SmsClient.from_config()
    assert client.provider == "http"
    assert client.timeout == 3.0
