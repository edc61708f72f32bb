"""SMS gateway client.

Two providers are supported:

- ``console``: messages are only written to the log (development default).
- ``http``: JSON POST to ``SMS_API_URL`` with an ``x-api-key`` header, the
  shape used by TextBee-style Android gateways.

Sending never raises on delivery problems; each call returns an
`SmsResult` so a broadcast can record per-recipient outcomes.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass

import requests
from flask import current_app

logger = logging.getLogger(__name__)

_PH_MOBILE_RE = re.compile(r"^\+639\d{9}$")


@dataclass
class SmsResult:
    phone_number: str
    success: bool
    message_id: str | None = None
    error: str | None = None


def normalize_ph_number(value: str | None) -> str | None:
    """Convert a Philippine mobile number to +63 format, or None if unusable.

    Accepts ``09XXXXXXXXX``, ``9XXXXXXXXX``, ``639XXXXXXXXX`` and
    ``+639XXXXXXXXX``, ignoring spaces and dashes.
    """
    if not value:
        return None
    digits = re.sub(r"[\s\-()]", "", str(value))
    if digits.startswith("0") and len(digits) == 11:
        digits = "+63" + digits[1:]
    elif digits.startswith("9") and len(digits) == 10:
        digits = "+63" + digits
    elif digits.startswith("63") and len(digits) == 12:
        digits = "+" + digits
    return digits if _PH_MOBILE_RE.match(digits) else None


class SmsClient:
    def __init__(self, provider: str = "console", api_url: str = "", api_key: str = "",
                 sender_name: str = "SMARTLIAS", timeout: float = 10):
        self.provider = provider
        self.api_url = api_url
        self.api_key = api_key
        self.sender_name = sender_name
        self.timeout = timeout

    @classmethod
    def from_config(cls) -> "SmsClient":
        config = current_app.config
        return cls(
            provider=config.get("SMS_PROVIDER", "console"),
            api_url=config.get("SMS_API_URL", ""),
            api_key=config.get("SMS_API_KEY", ""),
            sender_name=config.get("SMS_SENDER_NAME", "SMARTLIAS"),
            timeout=float(config.get("SMS_TIMEOUT_SECONDS", 10)),
        )

    def send(self, phone_number: str, message: str) -> SmsResult:
        number = normalize_ph_number(phone_number)
        if number is None:
            return SmsResult(phone_number or "", False, error="Invalid mobile number")

        if self.provider == "console":
            logger.info("[SMS] to %s: %s", number, message)
            return SmsResult(number, True)

        if self.provider != "http" or not self.api_url:
            return SmsResult(number, False, error="SMS provider is not configured")

        headers = {"Content-Type": "application/json", "x-api-key": self.api_key}
        payload = {"recipients": [number], "message": message, "sender": self.sender_name}
        try:
            response = requests.post(self.api_url, headers=headers, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("SMS to %s failed: %s", number, exc)
            return SmsResult(number, False, error=str(exc)[:255])

        if response.status_code not in (200, 201):
            logger.warning("SMS to %s rejected: %s %s", number, response.status_code, response.text[:200])
            return SmsResult(number, False, error=f"HTTP {response.status_code}")

        message_id = None
        try:
            body = response.json()
        except ValueError:
            body = {}
        if isinstance(body, dict):
            data = body.get("data") if isinstance(body.get("data"), dict) else body
            message_id = data.get("id") or data.get("smsBatchId") or data.get("message_id")
        return SmsResult(number, True, message_id=str(message_id) if message_id else None)
