"""Outbound reply primitives.

A sender is any callable ``reply(sender_key, text) -> SendResult``. Retries,
when any, live here in the transport and never in the dispatcher.
"""
import logging
import os
import re
import sys
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, TextIO

import requests

from services.metrics import record_send
from services.retry import retry_with_backoff
from services.wa_format import WHATSAPP_TEXT_LIMIT, split_message

logger = logging.getLogger(__name__)

_CHAT_ID_STRIP = re.compile(r"[\s+\-()]")


@dataclass
class SendResult:
    ok: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


ReplyFn = Callable[[str, str], SendResult]


class SendError(Exception):
    pass


def normalize_chat_id(sender_key: str) -> str:
    """Reduce a WhatsApp chat id or phone number to bare digits."""
    value = str(sender_key or "").strip()
    if "@" in value:
        value = value.split("@", 1)[0]
    return _CHAT_ID_STRIP.sub("", value)


class ConsoleSender:
    """Writes replies to a stream; used for local runs and tests."""

    transport = "console"

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout
        self.sent: List[Dict[str, str]] = []

    def __call__(self, sender_key: str, text: str) -> SendResult:
        self.sent.append({"to": sender_key, "text": text})
        try:
            self.stream.write(f"[{sender_key}] <- {text}\n")
            self.stream.flush()
        except (OSError, ValueError) as exc:
            record_send(self.transport, False)
            return SendResult(ok=False, error=str(exc))
        record_send(self.transport, True)
        return SendResult(ok=True, message_id=str(len(self.sent)))


class CloudApiSender:
    """Sends text messages through the WhatsApp Cloud API."""

    transport = "cloud_api"

    def __init__(
        self,
        *,
        phone_number_id: str,
        token: str,
        api_base_url: str = "https://graph.facebook.com/v19.0",
        timeout: float = 20.0,
        session: Optional[requests.Session] = None,
        max_retries: int = 2,
    ):
        if not phone_number_id:
            raise ValueError("WhatsApp phone_number_id is required for the Cloud API sender.")
        if not token:
            raise ValueError("WhatsApp access token is required for the Cloud API sender.")
        self.url = f"{api_base_url.rstrip('/')}/{phone_number_id}/messages"
        self.timeout = float(timeout)
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {token}"})
        self._post = retry_with_backoff(
            max_retries=max_retries,
            retry_on=(requests.ConnectionError, requests.Timeout),
        )(self._post_once)

    @classmethod
    def from_config(cls, config: Dict[str, Any], session: Optional[requests.Session] = None) -> "CloudApiSender":
        wa_cfg = config.get("whatsapp", {}) if isinstance(config.get("whatsapp"), dict) else {}
        token_var = str(wa_cfg.get("token_env_var") or "WHATSAPP_TOKEN")
        return cls(
            phone_number_id=str(wa_cfg.get("phone_number_id") or ""),
            token=os.getenv(token_var, "").strip(),
            api_base_url=str(wa_cfg.get("api_base_url") or "https://graph.facebook.com/v19.0"),
            timeout=float(wa_cfg.get("timeout_seconds") or 20),
            session=session,
        )

    def _post_once(self, payload: Dict[str, Any]) -> requests.Response:
        return self.session.post(self.url, json=payload, timeout=self.timeout)

    def _send_chunk(self, to: str, body: str) -> str:
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "text",
            "text": {"preview_url": False, "body": body},
        }
        resp = self._post(payload)
        if resp.status_code >= 400:
            raise SendError(f"WhatsApp API {resp.status_code}: {resp.text[:200]}")
        try:
            messages = resp.json().get("messages") or []
        except ValueError:
            messages = []
        return str(messages[0].get("id", "")) if messages else ""

    def __call__(self, sender_key: str, text: str) -> SendResult:
        to = normalize_chat_id(sender_key)
        if not to:
            record_send(self.transport, False)
            return SendResult(ok=False, error="Empty recipient")

        message_id = None
        try:
            for chunk in split_message(text, WHATSAPP_TEXT_LIMIT):
                message_id = self._send_chunk(to, chunk)
        except (requests.RequestException, SendError) as exc:
            logger.error("Cloud API send to %s failed: %s", to, exc)
            record_send(self.transport, False)
            return SendResult(ok=False, error=str(exc))

        record_send(self.transport, True)
        return SendResult(ok=True, message_id=message_id or None)


def build_sender(config: Dict[str, Any]) -> ReplyFn:
    wa_cfg = config.get("whatsapp", {}) if isinstance(config.get("whatsapp"), dict) else {}
    transport = str(wa_cfg.get("transport") or "console").strip().lower()
    if transport == "cloud_api":
        return CloudApiSender.from_config(config)
    if transport != "console":
        logger.warning("Unknown whatsapp.transport %r; falling back to console", transport)
    return ConsoleSender()
