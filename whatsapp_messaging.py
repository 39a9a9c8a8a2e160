# whatsapp_messaging.py
"""
Twilio WhatsApp reply transports.

Provides:
- render_twiml (reply in the webhook response body)
- empty_twiml (bare acknowledgement for the REST transport)
- TwilioWhatsAppClient.send_reply (reply through the Messages REST API)
- DeliveryError
"""
from __future__ import annotations

import logging
from typing import Any, List, Optional

import requests
from twilio.base.exceptions import TwilioException
from twilio.rest import Client
from twilio.twiml.messaging_response import MessagingResponse

from conversation import OutboundReply

logger = logging.getLogger("whatsapp_messaging")

class DeliveryError(RuntimeError):
    pass

def render_twiml(reply: OutboundReply) -> str:
    twiml = MessagingResponse()
    for part in reply.parts:
        message = twiml.message(part.text) if part.text else twiml.message()
        if part.media_url:
            message.media(part.media_url)
    return str(twiml)

def empty_twiml() -> str:
    return str(MessagingResponse())

def whatsapp_address(number: str) -> str:
    return number if number.startswith("whatsapp:") else f"whatsapp:{number}"

class TwilioWhatsAppClient:
    def __init__(self, account_sid: Optional[str], auth_token: Optional[str], from_number: Optional[str], client: Any = None):
        self.from_number = whatsapp_address(from_number) if from_number else None
        self._client = client
        if self._client is None and account_sid and auth_token:
            self._client = Client(account_sid, auth_token)

    @property
    def enabled(self) -> bool:
        return bool(self._client is not None and self.from_number)

    def send_reply(self, to: str, reply: OutboundReply) -> List[str]:
        """Send each reply part as its own message; returns the message SIDs."""
        to = whatsapp_address(to)
        sids: List[str] = []
        for part in reply.parts:
            kwargs = {"from_": self.from_number, "to": to}
            if part.text:
                kwargs["body"] = part.text
            if part.media_url:
                kwargs["media_url"] = [part.media_url]
            if not self.enabled:
                logger.info("[dry-run] %s", kwargs)
                continue
            try:
                message = self._client.messages.create(**kwargs)
            except (TwilioException, requests.exceptions.RequestException) as exc:
                logger.exception("WhatsApp send failed - to=%s kind=%s", to, reply.kind)
                raise DeliveryError(f"Twilio send to {to} failed: {exc}") from exc
            sids.append(message.sid)
        return sids
