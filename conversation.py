# conversation.py
"""
Per-sender conversation state machine.

A sender has no explicit state field: no stored language means the sender is
still choosing one (menu), a stored language means questions are answered.
'help'/'menu' and the reset commands work from either state.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from pydantic import BaseModel, validator

from content_pipeline import ContentPipeline, GenerationError, PipelineResult
from db_io import PreferenceStore, PreferenceStoreError
from languages import (
    APOLOGY,
    HELP_COMMANDS,
    LANGUAGE_CLEARED,
    RESET_COMMANDS,
    help_text,
    is_supported,
    language_set_text,
    menu_prompt_text,
    normalize_command,
    resolve_selection,
)

logger = logging.getLogger("mythology.conversation")

# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class InboundMessage(BaseModel):
    sender: str
    body: str = ""

    @validator("sender")
    def require_sender(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("sender is required")
        return v

    @validator("body", pre=True)
    def default_body(cls, v):
        return v or ""

    @property
    def normalized(self) -> str:
        return normalize_command(self.body)

@dataclass
class ReplyPart:
    text: Optional[str] = None
    media_url: Optional[str] = None
    expires_at: Optional[int] = None

@dataclass
class OutboundReply:
    kind: str
    parts: List[ReplyPart] = field(default_factory=list)
    status_code: int = 200

    @classmethod
    def text(cls, kind: str, body: str, status_code: int = 200) -> "OutboundReply":
        return cls(kind=kind, parts=[ReplyPart(text=body)], status_code=status_code)

    @property
    def body_text(self) -> str:
        return "\n\n".join(part.text for part in self.parts if part.text)

def compose_answer(result: PipelineResult, link_audio: bool = True) -> OutboundReply:
    if not result.audio.ok:
        return OutboundReply.text("answer", result.short_text)
    media = result.audio.media
    if link_audio:
        body = f"{result.short_text}\n\n🔊 Listen here: {media.url}"
        return OutboundReply(kind="answer", parts=[ReplyPart(text=body, expires_at=media.expires_at)])
    return OutboundReply(kind="answer", parts=[ReplyPart(text=result.short_text), ReplyPart(media_url=media.url, expires_at=media.expires_at)])

# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

class ConversationRouter:
    def __init__(self, store: PreferenceStore, pipeline: ContentPipeline, link_audio: bool = True):
        self.store = store
        self.pipeline = pipeline
        self.link_audio = link_audio

    def handle(self, message: InboundMessage) -> OutboundReply:
        try:
            return self._route(message)
        except PreferenceStoreError:
            logger.exception("Preference store unavailable for %s", message.sender)
            return OutboundReply.text("apology", APOLOGY, status_code=500)

    def _route(self, message: InboundMessage) -> OutboundReply:
        sender = message.sender
        command = message.normalized

        if command in HELP_COMMANDS:
            return OutboundReply.text("help", help_text())

        if command in RESET_COMMANDS:
            self.store.clear(sender)
            logger.info("Language cleared for %s", sender)
            return OutboundReply.text("reset", LANGUAGE_CLEARED)

        language = self.store.get(sender)
        if language is not None and not is_supported(language):
            logger.warning("Dropping unsupported stored language %r for %s", language, sender)
            self.store.clear(sender)
            language = None

        if language is None:
            return self._select_language(sender, command)

        return self._answer(sender, message.body, language)

    def _select_language(self, sender: str, command: str) -> OutboundReply:
        code = resolve_selection(command)
        if code is None:
            return OutboundReply.text("menu", menu_prompt_text())
        self.store.set(sender, code)
        logger.info("Language set to %s for %s", code, sender)
        return OutboundReply.text("language_set", language_set_text(code))

    def _answer(self, sender: str, text: str, language: str) -> OutboundReply:
        try:
            result = self.pipeline.answer(text, language)
        except GenerationError:
            logger.exception("Short answer failed for %s (%s)", sender, language)
            return OutboundReply.text("apology", APOLOGY, status_code=500)
        if not result.audio.ok:
            logger.info("Replying text-only to %s: %s", sender, result.audio.failure)
        return compose_answer(result, self.link_audio)
