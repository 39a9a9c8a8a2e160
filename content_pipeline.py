# content_pipeline.py
"""
Answer generation for a question in a chosen language.

Provides:
- GroqTextGenerator (short and long mythology answers)
- SarvamSpeechSynthesizer (text -> WAV bytes)
- S3MediaUploader (bytes -> presigned, expiring URL)
- ContentPipeline (short answer + best-effort narrated audio)

The short answer is mandatory: its GenerationError propagates to the caller.
The long-answer/speech/upload branch is optional: ContentPipeline.narrate
contains its failures and reports them as a failed AudioOutcome.
"""
from __future__ import annotations

import base64
import logging
import re
import time
import uuid
from dataclasses import dataclass
from typing import Any, Optional

import boto3
import requests
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from groq import Groq, GroqError

from db_io import now_ts
from languages import language_name, speech_locale

logger = logging.getLogger("content_pipeline")

DEFAULT_GROQ_MODEL = "llama-3.3-70b-versatile"
SARVAM_TTS_URL = "https://api.sarvam.ai/text-to-speech"
SARVAM_MAX_CHARS = 1500

SHORT_SYSTEM_PROMPT = "You are an expert in Indian mythology. Provide brief, engaging 2-3 sentence explanations in {language}."
SHORT_USER_PROMPT = "Tell me about this Indian mythology topic: {question}"
LONG_SYSTEM_PROMPT = "You are an expert in Indian mythology. Provide a detailed explanation in 2-3 paragraphs in {language}, rich with context and storytelling."
LONG_USER_PROMPT = "Please provide a more detailed answer for: {question}"

class PipelineError(RuntimeError):
    """Base class for failures of an external content service."""

class GenerationError(PipelineError):
    pass

class SpeechSynthesisError(PipelineError):
    pass

class MediaUploadError(PipelineError):
    pass

@dataclass(frozen=True)
class HostedMedia:
    url: str
    expires_at: Optional[int] = None

@dataclass(frozen=True)
class AudioOutcome:
    media: Optional[HostedMedia] = None
    failure: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.media is not None

    @classmethod
    def succeeded(cls, media: HostedMedia) -> "AudioOutcome":
        return cls(media=media)

    @classmethod
    def failed(cls, reason: str) -> "AudioOutcome":
        return cls(failure=reason)

@dataclass(frozen=True)
class PipelineResult:
    short_text: str
    audio: AudioOutcome

# ---------------------------------------------------------------------------
# Text generation
# ---------------------------------------------------------------------------

class GroqTextGenerator:
    def __init__(self, api_key: Optional[str], model: str = DEFAULT_GROQ_MODEL, short_timeout: float = 25.0, long_timeout: float = 45.0, client: Any = None):
        self.model = model
        self.short_timeout = short_timeout
        self.long_timeout = long_timeout
        self._client = client
        if self._client is None and api_key:
            # one attempt per turn; the timeout is the whole budget
            self._client = Groq(api_key=api_key, max_retries=0)

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def short_answer(self, question: str, language: str) -> str:
        return self._complete(
            SHORT_SYSTEM_PROMPT.format(language=language_name(language)),
            SHORT_USER_PROMPT.format(question=question),
            temperature=0.7,
            max_tokens=200,
            timeout=self.short_timeout,
            label="short",
        )

    def long_answer(self, question: str, language: str) -> str:
        return self._complete(
            LONG_SYSTEM_PROMPT.format(language=language_name(language)),
            LONG_USER_PROMPT.format(question=question),
            temperature=0.8,
            max_tokens=600,
            timeout=self.long_timeout,
            label="long",
        )

    def _complete(self, system: str, user: str, temperature: float, max_tokens: int, timeout: float, label: str) -> str:
        if not self.enabled:
            raise GenerationError("Groq client is not configured (GROQ_API_KEY missing)")
        started = time.monotonic()
        try:
            completion = self._client.chat.completions.create(
                messages=[{"role": "system", "content": system}, {"role": "user", "content": user}],
                model=self.model,
                temperature=temperature,
                max_tokens=max_tokens,
                top_p=1,
                timeout=timeout,
            )
        except GroqError as exc:
            raise GenerationError(f"Groq {label} answer failed: {exc}") from exc
        content = completion.choices[0].message.content if completion.choices else None
        if not content or not content.strip():
            raise GenerationError(f"Groq {label} answer was empty")
        logger.info("Groq %s answer in %.1fs (%d chars)", label, time.monotonic() - started, len(content))
        return content.strip()

# ---------------------------------------------------------------------------
# Speech synthesis
# ---------------------------------------------------------------------------

def truncate_for_speech(text: str, limit: int = SARVAM_MAX_CHARS) -> str:
    """Cut text to at most `limit` chars, preferring a sentence end, then a word break."""
    text = text.strip()
    if len(text) <= limit:
        return text
    window = text[:limit]
    sentence_ends = [m.end() for m in re.finditer(r"[.!?।]\s", window + " ")]
    if sentence_ends and sentence_ends[-1] > limit // 2:
        return window[:sentence_ends[-1]].strip()
    space = window.rfind(" ")
    return (window[:space] if space > 0 else window).strip()

class SarvamSpeechSynthesizer:
    content_type = "audio/wav"

    def __init__(self, api_key: Optional[str], speaker: str = "anushka", model: str = "bulbul:v2", timeout: float = 30.0, attempts: int = 2, backoff: float = 1.0, url: str = SARVAM_TTS_URL):
        self.api_key = api_key
        self.speaker = speaker
        self.model = model
        self.timeout = timeout
        self.attempts = max(1, attempts)
        self.backoff = backoff
        self.url = url

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def supports(self, language: str) -> bool:
        return speech_locale(language) is not None

    def synthesize(self, text: str, language: str) -> bytes:
        if not self.enabled:
            raise SpeechSynthesisError("Sarvam client is not configured (SARVAM_API_KEY missing)")
        locale = speech_locale(language)
        if locale is None:
            raise SpeechSynthesisError(f"No speech voice for language {language!r}")
        payload = {"text": truncate_for_speech(text), "target_language_code": locale, "speaker": self.speaker, "model": self.model}
        headers = {"api-subscription-key": self.api_key, "Content-Type": "application/json"}

        delay = self.backoff
        last_error = "no attempt made"
        for attempt in range(1, self.attempts + 1):
            logger.info("Sarvam TTS attempt %d for %s (%d chars)", attempt, locale, len(payload["text"]))
            try:
                response = requests.post(self.url, json=payload, headers=headers, timeout=self.timeout)
            except requests.exceptions.RequestException as exc:
                last_error = f"transport error: {exc}"
                logger.warning("Sarvam TTS attempt %d failed: %s", attempt, exc)
            else:
                if response.status_code == 200:
                    return self._decode(response)
                if response.status_code == 404:
                    raise SpeechSynthesisError(f"Sarvam TTS does not support {locale}")
                last_error = f"status={response.status_code} body={response.text[:200]}"
                logger.warning("Sarvam TTS attempt %d failed: %s", attempt, last_error)
                if response.status_code != 429 and response.status_code < 500:
                    break
            if attempt < self.attempts and delay:
                time.sleep(delay)
                delay *= 2
        raise SpeechSynthesisError(f"Sarvam TTS failed after {attempt} attempt(s): {last_error}")

    @staticmethod
    def _decode(response: requests.Response) -> bytes:
        try:
            body = response.json()
            audios = body.get("audios") if isinstance(body, dict) else None
            audio = base64.b64decode(audios[0]) if isinstance(audios, list) and audios else b""
        except (ValueError, TypeError) as exc:
            raise SpeechSynthesisError(f"Sarvam TTS returned an unreadable body: {exc}") from exc
        if not audio:
            raise SpeechSynthesisError("Sarvam TTS returned no audio")
        return audio

# ---------------------------------------------------------------------------
# Media hosting
# ---------------------------------------------------------------------------

_EXTENSIONS = {"audio/wav": ".wav", "audio/mpeg": ".mp3", "audio/ogg": ".ogg"}

class S3MediaUploader:
    """Upload audio privately to S3 and hand out a presigned GET URL."""

    def __init__(self, bucket: Optional[str], region: str, prefix: str = "whatsapp_audio", expires_in: int = 3600, timeout: float = 20.0, client: Any = None):
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.expires_in = expires_in
        self._client = client
        if self._client is None and bucket:
            self._client = boto3.client("s3", region_name=region, config=Config(connect_timeout=timeout, read_timeout=timeout, retries={"max_attempts": 1}))

    @property
    def enabled(self) -> bool:
        return bool(self.bucket and self._client is not None)

    def upload(self, audio: bytes, content_type: str = "audio/wav") -> HostedMedia:
        if not self.enabled:
            raise MediaUploadError("Media bucket is not configured (MEDIA_BUCKET missing)")
        key = f"{self.prefix}/audio_{uuid.uuid4().hex}{_EXTENSIONS.get(content_type, '')}"
        try:
            self._client.put_object(Bucket=self.bucket, Key=key, Body=audio, ContentType=content_type)
            url = self._client.generate_presigned_url("get_object", Params={"Bucket": self.bucket, "Key": key}, ExpiresIn=self.expires_in)
        except (BotoCoreError, ClientError) as exc:
            raise MediaUploadError(f"S3 upload failed for {key}: {exc}") from exc
        logger.info("Uploaded %d bytes to s3://%s/%s", len(audio), self.bucket, key)
        return HostedMedia(url=url, expires_at=int(now_ts()) + self.expires_in)

# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class ContentPipeline:
    def __init__(self, generator: GroqTextGenerator, synthesizer: SarvamSpeechSynthesizer, uploader: S3MediaUploader, audio_enabled: bool = True):
        self.generator = generator
        self.synthesizer = synthesizer
        self.uploader = uploader
        self.audio_enabled = audio_enabled

    def answer(self, text: str, language: str) -> PipelineResult:
        """Short answer (raises GenerationError) plus the optional narrated audio."""
        short_text = self.generator.short_answer(text, language)
        return PipelineResult(short_text=short_text, audio=self.narrate(text, language))

    def narrate(self, text: str, language: str) -> AudioOutcome:
        if not self.audio_enabled:
            return AudioOutcome.failed("audio disabled")
        if not self.synthesizer.supports(language):
            return AudioOutcome.failed(f"no speech voice for {language}")
        try:
            long_text = self.generator.long_answer(text, language)
            audio = self.synthesizer.synthesize(long_text, language)
            media = self.uploader.upload(audio, self.synthesizer.content_type)
        except PipelineError as exc:
            logger.warning("Audio reply skipped (%s): %s", language, exc)
            return AudioOutcome.failed(str(exc))
        return AudioOutcome.succeeded(media)
