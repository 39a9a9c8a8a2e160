import os

# chatbot.py wires its collaborators at import time
os.environ.setdefault("PREFERENCE_BACKEND", "memory")
os.environ.setdefault("REPLY_TRANSPORT", "twiml")

import pytest

from content_pipeline import ContentPipeline, HostedMedia
from conversation import ConversationRouter
from db_io import InMemoryPreferenceStore


class FakeGenerator:
    def __init__(self, short_error=None, long_error=None):
        self.short_error = short_error
        self.long_error = long_error
        self.calls = []

    @property
    def enabled(self):
        return True

    def short_answer(self, question, language):
        self.calls.append(("short", question, language))
        if self.short_error:
            raise self.short_error
        return f"Short answer about {question} in {language}"

    def long_answer(self, question, language):
        self.calls.append(("long", question, language))
        if self.long_error:
            raise self.long_error
        return f"Long story about {question} in {language}"


class FakeSynthesizer:
    content_type = "audio/wav"

    def __init__(self, error=None):
        self.error = error
        self.calls = []

    @property
    def enabled(self):
        return True

    def supports(self, language):
        return language in {"en", "hi", "ta"}

    def synthesize(self, text, language):
        self.calls.append((text, language))
        if self.error:
            raise self.error
        return b"RIFF-audio"


class FakeUploader:
    def __init__(self, error=None):
        self.error = error
        self.uploads = []

    @property
    def enabled(self):
        return True

    def upload(self, audio, content_type="audio/wav"):
        self.uploads.append((audio, content_type))
        if self.error:
            raise self.error
        return HostedMedia(url="https://media.example.com/audio_1.wav?sig=abc", expires_at=1700003600)


@pytest.fixture
def store():
    return InMemoryPreferenceStore()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def pipeline(generator, synthesizer, uploader):
    return ContentPipeline(generator, synthesizer, uploader)


@pytest.fixture
def router(store, pipeline):
    return ConversationRouter(store, pipeline, link_audio=True)


