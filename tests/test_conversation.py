import pytest
from pydantic import ValidationError

from conftest import FakeGenerator, FakeSynthesizer, FakeUploader
from content_pipeline import AudioOutcome, ContentPipeline, GenerationError, HostedMedia, PipelineResult, SpeechSynthesisError
from conversation import ConversationRouter, InboundMessage, compose_answer
from db_io import InMemoryPreferenceStore, PreferenceStoreError
from languages import APOLOGY, LANGUAGE_CLEARED, LANGUAGES, help_text, menu_prompt_text


def send(router, body, sender="U1"):
    return router.handle(InboundMessage(sender=sender, body=body))


@pytest.mark.parametrize("body", ["help", "menu", "  HELP ", "Menu\n"])
def test_help_without_preference_does_not_create_one(router, store, body):
    reply = send(router, body)
    assert reply.kind == "help"
    assert reply.body_text == help_text()
    assert store.get("U1") is None


def test_help_with_preference_keeps_it(router, store, generator):
    store.set("U1", "ta")
    assert send(router, "help").kind == "help"
    assert store.get("U1") == "ta"
    assert generator.calls == []


@pytest.mark.parametrize("body", ["reset", "change language", "Reset Language  "])
def test_reset_clears_and_is_idempotent(router, store, body):
    store.set("U1", "ta")
    first = send(router, body)
    second = send(router, body)
    assert first.body_text == second.body_text == LANGUAGE_CLEARED
    assert store.get("U1") is None


def test_numeric_selection_sets_language(router, store, generator):
    reply = send(router, "3")
    assert reply.kind == "language_set"
    assert reply.body_text == "Language set to Tamil"
    assert store.get("U1") == "ta"
    # same text again is now a question, not a selection
    again = send(router, "3")
    assert again.kind == "answer"
    assert generator.calls[0] == ("short", "3", "ta")
    assert store.get("U1") == "ta"


@pytest.mark.parametrize("index", range(1, len(LANGUAGES) + 1))
def test_every_menu_index_selects_its_language(store, pipeline, index):
    router = ConversationRouter(store, pipeline)
    send(router, str(index), sender=f"U{index}")
    assert store.get(f"U{index}") == LANGUAGES[index - 1].code


@pytest.mark.parametrize("body", ["Tell me about Hanuman", "0", "16", "99", "", "3.0", "²", "①"])
def test_invalid_selection_shows_identical_menu(router, store, body):
    first = send(router, body)
    second = send(router, body)
    assert first.kind == "menu"
    assert first.body_text == second.body_text == menu_prompt_text()
    assert store.get("U1") is None


def test_free_form_text_never_mutates_preference(router, store):
    store.set("U1", "ta")
    reply = send(router, "Tell me about Hanuman")
    assert reply.kind == "answer"
    assert reply.status_code == 200
    assert store.get("U1") == "ta"


def test_answer_includes_audio_link(router, store):
    store.set("U1", "ta")
    reply = send(router, "Tell me about Hanuman")
    assert len(reply.parts) == 1
    assert reply.parts[0].text.startswith("Short answer about Tell me about Hanuman in ta")
    assert "🔊 Listen here: https://media.example.com/" in reply.parts[0].text
    assert reply.parts[0].expires_at == 1700003600


def test_audio_failure_degrades_to_short_text(store):
    generator = FakeGenerator(long_error=GenerationError("long answer timed out"))
    router = ConversationRouter(store, ContentPipeline(generator, FakeSynthesizer(), FakeUploader()))
    store.set("U1", "ta")
    reply = send(router, "Tell me about Hanuman")
    assert reply.status_code == 200
    assert reply.body_text == "Short answer about Tell me about Hanuman in ta"
    assert generator.calls[0] == ("short", "Tell me about Hanuman", "ta")


def test_tts_failure_degrades_to_short_text(store):
    router = ConversationRouter(store, ContentPipeline(FakeGenerator(), FakeSynthesizer(error=SpeechSynthesisError("down")), FakeUploader()))
    store.set("U1", "hi")
    reply = send(router, "Who is Arjuna?")
    assert [part.media_url for part in reply.parts] == [None]
    assert "Listen here" not in reply.body_text


def test_short_answer_failure_returns_apology(store):
    generator = FakeGenerator(short_error=GenerationError("timeout"))
    router = ConversationRouter(store, ContentPipeline(generator, FakeSynthesizer(), FakeUploader()))
    store.set("U1", "ta")
    reply = send(router, "Tell me about Hanuman")
    assert reply.kind == "apology"
    assert reply.status_code == 500
    assert reply.body_text == APOLOGY
    assert store.get("U1") == "ta"


def test_reset_then_question_shows_menu(router, store, generator):
    store.set("U1", "ta")
    send(router, "reset")
    reply = send(router, "Tell me about Hanuman")
    assert reply.kind == "menu"
    assert generator.calls == []


def test_senders_do_not_share_state(router, store):
    send(router, "2", sender="U1")
    assert send(router, "Tell me about Shiva", sender="U2").kind == "menu"
    assert store.get("U1") == "hi"


def test_stale_stored_language_is_dropped(router, store):
    store._languages["U1"] = "xx"
    reply = send(router, "Tell me about Ganesha")
    assert reply.kind == "menu"
    assert store.get("U1") is None


def test_inbound_message_requires_sender():
    with pytest.raises(ValidationError):
        InboundMessage(sender="  ", body="help")
    assert InboundMessage(sender="U1", body=None).body == ""


def test_compose_answer_as_separate_media_message():
    media = HostedMedia(url="https://cdn.example.com/a.wav", expires_at=42)
    reply = compose_answer(PipelineResult("Short", AudioOutcome.succeeded(media)), link_audio=False)
    assert [(p.text, p.media_url) for p in reply.parts] == [("Short", None), (None, "https://cdn.example.com/a.wav")]
    assert reply.parts[1].expires_at == 42


def test_compose_answer_without_audio():
    reply = compose_answer(PipelineResult("Short", AudioOutcome.failed("boom")))
    assert reply.body_text == "Short"
    assert len(reply.parts) == 1


class UnavailableStore(InMemoryPreferenceStore):
    def get(self, sender):
        raise PreferenceStoreError("table unreachable")


def test_store_failure_returns_apology(pipeline, generator):
    router = ConversationRouter(UnavailableStore(), pipeline)
    reply = send(router, "Tell me about Hanuman")
    assert reply.kind == "apology"
    assert reply.status_code == 500
    assert reply.body_text == APOLOGY
    assert generator.calls == []
