# chatbot.py
"""
Indian mythology WhatsApp bot (Twilio webhook).

- Users pick a reply language from a numbered menu; the choice is kept per sender.
- Questions get a short Groq answer plus, when everything succeeds, a narrated
  long answer (Sarvam TTS) hosted on S3 behind a one-hour presigned URL.
- Replies go back as TwiML in the webhook response (REPLY_TRANSPORT=twiml) or
  through the Twilio Messages API (REPLY_TRANSPORT=rest).
- Integrates with:
    - languages.py (menu, help text, supported languages)
    - db_io.py (preference stores: memory, JSON file, DynamoDB)
    - content_pipeline.py (Groq, Sarvam, S3)
    - conversation.py (ConversationRouter)
    - whatsapp_messaging.py (TwiML rendering, TwilioWhatsAppClient)
"""
from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI, Form, HTTPException
from fastapi.responses import PlainTextResponse, Response
from mangum import Mangum
from pydantic import ValidationError

from content_pipeline import ContentPipeline, GroqTextGenerator, S3MediaUploader, SarvamSpeechSynthesizer
from conversation import ConversationRouter, InboundMessage
from db_io import build_preference_store
from whatsapp_messaging import DeliveryError, TwilioWhatsAppClient, empty_twiml, render_twiml

load_dotenv()

# --- Configuration & logging ---
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger("mythology.chatbot")

app = FastAPI(title="Indian Mythology WhatsApp Bot", version="1.0.0")
_lambda_adapter = Mangum(app)

def env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}

# Environment / defaults
GROQ_API_KEY = os.getenv("GROQ_API_KEY")
GROQ_MODEL = os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")
SHORT_ANSWER_TIMEOUT = float(os.getenv("SHORT_ANSWER_TIMEOUT", "25"))
LONG_ANSWER_TIMEOUT = float(os.getenv("LONG_ANSWER_TIMEOUT", "45"))
SARVAM_API_KEY = os.getenv("SARVAM_API_KEY")
SARVAM_SPEAKER = os.getenv("SARVAM_SPEAKER", "anushka")
SARVAM_MODEL = os.getenv("SARVAM_MODEL", "bulbul:v2")
TTS_TIMEOUT = float(os.getenv("TTS_TIMEOUT", "30"))
TTS_ATTEMPTS = int(os.getenv("TTS_ATTEMPTS", "2"))
AUDIO_ENABLED = env_flag("AUDIO_ENABLED", True)
AUDIO_AS_LINK = env_flag("AUDIO_AS_LINK", True)
MEDIA_BUCKET = os.getenv("MEDIA_BUCKET")
MEDIA_PREFIX = os.getenv("MEDIA_PREFIX", "whatsapp_audio")
MEDIA_URL_EXPIRY = int(os.getenv("MEDIA_URL_EXPIRY", "3600"))
AWS_REGION = os.getenv("AWS_REGION", "ap-south-1")
PREFERENCE_BACKEND = os.getenv("PREFERENCE_BACKEND", "file")
PREFERENCE_DB_PATH = os.getenv("PREFERENCE_DB_PATH")
PREFERENCE_TABLE_NAME = os.getenv("PREFERENCE_TABLE_NAME", "user_language_preferences")
REPLY_TRANSPORT = os.getenv("REPLY_TRANSPORT", "twiml").strip().lower()
TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
TWILIO_WHATSAPP_NUMBER = os.getenv("TWILIO_WHATSAPP_NUMBER")

if REPLY_TRANSPORT not in {"twiml", "rest"}:
    raise ValueError(f"REPLY_TRANSPORT must be 'twiml' or 'rest', got {REPLY_TRANSPORT!r}")

# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

preference_store = build_preference_store(PREFERENCE_BACKEND, PREFERENCE_DB_PATH, PREFERENCE_TABLE_NAME, AWS_REGION)

text_generator = GroqTextGenerator(GROQ_API_KEY, GROQ_MODEL, SHORT_ANSWER_TIMEOUT, LONG_ANSWER_TIMEOUT)
speech_synthesizer = SarvamSpeechSynthesizer(SARVAM_API_KEY, SARVAM_SPEAKER, SARVAM_MODEL, TTS_TIMEOUT, TTS_ATTEMPTS)
media_uploader = S3MediaUploader(MEDIA_BUCKET, AWS_REGION, MEDIA_PREFIX, MEDIA_URL_EXPIRY)
pipeline = ContentPipeline(text_generator, speech_synthesizer, media_uploader, audio_enabled=AUDIO_ENABLED)

router = ConversationRouter(preference_store, pipeline, link_audio=AUDIO_AS_LINK)
messenger = TwilioWhatsAppClient(TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_WHATSAPP_NUMBER)

logger.info(
    "Bot configured: transport=%s preferences=%s llm=%s tts=%s media_bucket=%s",
    REPLY_TRANSPORT, preference_store.backend, text_generator.enabled, speech_synthesizer.enabled, bool(MEDIA_BUCKET),
)
if not text_generator.enabled:
    logger.warning("GROQ_API_KEY is not set; every question will get the apology reply")

# ---------------------------------------------------------------------------
# Webhook endpoints
# ---------------------------------------------------------------------------

def xml_response(content: str, status_code: int = 200) -> Response:
    return Response(content=content, media_type="text/xml", status_code=status_code)

@app.get("/webhook")
def webhook_probe():
    return PlainTextResponse("WhatsApp bot running")

@app.post("/webhook")
def receive_webhook(sender: str = Form(default="", alias="From"), body: str = Form(default="", alias="Body")):
    try:
        message = InboundMessage(sender=sender, body=body)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Missing sender")

    reply = router.handle(message)
    logger.info("Reply to %s: kind=%s parts=%d status=%d", message.sender, reply.kind, len(reply.parts), reply.status_code)

    if REPLY_TRANSPORT == "rest":
        try:
            messenger.send_reply(message.sender, reply)
        except DeliveryError:
            return xml_response(empty_twiml(), status_code=502)
        return xml_response(empty_twiml(), status_code=reply.status_code)
    return xml_response(render_twiml(reply), status_code=reply.status_code)

@app.get("/healthz")
def healthcheck():
    return {
        "status": "ok",
        "transport": REPLY_TRANSPORT,
        "preference_backend": preference_store.backend,
        "llm_enabled": text_generator.enabled,
        "tts_enabled": speech_synthesizer.enabled and media_uploader.enabled and AUDIO_ENABLED,
        "twilio_rest_enabled": messenger.enabled,
    }

# ---------------------------------------------------------------------------
# Local runner
# ---------------------------------------------------------------------------

def run():
    import uvicorn
    uvicorn.run("chatbot:app", host="0.0.0.0", port=int(os.environ.get("PORT", 8000)), reload=bool(int(os.environ.get("RELOAD", "0"))))

def lambda_handler(event, context):
    return _lambda_adapter(event, context)

if __name__ == "__main__":
    run()
