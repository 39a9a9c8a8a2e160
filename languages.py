# languages.py
"""
Supported reply languages and the numbered language menu.

Menu indices are 1-based and follow the declaration order of LANGUAGES, so
the rendered menu and resolve_selection always agree.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class Language:
    code: str
    name: str
    speech_locale: Optional[str] = None  # None when no TTS voice exists


LANGUAGES: Tuple[Language, ...] = (
    Language("en", "English", "en-IN"),
    Language("hi", "Hindi", "hi-IN"),
    Language("ta", "Tamil", "ta-IN"),
    Language("bn", "Bengali", "bn-IN"),
    Language("mr", "Marathi", "mr-IN"),
    Language("ml", "Malayalam", "ml-IN"),
    Language("te", "Telugu", "te-IN"),
    Language("pa", "Punjabi", "pa-IN"),
    Language("gu", "Gujarati", "gu-IN"),
    Language("kn", "Kannada", "kn-IN"),
    Language("or", "Odia", "od-IN"),
    Language("ur", "Urdu"),
    Language("as", "Assamese"),
    Language("ne", "Nepali"),
    Language("sa", "Sanskrit"),
)

DEFAULT_LANGUAGE = "en"

_BY_CODE: Dict[str, Language] = {lang.code: lang for lang in LANGUAGES}

HELP_COMMANDS = {"help", "menu"}
RESET_COMMANDS = {"change language", "reset", "reset language"}

LANGUAGE_SET = "Language set to {name}"
LANGUAGE_CLEARED = "Language cleared. Please select a new language."
APOLOGY = "Sorry, something went wrong. Please try again later."
MENU_PROMPT = "Please select your language by replying with the number:"


def normalize_command(text: Optional[str]) -> str:
    return (text or "").strip().lower()


def is_supported(code: Optional[str]) -> bool:
    return code in _BY_CODE


def get_language(code: str) -> Language:
    try:
        return _BY_CODE[code]
    except KeyError:
        raise ValueError(f"Unsupported language code: {code!r}") from None


def language_name(code: str) -> str:
    return get_language(code).name


def speech_locale(code: str) -> Optional[str]:
    return get_language(code).speech_locale


def render_menu() -> str:
    return "\n".join(f"{idx}. {lang.name}" for idx, lang in enumerate(LANGUAGES, start=1))


def resolve_selection(raw_text: Optional[str]) -> Optional[str]:
    """Map a numeric menu reply to a language code, or None if it is not one."""
    candidate = (raw_text or "").strip()
    if not candidate.isdecimal():
        return None
    index = int(candidate)
    if 1 <= index <= len(LANGUAGES):
        return LANGUAGES[index - 1].code
    return None


def menu_prompt_text() -> str:
    return f"{MENU_PROMPT}\n{render_menu()}"


def help_text() -> str:
    return (
        "Welcome to the Indian Mythology Bot!\n"
        "- Select language by number:\n"
        f"{render_menu()}\n"
        "- Ask any question to get answers in your language.\n"
        "- Type 'change language' to switch.\n"
        "- Type 'help' to see this message."
    )


def language_set_text(code: str) -> str:
    return LANGUAGE_SET.format(name=language_name(code))
