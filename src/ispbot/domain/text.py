"""Deterministic text matching for the menu-driven dialogue.

NO NLP. Intent is decided by exact tokens, prefixes and substrings over the
normalized text (accents stripped, lowercased, trimmed).
Security: NEVER log raw text (PII).
"""

import re
import unicodedata

MENU_COMMAND = "8"

# Exact greetings, also accepted as a prefix followed by punctuation or space
GREETINGS: tuple[str, ...] = (
    "oi",
    "oie",
    "oii",
    "oiii",
    "ola",
    "olaa",
    "olaaa",
    "bom dia",
    "bomdia",
    "boa tarde",
    "boatarde",
    "boa noite",
    "boanoite",
)
_GREETING_SEPARATORS = (" ", ".", ",", "!", "?")

# Acknowledgements and small talk the bot must not answer
FILLER_TOKENS: frozenset[str] = frozenset(
    {
        "tchau",
        "obrigado",
        "obrigada",
        "valeu",
        "ok",
        "okay",
        "entendi",
        "beleza",
        "sim",
        "nao",
        "claro",
        "perfeito",
        "otimo",
        "haha",
        "kkk",
        "rs",
        "👍",
        "😊",
        "👍🏻",
        "ok obrigado",
        "ok obrigada",
        "tudo bem",
        "tudo certo",
        "de nada",
        "disponha",
        "por nada",
    }
)

# Phrases meaning the customer wants a person, not the bot
HUMAN_NEEDED_PHRASES: tuple[str, ...] = (
    "preciso falar",
    "quero conversar",
    "tenho duvida",
    "nao entendi",
    "preciso ajuda",
    "preciso de ajuda",
    "atendente",
    "falar com alguem",
)

_DIGIT = re.compile(r"[0-9]")


def normalize_text(text: str | None) -> str:
    """Decompose, strip combining marks (accents), lowercase and trim."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.lower().strip()


def extract_digits(text: str | None) -> str:
    """All ASCII digits of text, in order ("123.456.789-09" -> "12345678909")."""
    if not text:
        return ""
    return "".join(_DIGIT.findall(text))


def is_menu_command(normalized: str) -> bool:
    """Literal "8" or any text containing "menu"."""
    return normalized == MENU_COMMAND or "menu" in normalized


def is_greeting(normalized: str) -> bool:
    """Greeting token alone, or at the start followed by a separator."""
    if not normalized:
        return False
    if normalized in GREETINGS:
        return True
    return any(
        normalized.startswith(greeting + sep)
        for greeting in GREETINGS
        for sep in _GREETING_SEPARATORS
    )


def is_filler(normalized: str) -> bool:
    return normalized in FILLER_TOKENS


def needs_human(normalized: str) -> bool:
    return any(phrase in normalized for phrase in HUMAN_NEEDED_PHRASES)


def mentions(normalized: str, keyword: str) -> bool:
    """Substring match, e.g. mentions("quero pagar no pix", "pix")."""
    return keyword in normalized
