"""Rule-based intent detection for inbound WhatsApp messages.

Two independent checks live here:

* **Exact replies** — ``is_affirmative`` / ``is_negative`` compare the whole
  trimmed message against a small token set.  They drive the confirmation
  and cancellation flows, so "sim, quero marcar" is *not* affirmative.
* **Intent tags** — ``classify_intent`` normalises the text (lowercase, no
  accents, no punctuation) and tests ordered keyword groups.  The first
  group that matches wins, which is why "dor" is caught as ``pain`` before
  the generic fallback.  Keep the order: it is part of the behaviour.
"""

from __future__ import annotations

import re
import unicodedata
from enum import Enum


class Intent(str, Enum):
    GREETING = "greeting"
    PRICE = "price"
    PAIN = "pain"
    ORTHO = "ortho"
    DENT = "dent"
    HOF = "hof"
    SCHEDULE = "agendar"
    UNSCHEDULE = "desagendar"
    CONFIRM = "confirm"
    DENY = "deny"
    FALLBACK = "fallback"


AFFIRMATIVE_REPLIES = frozenset({"sim", "s", "claro", "pode", "confirmo"})
NEGATIVE_REPLIES = frozenset(
    {"nao", "não", "n", "depois", "cancelar", "cancela", "agora não", "agora nao"}
)
CANCEL_KEYWORD = "cancelar"

_INTENT_PATTERNS: list[tuple[Intent, re.Pattern[str]]] = [
    (Intent.GREETING, re.compile(r"\b(oi|ola|olá|bom dia|boa tarde|boa noite|tudo bem)\b")),
    (Intent.PRICE, re.compile(r"\b(preco|valor|quanto|custa|orcamento|orçamento)\b")),
    (Intent.PAIN, re.compile(r"\b(dor|doendo|inflamado|urgente|sangrando|nao aguento)\b")),
    (Intent.ORTHO, re.compile(r"\b(aparelho|alinhador|invisalign|mordida|ortodont)\b")),
    (
        Intent.DENT,
        re.compile(r"\b(clareamento|restaur|lente|limpeza|tartaro|canal|estetic|estética)\b"),
    ),
    (Intent.HOF, re.compile(r"\b(botox|preenchimento|fio|harmoniza|harmonização)\b")),
    (
        Intent.SCHEDULE,
        re.compile(r"\b(agendar|consulta|horario|marcar|agenda|disponivel|disponível)\b"),
    ),
    (Intent.UNSCHEDULE, re.compile(r"\b(cancelar|remarcar|reagendar|desmarcar)\b")),
    (Intent.CONFIRM, re.compile(r"\b(sim|claro|pode|quero)\b")),
    (Intent.DENY, re.compile(r"\b(nao|não|depois|outra hora|agora nao|agora não)\b")),
]


def normalize_for_intent(text: str | None) -> str:
    """Lowercase, strip accents and punctuation, collapse whitespace."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", str(text).lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    stripped = re.sub(r"[^\w\s]", " ", stripped)
    return re.sub(r"\s+", " ", stripped).strip()


def classify_intent(text: str | None) -> Intent:
    """Return the first matching intent tag, or ``Intent.FALLBACK``."""
    normalized = normalize_for_intent(text)
    for intent, pattern in _INTENT_PATTERNS:
        if pattern.search(normalized):
            return intent
    return Intent.FALLBACK


def _plain(text: str | None) -> str:
    return str(text or "").lower().strip()


def is_affirmative(text: str | None) -> bool:
    return _plain(text) in AFFIRMATIVE_REPLIES


def is_negative(text: str | None) -> bool:
    return _plain(text) in NEGATIVE_REPLIES


def wants_to_cancel(text: str | None) -> bool:
    """True when the message mentions ``cancelar`` anywhere."""
    return CANCEL_KEYWORD in _plain(text)
