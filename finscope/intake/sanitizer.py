import re
import unicodedata

REDACTION_MARKER = "[blocked]"
MAX_INPUT_LENGTH = 500

BLOCKED_PHRASES = (
    "ignore previous instructions",
    "reveal your prompt",
    "system prompt",
    "act as",
    "pretend",
    "bypass",
    "ignore as instruções anteriores",
    "revele seu prompt",
    "esqueça tudo",
    "novas instruções",
)

INJECTION_PATTERNS = [
    re.compile(r"ignore\s+(instruções|instrucoes|previous|anteriores|tudo)", re.IGNORECASE),
    re.compile(r"revele?\s+(seu\s+)?prompt", re.IGNORECASE),
    re.compile(r"finja\s+que\s+(você\s+)?[ée]", re.IGNORECASE),
    re.compile(r"você\s+agora\s+[ée]", re.IGNORECASE),
    re.compile(r"esqueça\s+(tudo|instruções|instrucoes)", re.IGNORECASE),
    re.compile(r"system\s*:\s*", re.IGNORECASE),
    re.compile(r"assistant\s*:\s*", re.IGNORECASE),
    re.compile(r"new\s+instructions", re.IGNORECASE),
    re.compile(r"desconsidera?\s+(as\s+)?regras", re.IGNORECASE),
    re.compile(r"não\s+siga\s+as\s+regras", re.IGNORECASE),
]


def sanitize_user_input(text: str, max_length: int = MAX_INPUT_LENGTH) -> str:
    """Normalize raw user text before it reaches extraction.

    The result is lower-cased. Known injection phrases are replaced by
    REDACTION_MARKER rather than dropped, so attempts stay visible in logs.
    """
    safe = unicodedata.normalize("NFC", text or "").lower()

    for phrase in BLOCKED_PHRASES:
        if phrase in safe:
            safe = safe.replace(phrase, REDACTION_MARKER)

    if len(safe) > max_length:
        safe = safe[:max_length]

    return safe.strip()


def detect_injection(text: str) -> str | None:
    """Return the first injection pattern found in the raw text, if any."""
    normalized = unicodedata.normalize("NFC", text or "")
    for pattern in INJECTION_PATTERNS:
        match = pattern.search(normalized)
        if match:
            return match.group(0)
    return None


def is_redacted(text: str) -> bool:
    return REDACTION_MARKER in text
