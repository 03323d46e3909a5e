"""
Deterministic conversion of colloquial pt-BR amounts and dates.

Extractors only point at fragments of the user's message ("5 mil",
"amanhã", "dia 10"). Turning a fragment into a Decimal or a date always
happens here, so every stored value can be traced back to user text plus
one of these rules. Anything that cannot be converted unambiguously raises
AmbiguousValue carrying the clarifying question to ask.
"""

import re
import unicodedata
from datetime import date, timedelta
from decimal import Decimal

from finscope.errors import AmbiguousValue
from finscope.intake.messages import format_brl

CENTS = Decimal("0.01")

MULTIPLIERS = {
    "k": 1000,
    "mil": 1000,
    "mi": 1_000_000,
    "milhao": 1_000_000,
    "milhoes": 1_000_000,
}

MONTHS = {
    "janeiro": 1,
    "fevereiro": 2,
    "marco": 3,
    "abril": 4,
    "maio": 5,
    "junho": 6,
    "julho": 7,
    "agosto": 8,
    "setembro": 9,
    "outubro": 10,
    "novembro": 11,
    "dezembro": 12,
}

RELATIVE_DAYS = {
    "depois de amanha": 2,
    "amanha": 1,
    "hoje": 0,
    "ontem": -1,
    "anteontem": -2,
}

AMOUNT_RE = re.compile(
    r"(?<![\w/.,:-])(?:r\$\s*)?(?P<number>\d+(?:[.,]\d+)*)"
    r"(?:\s*(?P<mult>k|mil|milhao|milhoes|mi)\b)?"
    r"(?:\s*(?:reais|real|contos?|pilas?)\b)?"
    r"(?![\w%/:])(?!\s*(?:vezes|parcelas)\b)"
)

DATE_PATTERNS = [
    ("iso", re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")),
    (
        "named",
        re.compile(
            r"\b(?:dia\s+)?(\d{1,2})\s+de\s+(" + "|".join(MONTHS) + r")(?:\s+de\s+(\d{4}))?\b"
        ),
    ),
    ("numeric", re.compile(r"\b(\d{1,2})/(\d{1,2})(?:/(\d{4}|\d{2}))?\b")),
    ("day", re.compile(r"\bdia\s+(\d{1,2})\b")),
    ("relative", re.compile(r"\b(depois de amanha|anteontem|amanha|hoje|ontem)\b")),
]

# a lone day number is only read as a date when the date was asked for
BARE_DAY_RE = re.compile(r"\d{1,2}")

VAGUE_DATE_RE = re.compile(
    r"\b(semana passada|semana que vem|proxima semana|mes passado|mes que vem|"
    r"proximo mes|outro dia|esses dias|um dia desses|fim do mes|final do mes|"
    r"ano passado|ano que vem)\b"
)

AMOUNT_QUESTION = "Qual é o valor exato? Pode mandar só o número (ex.: 150 ou 1.500,00)."
DATE_QUESTION = "Não entendi a data. Pode mandar no formato dd/mm (ex.: 15/10)?"


def fold(text: str) -> str:
    """Lower-case and strip accents, keeping exactly one char per input char."""
    return "".join(unicodedata.normalize("NFD", ch)[0].lower()[0] for ch in text)


def _date_matches(folded: str) -> list[tuple[int, int, str, re.Match]]:
    taken: list[tuple[int, int, str, re.Match]] = []
    for kind, pattern in DATE_PATTERNS:
        for match in pattern.finditer(folded):
            start, end = match.span()
            if any(start < t_end and t_start < end for t_start, t_end, _, _ in taken):
                continue
            taken.append((start, end, kind, match))
    return sorted(taken, key=lambda item: item[0])


def _mask_dates(folded: str) -> str:
    masked = folded
    for start, end, _, _ in _date_matches(folded):
        masked = masked[:start] + " " * (end - start) + masked[end:]
    return masked


def _amount_spans(folded: str) -> list[tuple[int, int]]:
    return [m.span() for m in AMOUNT_RE.finditer(_mask_dates(folded))]


def _covering(text: str, spans) -> str | None:
    if not spans:
        return None
    start = min(s for s, _ in spans)
    end = max(e for _, e in spans)
    return text[start:end].strip()


def find_amount_fragment(text: str) -> str | None:
    """Smallest slice of text that covers every amount mention."""
    return _covering(text, _amount_spans(fold(text)))


def find_date_fragment(text: str) -> str | None:
    """Smallest slice of text covering every date mention, or a vague date phrase."""
    folded = fold(text)
    spans = [(start, end) for start, end, _, _ in _date_matches(folded)]
    if not spans:
        vague = VAGUE_DATE_RE.search(folded)
        if vague:
            spans = [vague.span()]
    return _covering(text, spans)


def _to_decimal(raw: str) -> Decimal:
    if "," in raw and "." in raw:
        decimal_sep = "," if raw.rfind(",") > raw.rfind(".") else "."
        thousands = "." if decimal_sep == "," else ","
        head, _, tail = raw.rpartition(decimal_sep)
        groups = head.split(thousands)
        if any(len(group) != 3 for group in groups[1:]) or decimal_sep in head:
            raise AmbiguousValue("amount", AMOUNT_QUESTION)
        return Decimal("".join(groups) + "." + tail)

    for sep in (",", "."):
        if sep not in raw:
            continue
        parts = raw.split(sep)
        if len(parts) > 2:
            if any(len(part) != 3 for part in parts[1:]):
                raise AmbiguousValue("amount", AMOUNT_QUESTION)
            return Decimal("".join(parts))
        head, tail = parts
        if len(tail) in (1, 2):
            return Decimal(f"{head}.{tail}")
        if len(tail) == 3 and sep == ".":
            # "2.500" is how thousands are written in pt-BR
            return Decimal(head + tail)
        if len(tail) == 3:
            low = Decimal(f"{head}.{tail}")
            high = Decimal(head + tail)
            raise AmbiguousValue(
                "amount",
                f"Você quis dizer {format_brl(low)} ou {format_brl(high)}?",
            )
        raise AmbiguousValue("amount", AMOUNT_QUESTION)

    return Decimal(raw)


def parse_amount(fragment: str) -> Decimal:
    """Convert an amount fragment ("5 mil", "R$ 2.500,50", "300 reais") to Decimal."""
    values = set()
    for match in AMOUNT_RE.finditer(_mask_dates(fold(fragment))):
        value = _to_decimal(match.group("number"))
        multiplier = match.group("mult")
        if multiplier:
            value *= MULTIPLIERS[multiplier]
        values.add(value.quantize(CENTS))

    if not values:
        raise AmbiguousValue("amount", AMOUNT_QUESTION)
    if len(values) > 1:
        listed = " ou ".join(format_brl(v) for v in sorted(values))
        raise AmbiguousValue("amount", f"Encontrei mais de um valor ({listed}). Qual deles é o certo?")

    value = values.pop()
    if value <= 0:
        raise AmbiguousValue("amount", "O valor precisa ser maior que zero. Qual é o valor?")
    return value


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def _build(year: int, month: int, day: int) -> date:
    try:
        return date(year, month, day)
    except ValueError:
        raise AmbiguousValue("date", f"A data {day:02d}/{month:02d} não existe. Qual é o dia certo?")


def _day_of_month(day: int, today: date, prefer_past: bool) -> date:
    if not 1 <= day <= 31:
        raise AmbiguousValue("date", f"O dia {day} não existe. Qual é o dia certo?")
    step = -1 if prefer_past else 1
    for offset in range(13):
        year, month = _shift_month(today.year, today.month, offset * step)
        try:
            candidate = date(year, month, day)
        except ValueError:
            continue
        if (prefer_past and candidate <= today) or (not prefer_past and candidate >= today):
            return candidate
    raise AmbiguousValue("date", DATE_QUESTION)


def _day_and_month(day: int, month: int, today: date, prefer_past: bool) -> date:
    if not 1 <= month <= 12:
        raise AmbiguousValue("date", f"O mês {month} não existe. Qual é a data certa?")
    candidate = _build(today.year, month, day)
    if prefer_past and candidate > today:
        return _build(today.year - 1, month, day)
    if not prefer_past and candidate < today:
        return _build(today.year + 1, month, day)
    return candidate


def _resolve(kind: str, match: re.Match, today: date, prefer_past: bool) -> date:
    if kind == "relative":
        return today + timedelta(days=RELATIVE_DAYS[match.group(1)])
    if kind == "iso":
        return _build(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    if kind == "day":
        return _day_of_month(int(match.group(1)), today, prefer_past)

    day = int(match.group(1))
    if kind == "named":
        month = MONTHS[match.group(2)]
    else:
        month = int(match.group(2))
    year = match.group(3)
    if year is None:
        return _day_and_month(day, month, today, prefer_past)
    year = int(year)
    if year < 100:
        year += 2000
    return _build(year, month, day)


def parse_date(fragment: str, today: date, prefer_past: bool = False) -> date:
    """Convert a date fragment relative to `today`.

    A lone number ("15") is a day of the month. Dates without a year
    ("dia 10", "15/10", "15") resolve to the next occurrence, or the most
    recent one when prefer_past is set (things already paid or received).
    """
    folded = fold(fragment)
    matches = _date_matches(folded)
    if not matches:
        if BARE_DAY_RE.fullmatch(folded.strip()):
            return _day_of_month(int(folded.strip()), today, prefer_past)
        if VAGUE_DATE_RE.search(folded):
            raise AmbiguousValue("date", "Qual foi o dia exato? Pode mandar no formato dd/mm.")
        raise AmbiguousValue("date", DATE_QUESTION)

    values = {_resolve(kind, match, today, prefer_past) for _, _, kind, match in matches}
    if len(values) > 1:
        raise AmbiguousValue("date", "Você mencionou mais de uma data. Qual delas vale?")
    return values.pop()
