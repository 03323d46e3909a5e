import re

from finscope.intake.parsing import BARE_DAY_RE, MONTHS, find_amount_fragment, find_date_fragment, fold
from finscope.intake.sanitizer import REDACTION_MARKER
from finscope.models.schemas import ConversationState, Extraction

# Checked in order: a goal mentioning "pagar" is still a goal, "pagar" alone is a bill.
KIND_PATTERNS = [
    (
        "goal",
        re.compile(
            r"\b(?:meta|metas|objetivo|juntar|guardar|economizar|poupar|"
            r"quero viajar|quero trocar|quero comprar)\b"
        ),
    ),
    (
        "bill",
        re.compile(
            r"\b(?:preciso pagar|tenho que pagar|vou pagar|pagar|vence|vencimento|"
            r"boleto|fatura|conta futura|agendar)\b"
        ),
    ),
    (
        "income",
        re.compile(
            r"\b(?:recebi|receber|ganhei|entrou|entrada|receita|recebimento|"
            r"vendi|faturei|me pagaram)\b"
        ),
    ),
    ("expense", re.compile(r"\b(?:gastei|gasto|gastos|paguei|comprei|despesa|saida|saiu|torrei)\b")),
]

# Bare nouns only count as a kind when answering "which kind is it?"
KIND_ANSWERS = [
    ("bill", re.compile(r"\b(?:conta|contas)\b")),
    ("goal", re.compile(r"\b(?:sonho|plano)\b")),
]

# Business vocabulary wins over personal vocabulary.
ACCOUNT_PATTERNS = [
    (
        "PJ",
        re.compile(
            r"\b(?:empresa|empresarial|pj|cnpj|cliente|clientes|nota fiscal|emiti|fornecedor|"
            r"fornecedores|contrato|mei|negocio|servico|projeto)\b"
        ),
    ),
    ("PF", re.compile(r"\b(?:pessoal|pf|pessoa fisica|casa|familia|cartao|mercado|aluguel|minha vida|salario)\b")),
]

# Extra words that only mean PF when answering "pessoal ou empresa?"
ACCOUNT_ANSWER_RE = re.compile(r"\b(?:minha|meu|vida|eu)\b")

# "da empresa" names the account, not a category
ACCOUNT_WORDS = {"empresa", "empresarial", "pj", "cnpj", "pessoal", "pf", "pessoa", "fisica", "minha", "meu"}

FINANCE_RE = re.compile(
    r"(?:\b(?:dinheiro|reais|real|saldo|orcamento|conta|contas|pix|cartao|credito|debito|"
    r"investimento|investir|divida|dividas|financeiro|financeira|financas|economia|gasto|gastos|"
    r"despesa|despesas|receita|receitas|salario|pagamento|emprestimo|juros|fatura|boleto|"
    r"meta|metas|categoria|valor|renda|aluguel|mercado)\b|r\$)"
)

_WORDS = r"((?:[^\W\d_][\w-]*)(?:\s+[^\W\d_][\w-]*){0,3})"
_ARTICLE = r"(?:o\s+|a\s+|os\s+|as\s+|um\s+|uma\s+)?"

PREPOSITION_RE = re.compile(r"\b(?:no|na|nos|nas|em|do|da|dos|das|de|com|pro|pra|para)\s+" + _ARTICLE + _WORDS)
VERB_OBJECT_RE = re.compile(r"\b(?:paguei|pagar|pago|comprei|comprar)\s+" + _ARTICLE + _WORDS)
GOAL_PURPOSE_RE = re.compile(r"\b(?:para|pra)\s+" + _ARTICLE + _WORDS)
GOAL_WISH_RE = re.compile(r"\bquero\s+(?!juntar|guardar|economizar|poupar)" + _WORDS)
GOAL_NAME_RE = re.compile(r"\bmeta\s+(?:de|da|do|para|pra)\s+" + _ARTICLE + _WORDS)

CATEGORY_STOP = {
    "hoje", "ontem", "amanha", "anteontem", "depois", "dia", "semana", "mes", "ano", "ate",
    "reais", "real", "mil", "k", "e", "ou", "mas", "que", "foi", "por", "valor", "vence",
    "no", "na", "nos", "nas", "em", "do", "da", "dos", "das", "de", "com", "pro", "pra", "para",
    "o", "a", "os", "as", "um", "uma", "sim", "nao",
} | set(MONTHS)
DESCRIPTION_STOP = {
    "hoje", "ontem", "amanha", "dia", "ate", "reais", "real", "mil", "k", "e", "em", "no", "na", "com",
} | set(MONTHS)

SHORT_ANSWER_WORDS = 4

AFFIRMATIVE_RE = re.compile(
    r"^(?:sim|s|isso|pode|confirmo|confirma|confirmado|ok|okay|beleza|blz|claro|certo|"
    r"correto|perfeito|salva|salve|salvar|manda ver|bora|yes|y|uhum|aham)\b"
)
NEGATIVE_RE = re.compile(r"^(?:nao|n|errado|errada|negativo|nope)\b")
CANCEL_RE = re.compile(
    r"\b(?:cancela|cancelar|cancele|esquece|esqueca|deixa pra la|deixa para la|"
    r"desisto|descarta|descartar)\b"
)
RESET_RE = re.compile(
    r"\b(?:comecar de novo|comecar novamente|recomecar|resetar|reset|voltar do zero|zerar)\b"
)
GREETING_RE = re.compile(r"^(?:oi|ola|opa|bom dia|boa tarde|boa noite|e ai|eai|hey|hello|hi|obrigad[oa]|valeu)\b")

FIELD_WORDS = {
    "kind": re.compile(r"\btipo\b"),
    "amount": re.compile(r"\b(?:valor|quantia|preco|quanto)\b"),
    "date": re.compile(r"\b(?:data|dia|quando)\b"),
    "category": re.compile(r"\bcategoria\b"),
    "description": re.compile(r"\b(?:descricao|objetivo|nome)\b"),
}


def _plain(text: str) -> str:
    return re.sub(r"[^\w\s$]", " ", fold(text)).strip()


def classify_reply(text: str) -> str | None:
    """Classify control replies: reset, cancel, negative, affirmative or greeting."""
    plain = _plain(text)
    if RESET_RE.search(plain):
        return "reset"
    if CANCEL_RE.search(plain):
        return "cancel"
    if NEGATIVE_RE.search(plain):
        return "negative"
    if AFFIRMATIVE_RE.search(plain):
        return "affirmative"
    if GREETING_RE.search(plain):
        return "greeting"
    return None


def named_fields(text: str) -> list[str]:
    """Field names the user refers to explicitly ("a data está errada")."""
    plain = _plain(text)
    return [field for field, pattern in FIELD_WORDS.items() if pattern.search(plain)]


def detect_account_type(text: str, answering: bool = False) -> str | None:
    """PF or PJ from the wording of a message, if it gives one away."""
    folded = fold(text)
    for account_type, pattern in ACCOUNT_PATTERNS:
        if pattern.search(folded):
            return account_type
    if answering and ACCOUNT_ANSWER_RE.search(folded):
        return "PF"
    return None


def _phrase(text: str, folded: str, match: re.Match, stop: set[str]) -> str | None:
    start, end = match.span(1)
    original_words = text[start:end].split()
    folded_words = folded[start:end].split()
    kept = []
    for original, plain in zip(original_words, folded_words):
        if plain in stop:
            break
        kept.append(original)
    return " ".join(kept) or None


def _first_phrase(text: str, folded: str, patterns, stop: set[str]) -> str | None:
    for pattern in patterns:
        for match in pattern.finditer(folded):
            phrase = _phrase(text, folded, match, stop)
            if phrase:
                return phrase
    return None


def _short_answer(text: str) -> str | None:
    if "?" in text or REDACTION_MARKER in text:
        return None
    words = re.sub(r"[^\w\s-]", " ", text).split()
    if not words or len(words) > SHORT_ANSWER_WORDS:
        return None
    while words and fold(words[0]) in CATEGORY_STOP | {"e", "foi", "era"}:
        words = words[1:]
    return " ".join(words) or None


class RuleExtractor:
    """Keyword extractor for pt-BR messages. Locates fragments, never converts them."""

    def extract(self, text: str, state: ConversationState) -> Extraction:
        folded = fold(text)
        pending = state.pending_field

        kind = None
        for name, pattern in KIND_PATTERNS:
            if pattern.search(folded):
                kind = name
                break
        if kind is None and pending == "kind":
            for name, pattern in KIND_ANSWERS:
                if pattern.search(folded):
                    kind = name
                    break

        amount_text = find_amount_fragment(text)
        date_text = find_date_fragment(text)
        if (
            pending == "date"
            and not date_text
            and amount_text
            and BARE_DAY_RE.fullmatch(amount_text)
            and _short_answer(text) == amount_text
        ):
            # "15" in reply to "quando?" is a day, not a new amount
            date_text, amount_text = amount_text, None

        account_type = detect_account_type(text, answering=pending == "account_type")

        effective_kind = kind or state.collected.kind
        category = None
        description = None
        if effective_kind == "goal":
            description = _first_phrase(
                text, folded, (GOAL_NAME_RE, GOAL_PURPOSE_RE, GOAL_WISH_RE), DESCRIPTION_STOP
            )
        else:
            category = _first_phrase(text, folded, (PREPOSITION_RE, VERB_OBJECT_RE), CATEGORY_STOP)
            if category and set(fold(category).split()) <= ACCOUNT_WORDS:
                category = None

        answered = False
        if pending in ("amount", "date") and not (amount_text or date_text):
            # a short reply to a direct question is an attempt at that field
            short = _short_answer(text)
            if short and pending == "amount":
                amount_text = short
                answered = True
            elif short and pending == "date":
                date_text = short
                answered = True
        elif pending in ("category", "description"):
            short = _short_answer(text)
            if short:
                answered = True
                if pending == "category" and not category:
                    category = short
                elif pending == "description" and not description:
                    description = short
        elif pending == "account_type":
            answered = bool(account_type or _short_answer(text))

        in_scope = bool(
            kind
            or amount_text
            or date_text
            or answered
            or (account_type and state.stage != "idle")
            or FINANCE_RE.search(folded)
        )
        if not in_scope:
            category = description = account_type = None

        return Extraction(
            in_scope=in_scope,
            kind=kind,
            amount_text=amount_text,
            date_text=date_text,
            category=category,
            description=description,
            account_type=account_type,
        )
