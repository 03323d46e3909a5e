from decimal import Decimal

from finscope.models.schemas import TransactionDraft

KIND_LABELS = {
    "expense": "Despesa",
    "income": "Receita",
    "bill": "Conta futura",
    "goal": "Meta",
}

FIELD_LABELS = {
    "kind": "tipo",
    "amount": "valor",
    "date": "data",
    "category": "categoria",
    "description": "descrição",
    "account_type": "conta",
}

ACCOUNT_LABELS = {
    "PF": "Pessoal (PF)",
    "PJ": "Empresa (PJ)",
}

KIND_QUESTION = "Isso foi um gasto, uma entrada, uma conta futura ou uma meta?"
ACCOUNT_QUESTION = "Isso é da sua conta pessoal ou da sua conta da empresa (PJ)?"

FIELD_QUESTIONS = {
    "amount": {
        "expense": "Quanto foi esse gasto?",
        "income": "Quanto você recebeu?",
        "bill": "Qual é o valor da conta?",
        "goal": "Quanto você quer juntar?",
    },
    "date": {
        "expense": "Quando foi esse gasto?",
        "income": "Quando você recebeu?",
        "bill": "Qual é a data de vencimento?",
        "goal": "Até quando você quer atingir essa meta?",
    },
    "category": {
        "expense": "Em que categoria entra esse gasto? (ex.: mercado, aluguel, transporte)",
        "income": "De onde veio esse dinheiro? (ex.: salário, freela, venda)",
        "bill": "Que conta é essa? (ex.: aluguel, luz, cartão)",
        "goal": "Em que categoria entra essa meta?",
    },
    "description": {
        "expense": "Quer adicionar uma descrição?",
        "income": "Quer adicionar uma descrição?",
        "bill": "Quer adicionar uma descrição?",
        "goal": "Qual é o objetivo dessa meta? (ex.: viajar, trocar de celular)",
    },
}

REFUSAL = (
    "Sou especializado em finanças pessoais e empresariais. "
    "Posso registrar gastos, entradas, contas futuras e metas. Como posso ajudar?"
)
GREETING = "Oi! Me conta um gasto, uma entrada, uma conta a pagar ou uma meta que eu registro pra você."
CAPABILITIES = (
    "Posso registrar gastos, entradas, contas futuras e metas. "
    'Experimente algo como "Gastei 50 no mercado hoje".'
)
NOTHING_PENDING = "Não há nada pendente para confirmar. Me conta o que você quer registrar."
CANCELLED = "Tudo bem, descartei esse registro."
RESET = "Pronto, recomecei do zero. O que você quer registrar?"
WHICH_FIELD = "Sem problemas. O que está errado: tipo, valor, data, categoria ou descrição?"
REPHRASE = "Desculpe, não consegui processar isso. Pode reformular?"
SAVE_FAILED = "Não consegui salvar agora. Responda \"sim\" para tentar de novo."


def format_brl(amount: Decimal) -> str:
    """Format amount as BRL: R$ 1.234,56."""
    text = f"{amount:,.2f}"
    return "R$ " + text.replace(",", "_").replace(".", ",").replace("_", ".")


def ask_field(field: str, kind: str | None) -> str:
    if field == "account_type":
        return ACCOUNT_QUESTION
    if field == "kind" or kind is None:
        return KIND_QUESTION
    return FIELD_QUESTIONS[field][kind]


def unresolved(field: str) -> str:
    return f"Não consegui entender o campo {FIELD_LABELS[field]}, não posso continuar assim. Pode reformular?"


def render_summary(draft: TransactionDraft) -> str:
    lines = [
        "Posso salvar assim?",
        f"Tipo: {KIND_LABELS[draft.kind]}",
        f"Conta: {ACCOUNT_LABELS[draft.account_type]}",
        f"Valor: {format_brl(draft.amount)}",
    ]
    if draft.date is not None:
        lines.append(f"Data: {draft.date.strftime('%d/%m/%Y')}")
    if draft.category:
        lines.append(f"Categoria: {draft.category}")
    if draft.description:
        lines.append(f"Descrição: {draft.description}")
    return "\n".join(lines)


def saved(draft: TransactionDraft) -> str:
    label = KIND_LABELS[draft.kind]
    return f"Salvo! {label} de {format_brl(draft.amount)} registrada."


def updated(draft: TransactionDraft) -> str:
    """Reply for a bill or goal that matched an existing record."""
    label = KIND_LABELS[draft.kind].lower()
    name = draft.category if draft.kind == "bill" else draft.description
    text = f'Atualizei a {label} "{name}" para {format_brl(draft.amount)}'
    if draft.date is not None:
        text += f" em {draft.date.strftime('%d/%m/%Y')}"
    return text + "."
