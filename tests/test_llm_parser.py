from unittest.mock import MagicMock

import pytest

from finscope.intake.machine import new_state
from finscope.llm.parser import LLMFieldExtractor


def reply_with(content):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    return response


@pytest.fixture
def extractor():
    extractor = LLMFieldExtractor(api_key="test-key", model="test-model")
    extractor.client = MagicMock()
    return extractor


def test_parses_json_answer(extractor):
    extractor.client.chat.completions.create.return_value = reply_with(
        '{"in_scope": true, "kind": "expense", "amount_text": "50", "category": "mercado"}'
    )
    result = extractor.extract("gastei 50 no mercado", new_state("s1"))
    assert result.kind == "expense"
    assert result.amount_text == "50"
    assert result.date_text is None


def test_strips_code_fences(extractor):
    extractor.client.chat.completions.create.return_value = reply_with(
        '```json\n{"in_scope": true, "kind": "income", "amount_text": "3000", "date_text": "hoje"}\n```'
    )
    result = extractor.extract("recebi 3000 hoje", new_state("s1"))
    assert result.kind == "income"
    assert result.date_text == "hoje"


def test_sends_conversation_context(extractor):
    extractor.client.chat.completions.create.return_value = reply_with('{"in_scope": true}')
    state = new_state("s1").model_copy(update={"pending_field": "date"})
    extractor.extract("ontem", state)

    kwargs = extractor.client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "test-model"
    assert "Pergunta pendente: data" in kwargs["messages"][1]["content"]
    assert kwargs["messages"][-1] == {"role": "user", "content": "ontem"}


def test_invalid_json_falls_back_to_rules(extractor):
    extractor.client.chat.completions.create.return_value = reply_with("Claro! Anotei seu gasto.")
    result = extractor.extract("gastei 50 no mercado", new_state("s1"))
    assert result.kind == "expense"
    assert result.amount_text == "50"


def test_unknown_kind_falls_back_to_rules(extractor):
    extractor.client.chat.completions.create.return_value = reply_with('{"in_scope": true, "kind": "loan"}')
    result = extractor.extract("recebi 3000 hoje", new_state("s1"))
    assert result.kind == "income"


def test_request_error_falls_back_to_rules(extractor):
    extractor.client.chat.completions.create.side_effect = RuntimeError("connection reset")
    result = extractor.extract("gastei 50 no mercado", new_state("s1"))
    assert result.category == "mercado"


def test_account_type_is_parsed_and_sent_back(extractor):
    extractor.client.chat.completions.create.return_value = reply_with(
        '{"in_scope": true, "kind": "income", "amount_text": "5000", "account_type": "PJ"}'
    )
    state = new_state("s1").model_copy(update={"account_type": "PF"})
    result = extractor.extract("recebi 5000 do cliente", state)

    assert result.account_type == "PJ"
    kwargs = extractor.client.chat.completions.create.call_args.kwargs
    assert "Conta: PF" in kwargs["messages"][1]["content"]
