import json

from loguru import logger
from openai import OpenAI
from pydantic import ValidationError

from finscope.intake.extractor import RuleExtractor
from finscope.intake.messages import FIELD_LABELS
from finscope.llm.prompts import build_extraction_prompt
from finscope.models.schemas import ConversationState, Extraction

EXTRACTION_PROMPT = build_extraction_prompt()


class LLMFieldExtractor:
    """Locates transaction fields with a chat model.

    The model only points at fragments of the message. When its answer is not
    valid JSON, or the request fails, the rule-based extraction is used.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://openrouter.ai/api/v1",
        fallback: RuleExtractor | None = None,
    ):
        self.client = OpenAI(base_url=base_url, api_key=api_key)
        self.model = model
        self.fallback = fallback or RuleExtractor()

    def _context(self, state: ConversationState) -> str:
        lines = [f"Etapa atual: {state.stage}"]
        filled = state.collected.filled()
        if filled:
            known = ", ".join(f"{FIELD_LABELS[k]}={v}" for k, v in filled.items())
            lines.append(f"Já informado: {known}")
        if state.account_type:
            lines.append(f"Conta: {state.account_type}")
        if state.pending_field:
            lines.append(f"Pergunta pendente: {FIELD_LABELS[state.pending_field]}")
        return "\n".join(lines)

    def extract(self, text: str, state: ConversationState) -> Extraction:
        messages = [
            {"role": "system", "content": EXTRACTION_PROMPT},
            {"role": "system", "content": self._context(state)},
            {"role": "user", "content": text},
        ]

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=0.0,
            )

            raw = response.choices[0].message.content.strip()
            logger.debug("LLM raw response: {}", raw)

            # Strip markdown code fences if present
            if raw.startswith("```"):
                lines = raw.split("\n")
                lines = [l for l in lines if not l.startswith("```")]
                raw = "\n".join(lines)

            return Extraction.model_validate(json.loads(raw))

        except (json.JSONDecodeError, ValidationError) as e:
            logger.error("Failed to parse LLM extraction: {}", e)
            return self.fallback.extract(text, state)
        except Exception as e:
            logger.error("LLM request failed: {}", e)
            return self.fallback.extract(text, state)
