from finscope.config import get_settings
from finscope.db.repository import ChatHistoryRepository, TransactionRepository, open_db
from finscope.llm.parser import LLMFieldExtractor
from finscope.orchestrator import Orchestrator

settings = get_settings()

db = open_db(settings.db_path)
repo = TransactionRepository(db=db)
history = ChatHistoryRepository(db=db)

extractor = None
if settings.openrouter_api_key:
    extractor = LLMFieldExtractor(
        api_key=settings.openrouter_api_key,
        model=settings.llm_model,
        base_url=settings.llm_base_url,
    )

orchestrator = Orchestrator(repo, extractor=extractor, history=history, settings=settings)
