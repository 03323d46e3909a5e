import os
import tempfile
from datetime import datetime
from zoneinfo import ZoneInfo

# Settings are read once; point them at throwaway storage before anything imports the app.
os.environ["DB_PATH"] = os.path.join(tempfile.mkdtemp(prefix="finscope-"), "ledger.json")
os.environ["OPENROUTER_API_KEY"] = ""
os.environ["TELEGRAM_BOT_TOKEN"] = ""

import pytest

from finscope.intake.extractor import RuleExtractor
from finscope.intake.machine import advance, new_state
from finscope.intake.sanitizer import sanitize_user_input
from finscope.models.schemas import UserMessage

SAO_PAULO = ZoneInfo("America/Sao_Paulo")
NOW = datetime(2026, 10, 19, 10, 0, tzinfo=SAO_PAULO)


def run_turn(state, text, now=NOW):
    """Sanitize, extract with rules and advance one turn."""
    clean = sanitize_user_input(text)
    extraction = RuleExtractor().extract(clean, state)
    return advance(state, UserMessage(text=clean, received_at=now), extraction)


def run_script(texts, session_id="s1"):
    state = new_state(session_id)
    transitions = []
    for text in texts:
        transition = run_turn(state, text)
        transitions.append(transition)
        state = transition.state
    return transitions


@pytest.fixture
def idle():
    return new_state("s1", user_id="u1")


@pytest.fixture
def collecting_date(idle):
    """State after "Gastei 50 no mercado": only the date is missing."""
    return run_turn(idle, "Gastei 50 no mercado").state


@pytest.fixture
def confirm_pending(idle):
    """State after "Recebi 3000 do salário hoje": summary presented."""
    return run_turn(idle, "Recebi 3000 do salário hoje").state
