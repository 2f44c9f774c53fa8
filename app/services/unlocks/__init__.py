"""
Cards de desbloqueio da familia.

Estrutura:
- types: Status, regras de gatilho e card
- repository: Acesso ao banco de dados
- evaluator: Avaliacao de gatilhos e operacoes administrativas
"""
from app.services.unlocks.evaluator import (
    UnlockEvaluator,
    check_and_unlock_cards,
    schedule_unlock_check,
    unlock_evaluator,
)
from app.services.unlocks.repository import UnlockRepository, unlock_repository
from app.services.unlocks.types import (
    UnlockCard,
    UnlockCardStatus,
    UnlockEvaluation,
    parse_trigger_rule,
)

__all__ = [
    "UnlockCard",
    "UnlockCardStatus",
    "UnlockEvaluation",
    "UnlockEvaluator",
    "UnlockRepository",
    "check_and_unlock_cards",
    "parse_trigger_rule",
    "schedule_unlock_check",
    "unlock_evaluator",
    "unlock_repository",
]
