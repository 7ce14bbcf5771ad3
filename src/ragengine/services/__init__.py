"""Query orchestration and cost accounting."""

from .ledger import CostLedger, InMemoryCostLedger, LoggingCostLedger
from .query import AnswerStream, PromptBuilder, PromptBuilderConfig, QueryConfig, QueryService, RequestState

__all__ = [
    "AnswerStream",
    "CostLedger",
    "InMemoryCostLedger",
    "LoggingCostLedger",
    "PromptBuilder",
    "PromptBuilderConfig",
    "QueryConfig",
    "QueryService",
    "RequestState",
]
