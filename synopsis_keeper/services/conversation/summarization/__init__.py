"""Rolling synopsis service package."""

from .committer import CommitOutcome, CommitStatus, SynopsisCommitter
from .estimator import BudgetConfigurationError, TokenBudgetEstimator
from .manager import SynopsisManager, get_synopsis_manager
from .prompt_builder import PromptTemplateError
from .scheduler import schedule_synopsis
from .state import CurrentSynopsis, SynopsisState
from .synopsis_log import get_synopsis_state_log

__all__ = [
    "BudgetConfigurationError",
    "CommitOutcome",
    "CommitStatus",
    "CurrentSynopsis",
    "PromptTemplateError",
    "SynopsisCommitter",
    "SynopsisManager",
    "SynopsisState",
    "TokenBudgetEstimator",
    "get_synopsis_manager",
    "get_synopsis_state_log",
    "schedule_synopsis",
]
