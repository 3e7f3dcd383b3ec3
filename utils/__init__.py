from utils.logger import setup_logger, log_cycle_start, log_cycle_end
from utils.errors import (
    EmpowHerError,
    CheckinValidationError,
    OutcomeValidationError,
    StorageError,
    InsightCapabilityError,
    JournalVaultError,
)
from utils.llm import LLMOrchestrator, LLMProvider
from utils.models import CheckinSubmission, EmotionalTier, AgentDecision, UserProfile
from utils.storage import StorageBackend, InMemoryStorage


__all__ = [
    # Logger
    'setup_logger',
    'log_cycle_start',
    'log_cycle_end',

    # Errors
    'EmpowHerError',
    'CheckinValidationError',
    'OutcomeValidationError',
    'StorageError',
    'InsightCapabilityError',
    'JournalVaultError',

    # LLM
    'LLMOrchestrator',
    'LLMProvider',

    # Models
    'CheckinSubmission',
    'EmotionalTier',
    'AgentDecision',
    'UserProfile',

    # Storage
    'StorageBackend',
    'InMemoryStorage',
]
