"""Recovery for unreliable pipeline output.

This module provides:
- Progressive JSON recovery with level-gated rewrite strategies
- Failure classification for targeted retries
- Checkpoints and rollback of step side effects
"""

from .checkpoints import (
    Checkpoint,
    OperationType,
    RollbackLog,
    RollbackManager,
    RollbackOperation,
    RollbackPlan,
    RollbackReport,
)
from .classifier import FailureCategory, FailureClassification, classify_failure
from .json_recovery import JsonRecoveryParser, RecoveryResult, recover
from .strategies import STRATEGIES, RecoveryLevel, RecoveryStrategy

__all__ = [
    # JSON recovery
    "JsonRecoveryParser",
    "RecoveryLevel",
    "RecoveryResult",
    "RecoveryStrategy",
    "STRATEGIES",
    "recover",
    # Classifier
    "FailureCategory",
    "FailureClassification",
    "classify_failure",
    # Checkpoints
    "Checkpoint",
    "OperationType",
    "RollbackLog",
    "RollbackManager",
    "RollbackOperation",
    "RollbackPlan",
    "RollbackReport",
]
