"""
Core module - base types, enums and domain exceptions for the whole stack.
"""

from src.core.enums import (
    PlanType,
    PlanStatus,
    GenerationStatus,
    TokenPoolType,
    WithdrawalStatus,
    EarningStatus,
    QuotaKind,
    ToolName,
)

__all__ = [
    "PlanType",
    "PlanStatus",
    "GenerationStatus",
    "TokenPoolType",
    "WithdrawalStatus",
    "EarningStatus",
    "QuotaKind",
    "ToolName",
]
