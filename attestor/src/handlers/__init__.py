"""
Task handlers, one per task type.

Usage:
    from attestor.src.handlers import DEFAULT_HANDLERS

    handler = DEFAULT_HANDLERS[TaskType.VOLATILITY_CALC]
    result = await handler(task, context)
    payload = result.encode()
"""

from types import MappingProxyType

from ..Task import TaskType
from .base import (
    HandlerContext,
    InsufficientHistory,
    MalformedTaskData,
    NoPriceData,
    TaskHandler,
    TaskHandlerError,
    TaskResult,
    decode_task_data,
)
from .depeg_detection import DepegDetectionResult, handle_depeg_detection
from .price_verification import PriceVerificationResult, handle_price_verification
from .rate_update import RateUpdateResult, handle_rate_update, interest_rate_bps
from .risk_assessment import RiskAssessmentResult, handle_risk_assessment, risk_score
from .volatility import VolatilityResult, handle_volatility_calc, realized_volatility_bps

DEFAULT_HANDLERS = MappingProxyType(
    {
        TaskType.PRICE_VERIFICATION: handle_price_verification,
        TaskType.DEPEG_DETECTION: handle_depeg_detection,
        TaskType.VOLATILITY_CALC: handle_volatility_calc,
        TaskType.RISK_ASSESSMENT: handle_risk_assessment,
        TaskType.RATE_UPDATE: handle_rate_update,
    }
)

__all__ = [
    "DEFAULT_HANDLERS",
    "DepegDetectionResult",
    "HandlerContext",
    "InsufficientHistory",
    "MalformedTaskData",
    "NoPriceData",
    "PriceVerificationResult",
    "RateUpdateResult",
    "RiskAssessmentResult",
    "TaskHandler",
    "TaskHandlerError",
    "TaskResult",
    "VolatilityResult",
    "decode_task_data",
    "handle_depeg_detection",
    "handle_price_verification",
    "handle_rate_update",
    "handle_risk_assessment",
    "handle_volatility_calc",
    "interest_rate_bps",
    "realized_volatility_bps",
    "risk_score",
]
