"""
Price Attestation Operator

This module provides the off-chain half of a restaking price oracle:
- FeedPoller: Periodic fetch of on-chain price feeds into the PriceStore
- DepegMonitor: Deviation checks of pegged assets and depeg alerts
- TaskDispatcher: Task lifecycle, handler dispatch and signed responses
- AttestationSigner: Deterministic signing of task responses
- Operator: Main orchestrator wiring the components together
- feeds: Price feed clients
- handlers: One handler per task type
"""

from .AttestationSigner import AttestationSigner, SigningFailure
from .DepegEvent import DepegEvent
from .DepegMonitor import DepegMonitor, deviation_bps
from .FeedPoller import FeedPoller
from .HealthTracker import HealthStatus, HealthTracker
from .Operator import Operator
from .OperatorConfig import OperatorConfig, PegConfig
from .OperatorDatabase import OperatorDatabase
from .PriceReading import PriceReading
from .PriceStore import PriceCache, PriceStore
from .Task import Task, TaskResponse, TaskStatus, TaskType
from .TaskDispatcher import TaskDispatcher

__all__ = [
    "AttestationSigner",
    "DepegEvent",
    "DepegMonitor",
    "FeedPoller",
    "HealthStatus",
    "HealthTracker",
    "Operator",
    "OperatorConfig",
    "OperatorDatabase",
    "PegConfig",
    "PriceCache",
    "PriceReading",
    "PriceStore",
    "SigningFailure",
    "Task",
    "TaskDispatcher",
    "TaskResponse",
    "TaskStatus",
    "TaskType",
    "deviation_bps",
]
