"""Task and TaskResponse: Units of work created on-chain and answered off-chain.

Inbound task events arrive as JSON on the ``new-task`` channel:

.. code-block:: json

    {"taskIndex": 7, "taskType": 2, "taskData": "0x...", "blockNumber": 123}

Task types are kept as plain integers so that events with a type this
operator does not handle can still be represented and recorded.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any

from web3 import Web3

# Task indexes are uint32 on chain and in the signed digest
MAX_TASK_INDEX = 2**32 - 1


class TaskType(IntEnum):
    PRICE_VERIFICATION = 0
    DEPEG_DETECTION = 1
    VOLATILITY_CALC = 2
    RISK_ASSESSMENT = 3
    RATE_UPDATE = 4


class TaskStatus(str, Enum):
    """Task lifecycle: pending -> dispatching -> responded | failed."""

    PENDING = "pending"
    DISPATCHING = "dispatching"
    RESPONDED = "responded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.RESPONDED, TaskStatus.FAILED)


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        if value in ("", "0x"):
            return b""
        return bytes(Web3.to_bytes(hexstr=value))
    raise ValueError(f"Expected hex string or bytes, got {type(value).__name__}")


@dataclass(frozen=True)
class Task:
    """A task as delivered by the task source.

    :ivar task_index: Unique, never reused task index.
    :ivar task_type: Raw task type number.
    :ivar task_data: ABI-encoded task parameters.
    :ivar block_number: Block the task was created in.
    """

    task_index: int
    task_type: int
    task_data: bytes
    block_number: int

    def __post_init__(self) -> None:
        if not 0 <= self.task_index <= MAX_TASK_INDEX:
            raise ValueError(f"taskIndex {self.task_index} out of uint32 range")

    @property
    def known_type(self) -> TaskType | None:
        """Return the TaskType, or None if the number is not a known type."""
        try:
            return TaskType(self.task_type)
        except ValueError:
            return None

    def to_event(self) -> dict[str, Any]:
        return {
            "taskIndex": self.task_index,
            "taskType": self.task_type,
            "taskData": Web3.to_hex(self.task_data) if self.task_data else "0x",
            "blockNumber": self.block_number,
        }

    @classmethod
    def from_event(cls, event: dict[str, Any]) -> Task:
        """Parse an inbound task event.

        :param event: Decoded JSON task event.
        :returns: New Task.
        :raises ValueError: If the event is malformed.
        """
        try:
            task_index = int(event["taskIndex"])
            task_type = int(event["taskType"])
            block_number = int(event.get("blockNumber") or 0)
            task_data = _to_bytes(event.get("taskData") or b"")
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed task event: {e}") from e
        try:
            return cls(task_index, task_type, task_data, block_number)
        except ValueError as e:
            raise ValueError(f"Malformed task event: {e}") from e


@dataclass(frozen=True)
class TaskResponse:
    """A signed response of one operator to one task.

    :ivar task_index: Task being answered.
    :ivar operator: Operator address.
    :ivar payload: ABI-encoded response payload.
    :ivar signature: Signature over (task_index, payload).
    """

    task_index: int
    operator: str
    payload: bytes
    signature: bytes

    def to_event(self) -> dict[str, Any]:
        return {
            "taskIndex": self.task_index,
            "operator": self.operator,
            "responsePayload": Web3.to_hex(self.payload),
            "signature": Web3.to_hex(self.signature),
        }
