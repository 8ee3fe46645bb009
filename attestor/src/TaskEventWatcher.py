"""TaskEventWatcher: Relays on-chain task creation events to the event bus.

Polls the task manager contract for ``NewTaskCreated`` logs and publishes
each one on ``new-task``. At start-up the last ``catchup_blocks`` blocks are
scanned so tasks created while the operator was down are delivered again;
the dispatcher ignores tasks it has already answered.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from web3 import AsyncWeb3

from .ContractUtility import ContractUtility
from .EventBus import NEW_TASKS
from .Task import Task

if TYPE_CHECKING:
    from .EventBus import EventBus

logger = logging.getLogger(__name__)


class TaskEventWatcher:
    """Polls NewTaskCreated logs of the task manager contract.

    :ivar address: Checksummed task manager address.
    :ivar poll_interval: Seconds between log polls.
    :ivar catchup_blocks: Blocks scanned before the head at start-up.
    :ivar next_block: First block of the next scan, None before the first.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        address: str,
        bus: EventBus,
        poll_interval: float = 5.0,
        catchup_blocks: int = 1000,
    ) -> None:
        self.w3 = w3
        self.address = AsyncWeb3.to_checksum_address(address)
        self.bus = bus
        self.poll_interval = poll_interval
        self.catchup_blocks = catchup_blocks
        self.next_block: int | None = None
        self.contract = w3.eth.contract(
            address=self.address, abi=ContractUtility.get_abi("TaskManager")
        )

    async def poll_once(self) -> list[Task]:
        """Publish tasks created since the previous scan.

        :returns: Tasks published by this scan.
        """
        head = await self.w3.eth.get_block_number()
        if self.next_block is None:
            self.next_block = max(0, head - self.catchup_blocks)
        if self.next_block > head:
            return []

        logs = await self.contract.events.NewTaskCreated.get_logs(
            from_block=self.next_block, to_block=head
        )
        tasks = []
        for log in logs:
            args = log["args"]
            task = Task(
                task_index=int(args["taskIndex"]),
                task_type=int(args["taskType"]),
                task_data=bytes(args["taskData"]),
                block_number=int(log["blockNumber"]),
            )
            await self.bus.publish(NEW_TASKS, task.to_event())
            tasks.append(task)

        if tasks:
            logger.info(
                f"Relayed {len(tasks)} tasks from blocks {self.next_block}-{head}"
            )
        self.next_block = head + 1
        return tasks

    async def run(self) -> None:
        """Poll until cancelled."""
        logger.info(f"Watching task manager {self.address}")
        while True:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Task event poll failed ({type(e).__name__}): {e}")
            await asyncio.sleep(self.poll_interval)
