"""DepegMonitor: Compares pegged assets against their reference on every update.

Algorithm, per price update of a pegged asset:
    1. Read the latest cached reading of the reference asset (skip if none)
    2. Rescale both prices to the larger of their two precisions
    3. deviation_bps = |reference - observed| * 10000 // reference
    4. Above the threshold: insert a depeg event unless one is already
       active for the asset, then publish ``depeg-alert``
    5. At or below the threshold: resolve the active event, if any

An active event is never updated by later breaches; it keeps the values of
the first detection until it is resolved.

.. code-block:: python

    >>> deviation_bps(2000_00000000, 1500_00000000)
    2500
    >>> deviation_bps(2000_00000000, 2500_00000000)
    2500
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING

from .DepegEvent import DepegEvent
from .EventBus import DEPEG_ALERTS, PRICE_UPDATES
from .PriceReading import PriceReading

if TYPE_CHECKING:
    from .EventBus import EventBus
    from .OperatorConfig import PegConfig
    from .OperatorDatabase import OperatorDatabase
    from .PriceStore import PriceStore

logger = logging.getLogger(__name__)

BASIS_POINTS = 10000


class DegenerateReference(ValueError):
    """Raised when a price needed for the deviation is zero or negative."""

    pass


def deviation_bps(reference: int, observed: int) -> int:
    """Absolute relative difference of two prices in basis points.

    The difference is taken relative to the reference price, so a discount
    and a premium of the same size give the same deviation. Integer floor
    division.

    :param reference: Reference price.
    :param observed: Pegged asset price, same precision as reference.
    :returns: Deviation in basis points.
    :raises DegenerateReference: If either price is not positive.
    """
    if reference <= 0 or observed <= 0:
        raise DegenerateReference(
            f"Cannot compute deviation for reference={reference}, observed={observed}"
        )
    return abs(reference - observed) * BASIS_POINTS // reference


class DepegMonitor:
    """Detects and records depegs of configured assets.

    :ivar pegs: Immutable mapping of pegged asset to PegConfig.
    :ivar resolve_on_recovery: Resolve active events when the deviation
        falls back to or below the threshold.
    """

    def __init__(
        self,
        pegs: Mapping[str, PegConfig],
        store: PriceStore,
        database: OperatorDatabase,
        bus: EventBus,
        resolve_on_recovery: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the monitor.

        :param pegs: Mapping of pegged asset to its peg configuration.
        :param store: Price store for reference readings.
        :param database: Relational store for depeg events.
        :param bus: Event bus for depeg alerts.
        :param resolve_on_recovery: Resolve events on recovery (default: True).
        :param clock: Time source returning unix seconds.
        """
        self.pegs = pegs
        self.store = store
        self.database = database
        self.bus = bus
        self.resolve_on_recovery = resolve_on_recovery
        self.clock = clock

    async def on_price_update(self, reading: PriceReading) -> DepegEvent | None:
        """Check one price update.

        :param reading: Fresh reading of any asset.
        :returns: The newly created DepegEvent, or None if no new event
            was created.
        """
        peg = self.pegs.get(reading.asset)
        if peg is None:
            return None

        reference = await self.store.latest_cached(peg.reference_asset)
        if reference is None:
            logger.debug(
                f"[{reading.asset}] No cached {peg.reference_asset} price, skipping depeg check"
            )
            return None

        decimals = max(reading.decimals, reference.decimals)
        observed_price = reading.scaled_to(decimals)
        reference_price = reference.scaled_to(decimals)

        try:
            bps = deviation_bps(reference_price, observed_price)
        except DegenerateReference as e:
            logger.error(f"[{reading.asset}] Depeg check failed closed: {e}")
            return None

        logger.info(
            f"[{reading.asset}] Depeg check: {bps} bps vs {peg.reference_asset} "
            f"(threshold {peg.threshold_bps} bps)"
        )

        if bps > peg.threshold_bps:
            event = DepegEvent(
                asset=reading.asset,
                depeg_bps=bps,
                observed_price=observed_price,
                reference_price=reference_price,
                reference_asset=peg.reference_asset,
                decimals=decimals,
                detected_at=int(self.clock()),
            )
            return await self._raise_alert(event)

        if self.resolve_on_recovery:
            await self._resolve_recovered(reading.asset, bps)
        return None

    async def _raise_alert(self, event: DepegEvent) -> DepegEvent | None:
        if not await self.database.insert_depeg_event(event):
            logger.debug(f"[{event.asset}] Depeg already active, not duplicating")
            return None

        await self.bus.publish(DEPEG_ALERTS, event.to_dict())
        logger.warning(
            f"[{event.asset}] DEPEG DETECTED: {event.depeg_bps} bps "
            f"(observed={event.observed_price}, reference={event.reference_price})"
        )
        return event

    async def _resolve_recovered(self, asset: str, bps: int) -> None:
        if await self.database.resolve_depeg_event(asset, int(self.clock())):
            logger.info(f"[{asset}] Depeg resolved at {bps} bps")

    async def run(self) -> None:
        """Consume price updates until cancelled."""
        logger.info(f"Starting depeg monitor for {sorted(self.pegs)}")
        async for message in self.bus.subscribe(PRICE_UPDATES):
            try:
                reading = PriceReading.from_dict(message)
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Dropping malformed price update: {e}")
                continue
            try:
                await self.on_price_update(reading)
            except Exception as e:
                logger.error(f"[{reading.asset}] Depeg check error ({type(e).__name__}): {e}")
