"""
Round operator - closes expired rounds and optionally opens the next one.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from ticket_lottery.lottery.engine import LotteryEngine
from ticket_lottery.lottery.errors import LotteryError
from ticket_lottery.lottery.models import GlobalPhase, RoundMarker
from ticket_lottery.utils.config import as_bool, get_config_value
from ticket_lottery.utils.logger import get_logger

logger = get_logger(__name__)


class RoundOperator:
    """Background loop driving the lottery through its timed transitions."""

    def __init__(self, engine: LotteryEngine, config: Dict[str, Any]) -> None:
        self._engine = engine
        self.check_interval = float(get_config_value(config, "operator.check_interval", 10))
        self.auto_start_rounds = as_bool(get_config_value(config, "operator.auto_start_rounds", False))
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.consecutive_failures = 0

    async def start(self) -> None:
        if self._running:
            logger.warning("Round operator already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="lottery-round-operator")
        logger.info("Round operator started (interval=%ss, auto start=%s)", self.check_interval, self.auto_start_rounds)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Round operator stopped")

    def get_status(self) -> Dict[str, Any]:
        current = self._engine.current_round()
        return {
            "status": "running" if self._running else "stopped",
            "auto_start_rounds": self.auto_start_rounds,
            "current_round_id": current.round_id if current else None,
            "consecutive_failures": self.consecutive_failures,
        }

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                self.consecutive_failures += 1
                logger.error("Round operator tick failed: %s", exc)
            await asyncio.sleep(self.check_interval)

    async def tick(self) -> None:
        """One pass: close the current round if due, then maybe start the next"""
        store = self._engine.store
        if store.phase == GlobalPhase.UNINITIALIZED:
            return

        current = self._engine.current_round()
        if (
            store.phase == GlobalPhase.ACTIVE
            and current is not None
            and current.marker == RoundMarker.ACTIVE
            and self._engine.clock.now() >= current.end_time
        ):
            logger.info("Round %d reached its close time, closing", current.round_id)
            try:
                await self._engine.close_round(current.round_id)
            except LotteryError as exc:
                # another request may have closed it first
                logger.warning("Could not close round %d: %s", current.round_id, exc)

        if self.auto_start_rounds and store.phase == GlobalPhase.IDLE:
            round_id = await self._engine.start_round()
            logger.info("Auto-started round %d", round_id)

        self.consecutive_failures = 0
