#!/usr/bin/env python3
"""
Ticket Lottery Application

Main entry point: loads configuration, builds the store, transfer rail,
engine, round operator and web server, and runs until a shutdown signal.
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from ticket_lottery.blockchain.client import TokenLedgerClient, build_ledger
from ticket_lottery.lottery.engine import LotteryEngine
from ticket_lottery.lottery.operator import RoundOperator
from ticket_lottery.lottery.store import LotteryStore
from ticket_lottery.utils.config import as_bool, get_config_value, load_config
from ticket_lottery.utils.logger import get_logger
from ticket_lottery.web_server import LotteryWebServer

logger = get_logger(__name__)


class LotteryApp:
    """Wires the lottery components together and handles graceful shutdown."""

    def __init__(self, config_file: Optional[str] = None):
        self.config = load_config(config_file)
        self.store: Optional[LotteryStore] = None
        self.ledger = None
        self.engine: Optional[LotteryEngine] = None
        self.operator: Optional[RoundOperator] = None
        self.web_server: Optional[LotteryWebServer] = None
        self.running = True

    def _display_config_summary(self) -> None:
        logger.info("=" * 60)
        logger.info("CONFIGURATION SUMMARY")
        logger.info("=" * 60)
        logger.info(f"Ledger backend: {get_config_value(self.config, 'ledger.backend', 'memory')}")
        logger.info(f"Pool scope: {get_config_value(self.config, 'lottery.pool_scope', 'global')}")
        logger.info(f"Payout divisor: {get_config_value(self.config, 'lottery.payout_divisor', 2)}")
        logger.info(f"Entropy: {get_config_value(self.config, 'lottery.entropy', 'secrets')}")
        logger.info(f"Snapshot: {get_config_value(self.config, 'store.snapshot_path', 'disabled')}")
        logger.info(f"Operator enabled: {get_config_value(self.config, 'operator.enabled', True)}")
        logger.info("=" * 60)

    async def initialize(self) -> None:
        self._display_config_summary()

        snapshot_path = get_config_value(self.config, "store.snapshot_path")
        self.store = LotteryStore.load(snapshot_path) if snapshot_path else LotteryStore()

        self.ledger = await build_ledger(self.config)
        lottery_address = None
        if isinstance(self.ledger, TokenLedgerClient):
            # on-chain the lottery account is whoever signs the payouts
            lottery_address = self.ledger.operator_address

        self.engine = LotteryEngine.from_config(self.config, self.store, self.ledger, lottery_address=lottery_address)

        if as_bool(get_config_value(self.config, "operator.enabled", True)):
            self.operator = RoundOperator(self.engine, self.config)

        self.web_server = LotteryWebServer(self.config, self.engine, self.operator)
        logger.info("Application initialization completed")

    async def start(self) -> None:
        await self.initialize()
        try:
            if self.operator:
                await self.operator.start()

            host = get_config_value(self.config, "server.host", "0.0.0.0")
            port = int(get_config_value(self.config, "server.port", 6080))
            server_task = asyncio.create_task(self.web_server.start(host=host, port=port))

            while self.running and not server_task.done():
                await asyncio.sleep(1)

            if server_task.done() and server_task.exception():
                raise server_task.exception()
            logger.info("Shutdown signal received, stopping application...")
        finally:
            await self.stop()

    async def stop(self) -> None:
        self.running = False
        if self.operator:
            await self.operator.stop()
        if self.web_server:
            await self.web_server.stop()
        if self.ledger is not None:
            await self.ledger.close()
        if self.store is not None:
            self.store.persist()
        logger.info("Ticket lottery application stopped")

    def _handle_signal(self, signum, frame) -> None:
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self.running = False


async def main(config_file: Optional[str] = None) -> None:
    app = LotteryApp(config_file)
    signal.signal(signal.SIGINT, app._handle_signal)
    signal.signal(signal.SIGTERM, app._handle_signal)
    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Application interrupted by user")
    except Exception:
        logger.exception("Application failed")
        sys.exit(1)


def run() -> None:
    load_dotenv(Path.cwd() / ".env")
    config_file = sys.argv[1] if len(sys.argv) > 1 else None
    asyncio.run(main(config_file))


if __name__ == "__main__":
    run()
