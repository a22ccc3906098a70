import asyncio
from typing import Iterable, List, Optional

import pytest

from ticket_lottery.blockchain.memory import InMemoryLedger
from ticket_lottery.lottery.engine import LotteryEngine
from ticket_lottery.lottery.models import PoolScope
from ticket_lottery.lottery.store import LotteryStore
from ticket_lottery.utils.common import derive_address

LOTTERY_ADDRESS = "0x000000000000000000000000000000000000107e"
START_TIME = 1_700_000_000


class FakeClock:
    def __init__(self, now: int = START_TIME):
        self.current = now

    def now(self) -> int:
        return self.current

    def advance(self, seconds: int) -> None:
        self.current += seconds


class ScriptedEntropy:
    """Returns queued values; falls back to the low end of the range."""

    def __init__(self, values: Iterable[int] = ()):
        self.values: List[int] = list(values)
        self.calls = []

    def random_in_range(self, low: int, high: int) -> int:
        self.calls.append((low, high))
        value = self.values.pop(0) if self.values else low
        assert low <= value < high
        return value


class GatedLedger(InMemoryLedger):
    """Suspends every transfer until `gate` is set."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()
        self.in_flight = 0

    async def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        self.in_flight += 1
        try:
            await self.gate.wait()
            return await super().transfer(sender, recipient, amount)
        finally:
            self.in_flight -= 1


class RejectingLedger(InMemoryLedger):
    """Rejects transfers sent from any address in `blocked`."""

    def __init__(self, blocked: Optional[Iterable[str]] = None, raise_error: bool = False):
        super().__init__()
        self.blocked = {a.lower() for a in (blocked or [])}
        self.raise_error = raise_error

    async def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        if sender.lower() in self.blocked:
            if self.raise_error:
                raise ConnectionError("rail unavailable")
            return False
        return await super().transfer(sender, recipient, amount)


def fund(ledger: InMemoryLedger, *callers: str, amount: int = 1_000) -> None:
    for caller in callers:
        ledger.mint(derive_address(caller), amount)


def build_engine(ledger, clock=None, entropy=None, store=None, **kwargs) -> LotteryEngine:
    return LotteryEngine(
        store or LotteryStore(),
        ledger,
        lottery_address=LOTTERY_ADDRESS,
        clock=clock or FakeClock(),
        entropy=entropy or ScriptedEntropy(),
        **kwargs,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def entropy():
    return ScriptedEntropy()


@pytest.fixture
def ledger():
    ledger = InMemoryLedger()
    fund(ledger, "alice", "bob", "carol")
    return ledger


@pytest.fixture
def store():
    return LotteryStore()


@pytest.fixture
def engine(store, ledger, clock, entropy):
    return build_engine(ledger, clock=clock, entropy=entropy, store=store)


@pytest.fixture
def round_engine(ledger, clock, entropy):
    return build_engine(ledger, clock=clock, entropy=entropy, pool_scope=PoolScope.ROUND)
