"""
Lottery Engine - lifecycle state machine and the public lottery operations

Two independent state tags are kept:
  - the global phase (UNINITIALIZED -> IDLE <-> ACTIVE), which follows the most
    recently started round and gates start, buy and close;
  - each round's marker (ACTIVE -> AWAITING_PAYOUT -> COMPLETED), which gates
    claim and delete.

Purchases and claims follow reserve -> pay -> finalize under a per-round
asyncio lock held across the transfer call. Reservations are committed to the
store before the transfer is awaited and are not rolled back if it fails.
"""

import asyncio
from typing import Any, Dict, List, Optional

from ticket_lottery.blockchain.client import LedgerClient
from ticket_lottery.lottery.errors import (
    AlreadyCompletedError,
    AlreadyInitializedError,
    InvalidPhaseError,
    InvalidRequestError,
    RoundExpiredError,
    RoundNotFoundError,
    RoundNotYetClosedError,
    StoreWriteError,
    UninitializedError,
)
from ticket_lottery.lottery.models import (
    ClaimReceipt,
    GlobalPhase,
    LotteryConfiguration,
    LotteryRound,
    ParticipationView,
    PoolScope,
    PurchaseReceipt,
    RoundMarker,
)
from ticket_lottery.lottery.payout import PayoutAuthorizer, WinnerSelector, transfer_or_fail
from ticket_lottery.lottery.player_index import PlayerTicketIndex
from ticket_lottery.lottery.pool import PoolAccountant
from ticket_lottery.lottery.sources import Clock, EntropySource, SecretsEntropy, SystemClock, build_entropy
from ticket_lottery.lottery.store import LotteryStore
from ticket_lottery.lottery.tickets import TicketAllocator
from ticket_lottery.utils.common import derive_address, shorten_address
from ticket_lottery.utils.config import get_config_value
from ticket_lottery.utils.logger import get_logger

logger = get_logger(__name__)


def _require_positive_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidRequestError(f"{name} must be a positive integer, got {value!r}")
    return value


class LotteryEngine:
    """Owns the lottery lifecycle; every mutating request enters here"""

    def __init__(
        self,
        store: LotteryStore,
        ledger: LedgerClient,
        *,
        lottery_address: str,
        clock: Optional[Clock] = None,
        entropy: Optional[EntropySource] = None,
        pool_scope: PoolScope = PoolScope.GLOBAL,
        payout_divisor: int = 2,
        faucet_amount: int = 100,
    ):
        self.store = store
        self.ledger = ledger
        self.lottery_address = derive_address(lottery_address)
        self.clock = clock or SystemClock()
        self.faucet_amount = faucet_amount

        self.tickets = TicketAllocator()
        self.index = PlayerTicketIndex(store)
        self.pool = PoolAccountant(store, pool_scope, payout_divisor)
        self.selector = WinnerSelector(entropy or SecretsEntropy())
        self.payouts = PayoutAuthorizer(self.index, ledger, self.lottery_address)

        self._round_locks: Dict[int, asyncio.Lock] = {}
        self._lifecycle_lock = asyncio.Lock()
        self._persist_lock = asyncio.Lock()

        logger.info(
            "Lottery engine ready (pool scope=%s, payout divisor=%d, lottery account=%s)",
            pool_scope.value,
            payout_divisor,
            self.lottery_address,
        )

    @classmethod
    def from_config(
        cls,
        config: Dict[str, Any],
        store: LotteryStore,
        ledger: LedgerClient,
        *,
        lottery_address: Optional[str] = None,
        clock: Optional[Clock] = None,
        entropy: Optional[EntropySource] = None,
    ) -> "LotteryEngine":
        return cls(
            store,
            ledger,
            lottery_address=lottery_address or get_config_value(config, "ledger.lottery_address"),
            clock=clock,
            entropy=entropy or build_entropy(config),
            pool_scope=PoolScope(str(get_config_value(config, "lottery.pool_scope", "global")).lower()),
            payout_divisor=int(get_config_value(config, "lottery.payout_divisor", 2)),
            faucet_amount=int(get_config_value(config, "ledger.faucet_amount", 100)),
        )

    # =============== GUARDS ===============

    def _require_initialized(self) -> LotteryConfiguration:
        if self.store.phase == GlobalPhase.UNINITIALIZED or self.store.configuration is None:
            raise UninitializedError()
        return self.store.configuration

    def _load_round(self, round_id: int) -> LotteryRound:
        lottery_round = self.store.get_round(round_id)
        if lottery_round is None:
            raise RoundNotFoundError(round_id)
        return lottery_round

    def _round_lock(self, round_id: int) -> asyncio.Lock:
        """Lock of an existing round; unknown ids never enter the lock map"""
        self._load_round(round_id)
        return self._round_locks.setdefault(round_id, asyncio.Lock())

    def _require_active(self, action: str) -> None:
        if self.store.phase != GlobalPhase.ACTIVE:
            raise InvalidPhaseError(f"Cannot {action} while lottery is {self.store.phase.name}")

    async def _persist(self) -> None:
        """Snapshot the store and write it off the event loop.

        Writes are serialised so an older snapshot never replaces a newer one.
        """
        if self.store.snapshot_path is None:
            return
        async with self._persist_lock:
            data = self.store.to_dict()
            try:
                await asyncio.to_thread(self.store.write_snapshot, data)
            except OSError as exc:
                logger.error("Store snapshot write failed: %s", exc)
                raise StoreWriteError(str(self.store.snapshot_path), exc) from exc

    # =============== LIFECYCLE ===============

    async def initialize(self, ticket_price: int, round_duration: int) -> LotteryConfiguration:
        """Fix ticket price and round duration; allowed exactly once"""
        async with self._lifecycle_lock:
            if self.store.phase != GlobalPhase.UNINITIALIZED:
                raise AlreadyInitializedError(self.store.phase)
            _require_positive_int("ticket_price", ticket_price)
            _require_positive_int("round_duration", round_duration)

            configuration = LotteryConfiguration(ticket_price=ticket_price, round_duration=round_duration)
            self.store.set_configuration(configuration)
            self.store.set_phase(GlobalPhase.IDLE)
            await self._persist()

        logger.info("Lottery initialized: ticket price %d, round duration %ds", ticket_price, round_duration)
        return configuration

    async def start_round(self) -> int:
        """Open the next round and move the global phase to ACTIVE"""
        async with self._lifecycle_lock:
            configuration = self._require_initialized()
            if self.store.phase != GlobalPhase.IDLE:
                raise InvalidPhaseError(f"Cannot start a new round while lottery is {self.store.phase.name}")

            round_id = 0 if self.store.current_round_id is None else self.store.current_round_id + 1
            now = self.clock.now()
            lottery_round = LotteryRound(
                round_id=round_id,
                start_time=now,
                end_time=now + configuration.round_duration,
            )
            self.store.current_round_id = round_id
            self.store.save_round(lottery_round)
            self.store.set_phase(GlobalPhase.ACTIVE)
            await self._persist()

        logger.info("Round %d started, open until %d", round_id, lottery_round.end_time)
        return round_id

    async def buy_ticket(self, caller: str, round_id: int, count: int) -> PurchaseReceipt:
        """Reserve `count` tickets for `caller`, collect payment, then credit the pool"""
        configuration = self._require_initialized()
        _require_positive_int("count", count)

        self._require_active("buy tickets")
        async with self._round_lock(round_id):
            self._require_active("buy tickets")
            lottery_round = self._load_round(round_id)
            if lottery_round.marker != RoundMarker.ACTIVE:
                raise InvalidPhaseError(f"Round {round_id} is {lottery_round.marker.name}")
            now = self.clock.now()
            if not now < lottery_round.end_time:
                raise RoundExpiredError(round_id, lottery_round.end_time)

            # reserve
            numbers = self.tickets.allocate(lottery_round, count)
            participation, created = self.index.record_purchase(caller, lottery_round, numbers)
            self.store.save_round(lottery_round)
            await self._persist()

            # pay
            amount = count * configuration.ticket_price
            await transfer_or_fail(
                self.ledger,
                derive_address(caller),
                self.lottery_address,
                amount,
                round_id=round_id,
                tickets=numbers,
            )

            # finalize against the stored record
            lottery_round = self._load_round(round_id)
            self.pool.accrue(lottery_round, amount)
            self.store.save_round(lottery_round)
            await self._persist()

        logger.info("%s bought tickets %s in round %d for %d", caller, numbers, round_id, amount)
        return PurchaseReceipt(
            round_id=round_id,
            caller=caller,
            position=participation.position,
            tickets=numbers,
            amount_paid=amount,
            new_participation=created,
        )

    async def close_round(self, round_id: int) -> LotteryRound:
        """Draw the winning ticket once the round's close time has passed"""
        self._require_initialized()

        self._require_active("close a round")
        async with self._round_lock(round_id):
            self._require_active("close a round")
            lottery_round = self._load_round(round_id)
            if lottery_round.marker != RoundMarker.ACTIVE:
                raise InvalidPhaseError(f"Round {round_id} is already {lottery_round.marker.name}")
            if self.clock.now() < lottery_round.end_time:
                raise RoundNotYetClosedError(round_id, lottery_round.end_time)

            winning_ticket = self.selector.draw(lottery_round)
            lottery_round.winning_ticket = winning_ticket
            if winning_ticket is None:
                lottery_round.marker = RoundMarker.COMPLETED
                logger.info("Round %d closed without tickets sold", round_id)
            else:
                lottery_round.marker = RoundMarker.AWAITING_PAYOUT
                logger.info("Round %d closed, winning ticket %d of %d", round_id, winning_ticket, lottery_round.tickets_sold)
            self.store.save_round(lottery_round)
            if self.store.current_round_id == round_id:
                self.store.set_phase(GlobalPhase.IDLE)
            await self._persist()

        return lottery_round

    async def claim(self, caller: str, round_id: int) -> ClaimReceipt:
        """Pay the holder of the winning ticket; succeeds at most once per round"""
        self._require_initialized()

        async with self._round_lock(round_id):
            lottery_round = self._load_round(round_id)
            if lottery_round.marker == RoundMarker.COMPLETED:
                raise AlreadyCompletedError(round_id)
            if lottery_round.marker != RoundMarker.AWAITING_PAYOUT:
                raise InvalidPhaseError(f"Round {round_id} has not been closed yet")

            self.payouts.verify(caller, lottery_round)
            payout_address = derive_address(caller)

            # reserve
            reward = self.pool.reserve_payout(lottery_round)
            self.store.save_round(lottery_round)
            await self._persist()

            # pay
            await self.payouts.pay(lottery_round, payout_address, reward)

            # finalize: the marker flip is the last step
            lottery_round = self._load_round(round_id)
            lottery_round.winner = caller
            lottery_round.marker = RoundMarker.COMPLETED
            self.store.save_round(lottery_round)
            await self._persist()

        logger.info("Round %d paid out %d to %s", round_id, reward, caller)
        return ClaimReceipt(
            round_id=round_id,
            winner=caller,
            payout_address=payout_address,
            winning_ticket=lottery_round.winning_ticket,
            reward=reward,
            pool_remaining=self.pool.balance(lottery_round),
        )

    async def delete_round(self, round_id: int) -> None:
        """Remove a paid-out round. Its handles stay in the caller index, orphaned."""
        async with self._round_lock(round_id):
            lottery_round = self._load_round(round_id)
            if lottery_round.marker != RoundMarker.COMPLETED:
                raise InvalidPhaseError(f"Round {round_id} is {lottery_round.marker.name}; only completed rounds can be deleted")
            self.store.remove_round(round_id)
            await self._persist()
        self._round_locks.pop(round_id, None)
        logger.info("Round %d deleted", round_id)

    # =============== QUERIES ===============

    def get_round(self, round_id: int) -> LotteryRound:
        return self._load_round(round_id)

    def list_rounds(self) -> List[LotteryRound]:
        return self.store.list_rounds()

    def current_round(self) -> Optional[LotteryRound]:
        if self.store.current_round_id is None:
            return None
        return self.store.get_round(self.store.current_round_id)

    def get_participations(self, caller: str) -> List[ParticipationView]:
        return self.index.participations_for(caller)

    def get_configuration(self) -> Dict[str, Any]:
        payload = self.store.configuration_payload()
        payload.update(
            {
                "pool_scope": self.pool.scope.value,
                "payout_divisor": self.pool.payout_divisor,
                "lottery_address": self.lottery_address,
            }
        )
        return payload

    # =============== WALLET HELPERS ===============

    async def faucet(self, caller: str) -> int:
        """Give an empty wallet `faucet_amount` tokens from the lottery account"""
        address = derive_address(caller)
        balance = await self.ledger.balance_of(address)
        if balance > 0:
            raise InvalidRequestError("To prevent faucet drain, please use your existing tokens")
        ok = await self.ledger.transfer(self.lottery_address, address, self.faucet_amount)
        if not ok:
            raise InvalidRequestError("Faucet is empty")
        logger.info("Faucet sent %d to %s", self.faucet_amount, shorten_address(address))
        return self.faucet_amount

    async def wallet_balance(self, identity: str) -> int:
        return await self.ledger.balance_of(derive_address(identity))
