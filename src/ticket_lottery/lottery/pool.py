"""
Pool Accountant - tracks value paid into the prize pool and sizes payouts
"""

from ticket_lottery.lottery.models import LotteryRound, PoolScope
from ticket_lottery.lottery.store import LotteryStore
from ticket_lottery.utils.logger import get_logger

logger = get_logger(__name__)


class PoolAccountant:
    """Accrues ticket sales and reserves the winner's share.

    With PoolScope.GLOBAL every round feeds and drains one shared balance
    (store.prize_pool). With PoolScope.ROUND a round's balance is its own pot
    minus what has already been reserved for its winner.
    """

    def __init__(self, store: LotteryStore, scope: PoolScope = PoolScope.GLOBAL, payout_divisor: int = 2):
        if payout_divisor < 1:
            raise ValueError("payout_divisor must be >= 1")
        self._store = store
        self.scope = scope
        self.payout_divisor = payout_divisor

    def accrue(self, lottery_round: LotteryRound, amount: int) -> None:
        lottery_round.pot += amount
        if self.scope == PoolScope.GLOBAL:
            self._store.set_prize_pool(self._store.prize_pool + amount)

    def balance(self, lottery_round: LotteryRound) -> int:
        if self.scope == PoolScope.GLOBAL:
            return self._store.prize_pool
        return lottery_round.pot - lottery_round.winner_prize

    def reserve_payout(self, lottery_round: LotteryRound) -> int:
        """Take balance // payout_divisor out of the pool and return it.

        The remainder is never distributed; it stays in the pool.
        """
        available = self.balance(lottery_round)
        reward = available // self.payout_divisor
        if self.scope == PoolScope.GLOBAL:
            self._store.set_prize_pool(available - reward)
        lottery_round.winner_prize += reward
        logger.info(
            "Reserved payout of %d from %s pool for round %d (%d remaining)",
            reward,
            self.scope.value,
            lottery_round.round_id,
            available - reward,
        )
        return reward
