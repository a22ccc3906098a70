"""
Winner Selector & Payout Authorizer
"""

from typing import Optional

from ticket_lottery.blockchain.client import LedgerClient
from ticket_lottery.lottery.errors import (
    NotAParticipantError,
    NotWinnerError,
    PaymentFailureError,
)
from ticket_lottery.lottery.models import LotteryRound, Participation
from ticket_lottery.lottery.player_index import PlayerTicketIndex
from ticket_lottery.lottery.sources import EntropySource
from ticket_lottery.utils.common import shorten_address
from ticket_lottery.utils.logger import get_logger

logger = get_logger(__name__)


class WinnerSelector:
    """Draws the winning ticket uniformly from [0, tickets_sold)."""

    def __init__(self, entropy: EntropySource):
        self._entropy = entropy

    def draw(self, lottery_round: LotteryRound) -> Optional[int]:
        if lottery_round.tickets_sold == 0:
            return None
        return self._entropy.random_in_range(0, lottery_round.tickets_sold)


async def transfer_or_fail(
    ledger: LedgerClient,
    sender: str,
    recipient: str,
    amount: int,
    *,
    round_id: int,
    tickets=None,
) -> None:
    """Run a transfer on the rail; any rejection becomes PaymentFailureError."""
    try:
        ok = await ledger.transfer(sender, recipient, amount)
    except Exception as exc:
        logger.error("Transfer of %d from %s to %s raised: %s", amount, sender, recipient, exc)
        raise PaymentFailureError(round_id, amount, str(exc), tickets=tickets) from exc
    if not ok:
        logger.error("Transfer of %d from %s to %s rejected", amount, sender, recipient)
        raise PaymentFailureError(round_id, amount, "transfer rejected by ledger", tickets=tickets)


class PayoutAuthorizer:
    """Validates a claim and hands the reward to the transfer rail."""

    def __init__(self, index: PlayerTicketIndex, ledger: LedgerClient, lottery_address: str):
        self._index = index
        self._ledger = ledger
        self.lottery_address = lottery_address

    def verify(self, caller: str, lottery_round: LotteryRound) -> Participation:
        participation = self._index.lookup(caller, lottery_round)
        if participation is None:
            raise NotAParticipantError(caller, lottery_round.round_id)
        if lottery_round.winning_ticket not in participation.tickets:
            raise NotWinnerError(caller, lottery_round.round_id)
        return participation

    async def pay(self, lottery_round: LotteryRound, payout_address: str, reward: int) -> None:
        await transfer_or_fail(
            self._ledger,
            self.lottery_address,
            payout_address,
            reward,
            round_id=lottery_round.round_id,
        )
        logger.info("Paid %d to %s for round %d", reward, shorten_address(payout_address), lottery_round.round_id)
