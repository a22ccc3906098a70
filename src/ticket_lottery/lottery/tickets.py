"""
Ticket Allocator - assigns contiguous ticket numbers within one round
"""

from typing import List

from ticket_lottery.lottery.models import LotteryRound


class TicketAllocator:
    """Hands out ticket numbers from a round's running `tickets_sold` counter"""

    def allocate(self, lottery_round: LotteryRound, count: int) -> List[int]:
        """Reserve `count` numbers starting at `tickets_sold` and advance the counter.

        The caller must hold the round's lock and persist the round before
        awaiting anything.
        """
        if count <= 0:
            raise ValueError("count must be positive")
        start = lottery_round.tickets_sold
        numbers = list(range(start, start + count))
        lottery_round.tickets_sold = start + count
        return numbers
