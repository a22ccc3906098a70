import pytest

from ticket_lottery.lottery.models import LotteryRound
from ticket_lottery.lottery.tickets import TicketAllocator


def test_allocations_are_contiguous_from_zero():
    allocator = TicketAllocator()
    lottery_round = LotteryRound(round_id=0, start_time=0, end_time=10)

    assert allocator.allocate(lottery_round, 3) == [0, 1, 2]
    assert allocator.allocate(lottery_round, 2) == [3, 4]
    assert allocator.allocate(lottery_round, 1) == [5]
    assert lottery_round.tickets_sold == 6


@pytest.mark.parametrize("count", [0, -2])
def test_non_positive_count_is_rejected_without_advancing(count):
    allocator = TicketAllocator()
    lottery_round = LotteryRound(round_id=0, start_time=0, end_time=10, tickets_sold=4)

    with pytest.raises(ValueError):
        allocator.allocate(lottery_round, count)
    assert lottery_round.tickets_sold == 4
