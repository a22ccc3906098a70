"""
Player-Ticket Index - resolves (caller, round) to a position in the round's
participation list.

Caller index: caller -> [handle, ...], one handle per round entered.
Position index: handle -> position of the Participation inside its round.
"""

from typing import List, Optional, Tuple

from ticket_lottery.lottery.models import (
    LotteryRound,
    Participation,
    ParticipationHandle,
    ParticipationView,
)
from ticket_lottery.lottery.store import LotteryStore
from ticket_lottery.utils.logger import get_logger

logger = get_logger(__name__)


class IndexCorruptionError(RuntimeError):
    """The handle/position/participation triangle is inconsistent"""


class PlayerTicketIndex:
    """Two-level index over the store's caller and position maps"""

    def __init__(self, store: LotteryStore):
        self._store = store

    def find_handle(self, caller: str, round_id: int) -> Optional[ParticipationHandle]:
        for handle in self._store.get_handles(caller):
            if handle.round_id == round_id:
                return handle
        return None

    def lookup(self, caller: str, lottery_round: LotteryRound) -> Optional[Participation]:
        """Return the caller's Participation in `lottery_round`, or None"""
        handle = self.find_handle(caller, lottery_round.round_id)
        if handle is None:
            return None
        return self._resolve(handle, caller, lottery_round)

    def record_purchase(
        self, caller: str, lottery_round: LotteryRound, tickets: List[int]
    ) -> Tuple[Participation, bool]:
        """Attach `tickets` to the caller's Participation, creating it on first entry.

        Mutates `lottery_round` in place and commits index entries to the
        store immediately. Returns the Participation and whether it is new.
        """
        existing = self.lookup(caller, lottery_round)
        if existing is not None:
            existing.tickets.extend(tickets)
            return existing, False

        position = len(lottery_round.participations)
        participation = Participation(position=position, caller=caller, tickets=list(tickets))
        lottery_round.participations.append(participation)

        handle = ParticipationHandle.mint(lottery_round.round_id)
        self._store.append_handle(caller, handle)
        self._store.set_position(handle, position)
        logger.debug("Minted handle %s for %s at position %d", handle, caller, position)
        return participation, True

    def participations_for(self, caller: str) -> List[ParticipationView]:
        """Resolve every handle the caller holds; deleted rounds come back orphaned"""
        views: List[ParticipationView] = []
        for handle in self._store.get_handles(caller):
            lottery_round = self._store.get_round(handle.round_id)
            position = self._store.get_position(handle)
            if lottery_round is None:
                views.append(
                    ParticipationView(
                        handle=str(handle),
                        round_id=handle.round_id,
                        position=position,
                        tickets=[],
                        orphaned=True,
                    )
                )
                continue
            participation = self._resolve(handle, caller, lottery_round)
            views.append(
                ParticipationView(
                    handle=str(handle),
                    round_id=handle.round_id,
                    position=participation.position,
                    tickets=list(participation.tickets),
                )
            )
        return views

    def _resolve(
        self, handle: ParticipationHandle, caller: str, lottery_round: LotteryRound
    ) -> Participation:
        position = self._store.get_position(handle)
        if position is None or not 0 <= position < len(lottery_round.participations):
            raise IndexCorruptionError(
                f"Handle {handle} of {caller} does not resolve inside round {lottery_round.round_id}"
            )
        participation = lottery_round.participations[position]
        if participation.caller != caller or participation.position != position:
            raise IndexCorruptionError(
                f"Handle {handle} resolves to position {position} owned by {participation.caller}"
            )
        return participation
