"""
Lottery exceptions

Precondition failures mean nothing was mutated. PaymentFailureError means the
external transfer rail rejected a payment after state was already reserved.
"""

from typing import List, Optional


class LotteryError(Exception):
    """Base class of all lottery engine errors"""

    fatal = False


class PreconditionError(LotteryError):
    """The request was rejected before any state was mutated"""


class UninitializedError(PreconditionError):
    def __init__(self):
        super().__init__("Lottery not yet initialized")


class AlreadyInitializedError(PreconditionError):
    def __init__(self, phase):
        self.phase = phase
        super().__init__(f"Lottery already initialized and is in {phase.name}")


class InvalidRequestError(PreconditionError):
    """Malformed arguments (non-positive count, price or duration)"""


class InvalidPhaseError(PreconditionError):
    """Operation not valid in the current global phase or round marker"""


class RoundNotFoundError(PreconditionError):
    def __init__(self, round_id):
        self.round_id = round_id
        super().__init__(f"Lottery round with id={round_id} not found")


class RoundExpiredError(PreconditionError):
    def __init__(self, round_id, end_time):
        self.round_id = round_id
        self.end_time = end_time
        super().__init__(f"Round {round_id} closed at {end_time}; cannot buy tickets")


class RoundNotYetClosedError(PreconditionError):
    def __init__(self, round_id, end_time):
        self.round_id = round_id
        self.end_time = end_time
        super().__init__(f"Round {round_id} is open until {end_time}")


class NotAParticipantError(PreconditionError):
    def __init__(self, caller, round_id):
        self.caller = caller
        self.round_id = round_id
        super().__init__(f"{caller} holds no tickets in round {round_id}")


class NotWinnerError(PreconditionError):
    def __init__(self, caller, round_id):
        self.caller = caller
        self.round_id = round_id
        super().__init__(f"{caller} does not hold the winning ticket of round {round_id}")


class AlreadyCompletedError(PreconditionError):
    def __init__(self, round_id):
        self.round_id = round_id
        super().__init__(f"Round {round_id} has already been paid out")


class PaymentFailureError(LotteryError):
    """The transfer rail rejected a payment after state was reserved.

    Reserved ticket numbers, index entries and pool decrements are kept.
    """

    fatal = True

    def __init__(
        self,
        round_id: int,
        amount: int,
        reason: str,
        tickets: Optional[List[int]] = None,
    ):
        self.round_id = round_id
        self.amount = amount
        self.tickets = list(tickets or [])
        self.reason = reason
        super().__init__(f"Payment of {amount} for round {round_id} failed: {reason}")


class StoreWriteError(LotteryError):
    """The store snapshot could not be written; in-memory state is ahead of disk"""

    fatal = True

    def __init__(self, path: str, cause: OSError):
        self.path = path
        self.cause = cause
        super().__init__(f"Could not write store snapshot {path}: {cause}")
