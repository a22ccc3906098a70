"""Core data models for the lottery engine."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional


class GlobalPhase(IntEnum):
    """Lottery-wide phase; only ever reflects the most recently started round."""

    UNINITIALIZED = 0
    IDLE = 1
    ACTIVE = 2


class RoundMarker(IntEnum):
    """Per-round completion marker, gating claim and delete."""

    ACTIVE = 0
    AWAITING_PAYOUT = 1
    COMPLETED = 2


class PoolScope(str, Enum):
    """Whether ticket sales accrue into one shared pool or one pool per round."""

    GLOBAL = "global"
    ROUND = "round"


@dataclass(frozen=True)
class LotteryConfiguration:
    """Immutable settings fixed by `initialize`."""

    ticket_price: int
    round_duration: int


@dataclass(frozen=True)
class ParticipationHandle:
    """Opaque token linking a caller to one round's Participation."""

    token: str
    round_id: int

    @classmethod
    def mint(cls, round_id: int) -> "ParticipationHandle":
        return cls(token=uuid.uuid4().hex, round_id=round_id)

    @classmethod
    def parse(cls, value: str) -> "ParticipationHandle":
        token, sep, rest = value.partition("#")
        if not sep or not rest.endswith("#"):
            raise ValueError(f"Malformed participation handle: {value!r}")
        return cls(token=token, round_id=int(rest[:-1]))

    def __str__(self) -> str:
        return f"{self.token}#{self.round_id}#"


@dataclass
class Participation:
    """A caller's ticket ownership inside one round."""

    position: int
    caller: str
    tickets: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"position": self.position, "caller": self.caller, "tickets": list(self.tickets)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Participation":
        return cls(
            position=int(data["position"]),
            caller=data["caller"],
            tickets=[int(t) for t in data.get("tickets", [])],
        )


@dataclass
class LotteryRound:
    """One lottery instance, keyed by its integer id."""

    round_id: int
    start_time: int
    end_time: int
    tickets_sold: int = 0
    winning_ticket: Optional[int] = None
    participations: List[Participation] = field(default_factory=list)
    marker: RoundMarker = RoundMarker.ACTIVE
    winner: Optional[str] = None
    pot: int = 0
    winner_prize: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round_id": self.round_id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "tickets_sold": self.tickets_sold,
            "winning_ticket": self.winning_ticket,
            "participations": [p.to_dict() for p in self.participations],
            "marker": self.marker.value,
            "marker_name": self.marker.name,
            "winner": self.winner,
            "pot": self.pot,
            "winner_prize": self.winner_prize,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LotteryRound":
        return cls(
            round_id=int(data["round_id"]),
            start_time=int(data["start_time"]),
            end_time=int(data["end_time"]),
            tickets_sold=int(data.get("tickets_sold", 0)),
            winning_ticket=data.get("winning_ticket"),
            participations=[Participation.from_dict(p) for p in data.get("participations", [])],
            marker=RoundMarker(int(data.get("marker", 0))),
            winner=data.get("winner"),
            pot=int(data.get("pot", 0)),
            winner_prize=int(data.get("winner_prize", 0)),
        )


@dataclass
class PurchaseReceipt:
    """Result of a successful ticket purchase."""

    round_id: int
    caller: str
    position: int
    tickets: List[int]
    amount_paid: int
    new_participation: bool


@dataclass
class ClaimReceipt:
    """Result of a successful prize claim."""

    round_id: int
    winner: str
    payout_address: str
    winning_ticket: int
    reward: int
    pool_remaining: int


@dataclass
class ParticipationView:
    """A caller's handle resolved against the store."""

    handle: str
    round_id: int
    position: Optional[int]
    tickets: List[int]
    orphaned: bool = False
