"""Store object owning every durable map and scalar of the lottery."""

from __future__ import annotations

import copy
import json
import os
import tempfile
from collections import defaultdict
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from ticket_lottery.lottery.models import (
    GlobalPhase,
    LotteryConfiguration,
    LotteryRound,
    ParticipationHandle,
)
from ticket_lottery.utils.logger import get_logger

logger = get_logger(__name__)

Listener = Callable[[Optional[dict]], None]


class LotteryStore:
    """Three key-value maps plus the lottery-wide scalars.

    - caller identity -> ordered list of participation handles (append-only)
    - participation handle -> position inside the owning round
    - round id -> round record
    """

    def __init__(self, *, snapshot_path: Optional[str] = None) -> None:
        self._lock = Lock()
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._snapshot_path = Path(snapshot_path) if snapshot_path else None

        self._caller_handles: Dict[str, List[ParticipationHandle]] = {}
        self._handle_positions: Dict[ParticipationHandle, int] = {}
        self._rounds: Dict[int, LotteryRound] = {}

        self.configuration: Optional[LotteryConfiguration] = None
        self.phase: GlobalPhase = GlobalPhase.UNINITIALIZED
        self.current_round_id: Optional[int] = None
        self.prize_pool: int = 0

    # ------------------------------------------------------------------
    # Listener management
    # ------------------------------------------------------------------
    def add_listener(self, event_type: str, callback: Listener) -> None:
        with self._lock:
            self._listeners[event_type].append(callback)

    def emit(self, event_type: str, payload: Optional[dict]) -> None:
        listeners = list(self._listeners.get(event_type, []))
        for callback in listeners:
            try:
                callback(payload)
            except Exception as exc:  # pragma: no cover - listener bugs must not break the engine
                logger.error("Listener for %s failed: %s", event_type, exc)

    # ------------------------------------------------------------------
    # Round map
    # ------------------------------------------------------------------
    def get_round(self, round_id: int) -> Optional[LotteryRound]:
        with self._lock:
            record = self._rounds.get(round_id)
            return copy.deepcopy(record) if record is not None else None

    def save_round(self, record: LotteryRound) -> None:
        with self._lock:
            self._rounds[record.round_id] = copy.deepcopy(record)
        self.emit("round_update", record.to_dict())

    def remove_round(self, round_id: int) -> Optional[LotteryRound]:
        with self._lock:
            removed = self._rounds.pop(round_id, None)
        if removed is not None:
            self.emit("round_update", {"round_id": round_id, "deleted": True})
        return removed

    def list_rounds(self) -> List[LotteryRound]:
        with self._lock:
            return [copy.deepcopy(self._rounds[key]) for key in sorted(self._rounds)]

    # ------------------------------------------------------------------
    # Caller index and position index
    # ------------------------------------------------------------------
    def get_handles(self, caller: str) -> List[ParticipationHandle]:
        with self._lock:
            return list(self._caller_handles.get(caller, []))

    def append_handle(self, caller: str, handle: ParticipationHandle) -> None:
        with self._lock:
            self._caller_handles.setdefault(caller, []).append(handle)

    def get_position(self, handle: ParticipationHandle) -> Optional[int]:
        with self._lock:
            return self._handle_positions.get(handle)

    def set_position(self, handle: ParticipationHandle, position: int) -> None:
        with self._lock:
            self._handle_positions[handle] = position

    # ------------------------------------------------------------------
    # Scalars
    # ------------------------------------------------------------------
    def set_configuration(self, configuration: LotteryConfiguration) -> None:
        self.configuration = configuration
        self.emit("config_update", self.configuration_payload())

    def set_phase(self, phase: GlobalPhase) -> None:
        self.phase = phase
        self.emit("config_update", self.configuration_payload())

    def set_prize_pool(self, amount: int) -> None:
        self.prize_pool = amount
        self.emit("pool_update", {"prize_pool": amount})

    def configuration_payload(self) -> Dict[str, Any]:
        return {
            "current_round_id": self.current_round_id,
            "phase": self.phase.name,
            "ticket_price": self.configuration.ticket_price if self.configuration else None,
            "round_duration": self.configuration.round_duration if self.configuration else None,
            "prize_pool": self.prize_pool,
        }

    # ------------------------------------------------------------------
    # Snapshot persistence
    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "configuration": (
                    {
                        "ticket_price": self.configuration.ticket_price,
                        "round_duration": self.configuration.round_duration,
                    }
                    if self.configuration
                    else None
                ),
                "phase": self.phase.value,
                "current_round_id": self.current_round_id,
                "prize_pool": self.prize_pool,
                "caller_handles": {
                    caller: [str(h) for h in handles] for caller, handles in self._caller_handles.items()
                },
                "handle_positions": {str(h): pos for h, pos in self._handle_positions.items()},
                "rounds": {str(rid): record.to_dict() for rid, record in self._rounds.items()},
            }

    @property
    def snapshot_path(self) -> Optional[Path]:
        return self._snapshot_path

    def persist(self) -> None:
        """Write the snapshot file atomically; no-op without a snapshot path."""
        if self._snapshot_path is None:
            return
        self.write_snapshot(self.to_dict())

    def write_snapshot(self, data: Dict[str, Any]) -> None:
        """Blocking atomic write of an already taken snapshot"""
        if self._snapshot_path is None:
            return
        self._snapshot_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._snapshot_path.parent, prefix=".lottery-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle)
            os.replace(tmp_name, self._snapshot_path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.debug("Store snapshot written to %s", self._snapshot_path)

    @classmethod
    def load(cls, path: str) -> "LotteryStore":
        """Restore a store from its snapshot, or return an empty one bound to `path`."""
        store = cls(snapshot_path=path)
        snapshot = Path(path)
        if not snapshot.exists():
            logger.info("No store snapshot at %s; starting empty", snapshot)
            return store

        with open(snapshot, "r", encoding="utf-8") as handle:
            data = json.load(handle)

        configuration = data.get("configuration")
        if configuration:
            store.configuration = LotteryConfiguration(
                ticket_price=int(configuration["ticket_price"]),
                round_duration=int(configuration["round_duration"]),
            )
        store.phase = GlobalPhase(int(data.get("phase", 0)))
        store.current_round_id = data.get("current_round_id")
        store.prize_pool = int(data.get("prize_pool", 0))
        store._caller_handles = {
            caller: [ParticipationHandle.parse(h) for h in handles]
            for caller, handles in data.get("caller_handles", {}).items()
        }
        store._handle_positions = {
            ParticipationHandle.parse(h): int(pos) for h, pos in data.get("handle_positions", {}).items()
        }
        store._rounds = {
            int(rid): LotteryRound.from_dict(record) for rid, record in data.get("rounds", {}).items()
        }
        logger.info("Store restored from %s (%d rounds)", snapshot, len(store._rounds))
        return store
