"""In-memory transfer rail for development and tests."""

from __future__ import annotations

from typing import Dict

from ticket_lottery.utils.logger import get_logger

logger = get_logger(__name__)


class InMemoryLedger:
    """Balances held in a dict; a transfer exceeding the sender's balance is rejected."""

    def __init__(self) -> None:
        self._balances: Dict[str, int] = {}

    @staticmethod
    def _key(address: str) -> str:
        return address.lower()

    def mint(self, address: str, amount: int) -> None:
        key = self._key(address)
        self._balances[key] = self._balances.get(key, 0) + amount
        logger.info("Minted %d to %s", amount, address)

    async def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        if amount < 0:
            return False
        src, dst = self._key(sender), self._key(recipient)
        if self._balances.get(src, 0) < amount:
            logger.warning("Insufficient funds: %s holds %d, needs %d", sender, self._balances.get(src, 0), amount)
            return False
        self._balances[src] -= amount
        self._balances[dst] = self._balances.get(dst, 0) + amount
        return True

    async def balance_of(self, address: str) -> int:
        return self._balances.get(self._key(address), 0)

    async def health_check(self) -> Dict[str, object]:
        return {"status": "healthy", "backend": "memory", "accounts": len(self._balances)}

    async def close(self) -> None:
        return None
