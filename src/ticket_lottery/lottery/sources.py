"""Clock and entropy sources consumed by the engine."""

from __future__ import annotations

import random
import secrets
import time
from typing import Any, Dict, Optional, Protocol

from ticket_lottery.utils.config import get_config_value
from ticket_lottery.utils.logger import get_logger

logger = get_logger(__name__)


class Clock(Protocol):
    def now(self) -> int:
        ...


class EntropySource(Protocol):
    def random_in_range(self, low: int, high: int) -> int:
        """Return an integer chosen uniformly from [low, high)."""
        ...


class SystemClock:
    """Wall clock in whole seconds."""

    def now(self) -> int:
        return int(time.time())


def _check_range(low: int, high: int) -> None:
    if high <= low:
        raise ValueError(f"Empty range [{low}, {high})")


class SecretsEntropy:
    """Draws from the OS CSPRNG.

    Unpredictable but not publicly verifiable; adversarial deployments need a
    verifiable randomness provider behind the same interface.
    """

    def random_in_range(self, low: int, high: int) -> int:
        _check_range(low, high)
        return low + secrets.randbelow(high - low)


class SeededEntropy:
    """Reproducible draws from `random.Random`. Predictable; never use where draws can be gamed."""

    def __init__(self, seed: Optional[int] = None):
        self._random = random.Random(seed)
        logger.warning("Seeded entropy source in use (seed=%s); winning tickets are predictable", seed)

    def random_in_range(self, low: int, high: int) -> int:
        _check_range(low, high)
        return self._random.randrange(low, high)


def build_entropy(config: Dict[str, Any]) -> EntropySource:
    kind = str(get_config_value(config, "lottery.entropy", "secrets")).lower()
    if kind == "secrets":
        return SecretsEntropy()
    if kind == "seeded":
        seed = get_config_value(config, "lottery.entropy_seed")
        return SeededEntropy(int(seed) if seed is not None else None)
    raise ValueError(f"Unknown entropy source '{kind}'")
