"""Per-provider circuit breaker for repeated throttling"""

import time
from typing import Callable, Dict, Any

from ...core.exceptions import ProviderErrorKind
from ...core.logger import CentralizedLogger


_THROTTLE_KINDS = (ProviderErrorKind.RATE_LIMITED, ProviderErrorKind.BALANCE_DEPLETED)


class ProviderCircuitBreaker:
    """Skips a provider for a cool-down after consecutive throttling failures

    Only rate-limit and balance failures count; a success closes the circuit.
    """

    def __init__(
        self,
        threshold: int = 3,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.threshold = threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._failures: Dict[str, int] = {}
        self._open_until: Dict[str, float] = {}
        self.logger = CentralizedLogger("CircuitBreaker")

    def is_open(self, provider: str) -> bool:
        open_until = self._open_until.get(provider)
        if open_until is None:
            return False
        if self._clock() < open_until:
            return True
        # Cool-down over: let the next request probe the provider
        del self._open_until[provider]
        self._failures[provider] = 0
        self.logger.info(f"Circuit half-open for {provider}")
        return False

    def record_success(self, provider: str) -> None:
        self._failures[provider] = 0
        self._open_until.pop(provider, None)

    def record_failure(self, provider: str, kind: ProviderErrorKind) -> None:
        if kind not in _THROTTLE_KINDS:
            return
        count = self._failures.get(provider, 0) + 1
        self._failures[provider] = count
        if count >= self.threshold and provider not in self._open_until:
            self._open_until[provider] = self._clock() + self.cooldown_seconds
            self.logger.warning(
                f"Circuit opened for {provider} after {count} throttling failures; "
                f"skipping for {self.cooldown_seconds}s"
            )

    def snapshot(self) -> Dict[str, Any]:
        now = self._clock()
        return {
            provider: {
                "consecutive_failures": self._failures.get(provider, 0),
                "open": provider in self._open_until and now < self._open_until[provider],
                "retry_in_seconds": max(self._open_until.get(provider, now) - now, 0.0),
            }
            for provider in set(self._failures) | set(self._open_until)
        }
