"""Adaptive gateway selection for content-addressed reads.

Each storage network gets a ``GatewaySelector`` holding live statistics for its
configured endpoints. Scores are recomputed on every pick so a gateway that just
failed is de-prioritised immediately and recovers once the penalty window lapses.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from nft_static_data.content.references import ResolvedReference, StorageNetwork

logger = logging.getLogger(__name__)

FAILURE_PENALTY_SECONDS = 60.0
FAILURE_PENALTY = 0.5
SLOW_RESPONSE_MS = 10_000.0
UNTRIED_SCORE = 0.5


@dataclass
class GatewayStat:
    url: str
    success_count: int = 0
    fail_count: int = 0
    total_response_time_ms: float = 0.0
    avg_response_time_ms: float = 0.0
    last_success_at: float | None = None
    last_failure_at: float | None = None

    @property
    def attempts(self) -> int:
        return self.success_count + self.fail_count

    def success_rate(self) -> float:
        return self.success_count / self.attempts if self.attempts else UNTRIED_SCORE

    def time_penalty(self, now: float) -> float:
        if self.last_failure_at is not None and now - self.last_failure_at < FAILURE_PENALTY_SECONDS:
            return FAILURE_PENALTY
        return 1.0

    def response_score(self) -> float:
        if self.success_count == 0:
            return UNTRIED_SCORE
        return max(0.0, 1 - self.avg_response_time_ms / SLOW_RESPONSE_MS)

    def score(self, now: float) -> float:
        return (self.success_rate() * 0.6 + self.response_score() * 0.4) * self.time_penalty(now)


@dataclass(frozen=True)
class ResolvedEndpoint:
    url: str
    gateway: str | None  # base the URL was built from; None for the project gateway
    network: StorageNetwork


class GatewaySelector:
    """Picks the best endpoint for one storage network."""

    def __init__(
        self,
        urls: Sequence[str],
        network: StorageNetwork,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        unique = list(dict.fromkeys(u for u in urls if u))
        if not unique:
            raise ValueError(f"No gateways configured for {network.value}")
        self.network = network
        self._clock = clock
        self._stats = [GatewayStat(url=u) for u in unique]
        self._by_url = {s.url: s for s in self._stats}

    @property
    def urls(self) -> list[str]:
        return [s.url for s in self._stats]

    def stat(self, url: str) -> GatewayStat | None:
        return self._by_url.get(url)

    def pick_best(self) -> str:
        now = self._clock()
        # max() keeps the first of equal scores, i.e. configuration order.
        best = max(self._stats, key=lambda s: s.score(now))
        return best.url

    def record_success(self, url: str, latency_ms: float) -> None:
        stat = self._by_url.get(url)
        if stat is None:
            return
        stat.success_count += 1
        stat.total_response_time_ms += latency_ms
        stat.avg_response_time_ms = stat.total_response_time_ms / stat.success_count
        stat.last_success_at = self._clock()
        logger.debug(
            "Gateway success %s %s latency=%.0fms avg=%.0fms",
            self.network.value,
            url,
            latency_ms,
            stat.avg_response_time_ms,
        )

    def record_failure(self, url: str) -> None:
        stat = self._by_url.get(url)
        if stat is None:
            return
        stat.fail_count += 1
        stat.last_failure_at = self._clock()
        logger.debug(
            "Gateway failure %s %s rate=%.2f",
            self.network.value,
            url,
            stat.success_count / stat.attempts,
        )

    def stats(self) -> list[dict[str, Any]]:
        return [
            {
                "url": s.url,
                "success_count": s.success_count,
                "fail_count": s.fail_count,
                "avg_response_time_ms": round(s.avg_response_time_ms),
                "success_rate": round(s.success_count / s.attempts, 3) if s.attempts else None,
            }
            for s in self._stats
        ]

    def log_stats(self) -> None:
        for s in self.stats():
            logger.info(
                "Gateway stats %s %s success=%d fail=%d rate=%s avg=%dms",
                self.network.value,
                s["url"],
                s["success_count"],
                s["fail_count"],
                "n/a" if s["success_rate"] is None else f"{s['success_rate'] * 100:.1f}%",
                s["avg_response_time_ms"],
            )


def build_url(gateway: str, ref: ResolvedReference, *, network_name: str = "mainnet") -> str:
    """Combine a gateway base with a reference using the network's addressing style."""
    if ref.network is StorageNetwork.CONSENSUS_LOG:
        return f"{gateway}{ref.identifier}?network={network_name}"
    if "{cid}" in gateway:
        return gateway.replace("{cid}", ref.identifier) + ref.path
    suffix = f"/{ref.path}" if ref.path else ""
    return f"{gateway}{ref.identifier}{suffix}"
