"""Unit tests for gateway scoring, selection and URL building."""

from __future__ import annotations

import pytest

from nft_static_data.content.gateways import (
    FAILURE_PENALTY,
    GatewaySelector,
    GatewayStat,
    build_url,
)
from nft_static_data.content.references import ResolvedReference, StorageNetwork


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class TestGatewayStat:
    def test_untried_gateway_is_neutral(self):
        stat = GatewayStat(url="https://g/")
        assert stat.success_rate() == 0.5
        assert stat.response_score() == 0.5
        assert stat.score(0.0) == pytest.approx(0.5)

    def test_penalty_multiplier_in_isolation(self):
        stat = GatewayStat(url="https://g/", last_failure_at=100.0)
        assert stat.time_penalty(130.0) == FAILURE_PENALTY
        assert stat.time_penalty(161.0) == 1.0

    def test_slow_gateway_has_zero_response_score(self):
        stat = GatewayStat(url="https://g/", success_count=1, avg_response_time_ms=25_000)
        assert stat.response_score() == 0.0


class TestGatewaySelector:
    def test_requires_at_least_one_url(self):
        with pytest.raises(ValueError, match="No gateways"):
            GatewaySelector([], StorageNetwork.IPFS)

    def test_duplicates_are_dropped(self):
        sel = GatewaySelector(["https://a/", "https://a/", "https://b/"], StorageNetwork.IPFS)
        assert sel.urls == ["https://a/", "https://b/"]

    def test_ties_keep_configuration_order(self, clock):
        sel = GatewaySelector(["https://a/", "https://b/"], StorageNetwork.IPFS, clock=clock)
        assert sel.pick_best() == "https://a/"

    def test_healthy_gateway_beats_failing_one(self, clock):
        sel = GatewaySelector(["https://bad/", "https://good/"], StorageNetwork.IPFS, clock=clock)
        for _ in range(10):
            sel.record_success("https://good/", 50)
            sel.record_failure("https://bad/")
        clock.now += 120  # outside the failure window
        assert sel.pick_best() == "https://good/"

    def test_recent_failure_lowers_score(self, clock):
        sel = GatewaySelector(["https://a/", "https://b/"], StorageNetwork.IPFS, clock=clock)
        for _ in range(10):
            sel.record_success("https://a/", 50)
        before = sel.stat("https://a/").score(clock.now)

        sel.record_failure("https://a/")
        after = sel.stat("https://a/").score(clock.now)

        assert after < before
        stat = sel.stat("https://a/")
        unpenalised = stat.success_rate() * 0.6 + stat.response_score() * 0.4
        assert after == pytest.approx(unpenalised * FAILURE_PENALTY)

    def test_failure_rotates_to_next_gateway(self, clock):
        sel = GatewaySelector(["https://a/", "https://b/"], StorageNetwork.IPFS, clock=clock)
        sel.record_failure("https://a/")
        assert sel.pick_best() == "https://b/"

    def test_unknown_url_is_ignored(self, clock):
        sel = GatewaySelector(["https://a/"], StorageNetwork.IPFS, clock=clock)
        sel.record_failure("https://other/")
        sel.record_success("https://other/", 10)
        assert sel.stat("https://a/").attempts == 0

    def test_stats_report(self, clock):
        sel = GatewaySelector(["https://a/"], StorageNetwork.IPFS, clock=clock)
        sel.record_success("https://a/", 100)
        sel.record_success("https://a/", 300)
        sel.record_failure("https://a/")
        [row] = sel.stats()
        assert row["success_count"] == 2
        assert row["fail_count"] == 1
        assert row["avg_response_time_ms"] == 200
        assert row["success_rate"] == pytest.approx(0.667)


class TestBuildUrl:
    def test_path_style(self):
        ref = ResolvedReference(StorageNetwork.IPFS, "QmX", "1.json")
        assert build_url("https://ipfs.io/ipfs/", ref) == "https://ipfs.io/ipfs/QmX/1.json"

    def test_without_path(self):
        ref = ResolvedReference(StorageNetwork.ARWEAVE, "abc")
        assert build_url("https://arweave.net/", ref) == "https://arweave.net/abc"

    def test_subdomain_template(self):
        ref = ResolvedReference(StorageNetwork.IPFS, "bafy", "2.json")
        assert build_url("https://{cid}.ipfs.dweb.link/", ref) == "https://bafy.ipfs.dweb.link/2.json"

    def test_consensus_log_carries_network(self):
        ref = ResolvedReference(StorageNetwork.CONSENSUS_LOG, "0.0.99")
        url = build_url("https://tier.bot/api/hashinals-cdn/", ref, network_name="testnet")
        assert url == "https://tier.bot/api/hashinals-cdn/0.0.99?network=testnet"
