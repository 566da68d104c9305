"""Unit tests for configuration, credentials and input validation."""

from __future__ import annotations

import dataclasses

import pytest

from nft_static_data.credentials import (
    ChainedCredentialProvider,
    EnvCredentialProvider,
    mask_credential,
    missing_credentials,
)
from nft_static_data.db import DatabaseConfig
from nft_static_data.processing.config import ScrapeConfig
from nft_static_data.processing.validation import (
    ValidationError,
    network_name,
    validate_serials,
    validate_token_id,
    validate_token_ids,
)


class DictProvider:
    def __init__(self, values: dict[str, str]) -> None:
        self._values = values

    def get(self, name: str) -> str | None:
        return self._values.get(name)


CREDS = DictProvider({"PINNING_SERVICE_URL": "https://pins.test/pins", "PINNING_API_KEY": "abcdef123456"})


class TestScrapeConfig:
    def test_from_env_defaults(self):
        cfg = ScrapeConfig.from_env(CREDS)
        assert cfg.max_retries == 18
        assert cfg.concurrency == 10
        assert cfg.schema == "TokenStaticData"
        assert cfg.pinning_api_key == "abcdef123456"
        cfg.validate()

    def test_validate_collects_problems(self):
        cfg = dataclasses.replace(
            ScrapeConfig.from_env(DictProvider({})), concurrency=0, schema="Bogus", ipfs_gateways=()
        )
        with pytest.raises(ValueError) as exc:
            cfg.validate()
        message = str(exc.value)
        for fragment in ("IPFS_GATEWAYS", "PINNING_API_KEY", "SCRAPE_CONCURRENCY", "DB_SCHEMA"):
            assert fragment in message


class TestCredentials:
    def test_env_provider(self, monkeypatch):
        monkeypatch.setenv("PINNING_API_KEY", "k")
        monkeypatch.setenv("PINNING_SERVICE_URL", "")
        provider = EnvCredentialProvider()
        assert provider.get("PINNING_API_KEY") == "k"
        assert provider.get("PINNING_SERVICE_URL") is None

    def test_chain_first_non_empty_wins(self):
        chain = ChainedCredentialProvider([DictProvider({"A": ""}), DictProvider({"A": "2"})])
        assert chain.get("A") == "2"
        assert chain.get("B") is None

    def test_missing(self):
        assert missing_credentials(DictProvider({"PINNING_API_KEY": "k"})) == ["PINNING_SERVICE_URL"]

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(None, "(not set)"), ("abc", "****"), ("abcdef123456", "ab********56")],
    )
    def test_mask(self, value, expected):
        assert mask_credential(value) == expected


class TestDatabaseConfig:
    def test_database_url_override(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@h/db")
        assert DatabaseConfig.get_connection_string() == "postgresql://u:p@h/db"

    def test_discrete_settings(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setenv("DB_HOST", "db.internal")
        monkeypatch.setenv("DB_NAME", "nfts")
        dsn = DatabaseConfig.get_connection_string()
        assert "@db.internal:5432/nfts?sslmode=disable" in dsn


class TestValidation:
    def test_token_ids(self):
        assert validate_token_id("0.0.123456") == "0.0.123456"
        valid, invalid = validate_token_ids(["0.0.1", "abc", "0.0"])
        assert valid == ["0.0.1"]
        assert [t for t, _ in invalid] == ["abc", "0.0"]

    def test_missing_token_id(self):
        with pytest.raises(ValidationError) as exc:
            validate_token_id("")
        assert exc.value.field == "token_id"

    def test_environments(self):
        assert network_name("MAIN") == "mainnet"
        assert network_name("previewnet") == "previewnet"
        with pytest.raises(ValidationError):
            network_name("DEV")

    def test_serials(self):
        assert validate_serials([1, 2]) == [1, 2]
        with pytest.raises(ValidationError):
            validate_serials([])
        with pytest.raises(ValidationError):
            validate_serials([1, 0])
