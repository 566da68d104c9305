from __future__ import annotations

from dataclasses import dataclass

from nft_static_data import config as defaults
from nft_static_data.credentials import CredentialProvider, default_provider
from nft_static_data.stores.schemas import available_schemas


@dataclass(frozen=True)
class ScrapeConfig:
    # Gateways
    ipfs_gateways: tuple[str, ...]
    arweave_gateways: tuple[str, ...]
    consensus_gateways: tuple[str, ...]
    own_gateway_url: str

    # Pinning service
    pinning_service_url: str | None
    pinning_api_key: str | None

    # Retries / concurrency
    max_retries: int
    request_timeout_s: float
    concurrency: int
    ledger_page_limit: int
    page_delay_s: float
    pin_batch_size: int

    # Database
    schema: str
    write_batch_size: int
    query_limit: int

    # Local state
    cid_cache_file: str
    progress_state_dir: str

    @classmethod
    def from_env(cls, credentials: CredentialProvider | None = None) -> ScrapeConfig:
        creds = credentials or default_provider()
        return cls(
            ipfs_gateways=tuple(defaults.IPFS_GATEWAYS),
            arweave_gateways=tuple(defaults.ARWEAVE_GATEWAYS),
            consensus_gateways=tuple(defaults.CONSENSUS_GATEWAYS),
            own_gateway_url=defaults.OWN_GATEWAY_URL,
            pinning_service_url=creds.get("PINNING_SERVICE_URL"),
            pinning_api_key=creds.get("PINNING_API_KEY"),
            max_retries=defaults.MAX_RETRIES,
            request_timeout_s=defaults.REQUEST_TIMEOUT_SECONDS,
            concurrency=defaults.CONCURRENCY,
            ledger_page_limit=defaults.LEDGER_PAGE_LIMIT,
            page_delay_s=defaults.PAGE_DELAY_SECONDS,
            pin_batch_size=defaults.PIN_BATCH_SIZE,
            schema=defaults.DEFAULT_SCHEMA,
            write_batch_size=defaults.DB_WRITE_BATCH_SIZE,
            query_limit=defaults.DB_QUERY_LIMIT,
            cid_cache_file=defaults.CID_CACHE_FILE,
            progress_state_dir=defaults.PROGRESS_STATE_DIR,
        )

    def validate(self) -> None:
        problems: list[str] = []
        for label, gateways in (
            ("IPFS_GATEWAYS", self.ipfs_gateways),
            ("ARWEAVE_GATEWAYS", self.arweave_gateways),
            ("CONSENSUS_GATEWAYS", self.consensus_gateways),
        ):
            if not gateways:
                problems.append(f"{label} must list at least one gateway")
        if not self.pinning_service_url:
            problems.append("PINNING_SERVICE_URL is required")
        if not self.pinning_api_key:
            problems.append("PINNING_API_KEY is required")
        if self.max_retries < 1:
            problems.append("SCRAPE_MAX_RETRIES must be >= 1")
        if self.concurrency < 1:
            problems.append("SCRAPE_CONCURRENCY must be >= 1")
        if self.request_timeout_s <= 0:
            problems.append("SCRAPE_REQUEST_TIMEOUT_SECONDS must be > 0")
        if min(self.write_batch_size, self.query_limit, self.ledger_page_limit, self.pin_batch_size) < 1:
            problems.append("batch sizes and page limits must be >= 1")
        if self.schema not in available_schemas():
            problems.append(f"DB_SCHEMA must be one of: {', '.join(available_schemas())}")
        if problems:
            raise ValueError("; ".join(problems))
