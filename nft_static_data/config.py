"""Environment-variable-driven defaults for the metadata pipeline.

Per-run settings are assembled into ``ScrapeConfig`` (processing/config.py);
this module only holds the raw defaults they start from.
"""

from __future__ import annotations

import os


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_csv(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


# -- Gateways -----------------------------------------------------------------
# A "{cid}" placeholder marks a subdomain-style gateway; anything else is a
# path-style base that the identifier is appended to.
IPFS_GATEWAYS: list[str] = _env_csv(
    "IPFS_GATEWAYS",
    "https://cloudflare-ipfs.com/ipfs/,"
    "https://ipfs.eth.aragon.network/ipfs/,"
    "https://ipfs.io/ipfs/,"
    "https://ipfs.eternum.io/ipfs/,"
    "https://{cid}.ipfs.dweb.link/",
)
ARWEAVE_GATEWAYS: list[str] = _env_csv(
    "ARWEAVE_GATEWAYS",
    "https://arweave.net/,https://ar-io.dev/,https://permagate.io/,https://arweave.developerdao.com/",
)
CONSENSUS_GATEWAYS: list[str] = _env_csv(
    "CONSENSUS_GATEWAYS",
    "https://tier.bot/api/hashinals-cdn/",
)
ARWEAVE_HOSTS: frozenset[str] = frozenset(
    {"arweave.net", "www.arweave.net", "ar-io.dev", "permagate.io", "arweave.developerdao.com"}
)

# Project-owned gateway used for "already live" probes and fast reads.
OWN_GATEWAY_URL: str = os.getenv(
    "OWN_GATEWAY_URL", "https://lazysuperheroes.myfilebase.com/ipfs/"
)

# -- Ledger (mirror node) -----------------------------------------------------
MIRROR_NODE_URLS: dict[str, str] = {
    "mainnet": os.getenv("MIRROR_NODE_MAINNET", "https://mainnet-public.mirrornode.hedera.com"),
    "testnet": os.getenv("MIRROR_NODE_TESTNET", "https://testnet.mirrornode.hedera.com"),
    "previewnet": os.getenv("MIRROR_NODE_PREVIEWNET", "https://previewnet.mirrornode.hedera.com"),
}

# -- Processing ---------------------------------------------------------------
MAX_RETRIES: int = int(os.getenv("SCRAPE_MAX_RETRIES", "18"))
REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("SCRAPE_REQUEST_TIMEOUT_SECONDS", "30"))
CONCURRENCY: int = int(os.getenv("SCRAPE_CONCURRENCY", "10"))
LEDGER_PAGE_LIMIT: int = int(os.getenv("SCRAPE_LEDGER_PAGE_LIMIT", "100"))
PAGE_DELAY_SECONDS: float = float(os.getenv("SCRAPE_PAGE_DELAY_SECONDS", "0.1"))
LEDGER_RETRY_STEP_SECONDS: float = float(os.getenv("SCRAPE_LEDGER_RETRY_STEP_SECONDS", "1.0"))
PIN_BATCH_SIZE: int = int(os.getenv("PIN_BATCH_SIZE", "20"))

# -- Database -----------------------------------------------------------------
DB_WRITE_BATCH_SIZE: int = int(os.getenv("DB_WRITE_BATCH_SIZE", "50"))
DB_QUERY_LIMIT: int = int(os.getenv("DB_QUERY_LIMIT", "100"))
DEFAULT_SCHEMA: str = os.getenv("DB_SCHEMA", "TokenStaticData")

# -- Local state --------------------------------------------------------------
CID_CACHE_FILE: str = os.getenv("CID_CACHE_FILE", "./cache/cid-cache.json")
PROGRESS_STATE_DIR: str = os.getenv("PROGRESS_STATE_DIR", "./state")

# -- Logging ------------------------------------------------------------------
LOG_FORMAT_JSON: bool = os.getenv("LOG_FORMAT", "text").strip().lower() == "json"
LOG_GATEWAY_STATS: bool = _env_bool("LOG_GATEWAY_STATS", True)
