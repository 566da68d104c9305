from __future__ import annotations

import argparse

from nft_static_data.processing.validation import ENVIRONMENTS
from nft_static_data.stores.schemas import available_schemas


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="nft-static-data",
        description="Resolve NFT metadata through content gateways, pin it, and store it",
    )
    p.add_argument("--log-level", default="INFO", help="Python logging level (INFO, DEBUG, ...)")
    sub = p.add_subparsers(dest="command", required=True)

    scrape = sub.add_parser("scrape", help="Fetch, pin and store metadata for one or more tokens")
    scrape.add_argument(
        "--token", action="append", default=[], required=True, help="Token id 0.0.X (repeatable)"
    )
    scrape.add_argument(
        "--env",
        default="MAIN",
        choices=sorted(ENVIRONMENTS),
        help="Ledger environment (default MAIN)",
    )
    scrape.add_argument(
        "--collection", default=None, help="Collection name stored with each record (default: token symbol)"
    )
    scrape.add_argument(
        "--schema",
        default=None,
        choices=available_schemas(),
        help="Destination schema (default from env DB_SCHEMA)",
    )
    scrape.add_argument(
        "--concurrency", type=int, default=0, help="Override SCRAPE_CONCURRENCY"
    )
    scrape.add_argument("--dry-run", action="store_true", help="Fetch and pin but skip DB writes")
    scrape.add_argument(
        "--resume", action="store_true", help="Skip serials recorded in the saved progress state"
    )
    scrape.add_argument(
        "--export-errors", action="store_true", help="Write collected errors to a JSON file"
    )

    pins = sub.add_parser("validate-pins", help="Confirm unconfirmed CID records with the pinning service")
    pins.add_argument("--force", action="store_true", help="Re-pin anything not reported as pinned")
    pins.add_argument("--batch-size", type=int, default=0, help="Override PIN_BATCH_SIZE")
    return p
