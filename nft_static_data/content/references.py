"""Parse raw metadata locations into a storage network and content identifier.

Rules are checked in a fixed order and the first match wins; a reference that
wraps one convention inside another is never re-parsed by a later rule.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlsplit

from nft_static_data.config import ARWEAVE_HOSTS


class StorageNetwork(str, Enum):
    IPFS = "ipfs"
    ARWEAVE = "arweave"
    CONSENSUS_LOG = "consensusLog"
    DIRECT = "direct"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ResolvedReference:
    network: StorageNetwork
    identifier: str
    path: str = ""  # anything after the identifier, without the leading slash


_CIDV0 = r"Qm[1-9A-HJ-NP-Za-km-z]{44}"
_CIDV1 = r"b[0-9A-Za-z]{58}"

_CID_RE = re.compile(rf"^(?:{_CIDV0}|{_CIDV1})$")
_ARWEAVE_ID_RE = re.compile(r"^[A-Za-z0-9_-]{43}$")

_AR_PREFIX_RE = re.compile(r"^ar://([^/?#]+)/?([^?#]*)", re.IGNORECASE)
_IPFS_PREFIX_RE = re.compile(r"^ipfs://(?:ipfs/)?([^/?#]+)/?([^?#]*)", re.IGNORECASE)
_IPFS_PATH_RE = re.compile(r"/ipfs/([^/?#]+)/?([^?#]*)")
_IPFS_SUBDOMAIN_RE = re.compile(r"^https?://([^./]+)\.ipfs\.[^/]+/?([^?#]*)", re.IGNORECASE)
_HCS_PREFIX_RE = re.compile(r"^hcs://", re.IGNORECASE)
_BARE_CID_RE = re.compile(rf"^({_CIDV0}|{_CIDV1})(?:/([^?#]*))?$")


def is_valid_cid(cid: str | None) -> bool:
    """CIDv0 (``Qm`` + 44 base58) or CIDv1 (``b`` + 58 base32) only."""
    return bool(cid) and isinstance(cid, str) and _CID_RE.match(cid) is not None


def is_valid_arweave_id(identifier: str | None) -> bool:
    """Arweave transaction ids are 43 characters of the URL-safe base64 alphabet."""
    return (
        bool(identifier)
        and isinstance(identifier, str)
        and _ARWEAVE_ID_RE.match(identifier) is not None
    )


def is_pinnable(identifier: str | None) -> bool:
    return is_valid_cid(identifier) or is_valid_arweave_id(identifier)


def _arweave_gateway(raw: str) -> ResolvedReference | None:
    try:
        parts = urlsplit(raw)
    except ValueError:
        return None
    if parts.scheme not in ("http", "https") or (parts.hostname or "") not in ARWEAVE_HOSTS:
        return None
    identifier, _, rest = parts.path.lstrip("/").partition("/")
    if not identifier:
        return None
    return ResolvedReference(StorageNetwork.ARWEAVE, identifier, rest)


def resolve(raw: str | None) -> ResolvedReference | None:
    """Return the network and identifier for ``raw``, or None when unrecognised.

    Generic HTTP(S), S3 and data URLs are deliberately unresolved: they are not
    content-addressed and must never be retried against content gateways.
    """
    if not raw or not isinstance(raw, str):
        return None
    raw = raw.strip()

    if m := _AR_PREFIX_RE.match(raw):
        return ResolvedReference(StorageNetwork.ARWEAVE, m.group(1), m.group(2))

    if ref := _arweave_gateway(raw):
        return ref

    if m := _IPFS_PREFIX_RE.match(raw):
        return ResolvedReference(StorageNetwork.IPFS, m.group(1), m.group(2))

    if m := _IPFS_PATH_RE.search(raw):
        return ResolvedReference(StorageNetwork.IPFS, m.group(1), m.group(2))

    if m := _IPFS_SUBDOMAIN_RE.match(raw):
        return ResolvedReference(StorageNetwork.IPFS, m.group(1), m.group(2))

    if _HCS_PREFIX_RE.match(raw):
        rest = raw[len("hcs://"):].rstrip("/")
        if not rest:
            return None
        return ResolvedReference(StorageNetwork.CONSENSUS_LOG, rest.rsplit("/", 1)[-1])

    if m := _BARE_CID_RE.match(raw):
        return ResolvedReference(StorageNetwork.IPFS, m.group(1), m.group(2) or "")

    return None


def classify(raw: str | None) -> StorageNetwork:
    """Network for ``raw``; unresolved HTTP(S) URLs are fetched directly."""
    ref = resolve(raw)
    if ref is not None:
        return ref.network
    if raw and raw.strip().lower().startswith(("http://", "https://")):
        return StorageNetwork.DIRECT
    return StorageNetwork.UNKNOWN


def extract_identifier(raw: str | None) -> str | None:
    ref = resolve(raw)
    return ref.identifier if ref else None
