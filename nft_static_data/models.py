"""Pydantic schemas for the JSON payloads of external services."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

# -- Ledger (mirror node) -------------------------------------------------------


class NftRecord(BaseModel):
    serial_number: int
    deleted: bool = False
    metadata: str = ""  # base64-encoded pointer to off-chain metadata
    token_id: str | None = None


class PageLinks(BaseModel):
    next: str | None = None


class NftPage(BaseModel):
    nfts: list[NftRecord] = Field(default_factory=list)
    links: PageLinks = Field(default_factory=PageLinks)


class TokenInfo(BaseModel):
    token_id: str
    name: str | None = None
    symbol: str | None = None
    type: str | None = None
    total_supply: int = 0
    max_supply: int | None = None


# -- Pinning service ------------------------------------------------------------

PinState = Literal["queued", "pinning", "pinned", "failed"]


class Pin(BaseModel):
    cid: str
    name: str | None = None
    meta: dict[str, Any] | None = None


class PinStatus(BaseModel):
    requestid: str
    status: PinState
    created: str | None = None
    pin: Pin
    delegates: list[str] = Field(default_factory=list)
    info: dict[str, Any] | None = None


class PinResults(BaseModel):
    count: int = 0
    results: list[PinStatus] = Field(default_factory=list)
