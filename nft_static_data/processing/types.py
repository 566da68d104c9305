from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from nft_static_data.content.references import extract_identifier


class ErrorCategory(str, Enum):
    FETCH_METADATA = "fetchMetadata"
    PIN_METADATA = "pinMetadata"
    PIN_IMAGE = "pinImage"
    DATABASE_WRITE = "databaseWrite"
    GATEWAY_TIMEOUT = "gatewayTimeout"
    INVALID_CID = "invalidCID"
    OTHER = "other"


@dataclass(frozen=True)
class ErrorRecord:
    timestamp: float  # unix seconds
    token_id: str | None
    serial: int | None
    cid: str | None = None
    gateway: str | None = None
    message: str = "Unknown error"
    retry_count: int = 0
    error_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "tokenId": self.token_id,
            "serial": self.serial,
            "cid": self.cid,
            "gateway": self.gateway,
            "message": self.message,
            "retryCount": self.retry_count,
            "errorType": self.error_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ErrorRecord:
        return cls(
            timestamp=float(data.get("timestamp") or 0),
            token_id=data.get("tokenId"),
            serial=data.get("serial"),
            cid=data.get("cid"),
            gateway=data.get("gateway"),
            message=data.get("message") or "Unknown error",
            retry_count=int(data.get("retryCount") or 0),
            error_type=data.get("errorType"),
        )


@dataclass(frozen=True)
class NormalizedRecord:
    """Schema-agnostic metadata for one token serial."""

    token_id: str
    serial_number: int
    metadata_reference: str | None = None
    raw_metadata_json: str | None = None
    image_reference: str | None = None
    attributes: str | None = None  # JSON-encoded list
    name: str | None = None
    collection: str | None = None
    environment: str | None = None
    metadata_cid: str | None = None
    downloaded_to_file: bool = False
    fully_enriched: bool = False
    extra: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self) -> None:
        if isinstance(self.serial_number, bool) or not isinstance(self.serial_number, int) or self.serial_number < 1:
            raise ValueError(f"serial_number must be a positive integer, got {self.serial_number!r}")

    @property
    def uid(self) -> str:
        return f"{self.token_id}!{self.serial_number}"

    @classmethod
    def from_document(
        cls,
        *,
        token_id: str,
        serial_number: int,
        metadata_reference: str,
        document: dict[str, Any],
        collection: str | None,
        environment: str | None,
    ) -> NormalizedRecord:
        image = document.get("image")
        attributes = document.get("attributes")
        name = document.get("name")
        return cls(
            token_id=token_id,
            serial_number=serial_number,
            metadata_reference=metadata_reference,
            raw_metadata_json=json.dumps(document),
            image_reference=image if isinstance(image, str) and image else None,
            attributes=json.dumps(attributes) if attributes is not None else None,
            name=str(name) if name is not None else None,
            collection=collection,
            environment=environment,
            metadata_cid=extract_identifier(metadata_reference),
            downloaded_to_file=False,
            fully_enriched=True,
        )
