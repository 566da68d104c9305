from __future__ import annotations

import logging
import re
from collections.abc import Iterable

logger = logging.getLogger(__name__)

_TOKEN_ID_RE = re.compile(r"^\d+\.\d+\.\d+$")

ENVIRONMENTS: dict[str, str] = {
    "MAIN": "mainnet",
    "TEST": "testnet",
    "PREVIEW": "previewnet",
    "mainnet": "mainnet",
    "testnet": "testnet",
    "previewnet": "previewnet",
}


class ValidationError(ValueError):
    def __init__(self, message: str, field: str) -> None:
        super().__init__(message)
        self.field = field


def validate_token_id(token_id: str | None) -> str:
    if not token_id:
        raise ValidationError("Token id is required", "token_id")
    if not _TOKEN_ID_RE.match(token_id):
        raise ValidationError(
            f'Invalid token id format: "{token_id}". Expected format: 0.0.XXXXXX', "token_id"
        )
    shard, realm, _ = token_id.split(".")
    if shard != "0" or realm != "0":
        logger.warning("Unusual shard/realm in token id %s", token_id)
    return token_id


def validate_token_ids(token_ids: Iterable[str]) -> tuple[list[str], list[tuple[str, str]]]:
    valid: list[str] = []
    invalid: list[tuple[str, str]] = []
    for token_id in token_ids:
        try:
            valid.append(validate_token_id(token_id))
        except ValidationError as e:
            invalid.append((token_id, str(e)))
    return valid, invalid


def network_name(environment: str) -> str:
    """Map MAIN/TEST/PREVIEW (or the long names) to the ledger network name."""
    try:
        return ENVIRONMENTS[environment]
    except KeyError:
        raise ValidationError(
            f'Invalid environment: "{environment}". Must be one of: {", ".join(ENVIRONMENTS)}',
            "environment",
        ) from None


def validate_serials(serials: Iterable[int]) -> list[int]:
    out = list(serials)
    if not out:
        raise ValidationError("Serials must be a non-empty list", "serials")
    for serial in out:
        if isinstance(serial, bool) or not isinstance(serial, int) or serial < 1:
            raise ValidationError(
                f"Invalid serial number: {serial}. Must be a positive integer.", "serials"
            )
    return out
