"""Destination record layouts.

Two table shapes are supported. Each is a fixed tag with an explicit mapping
between ``NormalizedRecord`` attributes and table columns; the tag is validated
up front, never looked up dynamically per record.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from nft_static_data.processing.types import NormalizedRecord


class RecordSchema(str, Enum):
    TOKEN_STATIC_DATA = "TokenStaticData"
    SECURE_TRADE_METADATA = "SecureTradeMetadata"


@dataclass(frozen=True)
class FieldSpec:
    type: str  # string|integer|text|boolean
    required: bool = False


@dataclass(frozen=True)
class SchemaDefinition:
    table_name: str
    fields: Mapping[str, FieldSpec]
    # NormalizedRecord attribute -> column
    field_map: Mapping[str, str]
    uid_format: Callable[[str, int], str]


SCHEMAS: dict[RecordSchema, SchemaDefinition] = {
    RecordSchema.TOKEN_STATIC_DATA: SchemaDefinition(
        table_name="token_static_data",
        fields={
            "uid": FieldSpec("string", required=True),
            "address": FieldSpec("string", required=True),
            "serial": FieldSpec("integer", required=True),
            "metadata": FieldSpec("string"),
            "raw_metadata": FieldSpec("text"),
            "image": FieldSpec("string"),
            "attributes": FieldSpec("string"),
            "nft_name": FieldSpec("string"),
            "collection": FieldSpec("string", required=True),
            "environment": FieldSpec("string", required=True),
        },
        field_map={
            "token_id": "address",
            "serial_number": "serial",
            "metadata_reference": "metadata",
            "raw_metadata_json": "raw_metadata",
            "image_reference": "image",
            "attributes": "attributes",
            "name": "nft_name",
            "collection": "collection",
            "environment": "environment",
        },
        uid_format=lambda token_id, serial: f"{token_id}!{serial}",
    ),
    RecordSchema.SECURE_TRADE_METADATA: SchemaDefinition(
        table_name="secure_trade_metadata",
        fields={
            "uid": FieldSpec("string", required=True),
            "token_id": FieldSpec("string", required=True),
            "serial_number": FieldSpec("integer", required=True),
            "name": FieldSpec("string"),
            "collection": FieldSpec("string", required=True),
            "cid": FieldSpec("string"),
            "image": FieldSpec("string"),
            "downloaded_to_file": FieldSpec("boolean"),
            "fully_enriched": FieldSpec("boolean"),
            "raw_metadata_json": FieldSpec("text"),
        },
        field_map={
            "token_id": "token_id",
            "serial_number": "serial_number",
            "raw_metadata_json": "raw_metadata_json",
            "image_reference": "image",
            "name": "name",
            "collection": "collection",
            "metadata_cid": "cid",
            "downloaded_to_file": "downloaded_to_file",
            "fully_enriched": "fully_enriched",
        },
        uid_format=lambda token_id, serial: f"{token_id}-{serial}",
    ),
}


def parse_schema(name: str | RecordSchema) -> RecordSchema:
    if isinstance(name, RecordSchema):
        return name
    try:
        return RecordSchema(name)
    except ValueError:
        valid = ", ".join(s.value for s in RecordSchema)
        raise ValueError(f"Unknown schema: {name}. Valid schemas: {valid}") from None


class SchemaAdapter:
    """Converts between ``NormalizedRecord`` and one table layout."""

    def __init__(self, schema: str | RecordSchema) -> None:
        self.schema = parse_schema(schema)
        self._definition = SCHEMAS[self.schema]

    @property
    def table_name(self) -> str:
        return self._definition.table_name

    @property
    def token_field(self) -> str:
        return self._definition.field_map["token_id"]

    @property
    def serial_field(self) -> str:
        return self._definition.field_map["serial_number"]

    @property
    def columns(self) -> list[str]:
        return list(self._definition.fields)

    def create_uid(self, token_id: str, serial: int) -> str:
        return self._definition.uid_format(token_id, serial)

    def to_row(self, record: NormalizedRecord) -> dict[str, Any]:
        row: dict[str, Any] = {"uid": self.create_uid(record.token_id, record.serial_number)}
        for attr, column in self._definition.field_map.items():
            row[column] = getattr(record, attr)
        return row

    def from_row(self, row: Mapping[str, Any]) -> NormalizedRecord:
        kwargs = {
            attr: row[column]
            for attr, column in self._definition.field_map.items()
            if column in row and row[column] is not None
        }
        return NormalizedRecord(**kwargs)

    def validate(self, row: Mapping[str, Any]) -> list[str]:
        return [
            f"Missing required field: {name}"
            for name, spec in self._definition.fields.items()
            if spec.required and row.get(name) is None
        ]


def available_schemas() -> list[str]:
    return [s.value for s in RecordSchema]
