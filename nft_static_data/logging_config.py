"""Structured logging setup.

Plain text for interactive runs; one JSON object per record (python-json-logger)
when ``LOG_FORMAT=json`` so long scrapes can be shipped to a log collector.
"""

from __future__ import annotations

import logging

from pythonjsonlogger.json import JsonFormatter

from nft_static_data.config import LOG_FORMAT_JSON


class SeverityJsonFormatter(JsonFormatter):
    """JSON formatter that reports the level under a ``severity`` key."""

    def add_fields(
        self,
        log_record: dict[str, object],
        record: logging.LogRecord,
        message_dict: dict[str, object],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["severity"] = record.levelname
        log_record.pop("levelname", None)


def setup_logging(*, level: str = "INFO", json: bool | None = None) -> None:
    """Configure the root logger. ``json`` defaults to the LOG_FORMAT env setting."""
    use_json = LOG_FORMAT_JSON if json is None else json

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for h in root.handlers[:]:
        root.removeHandler(h)

    handler = logging.StreamHandler()
    if use_json:
        handler.setFormatter(SeverityJsonFormatter(
            fmt="%(asctime)s %(message)s %(name)s %(funcName)s %(lineno)d",
            rename_fields={"name": "logger", "asctime": "timestamp"},
        ))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)-8s %(name)s:%(lineno)d  %(message)s",
            datefmt="%H:%M:%S",
        ))

    root.addHandler(handler)

    # httpx logs every request at INFO; gateway retries would drown the output.
    logging.getLogger("httpx").setLevel(logging.WARNING)
