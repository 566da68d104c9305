"""Per-invocation state for one token scrape.

Everything a run mutates (progress counters, categorized errors, timestamps)
lives on a ``ProcessingJob`` instance, so several jobs can run in one process
without sharing counters.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from nft_static_data.config import PROGRESS_STATE_DIR
from nft_static_data.processing.types import ErrorCategory, ErrorRecord

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, int], None]


def _empty_errors() -> dict[ErrorCategory, list[ErrorRecord]]:
    return {category: [] for category in ErrorCategory}


class ProcessingJob:
    def __init__(
        self,
        *,
        token_id: str,
        environment: str,
        collection: str | None = None,
        schema: str = "TokenStaticData",
        dry_run: bool = False,
        progress_callback: ProgressCallback | None = None,
        state_dir: str | Path = PROGRESS_STATE_DIR,
    ) -> None:
        self.token_id = token_id
        self.environment = environment
        self.collection = collection
        self.schema = schema
        self.dry_run = dry_run
        self.progress_callback = progress_callback
        self.state_dir = Path(state_dir)

        self.completed = 0
        self.to_process = 0
        self.actual_total = 0
        self.errors = _empty_errors()
        self.processed_serials: set[int] = set()
        self.started_at: float | None = None
        self.ended_at: float | None = None

    def start(self) -> None:
        self.started_at = time.time()
        self.ended_at = None
        self.completed = 0
        self.to_process = 0
        self.actual_total = 0
        self.errors = _empty_errors()
        logger.info(
            "Job started token=%s collection=%s env=%s schema=%s",
            self.token_id,
            self.collection,
            self.environment,
            self.schema,
        )

    def complete(self) -> None:
        self.ended_at = time.time()
        logger.info(
            "Job complete token=%s completed=%d/%d errors=%d duration=%.1fs",
            self.token_id,
            self.completed,
            self.actual_total,
            self.total_error_count,
            self.duration_seconds or 0.0,
        )

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.ended_at is None:
            return None
        return self.ended_at - self.started_at

    @property
    def is_complete(self) -> bool:
        return self.to_process > 0 and self.completed >= self.to_process

    # -- progress -------------------------------------------------------------

    def add_to_process(self, count: int) -> None:
        self.to_process += count
        # Only ever revise the total upward.
        if self.to_process > self.actual_total:
            self.actual_total = self.to_process

    def set_actual_total(self, total: int) -> None:
        self.actual_total = max(total, self.to_process)

    def increment_completed(self) -> None:
        self.completed += 1
        self.report_progress()

    def mark_processed(self, serials: Iterable[int]) -> None:
        self.processed_serials.update(serials)

    def report_progress(self) -> None:
        if self.progress_callback and self.actual_total > 0:
            self.progress_callback(self.completed, self.actual_total, self.total_error_count)

    # -- errors ---------------------------------------------------------------

    def record_error(
        self,
        category: ErrorCategory | str,
        *,
        serial: int | None = None,
        cid: str | None = None,
        gateway: str | None = None,
        message: str | None = None,
        retry_count: int = 0,
        error: BaseException | None = None,
    ) -> ErrorRecord:
        try:
            category = ErrorCategory(category)
        except ValueError:
            logger.warning("Unknown error category %r filed under other", category)
            category = ErrorCategory.OTHER
        entry = ErrorRecord(
            timestamp=time.time(),
            token_id=self.token_id,
            serial=serial,
            cid=cid,
            gateway=gateway,
            message=message or (str(error) if error else "Unknown error"),
            retry_count=retry_count,
            error_type=type(error).__name__ if error else None,
        )
        self.errors[category].append(entry)
        logger.error(
            "Processing error %s token=%s serial=%s cid=%s gateway=%s retries=%d: %s",
            category.value,
            self.token_id,
            serial,
            cid,
            gateway,
            retry_count,
            entry.message,
        )
        return entry

    @property
    def total_error_count(self) -> int:
        return sum(len(v) for v in self.errors.values())

    @property
    def failed_serials(self) -> list[int]:
        serials = {e.serial for v in self.errors.values() for e in v if e.serial is not None}
        return sorted(serials)

    def error_summary(self) -> dict[str, dict[str, Any]]:
        summary: dict[str, dict[str, Any]] = {}
        for category, entries in self.errors.items():
            if entries:
                summary[category.value] = {
                    "count": len(entries),
                    "samples": [
                        {"serial": e.serial, "cid": e.cid, "message": e.message} for e in entries[:3]
                    ],
                }
        return summary

    def all_errors(self) -> list[dict[str, Any]]:
        flat = [
            {"category": category.value, **e.to_dict()}
            for category, entries in self.errors.items()
            for e in entries
        ]
        return sorted(flat, key=lambda e: e["timestamp"])

    def export_errors(self, path: str | Path | None = None) -> Path:
        """Write every error with context to JSON for offline retry."""
        export_path = Path(path) if path else self.state_dir / (
            f"errors-{self.token_id}-{int(time.time() * 1000)}.json"
        )
        export_path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "tokenId": self.token_id,
            "collection": self.collection,
            "environment": self.environment,
            "exportTime": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "summary": self.error_summary(),
            "totalErrors": self.total_error_count,
            "errors": self.all_errors(),
        }
        export_path.write_text(json.dumps(data, indent=2))
        logger.info("Exported %d errors to %s", self.total_error_count, export_path)
        return export_path

    # -- reporting / resume -----------------------------------------------------

    def summary(self) -> dict[str, Any]:
        return {
            "tokenId": self.token_id,
            "collection": self.collection,
            "environment": self.environment,
            "schema": self.schema,
            "completed": self.completed,
            "total": self.actual_total,
            "errors": self.total_error_count,
            "errorSerials": self.failed_serials,
            "errorsByCategory": self.error_summary(),
            "durationSeconds": self.duration_seconds,
            "dryRun": self.dry_run,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "tokenId": self.token_id,
            "collection": self.collection,
            "environment": self.environment,
            "schema": self.schema,
            "dryRun": self.dry_run,
            "completed": self.completed,
            "toProcess": self.to_process,
            "actualTotal": self.actual_total,
            "processedSerials": sorted(self.processed_serials),
            "errors": {c.value: [e.to_dict() for e in v] for c, v in self.errors.items()},
            "startedAt": self.started_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], **overrides: Any) -> ProcessingJob:
        kwargs: dict[str, Any] = {
            "token_id": data["tokenId"],
            "environment": data.get("environment") or "MAIN",
            "collection": data.get("collection"),
            "schema": data.get("schema") or "TokenStaticData",
            "dry_run": bool(data.get("dryRun", False)),
        }
        kwargs.update(overrides)
        job = cls(**kwargs)
        job.completed = int(data.get("completed") or 0)
        job.to_process = int(data.get("toProcess") or 0)
        job.actual_total = int(data.get("actualTotal") or 0)
        job.processed_serials = {int(s) for s in data.get("processedSerials") or []}
        for name, entries in (data.get("errors") or {}).items():
            try:
                category = ErrorCategory(name)
            except ValueError:
                category = ErrorCategory.OTHER
            job.errors[category].extend(ErrorRecord.from_dict(e) for e in entries)
        job.started_at = data.get("startedAt") or time.time()
        return job
