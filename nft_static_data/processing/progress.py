"""Save and load per-token progress so an interrupted run can be resumed."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any

from nft_static_data.config import PROGRESS_STATE_DIR

logger = logging.getLogger(__name__)


class ProgressStateStore:
    def __init__(self, state_dir: str | Path = PROGRESS_STATE_DIR) -> None:
        self.state_dir = Path(state_dir)

    def state_file(self, token_id: str) -> Path:
        return self.state_dir / f"{token_id.replace('.', '_')}-progress.json"

    def save(self, token_id: str, data: dict[str, Any]) -> bool:
        state = {
            **data,
            "tokenId": token_id,
            "timestamp": time.time(),
            "lastUpdated": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        }
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            self.state_file(token_id).write_text(json.dumps(state, indent=2))
        except OSError:
            logger.warning("Failed to save progress for %s", token_id, exc_info=True)
            return False
        return True

    def load(self, token_id: str) -> dict[str, Any] | None:
        try:
            state = json.loads(self.state_file(token_id).read_text())
        except FileNotFoundError:
            return None
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable progress state for %s", token_id, exc_info=True)
            return None
        if not isinstance(state, dict) or state.get("tokenId") != token_id:
            return None
        logger.info("Found saved progress for %s from %s", token_id, state.get("lastUpdated"))
        return state

    def clear(self, token_id: str) -> bool:
        try:
            self.state_file(token_id).unlink()
        except FileNotFoundError:
            return False
        logger.info("Progress state cleared for %s", token_id)
        return True

    def list_states(self) -> list[dict[str, Any]]:
        if not self.state_dir.is_dir():
            return []
        states: list[dict[str, Any]] = []
        for path in sorted(self.state_dir.glob("*-progress.json")):
            try:
                states.append(json.loads(path.read_text()))
            except (OSError, ValueError):
                logger.warning("Failed to read state file %s", path.name)
        return states
