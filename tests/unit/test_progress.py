"""Unit tests for ProgressStateStore."""

from __future__ import annotations

import json

from nft_static_data.processing.progress import ProgressStateStore


class TestProgressStateStore:
    def test_save_and_load(self, tmp_path):
        store = ProgressStateStore(tmp_path)
        assert store.save("0.0.77", {"completed": 5, "processedSerials": [1, 2]})

        state = store.load("0.0.77")

        assert state["completed"] == 5
        assert state["processedSerials"] == [1, 2]
        assert (tmp_path / "0_0_77-progress.json").exists()

    def test_identity_mismatch_is_ignored(self, tmp_path):
        store = ProgressStateStore(tmp_path)
        store.state_file("0.0.1").write_text(json.dumps({"tokenId": "0.0.2"}))
        assert store.load("0.0.1") is None

    def test_missing_and_corrupt(self, tmp_path):
        store = ProgressStateStore(tmp_path)
        assert store.load("0.0.1") is None
        store.state_file("0.0.1").write_text("{")
        assert store.load("0.0.1") is None

    def test_clear(self, tmp_path):
        store = ProgressStateStore(tmp_path)
        store.save("0.0.1", {})
        assert store.clear("0.0.1")
        assert not store.clear("0.0.1")

    def test_list_states(self, tmp_path):
        store = ProgressStateStore(tmp_path / "state")
        assert store.list_states() == []
        store.save("0.0.1", {})
        store.save("0.0.2", {})
        assert [s["tokenId"] for s in store.list_states()] == ["0.0.1", "0.0.2"]
