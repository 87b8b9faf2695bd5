"""Tests for checkpoint helpers and the thread ownership guard."""

import sys
import os
import threading

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from checkpoint import CHECKPOINT_VERSION, load_state, save_state
from errors import OwnershipError
from ownership import ThreadOwner


class TestCheckpointFiles:

    @pytest.mark.parametrize("suffix", [".json", ".msgpack"])
    def test_version_stamped(self, tmp_path, suffix):
        path = str(tmp_path / f"state{suffix}")
        save_state({"kind": "lstm", "sizes": [1, 2, 3]}, path)
        data = load_state(path)
        assert data["version"] == CHECKPOINT_VERSION
        assert data["sizes"] == [1, 2, 3]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_state(str(tmp_path / "nope.json"))


class TestThreadOwner:

    def test_first_claim_wins(self):
        guard = ThreadOwner("thing")
        guard.claim()
        assert guard.owner == threading.get_ident()
        guard.claim()

    def test_release_by_stranger_rejected(self):
        guard = ThreadOwner("thing")
        guard.claim()
        errors = []

        def stranger():
            try:
                guard.release()
            except OwnershipError as exc:
                errors.append(exc)

        t = threading.Thread(target=stranger)
        t.start()
        t.join()
        assert errors
        assert guard.owner == threading.get_ident()

    def test_release_then_claim_elsewhere(self):
        guard = ThreadOwner("thing")
        guard.claim()
        guard.release()
        owners = []

        def worker():
            guard.claim()
            owners.append(guard.owner)

        t = threading.Thread(target=worker)
        t.start()
        t.join()
        assert owners and owners[0] != threading.get_ident()

    def test_exited_owner_gives_up_claim(self):
        guard = ThreadOwner("thing")
        t = threading.Thread(target=guard.claim)
        t.start()
        t.join()
        assert guard.owner is None
        guard.claim()
        assert guard.owner == threading.get_ident()

    def test_held_releases_on_exit(self):
        guard = ThreadOwner("thing")
        with pytest.raises(RuntimeError):
            with guard.held():
                assert guard.owner == threading.get_ident()
                raise RuntimeError("boom")
        assert guard.owner is None
