"""Tests for neat_config: defaults, override layering and the shared guard."""

import json
import logging
import sys
import os
import threading
import time

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from neat_config import (
    EvolutionConfig,
    NeatEnvironment,
    SharedEnvironment,
    load_neat_config,
)


class TestLoadConfig:

    def test_defaults(self):
        cfg = load_neat_config()
        assert isinstance(cfg, NeatEnvironment)
        assert cfg.evolution == EvolutionConfig()
        assert cfg.network.max_sweeps == 100

    def test_dict_overrides(self):
        cfg = load_neat_config({"evolution": {"c3": 0.9}, "network": {"max_sweeps": 7}})
        assert cfg.evolution.c3 == 0.9
        assert cfg.network.max_sweeps == 7

    def test_unknown_keys_ignored(self):
        cfg = load_neat_config({"evolution": {"not_a_field": 1}, "bogus": {"x": 1}})
        assert not hasattr(cfg.evolution, "not_a_field")

    def test_file_then_dict_precedence(self, tmp_path):
        path = tmp_path / "neat.json"
        path.write_text(json.dumps({
            "evolution": {"c1": 2.0, "c2": 3.0},
            "network": {"weight_init_range": 0.5},
        }))
        cfg = load_neat_config({"evolution": {"c2": 4.0}}, config_path=str(path))
        assert cfg.evolution.c1 == 2.0
        assert cfg.evolution.c2 == 4.0
        assert cfg.network.weight_init_range == 0.5

    def test_missing_file_uses_defaults(self, tmp_path):
        cfg = load_neat_config(config_path=str(tmp_path / "absent.json"))
        assert cfg.evolution == EvolutionConfig()

    def test_corrupt_file_warns(self, tmp_path, caplog):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with caplog.at_level(logging.WARNING, logger="evocell.config"):
            cfg = load_neat_config(config_path=str(path))
        assert cfg.evolution == EvolutionConfig()
        assert "Failed to load NEAT config" in caplog.text


class TestSharedEnvironment:

    def test_write_visible_to_readers(self):
        env = SharedEnvironment()
        with env.write() as cfg:
            cfg.evolution.weight_perturb = 0.05
        with env.read() as cfg:
            assert cfg.evolution.weight_perturb == 0.05

    def test_snapshot_is_independent(self):
        env = SharedEnvironment()
        snap = env.snapshot()
        snap.evolution.c1 = 99.0
        with env.read() as cfg:
            assert cfg.evolution.c1 == 1.0

    def test_concurrent_readers(self):
        env = SharedEnvironment()
        inside = threading.Barrier(3, timeout=5)

        def reader():
            with env.read():
                inside.wait()

        threads = [threading.Thread(target=reader) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)
        assert not inside.broken

    def test_writer_excludes_readers(self):
        env = SharedEnvironment()
        order = []
        reader_started = threading.Event()

        def reader():
            reader_started.set()
            with env.read():
                order.append("read")

        with env.write():
            t = threading.Thread(target=reader)
            t.start()
            reader_started.wait(timeout=5)
            time.sleep(0.05)
            order.append("write")
        t.join(timeout=5)
        assert order == ["write", "read"]

    def test_guard_released_on_error(self):
        env = SharedEnvironment()
        with pytest.raises(RuntimeError):
            with env.write():
                raise RuntimeError("boom")
        with env.read() as cfg:
            assert cfg is not None
