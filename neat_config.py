"""
NEAT Environment: Evolutionary hyperparameters shared by every genome.

Provides a ``NeatEnvironment`` dataclass holding the tunables consulted when
gates and cells are crossed over or compared (crossover/mutation rates and
the compatibility-distance coefficients) plus the evaluation limits of the
graph walker.  Configuration can be loaded from a dict of overrides, a JSON
file, or left at defaults.

``SharedEnvironment`` wraps one environment behind a readers/writer guard so
independent pairwise crossovers running on worker threads can read it
concurrently while a driver occasionally updates it.

Usage::

    from neat_config import SharedEnvironment, load_neat_config

    env = SharedEnvironment(load_neat_config({"evolution": {"c3": 0.4}}))
    with env.read() as cfg:
        rate = cfg.evolution.weight_mutate_rate
    with env.write() as cfg:
        cfg.evolution.weight_perturb = 0.5
"""

from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

import numpy as np

logger = logging.getLogger("evocell.config")

_SECTIONS = ("evolution", "network")


# ── Section dataclasses ────────────────────────────────────────────────


@dataclass
class EvolutionConfig:
    """Crossover, weight mutation and compatibility-distance settings."""

    crossover_rate: float = 0.5
    weight_mutate_rate: float = 0.8
    edit_weights: float = 0.1
    weight_perturb: float = 0.5
    # Compatibility distance: c1 * excess + c2 * disjoint + c3 * weight diff
    c1: float = 1.0
    c2: float = 1.0
    c3: float = 0.4


@dataclass
class NetworkConfig:
    """Gate initialisation and graph evaluation settings."""

    weight_init_range: float = 1.0
    max_sweeps: int = 100
    seed: Optional[int] = None

    def make_rng(self) -> np.random.Generator:
        """Random generator seeded from ``seed`` (entropy when None)."""
        return np.random.default_rng(self.seed)


# ── Top-level config ───────────────────────────────────────────────────


@dataclass
class NeatEnvironment:
    """Top-level environment grouping every evolutionary tunable."""

    evolution: EvolutionConfig = field(default_factory=EvolutionConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ── Factory ────────────────────────────────────────────────────────────


def _apply_overrides(obj: Any, overrides: Dict[str, Any]) -> None:
    """Apply a dict of overrides to a dataclass instance (in-place)."""
    for key, value in overrides.items():
        if hasattr(obj, key):
            setattr(obj, key, value)
        else:
            logger.debug("Ignoring unknown config key %s", key)


def load_neat_config(
    overrides: Optional[Dict[str, Any]] = None,
    config_path: Optional[str] = None,
) -> NeatEnvironment:
    """Create a ``NeatEnvironment`` with defaults, optionally overridden.

    Override precedence (highest wins):
        1. ``overrides`` dict argument
        2. ``config_path`` JSON file
        3. Built-in defaults

    Args:
        overrides: Dict keyed by section name (``evolution``, ``network``)
            whose values are dicts of field→value pairs.
        config_path: Path to a JSON file with the same structure.

    Returns:
        Fully populated ``NeatEnvironment``.
    """
    cfg = NeatEnvironment()

    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            try:
                with open(p) as f:
                    file_data = json.load(f)
                for section in _SECTIONS:
                    if section in file_data:
                        _apply_overrides(getattr(cfg, section), file_data[section])
                logger.info("Loaded NEAT environment from %s", p)
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("Failed to load NEAT config from %s: %s", p, exc)

    if overrides is not None:
        for section in _SECTIONS:
            if section in overrides:
                _apply_overrides(getattr(cfg, section), overrides[section])

    return cfg


# ── Shared access guard ────────────────────────────────────────────────


class SharedEnvironment:
    """Readers/writer guard around a ``NeatEnvironment``.

    Any number of readers may hold the environment at once; a writer waits
    for them to drain and then holds it exclusively.  Waiting writers block
    new readers so updates are not starved by a steady stream of crossovers.
    """

    def __init__(self, env: Optional[NeatEnvironment] = None) -> None:
        self._env = env if env is not None else NeatEnvironment()
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[NeatEnvironment]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield self._env
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[NeatEnvironment]:
        with self._cond:
            self._waiting_writers += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield self._env
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()

    def snapshot(self) -> NeatEnvironment:
        """Return an independent copy taken under the read guard."""
        with self.read() as env:
            return NeatEnvironment(
                evolution=EvolutionConfig(**asdict(env.evolution)),
                network=NetworkConfig(**asdict(env.network)),
            )

    def __repr__(self) -> str:
        return f"SharedEnvironment(readers={self._readers}, writer={self._writer})"
