"""
Checkpoint file helpers.

The file extension picks the format: ``.msgpack`` files are written with
msgpack, everything else as indented JSON.  Callers pass plain dicts
produced by the ``to_dict()`` methods of ``Dense``, ``LSTM`` and
``NeuronGraph``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict

import msgpack

logger = logging.getLogger("evocell.checkpoint")

CHECKPOINT_VERSION = "0.1.0"


def save_state(data: Dict[str, Any], path: str) -> None:
    """Save a checkpoint file (format determined by extension)."""
    p = Path(path)
    payload = {"version": CHECKPOINT_VERSION, **data}
    if p.suffix == ".msgpack":
        with open(p, "wb") as f:
            msgpack.pack(payload, f, use_bin_type=True)
    else:
        with open(p, "w") as f:
            json.dump(payload, f, indent=2)
    logger.info("Checkpoint saved: %s (%s)", p, payload.get("kind", "unknown"))


def load_state(path: str) -> Dict[str, Any]:
    """Load a checkpoint file (msgpack or JSON)."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Checkpoint not found: {path}")

    if p.suffix == ".msgpack":
        with open(p, "rb") as f:
            data = msgpack.unpack(f, raw=False, strict_map_key=False)
    else:
        with open(p, "r") as f:
            data = json.load(f)
    logger.info("Checkpoint loaded: %s (version %s)", p, data.get("version", "?"))
    return data
