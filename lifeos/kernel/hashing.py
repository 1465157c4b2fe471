"""State hashing utilities for reconciliation."""

import hashlib
import json
from typing import Any

from lifeos.kernel.types import LifeState


def canonical_json(data: dict[str, Any]) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"))


def hash_state(state: LifeState) -> str:
    """
    Deterministic hash of a LifeState.

    Client and server compare it to check that their replays agree.
    Returns the first 16 hex characters of the SHA-256 of the canonical JSON.
    """
    digest = hashlib.sha256(canonical_json(state.to_dict()).encode("utf-8"))
    return digest.hexdigest()[:16]
